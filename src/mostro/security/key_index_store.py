"""
Trade key index persistence.

The next unused derivation index must survive restarts: reissuing an index
would hand two unrelated orders the same trade key.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from threading import RLock
from typing import Dict

from mostro.core import config

logger = logging.getLogger(__name__)


class KeyIndexStore(ABC):
    """Persists the next trade key index per identity public key."""

    @abstractmethod
    def load(self, identity: str) -> int:
        """Return the next unused index for ``identity`` (0 when unknown)."""

    @abstractmethod
    def save(self, identity: str, next_index: int) -> None:
        """Record ``next_index`` as the next unused index for ``identity``."""


class MemoryKeyIndexStore(KeyIndexStore):
    """Process-local store; indexes restart from 1 with a new process."""

    def __init__(self) -> None:
        self._indexes: Dict[str, int] = {}
        self._lock = RLock()

    def load(self, identity: str) -> int:
        with self._lock:
            return self._indexes.get(identity, 0)

    def save(self, identity: str, next_index: int) -> None:
        with self._lock:
            self._indexes[identity] = max(next_index, self._indexes.get(identity, 0))


class JsonKeyIndexStore(KeyIndexStore):
    """
    JSON file store keyed by identity public key.

    Writes go to a temporary file that replaces the target, so a crash never
    leaves a truncated file behind. Stored values never move backwards.
    """

    def __init__(self, path: str) -> None:
        self.path = path
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        self._lock = RLock()
        self._indexes: Dict[str, int] = self._read()

    def _read(self) -> Dict[str, int]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(
                "Failed to load key indexes from %s: %s - starting fresh",
                self.path,
                type(e).__name__,
                extra={"event": "key_index.load_failed", "error": str(e)},
            )
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): int(v) for k, v in data.items() if isinstance(v, int)}

    def _write(self) -> None:
        directory = os.path.dirname(os.path.abspath(self.path))
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".key-index-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._indexes, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def load(self, identity: str) -> int:
        with self._lock:
            return self._indexes.get(identity, 0)

    def save(self, identity: str, next_index: int) -> None:
        with self._lock:
            if next_index <= self._indexes.get(identity, 0):
                return
            self._indexes[identity] = next_index
            self._write()
            logger.debug(
                "Persisted next trade key index %d",
                next_index,
                extra={"event": "key_index.saved"},
            )


def default_index_store() -> KeyIndexStore:
    """A JSON store at ``MOSTRO_KEY_INDEX_STORE`` when configured, else in-memory."""
    if config.KEY_INDEX_STORE:
        return JsonKeyIndexStore(config.KEY_INDEX_STORE)
    return MemoryKeyIndexStore()
