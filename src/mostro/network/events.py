"""
Nostr wire events.

``{id, pubkey, created_at, kind, tags, content, sig}`` where ``id`` is the
sha256 of the compact JSON ``[0, pubkey, created_at, kind, tags, content]``
and ``sig`` a BIP-340 signature of ``id`` by ``pubkey``.
"""

from __future__ import annotations

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from mostro.core.exceptions import DecodeError
from mostro.security.crypto_utils import derive_public_key_hex, schnorr_sign, schnorr_verify

RUMOR_KIND = 1
DIRECT_MESSAGE_KIND = 4
SEAL_KIND = 13
GIFT_WRAP_KIND = 1059
ORDER_KIND = 38383


@dataclass
class NostrEvent:
    kind: int
    content: str = ""
    tags: List[List[str]] = field(default_factory=list)
    created_at: int = 0
    pubkey: str = ""
    id: str = ""
    sig: Optional[str] = None

    def tag_values(self, name: str) -> List[str]:
        """First value of every tag row named ``name``."""
        return [row[1] for row in self.tags if len(row) >= 2 and row[0] == name]

    def first_tag(self, name: str) -> Optional[str]:
        values = self.tag_values(name)
        return values[0] if values else None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": self.tags,
            "content": self.content,
        }
        if self.sig is not None:
            data["sig"] = self.sig
        return data

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NostrEvent":
        """
        Raises:
            DecodeError: If a field is missing or has the wrong type
        """
        if not isinstance(data, Mapping):
            raise DecodeError("Event must be an object")
        try:
            kind = data["kind"]
            created_at = data["created_at"]
            tags = data.get("tags", [])
            content = data.get("content", "")
            pubkey = data["pubkey"]
        except KeyError as exc:
            raise DecodeError(f"Event is missing {exc.args[0]!r}") from exc
        if not isinstance(kind, int) or not isinstance(created_at, int):
            raise DecodeError("Event kind and created_at must be integers")
        if not isinstance(pubkey, str) or not isinstance(content, str):
            raise DecodeError("Event pubkey and content must be strings")
        if not isinstance(tags, list) or not all(isinstance(row, list) for row in tags):
            raise DecodeError("Event tags must be a list of lists")
        sig = data.get("sig")
        return cls(
            kind=kind,
            content=content,
            tags=[list(row) for row in tags],
            created_at=created_at,
            pubkey=pubkey,
            id=str(data.get("id", "")),
            sig=sig if isinstance(sig, str) else None,
        )

    @classmethod
    def from_json(cls, text: str) -> "NostrEvent":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise DecodeError("Event is not valid JSON") from exc
        return cls.from_dict(data)


def compute_event_id(event: NostrEvent) -> str:
    serialized = json.dumps(
        [0, event.pubkey, event.created_at, event.kind, event.tags, event.content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def finalize_event(event: NostrEvent, private_key: str) -> NostrEvent:
    """Set pubkey, created_at (if unset), id and signature in place and return the event."""
    event.pubkey = derive_public_key_hex(private_key)
    if not event.created_at:
        event.created_at = int(time.time())
    event.id = compute_event_id(event)
    event.sig = schnorr_sign(private_key, bytes.fromhex(event.id))
    return event


def verify_event(event: NostrEvent) -> bool:
    """Check the id matches the content and the signature matches the id."""
    if not event.sig or event.id != compute_event_id(event):
        return False
    return schnorr_verify(event.pubkey, bytes.fromhex(event.id), event.sig)
