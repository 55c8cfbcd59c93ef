"""
Relay transport contract and an in-process relay.

A transport publishes signed events and yields events matching NIP-01
filters (``ids``, ``kinds``, ``authors``, ``since``, ``until``, ``limit`` and
single-letter tag filters such as ``#p`` / ``#d``).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from mostro.core.exceptions import TransportError
from mostro.network.events import NostrEvent

logger = logging.getLogger(__name__)

Filter = Dict[str, Any]


def is_replaceable_kind(kind: int) -> bool:
    return kind in (0, 3) or 10000 <= kind < 20000


def is_addressable_kind(kind: int) -> bool:
    """Parameterized replaceable kinds, keyed by their ``d`` tag."""
    return 30000 <= kind < 40000


def matches_filter(event: NostrEvent, filt: Mapping[str, Any]) -> bool:
    if "ids" in filt and event.id not in filt["ids"]:
        return False
    if "kinds" in filt and event.kind not in filt["kinds"]:
        return False
    if "authors" in filt and event.pubkey not in filt["authors"]:
        return False
    if filt.get("since") is not None and event.created_at < filt["since"]:
        return False
    if filt.get("until") is not None and event.created_at > filt["until"]:
        return False
    for key, wanted in filt.items():
        if len(key) == 2 and key[0] == "#":
            if not set(event.tag_values(key[1])) & set(wanted):
                return False
    return True


def matches_any(event: NostrEvent, filters: Sequence[Mapping[str, Any]]) -> bool:
    return any(matches_filter(event, filt) for filt in filters)


def apply_since(filters: Sequence[Mapping[str, Any]], since: Optional[int]) -> List[Filter]:
    """Copy ``filters`` with ``since`` set where the filter does not already carry one."""
    result = []
    for filt in filters:
        copied = dict(filt)
        if since is not None and "since" not in copied:
            copied["since"] = since
        result.append(copied)
    return result


class Transport(ABC):
    """What the client needs from a relay connection."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def connect(self) -> None:
        ...

    @abstractmethod
    def subscribe(
        self, filters: Sequence[Mapping[str, Any]], since: Optional[int] = None
    ) -> AsyncIterator[NostrEvent]:
        """Yield stored then live events matching any of ``filters`` until the transport closes."""

    @abstractmethod
    async def publish(self, event: NostrEvent) -> None:
        """
        Raises:
            TransportError: If the transport is not connected
        """

    @abstractmethod
    async def close(self) -> None:
        ...


class MemoryRelay:
    """
    An in-process relay shared by any number of ``MemoryTransport`` endpoints.

    Keeps every event it accepts (newest only for replaceable and addressable
    kinds) and fans new events out to live subscriptions.
    """

    def __init__(self) -> None:
        self._events: "OrderedDict[str, NostrEvent]" = OrderedDict()
        self._replaceable: Dict[Tuple[Any, ...], str] = {}
        self._subscribers: List[Tuple[List[Filter], asyncio.Queue]] = []

    def __len__(self) -> int:
        return len(self._events)

    def events(self) -> List[NostrEvent]:
        return list(self._events.values())

    def _replace_key(self, event: NostrEvent) -> Optional[Tuple[Any, ...]]:
        if is_addressable_kind(event.kind):
            return (event.kind, event.pubkey, event.first_tag("d") or "")
        if is_replaceable_kind(event.kind):
            return (event.kind, event.pubkey)
        return None

    def store(self, event: NostrEvent) -> bool:
        """Store ``event``; returns False for duplicates and superseded versions."""
        if event.id in self._events:
            return False
        key = self._replace_key(event)
        if key is not None:
            current_id = self._replaceable.get(key)
            if current_id is not None:
                current = self._events[current_id]
                if current.created_at > event.created_at:
                    return False
                del self._events[current_id]
            self._replaceable[key] = event.id
        self._events[event.id] = event
        return True

    def publish(self, event: NostrEvent) -> None:
        if not self.store(event):
            return
        for filters, queue in list(self._subscribers):
            if matches_any(event, filters):
                queue.put_nowait(event)

    def query(self, filters: Sequence[Mapping[str, Any]]) -> List[NostrEvent]:
        matched = [event for event in self._events.values() if matches_any(event, filters)]
        limits = [filt["limit"] for filt in filters if isinstance(filt.get("limit"), int)]
        matched.sort(key=lambda event: event.created_at)
        if limits:
            matched = matched[-max(limits):]
        return matched

    def add_subscriber(self, filters: List[Filter], queue: asyncio.Queue) -> None:
        for event in self.query(filters):
            queue.put_nowait(event)
        self._subscribers.append((filters, queue))

    def remove_subscriber(self, queue: asyncio.Queue) -> None:
        self._subscribers = [entry for entry in self._subscribers if entry[1] is not queue]


class MemoryTransport(Transport):
    """A ``Transport`` endpoint on a ``MemoryRelay``."""

    def __init__(self, relay: Optional[MemoryRelay] = None) -> None:
        self.relay = relay if relay is not None else MemoryRelay()
        self.published: List[NostrEvent] = []
        self._connected = False
        self._queues: List[asyncio.Queue] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def subscribe(
        self, filters: Sequence[Mapping[str, Any]], since: Optional[int] = None
    ) -> AsyncIterator[NostrEvent]:
        if not self._connected:
            raise TransportError("Transport is not connected", code="NOT_CONNECTED")
        queue: asyncio.Queue = asyncio.Queue()
        self._queues.append(queue)
        self.relay.add_subscriber(apply_since(filters, since), queue)
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self.relay.remove_subscriber(queue)
            if queue in self._queues:
                self._queues.remove(queue)

    async def publish(self, event: NostrEvent) -> None:
        if not self._connected:
            raise TransportError("Transport is not connected", code="NOT_CONNECTED")
        self.published.append(event)
        self.relay.publish(event)

    async def close(self) -> None:
        self._connected = False
        for queue in self._queues:
            queue.put_nowait(None)
