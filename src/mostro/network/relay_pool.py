"""
Websocket relay pool.

Speaks NIP-01 to every configured relay at once::

    client -> relay   ["REQ", sub_id, filter...]  ["EVENT", event]  ["CLOSE", sub_id]
    relay  -> client  ["EVENT", sub_id, event]  ["EOSE", sub_id]
                      ["OK", event_id, accepted, message]  ["NOTICE", message]

Events arriving from several relays are yielded once.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections import OrderedDict
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Set, Tuple

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from mostro.core import config
from mostro.core.exceptions import DecodeError, TransportError
from mostro.network.events import NostrEvent, verify_event
from mostro.network.transport import Filter, Transport, apply_since

logger = logging.getLogger(__name__)

SEEN_CACHE_SIZE = 10000


class RelayPool(Transport):
    def __init__(
        self,
        urls: Sequence[str],
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
    ) -> None:
        if not urls:
            raise TransportError("At least one relay URL is required", code="NO_RELAYS")
        self.urls = list(dict.fromkeys(urls))
        self.max_retries = config.RELAY_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = config.RELAY_RETRY_DELAY if retry_delay is None else retry_delay
        self.connections: Dict[str, Any] = {}
        self._readers: Dict[str, asyncio.Task] = {}
        self._subscriptions: Dict[str, Tuple[List[Filter], asyncio.Queue]] = {}
        self._seen: "OrderedDict[str, None]" = OrderedDict()
        self._reconnects: Set[asyncio.Task] = set()
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return bool(self.connections)

    async def connect(self) -> None:
        """
        Connect to every relay; succeeds when at least one is reachable.

        Raises:
            TransportError: If no relay could be reached
        """
        self._closing = False
        await asyncio.gather(*(self._connect_with_retry(url) for url in self.urls))
        if not self.connections:
            raise TransportError("No relay reachable", code="NO_RELAY_REACHABLE", details={"relays": self.urls})

    async def _connect_with_retry(self, url: str) -> bool:
        """Tries to connect to a relay with exponential backoff."""
        delay = self.retry_delay
        for attempt in range(self.max_retries):
            if self._closing:
                return False
            try:
                websocket = await websockets.connect(url)
            except (WebSocketException, OSError, asyncio.TimeoutError, ValueError) as e:
                logger.debug(
                    "Failed to connect to relay %s on attempt %d/%d: %s",
                    url,
                    attempt + 1,
                    self.max_retries,
                    type(e).__name__,
                )
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2
                continue
            self.connections[url] = websocket
            self._readers[url] = asyncio.create_task(self._read_loop(url, websocket))
            logger.info("Connected to relay: %s", url, extra={"event": "relay.connected", "relay": url})
            for sub_id, (filters, _queue) in list(self._subscriptions.items()):
                await self._send(url, ["REQ", sub_id, *filters])
            return True
        logger.warning(
            "Giving up on relay %s after %d failed attempts",
            url,
            self.max_retries,
            extra={"event": "relay.connect_failed", "relay": url},
        )
        return False

    async def _send(self, url: str, frame: List[Any]) -> bool:
        websocket = self.connections.get(url)
        if websocket is None:
            return False
        try:
            await websocket.send(json.dumps(frame, separators=(",", ":"), ensure_ascii=False))
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.debug("Send to relay %s failed: %s", url, type(e).__name__)
            return False
        return True

    async def _broadcast(self, frame: List[Any]) -> int:
        results = await asyncio.gather(*(self._send(url, frame) for url in list(self.connections)))
        return sum(1 for ok in results if ok)

    async def _read_loop(self, url: str, websocket: Any) -> None:
        try:
            async for raw in websocket:
                try:
                    self._handle_frame(url, raw)
                except Exception:
                    logger.exception(
                        "Error handling frame from relay %s",
                        url,
                        extra={"event": "relay.frame_failed", "relay": url},
                    )
        except (ConnectionClosed, WebSocketException, OSError) as e:
            logger.info(
                "Relay %s disconnected: %s",
                url,
                type(e).__name__,
                extra={"event": "relay.disconnected", "relay": url},
            )
        finally:
            if self.connections.get(url) is websocket:
                del self.connections[url]
            self._readers.pop(url, None)
            if not self._closing:
                self._schedule_reconnect(url)

    def _schedule_reconnect(self, url: str) -> None:
        task = asyncio.create_task(self._connect_with_retry(url))
        self._reconnects.add(task)
        task.add_done_callback(self._reconnects.discard)

    def _handle_frame(self, url: str, raw: Any) -> None:
        try:
            frame = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Relay %s sent a non-JSON frame", url)
            return
        if not isinstance(frame, list) or not frame:
            return
        label = frame[0]
        if label == "EVENT" and len(frame) >= 3:
            self._handle_event(url, frame[1], frame[2])
        elif label == "EOSE" and len(frame) >= 2:
            logger.debug("Relay %s finished stored events for %s", url, frame[1], extra={"event": "relay.eose"})
        elif label == "OK" and len(frame) >= 3:
            if not frame[2]:
                logger.warning(
                    "Relay %s rejected event %s: %s",
                    url,
                    frame[1],
                    frame[3] if len(frame) > 3 else "",
                    extra={"event": "relay.event_rejected", "relay": url},
                )
        elif label == "NOTICE" and len(frame) >= 2:
            logger.info("Relay %s notice: %s", url, frame[1], extra={"event": "relay.notice", "relay": url})

    def _handle_event(self, url: str, sub_id: Any, data: Any) -> None:
        if not isinstance(sub_id, str):
            logger.debug("Relay %s sent an event without a subscription id", url)
            return
        subscription = self._subscriptions.get(sub_id)
        if subscription is None:
            return
        try:
            event = NostrEvent.from_dict(data)
        except DecodeError:
            logger.debug("Relay %s sent a malformed event", url)
            return
        if event.id in self._seen:
            return
        if not verify_event(event):
            logger.debug("Relay %s sent event %s with a bad signature", url, event.id)
            return
        self._seen[event.id] = None
        if len(self._seen) > SEEN_CACHE_SIZE:
            self._seen.popitem(last=False)
        subscription[1].put_nowait(event)

    async def subscribe(
        self, filters: Sequence[Mapping[str, Any]], since: Optional[int] = None
    ) -> AsyncIterator[NostrEvent]:
        if not self.is_connected:
            raise TransportError("Relay pool is not connected", code="NOT_CONNECTED")
        sub_id = uuid.uuid4().hex[:16]
        prepared = apply_since(filters, since)
        queue: asyncio.Queue = asyncio.Queue()
        self._subscriptions[sub_id] = (prepared, queue)
        await self._broadcast(["REQ", sub_id, *prepared])
        try:
            while True:
                event = await queue.get()
                if event is None:
                    return
                yield event
        finally:
            self._subscriptions.pop(sub_id, None)
            if not self._closing:
                await self._broadcast(["CLOSE", sub_id])

    async def publish(self, event: NostrEvent) -> None:
        if not self.is_connected:
            raise TransportError("Relay pool is not connected", code="NOT_CONNECTED")
        sent = await self._broadcast(["EVENT", event.to_dict()])
        if not sent:
            raise TransportError("Event could not be sent to any relay", code="PUBLISH_FAILED", details={"id": event.id})
        logger.debug("Published event %s to %d relays", event.id, sent, extra={"event": "relay.published"})

    async def close(self) -> None:
        self._closing = True
        for _filters, queue in self._subscriptions.values():
            queue.put_nowait(None)
        for task in list(self._readers.values()) + list(self._reconnects):
            task.cancel()
        for url, websocket in list(self.connections.items()):
            try:
                await websocket.close()
            except (WebSocketException, OSError):
                logger.debug("Error closing relay %s", url)
        self.connections.clear()
        self._readers.clear()
