"""
Mostro client.

Wraps one daemon (by public key) behind a transport:

- keeps the set of active (pending) orders from the daemon's listings
- turns trading calls into gift-wrapped requests and awaits their replies
- routes inbound private messages to pending calls or to observers
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from mostro.client.correlator import RequestCorrelator
from mostro.client.observers import MostroObserver
from mostro.client.orders import OrderManager
from mostro.core import config
from mostro.core.exceptions import (
    ConfigurationError,
    DecodeError,
    DecryptionError,
    MostroError,
    TransportError,
    ValidationError,
    get_error_context,
)
from mostro.core.info import MostroInfo, decode_info
from mostro.core.messages import (
    Action,
    MostroMessage,
    add_invoice_message,
    new_order_message,
    order_action_message,
    take_order_message,
)
from mostro.core.order import (
    ORDER_DOCUMENT,
    Order,
    OrderStatus,
    decode_order,
    is_order_expired,
    prepare_new_order,
)
from mostro.core.validation import validate_order
from mostro.network.envelope import unwrap, wrap
from mostro.network.events import (
    DIRECT_MESSAGE_KIND,
    GIFT_WRAP_KIND,
    ORDER_KIND,
    NostrEvent,
    finalize_event,
)
from mostro.network.transport import Transport
from mostro.security import nip04
from mostro.security.crypto_utils import derive_public_key_hex, encode_public_key, normalize_public_key
from mostro.security.key_manager import KeyManager

logger = logging.getLogger(__name__)

INFO_DOCUMENT = "info"
PROCESSED_CACHE_SIZE = 10000
ORDER_SEEN_CACHE_SIZE = 10000


class PublicKeyType(str, Enum):
    HEX = "hex"
    NPUB = "npub"


class Mostro:
    """
    Client for a single Mostro daemon.

    Args:
        mostro_pubkey: Daemon public key, hex or npub
        transport: Relay transport to publish and subscribe through
        key_manager: Initialized (or later initialized) key manager; when
            given, every order gets its own trade key
        private_key: Identity key to use without a key manager
        request_timeout: Seconds to wait for a reply to each call
    """

    def __init__(
        self,
        mostro_pubkey: str,
        transport: Transport,
        key_manager: Optional[KeyManager] = None,
        private_key: Optional[str] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        try:
            self.mostro_pubkey = normalize_public_key(mostro_pubkey)
        except ValueError as exc:
            raise ConfigurationError("Invalid Mostro public key", code="INVALID_CONFIG") from exc
        if private_key is not None:
            try:
                self._private_public_key = derive_public_key_hex(private_key)
            except ValueError as exc:
                raise ConfigurationError("Invalid private key", code="INVALID_CONFIG") from exc
        self.transport = transport
        self.key_manager = key_manager
        self.orders = OrderManager(key_manager) if key_manager is not None else None
        self.correlator = RequestCorrelator(request_timeout)
        self._private_key = private_key
        self._observers: List[MostroObserver] = []
        self._active_orders: Dict[str, Order] = {}
        self._order_seen: "OrderedDict[str, int]" = OrderedDict()
        self._my_orders: Dict[str, Order] = {}
        self._processed: "OrderedDict[str, None]" = OrderedDict()
        self._info: Optional[MostroInfo] = None
        self._ready = False
        self._dispatcher: Optional[asyncio.Task] = None
        self._keys_changed = asyncio.Event()
        self._started_at: Optional[int] = None

    # ===== observers =====

    def add_observer(self, observer: MostroObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def remove_observer(self, observer: MostroObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, hook: str, *args: Any) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, hook)(*args)
            except Exception:
                logger.exception(
                    "Observer %s failed in %s",
                    type(observer).__name__,
                    hook,
                    extra={"event": "client.observer_failed", "hook": hook},
                )

    # ===== keys =====

    def _identity_key(self) -> str:
        if self._private_key is not None:
            return self._private_key
        if self.key_manager is not None:
            return self.key_manager.get_identity_key()
        raise ConfigurationError("No identity key: pass private_key or a key manager", code="NOT_INITIALIZED")

    def _my_public_keys(self) -> List[str]:
        if self.key_manager is not None and self.key_manager.initialized:
            return self.key_manager.public_keys()
        return [derive_public_key_hex(self._identity_key())]

    def _find_private_key(self, public_key: str) -> Optional[str]:
        if self.key_manager is not None and self.key_manager.initialized:
            found = self.key_manager.find_private_key(public_key)
            if found is not None:
                return found
        if self._private_key is not None and public_key == self._private_public_key:
            return self._private_key
        return None

    def _key_for_order(self, order_id: str) -> str:
        """The order's trade key when we hold one, else the identity key."""
        if self.key_manager is not None and self.key_manager.initialized:
            trade_key = self.key_manager.get_trade_key(order_id)
            if trade_key is not None:
                return trade_key
        return self._identity_key()

    def _trade_index(self, order_id: str) -> Optional[int]:
        if self.key_manager is None:
            return None
        record = self.key_manager.get_trade_key_record(order_id)
        return record.key_index if record else None

    def get_mostro_public_key(self, key_type: PublicKeyType = PublicKeyType.HEX) -> str:
        if key_type == PublicKeyType.NPUB:
            return encode_public_key(self.mostro_pubkey)
        return self.mostro_pubkey

    def get_my_public_key(self, key_type: PublicKeyType = PublicKeyType.HEX) -> str:
        public_key = derive_public_key_hex(self._identity_key())
        if key_type == PublicKeyType.NPUB:
            return encode_public_key(public_key)
        return public_key

    # ===== lifecycle =====

    async def connect(self) -> None:
        await self.transport.connect()
        if not self._ready:
            self._ready = True
            logger.info(
                "Connected to Mostro %s",
                self.mostro_pubkey,
                extra={"event": "client.ready", "mostro": self.mostro_pubkey},
            )
            self._notify("on_ready")

    def _filters(self, public_keys: Sequence[str]) -> List[Dict[str, Any]]:
        now = int(time.time())
        if self._started_at is None:
            self._started_at = now
        return [
            {
                "kinds": [ORDER_KIND],
                "authors": [self.mostro_pubkey],
                "since": now - config.SUBSCRIPTION_LOOKBACK,
            },
            {
                "kinds": [GIFT_WRAP_KIND, DIRECT_MESSAGE_KIND],
                "#p": list(public_keys),
                # gift wraps are backdated by up to the wrap window
                "since": self._started_at - config.GIFT_WRAP_TIME_WINDOW,
            },
        ]

    async def _consume(self, filters: List[Dict[str, Any]]) -> None:
        async for event in self.transport.subscribe(filters):
            try:
                self.handle_event(event)
            except MostroError as exc:
                logger.warning(
                    "Failed to handle event %s: %s",
                    event.id,
                    exc,
                    extra={"event": "client.event_failed", "kind": event.kind, **get_error_context(exc)},
                )
            except Exception:
                logger.exception(
                    "Unexpected error handling event %s",
                    event.id,
                    extra={"event": "client.event_crashed", "kind": event.kind},
                )

    async def run(self) -> None:
        """
        Dispatch inbound events until the transport closes.

        Re-subscribes whenever a new trade key is issued so replies to it are
        received; events replayed by the new subscription are skipped.
        """
        while True:
            self._keys_changed.clear()
            consumer = asyncio.create_task(self._consume(self._filters(self._my_public_keys())))
            keys_changed = asyncio.create_task(self._keys_changed.wait())
            try:
                done, _ = await asyncio.wait({consumer, keys_changed}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                consumer.cancel()
                keys_changed.cancel()
                raise
            if consumer in done:
                keys_changed.cancel()
                consumer.result()
                return
            consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await consumer
            logger.debug("Resubscribing with new trade keys", extra={"event": "client.resubscribe"})

    def start(self) -> asyncio.Task:
        """Run the dispatcher in the background."""
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self.run())
        return self._dispatcher

    async def close(self) -> None:
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._dispatcher
            self._dispatcher = None
        self.correlator.cancel_all()
        await self.transport.close()
        logger.info("Mostro client closed", extra={"event": "client.closed"})

    # ===== inbound =====

    def handle_event(self, event: NostrEvent) -> None:
        """Classify one inbound event and apply it."""
        if event.id:
            if event.id in self._processed:
                return
            self._processed[event.id] = None
            if len(self._processed) > PROCESSED_CACHE_SIZE:
                self._processed.popitem(last=False)

        if event.kind == ORDER_KIND:
            self._handle_public_event(event)
        elif event.kind == GIFT_WRAP_KIND:
            self._handle_gift_wrap(event)
        elif event.kind == DIRECT_MESSAGE_KIND:
            self._handle_direct_message(event)

    def _handle_public_event(self, event: NostrEvent) -> None:
        if event.pubkey and event.pubkey != self.mostro_pubkey:
            return
        document = event.first_tag("z")
        if document == INFO_DOCUMENT:
            self._info = decode_info(event.tags)
            self._notify("on_info_update", self._info)
            return
        if document not in (None, ORDER_DOCUMENT):
            return

        try:
            order = decode_order(event.tags, event.created_at, event.id)
        except DecodeError as exc:
            logger.warning(
                "Dropping malformed order event %s: %s",
                event.id,
                exc,
                extra={"event": "client.order_malformed"},
            )
            return

        last_seen = self._order_seen.get(order.id)
        if last_seen is not None and event.created_at < last_seen:
            return
        self._order_seen[order.id] = event.created_at
        self._order_seen.move_to_end(order.id)
        if len(self._order_seen) > ORDER_SEEN_CACHE_SIZE:
            self._order_seen.popitem(last=False)

        if order.status == OrderStatus.PENDING:
            self._active_orders[order.id] = order
        elif self._active_orders.pop(order.id, None) is not None:
            logger.debug(
                "Order %s left the book as %s",
                order.id,
                order.status.value,
                extra={"event": "client.order_evicted", "order_id": order.id},
            )
        self._notify("on_order_update", order, event)

    def _recipient_key(self, event: NostrEvent) -> Optional[str]:
        """Our private key for the first ``p`` tag naming one of our public keys."""
        for recipient in event.tag_values("p"):
            if isinstance(recipient, str):
                private_key = self._find_private_key(recipient)
                if private_key is not None:
                    return private_key
        return None

    def _handle_gift_wrap(self, event: NostrEvent) -> None:
        private_key = self._recipient_key(event)
        if private_key is None:
            return
        unwrapped = unwrap(event, private_key)
        if unwrapped is None:
            return
        if unwrapped.sender != self.mostro_pubkey:
            self._notify("on_peer_message", unwrapped)
            return
        try:
            message = MostroMessage.from_json(unwrapped.rumor.content)
        except DecodeError as exc:
            logger.warning(
                "Dropping undecodable Mostro message %s: %s",
                event.id,
                exc,
                extra={"event": "client.message_malformed"},
            )
            return
        logger.debug(
            "Received %s for request %s",
            message.action.value,
            message.request_id,
            extra={"event": "client.message_received", "order_id": message.id},
        )
        if not self.correlator.dispatch(message):
            self._notify("on_message", message, unwrapped)

    def _handle_direct_message(self, event: NostrEvent) -> None:
        private_key = self._recipient_key(event)
        if private_key is None:
            return
        try:
            text = nip04.decrypt(event.content, private_key, event.pubkey)
        except DecryptionError:
            logger.debug("Could not decrypt direct message %s", event.id)
            return
        self._notify("on_direct_message", event, text)

    # ===== queries =====

    def get_active_orders(self) -> List[Order]:
        return [order for order in self._active_orders.values() if not is_order_expired(order)]

    def get_active_order(self, order_id: str) -> Optional[Order]:
        return self._active_orders.get(order_id)

    def get_info(self) -> Optional[MostroInfo]:
        return self._info

    def get_my_order(self, order_id: str) -> Optional[Order]:
        """An order we made or took, with our side's trade and identity keys filled in."""
        return self._my_orders.get(order_id)

    # ===== outbound =====

    def _track_order(self, order: Order) -> None:
        """Remember an order keyed on our side and listen on its new trade key."""
        self._my_orders[order.id] = order
        self._keys_changed.set()

    async def _request(self, build: Callable[[int], MostroMessage], sender_key: str) -> MostroMessage:
        if not self.transport.is_connected:
            raise TransportError("Transport is not connected", code="NOT_CONNECTED")
        request_id, future = self.correlator.create_pending()
        message = build(request_id)
        try:
            gift_wrap = wrap(message.to_payload(), sender_key, self.mostro_pubkey)
            await self.transport.publish(gift_wrap)
        except MostroError:
            self.correlator.discard(request_id)
            raise
        logger.info(
            "Sent %s request %d",
            message.action.value,
            request_id,
            extra={"event": "client.request_sent", "request_id": request_id, "order_id": message.id},
        )
        return await future

    async def submit_order(self, fields: Union[Order, Mapping[str, Any]]) -> MostroMessage:
        """
        Publish a new order and wait for the daemon's answer.

        Raises:
            ValidationError: If the order is invalid
            CorrelationTimeout: If the daemon does not answer in time
        """
        if self.orders is not None:
            order = self.orders.create_order(fields)
            self._track_order(order)
        else:
            order = prepare_new_order(fields)
            validate_order(order)
        sender_key = self._key_for_order(order.id)
        return await self._request(lambda request_id: new_order_message(order, request_id), sender_key)

    async def _take(self, action: Action, order: Order, amount: Optional[int]) -> MostroMessage:
        if self.orders is not None and self.key_manager.get_trade_key(order.id) is None:
            self._track_order(self.orders.take_order(order))
        trade_index = self._trade_index(order.id)
        return await self._request(
            lambda request_id: take_order_message(action, order.id, request_id, amount, trade_index),
            self._key_for_order(order.id),
        )

    async def take_sell(self, order: Order, amount: Optional[int] = None) -> MostroMessage:
        return await self._take(Action.TAKE_SELL, order, amount)

    async def take_buy(self, order: Order, amount: Optional[int] = None) -> MostroMessage:
        return await self._take(Action.TAKE_BUY, order, amount)

    async def add_invoice(self, order: Order, invoice: str, amount: Optional[int] = None) -> MostroMessage:
        trade_index = self._trade_index(order.id)
        return await self._request(
            lambda request_id: add_invoice_message(order.id, invoice, request_id, amount, trade_index),
            self._key_for_order(order.id),
        )

    async def _order_action(self, action: Action, order: Order) -> MostroMessage:
        trade_index = self._trade_index(order.id)
        return await self._request(
            lambda request_id: order_action_message(action, order.id, request_id, trade_index),
            self._key_for_order(order.id),
        )

    async def release(self, order: Order) -> MostroMessage:
        return await self._order_action(Action.RELEASE, order)

    async def fiat_sent(self, order: Order) -> MostroMessage:
        return await self._order_action(Action.FIAT_SENT, order)

    async def cancel(self, order: Order) -> MostroMessage:
        return await self._order_action(Action.CANCEL, order)

    async def wait_for_action(
        self, action: Action, order_id: Optional[str] = None, timeout: Optional[float] = None
    ) -> MostroMessage:
        return await self.correlator.wait_for_action(action, order_id, timeout)

    # ===== peer messages =====

    @staticmethod
    def _peer_key(peer_pubkey: str) -> str:
        try:
            return normalize_public_key(peer_pubkey)
        except ValueError as exc:
            raise ValidationError("Invalid peer public key", code="INVALID_PUBLIC_KEY") from exc

    async def send_direct_message_to_peer(
        self, message: str, peer_pubkey: str, tags: Optional[Sequence[Sequence[str]]] = None
    ) -> NostrEvent:
        """Send a legacy encrypted direct message (kind 4) from the identity key."""
        peer = self._peer_key(peer_pubkey)
        private_key = self._identity_key()
        event = NostrEvent(
            kind=DIRECT_MESSAGE_KIND,
            content=nip04.encrypt(message, private_key, peer),
            tags=[["p", peer]] + [list(row) for row in tags or []],
        )
        finalize_event(event, private_key)
        await self.transport.publish(event)
        return event

    async def send_private_message(self, message: str, peer_pubkey: str, order_id: str) -> NostrEvent:
        """Gift-wrap ``message`` to a trade counterparty using the order's trade key."""
        peer = self._peer_key(peer_pubkey)
        gift_wrap = wrap(message, self._key_for_order(order_id), peer, tags=[["p", peer]])
        await self.transport.publish(gift_wrap)
        logger.debug(
            "Sent private message for order %s",
            order_id,
            extra={"event": "client.peer_message_sent", "order_id": order_id},
        )
        return gift_wrap
