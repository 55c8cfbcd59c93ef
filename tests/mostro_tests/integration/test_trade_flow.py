"""
End-to-end trade flow over an in-memory relay.

A simulated Mostro daemon answers gift-wrapped requests and publishes order
listings; two clients (maker and taker) trade through it.
"""

import asyncio
from dataclasses import replace

import pytest
import pytest_asyncio

from mostro.client.mostro import Mostro
from mostro.client.observers import MostroObserver
from mostro.core.exceptions import CorrelationTimeout
from mostro.core.messages import Action, MostroMessage
from mostro.core.order import OrderStatus, encode_order, order_to_dict
from mostro.network.envelope import unwrap, wrap
from mostro.network.events import GIFT_WRAP_KIND, ORDER_KIND, NostrEvent, finalize_event
from mostro.network.transport import MemoryRelay, MemoryTransport
from mostro.security.crypto_utils import derive_public_key_hex, generate_keypair_hex
from mostro.security.key_index_store import MemoryKeyIndexStore
from mostro.security.key_manager import KeyManager

pytestmark = pytest.mark.integration

MAKER_MNEMONIC = "abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon abandon about"
TAKER_MNEMONIC = "legal winner thank year wave sausage worth useful legal winner thank yellow"

SELL_FIELDS = {"kind": "sell", "fiat_code": "USD", "fiat_amount": 50, "payment_method": "BANK", "premium": 2}

REPLIES = {
    Action.TAKE_SELL: Action.ADD_INVOICE,
    Action.TAKE_BUY: Action.PAY_INVOICE,
    Action.ADD_INVOICE: Action.WAITING_SELLER_TO_PAY,
    Action.FIAT_SENT: Action.FIAT_SENT_OK,
    Action.RELEASE: Action.HOLD_INVOICE_PAYMENT_SETTLED,
    Action.CANCEL: Action.CANCELED,
}
STATUS_AFTER = {
    Action.ADD_INVOICE: OrderStatus.ACTIVE,
    Action.CANCEL: OrderStatus.CANCELED,
}


class SimulatedMostro:
    """Answers every request with a canned reply to the seal's author."""

    def __init__(self, relay):
        self.private_key, self.public_key = generate_keypair_hex()
        self.transport = MemoryTransport(relay)
        self.orders = {}
        self.received = []
        self._task = None

    async def start(self):
        await self.transport.connect()
        self._task = asyncio.create_task(self._serve())

    async def stop(self):
        await self.transport.close()
        await asyncio.wait_for(self._task, timeout=1)

    async def _serve(self):
        async for event in self.transport.subscribe([{"kinds": [GIFT_WRAP_KIND], "#p": [self.public_key]}]):
            unwrapped = unwrap(event, self.private_key)
            if unwrapped is None:
                continue
            message = MostroMessage.from_json(unwrapped.rumor.content)
            self.received.append((message, unwrapped.sender))
            await self._handle(message, unwrapped.sender)

    async def _reply(self, recipient, action, request_id, order):
        reply = MostroMessage(action=action, request_id=request_id, id=order.id, content={"order": order_to_dict(order)})
        await self.transport.publish(wrap(reply.to_payload(), self.private_key, recipient))

    async def publish_listing(self, order):
        event = finalize_event(NostrEvent(kind=ORDER_KIND, tags=encode_order(order)), self.private_key)
        await self.transport.publish(event)

    async def _handle(self, message, sender):
        if message.action == Action.NEW_ORDER:
            order = message.order()
            self.orders[order.id] = order
            await self._reply(sender, Action.NEW_ORDER, message.request_id, order)
            await self.publish_listing(order)
            return
        order = self.orders[message.id]
        await self._reply(sender, REPLIES[message.action], message.request_id, order)
        if message.action in STATUS_AFTER:
            order = replace(order, status=STATUS_AFTER[message.action])
            self.orders[order.id] = order
            await self.publish_listing(order)


class Inbox(MostroObserver):
    def __init__(self):
        self.peer_messages = []
        self.direct_messages = []

    def on_peer_message(self, unwrapped):
        self.peer_messages.append(unwrapped.rumor.content)

    def on_direct_message(self, event, text):
        self.direct_messages.append(text)


async def eventually(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached in time"
        await asyncio.sleep(0.01)


def new_key_manager(mnemonic):
    manager = KeyManager(index_store=MemoryKeyIndexStore())
    manager.initialize(mnemonic)
    return manager


@pytest.fixture
def relay():
    return MemoryRelay()


@pytest_asyncio.fixture
async def daemon(relay):
    mostro = SimulatedMostro(relay)
    await mostro.start()
    yield mostro
    await mostro.stop()


async def start_client(relay, daemon, mnemonic, timeout=5.0):
    key_manager = new_key_manager(mnemonic)
    client = Mostro(daemon.public_key, MemoryTransport(relay), key_manager=key_manager, request_timeout=timeout)
    await client.connect()
    client.start()
    return client, key_manager


class TestTradeFlow:
    @pytest.mark.asyncio
    async def test_submit_take_and_add_invoice(self, relay, daemon):
        maker, maker_keys = await start_client(relay, daemon, MAKER_MNEMONIC)
        taker, taker_keys = await start_client(relay, daemon, TAKER_MNEMONIC)
        try:
            created = await maker.submit_order(SELL_FIELDS)
            assert created.action == Action.NEW_ORDER
            order = created.order()
            assert order.status == OrderStatus.PENDING
            maker_trade_public = derive_public_key_hex(maker_keys.get_trade_key(order.id))
            assert order.seller_pubkey == maker_trade_public
            assert order.master_seller_pubkey == maker_keys.identity_public_key

            # the request was sealed by the trade key, never the identity key
            request, sender = daemon.received[0]
            assert sender == maker_trade_public
            assert request.request_id == created.request_id
            assert request.trade_index == 1

            await eventually(lambda: taker.get_active_order(order.id) is not None)
            listed = taker.get_active_order(order.id)

            took = await taker.take_sell(listed, amount=None)
            assert took.action == Action.ADD_INVOICE
            taker_trade_public = derive_public_key_hex(taker_keys.get_trade_key(order.id))
            assert daemon.received[-1][1] == taker_trade_public
            assert taker.get_my_order(order.id).buyer_pubkey == taker_trade_public
            assert taker.get_my_order(order.id).master_buyer_pubkey == taker_keys.identity_public_key
            assert maker.get_my_order(order.id).seller_pubkey == maker_trade_public

            invoiced = await taker.add_invoice(listed, "lnbc500n1test")
            assert invoiced.action == Action.WAITING_SELLER_TO_PAY
            assert daemon.received[-1][0].payment_request() == "lnbc500n1test"

            await eventually(lambda: maker.get_active_order(order.id) is None)
            await eventually(lambda: taker.get_active_order(order.id) is None)

            sent = await taker.fiat_sent(listed)
            assert sent.action == Action.FIAT_SENT_OK
            released = await maker.release(listed)
            assert released.action == Action.HOLD_INVOICE_PAYMENT_SETTLED

            assert maker.correlator.pending_count == 0
            assert taker.correlator.pending_count == 0
        finally:
            await maker.close()
            await taker.close()

    @pytest.mark.asyncio
    async def test_cancel_evicts_listing(self, relay, daemon):
        maker, _ = await start_client(relay, daemon, MAKER_MNEMONIC)
        try:
            order = (await maker.submit_order(SELL_FIELDS)).order()
            await eventually(lambda: maker.get_active_order(order.id) is not None)
            canceled = await maker.cancel(order)
            assert canceled.action == Action.CANCELED
            await eventually(lambda: maker.get_active_order(order.id) is None)
        finally:
            await maker.close()

    @pytest.mark.asyncio
    async def test_peer_chat(self, relay, daemon):
        maker, maker_keys = await start_client(relay, daemon, MAKER_MNEMONIC)
        taker, taker_keys = await start_client(relay, daemon, TAKER_MNEMONIC)
        inbox = Inbox()
        taker.add_observer(inbox)
        try:
            order = (await maker.submit_order(SELL_FIELDS)).order()
            await eventually(lambda: taker.get_active_order(order.id) is not None)
            await taker.take_sell(taker.get_active_order(order.id))

            taker_trade_public = derive_public_key_hex(taker_keys.get_trade_key(order.id))
            await maker.send_private_message("bank details inside", taker_trade_public, order.id)
            await eventually(lambda: inbox.peer_messages == ["bank details inside"])

            await maker.send_direct_message_to_peer("legacy hello", taker_keys.identity_public_key)
            await eventually(lambda: inbox.direct_messages == ["legacy hello"])
        finally:
            await maker.close()
            await taker.close()


class TestUnanswered:
    @pytest.mark.asyncio
    async def test_request_times_out(self, relay):
        _, silent_public = generate_keypair_hex()
        key_manager = new_key_manager(MAKER_MNEMONIC)
        client = Mostro(silent_public, MemoryTransport(relay), key_manager=key_manager, request_timeout=0.2)
        await client.connect()
        client.start()
        try:
            with pytest.raises(CorrelationTimeout):
                await client.submit_order(SELL_FIELDS)
            assert client.correlator.pending_count == 0
        finally:
            await client.close()
