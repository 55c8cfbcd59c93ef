"""
Tests for Mostro protocol messages and daemon info decoding.
"""

import json

import pytest

from mostro.core.exceptions import DecodeError
from mostro.core.info import decode_info
from mostro.core.messages import (
    Action,
    MessageKind,
    MostroMessage,
    add_invoice_message,
    new_order_message,
    order_action_message,
    take_order_message,
)
from mostro.core.order import Order, OrderStatus, OrderType


class TestOutboundPayloads:
    def test_new_order_payload(self):
        order = Order(id="o1", kind=OrderType.SELL, status=OrderStatus.PENDING, fiat_code="USD", trade_index=3)
        payload = new_order_message(order, request_id=7).to_payload()
        body = payload["order"]
        assert body["version"] == 1
        assert body["request_id"] == 7
        assert body["trade_index"] == 3
        assert body["action"] == "new-order"
        assert body["content"]["order"]["kind"] == "sell"
        assert body["content"]["order"]["fiat_code"] == "USD"

    def test_take_with_and_without_amount(self):
        with_amount = take_order_message(Action.TAKE_SELL, "o1", request_id=1, amount=500).to_payload()
        assert with_amount["order"]["content"] == {"amount": 500}
        assert with_amount["order"]["id"] == "o1"
        without = take_order_message(Action.TAKE_BUY, "o1", request_id=2).to_payload()
        assert without["order"]["content"] is None

    def test_take_rejects_other_actions(self):
        with pytest.raises(ValueError):
            take_order_message(Action.RELEASE, "o1")

    def test_add_invoice_content(self):
        payload = add_invoice_message("o1", "lnbc1...", request_id=4).to_payload()
        assert payload["order"]["content"] == {"payment_request": [None, "lnbc1...", None]}

    @pytest.mark.parametrize("action", [Action.RELEASE, Action.FIAT_SENT, Action.CANCEL])
    def test_null_content_actions(self, action):
        payload = order_action_message(action, "o1", request_id=9).to_payload()
        assert payload["order"]["action"] == action.value
        assert payload["order"]["content"] is None

    def test_request_id_omitted_when_absent(self):
        assert "request_id" not in order_action_message(Action.RELEASE, "o1").to_payload()["order"]


class TestInboundMessages:
    def test_parse_response(self):
        text = json.dumps({"order": {"version": 1, "request_id": 7, "action": "pay-invoice", "id": "o1",
                                     "content": {"payment_request": [None, "lnbc1", 1000]}}})
        message = MostroMessage.from_json(text)
        assert message.action == Action.PAY_INVOICE
        assert message.kind == MessageKind.ORDER
        assert message.request_id == 7
        assert message.payment_request() == "lnbc1"

    def test_signed_pair_form(self):
        message = MostroMessage.from_payload([{"cant-do": {"action": "cant-do", "content": None}}, "sig"])
        assert message.kind == MessageKind.CANT_DO
        assert message.request_id is None

    def test_order_content(self):
        message = MostroMessage.from_payload(
            {"order": {"action": "new-order", "content": {"order": {"id": "o1", "kind": "buy", "status": "pending"}}}}
        )
        assert message.order().kind == OrderType.BUY

    def test_round_trip_through_json(self):
        original = take_order_message(Action.TAKE_SELL, "o1", request_id=3, amount=10, trade_index=2)
        assert MostroMessage.from_json(original.to_json()) == original

    @pytest.mark.parametrize(
        "data",
        [
            "not json",
            "[]",
            '{"order": {"action": "teleport"}}',
            '{"gossip": {"action": "release"}}',
            '{"order": {"action": "release", "request_id": "7"}}',
            '{"order": {"action": "release", "request_id": true}}',
            '{"order": {"action": "release", "trade_index": true}}',
            '{"order": "release"}',
            '{"order": {"action": "release"}, "rate": {}}',
        ],
    )
    def test_malformed_messages(self, data):
        with pytest.raises(DecodeError):
            MostroMessage.from_json(data)


class TestInfo:
    def test_decode_info(self):
        info = decode_info(
            [
                ["mostro_pubkey", "ab" * 32],
                ["mostro_version", "0.12.8"],
                ["max_order_amount", "1000000"],
                ["fee", "0.006"],
                ["expiration_hours", "soon"],
                ["y", "mostro"],
            ]
        )
        assert info.mostro_version == "0.12.8"
        assert info.max_order_amount == 1000000
        assert info.fee == pytest.approx(0.006)
        assert info.expiration_hours == 0
        assert info.expiration_seconds == 900
