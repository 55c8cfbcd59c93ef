"""
Mostro protocol messages carried inside gift-wrapped rumors.

Wire shape (rumor content)::

    {"order": {"version": 1, "request_id": 7, "action": "take-sell",
               "id": "<order id>", "content": {...} | null}}

The wrapper key (``order``, ``cant-do``, ``dispute``, ``rate``) is the message
kind; ``request_id`` is declared optional and never inferred.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from mostro.core.config import PROTOCOL_VERSION
from mostro.core.exceptions import DecodeError
from mostro.core.order import Order, order_from_dict, order_to_dict


class Action(str, Enum):
    NEW_ORDER = "new-order"
    TAKE_SELL = "take-sell"
    TAKE_BUY = "take-buy"
    PAY_INVOICE = "pay-invoice"
    ADD_INVOICE = "add-invoice"
    FIAT_SENT = "fiat-sent"
    FIAT_SENT_OK = "fiat-sent-ok"
    RELEASE = "release"
    RELEASED = "released"
    CANCEL = "cancel"
    CANCELED = "canceled"
    COOPERATIVE_CANCEL_INITIATED_BY_YOU = "cooperative-cancel-initiated-by-you"
    COOPERATIVE_CANCEL_INITIATED_BY_PEER = "cooperative-cancel-initiated-by-peer"
    COOPERATIVE_CANCEL_ACCEPTED = "cooperative-cancel-accepted"
    BUYER_INVOICE_ACCEPTED = "buyer-invoice-accepted"
    PURCHASE_COMPLETED = "purchase-completed"
    HOLD_INVOICE_PAYMENT_ACCEPTED = "hold-invoice-payment-accepted"
    HOLD_INVOICE_PAYMENT_SETTLED = "hold-invoice-payment-settled"
    HOLD_INVOICE_PAYMENT_CANCELED = "hold-invoice-payment-canceled"
    WAITING_SELLER_TO_PAY = "waiting-seller-to-pay"
    WAITING_BUYER_INVOICE = "waiting-buyer-invoice"
    BUYER_TOOK_ORDER = "buyer-took-order"
    PAYMENT_FAILED = "payment-failed"
    INVOICE_UPDATED = "invoice-updated"
    CANT_DO = "cant-do"
    SEND_DM = "send-dm"
    TRADE_PUBKEY = "trade-pubkey"


class MessageKind(str, Enum):
    ORDER = "order"
    CANT_DO = "cant-do"
    DISPUTE = "dispute"
    RATE = "rate"


@dataclass
class MostroMessage:
    """One protocol message, outbound action or inbound response."""

    action: Action
    kind: MessageKind = MessageKind.ORDER
    version: int = PROTOCOL_VERSION
    request_id: Optional[int] = None
    trade_index: Optional[int] = None
    id: Optional[str] = None
    content: Any = None

    def to_payload(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"version": self.version}
        if self.request_id is not None:
            body["request_id"] = self.request_id
        if self.trade_index is not None:
            body["trade_index"] = self.trade_index
        body["action"] = self.action.value
        if self.id is not None:
            body["id"] = self.id
        body["content"] = self.content
        return {self.kind.value: body}

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), separators=(",", ":"))

    @classmethod
    def from_payload(cls, data: Any) -> "MostroMessage":
        """
        Parse a decoded rumor content.

        Accepts the bare object or the ``[message, signature]`` pair newer
        daemons send.

        Raises:
            DecodeError: If the shape, wrapper key or action is not recognized
        """
        if isinstance(data, list) and data and isinstance(data[0], dict):
            data = data[0]
        if not isinstance(data, dict) or len(data) != 1:
            raise DecodeError("Message must be an object with one wrapper key")
        wrapper, body = next(iter(data.items()))
        try:
            kind = MessageKind(wrapper)
        except ValueError as exc:
            raise DecodeError(f"Unknown message kind {wrapper!r}") from exc
        if not isinstance(body, dict):
            raise DecodeError("Message body must be an object")
        try:
            action = Action(body.get("action"))
        except ValueError as exc:
            raise DecodeError(f"Unknown action {body.get('action')!r}") from exc

        request_id = body.get("request_id")
        if request_id is not None and (not isinstance(request_id, int) or isinstance(request_id, bool)):
            raise DecodeError("request_id must be an integer")
        trade_index = body.get("trade_index")
        if trade_index is not None and (not isinstance(trade_index, int) or isinstance(trade_index, bool)):
            raise DecodeError("trade_index must be an integer")
        order_id = body.get("id")
        if order_id is not None and not isinstance(order_id, str):
            raise DecodeError("id must be a string")

        return cls(
            action=action,
            kind=kind,
            version=body.get("version", PROTOCOL_VERSION),
            request_id=request_id,
            trade_index=trade_index,
            id=order_id,
            content=body.get("content"),
        )

    @classmethod
    def from_json(cls, text: str) -> "MostroMessage":
        try:
            data = json.loads(text)
        except (TypeError, ValueError) as exc:
            raise DecodeError("Message content is not JSON") from exc
        return cls.from_payload(data)

    def order(self) -> Optional[Order]:
        """The order carried in ``content`` (new-order echoes, listings), if any."""
        if isinstance(self.content, dict) and isinstance(self.content.get("order"), dict):
            return order_from_dict(self.content["order"])
        return None

    def payment_request(self) -> Optional[str]:
        """Invoice carried in ``content.payment_request`` (pay-invoice, add-invoice)."""
        if isinstance(self.content, dict):
            request = self.content.get("payment_request")
            if isinstance(request, list) and len(request) >= 2 and isinstance(request[1], str):
                return request[1]
        return None


# ===== outbound payload builders =====

def new_order_message(order: Order, request_id: Optional[int] = None) -> MostroMessage:
    return MostroMessage(
        action=Action.NEW_ORDER,
        request_id=request_id,
        trade_index=order.trade_index,
        content={"order": order_to_dict(order)},
    )


def take_order_message(
    action: Action,
    order_id: str,
    request_id: Optional[int] = None,
    amount: Optional[int] = None,
    trade_index: Optional[int] = None,
) -> MostroMessage:
    if action not in (Action.TAKE_SELL, Action.TAKE_BUY):
        raise ValueError(f"Not a take action: {action}")
    return MostroMessage(
        action=action,
        request_id=request_id,
        trade_index=trade_index,
        id=order_id,
        content={"amount": amount} if amount is not None else None,
    )


def add_invoice_message(
    order_id: str,
    invoice: str,
    request_id: Optional[int] = None,
    amount: Optional[int] = None,
    trade_index: Optional[int] = None,
) -> MostroMessage:
    return MostroMessage(
        action=Action.ADD_INVOICE,
        request_id=request_id,
        trade_index=trade_index,
        id=order_id,
        content={"payment_request": [None, invoice, amount]},
    )


def order_action_message(
    action: Action,
    order_id: str,
    request_id: Optional[int] = None,
    trade_index: Optional[int] = None,
) -> MostroMessage:
    """Actions whose content is null (release, fiat-sent, cancel)."""
    return MostroMessage(
        action=action,
        request_id=request_id,
        trade_index=trade_index,
        id=order_id,
    )
