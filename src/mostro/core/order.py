"""
Mostro orders and their tag-based wire format.

Order listings are replaceable events (kind 38383) addressed by a ``d`` tag.
Every field travels as one short-key tag row:

    d=id  k=kind  f=fiat_code  s=status  amt=amount  pm=payment_method
    premium  fa=fiat_amount (one value) or min,max (two values = range)
    expiration=absolute unix time
"""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from mostro.core import config
from mostro.core.exceptions import DecodeError
from mostro.security.crypto_utils import generate_id


ORDER_EXPIRATION_TIME = config.ORDER_EXPIRATION_SECONDS
NETWORK = "mainnet"
LAYER = "lightning"
ORDER_DOCUMENT = "order"


class OrderType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    WAITING_BUYER_INVOICE = "waiting-buyer-invoice"
    WAITING_PAYMENT = "waiting-payment"
    FIAT_SENT = "fiat-sent"
    DISPUTE = "dispute"
    SETTLED_HOLD_INVOICE = "settled-hold-invoice"
    SUCCESS = "success"
    EXPIRED = "expired"
    CANCELED = "canceled"
    CANCELED_BY_ADMIN = "canceled-by-admin"
    SETTLED_BY_ADMIN = "settled-by-admin"
    COMPLETED_BY_ADMIN = "completed-by-admin"


@dataclass
class Order:
    """A Mostro order as seen by this client."""

    id: str = ""
    kind: Optional[OrderType] = None
    status: Optional[OrderStatus] = None
    amount: int = 0
    fiat_code: str = ""
    fiat_amount: int = 0
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    payment_method: str = ""
    premium: int = 0
    created_at: int = 0
    expires_at: int = 0
    buyer_pubkey: Optional[str] = None
    seller_pubkey: Optional[str] = None
    master_buyer_pubkey: Optional[str] = None
    master_seller_pubkey: Optional[str] = None
    trade_index: Optional[int] = None
    buyer_invoice: Optional[str] = None
    event_id: Optional[str] = None


# ===== predicates =====

def is_range_order(order: Order) -> bool:
    return order.min_amount is not None and order.max_amount is not None


def is_market_price_order(order: Order) -> bool:
    return order.amount == 0 and not is_range_order(order)


def is_order_expired(order: Order, now: Optional[int] = None) -> bool:
    """True once ``expires_at`` has passed; orders without an expiration never expire."""
    if order.expires_at <= 0:
        return False
    now = int(time.time()) if now is None else now
    return order.expires_at < now


# ===== tag codec =====

def encode_order(order: Order, now: Optional[int] = None) -> List[List[str]]:
    """
    Build the tag rows for an order listing.

    The expiration row is always recomputed as ``now + ORDER_EXPIRATION_TIME``.
    """
    now = int(time.time()) if now is None else now
    tags: List[List[str]] = []
    if order.id:
        tags.append(["d", order.id])
    if order.kind is not None:
        tags.append(["k", OrderType(order.kind).value])
    if order.fiat_code:
        tags.append(["f", order.fiat_code])
    if order.status is not None:
        tags.append(["s", OrderStatus(order.status).value])
    tags.append(["amt", str(order.amount)])
    if is_range_order(order):
        tags.append(["fa", str(order.min_amount), str(order.max_amount)])
    else:
        tags.append(["fa", str(order.fiat_amount)])
    if order.payment_method:
        tags.append(["pm", order.payment_method])
    tags.append(["premium", str(order.premium)])
    tags.append(["network", NETWORK])
    tags.append(["layer", LAYER])
    tags.append(["z", ORDER_DOCUMENT])
    tags.append(["expiration", str(now + ORDER_EXPIRATION_TIME)])
    return tags


def _to_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _well_formed_rows(tags: Iterable[Any]) -> Dict[str, List[str]]:
    """Map tag key -> values, dropping rows of the wrong arity or type."""
    rows: Dict[str, List[str]] = {}
    for row in tags:
        if not isinstance(row, (list, tuple)) or not all(isinstance(item, str) for item in row):
            continue
        key = row[0] if row else None
        allowed = (2, 3) if key == "fa" else (2,)
        if len(row) not in allowed:
            continue
        rows[key] = list(row[1:])
    return rows


def decode_order(
    tags: Sequence[Sequence[str]],
    created_at: int,
    event_id: Optional[str] = None,
) -> Order:
    """
    Rebuild an Order from listing tags.

    Numeric fields that fail to parse become 0 instead of failing the decode.

    Raises:
        DecodeError: If the identifier, kind or status is missing, or
            kind/status are unknown
    """
    rows = _well_formed_rows(tags)
    order_id = rows.get("d", [""])[0]
    if not order_id:
        raise DecodeError("Order event has no identifier tag", details={"event_id": event_id})
    missing = [key for key in ("k", "s") if key not in rows]
    if missing:
        raise DecodeError(
            f"Order event lacks {', '.join(missing)} tag",
            details={"order_id": order_id, "event_id": event_id},
        )

    order = Order(id=order_id, created_at=created_at, event_id=event_id)
    try:
        order.kind = OrderType(rows["k"][0])
        order.status = OrderStatus(rows["s"][0])
    except ValueError as exc:
        raise DecodeError(f"Unknown order kind or status: {exc}", details={"order_id": order_id}) from exc

    order.fiat_code = rows.get("f", [""])[0]
    order.payment_method = rows.get("pm", [""])[0]
    if "amt" in rows:
        order.amount = _to_int(rows["amt"][0])
    if "premium" in rows:
        order.premium = _to_int(rows["premium"][0])
    if "expiration" in rows:
        order.expires_at = _to_int(rows["expiration"][0])

    fiat = rows.get("fa")
    if fiat:
        if len(fiat) == 1 and "," in fiat[0]:
            fiat = fiat[0].split(",", 1)
        if len(fiat) == 2:
            order.min_amount = _to_int(fiat[0])
            order.max_amount = _to_int(fiat[1])
            order.fiat_amount = 0
        else:
            order.fiat_amount = _to_int(fiat[0])
    return order


# ===== new orders and JSON payloads =====

_ENUM_FIELDS = {"kind": OrderType, "status": OrderStatus}
_ORDER_FIELDS = {f.name for f in fields(Order)}


def order_from_dict(data: Mapping[str, Any]) -> Order:
    """
    Build an Order from a JSON object, ignoring unknown keys.

    Raises:
        DecodeError: If ``data`` is not an object or holds unknown enum values
    """
    if not isinstance(data, Mapping):
        raise DecodeError("Order payload must be an object")
    values = {key: value for key, value in data.items() if key in _ORDER_FIELDS}
    # Mostro uses ``type`` in some payloads where listings use ``kind``
    if "kind" not in values and "type" in data:
        values["kind"] = data["type"]
    try:
        for key, enum_cls in _ENUM_FIELDS.items():
            if values.get(key) is not None:
                values[key] = enum_cls(values[key])
    except ValueError as exc:
        raise DecodeError(f"Invalid order payload: {exc}") from exc
    return Order(**values)


def order_to_dict(order: Order) -> Dict[str, Any]:
    """JSON-ready dict of the order, without unset optionals or local metadata."""
    data: Dict[str, Any] = {}
    for key, value in asdict(order).items():
        if value is None or key == "event_id":
            continue
        data[key] = value.value if isinstance(value, Enum) else value
    return data


def prepare_new_order(
    new_order: Union[Order, Mapping[str, Any]],
    now: Optional[int] = None,
) -> Order:
    """
    Fill in what a locally created order needs before it is submitted.

    Assigns a fresh id when none is given, forces status pending and sets
    ``expires_at = created_at + ORDER_EXPIRATION_TIME``.
    """
    order = new_order if isinstance(new_order, Order) else order_from_dict(new_order)
    created_at = order.created_at or (int(time.time()) if now is None else now)
    return replace(
        order,
        id=order.id or generate_id(),
        kind=order.kind or OrderType.BUY,
        status=OrderStatus.PENDING,
        created_at=created_at,
        expires_at=created_at + ORDER_EXPIRATION_TIME,
    )
