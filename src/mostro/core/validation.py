"""
Order field validation.

Every failure raises ValidationError with a stable ``code`` so callers can
react without parsing messages.
"""

from __future__ import annotations

import re

from mostro.core.exceptions import ValidationError
from mostro.core.order import Order, OrderType, is_range_order
from mostro.security.crypto_utils import private_key_bytes

_HEX_64 = re.compile(r"^[0-9a-fA-F]{64}$")


def is_valid_public_key(public_key: str) -> bool:
    """Hex string of 32 bytes."""
    return isinstance(public_key, str) and bool(_HEX_64.match(public_key))


def is_valid_private_key(private_key: str) -> bool:
    """Hex string of 32 bytes encoding a scalar in [1, n-1]."""
    try:
        private_key_bytes(private_key)
    except (ValueError, TypeError):
        return False
    return True


def validate_amount_constraints(order: Order) -> None:
    if order.amount < 0:
        raise ValidationError("Order amount cannot be negative", code="NEGATIVE_AMOUNT")
    if is_range_order(order):
        if order.min_amount < 0 or order.max_amount < 0:
            raise ValidationError("Range amounts cannot be negative", code="NEGATIVE_RANGE")
        if order.min_amount >= order.max_amount:
            raise ValidationError("Minimum amount must be less than maximum amount", code="INVALID_RANGE")
        if order.amount != 0 or order.fiat_amount != 0:
            raise ValidationError(
                "Range orders must have amount and fiat amount set to 0",
                code="INVALID_AMOUNT_FOR_RANGE",
            )
    elif order.min_amount is not None or order.max_amount is not None:
        raise ValidationError("Range orders need both minimum and maximum amounts", code="INVALID_RANGE")


def validate_market_price_order(order: Order) -> None:
    if order.amount == 0 and not is_range_order(order):
        if order.premium == 0 and order.fiat_amount == 0:
            raise ValidationError(
                "Market price orders must specify either premium or fiat amount",
                code="INVALID_MARKET_PRICE",
            )


def validate_order(order: Order) -> None:
    """
    Validate an order before it is submitted.

    Raises:
        ValidationError: On the first rule the order breaks
    """
    if order.kind is None or order.kind not in (OrderType.BUY, OrderType.SELL):
        raise ValidationError("Order kind must be buy or sell", code="INVALID_ORDER_KIND")

    if not order.fiat_code or not isinstance(order.fiat_code, str):
        raise ValidationError("Order must have a valid fiat_code", code="INVALID_FIAT_CODE")

    if not order.payment_method or not isinstance(order.payment_method, str):
        raise ValidationError("Order must have a valid payment_method", code="INVALID_PAYMENT_METHOD")

    if not 0 <= order.premium <= 100:
        raise ValidationError("Order premium must be between 0 and 100", code="INVALID_PREMIUM")

    validate_amount_constraints(order)
    validate_market_price_order(order)
