"""
Local order preparation.

Each order this client makes or takes gets its own trade key; the order
carries that key's public half (and the identity key's) on our side only.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Mapping, Union

from mostro.core.exceptions import DecodeError, ValidationError
from mostro.core.order import Order, OrderType, prepare_new_order
from mostro.core.validation import validate_order
from mostro.security.key_manager import KeyManager

logger = logging.getLogger(__name__)


def _with_side_keys(order: Order, side: OrderType, trade_public: str, identity_public: str) -> Order:
    if side == OrderType.BUY:
        return replace(order, buyer_pubkey=trade_public, master_buyer_pubkey=identity_public)
    return replace(order, seller_pubkey=trade_public, master_seller_pubkey=identity_public)


class OrderManager:
    def __init__(self, key_manager: KeyManager) -> None:
        self.key_manager = key_manager

    def _issue_trade_key(self, order_id: str):
        private_key = self.key_manager.generate_trade_key(order_id)
        record = self.key_manager.get_trade_key_record(order_id)
        return record, KeyManager.get_public_key_from_private(private_key)

    def create_order(self, fields: Union[Order, Mapping[str, Any]]) -> Order:
        """
        Prepare, validate and key a new order we are making.

        Raises:
            ConfigurationError: If the key manager is not initialized
            ValidationError: If the order fields are invalid
            KeyDerivationError: If no trade key can be issued
        """
        identity_public = self.key_manager.identity_public_key
        try:
            order = prepare_new_order(fields)
        except DecodeError as exc:
            raise ValidationError(str(exc), code="INVALID_ORDER") from exc
        validate_order(order)

        record, trade_public = self._issue_trade_key(order.id)
        order = replace(order, trade_index=record.key_index)
        logger.info(
            "Prepared %s order %s",
            order.kind.value,
            order.id,
            extra={"event": "orders.created", "order_id": order.id, "trade_index": record.key_index},
        )
        return _with_side_keys(order, order.kind, trade_public, identity_public)

    def take_order(self, order: Order) -> Order:
        """
        Key an existing order for taking; we fill the side opposite its maker.

        Raises:
            ConfigurationError: If the key manager is not initialized
            KeyDerivationError: If we already hold a trade key for this order
        """
        identity_public = self.key_manager.identity_public_key
        record, trade_public = self._issue_trade_key(order.id)
        taker_side = OrderType.BUY if order.kind == OrderType.SELL else OrderType.SELL
        logger.info(
            "Taking order %s as %s",
            order.id,
            taker_side.value,
            extra={"event": "orders.taken", "order_id": order.id, "trade_index": record.key_index},
        )
        return replace(
            _with_side_keys(order, taker_side, trade_public, identity_public),
            trade_index=record.key_index,
        )
