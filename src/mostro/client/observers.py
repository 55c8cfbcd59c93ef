"""Notifications a ``Mostro`` client delivers to its observers."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mostro.core.info import MostroInfo
    from mostro.core.messages import MostroMessage
    from mostro.core.order import Order
    from mostro.network.envelope import UnwrappedMessage
    from mostro.network.events import NostrEvent


class MostroObserver:
    """
    Base class for client observers. Override what you need; every hook is a no-op.

    Hooks run on the dispatcher, one event at a time, and should return quickly.
    """

    def on_ready(self) -> None:
        pass

    def on_order_update(self, order: "Order", event: "NostrEvent") -> None:
        pass

    def on_info_update(self, info: "MostroInfo") -> None:
        pass

    def on_message(self, message: "MostroMessage", unwrapped: "UnwrappedMessage") -> None:
        """A daemon message no pending request claimed."""

    def on_peer_message(self, unwrapped: "UnwrappedMessage") -> None:
        """A gift-wrapped message from someone other than the daemon."""

    def on_direct_message(self, event: "NostrEvent", text: str) -> None:
        """A legacy encrypted direct message."""
