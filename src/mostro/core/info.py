"""Mostro daemon info events (``z=info`` listings)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable


@dataclass
class MostroInfo:
    """Parameters a Mostro daemon announces about itself."""

    mostro_pubkey: str = ""
    mostro_version: str = ""
    mostro_commit_id: str = ""
    max_order_amount: int = 0
    min_order_amount: int = 0
    expiration_hours: int = 24
    expiration_seconds: int = 900
    fee: float = 0.0
    hold_invoice_expiration_window: int = 120
    invoice_expiration_window: int = 120


_INT_FIELDS = (
    "max_order_amount",
    "min_order_amount",
    "expiration_hours",
    "expiration_seconds",
    "hold_invoice_expiration_window",
    "invoice_expiration_window",
)
_TEXT_FIELDS = ("mostro_pubkey", "mostro_version", "mostro_commit_id")


def decode_info(tags: Iterable[Any]) -> MostroInfo:
    """
    Read an info event's tags.

    Absent tags keep their defaults; numeric tags that fail to parse become 0.
    """
    values = {}
    for row in tags:
        if isinstance(row, (list, tuple)) and len(row) >= 2 and isinstance(row[0], str):
            values[row[0]] = row[1]

    info = MostroInfo()
    for name in _TEXT_FIELDS:
        if name in values:
            setattr(info, name, str(values[name]))
    for name in _INT_FIELDS:
        if name in values:
            try:
                setattr(info, name, int(values[name]))
            except (TypeError, ValueError):
                setattr(info, name, 0)
    if "fee" in values:
        try:
            info.fee = float(values["fee"])
        except (TypeError, ValueError):
            info.fee = 0.0
    return info
