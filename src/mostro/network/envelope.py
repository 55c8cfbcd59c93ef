"""
Gift wrap envelopes (NIP-59).

    Rumor     unsigned payload event, authored by the real sender
    Seal      kind 13, rumor encrypted sender -> recipient, signed by the sender
    GiftWrap  kind 1059, seal encrypted throwaway -> recipient, signed by a
              one-time key, tagged only with the recipient

Relays and observers only ever see the throwaway key and a timestamp pushed
into the past, never the real sender or send time.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from mostro.core import config
from mostro.core.exceptions import CryptoError, MostroError
from mostro.network.events import (
    GIFT_WRAP_KIND,
    RUMOR_KIND,
    SEAL_KIND,
    NostrEvent,
    compute_event_id,
    finalize_event,
    verify_event,
)
from mostro.security import nip44
from mostro.security.crypto_utils import (
    derive_public_key_hex,
    generate_private_key_hex,
    normalize_public_key,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UnwrappedMessage:
    gift_wrap: NostrEvent
    seal: NostrEvent
    rumor: NostrEvent

    @property
    def sender(self) -> str:
        """The real author, as signed in the seal."""
        return self.seal.pubkey


def random_past_timestamp(now: Optional[int] = None, window: Optional[int] = None) -> int:
    """``now`` minus a uniform offset in ``[0, window)`` seconds."""
    now = int(time.time()) if now is None else now
    window = config.GIFT_WRAP_TIME_WINDOW if window is None else window
    return now - secrets.randbelow(window) if window > 0 else now


def _serialize_payload(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def create_rumor(
    payload: Any,
    sender_key: str,
    kind: int = RUMOR_KIND,
    tags: Optional[Sequence[Sequence[str]]] = None,
) -> NostrEvent:
    rumor = NostrEvent(
        kind=kind,
        content=_serialize_payload(payload),
        tags=[list(row) for row in tags or []],
        created_at=int(time.time()),
        pubkey=derive_public_key_hex(sender_key),
    )
    rumor.id = compute_event_id(rumor)
    return rumor


def create_seal(rumor: NostrEvent, sender_key: str, recipient_pubkey: str) -> NostrEvent:
    seal = NostrEvent(
        kind=SEAL_KIND,
        content=nip44.encrypt_message(rumor.to_json(), sender_key, recipient_pubkey),
        tags=[],
        created_at=random_past_timestamp(),
    )
    return finalize_event(seal, sender_key)


def create_gift_wrap(seal: NostrEvent, recipient_pubkey: str) -> NostrEvent:
    # The throwaway key lives only for this call and is never returned.
    throwaway_key = generate_private_key_hex()
    gift_wrap = NostrEvent(
        kind=GIFT_WRAP_KIND,
        content=nip44.encrypt_message(seal.to_json(), throwaway_key, recipient_pubkey),
        tags=[["p", recipient_pubkey]],
        created_at=random_past_timestamp(),
    )
    return finalize_event(gift_wrap, throwaway_key)


def wrap(
    payload: Any,
    sender_key: str,
    recipient_pubkey: str,
    kind: int = RUMOR_KIND,
    tags: Optional[Sequence[Sequence[str]]] = None,
) -> NostrEvent:
    """
    Wrap ``payload`` for ``recipient_pubkey``.

    Args:
        payload: Text, or any JSON-serializable object
        sender_key: Hex private key of the real sender (identity or trade key)
        recipient_pubkey: Hex or npub public key of the recipient
        kind: Rumor kind
        tags: Rumor tags

    Raises:
        CryptoError: If a key is malformed or the payload cannot be encrypted
    """
    try:
        recipient = normalize_public_key(recipient_pubkey)
        rumor = create_rumor(payload, sender_key, kind=kind, tags=tags)
        seal = create_seal(rumor, sender_key, recipient)
        return create_gift_wrap(seal, recipient)
    except ValueError as exc:
        raise CryptoError("Cannot wrap message", code="INVALID_KEY", details={"reason": str(exc)}) from exc


def unwrap(gift_wrap: NostrEvent, recipient_key: str) -> Optional[UnwrappedMessage]:
    """
    Open a gift wrap with ``recipient_key``.

    Returns ``None`` whenever either layer cannot be opened or fails its
    checks: a wrap addressed to someone else is an expected outcome.
    """
    if gift_wrap.kind != GIFT_WRAP_KIND:
        return None
    try:
        if not verify_event(gift_wrap):
            raise CryptoError("Gift wrap signature is invalid")
        seal = NostrEvent.from_json(nip44.decrypt_message(gift_wrap.content, recipient_key, gift_wrap.pubkey))
        if seal.kind != SEAL_KIND or not verify_event(seal):
            raise CryptoError("Seal is not a valid signed kind 13 event")
        rumor = NostrEvent.from_json(nip44.decrypt_message(seal.content, recipient_key, seal.pubkey))
        if rumor.pubkey != seal.pubkey:
            raise CryptoError("Rumor author does not match seal signer")
        if rumor.id != compute_event_id(rumor):
            raise CryptoError("Rumor id does not match its content")
    except (MostroError, ValueError) as exc:
        logger.debug(
            "Could not unwrap gift wrap %s: %s",
            gift_wrap.id,
            type(exc).__name__,
            extra={"event": "envelope.unwrap_failed"},
        )
        return None
    return UnwrappedMessage(gift_wrap=gift_wrap, seal=seal, rumor=rumor)
