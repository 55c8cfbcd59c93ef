"""
Mostro client configuration.

All values come from ``MOSTRO_*`` environment variables with safe defaults.
Private keys and mnemonics are never read from here; they are handed to the
KeyManager explicitly by the caller.
"""

from __future__ import annotations

import logging
import os
from typing import List

from mostro.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def _get_float(env_var: str, default: float) -> float:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "Ignoring non-numeric %s=%r, using default %s",
            env_var,
            raw,
            default,
            extra={"event": "config.invalid_number", "env_var": env_var},
        )
        return default


def _get_int(env_var: str, default: int) -> int:
    return int(_get_float(env_var, float(default)))


def _get_list(env_var: str) -> List[str]:
    return [item.strip() for item in os.getenv(env_var, "").split(",") if item.strip()]


# Mostro daemon identity (hex or npub) and relays to reach it
MOSTRO_PUBKEY = os.getenv("MOSTRO_PUBKEY", "").strip()
RELAYS = _get_list("MOSTRO_RELAYS")

# Seconds a state-changing call waits for its response
REQUEST_TIMEOUT = _get_float("MOSTRO_REQUEST_TIMEOUT", 30.0)

# Order listings expire this many seconds after publication
ORDER_EXPIRATION_SECONDS = _get_int("MOSTRO_ORDER_EXPIRATION_SECONDS", 24 * 60 * 60)

# Gift wrap / seal timestamps are pushed back by up to this many seconds
GIFT_WRAP_TIME_WINDOW = _get_int("MOSTRO_GIFT_WRAP_TIME_WINDOW", 2 * 24 * 60 * 60)

# Subscriptions replay events newer than now - lookback
SUBSCRIPTION_LOOKBACK = _get_int("MOSTRO_SUBSCRIPTION_LOOKBACK", 2 * 24 * 60 * 60)

# Optional JSON file persisting the next trade key index
KEY_INDEX_STORE = os.getenv("MOSTRO_KEY_INDEX_STORE", "").strip()

RELAY_MAX_RETRIES = _get_int("MOSTRO_RELAY_MAX_RETRIES", 5)
RELAY_RETRY_DELAY = _get_float("MOSTRO_RELAY_RETRY_DELAY", 2.0)

LOG_LEVEL = os.getenv("MOSTRO_LOG_LEVEL", "INFO").strip().upper() or "INFO"
LOG_FILE = os.getenv("MOSTRO_LOG_FILE", "").strip()

PROTOCOL_VERSION = 1


class Config:
    """Namespace view of the module settings, overridable per instance in tests."""

    MOSTRO_PUBKEY = MOSTRO_PUBKEY
    RELAYS = RELAYS
    REQUEST_TIMEOUT = REQUEST_TIMEOUT
    ORDER_EXPIRATION_SECONDS = ORDER_EXPIRATION_SECONDS
    GIFT_WRAP_TIME_WINDOW = GIFT_WRAP_TIME_WINDOW
    SUBSCRIPTION_LOOKBACK = SUBSCRIPTION_LOOKBACK
    KEY_INDEX_STORE = KEY_INDEX_STORE
    RELAY_MAX_RETRIES = RELAY_MAX_RETRIES
    RELAY_RETRY_DELAY = RELAY_RETRY_DELAY
    LOG_LEVEL = LOG_LEVEL
    LOG_FILE = LOG_FILE
    PROTOCOL_VERSION = PROTOCOL_VERSION

    @classmethod
    def validate(cls) -> None:
        """Check settings for values no client can run with.

        Raises:
            ConfigurationError: If a setting is out of range
        """
        if cls.REQUEST_TIMEOUT <= 0:
            raise ConfigurationError(
                "MOSTRO_REQUEST_TIMEOUT must be positive",
                code="INVALID_CONFIG",
                details={"request_timeout": cls.REQUEST_TIMEOUT},
            )
        if cls.ORDER_EXPIRATION_SECONDS <= 0:
            raise ConfigurationError(
                "MOSTRO_ORDER_EXPIRATION_SECONDS must be positive",
                code="INVALID_CONFIG",
            )
        if cls.GIFT_WRAP_TIME_WINDOW < 0:
            raise ConfigurationError(
                "MOSTRO_GIFT_WRAP_TIME_WINDOW cannot be negative",
                code="INVALID_CONFIG",
            )
        for relay in cls.RELAYS:
            if not relay.startswith(("ws://", "wss://")):
                raise ConfigurationError(
                    f"Relay URL must use ws:// or wss://: {relay}",
                    code="INVALID_CONFIG",
                )
        if cls.LOG_LEVEL not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigurationError(f"Unknown log level: {cls.LOG_LEVEL}", code="INVALID_CONFIG")
