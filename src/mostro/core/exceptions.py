"""
Mostro client exception hierarchy.

Provides typed exceptions for key management, order handling, envelope
processing and request correlation so callers can tell "the protocol rejected
this" apart from "no response was observed".
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class MostroError(Exception):
    """Base exception for all Mostro client errors.

    Attributes:
        message: Human-readable error description
        code: Stable machine-readable error code
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    code: str = "MOSTRO_ERROR"
    recoverable: bool = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}
        if recoverable is not None:
            self.recoverable = recoverable


# ==================== Configuration Errors ====================


class ConfigurationError(MostroError):
    """Raised when an operation needs state that has not been configured.

    Codes: NOT_INITIALIZED, ALREADY_INITIALIZED, INVALID_CONFIG.
    """
    code = "INVALID_CONFIG"


# ==================== Validation Errors ====================


class ValidationError(MostroError):
    """Raised when order fields fail validation rules."""
    code = "VALIDATION_FAILED"


# ==================== Key Errors ====================


class KeyDerivationError(MostroError):
    """Raised when a seed is invalid or a key cannot be derived.

    Codes: INVALID_SEED, DERIVATION_FAILED, INDEX_EXHAUSTED, INVALID_INDEX,
    TRADE_KEY_EXISTS, PUBLIC_KEY_GENERATION_FAILED.
    """
    code = "DERIVATION_FAILED"


# ==================== Crypto Errors ====================


class CryptoError(MostroError):
    """Raised when a cryptographic primitive fails."""
    code = "CRYPTO_FAILED"


class DecryptionError(CryptoError):
    """Raised when a ciphertext cannot be authenticated or decrypted."""
    code = "DECRYPTION_FAILED"


# ==================== Inbound Data Errors ====================


class DecodeError(MostroError):
    """Raised when an inbound event or message is malformed.

    Never fatal: the dispatcher logs and drops the offending event.
    """
    code = "DECODE_FAILED"


# ==================== Correlation & Transport Errors ====================


class CorrelationTimeout(MostroError):
    """Raised to an awaiting caller when no matching response arrived in time."""
    code = "CORRELATION_TIMEOUT"
    recoverable = True

    def __init__(
        self,
        message: str,
        request_id: Optional[int] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.request_id = request_id
        self.timeout = timeout


class TransportError(MostroError):
    """Raised when publishing or subscribing is not possible."""
    code = "TRANSPORT_FAILED"
    recoverable = True


# ==================== Utility Functions ====================


def is_recoverable_error(exc: Exception) -> bool:
    """Check if an exception represents a recoverable error.

    Args:
        exc: The exception to check

    Returns:
        True if the error is recoverable and the operation can be retried
    """
    if isinstance(exc, MostroError):
        return exc.recoverable

    recoverable_types = (
        ConnectionError,
        TimeoutError,
        OSError,
    )
    return isinstance(exc, recoverable_types)


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, MostroError):
        context["code"] = exc.code
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, CorrelationTimeout) and exc.request_id is not None:
        context["request_id"] = exc.request_id

    return context
