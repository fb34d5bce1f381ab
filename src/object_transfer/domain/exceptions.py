"""Error taxonomy for the transfer engine.

Every failure surfaced by the engine is a ``TransferError``. The subclass
decides how the failure is handled:

    ConfigurationError          fail fast, never retried
      InvalidArgumentError      bad credentials, bucket/key, expiry, options
    TransientTransportError     retried per part with backoff
      PartTimeoutError          per-part deadline exceeded
    NonRetryableRequestError    fails the transfer immediately, triggers abort
      MalformedResponseError    response body did not have the expected shape
    IntegrityError              always fatal, carries expected vs. actual
    CancellationError           caller-initiated stop
    TransferTimeoutError        whole-transfer deadline exceeded
"""

from __future__ import annotations

from typing import Any


class TransferError(Exception):
    """Base class for all transfer engine errors."""

    retryable: bool = False


class ConfigurationError(TransferError):
    """Raised when configuration or caller input is invalid."""


class InvalidArgumentError(ConfigurationError):
    """Raised when a single argument is outside its accepted domain."""


class TransientTransportError(TransferError):
    """Raised for failures that may succeed on retry.

    Covers network resets, timeouts, 5xx responses and explicit
    throttling signals from the store.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class PartTimeoutError(TransientTransportError):
    """Raised when a single part transfer exceeds its deadline."""


class NonRetryableRequestError(TransferError):
    """Raised for request failures that retrying cannot fix (4xx)."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class MalformedResponseError(NonRetryableRequestError):
    """Raised when a response body does not match the expected shape."""


class IntegrityError(TransferError):
    """Raised when transferred data does not match what was expected.

    Attributes:
        kind: What was compared ("size", "md5", "sha256", "part_length").
        expected: Expected value.
        actual: Observed value.
    """

    def __init__(self, kind: str, expected: Any, actual: Any, message: str | None = None) -> None:
        super().__init__(message or f"{kind} mismatch: expected {expected}, got {actual}")
        self.kind = kind
        self.expected = expected
        self.actual = actual


class CancellationError(TransferError):
    """Raised when a transfer was stopped by the caller."""


class TransferTimeoutError(TransferError):
    """Raised when a whole transfer exceeds its deadline."""


__all__ = [
    "TransferError",
    "ConfigurationError",
    "InvalidArgumentError",
    "TransientTransportError",
    "PartTimeoutError",
    "NonRetryableRequestError",
    "MalformedResponseError",
    "IntegrityError",
    "CancellationError",
    "TransferTimeoutError",
]
