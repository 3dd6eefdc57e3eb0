"""Error taxonomy shared by the reconciliation engine and its adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime


class SyncError(RuntimeError):
    """Base class for reconciliation failures."""


class ValidationError(SyncError, ValueError):
    """Raised for malformed input before anything is mutated."""


class FieldTypeError(ValidationError):
    """Raised when a value cannot be coerced to its declared field type."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class TransientUpstreamError(SyncError):
    """Timeout, 5xx or network failure that survived transport-level retries."""


class UpstreamError(SyncError):
    """An external system rejected or failed a mutation."""


class RateLimitSignal(SyncError):
    """A single rate-limit response from the secondary service."""


class PausedError(SyncError):
    """Base for conditions that pause a run until ``next_run_at``."""

    def __init__(self, message: str, *, next_run_at: datetime | None = None) -> None:
        super().__init__(message)
        self.next_run_at = next_run_at


class RateLimitError(PausedError):
    """Rate limiting persisted after the governor exhausted its retries."""


class QuotaExhaustedError(PausedError):
    """The secondary service's call quota for the current window is used up."""


class FatalConfigError(SyncError):
    """Missing credentials or an unusable dependency; aborts the whole invocation."""


class AuthenticationError(FatalConfigError):
    """The secondary service rejected the configured credentials."""


class NotFoundError(SyncError, LookupError):
    """Raised when a referenced record does not exist or is not in the expected state."""


class PermissionDeniedError(SyncError):
    """Raised when the caller is not allowed to perform an operation."""
