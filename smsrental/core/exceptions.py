"""smsrental exception taxonomy.

Every custom exception inherits from :class:`SmsRentalError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    SmsRentalError
    ├── ConfigError
    ├── StorageError
    │   └── RentalNotFoundError
    ├── RentalStateError
    │   ├── AlreadyTerminalError
    │   └── DuplicateAssignmentError
    ├── ProviderError
    │   ├── ProviderUnavailableError
    │   │   └── ProviderRateLimitError
    │   ├── ProviderRejectedError
    │   ├── RelayExhaustedError
    │   └── ParseFailureError
    └── OrchestratorError

Each class carries a :class:`FailureKind` tag and a ``retryable`` flag.  The
sync orchestrator converts provider errors into tagged
:class:`~smsrental.orchestrator.sync.SyncResult` values using these two
attributes, and the HTTP layer maps them onto status codes.

Usage:

    from smsrental.core.exceptions import ProviderUnavailableError

    raise ProviderUnavailableError("anosim", "Connection refused") from exc
"""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import ClassVar

__all__ = [
    "FailureKind",
    "SmsRentalError",
    # Config
    "ConfigError",
    # Storage
    "StorageError",
    "RentalNotFoundError",
    # Rental state
    "RentalStateError",
    "AlreadyTerminalError",
    "DuplicateAssignmentError",
    # Provider
    "ProviderError",
    "ProviderUnavailableError",
    "ProviderRateLimitError",
    "ProviderRejectedError",
    "RelayExhaustedError",
    "ParseFailureError",
    # Orchestrator
    "OrchestratorError",
]

logger = logging.getLogger(__name__)


class FailureKind(StrEnum):
    """Stable machine-readable tag attached to every error class."""

    INTERNAL = "internal"
    CONFIG = "config"
    STORAGE = "storage"
    NOT_FOUND = "not_found"
    ALREADY_TERMINAL = "already_terminal"
    DUPLICATE_ASSIGNMENT = "duplicate_assignment"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"
    REJECTED = "rejected"
    RELAY_EXHAUSTED = "relay_exhausted"
    PARSE_FAILURE = "parse_failure"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class SmsRentalError(Exception):
    """Root exception for all smsrental errors.

    Catch this to handle any application-level error uniformly.  Prefer
    catching layer-specific subclasses wherever possible.
    """

    kind: ClassVar[FailureKind] = FailureKind.INTERNAL
    retryable: ClassVar[bool] = False


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(SmsRentalError):
    """Raised when the application configuration is invalid or incomplete.

    Examples:
        - A provider is requested but its API key is not set.
        - The relay list for the scrape provider is empty.
    """

    kind = FailureKind.CONFIG


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(SmsRentalError):
    """Raised when a database or persistence operation fails."""

    kind = FailureKind.STORAGE


class RentalNotFoundError(StorageError):
    """Raised when a rental id does not exist in the registry.

    Args:
        rental_id: The identifier that was looked up.
    """

    kind = FailureKind.NOT_FOUND

    def __init__(self, rental_id: str) -> None:
        self.rental_id = rental_id
        super().__init__(f"Rental not found: {rental_id!r}")


# ---------------------------------------------------------------------------
# Rental state machine
# ---------------------------------------------------------------------------


class RentalStateError(SmsRentalError):
    """Base class for rejected lifecycle transitions."""


class AlreadyTerminalError(RentalStateError):
    """Raised when a transition is attempted out of ``expired``/``cancelled``.

    Args:
        rental_id: The rental the transition targeted.
        status: The terminal status the rental is in.
        action: Short verb describing the rejected operation.
    """

    kind = FailureKind.ALREADY_TERMINAL

    def __init__(self, rental_id: str, status: str, action: str) -> None:
        self.rental_id = rental_id
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} rental {rental_id!r}: already {status}")


class DuplicateAssignmentError(RentalStateError):
    """Raised when assigning a rental that already has a different assignee.

    Args:
        rental_id: The rental being assigned.
        current: The existing assignee.
    """

    kind = FailureKind.DUPLICATE_ASSIGNMENT

    def __init__(self, rental_id: str, current: str) -> None:
        self.rental_id = rental_id
        self.current = current
        super().__init__(
            f"Rental {rental_id!r} is already assigned to {current!r}; "
            "pass force=True to reassign"
        )


# ---------------------------------------------------------------------------
# Provider layer
# ---------------------------------------------------------------------------


class ProviderError(SmsRentalError):
    """Base class for all provider-level errors.

    Args:
        provider: Short name of the provider (e.g. ``"anosim"``).
        message: Human-readable error description.
    """

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        self.detail = message
        super().__init__(f"[{provider}] {message}")


class ProviderUnavailableError(ProviderError):
    """Raised on transport failures, timeouts and transient 5xx responses.

    Retrying later is expected to succeed.
    """

    kind = FailureKind.UNAVAILABLE
    retryable = True


class ProviderRateLimitError(ProviderUnavailableError):
    """Raised when a provider answers HTTP 429 or an equivalent signal.

    Args:
        provider: Short name of the provider.
        retry_after: Recommended back-off interval in seconds, if known.
    """

    kind = FailureKind.RATE_LIMITED

    def __init__(self, provider: str, retry_after: float | None = None) -> None:
        self.retry_after = retry_after
        detail = f"retry after {retry_after}s" if retry_after is not None else "no retry hint"
        super().__init__(provider, f"Rate limited, {detail}")


class ProviderRejectedError(ProviderError):
    """Raised when a provider declines a request for a business reason.

    The provider's own message is kept verbatim in :attr:`detail`; an optional
    canonical :attr:`hint` explains it in product terms.

    Args:
        provider: Short name of the provider.
        message: Verbatim provider message or error code.
        hint: Optional human-readable explanation.
    """

    kind = FailureKind.REJECTED

    def __init__(self, provider: str, message: str, hint: str | None = None) -> None:
        self.hint = hint
        super().__init__(provider, message)


class RelayExhaustedError(ProviderError):
    """Raised when every configured scrape relay failed for one fetch.

    Args:
        provider: Short name of the scrape provider.
        attempts: ``(relay, reason)`` pairs in the order they were tried.
    """

    kind = FailureKind.RELAY_EXHAUSTED
    retryable = True

    def __init__(self, provider: str, attempts: list[tuple[str, str]]) -> None:
        self.attempts = attempts
        summary = "; ".join(f"{relay}: {reason}" for relay, reason in attempts)
        super().__init__(provider, f"All {len(attempts)} relay(s) failed ({summary})")


class ParseFailureError(ProviderError):
    """Raised when a provider response has an unrecognised structure.

    Not retried automatically: a markup or schema change will not fix itself.

    Args:
        provider: Short name of the provider.
        message: What could not be parsed.
        snippet: Leading part of the raw payload, for the logs.
    """

    kind = FailureKind.PARSE_FAILURE

    def __init__(self, provider: str, message: str, snippet: str = "") -> None:
        self.snippet = snippet
        super().__init__(provider, message)


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class OrchestratorError(SmsRentalError):
    """Raised for errors originating in the sync or scheduling layer.

    Examples:
        - No adapter is registered for a rental's provider.
        - The scheduler fails to start.
    """
