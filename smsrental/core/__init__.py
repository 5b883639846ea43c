"""Core domain models, settings, logging configuration, and shared utilities."""

from smsrental.core.exceptions import (
    AlreadyTerminalError,
    ConfigError,
    DuplicateAssignmentError,
    FailureKind,
    OrchestratorError,
    ParseFailureError,
    ProviderError,
    ProviderRateLimitError,
    ProviderRejectedError,
    ProviderUnavailableError,
    RelayExhaustedError,
    RentalNotFoundError,
    RentalStateError,
    SmsRentalError,
    StorageError,
)
from smsrental.core.logging_config import JsonFormatter, configure_logging
from smsrental.core.models import (
    Message,
    MessageSource,
    ProviderKind,
    RawMessage,
    Rental,
    RentalSpec,
    RentalStatus,
)
from smsrental.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "Message",
    "MessageSource",
    "ProviderKind",
    "RawMessage",
    "Rental",
    "RentalSpec",
    "RentalStatus",
    # Settings
    "Settings",
    # Exceptions
    "FailureKind",
    "SmsRentalError",
    "ConfigError",
    "StorageError",
    "RentalNotFoundError",
    "RentalStateError",
    "AlreadyTerminalError",
    "DuplicateAssignmentError",
    "ProviderError",
    "ProviderUnavailableError",
    "ProviderRateLimitError",
    "ProviderRejectedError",
    "RelayExhaustedError",
    "ParseFailureError",
    "OrchestratorError",
]
