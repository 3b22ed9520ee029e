from .base import Status, ErrorKind, ErrorDetail
from .config import ConfigManager
from .exceptions import (
    WebSpecError,
    ConfigurationError,
    ParseError,
    RegistryError,
    BackendError,
    BackendSessionError,
    ValidationError,
    SchedulingError,
    DebugAborted,
    ComparisonError,
)

__all__ = [
    # Shared types
    "Status",
    "ErrorKind",
    "ErrorDetail",

    # Configuration
    "ConfigManager",

    # Exceptions
    "WebSpecError",
    "ConfigurationError",
    "ParseError",
    "RegistryError",
    "BackendError",
    "BackendSessionError",
    "ValidationError",
    "SchedulingError",
    "DebugAborted",
    "ComparisonError",
]
