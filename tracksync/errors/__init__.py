"""Error handling framework for tracksync.

This package provides:
- Error code registry with E-XXXX format codes
- Error formatting utilities
- Typed domain exceptions

Error categories:
- E-1xxx: Order data errors
- E-3xxx: Carrier API errors
- E-4xxx: System/internal errors
"""

from tracksync.errors.domain import DomainError, NotFoundError, ValidationError
from tracksync.errors.formatter import TrackSyncError, format_error
from tracksync.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    # Formatter
    "TrackSyncError",
    "format_error",
    # Domain
    "DomainError",
    "NotFoundError",
    "ValidationError",
]
