"""Shared service-layer error types.

Provides the typed carrier error used by the carrier client and the
reconciliation engine. Centralised here to avoid circular imports between
service modules.
"""

from dataclasses import dataclass
from enum import Enum

from tracksync.errors import TrackSyncError


class ErrorKind(str, Enum):
    """Whether a failed fetch may succeed if attempted again later."""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"


@dataclass
class CarrierError(Exception):
    """Error from the carrier client.

    Attributes:
        code: tracksync error code (E-XXXX format)
        message: Human-readable error message
        kind: Retryable or permanent
        status_code: HTTP status when the carrier answered, else None
    """

    code: str
    message: str
    kind: ErrorKind = ErrorKind.PERMANENT
    status_code: int | None = None

    def __str__(self) -> str:
        """Return formatted error message."""
        return f"[{self.code}] {self.message}"

    @property
    def is_retryable(self) -> bool:
        return self.kind == ErrorKind.RETRYABLE

    @classmethod
    def from_code(
        cls,
        code: str,
        kind: ErrorKind | None = None,
        status_code: int | None = None,
        **kwargs: object,
    ) -> "CarrierError":
        """Build from the registry, defaulting kind to the code's retryability."""
        base = TrackSyncError.from_code(code, status_code=status_code, **kwargs)
        if kind is None:
            kind = ErrorKind.RETRYABLE if base.is_retryable else ErrorKind.PERMANENT
        return cls(code=base.code, message=base.message, kind=kind, status_code=status_code)


@dataclass
class PersistenceError(Exception):
    """Tracking record write failed. Retryable within the current run."""

    order_id: int
    message: str
    code: str = "E-4001"

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"
