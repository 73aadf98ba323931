"""Typed domain exceptions.

Raised by the service layer for input problems that fail fast and are
never retried: unknown orders and invalid arguments.

Usage:
    raise NotFoundError("Order", order_id)
"""


class DomainError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found."""

    def __init__(self, resource_type: str, identifier: object) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ValidationError(DomainError):
    """Validation failure."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
