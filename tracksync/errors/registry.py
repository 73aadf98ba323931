"""Error code registry with E-XXXX format codes.

This module defines the error code system for tracksync, organizing errors
into categories:
- E-1xxx: Order data errors
- E-3xxx: Carrier API errors
- E-4xxx: System/internal errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    DATA = "data"  # E-1xxx: Order data errors
    CARRIER = "carrier"  # E-3xxx: Carrier API errors
    SYSTEM = "system"  # E-4xxx: System/internal errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action the operator should take to resolve.
        is_retryable: Whether the operation can be retried without operator action.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Data errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.DATA,
        title="Missing Tracking Number",
        message_template="No tracking number available for order {order_id}.",
        remediation="Set a tracking number on the order before requesting a refresh.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.DATA,
        title="Order Not Found",
        message_template="Order {order_id} does not exist.",
        remediation="Check the order id and retry.",
    ),
    # Carrier errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.CARRIER,
        title="Carrier Unreachable",
        message_template="Could not reach the carrier API: {details}",
        remediation="Check network connectivity. The order will be retried on the next pass.",
        is_retryable=True,
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.CARRIER,
        title="Carrier Rate Limited",
        message_template="Carrier API rate limit reached (HTTP {status_code}).",
        remediation="Lower rate_limit.max_requests or wait before retrying.",
        is_retryable=True,
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.CARRIER,
        title="Carrier HTTP Error",
        message_template="Carrier API returned HTTP {status_code}.",
        remediation="Server-side errors are retried automatically; client errors need the tracking number checked.",
    ),
    "E-3004": ErrorCode(
        code="E-3004",
        category=ErrorCategory.CARRIER,
        title="Invalid Carrier JSON",
        message_template="Carrier API returned a body that is not valid JSON: {details}",
        remediation=(
            "Usually a truncated response or a proxy error page. "
            "Retried automatically; contact the carrier if it persists."
        ),
        is_retryable=True,
    ),
    "E-3005": ErrorCode(
        code="E-3005",
        category=ErrorCategory.CARRIER,
        title="Invalid Carrier Response",
        message_template="Carrier API response is missing the events list.",
        remediation="The carrier feed structure changed. Contact the carrier if it persists.",
    ),
    # System errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.SYSTEM,
        title="Database Error",
        message_template="Database operation failed: {details}",
        remediation="Retry the operation. Check the database file and permissions if the issue persists.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.SYSTEM,
        title="Run Budget Exceeded",
        message_template="Run stopped early: {details}",
        remediation="Remaining orders are picked up by the next run. Raise the time or memory limit for bulk jobs.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)
