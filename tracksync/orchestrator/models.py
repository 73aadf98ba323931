"""Data models for reconciliation runs.

Defines the run state machine, filters, queued work items and the
structured summary returned to the CLI and scheduler.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

from tracksync.models import TrackingStatus


class RunState(str, Enum):
    """Lifecycle of one run.

    Lifecycle: idle -> selecting -> batch_fetching -> draining_retries -> done
    """

    IDLE = "idle"
    SELECTING = "selecting"
    BATCH_FETCHING = "batch_fetching"
    DRAINING_RETRIES = "draining_retries"
    DONE = "done"


class RunOutcome(str, Enum):
    """How a finished run ended."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    ABORTED = "aborted"


@dataclass
class ReconciliationFilters:
    """Per-invocation overrides of the configured selection.

    None leaves the configured value in place.
    """

    statuses: list[str] | None = None
    limit: int | None = None
    exclude_delivered: bool | None = None


@dataclass
class WorkItem:
    """One queued order. attempt is 0 for fresh work, n for retry pass n."""

    order_id: int
    attempt: int = 0


@dataclass
class ReconciliationSummary:
    """Structured result of one run, intended for logs and CLI output."""

    mode: str
    selected: int = 0
    updated: int = 0
    permanently_failed: int = 0
    still_retryable_after_max_passes: int = 0
    skipped: int = 0
    outcome: RunOutcome = RunOutcome.SUCCESS
    abort_reason: str | None = None
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def failed(self) -> int:
        return self.permanently_failed + self.still_retryable_after_max_passes

    def add_error(self, order_id: int, message: str) -> None:
        self.errors.append(f"order {order_id}: {message}")

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["outcome"] = self.outcome.value
        return data


@dataclass
class RefreshResult:
    """Outcome of a synchronous single-order refresh."""

    success: bool
    message: str
    status: TrackingStatus | None = None
