"""Reconciliation orchestration for tracksync.

Provides the reconciliation engine, its run models and the observer
protocol for progress reporting.
"""

from tracksync.orchestrator.events import ReconciliationEventEmitter, ReconciliationObserver
from tracksync.orchestrator.models import (
    ReconciliationFilters,
    ReconciliationSummary,
    RefreshResult,
    RunOutcome,
    RunState,
    WorkItem,
)
from tracksync.orchestrator.reconciliation import (
    ReconciliationEngine,
    open_engine,
    run_reconciliation,
)

__all__ = [
    "ReconciliationEngine",
    "ReconciliationEventEmitter",
    "ReconciliationObserver",
    "ReconciliationFilters",
    "ReconciliationSummary",
    "RefreshResult",
    "RunOutcome",
    "RunState",
    "WorkItem",
    "open_engine",
    "run_reconciliation",
]
