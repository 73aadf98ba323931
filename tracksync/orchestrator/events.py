"""Observer pattern for reconciliation run events.

Provides the ReconciliationObserver protocol and ReconciliationEventEmitter
for reporting run progress to the CLI or other listeners.
"""

import logging
from typing import Protocol

from tracksync.models import TrackingStatus
from tracksync.orchestrator.models import ReconciliationSummary

logger = logging.getLogger(__name__)


class ReconciliationObserver(Protocol):
    """Observer protocol for reconciliation lifecycle events."""

    async def on_run_started(self, mode: str, selected: int) -> None:
        """Called once candidates are selected.

        Args:
            mode: Selection mode of the run.
            selected: Number of candidate orders.
        """
        ...

    async def on_order_updated(self, order_id: int, status: TrackingStatus) -> None:
        """Called after an order's tracking record is stored."""
        ...

    async def on_order_failed(self, order_id: int, message: str, retryable: bool) -> None:
        """Called when a fetch or write fails.

        Args:
            order_id: Order that failed.
            message: Human-readable error description.
            retryable: True when the order was queued for another pass.
        """
        ...

    async def on_order_deferred(self, order_id: int) -> None:
        """Called when the rate limiter pushes an order to the queue tail."""
        ...

    async def on_run_finished(self, summary: ReconciliationSummary) -> None:
        """Called with the final summary."""
        ...


class ReconciliationEventEmitter:
    """Emits run events to registered observers.

    Exceptions from individual observers are caught and logged so one
    broken observer cannot stop the run or starve the others.
    """

    def __init__(self) -> None:
        self._observers: list[ReconciliationObserver] = []

    def add_observer(self, observer: ReconciliationObserver) -> None:
        self._observers.append(observer)

    def remove_observer(self, observer: ReconciliationObserver) -> None:
        self._observers.remove(observer)

    async def _emit(self, hook: str, *args: object) -> None:
        for observer in self._observers:
            callback = getattr(observer, hook, None)
            if callback is None:
                continue
            try:
                await callback(*args)
            except Exception as e:
                logger.error(
                    "Observer %s failed %s: %s",
                    type(observer).__name__,
                    hook,
                    e,
                )

    async def emit_run_started(self, mode: str, selected: int) -> None:
        await self._emit("on_run_started", mode, selected)

    async def emit_order_updated(self, order_id: int, status: TrackingStatus) -> None:
        await self._emit("on_order_updated", order_id, status)

    async def emit_order_failed(self, order_id: int, message: str, retryable: bool) -> None:
        await self._emit("on_order_failed", order_id, message, retryable)

    async def emit_order_deferred(self, order_id: int) -> None:
        await self._emit("on_order_deferred", order_id)

    async def emit_run_finished(self, summary: ReconciliationSummary) -> None:
        await self._emit("on_run_finished", summary)
