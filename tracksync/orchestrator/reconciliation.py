"""Reconciliation engine: keeps tracking records in step with the carrier.

A run selects candidate orders once, then drains a work queue in fixed
size batches. Orders within a batch are fetched concurrently. Retryable
failures go to the tail of the queue for a later pass, so every fresh
order is attempted before any retry. Time and memory budgets are checked
before each batch and each order; breaching one stops the run without
undoing records already written.

Example:
    engine = ReconciliationEngine(config.reconciliation, client, records, orders, selection, limiter)
    summary = await engine.run(SelectionMode.REFRESH)
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

from tracksync.config import ReconciliationConfig, TrackSyncConfig
from tracksync.db.connection import create_db_engine, create_session_factory, init_db
from tracksync.db.models import OrderStatus
from tracksync.errors import TrackSyncError
from tracksync.models import TrackingEvent, TrackingStatus
from tracksync.orchestrator.events import ReconciliationEventEmitter
from tracksync.orchestrator.models import (
    ReconciliationFilters,
    ReconciliationSummary,
    RefreshResult,
    RunOutcome,
    RunState,
    WorkItem,
)
from tracksync.orchestrator.resources import RunBudget, current_memory_bytes, format_bytes
from tracksync.services.carrier_client import CarrierClient
from tracksync.services.errors import CarrierError, PersistenceError
from tracksync.services.order_repository import OrderRepository, OrderSnapshot, SqlOrderRepository
from tracksync.services.rate_limiter import RateLimiter, get_rate_limiter
from tracksync.services.selection import SelectionMode, SelectionQuery
from tracksync.services.status_classifier import classify, merge_sticky
from tracksync.services.tracking_repository import TrackingRepository

logger = logging.getLogger(__name__)

MIN_BATCH_SIZE = 1
MAX_BATCH_SIZE = 200
DELIVERED_NOTE = "Order delivered according to tracking information."


class _ResultKind(str, Enum):
    UPDATED = "updated"
    DEFERRED = "deferred"
    SKIPPED = "skipped"
    PERMANENT = "permanent"
    RETRYABLE = "retryable"


@dataclass
class _ItemResult:
    kind: _ResultKind
    message: str = ""
    status: TrackingStatus | None = None


class ReconciliationEngine:
    """Drives selection, fetching, classification and persistence."""

    def __init__(
        self,
        config: ReconciliationConfig,
        carrier_client: CarrierClient,
        tracking_repository: TrackingRepository,
        order_repository: OrderRepository,
        selection: SelectionQuery,
        rate_limiter: RateLimiter,
        emitter: ReconciliationEventEmitter | None = None,
        classifier: Callable[[Sequence[TrackingEvent]], TrackingStatus] = classify,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        memory_reader: Callable[[], int] = current_memory_bytes,
    ) -> None:
        self._config = config
        self._client = carrier_client
        self._records = tracking_repository
        self._orders = order_repository
        self._selection = selection
        self._rate_limiter = rate_limiter
        self.emitter = emitter or ReconciliationEventEmitter()
        self._classifier = classifier
        self._sleep = sleep
        self._clock = clock
        self._memory_reader = memory_reader
        self._locks: dict[int, asyncio.Lock] = {}
        self.state = RunState.IDLE

    @property
    def batch_size(self) -> int:
        return max(MIN_BATCH_SIZE, min(self._config.batch_size, MAX_BATCH_SIZE))

    def retry_delay(self, retry_pass: int) -> float:
        """Backoff before retry pass n: base * 2**(n-1), capped."""
        delay = self._config.retry_base_delay_seconds * (2 ** (retry_pass - 1))
        return min(delay, self._config.retry_max_delay_seconds)

    def _lock_for(self, order_id: int) -> asyncio.Lock:
        lock = self._locks.get(order_id)
        if lock is None:
            lock = self._locks[order_id] = asyncio.Lock()
        return lock

    async def run(
        self,
        mode: SelectionMode | str = SelectionMode.REFRESH,
        filters: ReconciliationFilters | None = None,
    ) -> ReconciliationSummary:
        """Run one reconciliation pass over the selected orders.

        Args:
            mode: REFRESH for every eligible order, UNFETCHED for orders
                that have never been fetched.
            filters: Optional overrides of the configured selection.

        Returns:
            ReconciliationSummary with counts, outcome and error lines.
        """
        mode = SelectionMode(mode)
        filters = filters or ReconciliationFilters()
        budget = RunBudget.from_config(self._config, clock=self._clock, memory_reader=self._memory_reader)
        summary = ReconciliationSummary(mode=mode.value)

        self.state = RunState.SELECTING
        statuses = filters.statuses or self._config.enabled_statuses
        age_limits = self._config.age_limits(statuses)
        exclude_delivered = (
            self._config.exclude_delivered if filters.exclude_delivered is None else filters.exclude_delivered
        )
        limit = self._config.max_updates_per_run if filters.limit is None else filters.limit

        order_ids = await asyncio.to_thread(
            self._selection.select, statuses, age_limits, exclude_delivered, mode, limit
        )
        summary.selected = len(order_ids)
        logger.info("Reconciliation (%s): %d order(s) selected", mode.value, summary.selected)
        if not order_ids:
            return await self._finish(summary, budget)

        await self.emitter.emit_run_started(mode.value, summary.selected)
        queue: deque[WorkItem] = deque(WorkItem(order_id=order_id) for order_id in order_ids)
        self.state = RunState.BATCH_FETCHING
        current_pass = 0
        batch_number = 0

        while queue:
            head_attempt = queue[0].attempt
            if head_attempt > current_pass:
                current_pass = head_attempt
                self.state = RunState.DRAINING_RETRIES
                delay = self.retry_delay(current_pass)
                logger.info(
                    "Retry pass %d: %d order(s) queued, waiting %.1fs",
                    current_pass,
                    len(queue),
                    delay,
                )
                await self._sleep(delay)

            reason = budget.exceeded()
            if reason:
                self._abort(summary, reason, len(queue))
                break

            batch: list[WorkItem] = []
            while queue and len(batch) < self.batch_size and queue[0].attempt == head_attempt:
                batch.append(queue.popleft())
            batch_number += 1
            logger.info(
                "Batch %d: %d order(s), memory %s",
                batch_number,
                len(batch),
                format_bytes(self._memory_reader()),
            )

            results = await asyncio.gather(*[self._process_item(item, budget) for item in batch])

            deferred = 0
            skipped = 0
            for item, result in zip(batch, results):
                if result.kind is _ResultKind.UPDATED:
                    summary.updated += 1
                elif result.kind is _ResultKind.DEFERRED:
                    deferred += 1
                    queue.append(item)
                elif result.kind is _ResultKind.SKIPPED:
                    skipped += 1
                elif result.kind is _ResultKind.PERMANENT:
                    summary.permanently_failed += 1
                    summary.add_error(item.order_id, result.message)
                elif item.attempt < self._config.max_retry_passes:
                    queue.append(WorkItem(order_id=item.order_id, attempt=item.attempt + 1))
                else:
                    summary.still_retryable_after_max_passes += 1
                    summary.add_error(item.order_id, result.message)

            if skipped:
                summary.skipped += skipped
                self._abort(summary, budget.exceeded() or "run budget exceeded", len(queue))
                break

            if deferred and deferred == len(batch):
                await self._rate_limiter.wait_and_reset()

        return await self._finish(summary, budget)

    def _abort(self, summary: ReconciliationSummary, reason: str, remaining: int) -> None:
        summary.outcome = RunOutcome.ABORTED
        summary.abort_reason = reason
        summary.skipped += remaining
        error = TrackSyncError.from_code("E-4002", details=reason)
        logger.warning("%s; %d order(s) left for the next run", error, summary.skipped)

    async def _finish(self, summary: ReconciliationSummary, budget: RunBudget) -> ReconciliationSummary:
        self.state = RunState.DONE
        if summary.outcome is not RunOutcome.ABORTED and summary.failed:
            summary.outcome = RunOutcome.PARTIAL_FAILURE
        summary.duration_seconds = round(budget.elapsed, 3)
        logger.info(
            "Reconciliation finished (%s): %d selected, %d updated, %d failed, %d skipped in %.2fs",
            summary.outcome.value,
            summary.selected,
            summary.updated,
            summary.failed,
            summary.skipped,
            summary.duration_seconds,
        )
        self._locks.clear()
        await self.emitter.emit_run_finished(summary)
        return summary

    async def _process_item(self, item: WorkItem, budget: RunBudget) -> _ItemResult:
        if budget.exceeded():
            return _ItemResult(_ResultKind.SKIPPED)
        if not self._rate_limiter.allow():
            await self.emitter.emit_order_deferred(item.order_id)
            return _ItemResult(_ResultKind.DEFERRED)

        try:
            status = await self._refresh(item.order_id)
        except CarrierError as e:
            result = _ItemResult(
                _ResultKind.RETRYABLE if e.is_retryable else _ResultKind.PERMANENT, str(e)
            )
        except PersistenceError as e:
            result = _ItemResult(_ResultKind.RETRYABLE, str(e))
        except Exception as e:
            logger.error("Unexpected error reconciling order %d: %s", item.order_id, e)
            result = _ItemResult(_ResultKind.PERMANENT, f"Unexpected error: {e}")
        else:
            await self.emitter.emit_order_updated(item.order_id, status)
            return _ItemResult(_ResultKind.UPDATED, status=status)

        logger.warning(
            "Order %d failed (%s, attempt %d): %s",
            item.order_id,
            result.kind.value,
            item.attempt,
            result.message,
        )
        await self.emitter.emit_order_failed(
            item.order_id, result.message, result.kind is _ResultKind.RETRYABLE
        )
        return result

    async def _load_order(self, order_id: int) -> OrderSnapshot:
        order = await asyncio.to_thread(self._orders.get_order, order_id)
        if order is None:
            raise CarrierError.from_code("E-1002", order_id=order_id)
        if not (order.tracking_number or "").strip():
            raise CarrierError.from_code("E-1001", order_id=order_id)
        return order

    async def _refresh(self, order_id: int) -> TrackingStatus:
        """Fetch, classify and store one order. Returns the stored status."""
        order = await self._load_order(order_id)
        tracking_number = order.tracking_number.strip()
        feed = await self._client.fetch(tracking_number)
        classified = self._classifier(feed.events)

        async with self._lock_for(order_id):
            previous = await asyncio.to_thread(self._records.get_status, order_id)
            status = merge_sticky(previous, classified)
            await asyncio.to_thread(self._records.upsert, order_id, tracking_number, feed, status)

        if status is TrackingStatus.DELIVERED:
            await self._auto_complete(order)
        return status

    async def _auto_complete(self, order: OrderSnapshot) -> None:
        if not self._config.auto_complete_delivered or order.status == OrderStatus.completed.value:
            return
        try:
            await asyncio.to_thread(
                self._orders.mark_status, order.id, OrderStatus.completed.value, DELIVERED_NOTE
            )
        except Exception as e:
            logger.warning("Could not mark order %d completed: %s", order.id, e)

    async def refresh_order(self, order_id: int) -> RefreshResult:
        """Refresh one order immediately, waiting out the rate limit if needed.

        Args:
            order_id: Order to refresh.

        Returns:
            RefreshResult with a success flag and a message for the caller.
        """
        if not self._rate_limiter.allow():
            await self._rate_limiter.wait_and_reset()
            self._rate_limiter.allow()
        try:
            status = await self._refresh(order_id)
        except (CarrierError, PersistenceError) as e:
            logger.warning("Refresh of order %d failed: %s", order_id, e)
            return RefreshResult(success=False, message=str(e))
        return RefreshResult(
            success=True,
            message=f"Tracking updated for order {order_id}: {status.value}",
            status=status,
        )

    async def on_order_entered_processing(self, order_id: int) -> RefreshResult:
        """Entry point for the order store when an order moves to processing."""
        logger.info("Order %d entered processing, refreshing tracking", order_id)
        return await self.refresh_order(order_id)


@asynccontextmanager
async def open_engine(
    config: TrackSyncConfig,
    emitter: ReconciliationEventEmitter | None = None,
    order_repository: OrderRepository | None = None,
    rate_limiter: RateLimiter | None = None,
) -> AsyncIterator[ReconciliationEngine]:
    """Wire the default SQL-backed collaborators around an engine.

    Without an explicit rate_limiter the process-wide limiter for the
    configured window is used. The carrier connection pool and the
    database engine are closed when the context exits.
    """
    db_engine = create_db_engine(config.database)
    init_db(db_engine)
    session_factory = create_session_factory(db_engine)
    try:
        async with CarrierClient(config.carrier) as client:
            yield ReconciliationEngine(
                config=config.reconciliation,
                carrier_client=client,
                tracking_repository=TrackingRepository(session_factory),
                order_repository=order_repository or SqlOrderRepository(session_factory),
                selection=SelectionQuery(session_factory),
                rate_limiter=rate_limiter or get_rate_limiter(config.rate_limit),
                emitter=emitter,
            )
    finally:
        db_engine.dispose()


async def run_reconciliation(
    config: TrackSyncConfig,
    mode: SelectionMode | str = SelectionMode.REFRESH,
    filters: ReconciliationFilters | None = None,
    emitter: ReconciliationEventEmitter | None = None,
) -> ReconciliationSummary:
    """Scheduler entry point: one run with the default collaborators."""
    async with open_engine(config, emitter=emitter) as engine:
        return await engine.run(mode, filters)
