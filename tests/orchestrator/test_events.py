"""Tests for the reconciliation event emitter."""

import logging
from unittest.mock import AsyncMock

from tracksync.models import TrackingStatus
from tracksync.orchestrator.events import ReconciliationEventEmitter
from tracksync.orchestrator.models import ReconciliationSummary


class TestEmitter:
    """ReconciliationEventEmitter."""

    async def test_notifies_all_observers(self):
        first, second = AsyncMock(), AsyncMock()
        emitter = ReconciliationEventEmitter()
        emitter.add_observer(first)
        emitter.add_observer(second)

        await emitter.emit_order_updated(5, TrackingStatus.SENT)

        first.on_order_updated.assert_awaited_once_with(5, TrackingStatus.SENT)
        second.on_order_updated.assert_awaited_once_with(5, TrackingStatus.SENT)

    async def test_removed_observer_is_silent(self):
        observer = AsyncMock()
        emitter = ReconciliationEventEmitter()
        emitter.add_observer(observer)
        emitter.remove_observer(observer)

        await emitter.emit_run_started("refresh", 3)

        observer.on_run_started.assert_not_awaited()

    async def test_failing_observer_is_logged(self, caplog):
        broken, healthy = AsyncMock(), AsyncMock()
        broken.on_order_failed.side_effect = RuntimeError("boom")
        emitter = ReconciliationEventEmitter()
        emitter.add_observer(broken)
        emitter.add_observer(healthy)

        with caplog.at_level(logging.ERROR):
            await emitter.emit_order_failed(1, "HTTP 503", True)

        healthy.on_order_failed.assert_awaited_once_with(1, "HTTP 503", True)
        assert "on_order_failed" in caplog.text
        assert "boom" in caplog.text

    async def test_partial_observer(self):
        class OnlyFinished:
            def __init__(self):
                self.summaries = []

            async def on_run_finished(self, summary):
                self.summaries.append(summary)

        observer = OnlyFinished()
        emitter = ReconciliationEventEmitter()
        emitter.add_observer(observer)
        summary = ReconciliationSummary(mode="refresh")

        await emitter.emit_order_deferred(1)
        await emitter.emit_run_finished(summary)

        assert observer.summaries == [summary]
