"""Tests for run budgets and run models."""

import os
import sys

import pytest

from tracksync.config import ReconciliationConfig
from tracksync.orchestrator.models import ReconciliationSummary, RunOutcome
from tracksync.orchestrator import resources
from tracksync.orchestrator.resources import RunBudget, current_memory_bytes, format_bytes

MB = 1024 * 1024


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestRunBudget:
    """RunBudget.exceeded()."""

    def test_within_budget(self):
        budget = RunBudget(25, 256 * MB, clock=FakeClock(), memory_reader=lambda: 10 * MB)
        assert budget.exceeded() is None

    def test_time_limit(self):
        clock = FakeClock(100.0)
        budget = RunBudget(25, 256 * MB, clock=clock, memory_reader=lambda: 0)
        clock.now = 125.0
        assert budget.elapsed == 25.0
        assert budget.exceeded() == "time limit of 25s reached after 25.0s"

    def test_memory_threshold(self):
        budget = RunBudget(25, 100 * MB, 0.9, clock=FakeClock(), memory_reader=lambda: 90 * MB)
        assert budget.exceeded() == "memory usage 90.0 MB reached 90% of 100.0 MB"

    def test_below_memory_threshold(self):
        budget = RunBudget(25, 100 * MB, 0.9, clock=FakeClock(), memory_reader=lambda: 89 * MB)
        assert budget.exceeded() is None

    def test_memory_recovers_after_release(self):
        readings = iter([95 * MB, 40 * MB])
        budget = RunBudget(25, 100 * MB, 0.9, clock=FakeClock(), memory_reader=lambda: next(readings))

        assert budget.exceeded() is not None
        assert budget.exceeded() is None

    def test_from_config(self):
        config = ReconciliationConfig(time_limit_seconds=300, memory_limit_mb=512, memory_threshold=0.8)
        budget = RunBudget.from_config(config, clock=FakeClock(), memory_reader=lambda: 0)
        assert budget.time_limit_seconds == 300
        assert budget.memory_limit_bytes == 512 * MB
        assert budget.memory_threshold == 0.8


def test_format_bytes():
    assert format_bytes(256 * MB) == "256.0 MB"
    assert format_bytes(0) == "0.0 MB"


@pytest.mark.skipif(sys.platform == "win32", reason="resource module is POSIX only")
def test_current_memory_bytes_is_positive():
    assert current_memory_bytes() > 0


@pytest.mark.skipif(sys.platform == "win32", reason="resource module is POSIX only")
def test_current_memory_bytes_reads_resident_pages(tmp_path, monkeypatch):
    statm = tmp_path / "statm"
    statm.write_text("1000 250 30 5 0 120 0\n")
    monkeypatch.setattr(resources, "_STATM_PATH", statm)

    assert current_memory_bytes() == 250 * os.sysconf("SC_PAGE_SIZE")


@pytest.mark.skipif(sys.platform == "win32", reason="resource module is POSIX only")
def test_current_memory_bytes_without_statm_uses_peak(tmp_path, monkeypatch):
    monkeypatch.setattr(resources, "_STATM_PATH", tmp_path / "missing")

    assert current_memory_bytes() > 0


class TestSummary:
    """ReconciliationSummary."""

    def test_failed_counts_both_kinds(self):
        summary = ReconciliationSummary(mode="refresh", permanently_failed=2, still_retryable_after_max_passes=1)
        assert summary.failed == 3

    def test_to_dict(self):
        summary = ReconciliationSummary(mode="unfetched", selected=4, updated=3, outcome=RunOutcome.PARTIAL_FAILURE)
        summary.add_error(9, "[E-3003] Carrier API returned HTTP 404.")

        data = summary.to_dict()

        assert data["outcome"] == "partial_failure"
        assert data["errors"] == ["order 9: [E-3003] Carrier API returned HTTP 404."]
        assert data["selected"] == 4
