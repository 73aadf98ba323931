"""Run-level time and memory budgets.

Budgets are cooperative: the engine checks them between work units and
stops starting new work once one is exceeded.
"""

import logging
import os
import sys
import time
from collections.abc import Callable
from pathlib import Path

from tracksync.config import ReconciliationConfig

logger = logging.getLogger(__name__)

_STATM_PATH = Path("/proc/self/statm")


def current_memory_bytes() -> int:
    """Current resident set size of this process in bytes, 0 if unavailable.

    Reads /proc/self/statm where it exists. Elsewhere falls back to the
    peak RSS from getrusage, which never goes down during a process.
    """
    if sys.platform == "win32":
        return 0
    try:
        resident_pages = int(_STATM_PATH.read_text().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (OSError, IndexError, ValueError) as e:
        logger.debug("Current RSS unavailable (%s), using peak RSS", e)
    import resource

    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS bytes
    return usage if sys.platform == "darwin" else usage * 1024


def format_bytes(value: int) -> str:
    return f"{value / (1024 * 1024):.1f} MB"


class RunBudget:
    """Wall time and memory limits for one run."""

    def __init__(
        self,
        time_limit_seconds: float,
        memory_limit_bytes: int,
        memory_threshold: float = 0.9,
        clock: Callable[[], float] = time.monotonic,
        memory_reader: Callable[[], int] = current_memory_bytes,
    ) -> None:
        self.time_limit_seconds = time_limit_seconds
        self.memory_limit_bytes = memory_limit_bytes
        self.memory_threshold = memory_threshold
        self._clock = clock
        self._memory_reader = memory_reader
        self._started = clock()

    @classmethod
    def from_config(
        cls,
        config: ReconciliationConfig,
        clock: Callable[[], float] = time.monotonic,
        memory_reader: Callable[[], int] = current_memory_bytes,
    ) -> "RunBudget":
        return cls(
            time_limit_seconds=config.time_limit_seconds,
            memory_limit_bytes=config.memory_limit_mb * 1024 * 1024,
            memory_threshold=config.memory_threshold,
            clock=clock,
            memory_reader=memory_reader,
        )

    @property
    def elapsed(self) -> float:
        return self._clock() - self._started

    def exceeded(self) -> str | None:
        """Return why the run must stop, or None while within budget."""
        elapsed = self.elapsed
        if elapsed >= self.time_limit_seconds:
            return f"time limit of {self.time_limit_seconds:g}s reached after {elapsed:.1f}s"
        used = self._memory_reader()
        threshold = int(self.memory_limit_bytes * self.memory_threshold)
        if used >= threshold:
            return (
                f"memory usage {format_bytes(used)} reached "
                f"{self.memory_threshold:.0%} of {format_bytes(self.memory_limit_bytes)}"
            )
        return None
