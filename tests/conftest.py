"""
tests/conftest.py — Shared fixtures for the MindLens test suite.

FakeScheduler is a manual clock satisfying the Scheduler protocol, so dwell
and scan timing can be driven deterministically without sleeping.
"""

from __future__ import annotations

import heapq
import itertools
from typing import Any, Callable

import pytest

from mindlens.core.logger import configure_logger

_EPSILON_S = 1e-9


class FakeHandle:
    """Cancellable handle returned by :meth:`FakeScheduler.call_later`."""

    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Heap-ordered timer queue advanced explicitly by the test."""

    def __init__(self) -> None:
        self._now = 0.0
        self._queue: list[tuple[float, int, FakeHandle, Callable[..., Any], tuple]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> FakeHandle:
        handle = FakeHandle()
        heapq.heappush(self._queue, (self._now + delay, next(self._seq), handle, callback, args))
        return handle

    def advance(self, ms: float) -> None:
        """Move the clock forward by *ms*, firing due callbacks in order."""
        target = self._now + ms / 1000.0
        while self._queue and self._queue[0][0] <= target + _EPSILON_S:
            when, _, handle, callback, args = heapq.heappop(self._queue)
            self._now = max(self._now, when)
            if not handle.cancelled:
                callback(*args)
        self._now = target

    @property
    def pending(self) -> int:
        """Number of armed, uncancelled timers."""
        return sum(1 for entry in self._queue if not entry[2].cancelled)


@pytest.fixture()
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture(autouse=True)
def _quiet_session_log(tmp_path):
    """Keep the JSONL session log out of the working tree."""
    log = configure_logger(tmp_path / "logs", enabled=False)
    yield log
    log.close()
