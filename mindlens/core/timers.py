"""
mindlens/core/timers.py — Timer scheduling seam shared by the selection engines.

Engines never sleep. They arm one-shot callbacks through a :class:`Scheduler`,
which the running asyncio event loop satisfies as-is (``call_later`` and
``time``). Tests pass a manual clock instead.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional, Protocol, runtime_checkable


@runtime_checkable
class TimerHandle(Protocol):
    """Handle returned by :meth:`Scheduler.call_later`."""

    def cancel(self) -> None:
        """Prevent the callback from running if it has not run yet."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """Minimal timer interface required by the dwell and scan engines."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        """Run *callback* after *delay* seconds."""
        ...

    def time(self) -> float:
        """Return the scheduler's monotonic clock in seconds."""
        ...


class SchedulerMixin:
    """
    Lazily binds an engine to a :class:`Scheduler`.

    Engines may be constructed outside a running loop; the loop is looked up
    on first use when no scheduler was injected.
    """

    _scheduler: Optional[Scheduler] = None

    @property
    def scheduler(self) -> Scheduler:
        if self._scheduler is None:
            self._scheduler = asyncio.get_running_loop()
        return self._scheduler

    def _now_ms(self) -> float:
        return self.scheduler.time() * 1000.0

    def _arm(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        return self.scheduler.call_later(delay_ms / 1000.0, callback)
