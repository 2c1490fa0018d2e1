"""
mindlens/selection/scan.py — Switch-scanning highlight driver.

Advances a highlighted index through N items at a fixed interval. Confirming
the highlighted item is driven externally by the session orchestrator.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional

from mindlens.core.config import require_positive_ms
from mindlens.core.constants import MindLensConstants as C
from mindlens.core.timers import Scheduler, SchedulerMixin, TimerHandle

logger = logging.getLogger(__name__)


class ScanEngine(SchedulerMixin):
    """
    Recurring-timer index cycler.

    The timer only runs while the engine is started, not paused and has at
    least one item. Whenever it is suspended, ``current_index`` stays frozen.
    :meth:`reset` is the only way back to index 0 short of :meth:`stop`.

    Args:
        on_tick: Called with the new index after every advance.
        scheduler: Timer source; defaults to the running asyncio loop.
    """

    def __init__(
        self,
        on_tick: Optional[Callable[[int], None]] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        self._on_tick = on_tick
        self._scheduler = scheduler

        self._index: int = 0
        self._item_count: int = 0
        self._interval_ms: float = float(C.SCAN_INTERVAL_MS)
        self._active = False
        self._paused = False
        self._timer: Optional[TimerHandle] = None

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def item_count(self) -> int:
        return self._item_count

    @property
    def interval_ms(self) -> float:
        return self._interval_ms

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def is_running(self) -> bool:
        """True while the advance timer is armed."""
        return self._timer is not None

    def start(self, item_count: int, interval_ms: float = C.SCAN_INTERVAL_MS) -> None:
        """
        Begin (or restart) scanning over *item_count* items.

        Clears any pause. Does not move the index; callers replacing the item
        list call :meth:`reset` first.

        Raises:
            ConfigurationError: If *interval_ms* is not positive.
            ValueError: If *item_count* is negative.
        """
        require_positive_ms("interval_ms", interval_ms)
        if item_count < 0:
            raise ValueError(f"item_count must be >= 0, got {item_count}")

        self._interval_ms = float(interval_ms)
        self._active = True
        self._paused = False
        self._apply_count(item_count)
        self._rearm()
        logger.debug(
            "Scan started (items=%d, interval=%.0fms, index=%d)",
            item_count, self._interval_ms, self._index,
        )

    def set_item_count(self, item_count: int) -> None:
        """Update the number of items without restarting the interval."""
        if item_count < 0:
            raise ValueError(f"item_count must be >= 0, got {item_count}")
        had_items = self._item_count > 0
        self._apply_count(item_count)
        if item_count == 0:
            self._cancel_timer()
        elif not had_items:
            self._rearm()

    def pause(self) -> None:
        """Suspend advancing and freeze the index."""
        if self._paused:
            return
        self._paused = True
        self._cancel_timer()
        logger.debug("Scan paused at index %d", self._index)

    def resume(self) -> None:
        """Continue advancing from the frozen index after a full interval."""
        if not self._paused:
            return
        self._paused = False
        self._rearm()
        logger.debug("Scan resumed at index %d", self._index)

    def reset(self) -> None:
        """Return the highlight to index 0, restarting the interval if running."""
        self._index = 0
        if self._timer is not None:
            self._rearm()

    def stop(self) -> None:
        """Cancel the timer and discard the scan session."""
        self._cancel_timer()
        self._active = False
        self._paused = False
        self._item_count = 0
        self._index = 0

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    def _apply_count(self, item_count: int) -> None:
        self._item_count = item_count
        if item_count > 0 and self._index >= item_count:
            self._index %= item_count

    def _rearm(self) -> None:
        self._cancel_timer()
        if self._active and not self._paused and self._item_count > 0:
            self._timer = self._arm(self._interval_ms, self._on_interval)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_interval(self) -> None:
        self._timer = None
        if not self._active or self._paused or self._item_count <= 0:
            return
        self._index = (self._index + 1) % self._item_count
        self._rearm()
        if self._on_tick is not None:
            try:
                self._on_tick(self._index)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Scan tick callback raised: %s", exc)
