"""
mindlens/selection/dwell.py — Timer-driven dwell confirmation with cooldown.

Confirms a target once it has held focus continuously for the dwell duration,
then ignores focus for a cooldown window so a momentary refocus cannot fire a
second confirmation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from mindlens.core.config import require_positive_ms
from mindlens.core.constants import MindLensConstants as C
from mindlens.core.timers import Scheduler, SchedulerMixin, TimerHandle
from mindlens.intent.selectable import SelectableItem

logger = logging.getLogger(__name__)


class DwellPhase(Enum):
    """Dwell engine lifecycle."""

    IDLE = "IDLE"
    TRACKING = "TRACKING"
    CONFIRMED = "CONFIRMED"
    COOLDOWN = "COOLDOWN"


@dataclass(frozen=True)
class ActiveSelection:
    """
    A completed dwell.

    Attributes:
        item: The item that held focus.
        held_ms: Focus duration measured at confirmation.
    """

    item: SelectableItem
    held_ms: float


@dataclass(frozen=True)
class DwellState:
    """Snapshot of the engine for UI rendering."""

    phase: DwellPhase
    active_target: Optional[SelectableItem]
    started_at_ms: Optional[float]
    confirmed_id: Optional[str]
    in_cooldown: bool


class DwellEngine(SchedulerMixin):
    """
    Dwell selector: ``IDLE → TRACKING → CONFIRMED → COOLDOWN → IDLE``.

    Args:
        dwell_duration_ms: Continuous focus required to confirm.
        cooldown_ms: Window after a confirmation during which focus is ignored.
        on_confirm: Called exactly once per confirmation.
        scheduler: Timer source; defaults to the running asyncio loop.

    Raises:
        ConfigurationError: If either duration is not positive.
    """

    def __init__(
        self,
        dwell_duration_ms: float = C.DWELL_DURATION_MS,
        cooldown_ms: float = C.COOLDOWN_MS,
        on_confirm: Optional[Callable[[ActiveSelection], None]] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        require_positive_ms("dwell_duration_ms", dwell_duration_ms)
        require_positive_ms("cooldown_ms", cooldown_ms)
        self._duration_ms = float(dwell_duration_ms)
        self._cooldown_ms = float(cooldown_ms)
        self._on_confirm = on_confirm
        self._scheduler = scheduler

        self._phase = DwellPhase.IDLE
        self._target: Optional[SelectableItem] = None
        self._started_at_ms: Optional[float] = None
        self._confirmed_id: Optional[str] = None
        self._dwell_timer: Optional[TimerHandle] = None
        self._cooldown_timer: Optional[TimerHandle] = None
        self._closed = False

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def phase(self) -> DwellPhase:
        return self._phase

    @property
    def active_target(self) -> Optional[SelectableItem]:
        return self._target

    @property
    def confirmed_id(self) -> Optional[str]:
        return self._confirmed_id

    @property
    def in_cooldown(self) -> bool:
        return self._phase in (DwellPhase.CONFIRMED, DwellPhase.COOLDOWN)

    @property
    def state(self) -> DwellState:
        return DwellState(
            phase=self._phase,
            active_target=self._target,
            started_at_ms=self._started_at_ms,
            confirmed_id=self._confirmed_id,
            in_cooldown=self.in_cooldown,
        )

    def focus(self, item: SelectableItem) -> None:
        """
        Report that *item* currently holds the user's focus.

        Idempotent for the target already being tracked. A different target
        restarts tracking from zero. Ignored during confirmation and cooldown,
        for placeholder items, and after :meth:`close`.
        """
        if self._closed or item.is_placeholder or self.in_cooldown:
            return
        if self._phase is DwellPhase.TRACKING and self._target is not None:
            if self._target.id == item.id:
                return
            self._cancel_dwell_timer()

        self._phase = DwellPhase.TRACKING
        self._target = item
        self._started_at_ms = self._now_ms()
        self._confirmed_id = None
        self._dwell_timer = self._arm(self._duration_ms, self._on_dwell_elapsed)
        logger.debug("Dwell tracking %s", item.id)

    def release(self) -> None:
        """Drop the tracked target. No effect outside TRACKING."""
        if self._phase is not DwellPhase.TRACKING:
            return
        self._cancel_dwell_timer()
        logger.debug("Dwell released %s", self._target.id if self._target else None)
        self._phase = DwellPhase.IDLE
        self._target = None
        self._started_at_ms = None

    def current_progress(self) -> float:
        """
        Return dwell progress in [0, 1].

        Elapsed/duration while tracking, 1.0 while the confirmation is being
        dispatched, 0.0 otherwise.
        """
        if self._phase is DwellPhase.CONFIRMED:
            return 1.0
        if self._phase is not DwellPhase.TRACKING or self._started_at_ms is None:
            return 0.0
        elapsed_ms = self._now_ms() - self._started_at_ms
        return max(0.0, min(elapsed_ms / self._duration_ms, 1.0))

    def close(self) -> None:
        """Cancel every timer and stop accepting focus."""
        self._cancel_dwell_timer()
        if self._cooldown_timer is not None:
            self._cooldown_timer.cancel()
            self._cooldown_timer = None
        self._phase = DwellPhase.IDLE
        self._target = None
        self._started_at_ms = None
        self._confirmed_id = None
        self._closed = True

    # ──────────────────────────────────────────
    # Timer callbacks
    # ──────────────────────────────────────────

    def _on_dwell_elapsed(self) -> None:
        self._dwell_timer = None
        if self._phase is not DwellPhase.TRACKING or self._target is None:
            return

        item = self._target
        held_ms = self._now_ms() - (self._started_at_ms or self._now_ms())
        self._phase = DwellPhase.CONFIRMED
        self._confirmed_id = item.id
        logger.info("Dwell confirmed %s after %.0fms", item.id, held_ms)

        if self._on_confirm is not None:
            try:
                self._on_confirm(ActiveSelection(item=item, held_ms=held_ms))
            except Exception as exc:  # noqa: BLE001
                logger.warning("Dwell confirm callback raised: %s", exc)

        if self._closed:
            return
        self._target = None
        self._started_at_ms = None
        self._phase = DwellPhase.COOLDOWN
        self._cooldown_timer = self._arm(self._cooldown_ms, self._on_cooldown_elapsed)

    def _on_cooldown_elapsed(self) -> None:
        self._cooldown_timer = None
        if self._phase is not DwellPhase.COOLDOWN:
            return
        self._phase = DwellPhase.IDLE
        self._confirmed_id = None
        logger.debug("Dwell cooldown finished")

    def _cancel_dwell_timer(self) -> None:
        if self._dwell_timer is not None:
            self._dwell_timer.cancel()
            self._dwell_timer = None
