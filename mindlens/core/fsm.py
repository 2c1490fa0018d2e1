"""
mindlens/core/fsm.py — Strict finite state machine for session phases.

Validated transition map, transition history (last 50), an external
transition callback, and structured logging. Runs on the event loop thread
only, so no locking is needed.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from mindlens.core.constants import SessionPhase

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Custom exception
# ──────────────────────────────────────────────────────────────

class InvalidTransitionError(RuntimeError):
    """
    Raised when a requested phase transition is not in the valid transition map.

    Args:
        from_phase: Current phase at the time of the illegal attempt.
        to_phase: Requested (invalid) target phase.
        reason: Caller-supplied reason string.
    """

    def __init__(
        self,
        from_phase: SessionPhase,
        to_phase: SessionPhase,
        reason: str = "",
    ) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        self.reason = reason
        super().__init__(
            f"Invalid transition {from_phase.value} → {to_phase.value}"
            + (f" (reason: {reason})" if reason else "")
        )


# ──────────────────────────────────────────────────────────────
# Valid transition map
# ──────────────────────────────────────────────────────────────

_VALID_TRANSITIONS: dict[SessionPhase, list[SessionPhase]] = {
    SessionPhase.IDLE: [
        SessionPhase.SCANNING_OPTIONS,
    ],
    SessionPhase.SCANNING_OPTIONS: [
        SessionPhase.GENERATING,
        SessionPhase.IDLE,
    ],
    SessionPhase.GENERATING: [
        SessionPhase.SCANNING_RESULTS,
        SessionPhase.IDLE,
    ],
    SessionPhase.SCANNING_RESULTS: [
        SessionPhase.IDLE,
    ],
}

# Maximum number of transition records kept in history
_MAX_HISTORY = 50


# ──────────────────────────────────────────────────────────────
# FSM class
# ──────────────────────────────────────────────────────────────

class SessionFSM:
    """
    Finite state machine holding the current :class:`SessionPhase`.

    Enforces :data:`_VALID_TRANSITIONS`; illegal transitions raise
    :class:`InvalidTransitionError` immediately and leave the phase unchanged.
    :meth:`reset` is the cancel path and is allowed from any phase.

    Args:
        on_transition: Optional callback invoked after every successful
            transition with signature ``(from_phase, to_phase, reason)``.
    """

    def __init__(
        self,
        on_transition: Callable[[SessionPhase, SessionPhase, str], None] | None = None,
    ) -> None:
        """Initialise FSM in IDLE."""
        self._phase: SessionPhase = SessionPhase.IDLE
        self._history: list[dict] = []
        self._external_callback = on_transition
        self._last_transition: dict | None = None

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    @property
    def current_phase(self) -> SessionPhase:
        """Return the active :class:`SessionPhase`."""
        return self._phase

    def transition(self, new_phase: SessionPhase, reason: str = "") -> None:
        """
        Attempt a validated phase transition.

        Args:
            new_phase: Target phase.
            reason: Human-readable reason for the transition (for logs/history).

        Raises:
            InvalidTransitionError: If the transition is not in the valid map.
        """
        from_phase = self._phase
        if new_phase not in _VALID_TRANSITIONS.get(from_phase, []):
            raise InvalidTransitionError(from_phase, new_phase, reason)
        self._apply(from_phase, new_phase, reason)
        logger.info(
            "FSM: %s → %s%s",
            from_phase.value,
            new_phase.value,
            f" [{reason}]" if reason else "",
        )
        self._notify(from_phase, new_phase, reason)

    def reset(self, reason: str = "RESET") -> None:
        """
        Force the FSM back to IDLE unconditionally.

        Bypasses the transition map. A reset while already IDLE is recorded
        in history but does not notify the external callback.
        """
        from_phase = self._phase
        self._apply(from_phase, SessionPhase.IDLE, reason)
        if from_phase is SessionPhase.IDLE:
            return
        logger.warning("FSM: %s from %s → IDLE", reason, from_phase.value)
        self._notify(from_phase, SessionPhase.IDLE, reason)

    def get_history(self) -> list[dict]:
        """
        Return a copy of the last (up to 50) transition records.

        Each record is a dict with keys ``from``, ``to``, ``reason`` and
        ``timestamp`` (Unix epoch float), oldest first.
        """
        return list(self._history)

    def can_transition(self, target: SessionPhase) -> bool:
        """Return True if *target* is in the valid map for the current phase."""
        return target in _VALID_TRANSITIONS.get(self._phase, [])

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _apply(self, from_phase: SessionPhase, to_phase: SessionPhase, reason: str) -> None:
        self._phase = to_phase
        record = {
            "from": from_phase.value,
            "to": to_phase.value,
            "reason": reason,
            "timestamp": time.time(),
        }
        self._history.append(record)
        if len(self._history) > _MAX_HISTORY:
            self._history.pop(0)
        self._last_transition = record

    def _notify(self, from_phase: SessionPhase, to_phase: SessionPhase, reason: str) -> None:
        if self._external_callback is None:
            return
        try:
            self._external_callback(from_phase, to_phase, reason)
        except Exception as exc:  # noqa: BLE001
            logger.warning("FSM external callback raised: %s", exc)

    def __repr__(self) -> str:
        """Return e.g. ``SessionFSM(phase=IDLE, last=GENERATING→IDLE[RESET])``."""
        if self._last_transition:
            last = (
                f"{self._last_transition['from']}→{self._last_transition['to']}"
                + (
                    f"[{self._last_transition['reason']}]"
                    if self._last_transition["reason"]
                    else ""
                )
            )
        else:
            last = "none"
        return f"SessionFSM(phase={self._phase.value}, last={last})"
