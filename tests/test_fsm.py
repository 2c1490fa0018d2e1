"""
tests/test_fsm.py — pytest unit tests for mindlens.core.fsm.SessionFSM.
"""

from __future__ import annotations

import pytest

from mindlens.core.constants import SessionPhase
from mindlens.core.fsm import InvalidTransitionError, SessionFSM


# ──────────────────────────────────────────────────────────────
# Transition map mirror (must stay in sync with mindlens/core/fsm.py)
# ──────────────────────────────────────────────────────────────

VALID_TRANSITIONS: dict[SessionPhase, list[SessionPhase]] = {
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


def _force_phase(fsm: SessionFSM, target: SessionPhase) -> None:
    """Reset ``fsm`` and replay a minimal valid path from IDLE to ``target``."""
    fsm.reset()
    paths: dict[SessionPhase, list[SessionPhase]] = {
        SessionPhase.IDLE: [],
        SessionPhase.SCANNING_OPTIONS: [SessionPhase.SCANNING_OPTIONS],
        SessionPhase.GENERATING: [SessionPhase.SCANNING_OPTIONS, SessionPhase.GENERATING],
        SessionPhase.SCANNING_RESULTS: [
            SessionPhase.SCANNING_OPTIONS,
            SessionPhase.GENERATING,
            SessionPhase.SCANNING_RESULTS,
        ],
    }
    for step in paths[target]:
        fsm.transition(step, reason="_force_phase")


# ──────────────────────────────────────────────────────────────
# Fixtures
# ──────────────────────────────────────────────────────────────

@pytest.fixture()
def fsm() -> SessionFSM:
    """Fresh FSM instance in IDLE."""
    return SessionFSM()


@pytest.fixture()
def fsm_with_callbacks() -> tuple[SessionFSM, list[tuple]]:
    """FSM that records every external callback invocation."""
    log: list[tuple[SessionPhase, SessionPhase, str]] = []

    def _cb(from_: SessionPhase, to_: SessionPhase, reason: str) -> None:
        log.append((from_, to_, reason))

    return SessionFSM(on_transition=_cb), log


# ──────────────────────────────────────────────────────────────
# Valid transitions
# ──────────────────────────────────────────────────────────────

class TestValidTransitions:
    """Every edge in VALID_TRANSITIONS must succeed without raising."""

    def test_every_valid_edge(self, fsm: SessionFSM) -> None:
        tested: list[str] = []
        for from_phase, targets in VALID_TRANSITIONS.items():
            for to_phase in targets:
                _force_phase(fsm, from_phase)
                fsm.transition(to_phase, reason="test_valid")
                assert fsm.current_phase == to_phase
                tested.append(f"{from_phase.value}→{to_phase.value}")

        assert len(tested) == sum(len(v) for v in VALID_TRANSITIONS.values())

    def test_initial_phase_is_idle(self, fsm: SessionFSM) -> None:
        assert fsm.current_phase is SessionPhase.IDLE

    def test_full_happy_path(self, fsm: SessionFSM) -> None:
        """IDLE → SCANNING_OPTIONS → GENERATING → SCANNING_RESULTS → IDLE."""
        for step in [
            SessionPhase.SCANNING_OPTIONS,
            SessionPhase.GENERATING,
            SessionPhase.SCANNING_RESULTS,
            SessionPhase.IDLE,
        ]:
            fsm.transition(step, reason="happy_path")
            assert fsm.current_phase == step

    def test_generation_failure_path(self, fsm: SessionFSM) -> None:
        _force_phase(fsm, SessionPhase.GENERATING)
        fsm.transition(SessionPhase.IDLE, reason="generation_failed")
        assert fsm.current_phase is SessionPhase.IDLE

    def test_external_callback_called(
        self, fsm_with_callbacks: tuple[SessionFSM, list]
    ) -> None:
        fsm, log = fsm_with_callbacks
        fsm.transition(SessionPhase.SCANNING_OPTIONS, reason="cb_test")
        assert log == [(SessionPhase.IDLE, SessionPhase.SCANNING_OPTIONS, "cb_test")]

    def test_callback_exception_does_not_break_transition(self) -> None:
        def _boom(*_args) -> None:
            raise RuntimeError("ui bug")

        fsm = SessionFSM(on_transition=_boom)
        fsm.transition(SessionPhase.SCANNING_OPTIONS)
        assert fsm.current_phase is SessionPhase.SCANNING_OPTIONS

    def test_can_transition(self, fsm: SessionFSM) -> None:
        assert fsm.can_transition(SessionPhase.SCANNING_OPTIONS) is True
        assert fsm.can_transition(SessionPhase.GENERATING) is False


# ──────────────────────────────────────────────────────────────
# Invalid transitions
# ──────────────────────────────────────────────────────────────

class TestInvalidTransition:
    """Illegal phase transitions must raise InvalidTransitionError."""

    @pytest.mark.parametrize("from_phase, to_phase", [
        (SessionPhase.IDLE,             SessionPhase.GENERATING),
        (SessionPhase.IDLE,             SessionPhase.SCANNING_RESULTS),
        (SessionPhase.SCANNING_OPTIONS, SessionPhase.SCANNING_RESULTS),
        (SessionPhase.GENERATING,       SessionPhase.SCANNING_OPTIONS),
        (SessionPhase.SCANNING_RESULTS, SessionPhase.GENERATING),
        (SessionPhase.SCANNING_RESULTS, SessionPhase.SCANNING_OPTIONS),
    ])
    def test_raises_invalid_transition_error(
        self,
        fsm: SessionFSM,
        from_phase: SessionPhase,
        to_phase: SessionPhase,
    ) -> None:
        _force_phase(fsm, from_phase)
        with pytest.raises(InvalidTransitionError) as exc_info:
            fsm.transition(to_phase, reason="should_fail")
        err = exc_info.value
        assert err.from_phase == from_phase
        assert err.to_phase == to_phase
        assert fsm.current_phase == from_phase

    def test_error_message_names_both_phases(self, fsm: SessionFSM) -> None:
        with pytest.raises(InvalidTransitionError) as exc_info:
            fsm.transition(SessionPhase.SCANNING_RESULTS, reason="jump")
        msg = str(exc_info.value)
        assert "IDLE" in msg
        assert "SCANNING_RESULTS" in msg
        assert "jump" in msg


# ──────────────────────────────────────────────────────────────
# reset()
# ──────────────────────────────────────────────────────────────

class TestReset:
    """reset() must return the FSM to IDLE from every phase."""

    @pytest.mark.parametrize("phase", list(SessionPhase))
    def test_reset_from_every_phase(self, fsm: SessionFSM, phase: SessionPhase) -> None:
        _force_phase(fsm, phase)
        assert fsm.current_phase is phase
        fsm.reset()
        assert fsm.current_phase is SessionPhase.IDLE

    def test_reset_records_in_history(self, fsm: SessionFSM) -> None:
        fsm.transition(SessionPhase.SCANNING_OPTIONS, reason="pre_reset")
        fsm.reset()
        last = fsm.get_history()[-1]
        assert last["from"] == SessionPhase.SCANNING_OPTIONS.value
        assert last["to"] == SessionPhase.IDLE.value
        assert last["reason"] == "RESET"

    def test_reset_from_idle_does_not_notify(
        self, fsm_with_callbacks: tuple[SessionFSM, list]
    ) -> None:
        fsm, log = fsm_with_callbacks
        fsm.reset(reason="cancel")
        assert log == []

    def test_reset_allows_normal_use_afterwards(self, fsm: SessionFSM) -> None:
        _force_phase(fsm, SessionPhase.GENERATING)
        fsm.reset()
        fsm.transition(SessionPhase.SCANNING_OPTIONS, reason="post_reset")
        assert fsm.current_phase is SessionPhase.SCANNING_OPTIONS


class TestHistory:

    def test_history_is_capped(self, fsm: SessionFSM) -> None:
        for _ in range(40):
            fsm.transition(SessionPhase.SCANNING_OPTIONS)
            fsm.transition(SessionPhase.IDLE)
        assert len(fsm.get_history()) == 50

    def test_history_is_a_copy(self, fsm: SessionFSM) -> None:
        fsm.transition(SessionPhase.SCANNING_OPTIONS)
        fsm.get_history().clear()
        assert len(fsm.get_history()) == 1

    def test_repr_shows_last_transition(self, fsm: SessionFSM) -> None:
        assert "last=none" in repr(fsm)
        fsm.transition(SessionPhase.SCANNING_OPTIONS, reason="go")
        assert "IDLE→SCANNING_OPTIONS[go]" in repr(fsm)
