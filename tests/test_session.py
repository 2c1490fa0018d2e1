"""
tests/test_session.py — SessionOrchestrator scenarios.

Engine timers run on the FakeScheduler; phrase generation runs as real
asyncio tasks driven with ``asyncio.run``. Generators and speech are stubs.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Optional
from unittest.mock import MagicMock

import pytest

from mindlens.core.config import ConfigurationError, MindLensConfig, PhraseConfig, SelectionConfig
from mindlens.core.constants import SessionPhase
from mindlens.core.session import (
    ON_CONFIRM_DROPPED,
    ON_GENERATION_FAILED,
    ON_PHRASES_READY,
    ON_STALE_RESULT,
    SessionEvent,
    SessionOrchestrator,
)
from mindlens.llm.phrases import PhraseGenerationError, fallback_phrases

PHRASES = ["I need help.", "Please come here.", "Call the nurse."]


class StubGenerator:
    """Records calls; optionally blocks on a gate, raises, or returns fixed phrases."""

    def __init__(
        self,
        phrases: Optional[list[str]] = None,
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
        delay_s: float = 0.0,
    ) -> None:
        self.phrases = PHRASES if phrases is None else phrases
        self.error = error
        self.gate = gate
        self.delay_s = delay_s
        self.calls: list[str] = []

    async def generate(self, keyword: str) -> list[str]:
        self.calls.append(keyword)
        if self.gate is not None:
            await self.gate.wait()
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        if self.error is not None:
            raise self.error
        return list(self.phrases)


def _config(**phrase_overrides) -> MindLensConfig:
    return MindLensConfig(phrases=dataclasses.replace(PhraseConfig(), **phrase_overrides))


def _make(scheduler, generator=None, speech=None, **phrase_overrides):
    events: list[SessionEvent] = []
    session = SessionOrchestrator(
        _config(**phrase_overrides),
        generator or StubGenerator(),
        speech or MagicMock(spec=["speak"]),
        scheduler=scheduler,
        on_event=events.append,
    )
    return session, events


def _labels(session: SessionOrchestrator) -> list[str]:
    return [i.label for i in session.selectable_set]


def _kinds(events: list[SessionEvent]) -> list[str]:
    return [e.kind for e in events]


# ──────────────────────────────────────────────────────────────
# Start / options
# ──────────────────────────────────────────────────────────────

class TestStart:

    def test_idle_has_empty_set(self, scheduler) -> None:
        session, _ = _make(scheduler)
        assert session.phase is SessionPhase.IDLE
        assert session.selectable_set == ()
        assert session.highlighted_item is None

    def test_start_offers_static_items_and_placeholders(self, scheduler) -> None:
        session, _ = _make(scheduler)
        assert session.start() is True
        assert session.phase is SessionPhase.SCANNING_OPTIONS
        assert _labels(session) == ["HELP", "EMERGENCY", "PAIN", "SCANNING", "SCANNING"]
        assert session.scan.is_running
        assert session.highlighted_item.id == "HELP"

    def test_start_twice_is_ignored(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.start()
        assert session.start() is False
        assert session.phase is SessionPhase.SCANNING_OPTIONS

    def test_detection_fills_slot_while_scanning(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.start()
        session.update_detections(["cup"])
        assert session.selectable_set[3].label == "CUP"
        assert session.scan.item_count == 5

    def test_detection_while_idle_updates_options_only(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.update_detections(["cup", "book"])
        assert session.selectable_set == ()
        assert [i.label for i in session.options][3:] == ["CUP", "BOOK"]
        session.start()
        assert _labels(session)[3:] == ["CUP", "BOOK"]

    def test_invalid_scan_interval_rejected(self) -> None:
        config = MindLensConfig(selection=SelectionConfig(scan_interval_ms=0))
        with pytest.raises(ConfigurationError):
            SessionOrchestrator(config, StubGenerator(), MagicMock())

    def test_invalid_dwell_rejected(self) -> None:
        config = MindLensConfig(selection=SelectionConfig(dwell_duration_ms=-1))
        with pytest.raises(ConfigurationError):
            SessionOrchestrator(config, StubGenerator(), MagicMock())


# ──────────────────────────────────────────────────────────────
# Keyword confirm → phrases
# ──────────────────────────────────────────────────────────────

class TestKeywordConfirm:

    def test_busy_guard_admits_one_chain(self, scheduler) -> None:
        generator = StubGenerator()
        speech = MagicMock(spec=["speak"])

        async def scenario() -> SessionOrchestrator:
            session, _ = _make(scheduler, generator, speech)
            session.start()
            assert session.confirm() is True
            assert session.busy
            assert session.confirm() is False
            assert session.confirm(session.selectable_set[1]) is False
            await session.join()
            return session

        session = asyncio.run(scenario())
        assert generator.calls == ["HELP"]
        speech.speak.assert_called_once_with("HELP")
        assert session.phase is SessionPhase.SCANNING_RESULTS
        assert not session.busy

    def test_phrases_replace_selectable_set(self, scheduler) -> None:
        async def scenario():
            session, events = _make(scheduler)
            session.start()
            scheduler.advance(1200)
            session.confirm()
            assert session.phase is SessionPhase.GENERATING
            assert session.scan.is_paused
            await session.join()
            return session, events

        session, events = asyncio.run(scenario())
        assert _labels(session) == PHRASES
        assert session.selected_item.label == "EMERGENCY"
        assert session.scan.current_index == 0
        assert session.scan.is_running
        assert ON_PHRASES_READY in _kinds(events)

    def test_scan_stays_frozen_while_generating(self, scheduler) -> None:
        async def scenario():
            gate = asyncio.Event()
            session, _ = _make(scheduler, StubGenerator(gate=gate))
            session.start()
            scheduler.advance(2400)
            session.confirm()
            frozen = session.scan.current_index
            scheduler.advance(10_000)
            assert session.scan.current_index == frozen
            assert not session.scan.is_running
            gate.set()
            await session.join()
            return session

        session = asyncio.run(scenario())
        assert session.phase is SessionPhase.SCANNING_RESULTS

    def test_options_frozen_while_generating(self, scheduler) -> None:
        async def scenario():
            gate = asyncio.Event()
            session, _ = _make(scheduler, StubGenerator(gate=gate))
            session.start()
            session.confirm()
            before = session.selectable_set
            session.update_detections(["cup"])
            assert session.selectable_set == before
            assert session.options[3].label == "CUP"
            gate.set()
            await session.join()

        asyncio.run(scenario())

    def test_placeholder_confirm_dropped(self, scheduler) -> None:
        async def scenario():
            session, events = _make(scheduler)
            session.start()
            placeholder = session.selectable_set[3]
            assert session.confirm(placeholder) is False
            assert session.phase is SessionPhase.SCANNING_OPTIONS
            return events

        events = asyncio.run(scenario())
        dropped = [e for e in events if e.kind == ON_CONFIRM_DROPPED]
        assert dropped[-1].payload["reason"] == "placeholder"

    def test_confirm_while_idle_is_noop(self, scheduler) -> None:
        session, _ = _make(scheduler)
        assert session.confirm() is False
        assert session.phase is SessionPhase.IDLE

    def test_speech_failure_does_not_block_generation(self, scheduler) -> None:
        speech = MagicMock(spec=["speak"])
        speech.speak.side_effect = RuntimeError("no audio device")

        async def scenario():
            session, _ = _make(scheduler, speech=speech)
            session.start()
            session.confirm()
            await session.join()
            return session

        assert asyncio.run(scenario()).phase is SessionPhase.SCANNING_RESULTS


# ──────────────────────────────────────────────────────────────
# Generator failures
# ──────────────────────────────────────────────────────────────

class TestGenerationFailure:

    def test_error_uses_fallback(self, scheduler) -> None:
        async def scenario():
            session, _ = _make(scheduler, StubGenerator(error=PhraseGenerationError("503")))
            session.start()
            session.confirm()
            await session.join()
            return session

        session = asyncio.run(scenario())
        assert session.phase is SessionPhase.SCANNING_RESULTS
        assert _labels(session) == fallback_phrases("HELP")

    def test_timeout_uses_fallback(self, scheduler) -> None:
        async def scenario():
            session, _ = _make(scheduler, StubGenerator(delay_s=5.0), timeout_ms=20)
            session.start()
            session.confirm()
            await session.join()
            return session

        session = asyncio.run(scenario())
        assert _labels(session) == fallback_phrases("HELP")

    def test_error_without_fallback_returns_to_idle(self, scheduler) -> None:
        async def scenario():
            session, events = _make(
                scheduler, StubGenerator(error=PhraseGenerationError("boom")), use_fallback=False
            )
            session.start()
            session.confirm()
            await session.join()
            return session, events

        session, events = asyncio.run(scenario())
        assert session.phase is SessionPhase.IDLE
        assert session.selectable_set == ()
        assert not session.busy
        assert not session.scan.is_active
        assert ON_GENERATION_FAILED in _kinds(events)

    def test_empty_result_without_fallback_returns_to_idle(self, scheduler) -> None:
        async def scenario():
            session, _ = _make(scheduler, StubGenerator(phrases=["", "  "]), use_fallback=False)
            session.start()
            session.confirm()
            await session.join()
            return session

        assert asyncio.run(scenario()).phase is SessionPhase.IDLE

    def test_result_is_capped_at_max_phrases(self, scheduler) -> None:
        async def scenario():
            session, _ = _make(scheduler, StubGenerator(phrases=["a", "b", "c", "d"]), max_phrases=2)
            session.start()
            session.confirm()
            await session.join()
            return session

        assert _labels(asyncio.run(scenario())) == ["a", "b"]


# ──────────────────────────────────────────────────────────────
# Cancel and stale results
# ──────────────────────────────────────────────────────────────

class TestCancel:

    def test_stale_result_discarded_after_cancel(self, scheduler) -> None:
        async def scenario():
            gate = asyncio.Event()
            session, events = _make(scheduler, StubGenerator(gate=gate))
            session.start()
            session.confirm()
            session.cancel()
            assert session.phase is SessionPhase.IDLE
            assert not session.busy
            gate.set()
            await session.join()
            return session, events

        session, events = asyncio.run(scenario())
        assert session.phase is SessionPhase.IDLE
        assert session.selectable_set == ()
        assert ON_STALE_RESULT in _kinds(events)
        assert ON_PHRASES_READY not in _kinds(events)

    def test_stale_result_ignored_after_restart(self, scheduler) -> None:
        async def scenario():
            gate = asyncio.Event()
            session, _ = _make(scheduler, StubGenerator(gate=gate))
            session.start()
            session.confirm()
            session.cancel()
            session.start()
            options = session.selectable_set
            gate.set()
            await session.join()
            return session, options

        session, options = asyncio.run(scenario())
        assert session.phase is SessionPhase.SCANNING_OPTIONS
        assert session.selectable_set == options

    def test_cancel_stops_timers(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.start()
        session.focus("HELP")
        session.cancel()
        assert scheduler.pending == 0
        assert not session.scan.is_active
        assert session.dwell.active_target is None

    def test_close_cancels_outstanding_task(self, scheduler) -> None:
        async def scenario():
            gate = asyncio.Event()
            session, events = _make(scheduler, StubGenerator(gate=gate))
            session.start()
            session.confirm()
            session.close()
            await session.join()
            return session, events

        session, events = asyncio.run(scenario())
        assert session.phase is SessionPhase.IDLE
        assert ON_PHRASES_READY not in _kinds(events)
        assert session.start() is False


# ──────────────────────────────────────────────────────────────
# Results confirm and dwell routing
# ──────────────────────────────────────────────────────────────

class TestResults:

    def test_phrase_confirm_speaks_and_returns_to_idle(self, scheduler) -> None:
        speech = MagicMock(spec=["speak"])

        async def scenario():
            session, _ = _make(scheduler, speech=speech)
            session.start()
            session.confirm()
            await session.join()
            scheduler.advance(1200)
            assert session.confirm() is True
            return session

        session = asyncio.run(scenario())
        assert [c.args[0] for c in speech.speak.call_args_list] == ["HELP", PHRASES[1]]
        assert session.phase is SessionPhase.IDLE
        assert session.selectable_set == ()
        assert session.selected_item.label == PHRASES[1]
        assert not session.busy

    def test_dwell_confirms_focused_keyword(self, scheduler) -> None:
        generator = StubGenerator()

        async def scenario():
            session, _ = _make(scheduler, generator)
            session.start()
            assert session.focus("PAIN") is True
            scheduler.advance(1500)
            await session.join()
            return session

        session = asyncio.run(scenario())
        assert generator.calls == ["PAIN"]
        assert session.phase is SessionPhase.SCANNING_RESULTS

    def test_dwell_confirms_phrase(self, scheduler) -> None:
        speech = MagicMock(spec=["speak"])

        async def scenario():
            session, _ = _make(scheduler, speech=speech)
            session.start()
            session.confirm()
            await session.join()
            session.focus("PHRASE_2")
            scheduler.advance(1500)
            return session

        session = asyncio.run(scenario())
        assert speech.speak.call_args_list[-1].args[0] == PHRASES[2]
        assert session.phase is SessionPhase.IDLE

    def test_focus_unknown_item_rejected(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.start()
        assert session.focus("NOT_THERE") is False

    def test_focus_refused_during_dwell_cooldown(self, scheduler) -> None:
        async def scenario():
            session, _ = _make(scheduler)
            session.start()
            session.focus("PAIN")
            scheduler.advance(1500)
            await session.join()
            assert session.phase is SessionPhase.SCANNING_RESULTS
            assert session.dwell.in_cooldown
            assert session.focus("PHRASE_0") is False
            assert session.dwell.active_target is None
            scheduler.advance(1000)
            assert session.focus("PHRASE_0") is True
            return session

        session = asyncio.run(scenario())
        assert session.dwell.active_target.id == "PHRASE_0"

    def test_focus_on_placeholder_refused(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.start()
        placeholder = session.selectable_set[3]
        assert placeholder.is_placeholder
        assert session.focus(placeholder.id) is False

    def test_removed_slot_releases_dwell(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.update_detections(["cup"])
        session.start()
        session.focus("CUP_SLOT_0")
        session.update_detections(["book"])
        session.update_detections(["tv"])
        assert session.dwell.active_target is None

    def test_snapshot_is_json_ready(self, scheduler) -> None:
        session, _ = _make(scheduler)
        session.start()
        snap = session.snapshot()
        assert snap["phase"] == "SCANNING_OPTIONS"
        assert snap["highlighted_id"] == "HELP"
        assert snap["items"][0] == {
            "id": "HELP", "label": "HELP", "is_dynamic": False, "is_placeholder": False,
        }
        assert snap["slots"] == [None, None]
