"""
mindlens/core/session.py — Session orchestrator for MindLens.

Ties the slot stabilizer, selectable set, scan and dwell engines together with
two asynchronous side effects: phrase generation and speech output.

Phase flow::

    IDLE ──start──► SCANNING_OPTIONS ──confirm──► GENERATING
      ▲                                              │
      │                          success / fallback  │  failure
      │                                              ▼
      └──────────confirm────────── SCANNING_RESULTS  └──► IDLE

    any phase ──cancel──► IDLE

A busy guard admits one confirm-triggered chain at a time; confirms arriving
while it is set are dropped, never queued. Every generation call carries a
token, and its result is applied only if that token is still current.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional

from mindlens.core.config import MindLensConfig, require_positive_ms
from mindlens.core.constants import SessionPhase
from mindlens.core.fsm import SessionFSM
from mindlens.core.logger import get_logger
from mindlens.core.timers import Scheduler
from mindlens.intent.selectable import (
    SelectableItem,
    build_phrase_set,
    build_selectable_set,
)
from mindlens.intent.slots import SlotStabilizer
from mindlens.llm.phrases import PhraseGenerator, PhraseList, fallback_phrases
from mindlens.output.speech import SpeechOutput
from mindlens.selection.dwell import ActiveSelection, DwellEngine
from mindlens.selection.scan import ScanEngine

logger = logging.getLogger(__name__)

# ── Event kinds ───────────────────────────────────────────────────────────────
ON_PHASE_CHANGE = "phase_change"
ON_ITEMS_CHANGED = "items_changed"
ON_HIGHLIGHT = "highlight"
ON_SELECTION_CONFIRMED = "selection_confirmed"
ON_CONFIRM_DROPPED = "confirm_dropped"
ON_SPEAKING = "speaking"
ON_PHRASES_READY = "phrases_ready"
ON_GENERATION_FAILED = "generation_failed"
ON_STALE_RESULT = "stale_result"

_SCANNING_PHASES = (SessionPhase.SCANNING_OPTIONS, SessionPhase.SCANNING_RESULTS)


@dataclass
class SessionEvent:
    """
    An event emitted by the session that the UI can observe.

    Attributes:
        kind: One of the ``ON_*`` constants.
        payload: Arbitrary data associated with the event.
        timestamp: Monotonic time of event creation.
    """

    kind: str
    payload: object = None
    timestamp: float = field(default_factory=time.monotonic)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-safe representation for the web bridge."""
        return {
            "type": self.kind,
            "payload": _jsonable(self.payload),
            "timestamp": round(self.timestamp, 4),
        }


EventCallback = Callable[[SessionEvent], None]


def _jsonable(value: object) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: _jsonable(v) for k, v in dataclasses.asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class SessionOrchestrator:
    """
    Top-level selection state machine.

    Owns the phase FSM, the busy guard, the Selectable Set and both engines.
    Must be driven from a single asyncio event loop; confirming a keyword
    starts a task on the running loop.

    Args:
        config: Validated :class:`MindLensConfig`.
        phrase_generator: Async keyword → phrases collaborator.
        speech: Fire-and-forget speech collaborator.
        slot_stabilizer: Slot state to use; a fresh one is created if omitted.
        scheduler: Timer source for the engines; defaults to the running loop.
        on_event: Optional callback invoked on each :class:`SessionEvent`.
    """

    def __init__(
        self,
        config: MindLensConfig,
        phrase_generator: PhraseGenerator,
        speech: SpeechOutput,
        slot_stabilizer: Optional[SlotStabilizer] = None,
        scheduler: Optional[Scheduler] = None,
        on_event: Optional[EventCallback] = None,
    ) -> None:
        sel = config.selection
        require_positive_ms("scan_interval_ms", sel.scan_interval_ms)

        self._cfg = config
        self._phrases = phrase_generator
        self._speech = speech
        self._log = get_logger()

        self._slots = slot_stabilizer or SlotStabilizer(sel.slot_count)
        self._static_items: tuple[str, ...] = tuple(sel.static_items)
        self._options = build_selectable_set(self._static_items, self._slots.slots)
        self._items: tuple[SelectableItem, ...] = ()
        self._selected: Optional[SelectableItem] = None

        self._listeners: list[EventCallback] = [on_event] if on_event else []
        self._fsm = SessionFSM(on_transition=self._on_phase_change)
        self._scan = ScanEngine(on_tick=self._on_scan_tick, scheduler=scheduler)
        self._dwell = DwellEngine(
            dwell_duration_ms=sel.dwell_duration_ms,
            cooldown_ms=sel.cooldown_ms,
            on_confirm=self._on_dwell_confirm,
            scheduler=scheduler,
        )

        self._busy = False
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

        self._log.info("session", "init", {
            "static_items": list(self._static_items),
            "slot_count": self._slots.slot_count,
            "dwell_duration_ms": sel.dwell_duration_ms,
            "cooldown_ms": sel.cooldown_ms,
            "scan_interval_ms": sel.scan_interval_ms,
        })

    # ── Observers ─────────────────────────────────────────────────────────────

    def subscribe(self, callback: EventCallback) -> None:
        """Register an additional event observer."""
        self._listeners.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> SessionPhase:
        return self._fsm.current_phase

    @property
    def busy(self) -> bool:
        """True while a confirm-triggered chain is outstanding."""
        return self._busy

    @property
    def selectable_set(self) -> tuple[SelectableItem, ...]:
        """The list currently offered to the user; empty while IDLE."""
        return self._items

    @property
    def options(self) -> tuple[SelectableItem, ...]:
        """Static keywords plus slot suggestions, kept current in every phase."""
        return self._options

    @property
    def selected_item(self) -> Optional[SelectableItem]:
        """The most recently confirmed item."""
        return self._selected

    @property
    def highlighted_item(self) -> Optional[SelectableItem]:
        if not self._items:
            return None
        return self._items[self._scan.current_index % len(self._items)]

    @property
    def scan(self) -> ScanEngine:
        return self._scan

    @property
    def dwell(self) -> DwellEngine:
        return self._dwell

    @property
    def slots(self) -> SlotStabilizer:
        return self._slots

    @property
    def history(self) -> list[dict]:
        return self._fsm.get_history()

    def snapshot(self) -> dict[str, Any]:
        """Return a JSON-safe view of the session for the UI."""
        highlighted = self.highlighted_item
        return {
            "phase": self.phase.value,
            "busy": self._busy,
            "items": _jsonable(self._items),
            "options": _jsonable(self._options),
            "highlighted_index": self._scan.current_index if self._items else None,
            "highlighted_id": highlighted.id if highlighted else None,
            "selected": _jsonable(self._selected),
            "dwell_progress": round(self._dwell.current_progress(), 4),
            "dwell_target": self._dwell.active_target.id if self._dwell.active_target else None,
            "slots": [s.content for s in self._slots.slots],
        }

    # ── Commands ──────────────────────────────────────────────────────────────

    def start(self) -> bool:
        """
        Begin scanning the keyword options.

        Returns:
            True if the session left IDLE, False if it was not IDLE.
        """
        if self._closed or self.phase is not SessionPhase.IDLE:
            self._log.warn("session", "start_ignored", {"phase": self.phase.value})
            return False

        self._set_items(self._options)
        self._scan.reset()
        self._scan.start(len(self._items), self._cfg.selection.scan_interval_ms)
        self._fsm.transition(SessionPhase.SCANNING_OPTIONS, reason="start")
        return True

    def confirm(self, item: Optional[SelectableItem] = None) -> bool:
        """
        Handle one confirm signal (tap, switch closure, dwell, web request).

        Args:
            item: The dwell target, or None to confirm the scan highlight.

        Returns:
            True if the confirmation was accepted. A confirm while busy, in a
            non-scanning phase, on a placeholder, or on an item that is no
            longer offered is dropped and returns False.
        """
        phase = self.phase
        if self._busy:
            return self._drop_confirm("busy", item)
        if phase not in _SCANNING_PHASES:
            return self._drop_confirm("phase", item)

        target = self._resolve_target(item)
        if target is None:
            return self._drop_confirm("not_offered", item)
        if target.is_placeholder:
            return self._drop_confirm("placeholder", target)

        if phase is SessionPhase.SCANNING_OPTIONS:
            self._confirm_keyword(target)
        else:
            self._confirm_phrase(target)
        return True

    def cancel(self) -> None:
        """
        Return to IDLE from any phase.

        Timers stop immediately. An in-flight generation call is left to
        finish but its result will be discarded.
        """
        was = self.phase
        self._generation += 1
        self._teardown()
        self._busy = False
        self._fsm.reset(reason="cancel")
        if was is not SessionPhase.IDLE:
            self._log.info("session", "cancelled", {"from": was.value})

    def focus(self, item_id: str) -> bool:
        """
        Forward focus on *item_id* to the dwell engine.

        Returns:
            True if the item is currently offered, actionable, and the dwell
            engine is out of cooldown, so the focus was taken.
        """
        if self._busy or self.phase not in _SCANNING_PHASES or self._dwell.in_cooldown:
            return False
        item = self._find(item_id)
        if item is None or item.is_placeholder:
            return False
        self._dwell.focus(item)
        return True

    def release(self) -> None:
        """Forward loss of focus to the dwell engine."""
        self._dwell.release()

    def update_detections(self, labels: Iterable[str]) -> tuple[SelectableItem, ...]:
        """
        Feed one detector report through the slot stabilizer.

        The live Selectable Set follows the new options only while scanning
        options; in other phases the options are kept for the next start.

        Returns:
            The rebuilt options.
        """
        self._slots.update(labels)
        options = build_selectable_set(self._static_items, self._slots.slots)
        if options == self._options:
            return options

        self._options = options
        if self.phase is SessionPhase.SCANNING_OPTIONS and not self._busy:
            self._set_items(options)
            self._scan.set_item_count(len(options))
            target = self._dwell.active_target
            if target is not None and self._find(target.id) is None:
                self._dwell.release()
        return options

    def close(self) -> None:
        """Tear down timers and outstanding tasks. The session cannot be reused."""
        if self._closed:
            return
        self.cancel()
        self._dwell.close()
        for task in list(self._tasks):
            task.cancel()
        self._closed = True
        self._log.info("session", "closed", {})

    async def join(self) -> None:
        """Wait until every outstanding generation task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Confirm handling ──────────────────────────────────────────────────────

    def _confirm_keyword(self, item: SelectableItem) -> None:
        loop = asyncio.get_running_loop()

        self._busy = True
        self._selected = item
        self._scan.pause()
        self._dwell.release()
        self._log.info("session", "keyword_confirmed", {"id": item.id, "label": item.label})
        self._emit(ON_SELECTION_CONFIRMED, item)
        self._speak(item.label)

        self._generation += 1
        token = self._generation
        self._fsm.transition(SessionPhase.GENERATING, reason="keyword_confirmed")

        task = loop.create_task(self._generate(token, item.label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _confirm_phrase(self, item: SelectableItem) -> None:
        self._busy = True
        self._selected = item
        self._log.info("session", "phrase_confirmed", {"id": item.id, "label": item.label})
        self._emit(ON_SELECTION_CONFIRMED, item)
        self._speak(item.label)
        self._teardown()
        self._fsm.transition(SessionPhase.IDLE, reason="phrase_confirmed")
        self._busy = False

    def _drop_confirm(self, reason: str, item: Optional[SelectableItem]) -> bool:
        data = {"reason": reason, "phase": self.phase.value, "id": item.id if item else None}
        self._log.info("session", "confirm_dropped", data)
        self._emit(ON_CONFIRM_DROPPED, data)
        return False

    def _resolve_target(self, item: Optional[SelectableItem]) -> Optional[SelectableItem]:
        if item is None:
            return self.highlighted_item
        return self._find(item.id)

    def _find(self, item_id: str) -> Optional[SelectableItem]:
        for candidate in self._items:
            if candidate.id == item_id:
                return candidate
        return None

    def _speak(self, text: str) -> None:
        try:
            self._speech.speak(text)
        except Exception as exc:  # noqa: BLE001
            self._log.error("session", "speech_dispatch_error", {"text": text, "error": str(exc)})
            return
        self._emit(ON_SPEAKING, text)

    # ── Phrase generation ─────────────────────────────────────────────────────

    async def _generate(self, token: int, keyword: str) -> None:
        """
        Run one phrase-generation call and apply its result if still current.

        Failures (exception, timeout, empty or malformed list) fall back to
        the local templates when ``phrases.use_fallback`` is set.
        """
        cfg = self._cfg.phrases
        t0 = time.perf_counter()
        phrases: Optional[list[str]] = None
        is_fallback = False

        try:
            raw = await asyncio.wait_for(
                self._phrases.generate(keyword), timeout=cfg.timeout_ms / 1000.0
            )
            phrases = PhraseList(phrases=list(raw)).phrases[:cfg.max_phrases]
        except Exception as exc:  # noqa: BLE001
            if self._is_current(token):
                self._log.warn("session", "phrase_generation_failed", {
                    "keyword": keyword,
                    "error": f"{type(exc).__name__}: {exc}",
                    "use_fallback": cfg.use_fallback,
                })
            if cfg.use_fallback:
                phrases = fallback_phrases(keyword, cfg.max_phrases)
                is_fallback = True

        latency_ms = (time.perf_counter() - t0) * 1000.0

        if not self._is_current(token):
            logger.debug("Discarding stale phrase result for %r (token %d)", keyword, token)
            self._log.debug("session", "stale_result_discarded", {
                "keyword": keyword, "token": token, "current": self._generation,
            })
            self._emit(ON_STALE_RESULT, {"keyword": keyword})
            return

        if phrases:
            self._apply_phrases(keyword, phrases, latency_ms, is_fallback)
        else:
            self._fail_generation(keyword)

    def _is_current(self, token: int) -> bool:
        return (
            not self._closed
            and token == self._generation
            and self.phase is SessionPhase.GENERATING
        )

    def _apply_phrases(
        self, keyword: str, phrases: list[str], latency_ms: float, is_fallback: bool
    ) -> None:
        self._log.perf("session", "phrases_generated", latency_ms, {
            "keyword": keyword,
            "count": len(phrases),
            "is_fallback": is_fallback,
        })
        self._set_items(build_phrase_set(phrases))
        self._scan.reset()
        self._scan.start(len(self._items), self._cfg.selection.scan_interval_ms)
        self._busy = False
        self._fsm.transition(SessionPhase.SCANNING_RESULTS, reason="phrases_ready")
        self._emit(ON_PHRASES_READY, {"keyword": keyword, "phrases": phrases, "is_fallback": is_fallback})

    def _fail_generation(self, keyword: str) -> None:
        self._teardown()
        self._busy = False
        self._fsm.transition(SessionPhase.IDLE, reason="generation_failed")
        self._emit(ON_GENERATION_FAILED, {"keyword": keyword})

    # ── Engine callbacks ──────────────────────────────────────────────────────

    def _on_scan_tick(self, index: int) -> None:
        item = self.highlighted_item
        self._emit(ON_HIGHLIGHT, {"index": index, "id": item.id if item else None})

    def _on_dwell_confirm(self, selection: ActiveSelection) -> None:
        self.confirm(selection.item)

    def _on_phase_change(self, from_phase: SessionPhase, to_phase: SessionPhase, reason: str) -> None:
        self._log.info("session", "phase_change", {
            "from": from_phase.value,
            "to": to_phase.value,
            "reason": reason,
        })
        self._emit(ON_PHASE_CHANGE, {"from": from_phase.value, "to": to_phase.value, "reason": reason})

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _teardown(self) -> None:
        self._scan.stop()
        self._dwell.release()
        self._set_items(())

    def _set_items(self, items: tuple[SelectableItem, ...]) -> None:
        if items == self._items:
            return
        self._items = items
        self._emit(ON_ITEMS_CHANGED, items)

    def _emit(self, kind: str, payload: object = None) -> None:
        """Dispatch an event to every observer; observer errors are logged and dropped."""
        event = SessionEvent(kind, payload)
        for callback in list(self._listeners):
            try:
                callback(event)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Event callback raised: %s", exc)
