"""
mindlens/output/speech.py — Fire-and-forget speech output using pyttsx3.

The session calls ``speak(text)`` and never waits for audio. A newer request
always interrupts the utterance in progress so confirmations made close
together never overlap.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional, Protocol, runtime_checkable

import pyttsx3  # type: ignore[import]

from mindlens.core.config import SpeechConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class SpeechOutput(Protocol):
    """Minimal interface the session needs from a speech device."""

    def speak(self, text: str) -> None:
        """Start speaking *text*, interrupting any previous utterance."""
        ...


class TTSEngine:
    """
    Offline text-to-speech wrapping pyttsx3.

    Requests are handed to a dedicated worker thread. Only the latest pending
    request is kept; a request arriving while audio plays stops it first.

    Args:
        config: TTS configuration (rate, volume, voice selection).
    """

    def __init__(self, config: SpeechConfig) -> None:
        """Initialise TTS engine and start the worker thread."""
        self._cfg = config
        self._lock = threading.Lock()
        self._wakeup = threading.Event()
        self._speaking = False
        self._pending_text: Optional[str] = None
        self._shutdown_flag = False

        self._engine: Optional[pyttsx3.Engine] = None
        self._worker_thread: Optional[threading.Thread] = None

        self._init_engine()
        self._start_worker()

    # ──────────────────────────────────────────
    # Public API
    # ──────────────────────────────────────────

    def speak(self, text: str) -> None:
        """
        Queue *text* for speech, replacing anything not yet spoken.

        Args:
            text: The text to speak. Empty text is ignored.
        """
        text = text.strip()
        if not text:
            logger.warning("TTSEngine.speak called with empty text — ignored")
            return

        with self._lock:
            self._pending_text = text
            if self._engine is not None and self._speaking:
                try:
                    self._engine.stop()
                except Exception as exc:  # noqa: BLE001
                    logger.debug("TTS stop failed: %s", exc)
        self._wakeup.set()
        logger.info("TTS: queuing speech: %r", text[:80])

    @property
    def available(self) -> bool:
        """True if the pyttsx3 engine initialised."""
        return self._engine is not None

    @property
    def is_speaking(self) -> bool:
        with self._lock:
            return self._speaking

    def shutdown(self) -> None:
        """
        Stop the worker thread and release TTS resources.

        Safe to call multiple times. Blocks until the worker exits (max 3s).
        """
        self._shutdown_flag = True
        self._wakeup.set()
        if self._worker_thread:
            self._worker_thread.join(timeout=3.0)
        if self._engine:
            try:
                self._engine.stop()
            except Exception as exc:  # noqa: BLE001
                logger.debug("TTS stop on shutdown failed: %s", exc)
        logger.info("TTSEngine shut down")

    # ──────────────────────────────────────────
    # Internal
    # ──────────────────────────────────────────

    def _init_engine(self) -> None:
        """
        Create the pyttsx3 engine and apply rate, volume and voice.

        A missing audio backend is logged, not raised; speech then becomes
        a no-op so the selection session keeps working.
        """
        try:
            self._engine = pyttsx3.init()
            self._engine.setProperty("rate", self._cfg.rate)
            self._engine.setProperty("volume", self._cfg.volume)
            if self._cfg.voice_id:
                self._engine.setProperty("voice", self._cfg.voice_id)
            logger.info(
                "TTS engine initialised (rate=%d, volume=%.1f)",
                self._cfg.rate, self._cfg.volume,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("TTS engine init failed: %s — speech will be unavailable", exc)
            self._engine = None

    def _start_worker(self) -> None:
        self._worker_thread = threading.Thread(
            target=self._worker_loop, name="tts-worker", daemon=True
        )
        self._worker_thread.start()

    def _worker_loop(self) -> None:
        """Speak the latest pending text each time the worker is woken."""
        while not self._shutdown_flag:
            self._wakeup.wait()
            self._wakeup.clear()
            with self._lock:
                text = self._pending_text
                self._pending_text = None
                if text is None or self._engine is None:
                    continue
                self._speaking = True
            try:
                self._engine.say(text)
                self._engine.runAndWait()
            except Exception as exc:  # noqa: BLE001
                logger.error("TTS speak error: %s", exc)
            finally:
                with self._lock:
                    self._speaking = False
