"""
mindlens/core/logger.py — JSONL structured session logger for MindLens.

SessionLogger writes one JSON object per line to
``{log_dir}/mindlens_{date}.jsonl``, rotating automatically each day.
WARN/ERROR are also mirrored to Python stdlib logging (stderr).

Usage::

    from mindlens.core.logger import get_logger
    log = get_logger()
    log.info("session", "phase_change", {"from": "IDLE", "to": "SCANNING_OPTIONS"})
    log.perf("session", "phrases_generated", latency_ms=840.2, data={"count": 3})
"""

from __future__ import annotations

import json
import logging
import platform
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# ── stdlib mirror logger (stderr for WARN+) ──────────────────
_stdlib = logging.getLogger("mindlens.session")
if not _stdlib.handlers:
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[%(levelname)s] %(name)s — %(message)s"))
    _stdlib.addHandler(_handler)
_stdlib.setLevel(logging.DEBUG)
_stdlib.propagate = False

_DEFAULT_LOG_DIR = Path("logs")

# ── Singleton storage ─────────────────────────────────────────
_instance: Optional["SessionLogger"] = None
_instance_lock = threading.Lock()


class SessionLogger:
    """
    JSONL structured logger for session events.

    Fields written per entry:

    .. code-block:: json

        {
          "timestamp_iso": "2026-10-19T01:20:49.123456+00:00",
          "level": "INFO",
          "phase": "session",
          "event": "phase_change",
          "data": {"from": "IDLE", "to": "SCANNING_OPTIONS"},
          "latency_ms": 840.2
        }

    ``latency_ms`` is omitted when ``None``. With ``enabled=False`` nothing is
    written to disk; WARN/ERROR still reach stderr.

    Args:
        log_dir: Directory for the daily JSONL files.
        enabled: Whether to write the JSONL file at all.
    """

    def __init__(self, log_dir: Path | str = _DEFAULT_LOG_DIR, enabled: bool = True) -> None:
        """Open the log file for today and write the startup entry."""
        self._log_dir = Path(log_dir)
        self._enabled = enabled
        self._lock = threading.Lock()
        self._file: Optional[Any] = None
        self._current_date: str = ""
        if self._enabled:
            self._open_file()
            self._write_startup()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    # ──────────────────────────────────────────
    # Public logging methods
    # ──────────────────────────────────────────

    def debug(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write a DEBUG-level entry (file only)."""
        self._write("DEBUG", phase, event, data)

    def info(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """
        Write an INFO-level structured log entry.

        Args:
            phase: Subsystem (e.g. ``'session'``, ``'phrases'``).
            event: Short event identifier (e.g. ``'confirm_dropped'``).
            data: Optional dict of additional key-value context.
        """
        self._write("INFO", phase, event, data)

    def warn(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write a WARN-level entry and mirror to stderr via stdlib logging."""
        self._write("WARN", phase, event, data)
        _stdlib.warning("[%s] %s | %s", phase, event, data or {})

    def error(self, phase: str, event: str, data: Optional[dict] = None) -> None:
        """Write an ERROR-level entry and mirror to stderr via stdlib logging."""
        self._write("ERROR", phase, event, data)
        _stdlib.error("[%s] %s | %s", phase, event, data or {})

    def perf(
        self,
        phase: str,
        event: str,
        latency_ms: float,
        data: Optional[dict] = None,
    ) -> None:
        """
        Write a PERF-level entry for latency tracking.

        Args:
            phase: Subsystem the measurement belongs to.
            event: What was measured (e.g. ``'phrases_generated'``).
            latency_ms: Measured latency in milliseconds.
            data: Optional additional context dict.
        """
        self._write("PERF", phase, event, data, latency_ms=latency_ms)

    def flush(self) -> None:
        """Flush the underlying file buffer immediately."""
        with self._lock:
            if self._file and not self._file.closed:
                self._file.flush()

    def close(self) -> None:
        """Close the current log file."""
        with self._lock:
            if self._file and not self._file.closed:
                self._file.close()
            self._file = None

    # ──────────────────────────────────────────
    # Internal helpers
    # ──────────────────────────────────────────

    def _write(
        self,
        level: str,
        phase: str,
        event: str,
        data: Optional[dict],
        latency_ms: Optional[float] = None,
    ) -> None:
        """Serialise and append one JSON line to the log file."""
        if not self._enabled:
            return

        now = datetime.now(tz=timezone.utc)
        record: dict[str, Any] = {
            "timestamp_iso": now.isoformat(),
            "level": level,
            "phase": phase,
            "event": event,
            "data": data or {},
        }
        if latency_ms is not None:
            record["latency_ms"] = round(latency_ms, 3)

        line = json.dumps(record, ensure_ascii=False, separators=(",", ":"), default=str)

        with self._lock:
            self._rotate_if_needed(now)
            if self._file and not self._file.closed:
                self._file.write(line + "\n")

    def _rotate_if_needed(self, now: datetime) -> None:
        """
        Open a new log file if the calendar date has changed.

        Called inside ``self._lock`` — do not call from outside.
        """
        today = now.strftime("%Y-%m-%d")
        if today != self._current_date:
            if self._file and not self._file.closed:
                self._file.close()
            self._current_date = today
            log_path = self._log_dir / f"mindlens_{today}.jsonl"
            self._log_dir.mkdir(parents=True, exist_ok=True)
            self._file = open(log_path, "a", encoding="utf-8", buffering=1)

    def _open_file(self) -> None:
        """Open the log file for today's date (called once on init)."""
        now = datetime.now(tz=timezone.utc)
        with self._lock:
            self._rotate_if_needed(now)

    def _write_startup(self) -> None:
        """Write a startup entry with Python version and platform."""
        self.info(
            phase="system",
            event="startup",
            data={
                "python_version": sys.version,
                "platform": platform.platform(),
                "timestamp_local": datetime.now().isoformat(),
            },
        )


# ──────────────────────────────────────────────────────────────
# Singleton accessor
# ──────────────────────────────────────────────────────────────

def get_logger() -> SessionLogger:
    """
    Return the application-wide :class:`SessionLogger`.

    The first call creates an instance writing to ``./logs``; call
    :func:`configure_logger` beforehand to choose another directory.
    """
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                _instance = SessionLogger()
    return _instance


def configure_logger(log_dir: Path | str = _DEFAULT_LOG_DIR, enabled: bool = True) -> SessionLogger:
    """
    Replace the singleton with a logger writing to *log_dir*.

    The previous instance, if any, is closed.

    Returns:
        The new :class:`SessionLogger`.
    """
    global _instance
    with _instance_lock:
        if _instance is not None:
            _instance.close()
        _instance = SessionLogger(log_dir=log_dir, enabled=enabled)
    return _instance
