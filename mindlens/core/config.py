"""
mindlens/core/config.py — Typed configuration loader for MindLens.

Loads config/mindlens.yaml and validates all values into typed dataclasses.
All downstream modules import from this module; never read YAML directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from mindlens.core.constants import MindLensConstants as C

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """
    Raised for invalid configuration values.

    Covers mistyped YAML values, non-positive timer durations, an empty
    static item list and out-of-range tuning values. Always fatal at
    construction time.
    """


# ──────────────────────────────────────────────
# Dataclass hierarchy, mirrors mindlens.yaml
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class SelectionConfig:
    """Dwell, scan and slot tuning parameters."""

    dwell_duration_ms: int = C.DWELL_DURATION_MS
    cooldown_ms: int = C.COOLDOWN_MS
    scan_interval_ms: int = C.SCAN_INTERVAL_MS
    slot_count: int = C.SLOT_COUNT
    static_items: tuple[str, ...] = C.STATIC_ITEMS


@dataclass(frozen=True)
class PhraseConfig:
    """Phrase generation provider configuration."""

    provider: str = "template"
    model: str = C.GEMINI_MODEL
    endpoint: str = "https://generativelanguage.googleapis.com/v1beta/models"
    api_key_env: str = "GEMINI_API_KEY"
    timeout_ms: int = C.PHRASE_TIMEOUT_MS
    max_phrases: int = C.MAX_PHRASES
    use_fallback: bool = True

    @property
    def api_key(self) -> Optional[str]:
        """Return the API key from the configured environment variable, if set."""
        return os.environ.get(self.api_key_env) or None


@dataclass(frozen=True)
class SpeechConfig:
    """Text-to-speech engine configuration."""

    rate: int = 150
    volume: float = 1.0
    voice_id: Optional[str] = None


@dataclass(frozen=True)
class DetectorConfig:
    """Object detector post-processing configuration."""

    score_threshold: float = C.DETECTION_SCORE_THRESHOLD


@dataclass(frozen=True)
class WebConfig:
    """Web bridge bind address."""

    host: str = "127.0.0.1"
    port: int = 8765


@dataclass(frozen=True)
class LoggingConfig:
    """Logging and session recording configuration."""

    level: str = "INFO"
    session_log_dir: str = "logs"
    log_sessions: bool = True


@dataclass(frozen=True)
class MindLensConfig:
    """Root configuration object — single source of truth for all settings."""

    selection: SelectionConfig = field(default_factory=SelectionConfig)
    phrases: PhraseConfig = field(default_factory=PhraseConfig)
    speech: SpeechConfig = field(default_factory=SpeechConfig)
    detector: DetectorConfig = field(default_factory=DetectorConfig)
    web: WebConfig = field(default_factory=WebConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# ──────────────────────────────────────────────
# Loader
# ──────────────────────────────────────────────


def load_config(config_path: Path | str | None = None) -> MindLensConfig:
    """
    Load, validate, and return a MindLensConfig from a YAML file.

    The search order for the config file is:
    1. *config_path* argument (if provided)
    2. MINDLENS_CONFIG environment variable
    3. ``config/mindlens.yaml`` relative to the project root
    4. Built-in defaults (no file required)

    Args:
        config_path: Optional path to a ``mindlens.yaml`` file.

    Returns:
        A fully populated and frozen :class:`MindLensConfig` instance.

    Raises:
        ConfigurationError: If a YAML field has an invalid type or value.
        FileNotFoundError: If *config_path* is explicitly given but does not exist.
    """
    resolved_path: Path | None = None

    if config_path is not None:
        resolved_path = Path(config_path)
        if not resolved_path.exists():
            raise FileNotFoundError(f"Config file not found: {resolved_path}")
    elif "MINDLENS_CONFIG" in os.environ:
        resolved_path = Path(os.environ["MINDLENS_CONFIG"])
        if not resolved_path.exists():
            raise FileNotFoundError(
                f"MINDLENS_CONFIG points to missing file: {resolved_path}"
            )
    else:
        here = Path(__file__).resolve()
        for parent in [here.parent.parent.parent, here.parent.parent]:
            candidate = parent / "config" / "mindlens.yaml"
            if candidate.exists():
                resolved_path = candidate
                break

    raw: dict = {}
    if resolved_path is not None:
        logger.info("Loading config from: %s", resolved_path)
        with resolved_path.open("r", encoding="utf-8") as fh:
            loaded = yaml.safe_load(fh) or {}
        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Config file must be a YAML mapping, got: {type(loaded)}"
            )
        raw = loaded
    else:
        logger.info("No config file found — using built-in defaults")

    config = config_from_dict(raw)
    logger.debug("Config loaded: %s", config)
    return config


def config_from_dict(raw: dict) -> MindLensConfig:
    """
    Build and validate a :class:`MindLensConfig` from a plain mapping.

    Missing sections and keys fall back to defaults. YAML lists are
    converted to tuples where the dataclass expects one.

    Raises:
        ConfigurationError: On unknown keys, wrong types, or range violations.
    """
    try:
        sel_raw = dict(raw.get("selection") or {})
        if isinstance(sel_raw.get("static_items"), list):
            sel_raw["static_items"] = tuple(sel_raw["static_items"])
        selection_cfg = SelectionConfig(**sel_raw)

        phrase_cfg = PhraseConfig(**(raw.get("phrases") or {}))
        speech_cfg = SpeechConfig(**(raw.get("speech") or {}))
        detector_cfg = DetectorConfig(**(raw.get("detector") or {}))
        web_cfg = WebConfig(**(raw.get("web") or {}))
        log_cfg = LoggingConfig(**(raw.get("logging") or {}))
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigurationError(f"Invalid config value: {exc}") from exc

    _validate_types(selection_cfg, phrase_cfg, speech_cfg, detector_cfg, web_cfg, log_cfg)
    _validate_config(selection_cfg, phrase_cfg, speech_cfg, detector_cfg)

    return MindLensConfig(
        selection=selection_cfg,
        phrases=phrase_cfg,
        speech=speech_cfg,
        detector=detector_cfg,
        web=web_cfg,
        logging=log_cfg,
    )


def require_positive_ms(name: str, value: float) -> None:
    """
    Fail fast on a timer duration that is zero, negative or not a number.

    Raises:
        ConfigurationError: If *value* is not a positive number.
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive number of ms, got {value!r}")


def _require_int(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _require_number(name: str, value: object) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


def _require_bool(name: str, value: object) -> None:
    if not isinstance(value, bool):
        raise ConfigurationError(f"{name} must be true or false, got {value!r}")


def _require_str(name: str, value: object, optional: bool = False) -> None:
    if value is None and optional:
        return
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{name} must be a non-empty string, got {value!r}")


def _validate_types(
    selection: SelectionConfig,
    phrases: PhraseConfig,
    speech: SpeechConfig,
    detector: DetectorConfig,
    web: WebConfig,
    log_cfg: LoggingConfig,
) -> None:
    """
    Reject values whose YAML type does not match the dataclass field.

    Raises:
        ConfigurationError: On the first mistyped field.
    """
    _require_int("selection.slot_count", selection.slot_count)
    items = selection.static_items
    if not isinstance(items, tuple):
        raise ConfigurationError(
            f"selection.static_items must be a list of labels, got {items!r}"
        )
    for label in items:
        _require_str("selection.static_items[]", label)

    _require_str("phrases.provider", phrases.provider)
    _require_str("phrases.model", phrases.model)
    _require_str("phrases.endpoint", phrases.endpoint)
    _require_str("phrases.api_key_env", phrases.api_key_env)
    _require_int("phrases.max_phrases", phrases.max_phrases)
    _require_bool("phrases.use_fallback", phrases.use_fallback)

    _require_int("speech.rate", speech.rate)
    _require_number("speech.volume", speech.volume)
    _require_str("speech.voice_id", speech.voice_id, optional=True)

    _require_number("detector.score_threshold", detector.score_threshold)

    _require_str("web.host", web.host)
    _require_int("web.port", web.port)

    _require_str("logging.level", log_cfg.level)
    _require_str("logging.session_log_dir", log_cfg.session_log_dir)
    _require_bool("logging.log_sessions", log_cfg.log_sessions)


def _validate_config(
    selection: SelectionConfig,
    phrases: PhraseConfig,
    speech: SpeechConfig,
    detector: DetectorConfig,
) -> None:
    """
    Validate cross-field constraints on the loaded configuration.

    Raises:
        ConfigurationError: If any configured value violates a hard constraint.
    """
    require_positive_ms("selection.dwell_duration_ms", selection.dwell_duration_ms)
    require_positive_ms("selection.cooldown_ms", selection.cooldown_ms)
    require_positive_ms("selection.scan_interval_ms", selection.scan_interval_ms)
    require_positive_ms("phrases.timeout_ms", phrases.timeout_ms)

    if selection.slot_count < 1:
        raise ConfigurationError(
            f"selection.slot_count must be at least 1, got {selection.slot_count}"
        )
    if not selection.static_items:
        raise ConfigurationError("selection.static_items must not be empty")
    if phrases.provider not in {"template", "gemini"}:
        raise ConfigurationError(
            f"phrases.provider must be 'template' or 'gemini', got '{phrases.provider}'"
        )
    if phrases.max_phrases < 1:
        raise ConfigurationError(
            f"phrases.max_phrases must be at least 1, got {phrases.max_phrases}"
        )
    if not (0.0 <= speech.volume <= 1.0):
        raise ConfigurationError(f"speech.volume must be in [0, 1], got {speech.volume}")
    if not (0.0 < detector.score_threshold < 1.0):
        raise ConfigurationError(
            "detector.score_threshold must be in (0, 1), "
            f"got {detector.score_threshold}"
        )
