"""
mindlens/core/constants.py — System constants for MindLens.

Session phase enum plus a frozen class of default timing values, slot sizing,
and fallback phrase templates. Config dataclasses take their defaults from here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar


# ──────────────────────────────────────────────────────────────
# Session phases
# ──────────────────────────────────────────────────────────────

class SessionPhase(Enum):
    """All valid phases of a MindLens selection session."""

    IDLE = "IDLE"
    SCANNING_OPTIONS = "SCANNING_OPTIONS"
    GENERATING = "GENERATING"
    SCANNING_RESULTS = "SCANNING_RESULTS"


# ──────────────────────────────────────────────────────────────
# Frozen constants dataclass
# ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MindLensConstants:
    """
    Frozen dataclass holding MindLens defaults.

    Use the class attributes directly — do not instantiate this class.

    Example::

        from mindlens.core.constants import MindLensConstants as C

        print(C.DWELL_DURATION_MS)   # 1500
    """

    # ── Timing (milliseconds) ─────────────────────────────────
    DWELL_DURATION_MS: ClassVar[int] = 1500
    """ms a target must hold focus before it is confirmed."""

    COOLDOWN_MS: ClassVar[int] = 1000
    """ms after a dwell confirmation during which focus is ignored."""

    SCAN_INTERVAL_MS: ClassVar[int] = 1200
    """ms between scan highlight advances."""

    PHRASE_TIMEOUT_MS: ClassVar[int] = 8000
    """Upper bound on a single phrase-generation call."""

    # ── Selectable set ────────────────────────────────────────
    SLOT_COUNT: ClassVar[int] = 2
    """Number of stabilized dynamic slots (K)."""

    STATIC_ITEMS: ClassVar[tuple[str, ...]] = ("HELP", "EMERGENCY", "PAIN")
    """Always-present options, shown first in this order."""

    PLACEHOLDER_LABEL: ClassVar[str] = "SCANNING"
    """Label rendered for a slot that has never been written."""

    # ── Phrase generation ─────────────────────────────────────
    MAX_PHRASES: ClassVar[int] = 3
    """Number of phrases offered after a keyword is chosen."""

    FALLBACK_TEMPLATES: ClassVar[tuple[str, ...]] = (
        "I need {keyword}.",
        "Can you help me with {keyword}?",
        "I am thinking about {keyword}.",
    )
    """Local phrase templates used when the generator fails."""

    GEMINI_MODEL: ClassVar[str] = "gemini-2.5-flash-lite"
    """Default cloud model for phrase generation."""

    # ── Detection ─────────────────────────────────────────────
    DETECTION_SCORE_THRESHOLD: ClassVar[float] = 0.45
    """Minimum detector score for a label to reach the slot stabilizer."""


#: Convenience alias: ``from mindlens.core.constants import C``
C = MindLensConstants
