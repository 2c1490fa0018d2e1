"""
mindlens/llm/phrases.py — Phrase generation for a chosen keyword.

Turns a keyword ("WATER") into a few short first-person sentences the user
might want to say. The cloud generator is unreliable by nature; every failure
surfaces as :class:`PhraseGenerationError` so the session can fall back to
:func:`fallback_phrases`, which never fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional, Protocol, runtime_checkable

import requests
from pydantic import BaseModel, ValidationError, field_validator

from mindlens.core.config import PhraseConfig
from mindlens.core.constants import MindLensConstants as C

logger = logging.getLogger(__name__)


_SYSTEM_INSTRUCTION: str = (
    "You are an assistive communication AI for a patient with limited speech. "
    "The user will provide a keyword representing their intent. "
    "Generate {count} short, clear, and natural sentences the patient might want to say. "
    "Rules: sentences must be first-person; keep them under 10 words; "
    "output ONLY a JSON array of strings. "
    'Example for keyword "WATER": '
    '["I am thirsty.", "May I have some water?", "Please help me drink."]'
)


class PhraseGenerationError(RuntimeError):
    """Raised when a generator cannot produce a usable phrase list."""


@runtime_checkable
class PhraseGenerator(Protocol):
    """Anything that can turn a keyword into candidate phrases."""

    async def generate(self, keyword: str) -> list[str]:
        """Return candidate phrases for *keyword*; raise on failure."""
        ...


class PhraseList(BaseModel):
    """
    Pydantic-validated generator output.

    Strips every phrase and drops blank ones; at least one phrase must remain.
    """

    phrases: list[str]

    @field_validator("phrases")
    @classmethod
    def must_have_phrases(cls, v: list[str]) -> list[str]:
        """
        Normalise the phrase list.

        Raises:
            ValueError: If no non-empty phrase is left.
        """
        cleaned = [p.strip() for p in v if p and p.strip()]
        if not cleaned:
            raise ValueError("Phrase list must contain at least one non-empty phrase")
        return cleaned


def fallback_phrases(keyword: str, count: int = C.MAX_PHRASES) -> list[str]:
    """
    Deterministic local phrases for *keyword*.

    Args:
        keyword: The selected keyword, used verbatim.
        count: Number of phrases to return, capped at the template count.
    """
    word = keyword.strip()
    return [t.format(keyword=word) for t in C.FALLBACK_TEMPLATES[:max(1, count)]]


def parse_phrase_payload(text: str, max_phrases: int = C.MAX_PHRASES) -> list[str]:
    """
    Parse a model's JSON-array reply into a validated phrase list.

    Raises:
        PhraseGenerationError: If the text is not a JSON array of strings
            with at least one non-empty entry.
    """
    try:
        data = json.loads(text)
        if not isinstance(data, list) or not all(isinstance(p, str) for p in data):
            raise PhraseGenerationError(f"Expected a JSON array of strings, got: {text[:80]!r}")
        return PhraseList(phrases=data).phrases[:max_phrases]
    except (json.JSONDecodeError, ValidationError) as exc:
        raise PhraseGenerationError(f"Malformed phrase payload: {exc}") from exc


class TemplatePhraseGenerator:
    """Offline generator returning :func:`fallback_phrases`."""

    def __init__(self, max_phrases: int = C.MAX_PHRASES) -> None:
        self._max_phrases = max_phrases

    async def generate(self, keyword: str) -> list[str]:
        return fallback_phrases(keyword, self._max_phrases)


class GeminiPhraseGenerator:
    """
    Gemini REST phrase generator.

    The blocking ``requests`` call runs in a worker thread so the event loop
    keeps scheduling timers while the network is slow. Timeouts are enforced
    twice: by ``requests`` and by the session's ``asyncio.wait_for``.

    Args:
        config: Phrase provider configuration.
        api_key: Overrides the key read from ``config.api_key_env``.
        session: Optional ``requests.Session`` (tests inject a mock).
    """

    def __init__(
        self,
        config: PhraseConfig,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._cfg = config
        self._api_key = api_key or config.api_key
        self._session = session or requests.Session()
        logger.info("GeminiPhraseGenerator initialised (model=%s)", config.model)

    @property
    def url(self) -> str:
        return f"{self._cfg.endpoint.rstrip('/')}/{self._cfg.model}:generateContent"

    async def generate(self, keyword: str) -> list[str]:
        """
        Ask the model for phrases.

        Raises:
            PhraseGenerationError: On a missing key, transport error, non-2xx
                status, or malformed reply.
        """
        if not self._api_key:
            raise PhraseGenerationError(
                f"No API key: set {self._cfg.api_key_env} or use provider 'template'"
            )
        return await asyncio.to_thread(self._generate_blocking, keyword)

    def build_request(self, keyword: str) -> dict[str, Any]:
        """Return the JSON body for a generateContent call."""
        return {
            "systemInstruction": {
                "parts": [{"text": _SYSTEM_INSTRUCTION.format(count=self._cfg.max_phrases)}]
            },
            "contents": [{"parts": [{"text": f"Keyword: {keyword}"}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }

    def _generate_blocking(self, keyword: str) -> list[str]:
        try:
            resp = self._session.post(
                self.url,
                params={"key": self._api_key},
                json=self.build_request(keyword),
                timeout=self._cfg.timeout_ms / 1000.0,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as exc:
            raise PhraseGenerationError(f"Gemini request failed: {exc}") from exc

        try:
            text = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise PhraseGenerationError(f"Unexpected Gemini response shape: {exc}") from exc

        return parse_phrase_payload(text, self._cfg.max_phrases)


def build_phrase_generator(config: PhraseConfig) -> PhraseGenerator:
    """Return the generator selected by ``config.provider``."""
    if config.provider == "gemini":
        return GeminiPhraseGenerator(config)
    return TemplatePhraseGenerator(config.max_phrases)
