"""
mindlens/intent/selectable.py — Ordered list of selectable items.

Static keywords first, then one entry per stabilized slot. Both builders are
pure; the orchestrator rebuilds the tuple on every change and never mutates it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from mindlens.core.config import ConfigurationError
from mindlens.core.constants import MindLensConstants as C
from mindlens.intent.slots import Slot


@dataclass(frozen=True)
class SelectableItem:
    """
    A single option the user can select.

    Attributes:
        id: Identifier unique within the current set, stable while content is.
        label: Display and speech text.
        is_dynamic: True for slot-derived and generated entries.
        is_placeholder: True for a never-written slot; not actionable.
    """

    id: str
    label: str
    is_dynamic: bool = False
    is_placeholder: bool = False


def static_item(label: str) -> SelectableItem:
    """Build an always-present item; its id is the upper-cased label."""
    text = label.strip()
    return SelectableItem(id=text.upper(), label=text)


def slot_item(slot: Slot) -> SelectableItem:
    """Build the item shown for *slot*, a placeholder if it was never written."""
    if slot.content is None:
        return SelectableItem(
            id=f"{C.PLACEHOLDER_LABEL}_{slot.index}",
            label=C.PLACEHOLDER_LABEL,
            is_dynamic=True,
            is_placeholder=True,
        )
    return SelectableItem(
        id=f"{slot.content}_SLOT_{slot.index}",
        label=slot.content,
        is_dynamic=True,
    )


def build_selectable_set(
    static_items: Sequence[str],
    slots: Sequence[Slot],
) -> tuple[SelectableItem, ...]:
    """
    Merge static keywords and slot suggestions into the presented order.

    Args:
        static_items: Always-present labels, in display order.
        slots: Slot state from :class:`~mindlens.intent.slots.SlotStabilizer`.

    Returns:
        Static items followed by slot items in slot-index order.

    Raises:
        ConfigurationError: If *static_items* is empty or has duplicate ids.
    """
    if not static_items:
        raise ConfigurationError("static_items must not be empty")

    statics = [static_item(label) for label in static_items]
    ids = [item.id for item in statics]
    if len(set(ids)) != len(ids):
        raise ConfigurationError(f"static_items contains duplicate ids: {ids}")

    dynamics = [slot_item(slot) for slot in sorted(slots, key=lambda s: s.index)]
    return tuple(statics + dynamics)


def build_phrase_set(phrases: Sequence[str]) -> tuple[SelectableItem, ...]:
    """Build the result list scanned after a keyword has been chosen."""
    return tuple(
        SelectableItem(id=f"PHRASE_{i}", label=phrase, is_dynamic=True)
        for i, phrase in enumerate(phrases)
    )
