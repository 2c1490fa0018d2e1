"""
mindlens/intent/slots.py — Flicker-resistant dynamic suggestion slots.

An object detector re-evaluates every frame and its label list churns. The
SlotStabilizer keeps a fixed number of slots and only writes a label into a
slot the first time it is seen, round-robin, so a label that keeps being
re-detected never moves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from mindlens.core.config import ConfigurationError
from mindlens.core.constants import MindLensConstants as C

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Slot:
    """
    One stabilized dynamic position.

    Attributes:
        index: Slot position in ``0..K-1``.
        content: Normalised label occupying the slot, or None if never written.
    """

    index: int
    content: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return self.content is None


def normalise_labels(labels: Iterable[str]) -> list[str]:
    """
    Strip, upper-case and de-duplicate labels, keeping first-seen order.

    Empty and whitespace-only labels are dropped.
    """
    seen: dict[str, None] = {}
    for raw in labels:
        label = str(raw).strip().upper()
        if label and label not in seen:
            seen[label] = None
    return list(seen)


class SlotStabilizer:
    """
    Round-robin slot writer.

    State persists between :meth:`update` calls for the lifetime of the
    instance. The only mutation is a write at the round-robin pointer, which
    then advances ``(pointer + 1) mod K``.

    Args:
        slot_count: Number of slots (K). Must be at least 1.
    """

    def __init__(self, slot_count: int = C.SLOT_COUNT) -> None:
        if slot_count < 1:
            raise ConfigurationError(f"slot_count must be at least 1, got {slot_count}")
        self._slots: list[Optional[str]] = [None] * slot_count
        self._pointer: int = 0

    @property
    def slot_count(self) -> int:
        return len(self._slots)

    @property
    def write_pointer(self) -> int:
        """Index of the slot the next new label will overwrite."""
        return self._pointer

    @property
    def slots(self) -> tuple[Slot, ...]:
        return tuple(Slot(index=i, content=c) for i, c in enumerate(self._slots))

    def update(self, detected_labels: Iterable[str]) -> tuple[Slot, ...]:
        """
        Fold one detector report into the slots.

        New labels are written in input order. At most K writes happen per
        call; labels beyond that are picked up when the detector re-reports
        them. Labels already in a slot are left where they are.

        Args:
            detected_labels: Labels from one detector pass (any iterable,
                duplicates and mixed case allowed).

        Returns:
            The slot state after the update.
        """
        writes = 0
        for label in normalise_labels(detected_labels):
            if writes >= len(self._slots):
                break
            if label in self._slots:
                continue
            replaced = self._slots[self._pointer]
            self._slots[self._pointer] = label
            logger.debug("Slot %d: %r → %r", self._pointer, replaced, label)
            self._pointer = (self._pointer + 1) % len(self._slots)
            writes += 1
        return self.slots

    def __repr__(self) -> str:
        return f"SlotStabilizer(slots={self._slots!r}, pointer={self._pointer})"
