"""
mindlens/vision/detections.py — Object detector output to label sets.

Decodes the four output tensors of an SSD-style TFLite detector
(boxes, classes, scores, count) into labelled detections. Only the label set
reaches the session; boxes are kept for overlays.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

import numpy as np

from mindlens.core.constants import MindLensConstants as C

logger = logging.getLogger(__name__)

# Standard COCO label map as emitted by SSD MobileNet TFLite models.
# '???' marks unused class ids.
COCO_LABELS: tuple[str, ...] = (
    "person", "bicycle", "car", "motorcycle", "airplane", "bus", "train", "truck", "boat",
    "traffic light", "fire hydrant", "???", "stop sign", "parking meter", "bench",
    "bird", "cat", "dog", "horse", "sheep", "cow", "elephant", "bear", "zebra", "giraffe",
    "???", "backpack", "umbrella", "???", "???", "handbag", "tie", "suitcase", "frisbee",
    "skis", "snowboard", "sports ball", "kite", "baseball bat", "baseball glove",
    "skateboard", "surfboard", "tennis racket", "bottle", "???", "wine glass", "cup",
    "fork", "knife", "spoon", "bowl", "banana", "apple", "sandwich", "orange", "broccoli",
    "carrot", "hot dog", "pizza", "donut", "cake", "chair", "couch", "potted plant", "bed",
    "???", "dining table", "???", "???", "toilet", "???", "tv", "laptop", "mouse",
    "remote", "keyboard", "cell phone", "microwave", "oven", "toaster", "sink",
    "refrigerator", "???", "book", "clock", "vase", "scissors", "teddy bear",
    "hair drier", "toothbrush",
)

_UNUSED_LABEL = "???"


@dataclass(frozen=True)
class DetectionResult:
    """
    A single detection above the score threshold.

    Attributes:
        label: COCO class name.
        confidence: Detector score in [0, 1].
        box: ``(ymin, xmin, ymax, xmax)`` in normalised image coordinates.
    """

    label: str
    confidence: float
    box: tuple[float, float, float, float]


def parse_detections(
    outputs: Sequence[object],
    threshold: float = C.DETECTION_SCORE_THRESHOLD,
    labels: Sequence[str] = COCO_LABELS,
) -> list[DetectionResult]:
    """
    Decode raw detector outputs.

    Args:
        outputs: ``[boxes, classes, scores, count]`` — array-likes, optionally
            with a leading batch dimension of 1.
        threshold: Detections scoring at or below this are dropped.
        labels: Class-id to name table.

    Returns:
        Detections in detector order. Unused class ids and ids outside the
        table are dropped.
    """
    if not outputs or len(outputs) < 4:
        return []

    boxes = np.asarray(outputs[0], dtype=np.float32).reshape(-1, 4)
    classes = np.asarray(outputs[1], dtype=np.float32).reshape(-1)
    scores = np.asarray(outputs[2], dtype=np.float32).reshape(-1)
    counts = np.asarray(outputs[3]).reshape(-1)
    if counts.size == 0:
        return []
    count = int(counts[0])
    count = min(count, len(scores), len(classes), len(boxes))

    results: list[DetectionResult] = []
    for i in range(count):
        score = float(scores[i])
        if score <= threshold:
            continue
        class_id = int(np.rint(classes[i]))
        if not 0 <= class_id < len(labels) or labels[class_id] == _UNUSED_LABEL:
            logger.debug("Dropping detection with unmapped class id %d", class_id)
            continue
        results.append(
            DetectionResult(
                label=labels[class_id],
                confidence=score,
                box=tuple(float(v) for v in boxes[i]),  # type: ignore[arg-type]
            )
        )
    return results


def detected_labels(detections: Iterable[DetectionResult]) -> list[str]:
    """
    Reduce detections to the distinct labels fed to the slot stabilizer.

    Detector order (highest score first for SSD models) is kept so that,
    when several new labels arrive at once, the strongest takes a slot first.
    """
    return list(dict.fromkeys(d.label for d in detections))
