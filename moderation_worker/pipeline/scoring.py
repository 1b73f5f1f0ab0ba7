"""
Weighted sensitivity scoring.

Turns the per-frame label lists into a category score table, a flag
decision and a deduplicated label list. Frame order does not matter.
"""

import math
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from ..errors import AggregationError
from ..models import (
    OVERALL_FLAG_THRESHOLD,
    Category,
    CategoryScoreTable,
    ModerationLabel,
    SensitivityResult,
    round_half_up,
)

MAX_SCORE = 100
CLEAN_AVERAGE_CONFIDENCE = 100


def _validate(label: ModerationLabel) -> float:
    confidence = label.confidence
    if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise AggregationError(f"Label {label.name!r} has non-numeric confidence {confidence!r}")
    if math.isnan(confidence) or confidence < 0 or confidence > 100:
        raise AggregationError(f"Label {label.name!r} has confidence {confidence} outside [0, 100]")
    if not label.name:
        raise AggregationError("Label without a name")
    return float(confidence)


def is_flagged(table: CategoryScoreTable, raw_score: float) -> bool:
    """True if any category passes its own threshold or the overall score passes 50"""
    for category, score in table.items():
        threshold = category.flag_threshold
        if threshold is not None and score > threshold:
            return True
    return raw_score > OVERALL_FLAG_THRESHOLD


def aggregate(
    frame_labels: Sequence[Sequence[ModerationLabel]],
    analysis_method: str = "unknown",
    now: Optional[Callable[[], datetime]] = None
) -> SensitivityResult:
    """
    Compute the sensitivity verdict for a run.

    Args:
        frame_labels: One label list per analyzed frame (empty for clean or
            degraded frames)
        analysis_method: Name of the classifier backend
        now: Clock for analyzed_at

    Returns:
        SensitivityResult

    Raises:
        AggregationError: on malformed labels
    """
    table = CategoryScoreTable()
    detected: Dict[str, ModerationLabel] = {}

    for labels in frame_labels:
        for label in labels:
            confidence = _validate(label)

            parent_category = Category.lookup(label.parent or label.name)
            if parent_category is not None:
                table.raise_to(parent_category, confidence)

            own_category = Category.lookup(label.name)
            if own_category is not None:
                table.raise_to(own_category, confidence)

            if label.name not in detected:
                detected[label.name] = ModerationLabel(
                    name=label.name,
                    parent=label.parent,
                    confidence=round_half_up(confidence)
                )

    raw_score = min(MAX_SCORE, table.weighted_sum())
    detected_labels: List[ModerationLabel] = list(detected.values())

    if detected_labels:
        average = round_half_up(sum(label.confidence for label in detected_labels) / len(detected_labels))
    else:
        average = CLEAN_AVERAGE_CONFIDENCE

    return SensitivityResult(
        overall_score=round_half_up(raw_score),
        categories=table.snapshot(),
        detected_labels=tuple(detected_labels),
        frames_analyzed=len(frame_labels),
        average_label_confidence=average,
        is_flagged=is_flagged(table, raw_score),
        analyzed_at=(now or datetime.now)(),
        analysis_method=analysis_method
    )
