"""Heuristic analog/digital classification of historian tags."""
from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence

from domain.historian import TagClassification, TagType, TimeSeriesPoint

logger = logging.getLogger(__name__)

_DIGITAL_PAIRS = ({0.0, 1.0}, {0.0, 100.0})


def classify_tag(points: Sequence[TimeSeriesPoint]) -> TagClassification:
    if not points:
        return TagClassification(tag_name="UNKNOWN", tag_type=TagType.ANALOG, confidence=0.0)

    tag_name = points[0].tag_name or "UNKNOWN"
    values = [float(p.value) for p in points if isinstance(p.value, (int, float)) and math.isfinite(p.value)]
    unique = set(values)
    value_range = (max(values) - min(values)) if values else 0.0

    def result(tag_type: TagType, confidence: float) -> TagClassification:
        return TagClassification(
            tag_name=tag_name,
            tag_type=tag_type,
            confidence=confidence,
            unique_values=len(unique),
            value_range=value_range,
        )

    if len(unique) == 2 and unique in _DIGITAL_PAIRS:
        return result(TagType.DIGITAL, 1.0)
    if len(unique) > 10:
        return result(TagType.ANALOG, 0.95)
    if value_range == 0:
        return result(TagType.ANALOG, 0.3)

    average_gap = value_range / len(unique)
    if average_gap < value_range * 0.1:
        return result(TagType.ANALOG, 0.8)
    return result(TagType.ANALOG, 0.5)


def classify_tags(data: Dict[str, List[TimeSeriesPoint]]) -> Dict[str, TagClassification]:
    results: Dict[str, TagClassification] = {}
    for tag_name, points in data.items():
        try:
            classification = classify_tag(points)
            classification.tag_name = tag_name
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to classify tag %s: %s", tag_name, exc)
            classification = TagClassification(tag_name=tag_name, tag_type=TagType.ANALOG, confidence=0.0)
        results[tag_name] = classification
    return results


def analog_tags(classifications: Dict[str, TagClassification]) -> List[str]:
    return [name for name, c in classifications.items() if c.tag_type == TagType.ANALOG]
