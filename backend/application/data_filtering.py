"""Filtering and down-sampling of retrieved time series."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from domain.historian import DataFilter, QualityCode, TimeSeriesPoint
from domain.report import RELATIVE_RANGES

SAMPLING_METHODS = ("uniform", "average", "max", "min")


def apply_filters(points: Sequence[TimeSeriesPoint], data_filter: Optional[DataFilter]) -> List[TimeSeriesPoint]:
    if data_filter is None or data_filter.is_empty:
        return list(points)

    tag_names = set(data_filter.tag_names)
    qualities = set(data_filter.quality_codes)
    filtered: List[TimeSeriesPoint] = []
    for point in points:
        if tag_names and point.tag_name not in tag_names:
            continue
        if qualities and point.quality not in qualities:
            continue
        if data_filter.value_min is not None and point.value < data_filter.value_min:
            continue
        if data_filter.value_max is not None and point.value > data_filter.value_max:
            continue
        filtered.append(point)
    return filtered


def filter_by_quality(
    points: Sequence[TimeSeriesPoint],
    allowed: Iterable[int] = (QualityCode.GOOD,),
) -> Tuple[List[TimeSeriesPoint], Dict[str, int]]:
    """Keep points whose quality is in ``allowed`` and report what was dropped."""
    allowed_codes = {int(code) for code in allowed}
    report = {"total": len(points), "good": 0, "bad": 0, "uncertain": 0, "other": 0, "filteredOut": 0}
    kept: List[TimeSeriesPoint] = []
    for point in points:
        if point.quality == QualityCode.GOOD:
            report["good"] += 1
        elif point.quality == QualityCode.BAD:
            report["bad"] += 1
        elif point.quality == QualityCode.UNCERTAIN:
            report["uncertain"] += 1
        else:
            report["other"] += 1

        if point.quality in allowed_codes:
            kept.append(point)
        else:
            report["filteredOut"] += 1
    return kept, report


def apply_sampling(points: Sequence[TimeSeriesPoint], interval: int, method: str = "uniform") -> List[TimeSeriesPoint]:
    if interval <= 0:
        raise ValueError("Sampling interval must be greater than 0")
    if method not in SAMPLING_METHODS:
        raise ValueError(f"Unknown sampling method: {method}")

    ordered = sorted(points, key=lambda p: p.timestamp)
    if method == "uniform":
        return ordered[::interval]

    sampled: List[TimeSeriesPoint] = []
    for start in range(0, len(ordered), interval):
        bucket = ordered[start:start + interval]
        values = [float(p.value) for p in bucket]
        if method == "average":
            value = sum(values) / len(values)
        elif method == "max":
            value = max(values)
        else:
            value = min(values)
        sampled.append(
            TimeSeriesPoint(
                timestamp=bucket[0].timestamp,
                value=value,
                quality=min(p.quality for p in bucket),
                tag_name=bucket[0].tag_name,
            )
        )
    return sampled


def resolve_relative_range(name: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    try:
        span = RELATIVE_RANGES[name]
    except KeyError:
        raise ValueError(f"Unknown relative time range: {name}") from None
    end = now or datetime.now()
    return end - span, end
