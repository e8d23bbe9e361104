"""Statistical analysis over historian time series.

All functions are pure: they take lists of ``TimeSeriesPoint`` and return
result dataclasses. Invalid input raises ``ValueError``; routers turn that into
a 400 response.
"""
from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence

from domain.historian import (
    SEVERITY_RANK,
    AdvancedTrendResult,
    AnomalyResult,
    DataQualityReport,
    QualityCode,
    Severity,
    SPCMetrics,
    SpecificationLimits,
    StatisticsResult,
    TimeSeriesPoint,
    TrendResult,
)


def _is_finite(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _finite_values(points: Iterable[TimeSeriesPoint]) -> List[float]:
    return [float(p.value) for p in points if _is_finite(p.value)]


# Descriptive statistics ----------------------------------------------------
def calculate_statistics(points: Sequence[TimeSeriesPoint]) -> StatisticsResult:
    if not points:
        raise ValueError("No data points provided")
    values = _finite_values(points)
    if not values:
        raise ValueError("No valid numeric values found")

    count = len(values)
    average = sum(values) / count
    variance = sum((v - average) ** 2 for v in values) / count
    good = sum(1 for p in points if p.quality == QualityCode.GOOD)

    return StatisticsResult(
        min=min(values),
        max=max(values),
        average=average,
        standard_deviation=math.sqrt(variance),
        count=count,
        data_quality=good / len(points) * 100,
    )


# Trends --------------------------------------------------------------------
def calculate_trend_line(points: Sequence[TimeSeriesPoint]) -> TrendResult:
    """Least-squares fit against the point index."""
    if len(points) < 2:
        raise ValueError("At least 2 data points required for trend analysis")

    ys = _finite_values(points)
    if len(ys) < 2:
        raise ValueError("At least 2 valid data points required for trend analysis")
    n = len(ys)
    xs = list(range(n))
    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_xx = sum(x * x for x in xs)
    sum_yy = sum(y * y for y in ys)

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n

    numerator = n * sum_xy - sum_x * sum_y
    denominator = math.sqrt(max((n * sum_xx - sum_x ** 2) * (n * sum_yy - sum_y ** 2), 0.0))
    correlation = numerator / denominator if denominator else 0.0

    sign = "+" if intercept >= 0 else "-"
    equation = f"y = {slope:.4f}x {sign} {abs(intercept):.4f}"

    return TrendResult(
        slope=slope,
        intercept=intercept,
        correlation=correlation,
        equation=equation,
        confidence=correlation * correlation,
    )


def format_trend_equation(slope: float, intercept: float) -> str:
    if intercept >= 0:
        return f"y = {slope:.2f}x + {intercept:.2f}"
    return f"y = {slope:.2f}x - {abs(intercept):.2f}"


def calculate_advanced_trend_line(points: Sequence[TimeSeriesPoint]) -> AdvancedTrendResult:
    """Least-squares fit against elapsed seconds since the first sample."""
    if len(points) < 3:
        raise ValueError("Insufficient data for trend calculation")

    origin = points[0].timestamp
    pairs = [
        ((p.timestamp - origin).total_seconds(), float(p.value))
        for p in points
        if _is_finite(p.value)
    ]
    if len(pairs) < 3:
        raise ValueError("Insufficient valid data for trend calculation")

    n = len(pairs)
    sum_x = sum(x for x, _ in pairs)
    sum_y = sum(y for _, y in pairs)
    sum_xy = sum(x * y for x, y in pairs)
    sum_xx = sum(x * x for x, _ in pairs)

    denominator = n * sum_xx - sum_x * sum_x
    if denominator == 0:
        slope = 0.0
        intercept = sum_y / n
    else:
        slope = (n * sum_xy - sum_x * sum_y) / denominator
        intercept = (sum_y - slope * sum_x) / n

    mean_y = sum_y / n
    ss_tot = sum((y - mean_y) ** 2 for _, y in pairs)
    ss_res = sum((y - (slope * x + intercept)) ** 2 for x, y in pairs)
    r_squared = 1.0 if ss_tot == 0 else 1 - ss_res / ss_tot
    r_squared = min(max(r_squared, 0.0), 1.0)

    slope = round(slope, 2) or 0.0
    intercept = round(intercept, 2) or 0.0
    return AdvancedTrendResult(
        slope=slope,
        intercept=intercept,
        r_squared=round(r_squared, 3),
        equation=format_trend_equation(slope, intercept),
    )


def calculate_moving_average(points: Sequence[TimeSeriesPoint], window: int) -> List[TimeSeriesPoint]:
    if window <= 0 or window > len(points):
        raise ValueError("Invalid window size for moving average")

    result: List[TimeSeriesPoint] = []
    for end in range(window - 1, len(points)):
        values = _finite_values(points[end - window + 1:end + 1])
        if not values:
            continue
        average = sum(values) / len(values)
        last = points[end]
        result.append(
            TimeSeriesPoint(
                timestamp=last.timestamp,
                value=average,
                quality=last.quality,
                tag_name=last.tag_name,
            )
        )
    return result


def calculate_percentage_change(points: Sequence[TimeSeriesPoint], period_size: int = 1) -> float:
    if len(points) < 2:
        raise ValueError("At least 2 data points required")
    period_size = max(1, min(period_size, len(points) // 2 or 1))
    start_avg = sum(float(p.value) for p in points[:period_size]) / period_size
    end_avg = sum(float(p.value) for p in points[-period_size:]) / period_size
    if start_avg == 0:
        raise ValueError("Cannot calculate percentage change from zero")
    return (end_avg - start_avg) / abs(start_avg) * 100


# Anomalies -----------------------------------------------------------------
def _severity_for(deviation: float, threshold: float) -> Severity:
    if deviation > threshold * 2:
        return Severity.HIGH
    if deviation > threshold * 1.5:
        return Severity.MEDIUM
    return Severity.LOW


def detect_anomalies(points: Sequence[TimeSeriesPoint], threshold: float = 2.0) -> List[AnomalyResult]:
    """Flag points more than ``threshold`` standard deviations from the mean."""
    if len(points) < 3:
        return []
    values = _finite_values(points)
    if len(values) < 3:
        return []

    average = sum(values) / len(values)
    std = math.sqrt(sum((v - average) ** 2 for v in values) / len(values))
    if std == 0:
        return []

    anomalies: List[AnomalyResult] = []
    for point in points:
        if not _is_finite(point.value):
            continue
        deviation = abs(point.value - average) / std
        if deviation > threshold:
            anomalies.append(
                AnomalyResult(
                    timestamp=point.timestamp,
                    value=float(point.value),
                    expected_value=average,
                    deviation=deviation,
                    severity=_severity_for(deviation, threshold),
                    description=f"Value deviates {deviation:.2f} standard deviations from mean",
                )
            )
    return anomalies


def detect_anomalies_iqr(points: Sequence[TimeSeriesPoint], multiplier: float = 1.5) -> List[AnomalyResult]:
    values = sorted(_finite_values(points))
    n = len(values)
    if n < 4:
        return []

    q1 = values[int(n * 0.25)]
    q3 = values[int(n * 0.75)]
    iqr = q3 - q1
    lower = q1 - multiplier * iqr
    upper = q3 + multiplier * iqr

    anomalies: List[AnomalyResult] = []
    for point in points:
        if not _is_finite(point.value):
            continue
        value = float(point.value)
        if lower <= value <= upper:
            continue
        expected = lower if value < lower else upper
        deviation = abs(value - expected) / iqr if iqr else float("inf")
        side = "below" if value < lower else "above"
        anomalies.append(
            AnomalyResult(
                timestamp=point.timestamp,
                value=value,
                expected_value=expected,
                deviation=deviation,
                severity=_severity_for(deviation, multiplier),
                description=f"IQR outlier: value {side} expected range [{lower:.2f}, {upper:.2f}]",
            )
        )
    return anomalies


def detect_all_anomalies(points: Sequence[TimeSeriesPoint], threshold: float = 2.0,
                         multiplier: float = 1.5) -> List[AnomalyResult]:
    """Union of z-score and IQR anomalies, one entry per (timestamp, value)."""
    merged: Dict[tuple, AnomalyResult] = {}
    for anomaly in detect_anomalies(points, threshold) + detect_anomalies_iqr(points, multiplier):
        key = (anomaly.timestamp, anomaly.value)
        current = merged.get(key)
        if current is None or SEVERITY_RANK[anomaly.severity] > SEVERITY_RANK[current.severity]:
            merged[key] = anomaly
    return sorted(merged.values(), key=lambda a: a.timestamp)


# Data quality --------------------------------------------------------------
def calculate_data_quality(points: Sequence[TimeSeriesPoint]) -> DataQualityReport:
    total = len(points)
    good = sum(1 for p in points if p.quality == QualityCode.GOOD)
    uncertain = sum(1 for p in points if p.quality == QualityCode.UNCERTAIN)
    bad = total - good - uncertain

    gaps = 0
    if total > 2:
        ordered = sorted(p.timestamp for p in points)
        intervals = [(b - a).total_seconds() for a, b in zip(ordered, ordered[1:])]
        median = sorted(intervals)[len(intervals) // 2]
        if median > 0:
            gaps = sum(1 for i in intervals if i > median * 2)

    return DataQualityReport(
        total_points=total,
        good_points=good,
        bad_points=bad,
        uncertain_points=uncertain,
        quality_percentage=(good / total * 100) if total else 0.0,
        missing_data_gaps=gaps,
    )


# Statistical process control -------------------------------------------------
def calculate_spc_metrics(points: Sequence[TimeSeriesPoint],
                          limits: Optional[SpecificationLimits] = None) -> SPCMetrics:
    values = _finite_values(points)
    if len(values) < 2:
        raise ValueError("At least 2 data points required")

    n = len(values)
    mean = sum(values) / n
    std_dev = math.sqrt(sum((v - mean) ** 2 for v in values) / (n - 1))
    ucl = mean + 3 * std_dev
    lcl = mean - 3 * std_dev

    cp: Optional[float] = None
    cpk: Optional[float] = None
    if limits is not None and limits.lsl is not None and limits.usl is not None:
        if limits.usl <= limits.lsl:
            raise ValueError("Invalid specification limits: USL must be greater than LSL")
        if std_dev == 0:
            within = limits.lsl <= mean <= limits.usl
            cp = cpk = math.inf if within else 0.0
        else:
            cp = round((limits.usl - limits.lsl) / (6 * std_dev), 3)
            cpk = round(min((limits.usl - mean) / (3 * std_dev), (mean - limits.lsl) / (3 * std_dev)), 3)

    out_of_control = [
        index
        for index, point in enumerate(points)
        if _is_finite(point.value) and (point.value > ucl or point.value < lcl)
    ]

    return SPCMetrics(
        mean=round(mean, 2),
        std_dev=round(std_dev, 2),
        ucl=round(ucl, 2),
        lcl=round(lcl, 2),
        cp=cp,
        cpk=cpk,
        out_of_control_points=out_of_control,
    )


def assess_capability(cp: Optional[float], cpk: Optional[float]) -> str:
    if cp is None or cpk is None:
        return "N/A"
    if cpk >= 1.33:
        return "Capable"
    if cpk >= 1.0:
        return "Marginal"
    return "Not Capable"


# Specification limits --------------------------------------------------------
def validate_specification_limits(tag_name: str, limits: SpecificationLimits) -> List[str]:
    """Return human readable problems with ``limits``; empty means valid."""
    errors: List[str] = []
    prefix = f'Tag "{tag_name}": '
    for label, value in (("Lower Specification Limit (LSL)", limits.lsl),
                         ("Upper Specification Limit (USL)", limits.usl)):
        if value is not None and not _is_finite(value):
            errors.append(f"{prefix}{label} must be a finite number")
    if errors:
        return errors
    if limits.lsl is not None and limits.usl is not None and limits.usl <= limits.lsl:
        errors.append(
            f"{prefix}Upper Specification Limit (USL) must be greater than Lower Specification "
            f"Limit (LSL). Current values: USL={limits.usl}, LSL={limits.lsl}"
        )
    return errors


def validate_specification_limits_map(limits_map: Dict[str, SpecificationLimits]) -> List[str]:
    errors: List[str] = []
    for tag_name, limits in limits_map.items():
        errors.extend(validate_specification_limits(tag_name, limits))
    return errors


def has_complete_limits(limits: Optional[SpecificationLimits]) -> bool:
    return limits is not None and limits.lsl is not None and limits.usl is not None


def can_calculate_capability(limits: Optional[SpecificationLimits]) -> bool:
    return has_complete_limits(limits) and not validate_specification_limits("", limits)
