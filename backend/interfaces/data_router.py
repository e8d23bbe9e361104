"""Historian data and analysis endpoints."""
from __future__ import annotations

import io
import math
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from openpyxl import Workbook
from openpyxl.styles import Alignment, Font, PatternFill
from pydantic import BaseModel, Field

from application import statistics_service as stats
from application.data_filtering import SAMPLING_METHODS, apply_sampling, filter_by_quality
from application.tag_classification import classify_tags
from domain.errors import ReportingError
from domain.historian import SpecificationLimits, TimeSeriesPoint, quality_label
from interfaces import deps

router = APIRouter(prefix="/data", tags=["data"])


class AnalysisRequest(BaseModel):
    tags: List[str] = Field(..., min_length=1)
    startTime: datetime
    endTime: datetime


class SpcRequest(AnalysisRequest):
    specificationLimits: Dict[str, Dict[str, Optional[float]]] = Field(default_factory=dict)


class AnomalyRequest(AnalysisRequest):
    threshold: float = Field(2.0, gt=0)
    method: str = Field("combined", pattern="^(zscore|iqr|combined)$")


def _json_number(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return value


def _point_to_dict(point: TimeSeriesPoint) -> Dict[str, Any]:
    return {
        "timestamp": point.timestamp.isoformat(),
        "value": _json_number(point.value),
        "quality": point.quality,
        "qualityLabel": quality_label(point.quality),
    }


def _excel_time(value: datetime) -> datetime:
    # openpyxl cannot store tz-aware datetimes; aware values are written as UTC
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _read(tag: str, start: datetime, end: datetime) -> List[TimeSeriesPoint]:
    if start >= end:
        raise HTTPException(status_code=400, detail="Start time must be before end time")
    try:
        return deps.historian.read_history(tag, start, end)
    except ReportingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


def _read_all(request: AnalysisRequest) -> Dict[str, List[TimeSeriesPoint]]:
    return {tag: _read(tag, request.startTime, request.endTime) for tag in request.tags}


@router.get("/tags/{tag:path}")
def get_tag_data(
    tag: str,
    startTime: datetime = Query(...),
    endTime: datetime = Query(...),
    quality: Optional[List[int]] = Query(default=None),
    sampleInterval: Optional[int] = Query(default=None, gt=0),
    sampleMethod: str = Query("uniform"),
) -> Dict[str, Any]:
    points = _read(tag, startTime, endTime)
    quality_report = None
    if quality:
        points, quality_report = filter_by_quality(points, quality)
    if sampleInterval:
        if sampleMethod not in SAMPLING_METHODS:
            raise HTTPException(status_code=400, detail=f"Unknown sampling method: {sampleMethod}")
        points = apply_sampling(points, sampleInterval, sampleMethod)
    return {
        "tag": tag,
        "count": len(points),
        "points": [_point_to_dict(p) for p in points],
        "qualityFilter": quality_report,
    }


@router.post("/statistics")
def get_statistics(request: AnalysisRequest) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for tag, points in _read_all(request).items():
        try:
            s = stats.calculate_statistics(points)
        except ValueError as exc:
            result[tag] = {"error": str(exc)}
            continue
        result[tag] = {
            "min": s.min,
            "max": s.max,
            "average": s.average,
            "standardDeviation": s.standard_deviation,
            "count": s.count,
            "dataQuality": s.data_quality,
        }
    return result


@router.post("/trend")
def get_trends(request: AnalysisRequest) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for tag, points in _read_all(request).items():
        try:
            trend = stats.calculate_advanced_trend_line(points)
        except ValueError as exc:
            result[tag] = {"error": str(exc)}
            continue
        result[tag] = {
            "slope": trend.slope,
            "intercept": trend.intercept,
            "rSquared": trend.r_squared,
            "equation": trend.equation,
        }
    return result


@router.post("/spc")
def get_spc(request: SpcRequest) -> Dict[str, Any]:
    limits = {
        tag: SpecificationLimits(lsl=values.get("lsl"), usl=values.get("usl"))
        for tag, values in request.specificationLimits.items()
    }
    errors = stats.validate_specification_limits_map(limits)
    if errors:
        raise HTTPException(status_code=400, detail=errors)

    data = _read_all(request)
    classifications = classify_tags(data)
    result: Dict[str, Any] = {}
    for tag, points in data.items():
        entry: Dict[str, Any] = {"tagType": classifications[tag].tag_type.value}
        try:
            metrics = stats.calculate_spc_metrics(points, limits.get(tag))
        except ValueError as exc:
            entry["error"] = str(exc)
            result[tag] = entry
            continue
        entry.update({
            "mean": metrics.mean,
            "stdDev": metrics.std_dev,
            "ucl": metrics.ucl,
            "lcl": metrics.lcl,
            "cp": _json_number(metrics.cp),
            "cpk": _json_number(metrics.cpk),
            "capability": stats.assess_capability(metrics.cp, metrics.cpk),
            "outOfControlPoints": metrics.out_of_control_points,
        })
        result[tag] = entry
    return result


@router.post("/quality")
def get_quality(request: AnalysisRequest) -> Dict[str, Any]:
    return {tag: asdict(stats.calculate_data_quality(points)) for tag, points in _read_all(request).items()}


@router.post("/anomalies")
def get_anomalies(request: AnomalyRequest) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for tag, points in _read_all(request).items():
        if request.method == "zscore":
            anomalies = stats.detect_anomalies(points, request.threshold)
        elif request.method == "iqr":
            anomalies = stats.detect_anomalies_iqr(points)
        else:
            anomalies = stats.detect_all_anomalies(points, request.threshold)
        result[tag] = [
            {
                "timestamp": a.timestamp.isoformat(),
                "value": a.value,
                "expectedValue": a.expected_value,
                "deviation": _json_number(a.deviation),
                "severity": a.severity.value,
                "description": a.description,
            }
            for a in anomalies
        ]
    return result


@router.post("/classify")
def classify(request: AnalysisRequest) -> Dict[str, Any]:
    return {
        tag: {"tagType": c.tag_type.value, "confidence": c.confidence,
              "uniqueValues": c.unique_values, "valueRange": c.value_range}
        for tag, c in classify_tags(_read_all(request)).items()
    }


@router.post("/export.xlsx")
def export_workbook(request: AnalysisRequest) -> StreamingResponse:
    """One sheet per tag plus a statistics summary sheet."""
    data = _read_all(request)
    wb = Workbook()
    summary = wb.active
    summary.title = "Summary"
    header_fill = PatternFill("solid", fgColor="DBEAFE")

    def write_header(ws, labels: List[str]) -> None:
        ws.append(labels)
        for cell in ws[ws.max_row]:
            cell.fill = header_fill
            cell.font = Font(bold=True)
            cell.alignment = Alignment(horizontal="center")

    write_header(summary, ["Tag", "Count", "Min", "Max", "Average", "Std Dev", "Quality %"])
    for index, (tag, points) in enumerate(data.items(), start=1):
        try:
            s = stats.calculate_statistics(points)
            summary.append([tag, s.count, s.min, s.max, s.average, s.standard_deviation, s.data_quality])
        except ValueError:
            summary.append([tag, 0])

        # sheet titles are limited to 31 chars and may not contain []:*?/\
        title = "".join(ch for ch in tag if ch not in "[]:*?/\\")[:28] or "Tag"
        ws = wb.create_sheet(title=f"{index}-{title}"[:31])
        write_header(ws, ["Timestamp", "Value", "Quality"])
        for point in points:
            ws.append([_excel_time(point.timestamp), _json_number(point.value), quality_label(point.quality)])
        ws.column_dimensions["A"].width = 22

    summary.column_dimensions["A"].width = 30
    buffer = io.BytesIO()
    wb.save(buffer)
    buffer.seek(0)
    filename = f"historian_export_{datetime.now().strftime('%Y_%m_%d_%H%M')}.xlsx"
    return StreamingResponse(
        buffer,
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
