"""Report generation, download and saved-report endpoints."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from application.data_filtering import resolve_relative_range
from application.events import EventType, ReportEvent
from application.statistics_service import validate_specification_limits_map
from domain.errors import ReportingError
from domain.historian import DataFilter, SpecificationLimits
from domain.report import (
    RELATIVE_RANGES,
    ChartType,
    ReportBranding,
    ReportConfig,
    ReportFormat,
    ReportTemplate,
    SavedReport,
)
from interfaces import deps

router = APIRouter(prefix="/reports", tags=["reports"])

MEDIA_TYPES = {
    "pdf": "application/pdf",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
}


class LimitsPayload(BaseModel):
    lsl: Optional[float] = None
    usl: Optional[float] = None


class FilterPayload(BaseModel):
    tagNames: List[str] = Field(default_factory=list)
    qualityCodes: List[int] = Field(default_factory=list)
    valueMin: Optional[float] = None
    valueMax: Optional[float] = None


class BrandingPayload(BaseModel):
    companyName: str = "Historian Reports"
    primaryColor: str = Field("#0ea5e9", pattern=r"^#[0-9a-fA-F]{6}$")
    logoPath: Optional[str] = None


class ReportConfigPayload(BaseModel):
    id: Optional[str] = None
    name: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    startTime: Optional[datetime] = None
    endTime: Optional[datetime] = None
    relativeRange: Optional[str] = None
    chartTypes: List[ChartType] = Field(default_factory=lambda: [ChartType.LINE])
    template: ReportTemplate = ReportTemplate.DEFAULT
    format: ReportFormat = ReportFormat.PDF
    includeStatistics: bool = True
    includeTrends: bool = True
    includeAnomalies: bool = False
    includeDataTable: bool = False
    includeSpc: bool = False
    filters: Optional[FilterPayload] = None
    specificationLimits: Dict[str, LimitsPayload] = Field(default_factory=dict)
    branding: Optional[BrandingPayload] = None

    def to_domain(self) -> ReportConfig:
        start, end = self.startTime, self.endTime
        if self.relativeRange:
            start, end = resolve_relative_range(self.relativeRange)
        return ReportConfig(
            id=self.id or str(uuid4()),
            name=self.name,
            description=self.description,
            tags=list(self.tags),
            start_time=start,
            end_time=end,
            chart_types=list(self.chartTypes),
            template=self.template,
            format=self.format,
            include_statistics=self.includeStatistics,
            include_trends=self.includeTrends,
            include_anomalies=self.includeAnomalies,
            include_data_table=self.includeDataTable,
            include_spc=self.includeSpc,
            filters=DataFilter(
                tag_names=self.filters.tagNames,
                quality_codes=self.filters.qualityCodes,
                value_min=self.filters.valueMin,
                value_max=self.filters.valueMax,
            ) if self.filters else None,
            specification_limits={
                tag: SpecificationLimits(lsl=limits.lsl, usl=limits.usl)
                for tag, limits in self.specificationLimits.items()
            },
            branding=ReportBranding(
                company_name=self.branding.companyName,
                primary_color=self.branding.primaryColor,
                logo_path=self.branding.logoPath,
            ) if self.branding else None,
        )


class SaveReportRequest(BaseModel):
    name: str
    description: str = ""
    config: ReportConfigPayload
    changeDescription: Optional[str] = None


class NewVersionRequest(BaseModel):
    config: ReportConfigPayload
    changeDescription: Optional[str] = None


class ValidateLimitsRequest(BaseModel):
    specificationLimits: Dict[str, LimitsPayload]


def _raise(exc: ReportingError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


def _saved_to_dict(report: SavedReport, total_versions: Optional[int] = None) -> Dict[str, Any]:
    data = {
        "id": report.id,
        "name": report.name,
        "description": report.description,
        "config": report.config,
        "version": report.version,
        "createdBy": report.created_by,
        "createdAt": report.created_at.isoformat(),
        "updatedAt": report.updated_at.isoformat(),
        "isLatestVersion": report.is_latest_version,
        "changeDescription": report.change_description,
    }
    if total_versions is not None:
        data["totalVersions"] = total_versions
    return data


def _progress_publisher(report_id: str):
    def publish(stage: str, percent: int, message: str) -> None:
        if stage == "completed":
            event_type = EventType.REPORT_COMPLETED
        elif stage == "failed":
            event_type = EventType.REPORT_FAILED
        else:
            event_type = EventType.REPORT_PROGRESS
        deps.event_bus.publish_sync(ReportEvent(
            event_type=event_type,
            report_id=report_id,
            payload={"stage": stage, "progress": percent, "message": message},
        ))
    return publish


# Generation ---------------------------------------------------------------------
@router.get("/relative-ranges")
def list_relative_ranges() -> List[str]:
    return list(RELATIVE_RANGES)


@router.post("/generate")
def generate_report(payload: ReportConfigPayload) -> Dict[str, Any]:
    try:
        report_config = payload.to_domain()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    result = deps.data_flow_service.execute_report_generation(
        report_config, progress=_progress_publisher(report_config.id))
    metrics = result.data_metrics
    body: Dict[str, Any] = {
        "success": result.success,
        "reportId": report_config.id,
        "error": result.error,
        "dataMetrics": {
            "totalDataPoints": metrics.total_data_points,
            "tagsProcessed": metrics.tags_processed,
            "processingTime": round(metrics.processing_time, 3),
            "dataQuality": round(metrics.data_quality, 2),
        },
    }
    report = result.report_result
    if report is not None and report.success:
        body["fileName"] = Path(report.file_path).name if report.file_path else None
        body["metadata"] = {
            "pages": report.metadata.pages,
            "fileSize": report.metadata.file_size,
            "format": report.metadata.format,
            "generationTime": round(report.metadata.generation_time, 3),
        }
    if not result.success and report is None:
        raise HTTPException(status_code=400, detail=result.error)
    return body


@router.get("/files/{file_name}")
def download_report(file_name: str) -> FileResponse:
    reports_dir = deps.report_service.output_dir.resolve()
    target = (reports_dir / file_name).resolve()
    if target.parent != reports_dir or not target.is_file():
        raise HTTPException(status_code=404, detail="Report file not found")
    media_type = MEDIA_TYPES.get(target.suffix.lstrip("."), "application/octet-stream")
    return FileResponse(target, media_type=media_type, filename=target.name)


@router.get("/files")
def list_report_files() -> List[Dict[str, Any]]:
    reports_dir = deps.report_service.output_dir
    if not reports_dir.exists():
        return []
    files = [p for p in reports_dir.iterdir() if p.suffix.lstrip(".") in MEDIA_TYPES]
    files.sort(key=lambda p: p.stat().st_mtime, reverse=True)
    return [
        {
            "fileName": p.name,
            "size": p.stat().st_size,
            "modifiedAt": datetime.fromtimestamp(p.stat().st_mtime).isoformat(),
        }
        for p in files
    ]


@router.post("/validate-limits")
def validate_limits(payload: ValidateLimitsRequest) -> Dict[str, Any]:
    errors = validate_specification_limits_map({
        tag: SpecificationLimits(lsl=limits.lsl, usl=limits.usl)
        for tag, limits in payload.specificationLimits.items()
    })
    return {"valid": not errors, "errors": errors}


# Saved reports --------------------------------------------------------------------
@router.get("/saved")
def list_saved_reports(createdBy: Optional[str] = None) -> List[Dict[str, Any]]:
    return [
        _saved_to_dict(item["report"], item["total_versions"])
        for item in deps.report_management_service.list_reports(created_by=createdBy)
    ]


@router.post("/saved", status_code=201)
def save_report(payload: SaveReportRequest, actor: str = Depends(deps.current_user_id)) -> Dict[str, Any]:
    try:
        report = deps.report_management_service.save_report(
            payload.name,
            payload.config.model_dump(mode="json"),
            user_id=actor,
            description=payload.description,
            change_description=payload.changeDescription,
        )
    except ReportingError as exc:
        _raise(exc)
    return {
        "success": True,
        "reportId": report.id,
        "version": report.version,
        "message": f'Report "{report.name}" saved successfully as version {report.version}',
    }


@router.get("/saved/{report_id}")
def load_saved_report(report_id: str, anyVersion: bool = False) -> Dict[str, Any]:
    """Latest version only, unless ``anyVersion`` is set."""
    service = deps.report_management_service
    try:
        report = service.get_report(report_id) if anyVersion else service.load_report(report_id)
        return _saved_to_dict(report)
    except ReportingError as exc:
        _raise(exc)


@router.delete("/saved/{report_id}")
def delete_saved_report(report_id: str, actor: str = Depends(deps.current_user_id)) -> Dict[str, Any]:
    try:
        removed = deps.report_management_service.delete_report(report_id, actor)
    except ReportingError as exc:
        _raise(exc)
    return {"success": True, "deletedVersions": removed}


@router.get("/saved/by-name/{name}/versions")
def get_report_versions(name: str) -> Dict[str, Any]:
    try:
        versions = deps.report_management_service.get_report_versions(name)
    except ReportingError as exc:
        _raise(exc)
    return {
        "reportName": name,
        "versions": [_saved_to_dict(v) for v in versions],
        "totalVersions": len(versions),
    }


@router.post("/saved/by-name/{name}/versions", status_code=201)
def create_report_version(name: str, payload: NewVersionRequest,
                          actor: str = Depends(deps.current_user_id)) -> Dict[str, Any]:
    try:
        report = deps.report_management_service.create_new_version(
            name, payload.config.model_dump(mode="json"), actor, payload.changeDescription)
    except ReportingError as exc:
        _raise(exc)
    return _saved_to_dict(report)
