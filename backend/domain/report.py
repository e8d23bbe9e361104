"""Report configuration and generation result types."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from domain.clock import utc_now
from domain.historian import (
    AnomalyResult,
    DataFilter,
    SPCMetrics,
    SpecificationLimits,
    StatisticsResult,
    TimeSeriesPoint,
    TrendResult,
)


class ChartType(str, Enum):
    LINE = "line"
    BAR = "bar"
    TREND = "trend"
    SCATTER = "scatter"
    AREA = "area"
    SPC = "spc"


class ReportTemplate(str, Enum):
    DEFAULT = "default"
    EXECUTIVE = "executive"
    TECHNICAL = "technical"
    SUMMARY = "summary"


class ReportFormat(str, Enum):
    PDF = "pdf"
    DOCX = "docx"


RELATIVE_RANGES: Dict[str, timedelta] = {
    "last1h": timedelta(hours=1),
    "last2h": timedelta(hours=2),
    "last6h": timedelta(hours=6),
    "last12h": timedelta(hours=12),
    "last24h": timedelta(hours=24),
    "last7d": timedelta(days=7),
    "last30d": timedelta(days=30),
}


@dataclass
class ReportBranding:
    company_name: str = "Historian Reports"
    primary_color: str = "#0ea5e9"
    logo_path: Optional[str] = None


@dataclass
class ReportConfig:
    name: str
    tags: List[str]
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    id: str = ""
    description: str = ""
    chart_types: List[ChartType] = field(default_factory=lambda: [ChartType.LINE])
    template: ReportTemplate = ReportTemplate.DEFAULT
    format: ReportFormat = ReportFormat.PDF
    include_statistics: bool = True
    include_trends: bool = True
    include_anomalies: bool = False
    include_data_table: bool = False
    include_spc: bool = False
    filters: Optional[DataFilter] = None
    specification_limits: Dict[str, SpecificationLimits] = field(default_factory=dict)
    branding: Optional[ReportBranding] = None


@dataclass
class ReportData:
    config: ReportConfig
    data: Dict[str, List[TimeSeriesPoint]]
    statistics: Dict[str, StatisticsResult] = field(default_factory=dict)
    trends: Dict[str, TrendResult] = field(default_factory=dict)
    anomalies: Dict[str, List[AnomalyResult]] = field(default_factory=dict)
    spc_metrics: Dict[str, SPCMetrics] = field(default_factory=dict)
    charts: Dict[str, bytes] = field(default_factory=dict)
    generated_at: datetime = field(default_factory=datetime.now)


@dataclass
class ReportMetadata:
    pages: int
    file_size: int
    format: str
    generation_time: float


@dataclass
class ReportResult:
    success: bool
    report_id: str
    file_path: Optional[str] = None
    buffer: Optional[bytes] = None
    metadata: Optional[ReportMetadata] = None
    error: Optional[str] = None


@dataclass
class DataMetrics:
    total_data_points: int = 0
    tags_processed: int = 0
    processing_time: float = 0.0
    data_quality: float = 0.0


@dataclass
class DataFlowResult:
    success: bool
    report_result: Optional[ReportResult] = None
    data_metrics: DataMetrics = field(default_factory=DataMetrics)
    error: Optional[str] = None


@dataclass
class SavedReport:
    id: str
    name: str
    config: Dict[str, Any]
    description: str = ""
    version: int = 1
    created_by: str = "system"
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    is_latest_version: bool = True
    change_description: str = "Initial version"
