"""Historian data model: time series points and analysis results."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum, IntEnum
from typing import List, Optional


class QualityCode(IntEnum):
    """OPC DA style quality codes as stored by the historian."""

    BAD = 0
    CONFIG_ERROR = 4
    NOT_CONNECTED = 8
    DEVICE_FAILURE = 12
    SENSOR_FAILURE = 16
    LAST_KNOWN_VALUE = 20
    COMM_FAILURE = 24
    OUT_OF_SERVICE = 28
    WAITING_FOR_INITIAL_DATA = 32
    UNCERTAIN = 64
    GOOD = 192


def quality_label(code: int) -> str:
    if code == QualityCode.GOOD:
        return "Good"
    if code == QualityCode.BAD:
        return "Bad"
    if code == QualityCode.UNCERTAIN:
        return "Uncertain"
    return f"Code {code}"


class TagType(str, Enum):
    ANALOG = "analog"
    DIGITAL = "digital"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}


@dataclass
class TimeSeriesPoint:
    timestamp: datetime
    value: float
    quality: int = QualityCode.GOOD
    tag_name: str = ""


@dataclass
class TagInfo:
    name: str
    description: str = ""
    units: str = ""
    data_type: str = "Double"
    last_update: Optional[datetime] = None
    tag_type: TagType = TagType.ANALOG


@dataclass
class StatisticsResult:
    min: float
    max: float
    average: float
    standard_deviation: float
    count: int
    data_quality: float


@dataclass
class TrendResult:
    slope: float
    intercept: float
    correlation: float
    equation: str
    confidence: float


@dataclass
class AdvancedTrendResult:
    slope: float
    intercept: float
    r_squared: float
    equation: str


@dataclass
class AnomalyResult:
    timestamp: datetime
    value: float
    expected_value: float
    deviation: float
    severity: Severity
    description: str


@dataclass
class DataQualityReport:
    total_points: int
    good_points: int
    bad_points: int
    uncertain_points: int
    quality_percentage: float
    missing_data_gaps: int


@dataclass
class SpecificationLimits:
    lsl: Optional[float] = None
    usl: Optional[float] = None


@dataclass
class SPCMetrics:
    mean: float
    std_dev: float
    ucl: float
    lcl: float
    cp: Optional[float] = None
    cpk: Optional[float] = None
    out_of_control_points: List[int] = field(default_factory=list)


@dataclass
class TagClassification:
    tag_name: str
    tag_type: TagType
    confidence: float
    unique_values: int = 0
    value_range: float = 0.0


@dataclass
class DataFilter:
    tag_names: List[str] = field(default_factory=list)
    quality_codes: List[int] = field(default_factory=list)
    value_min: Optional[float] = None
    value_max: Optional[float] = None

    @property
    def is_empty(self) -> bool:
        return (
            not self.tag_names
            and not self.quality_codes
            and self.value_min is None
            and self.value_max is None
        )
