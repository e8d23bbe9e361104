"""End-to-end report pipeline: retrieve -> analyse -> chart -> document."""
from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from app.config import AppConfig
from application import statistics_service as stats
from application.chart_service import ChartService
from application.data_filtering import apply_filters
from application.report_service import ReportService
from application.tag_classification import analog_tags, classify_tags
from domain.errors import ReportingError
from domain.historian import (
    AnomalyResult,
    SPCMetrics,
    StatisticsResult,
    TimeSeriesPoint,
    TrendResult,
)
from domain.report import DataFlowResult, DataMetrics, ReportConfig, ReportData
from infrastructure.repository import HistorianSource

logger = logging.getLogger(__name__)

CURRENT_VALUE_PREFIX = "opcua:"

ProgressCallback = Callable[[str, int, str], None]


class ReportConfigError(ValueError):
    """Report configuration failed validation."""


class DataFlowService:
    def __init__(self, config: AppConfig, historian: HistorianSource,
                 chart_service: ChartService, report_service: ReportService):
        self.config = config
        self.historian = historian
        self.chart_service = chart_service
        self.report_service = report_service

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    @property
    def _analysis(self) -> Dict[str, Any]:
        return self.config.analysis or {}

    # Validation ---------------------------------------------------------------
    @staticmethod
    def validate_report_config(report_config: ReportConfig) -> None:
        if not report_config.name or not report_config.name.strip():
            raise ReportConfigError("Report name is required")
        if not report_config.tags:
            raise ReportConfigError("At least one tag is required")
        if report_config.start_time is None or report_config.end_time is None:
            raise ReportConfigError("Start time and end time are required")
        if report_config.start_time >= report_config.end_time:
            raise ReportConfigError("Start time must be before end time")
        if not report_config.chart_types:
            raise ReportConfigError("At least one chart type is required")
        errors = stats.validate_specification_limits_map(report_config.specification_limits)
        if errors:
            raise ReportConfigError("; ".join(errors))

    # Stages ---------------------------------------------------------------------
    def retrieve_data(self, report_config: ReportConfig) -> Dict[str, List[TimeSeriesPoint]]:
        data: Dict[str, List[TimeSeriesPoint]] = {}
        for tag in report_config.tags:
            try:
                if tag.startswith(CURRENT_VALUE_PREFIX):
                    data[tag] = [self.historian.read_current(tag[len(CURRENT_VALUE_PREFIX):])]
                else:
                    data[tag] = self.historian.read_history(tag, report_config.start_time, report_config.end_time)
            except ReportingError as exc:
                logger.warning("Data retrieval failed for %s: %s", tag, exc)
                data[tag] = []
            if report_config.filters is not None:
                data[tag] = apply_filters(data[tag], report_config.filters)
            logger.debug("Retrieved %d point(s) for %s", len(data[tag]), tag)
        return data

    def analyse(self, report_config: ReportConfig, data: Dict[str, List[TimeSeriesPoint]]) -> ReportData:
        statistics: Dict[str, StatisticsResult] = {}
        trends: Dict[str, TrendResult] = {}
        anomalies: Dict[str, List[AnomalyResult]] = {}
        spc: Dict[str, SPCMetrics] = {}
        min_trend = int(self._analysis.get("min_trend_points", 3))
        threshold = float(self._analysis.get("anomaly_threshold", 2.0))
        multiplier = float(self._analysis.get("iqr_multiplier", 1.5))

        for tag, points in data.items():
            if not points:
                continue
            try:
                statistics[tag] = stats.calculate_statistics(points)
            except ValueError as exc:
                logger.warning("Statistics failed for %s: %s", tag, exc)
                continue
            if len(points) >= min_trend:
                try:
                    trends[tag] = stats.calculate_trend_line(points)
                except (ValueError, ZeroDivisionError) as exc:
                    logger.warning("Trend failed for %s: %s", tag, exc)
            if report_config.include_anomalies:
                anomalies[tag] = stats.detect_all_anomalies(points, threshold, multiplier)

        if report_config.include_spc:
            classifications = classify_tags({t: p for t, p in data.items() if p})
            for tag in analog_tags(classifications):
                try:
                    spc[tag] = stats.calculate_spc_metrics(data[tag], report_config.specification_limits.get(tag))
                except ValueError as exc:
                    logger.warning("SPC failed for %s: %s", tag, exc)

        return ReportData(
            config=report_config,
            data=data,
            statistics=statistics,
            trends=trends,
            anomalies=anomalies,
            spc_metrics=spc,
            generated_at=datetime.now(),
        )

    # Pipeline ---------------------------------------------------------------------
    def execute_report_generation(self, report_config: ReportConfig,
                                  progress: Optional[ProgressCallback] = None,
                                  save_to_file: bool = True) -> DataFlowResult:
        started = time.perf_counter()

        def notify(stage: str, percent: int, message: str) -> None:
            logger.info("[%s] %s (%d%%)", report_config.name, message, percent)
            if progress is not None:
                try:
                    progress(stage, percent, message)
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Progress callback failed: %s", exc)

        try:
            notify("validating", 5, "Validating report configuration")
            self.validate_report_config(report_config)

            notify("retrieving", 15, f"Retrieving data for {len(report_config.tags)} tag(s)")
            data = self.retrieve_data(report_config)

            notify("analyzing", 40, "Calculating statistics and trends")
            report_data = self.analyse(report_config, data)

            notify("charting", 60, "Generating charts")
            report_data.charts = self.chart_service.generate_report_charts(
                data,
                report_data.statistics,
                report_data.trends,
                report_config.chart_types,
                report_data.spc_metrics,
                report_config.specification_limits,
            )

            notify("rendering", 80, f"Building {report_config.format.value.upper()} document")
            report_result = self.report_service.generate_report(report_data, save_to_file=save_to_file)

            metrics = self._metrics(data, report_data.statistics, started)
            if not report_result.success:
                notify("failed", 100, f"Report generation failed: {report_result.error}")
                return DataFlowResult(success=False, report_result=report_result,
                                      data_metrics=metrics, error=report_result.error)
            notify("completed", 100, "Report generated")
            return DataFlowResult(success=True, report_result=report_result, data_metrics=metrics)
        except Exception as exc:  # noqa: BLE001
            logger.error("Report pipeline failed for %s: %s", report_config.name, exc)
            notify("failed", 100, str(exc))
            return DataFlowResult(
                success=False,
                data_metrics=DataMetrics(processing_time=time.perf_counter() - started),
                error=str(exc),
            )

    @staticmethod
    def _metrics(data: Dict[str, List[TimeSeriesPoint]], statistics: Dict[str, StatisticsResult],
                 started: float) -> DataMetrics:
        qualities = [s.data_quality for s in statistics.values()]
        return DataMetrics(
            total_data_points=sum(len(points) for points in data.values()),
            tags_processed=len(data),
            processing_time=time.perf_counter() - started,
            data_quality=sum(qualities) / len(qualities) if qualities else 0.0,
        )

    def preview_data(self, tags: List[str], start: datetime, end: datetime) -> Dict[str, Dict[str, Any]]:
        """Per-tag point counts and statistics without building a document."""
        if start >= end:
            raise ReportConfigError("Start time must be before end time")
        window = ReportConfig(name="preview", tags=tags, start_time=start, end_time=end)
        preview: Dict[str, Dict[str, Any]] = {}
        for tag, points in self.retrieve_data(window).items():
            entry: Dict[str, Any] = {"count": len(points), "statistics": None}
            if points:
                try:
                    entry["statistics"] = stats.calculate_statistics(points)
                except ValueError as exc:
                    logger.debug("No statistics for %s: %s", tag, exc)
            preview[tag] = entry
        return preview
