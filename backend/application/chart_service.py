"""Chart rasterization for reports (matplotlib, Agg backend, PNG bytes)."""
from __future__ import annotations

import io
import logging
import math
import struct
from typing import Any, Dict, List, Optional, Sequence

import matplotlib

matplotlib.use("Agg")

import matplotlib.dates as mdates  # noqa: E402
from matplotlib.figure import Figure  # noqa: E402

from app.config import AppConfig  # noqa: E402
from domain.historian import (  # noqa: E402
    SPCMetrics,
    SpecificationLimits,
    StatisticsResult,
    TimeSeriesPoint,
    TrendResult,
)
from domain.report import ChartType  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_COLORS = [
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#ef4444",
    "#8b5cf6",
    "#f97316",
    "#06b6d4",
    "#84cc16",
]

PNG_SIGNATURE = b"\x89PNG"
MIN_BUFFER_SIZE = 100
MAX_BUFFER_SIZE = 10 * 1024 * 1024


class ChartGenerationError(Exception):
    """Raised when a chart cannot be rendered from the given data."""


class ChartService:
    def __init__(self, config: AppConfig):
        self.config = config

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    # Settings -------------------------------------------------------------
    @property
    def _chart_cfg(self) -> Dict[str, Any]:
        return self.config.charts or {}

    @property
    def width(self) -> int:
        return int(self._chart_cfg.get("width", 800))

    @property
    def height(self) -> int:
        return int(self._chart_cfg.get("height", 400))

    @property
    def dpi(self) -> int:
        return int(self._chart_cfg.get("dpi", 100))

    @property
    def colors(self) -> List[str]:
        return list(self._chart_cfg.get("colors") or DEFAULT_COLORS)

    def _color(self, index: int) -> str:
        palette = self.colors
        return palette[index % len(palette)]

    # Figure helpers -------------------------------------------------------
    def _new_figure(self, title: str):
        fig = Figure(figsize=(self.width / self.dpi, self.height / self.dpi), dpi=self.dpi)
        ax = fig.add_subplot(111)
        ax.set_title(title, fontsize=12, fontweight="bold")
        ax.grid(True, alpha=0.3)
        return fig, ax

    def _format_time_axis(self, fig, ax) -> None:
        locator = mdates.AutoDateLocator()
        ax.xaxis.set_major_locator(locator)
        ax.xaxis.set_major_formatter(mdates.ConciseDateFormatter(locator))
        fig.autofmt_xdate()

    def _render(self, fig) -> bytes:
        buffer = io.BytesIO()
        fig.tight_layout()
        fig.savefig(buffer, format="png", dpi=self.dpi)
        return buffer.getvalue()

    # Chart types ----------------------------------------------------------
    def generate_line_chart(self, data: Dict[str, Sequence[TimeSeriesPoint]], title: str,
                            y_label: str = "Value") -> bytes:
        if not any(data.values()):
            raise ChartGenerationError("No data available for line chart")
        fig, ax = self._new_figure(title)
        for index, (tag_name, points) in enumerate(data.items()):
            if not points:
                continue
            ax.plot(
                [p.timestamp for p in points],
                [p.value for p in points],
                label=tag_name,
                color=self._color(index),
                linewidth=1.5,
            )
        ax.set_ylabel(y_label)
        if len(data) > 1:
            ax.legend(loc="upper right")
        self._format_time_axis(fig, ax)
        return self._render(fig)

    def generate_area_chart(self, points: Sequence[TimeSeriesPoint], title: str, color_index: int = 0) -> bytes:
        if not points:
            raise ChartGenerationError("No data available for area chart")
        fig, ax = self._new_figure(title)
        times = [p.timestamp for p in points]
        values = [p.value for p in points]
        color = self._color(color_index)
        ax.fill_between(times, values, alpha=0.3, color=color)
        ax.plot(times, values, color=color, linewidth=1.2)
        ax.set_ylabel("Value")
        self._format_time_axis(fig, ax)
        return self._render(fig)

    def generate_scatter_chart(self, points: Sequence[TimeSeriesPoint], title: str, color_index: int = 0) -> bytes:
        if not points:
            raise ChartGenerationError("No data available for scatter chart")
        fig, ax = self._new_figure(title)
        ax.scatter([p.timestamp for p in points], [p.value for p in points],
                   s=12, color=self._color(color_index), alpha=0.8)
        ax.set_ylabel("Value")
        self._format_time_axis(fig, ax)
        return self._render(fig)

    def generate_bar_chart(self, labels: Sequence[str], values: Sequence[float], title: str,
                           y_label: str = "Value") -> bytes:
        if not labels or len(labels) != len(values):
            raise ChartGenerationError("Bar chart requires matching labels and values")
        fig, ax = self._new_figure(title)
        colors = [self._color(i) for i in range(len(labels))]
        ax.bar(list(labels), list(values), color=colors)
        ax.set_ylabel(y_label)
        return self._render(fig)

    def generate_trend_chart(self, points: Sequence[TimeSeriesPoint], trend: TrendResult, title: str) -> bytes:
        """Actual values plus the index-based regression line, dashed."""
        if len(points) < 2:
            raise ChartGenerationError("Trend chart requires at least 2 data points")
        fig, ax = self._new_figure(title)
        times = [p.timestamp for p in points]
        ax.plot(times, [p.value for p in points], label="Actual Data", color=self._color(0), linewidth=1.5)
        # the regression is indexed over finite samples only
        valid = [p.timestamp for p in points if isinstance(p.value, (int, float)) and math.isfinite(p.value)]
        fitted = [trend.slope * index + trend.intercept for index in range(len(valid))]
        ax.plot(valid, fitted, label=f"Trend ({trend.equation})", color=self._color(3),
                linestyle="--", linewidth=1.5)
        ax.set_ylabel("Value")
        ax.legend(loc="upper right")
        self._format_time_axis(fig, ax)
        return self._render(fig)

    def generate_spc_chart(self, points: Sequence[TimeSeriesPoint], metrics: SPCMetrics, title: str,
                           limits: Optional[SpecificationLimits] = None) -> bytes:
        if not points:
            raise ChartGenerationError("No data available for SPC chart")
        fig, ax = self._new_figure(title)
        times = [p.timestamp for p in points]
        ax.plot(times, [p.value for p in points], marker="o", markersize=3,
                color=self._color(0), linewidth=1.0, label="Value")
        ax.axhline(metrics.mean, color=self._color(1), linewidth=1.2, label=f"Mean ({metrics.mean})")
        ax.axhline(metrics.ucl, color=self._color(3), linestyle="--", label=f"UCL ({metrics.ucl})")
        ax.axhline(metrics.lcl, color=self._color(3), linestyle="--", label=f"LCL ({metrics.lcl})")
        if limits is not None:
            if limits.usl is not None:
                ax.axhline(limits.usl, color=self._color(4), linestyle=":", label=f"USL ({limits.usl})")
            if limits.lsl is not None:
                ax.axhline(limits.lsl, color=self._color(4), linestyle=":", label=f"LSL ({limits.lsl})")
        flagged = [i for i in metrics.out_of_control_points if i < len(points)]
        if flagged:
            ax.scatter([points[i].timestamp for i in flagged], [points[i].value for i in flagged],
                       color="#dc2626", s=36, zorder=5, label="Out of control")
        ax.set_ylabel("Value")
        ax.legend(loc="upper right", fontsize=7)
        self._format_time_axis(fig, ax)
        return self._render(fig)

    def generate_statistics_chart(self, statistics: Dict[str, StatisticsResult]) -> bytes:
        if not statistics:
            raise ChartGenerationError("No statistics available for summary chart")
        fig, ax = self._new_figure("Statistics Summary")
        tags = list(statistics)
        positions = range(len(tags))
        width = 0.25
        series = (
            ("Average", [statistics[t].average for t in tags], 0),
            ("Minimum", [statistics[t].min for t in tags], 1),
            ("Maximum", [statistics[t].max for t in tags], 2),
        )
        for offset, (label, values, color_index) in enumerate(series):
            ax.bar([p + (offset - 1) * width for p in positions], values, width,
                   label=label, color=self._color(color_index))
        ax.set_xticks(list(positions))
        ax.set_xticklabels(tags, rotation=20, ha="right")
        ax.set_ylabel("Value")
        ax.legend(loc="upper right")
        return self._render(fig)

    # Report charts ----------------------------------------------------------
    def generate_report_charts(
        self,
        data: Dict[str, List[TimeSeriesPoint]],
        statistics: Dict[str, StatisticsResult],
        trends: Dict[str, TrendResult],
        chart_types: Sequence[ChartType],
        spc_metrics: Optional[Dict[str, SPCMetrics]] = None,
        limits: Optional[Dict[str, SpecificationLimits]] = None,
    ) -> Dict[str, bytes]:
        """Render every requested chart; a failing chart is logged and skipped."""
        requested = {ChartType(t) for t in chart_types}
        spc_metrics = spc_metrics or {}
        limits = limits or {}
        charts: Dict[str, bytes] = {}

        for index, (tag_name, points) in enumerate(data.items()):
            if not points:
                continue
            jobs = []
            if ChartType.LINE in requested:
                jobs.append((f"{tag_name}_line", lambda t=tag_name, p=points: self.generate_line_chart(
                    {t: p}, f"{t} - Time Series")))
            if ChartType.TREND in requested and tag_name in trends:
                jobs.append((f"{tag_name}_trend", lambda t=tag_name, p=points: self.generate_trend_chart(
                    p, trends[t], f"{t} - Trend Analysis")))
            if ChartType.SCATTER in requested:
                jobs.append((f"{tag_name}_scatter", lambda t=tag_name, p=points, i=index: self.generate_scatter_chart(
                    p, f"{t} - Scatter", i)))
            if ChartType.AREA in requested:
                jobs.append((f"{tag_name}_area", lambda t=tag_name, p=points, i=index: self.generate_area_chart(
                    p, f"{t} - Area", i)))
            if ChartType.SPC in requested and tag_name in spc_metrics:
                jobs.append((f"{tag_name}_spc", lambda t=tag_name, p=points: self.generate_spc_chart(
                    p, spc_metrics[t], f"{t} - SPC Control Chart", limits.get(t))))

            for key, job in jobs:
                try:
                    charts[key] = job()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Chart %s failed: %s", key, exc)

        if ChartType.BAR in requested and statistics:
            try:
                charts["statistics_summary"] = self.generate_statistics_chart(statistics)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Chart statistics_summary failed: %s", exc)

        logger.info("Generated %d chart(s)", len(charts))
        return charts


def validate_chart_buffer(buffer: Optional[bytes]) -> Dict[str, Any]:
    """Check that ``buffer`` looks like a PNG image fit for embedding."""
    errors: List[str] = []
    warnings: List[str] = []
    info: Dict[str, Any] = {"size": 0, "format": "unknown", "dimensions": None}

    if buffer is None:
        errors.append("Buffer is null or undefined")
        return {"valid": False, "errors": errors, "warnings": warnings, "bufferInfo": info}
    if not isinstance(buffer, (bytes, bytearray)):
        errors.append("Invalid buffer type")
        return {"valid": False, "errors": errors, "warnings": warnings, "bufferInfo": info}

    info["size"] = len(buffer)
    if len(buffer) == 0:
        errors.append("Buffer is empty")
    elif len(buffer) < MIN_BUFFER_SIZE:
        errors.append(f"Buffer too small ({len(buffer)} bytes), likely corrupted")
    if len(buffer) > MAX_BUFFER_SIZE:
        warnings.append(f"Buffer is very large ({len(buffer) / 1024 / 1024:.2f}MB), may cause performance issues")

    if len(buffer) >= 4 and bytes(buffer[:4]) == PNG_SIGNATURE:
        info["format"] = "PNG"
        if len(buffer) >= 24:
            width, height = struct.unpack(">II", bytes(buffer[16:24]))
            if 0 < width < 10000 and 0 < height < 10000:
                info["dimensions"] = {"width": width, "height": height}
            else:
                warnings.append("Could not read valid image dimensions")
    elif len(buffer) > 0:
        errors.append("Buffer is not a valid PNG image")

    return {"valid": not errors, "errors": errors, "warnings": warnings, "bufferInfo": info}
