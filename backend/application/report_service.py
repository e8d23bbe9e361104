"""Report document assembly (PDF via reportlab, DOCX via python-docx)."""
from __future__ import annotations

import io
import logging
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple
from uuid import uuid4
from xml.sax.saxutils import escape

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.shared import Inches, Pt, RGBColor
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import (
    Image,
    PageBreak,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

from app.config import AppConfig
from application.chart_service import validate_chart_buffer
from application.statistics_service import assess_capability, calculate_data_quality
from domain.historian import TimeSeriesPoint, quality_label
from domain.report import (
    ReportBranding,
    ReportData,
    ReportFormat,
    ReportMetadata,
    ReportResult,
    ReportTemplate,
)

logger = logging.getLogger(__name__)

PAGE_MARGIN = 50
HEADER_HEIGHT = 28
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# Filenames -----------------------------------------------------------------
def sanitize_report_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    cleaned = re.sub(r"[^A-Za-z0-9_\-\s]", "", cleaned)
    cleaned = re.sub(r"\s+", "_", cleaned)
    cleaned = re.sub(r"_+", "_", cleaned)
    cleaned = cleaned.strip("_")
    return cleaned or "report"


def generate_report_filename(name: Optional[str], extension: str, when: Optional[datetime] = None) -> str:
    """``My Report`` + ``.pdf`` -> ``My_Report_2024_01_31_1405.pdf``."""
    stamp = (when or datetime.now()).strftime("%Y_%m_%d_%H%M")
    ext = extension.lstrip(".")
    return f"{sanitize_report_name(name)}_{stamp}.{ext}"


# Shared content --------------------------------------------------------------
def _fmt(value: Optional[float], digits: int = 2) -> str:
    if value is None:
        return "N/A"
    if value == float("inf"):
        return "∞"
    return f"{value:.{digits}f}"


def _period(data: ReportData) -> str:
    start = data.config.start_time.strftime(DATE_FORMAT) if data.config.start_time else "Unknown"
    end = data.config.end_time.strftime(DATE_FORMAT) if data.config.end_time else "Unknown"
    return f"Report Period: {start} - {end}"


def _total_points(data: ReportData) -> int:
    return sum(len(points) for points in data.data.values())


def _metadata_rows(data: ReportData) -> List[List[str]]:
    return [
        ["Generated", data.generated_at.strftime(DATE_FORMAT)],
        ["Tags", ", ".join(data.config.tags)],
        ["Data Points", str(_total_points(data))],
        ["Format", data.config.format.value.upper()],
        ["Template", data.config.template.value],
    ]


def _summary_text(data: ReportData) -> str:
    return (
        f"This report analyzes {len(data.config.tags)} tag(s) over the specified time period, "
        f"containing a total of {_total_points(data)} data points. "
        "The analysis includes statistical summaries, trend analysis, and data quality metrics."
    )


def _key_findings(data: ReportData) -> List[str]:
    findings = []
    for tag_name, stats in data.statistics.items():
        findings.append(
            f"{tag_name}: Average {stats.average:.2f}, Range {stats.min:.2f} - {stats.max:.2f}, "
            f"Data Quality {stats.data_quality:.1f}%"
        )
    for tag_name, metrics in data.spc_metrics.items():
        if metrics.out_of_control_points:
            findings.append(f"{tag_name}: {len(metrics.out_of_control_points)} point(s) outside control limits")
    return findings


def _tag_sections(tag_name: str, points: Sequence[TimeSeriesPoint], data: ReportData) -> List[Tuple[str, List[List[str]]]]:
    """Titled key/value tables describing one tag."""
    sections: List[Tuple[str, List[List[str]]]] = []
    if points:
        time_range = f"{points[0].timestamp.strftime(DATE_FORMAT)} - {points[-1].timestamp.strftime(DATE_FORMAT)}"
    else:
        time_range = "No data available"
    sections.append(("Overview", [["Data Points", str(len(points))], ["Time Range", time_range]]))

    stats = data.statistics.get(tag_name)
    if data.config.include_statistics and stats:
        sections.append(("Statistics", [
            ["Minimum", _fmt(stats.min)],
            ["Maximum", _fmt(stats.max)],
            ["Average", _fmt(stats.average)],
            ["Standard Deviation", _fmt(stats.standard_deviation)],
            ["Data Quality", f"{stats.data_quality:.1f}%"],
        ]))

    trend = data.trends.get(tag_name)
    if data.config.include_trends and trend:
        sections.append(("Trend Analysis", [
            ["Equation", trend.equation],
            ["Correlation", _fmt(trend.correlation, 4)],
            ["Confidence", f"{trend.confidence * 100:.1f}%"],
        ]))

    if points:
        quality = calculate_data_quality(points)
        sections.append(("Data Quality", [
            ["Good", str(quality.good_points)],
            ["Bad", str(quality.bad_points)],
            ["Uncertain", str(quality.uncertain_points)],
            ["Quality", f"{quality.quality_percentage:.1f}%"],
            ["Missing Data Gaps", str(quality.missing_data_gaps)],
        ]))

    metrics = data.spc_metrics.get(tag_name)
    if metrics:
        limits = data.config.specification_limits.get(tag_name)
        sections.append(("Statistical Process Control", [
            ["Mean", _fmt(metrics.mean)],
            ["Std Dev", _fmt(metrics.std_dev)],
            ["UCL", _fmt(metrics.ucl)],
            ["LCL", _fmt(metrics.lcl)],
            ["LSL", _fmt(limits.lsl if limits else None)],
            ["USL", _fmt(limits.usl if limits else None)],
            ["Cp", _fmt(metrics.cp, 3)],
            ["Cpk", _fmt(metrics.cpk, 3)],
            ["Capability", assess_capability(metrics.cp, metrics.cpk)],
            ["Out of Control", str(len(metrics.out_of_control_points))],
        ]))

    anomalies = data.anomalies.get(tag_name) or []
    if data.config.include_anomalies and anomalies:
        rows = [["Time", "Value", "Severity"]] + [
            [a.timestamp.strftime(DATE_FORMAT), _fmt(a.value), a.severity.value] for a in anomalies[:20]
        ]
        sections.append((f"Anomalies ({len(anomalies)})", rows))
    return sections


def _summary_rows(data: ReportData) -> List[List[str]]:
    rows = [["Tag", "Min", "Max", "Average", "Std Dev", "Quality %"]]
    for tag_name, stats in data.statistics.items():
        rows.append([
            tag_name,
            _fmt(stats.min),
            _fmt(stats.max),
            _fmt(stats.average),
            _fmt(stats.standard_deviation),
            f"{stats.data_quality:.1f}",
        ])
    return rows


def _spc_rows(data: ReportData) -> List[List[str]]:
    rows = [["Tag", "Mean", "Std Dev", "LCL", "UCL", "Cp", "Cpk", "Capability"]]
    for tag_name, metrics in data.spc_metrics.items():
        rows.append([
            tag_name,
            _fmt(metrics.mean),
            _fmt(metrics.std_dev),
            _fmt(metrics.lcl),
            _fmt(metrics.ucl),
            _fmt(metrics.cp, 3),
            _fmt(metrics.cpk, 3),
            assess_capability(metrics.cp, metrics.cpk),
        ])
    return rows


def _data_rows(points: Sequence[TimeSeriesPoint], limit: int) -> Tuple[List[List[str]], Optional[str]]:
    rows = [["Timestamp", "Value", "Quality"]]
    for point in points[:limit]:
        rows.append([point.timestamp.strftime(DATE_FORMAT), _fmt(point.value), quality_label(point.quality)])
    note = None
    if len(points) > limit:
        note = f"Showing first {limit} of {len(points)} data points"
    return rows, note


class ReportService:
    def __init__(self, config: AppConfig):
        self.config = config

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    @property
    def output_dir(self) -> Path:
        return self.config.reports_dir

    @property
    def max_table_rows(self) -> int:
        return int((self.config.reports or {}).get("max_table_rows", 1000))

    def _branding(self, data: ReportData) -> ReportBranding:
        if data.config.branding is not None:
            return data.config.branding
        configured = (self.config.reports or {}).get("branding", {}) or {}
        return ReportBranding(
            company_name=configured.get("company_name", "Historian Reports"),
            primary_color=configured.get("primary_color", "#0ea5e9"),
            logo_path=configured.get("logo_path"),
        )

    def _show_details(self, data: ReportData) -> bool:
        return data.config.template not in (ReportTemplate.EXECUTIVE, ReportTemplate.SUMMARY)

    def _show_data_tables(self, data: ReportData) -> bool:
        if data.config.template == ReportTemplate.TECHNICAL:
            return True
        return data.config.include_data_table and self._show_details(data)

    # Entry point ------------------------------------------------------------
    def generate_report(self, data: ReportData, save_to_file: bool = True) -> ReportResult:
        """Build the document; never raises, failures come back in the result."""
        report_id = data.config.id or str(uuid4())
        started = time.perf_counter()
        report_format = data.config.format
        try:
            if report_format == ReportFormat.DOCX:
                content, pages = self.build_docx(data)
            else:
                content, pages = self.build_pdf(data)

            file_path = None
            if save_to_file:
                self.output_dir.mkdir(parents=True, exist_ok=True)
                target = self.output_dir / generate_report_filename(
                    data.config.name or data.config.id, report_format.value, data.generated_at)
                target.write_bytes(content)
                file_path = str(target)

            elapsed = time.perf_counter() - started
            logger.info("Report %s generated (%s, %d page(s), %d bytes)",
                        report_id, report_format.value, pages, len(content))
            return ReportResult(
                success=True,
                report_id=report_id,
                file_path=file_path,
                buffer=content,
                metadata=ReportMetadata(
                    pages=pages,
                    file_size=len(content),
                    format=report_format.value,
                    generation_time=elapsed,
                ),
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Report %s generation failed", report_id)
            return ReportResult(success=False, report_id=report_id, error=str(exc) or exc.__class__.__name__)

    # PDF ------------------------------------------------------------------------
    def _pdf_styles(self, primary: colors.Color) -> Dict[str, ParagraphStyle]:
        base = getSampleStyleSheet()
        return {
            "title": ParagraphStyle("ReportTitle", parent=base["Title"], fontSize=22, textColor=primary,
                                    alignment=TA_CENTER, spaceAfter=12),
            "subtitle": ParagraphStyle("ReportSubtitle", parent=base["Normal"], fontSize=11,
                                       alignment=TA_CENTER, textColor=colors.HexColor("#475569")),
            "h1": ParagraphStyle("Section", parent=base["Heading1"], fontSize=16, textColor=primary,
                                 spaceBefore=10, spaceAfter=8),
            "h2": ParagraphStyle("SubSection", parent=base["Heading2"], fontSize=12, spaceBefore=8, spaceAfter=4),
            "body": ParagraphStyle("Body", parent=base["Normal"], fontSize=10, leading=14),
            "bullet": ParagraphStyle("Bullet", parent=base["Normal"], fontSize=10, leftIndent=12, leading=14),
            "note": ParagraphStyle("Note", parent=base["Italic"], fontSize=8, textColor=colors.HexColor("#64748b")),
            "error": ParagraphStyle("ChartError", parent=base["Normal"], fontSize=10, textColor=colors.red),
        }

    def _pdf_table(self, rows: List[List[str]], primary: colors.Color, header: bool = True,
                   col_widths: Optional[List[float]] = None) -> Table:
        table = Table(rows, colWidths=col_widths, repeatRows=1 if header else 0, hAlign="LEFT")
        style = [
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#cbd5e1")),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]
        if header:
            style += [
                ("BACKGROUND", (0, 0), (-1, 0), primary),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f1f5f9")]),
            ]
        else:
            style += [("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
                      ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#f1f5f9"))]
        table.setStyle(TableStyle(style))
        return table

    def build_pdf(self, data: ReportData) -> Tuple[bytes, int]:
        branding = self._branding(data)
        primary = colors.HexColor(branding.primary_color)
        styles = self._pdf_styles(primary)
        buffer = io.BytesIO()
        page_width, page_height = A4
        content_width = page_width - 2 * PAGE_MARGIN
        page_count = [0]
        generated = data.generated_at.strftime(DATE_FORMAT)

        def decorate(canvas, doc) -> None:
            page_count[0] += 1
            canvas.saveState()
            canvas.setFillColor(primary)
            canvas.rect(0, page_height - HEADER_HEIGHT, page_width, HEADER_HEIGHT, stroke=0, fill=1)
            canvas.setFillColor(colors.white)
            canvas.setFont("Helvetica-Bold", 11)
            canvas.drawString(PAGE_MARGIN, page_height - HEADER_HEIGHT + 9, branding.company_name)
            canvas.setFillColor(colors.HexColor("#64748b"))
            canvas.setFont("Helvetica", 8)
            canvas.drawString(PAGE_MARGIN, PAGE_MARGIN / 2, f"Generated by Historian Reports on {generated}")
            canvas.drawRightString(page_width - PAGE_MARGIN, PAGE_MARGIN / 2, f"Page {canvas.getPageNumber()}")
            canvas.restoreState()

        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=PAGE_MARGIN,
            rightMargin=PAGE_MARGIN,
            topMargin=PAGE_MARGIN,
            bottomMargin=PAGE_MARGIN,
            title=data.config.name,
            author=branding.company_name,
            subject=data.config.description or "Historian report",
        )

        story: List[Any] = [
            Paragraph(escape(data.config.name), styles["title"]),
        ]
        if data.config.description:
            story.append(Paragraph(escape(data.config.description), styles["subtitle"]))
        story += [
            Spacer(1, 6),
            Paragraph(escape(_period(data)), styles["subtitle"]),
            Spacer(1, 14),
            self._pdf_table(_metadata_rows(data), primary, header=False, col_widths=[100, content_width - 100]),
            Spacer(1, 16),
            Paragraph("Executive Summary", styles["h1"]),
            Paragraph(escape(_summary_text(data)), styles["body"]),
        ]
        findings = _key_findings(data)
        if findings:
            story.append(Paragraph("<b>Key Findings:</b>", styles["body"]))
            story += [Paragraph(f"• {escape(item)}", styles["bullet"]) for item in findings]

        if self._show_details(data):
            for tag_name, points in data.data.items():
                story += [PageBreak(), Paragraph(f"Tag: {escape(tag_name)}", styles["h1"])]
                for title, rows in _tag_sections(tag_name, points, data):
                    story.append(Paragraph(escape(title), styles["h2"]))
                    is_grid = len(rows[0]) > 2
                    story.append(self._pdf_table(rows, primary, header=is_grid,
                                                 col_widths=None if is_grid else [140, content_width - 140]))

        if data.charts:
            story += [PageBreak(), Paragraph("Data Visualizations", styles["h1"])]
            chart_height = content_width / 2
            for index, (name, chart) in enumerate(data.charts.items()):
                if index and index % 2 == 0:
                    story.append(PageBreak())
                story.append(Paragraph(escape(name.replace("_", " ")), styles["h2"]))
                check = validate_chart_buffer(chart)
                if check["valid"]:
                    story.append(Image(io.BytesIO(chart), width=content_width, height=chart_height))
                else:
                    reason = "; ".join(check["errors"])
                    logger.warning("Skipping invalid chart %s: %s", name, reason)
                    placeholder = Table([[Paragraph(f"Chart could not be displayed: {escape(reason)}", styles["error"])]],
                                        colWidths=[content_width], rowHeights=[chart_height / 2])
                    placeholder.setStyle(TableStyle([
                        ("BOX", (0, 0), (-1, -1), 1, colors.red),
                        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
                    ]))
                    story += [placeholder, Paragraph(f"Chart '{escape(name)}' failed validation and was not embedded.",
                                                     styles["note"])]
                story.append(Spacer(1, 12))

        if self._show_data_tables(data):
            for tag_name, points in data.data.items():
                if not points:
                    continue
                rows, note = _data_rows(points, self.max_table_rows)
                story += [PageBreak(), Paragraph(f"Data: {escape(tag_name)}", styles["h1"])]
                if note:
                    story.append(Paragraph(note, styles["note"]))
                table = self._pdf_table(rows, primary)
                for row_index, row in enumerate(rows[1:], start=1):
                    if row[2] != "Good":
                        table.setStyle(TableStyle([("TEXTCOLOR", (2, row_index), (2, row_index), colors.red)]))
                story.append(table)

        if data.statistics:
            story += [PageBreak(), Paragraph("Statistical Summary", styles["h1"]),
                      self._pdf_table(_summary_rows(data), primary)]
        if data.spc_metrics:
            story += [Spacer(1, 16), Paragraph("SPC Summary", styles["h1"]),
                      self._pdf_table(_spc_rows(data), primary)]

        doc.build(story, onFirstPage=decorate, onLaterPages=decorate)
        return buffer.getvalue(), page_count[0]

    # DOCX ------------------------------------------------------------------------
    def _docx_table(self, document, rows: List[List[str]], header: bool = True):
        table = document.add_table(rows=len(rows), cols=len(rows[0]))
        table.style = "Table Grid"
        for r, row in enumerate(rows):
            for c, value in enumerate(row):
                cell = table.cell(r, c)
                cell.text = str(value)
                if (header and r == 0) or (not header and c == 0):
                    for run in cell.paragraphs[0].runs:
                        run.font.bold = True
        return table

    def build_docx(self, data: ReportData) -> Tuple[bytes, int]:
        branding = self._branding(data)
        primary = RGBColor.from_string(branding.primary_color.lstrip("#").upper())
        document = Document()
        pages = 1

        props = document.core_properties
        props.title = data.config.name
        props.author = branding.company_name
        props.subject = data.config.description or "Historian report"
        props.keywords = ", ".join(data.config.tags)

        section = document.sections[0]
        header = section.header.paragraphs[0]
        header.text = branding.company_name
        header.runs[0].font.bold = True
        header.runs[0].font.color.rgb = primary
        footer = section.footer.paragraphs[0]
        footer.text = f"Generated by Historian Reports on {data.generated_at.strftime(DATE_FORMAT)}"
        footer.alignment = WD_ALIGN_PARAGRAPH.CENTER

        title = document.add_heading(data.config.name, 0)
        title.alignment = WD_ALIGN_PARAGRAPH.CENTER
        if data.config.description:
            document.add_paragraph(data.config.description).alignment = WD_ALIGN_PARAGRAPH.CENTER
        document.add_paragraph(_period(data)).alignment = WD_ALIGN_PARAGRAPH.CENTER
        self._docx_table(document, _metadata_rows(data), header=False)

        document.add_heading("Executive Summary", level=1)
        document.add_paragraph(_summary_text(data))
        findings = _key_findings(data)
        if findings:
            document.add_paragraph().add_run("Key Findings:").bold = True
            for item in findings:
                document.add_paragraph(item, style="List Bullet")

        if self._show_details(data):
            for tag_name, points in data.data.items():
                document.add_page_break()
                pages += 1
                document.add_heading(f"Tag: {tag_name}", level=1)
                for title_text, rows in _tag_sections(tag_name, points, data):
                    document.add_heading(title_text, level=2)
                    self._docx_table(document, rows, header=len(rows[0]) > 2)

        if data.charts:
            document.add_page_break()
            pages += 1
            document.add_heading("Data Visualizations", level=1)
            for name, chart in data.charts.items():
                document.add_heading(name.replace("_", " "), level=2)
                check = validate_chart_buffer(chart)
                if check["valid"]:
                    document.add_picture(io.BytesIO(chart), width=Inches(6))
                else:
                    run = document.add_paragraph().add_run(
                        f"Chart could not be displayed: {'; '.join(check['errors'])}")
                    run.font.color.rgb = RGBColor(0xDC, 0x26, 0x26)
            pages += max(0, (len(data.charts) - 1) // 2)

        if self._show_data_tables(data):
            for tag_name, points in data.data.items():
                if not points:
                    continue
                rows, note = _data_rows(points, self.max_table_rows)
                document.add_page_break()
                pages += 1 + len(rows) // 45
                document.add_heading(f"Data: {tag_name}", level=1)
                if note:
                    document.add_paragraph(note).runs[0].font.size = Pt(8)
                self._docx_table(document, rows)

        if data.statistics:
            document.add_page_break()
            pages += 1
            document.add_heading("Statistical Summary", level=1)
            self._docx_table(document, _summary_rows(data))
        if data.spc_metrics:
            document.add_heading("SPC Summary", level=1)
            self._docx_table(document, _spc_rows(data))

        buffer = io.BytesIO()
        document.save(buffer)
        return buffer.getvalue(), pages
