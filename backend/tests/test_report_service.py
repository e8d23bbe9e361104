import io
import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from app.config import AppConfig
from application.chart_service import ChartService
from application.report_service import ReportService, generate_report_filename, sanitize_report_name
from application.statistics_service import calculate_spc_metrics, calculate_statistics, calculate_trend_line
from domain.historian import QualityCode, SpecificationLimits
from domain.report import ChartType, ReportBranding, ReportConfig, ReportData, ReportFormat, ReportTemplate

BASE_TIME = datetime(2024, 1, 15, 8, 0, 0)


@pytest.fixture
def report_service(app_config):
    return ReportService(app_config)


def _report_data(series, app_config, **config_overrides):
    data = {"Line1.Temp": series([20, 21, 22, 25, 23], tag="Line1.Temp")}
    options = dict(
        id="r-1",
        name="Daily Temperature",
        tags=list(data),
        start_time=BASE_TIME,
        end_time=BASE_TIME.replace(hour=9),
        chart_types=[ChartType.LINE],
        specification_limits={"Line1.Temp": SpecificationLimits(lsl=15, usl=30)},
    )
    options.update(config_overrides)
    config = ReportConfig(**options)
    points = data["Line1.Temp"]
    return ReportData(
        config=config,
        data=data,
        statistics={"Line1.Temp": calculate_statistics(points)},
        trends={"Line1.Temp": calculate_trend_line(points)},
        spc_metrics={"Line1.Temp": calculate_spc_metrics(points, SpecificationLimits(lsl=15, usl=30))},
        charts=ChartService(app_config).generate_report_charts(
            data, {}, {}, [ChartType.LINE]),
        generated_at=datetime(2024, 1, 31, 14, 5),
    )


@pytest.mark.parametrize(
    "name,expected",
    [
        ("My Report", "My_Report"),
        ("  Line #1 / Temps!  ", "Line_1_Temps"),
        ("a__b   c", "a_b_c"),
        ("***", "report"),
        (None, "report"),
    ],
)
def test_sanitize_report_name(name, expected):
    assert sanitize_report_name(name) == expected


def test_generate_report_filename():
    when = datetime(2024, 1, 31, 14, 5)
    assert generate_report_filename("My Report", ".pdf", when) == "My_Report_2024_01_31_1405.pdf"
    assert generate_report_filename("My Report", "docx", when) == "My_Report_2024_01_31_1405.docx"


def test_pdf_report_is_written(report_service, series, app_config):
    result = report_service.generate_report(_report_data(series, app_config))

    assert result.success, result.error
    assert result.report_id == "r-1"
    assert result.buffer.startswith(b"%PDF")
    assert result.metadata.format == "pdf"
    assert result.metadata.pages >= 2
    assert result.metadata.file_size == len(result.buffer)
    path = Path(result.file_path)
    assert path.name == "Daily_Temperature_2024_01_31_1405.pdf"
    assert path.parent == app_config.reports_dir
    assert path.read_bytes() == result.buffer


def test_report_without_saving(report_service, series, app_config):
    result = report_service.generate_report(_report_data(series, app_config), save_to_file=False)
    assert result.success
    assert result.file_path is None
    assert not app_config.reports_dir.exists()


def test_docx_report(report_service, series, app_config):
    data = _report_data(series, app_config, format=ReportFormat.DOCX, include_data_table=True)
    result = report_service.generate_report(data, save_to_file=False)

    assert result.success, result.error
    assert result.buffer.startswith(b"PK")
    with zipfile.ZipFile(io.BytesIO(result.buffer)) as archive:
        body = archive.read("word/document.xml").decode("utf-8")
    assert "Daily Temperature" in body
    assert "Statistical Summary" in body
    assert "SPC Summary" in body
    assert result.metadata.format == "docx"


def test_executive_template_is_shorter(report_service, series, app_config):
    full = report_service.generate_report(
        _report_data(series, app_config, template=ReportTemplate.TECHNICAL), save_to_file=False)
    executive = report_service.generate_report(
        _report_data(series, app_config, template=ReportTemplate.EXECUTIVE), save_to_file=False)
    assert executive.success and full.success
    assert executive.metadata.pages < full.metadata.pages


def test_invalid_chart_is_replaced_not_fatal(report_service, series, app_config):
    data = _report_data(series, app_config)
    data.charts["broken"] = b"not a png at all"
    result = report_service.generate_report(data, save_to_file=False)
    assert result.success


def test_failure_is_reported_not_raised(report_service, series, app_config):
    data = _report_data(series, app_config, branding=ReportBranding(primary_color="not-a-color"))
    result = report_service.generate_report(data)
    assert not result.success
    assert result.report_id == "r-1"
    assert result.error
    assert result.file_path is None


def test_data_table_is_capped_and_labels_raw_quality_codes(series, app_config):
    capped = AppConfig(raw=dict(app_config.raw, reports=dict(app_config.reports, max_table_rows=3)))
    data = _report_data(series, app_config, format=ReportFormat.DOCX, include_data_table=True)
    data.data["Line1.Temp"] = series([20, 21, 22, 25, 23], tag="Line1.Temp",
                                     qualities=[28, QualityCode.GOOD, QualityCode.BAD, QualityCode.GOOD, 28])

    result = ReportService(capped).generate_report(data, save_to_file=False)

    assert result.success, result.error
    with zipfile.ZipFile(io.BytesIO(result.buffer)) as archive:
        body = archive.read("word/document.xml").decode("utf-8")
    assert "Showing first 3 of 5 data points" in body
    assert "2024-01-15 08:02:00" in body
    assert "2024-01-15 08:03:00" not in body
    assert body.count("Code 28") == 1
    assert "Bad" in body
