import pytest

from application.report_management_service import ReportManagementService
from domain.errors import NotFoundError, ValidationError
from infrastructure.database import configure_engine
from infrastructure.memory_store import InMemorySavedReportRepository
from infrastructure.sqlite_repo import SQLiteSavedReportRepository

CONFIG = {"tags": ["Line1.Temp"], "chartTypes": ["line"], "format": "pdf"}


@pytest.fixture(params=["memory", "sqlite"])
def reports(request, app_config, tmp_path):
    if request.param == "sqlite":
        configure_engine(tmp_path / "reports.db")
        repository = SQLiteSavedReportRepository()
    else:
        repository = InMemorySavedReportRepository()
    return ReportManagementService(app_config, repository)


def test_first_save_is_version_one(reports):
    report = reports.save_report("Daily", CONFIG, user_id="alice", description="Daily temps")
    assert report.version == 1
    assert report.is_latest_version
    assert report.change_description == "Initial version"
    assert report.config["name"] == "Daily"
    assert report.config["version"] == 1
    assert reports.load_report(report.id).config["tags"] == ["Line1.Temp"]


def test_saving_same_name_creates_new_version(reports):
    first = reports.save_report("Daily", CONFIG, user_id="alice")
    second = reports.save_report("Daily", dict(CONFIG, tags=["A", "B"]), user_id="bob")

    assert second.version == 2
    assert second.change_description == "Version 2"
    assert [v.version for v in reports.get_report_versions("Daily")] == [2, 1]
    with pytest.raises(NotFoundError):
        reports.load_report(first.id)
    assert reports.get_report(first.id).version == 1


def test_create_new_version_keeps_description(reports):
    reports.save_report("Daily", CONFIG, description="Daily temps")
    third = reports.create_new_version("Daily", CONFIG, "bob", "Added tags")
    assert third.version == 2
    assert third.description == "Daily temps"
    assert third.change_description == "Added tags"
    with pytest.raises(NotFoundError):
        reports.create_new_version("Missing", CONFIG)


def test_list_reports_shows_latest_with_counts(reports):
    reports.save_report("Daily", CONFIG, user_id="alice")
    reports.save_report("Daily", CONFIG, user_id="alice")
    reports.save_report("Weekly", CONFIG, user_id="bob")

    listed = {item["report"].name: item for item in reports.list_reports()}
    assert listed["Daily"]["total_versions"] == 2
    assert listed["Daily"]["report"].version == 2
    assert listed["Weekly"]["total_versions"] == 1
    assert [i["report"].name for i in reports.list_reports(created_by="bob")] == ["Weekly"]


def test_delete_removes_all_versions(reports):
    reports.save_report("Daily", CONFIG)
    latest = reports.save_report("Daily", CONFIG)
    assert reports.delete_report(latest.id, "admin") == 2
    assert reports.list_reports() == []
    with pytest.raises(NotFoundError):
        reports.delete_report(latest.id)


@pytest.mark.parametrize("name,config", [(" ", CONFIG), ("Daily", {"tags": []})])
def test_validation(reports, name, config):
    with pytest.raises(ValidationError):
        reports.save_report(name, config)
