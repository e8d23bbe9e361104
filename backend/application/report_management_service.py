"""Saved report configurations with per-name version history."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from app.config import AppConfig
from domain.clock import utc_now
from domain.errors import NotFoundError, ValidationError
from domain.report import SavedReport
from infrastructure.repository import SavedReportRepository

logger = logging.getLogger(__name__)


class ReportManagementService:
    def __init__(self, config: AppConfig, repository: SavedReportRepository):
        self.config = config
        self.repository = repository

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    @staticmethod
    def _validate(name: str, report_config: Dict[str, Any]) -> None:
        if not name or not name.strip():
            raise ValidationError("Report name is required")
        if not report_config.get("tags"):
            raise ValidationError("At least one tag is required")

    def _next_version(self, name: str) -> int:
        versions = self.repository.list_by_name(name)
        return (max(r.version for r in versions) + 1) if versions else 1

    def save_report(self, name: str, report_config: Dict[str, Any], user_id: str = "system",
                    description: str = "", change_description: Optional[str] = None) -> SavedReport:
        """Store ``report_config`` as the newest version of ``name``."""
        name = (name or "").strip()
        self._validate(name, report_config)
        version = self._next_version(name)
        if version > 1:
            self.repository.mark_not_latest(name)

        now = utc_now()
        config = dict(report_config, name=name, description=description, version=version)
        report = SavedReport(
            id=str(uuid4()),
            name=name,
            description=description,
            config=config,
            version=version,
            created_by=user_id,
            created_at=now,
            updated_at=now,
            is_latest_version=True,
            change_description=change_description or ("Initial version" if version == 1 else f"Version {version}"),
        )
        self.repository.add(report)
        logger.info("Report saved: %s v%d by %s", name, version, user_id)
        return report

    def create_new_version(self, name: str, report_config: Dict[str, Any], user_id: str = "system",
                           change_description: Optional[str] = None) -> SavedReport:
        versions = self.repository.list_by_name(name)
        if not versions:
            raise NotFoundError(f"Report '{name}' not found")
        return self.save_report(name, report_config, user_id, versions[0].description, change_description)

    def load_report(self, report_id: str) -> SavedReport:
        report = self.repository.get(report_id)
        if report is None or not report.is_latest_version:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    def get_report(self, report_id: str) -> SavedReport:
        """Any version, latest or not."""
        report = self.repository.get(report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        return report

    def list_reports(self, created_by: Optional[str] = None) -> List[Dict[str, Any]]:
        items = []
        for report in self.repository.list_latest():
            if created_by and report.created_by != created_by:
                continue
            items.append({"report": report, "total_versions": len(self.repository.list_by_name(report.name))})
        return items

    def get_report_versions(self, name: str) -> List[SavedReport]:
        versions = self.repository.list_by_name(name)
        if not versions:
            raise NotFoundError(f"Report '{name}' not found")
        return versions

    def delete_report(self, report_id: str, user_id: str = "system") -> int:
        report = self.repository.get(report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found")
        removed = self.repository.delete_by_name(report.name)
        logger.info("Deleted report %s (%d version(s)) by %s", report.name, removed, user_id)
        return removed
