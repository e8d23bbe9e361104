"""In-memory stores used by the memory backend and the test-suite."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from domain.errors import DataSourceError
from domain.historian import TimeSeriesPoint, quality_label
from domain.opcua_config import OpcuaConfiguration, OpcuaTagInfo
from domain.report import SavedReport
from domain.user import User
from .repository import HistorianSource, SavedReportRepository, UserRepository


class InMemoryUserRepository(UserRepository):
    def __init__(self):
        self._users: Dict[str, User] = {}

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def find_by_username(self, username: str) -> Optional[User]:
        wanted = username.lower()
        return next((u for u in self._users.values() if u.username.lower() == wanted), None)

    def find_by_email(self, email: str) -> Optional[User]:
        wanted = email.lower()
        return next((u for u in self._users.values() if u.email.lower() == wanted), None)

    def find_view_only(self, parent_user_id: str) -> Optional[User]:
        return next(
            (u for u in self._users.values() if u.is_view_only and u.parent_user_id == parent_user_id),
            None,
        )

    def list_users(self) -> Iterable[User]:
        return list(self._users.values())

    def save_user(self, user: User) -> None:
        self._users[user.id] = user

    def delete_user(self, user_id: str) -> bool:
        return self._users.pop(user_id, None) is not None

    def count(self) -> int:
        return len(self._users)


class InMemorySavedReportRepository(SavedReportRepository):
    def __init__(self):
        self._reports: Dict[str, SavedReport] = {}

    def add(self, report: SavedReport) -> None:
        self._reports[report.id] = report

    def get(self, report_id: str) -> Optional[SavedReport]:
        return self._reports.get(report_id)

    def list_by_name(self, name: str) -> List[SavedReport]:
        versions = [r for r in self._reports.values() if r.name == name]
        return sorted(versions, key=lambda r: r.version, reverse=True)

    def list_latest(self) -> List[SavedReport]:
        latest = [r for r in self._reports.values() if r.is_latest_version]
        return sorted(latest, key=lambda r: r.updated_at, reverse=True)

    def mark_not_latest(self, name: str) -> None:
        for report in self._reports.values():
            if report.name == name:
                report.is_latest_version = False

    def delete_by_name(self, name: str) -> int:
        doomed = [rid for rid, r in self._reports.items() if r.name == name]
        for rid in doomed:
            del self._reports[rid]
        return len(doomed)


class InMemoryHistorian(HistorianSource):
    """Historian backed by series loaded through ``load_series``."""

    def __init__(self):
        self._series: Dict[str, List[TimeSeriesPoint]] = {}

    def load_series(self, tag: str, points: List[TimeSeriesPoint]) -> None:
        self._series[tag] = sorted(
            (TimeSeriesPoint(p.timestamp, p.value, p.quality, tag) for p in points),
            key=lambda p: p.timestamp,
        )

    def clear(self) -> None:
        self._series.clear()

    def _require(self, tag: str) -> List[TimeSeriesPoint]:
        try:
            return self._series[tag]
        except KeyError:
            raise DataSourceError(f"Unknown tag: {tag}", status_code=404) from None

    def read_history(self, tag: str, start: datetime, end: datetime,
                     max_points: Optional[int] = None) -> List[TimeSeriesPoint]:
        points = [p for p in self._require(tag) if start <= p.timestamp <= end]
        return points[:max_points] if max_points else points

    def read_current(self, tag: str) -> TimeSeriesPoint:
        points = self._require(tag)
        if not points:
            raise DataSourceError(f"No value available for {tag}")
        return points[-1]

    def browse(self, node_id: Optional[str] = None) -> List[OpcuaTagInfo]:
        return [
            OpcuaTagInfo(node_id=tag, browse_name=tag, display_name=tag, node_class="Variable", data_type="Double")
            for tag in sorted(self._series)
            if node_id is None or tag.startswith(node_id)
        ]

    def read_variable(self, node_id: str) -> Dict[str, Any]:
        point = self.read_current(node_id)
        return {"value": point.value, "quality": quality_label(point.quality), "timestamp": point.timestamp}

    def test_connection(self, config: OpcuaConfiguration) -> Optional[str]:
        return None
