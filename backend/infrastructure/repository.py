"""Abstract repository interfaces for persistence and historian access."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, TYPE_CHECKING

from domain.historian import TimeSeriesPoint
from domain.user import User

if TYPE_CHECKING:  # pragma: no cover
    from domain.opcua_config import OpcuaConfiguration, OpcuaTagInfo
    from domain.report import SavedReport


class UserRepository(ABC):
    """User accounts; implemented by the in-memory store and SQLite."""

    @abstractmethod
    def get_user(self, user_id: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def find_by_username(self, username: str) -> Optional[User]:
        """Case-insensitive lookup."""
        raise NotImplementedError

    @abstractmethod
    def find_by_email(self, email: str) -> Optional[User]:
        """Case-insensitive lookup."""
        raise NotImplementedError

    @abstractmethod
    def find_view_only(self, parent_user_id: str) -> Optional[User]:
        raise NotImplementedError

    @abstractmethod
    def list_users(self) -> Iterable[User]:
        raise NotImplementedError

    @abstractmethod
    def save_user(self, user: User) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_user(self, user_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def count(self) -> int:
        raise NotImplementedError


class SavedReportRepository(ABC):
    @abstractmethod
    def add(self, report: "SavedReport") -> None:
        raise NotImplementedError

    @abstractmethod
    def get(self, report_id: str) -> Optional["SavedReport"]:
        raise NotImplementedError

    @abstractmethod
    def list_by_name(self, name: str) -> List["SavedReport"]:
        """All versions of a report, newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_latest(self) -> List["SavedReport"]:
        raise NotImplementedError

    @abstractmethod
    def mark_not_latest(self, name: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_by_name(self, name: str) -> int:
        raise NotImplementedError


class HistorianSource(ABC):
    """Where time series come from: a live OPC UA server or an in-memory store."""

    @abstractmethod
    def read_history(self, tag: str, start: datetime, end: datetime,
                     max_points: Optional[int] = None) -> List[TimeSeriesPoint]:
        raise NotImplementedError

    @abstractmethod
    def read_current(self, tag: str) -> TimeSeriesPoint:
        raise NotImplementedError

    @abstractmethod
    def browse(self, node_id: Optional[str] = None) -> List["OpcuaTagInfo"]:
        raise NotImplementedError

    @abstractmethod
    def read_variable(self, node_id: str) -> Dict[str, Any]:
        raise NotImplementedError

    @abstractmethod
    def test_connection(self, config: "OpcuaConfiguration") -> Optional[str]:
        """Return None on success, otherwise the error message."""
        raise NotImplementedError

    def disconnect(self) -> None:
        return None
