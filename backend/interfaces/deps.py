"""Shared singletons for settings, repositories, historian access and services.

Backends are picked from app_config.yaml (``storage.backend`` /
``historian.backend``) and can be overridden with the ``STORAGE`` and
``HISTORIAN_BACKEND`` environment variables.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header

from app.config import AppConfig, get_settings
from app.logging_setup import configure_logging
from application.chart_service import ChartService
from application.data_flow_service import DataFlowService
from application.encryption_service import EncryptionService
from application.events import AsyncEventBus
from application.opcua_config_service import OpcuaConfigService
from application.report_management_service import ReportManagementService
from application.report_service import ReportService
from application.user_service import UserService
from infrastructure.memory_store import (
    InMemoryHistorian,
    InMemorySavedReportRepository,
    InMemoryUserRepository,
)
from infrastructure.opcua_client import OpcUaHistorian
from infrastructure.repository import HistorianSource, SavedReportRepository, UserRepository
from infrastructure.sqlite_repo import SQLiteSavedReportRepository, SQLiteUserRepository

settings = get_settings()
configure_logging(settings)
logger = logging.getLogger(__name__)


def _create_repositories() -> tuple[UserRepository, SavedReportRepository]:
    backend = settings.database_backend
    if backend == "memory":
        return InMemoryUserRepository(), InMemorySavedReportRepository()
    elif backend == "sqlite":
        return SQLiteUserRepository(), SQLiteSavedReportRepository()
    else:
        raise ValueError(f"Unknown database backend: {backend}. Supported: sqlite, memory")


def _create_historian() -> HistorianSource:
    backend = settings.historian_backend
    if backend == "memory":
        return InMemoryHistorian()
    elif backend == "opcua":
        return OpcUaHistorian(settings, opcua_config_service.get_active_configuration)
    else:
        raise ValueError(f"Unknown historian backend: {backend}. Supported: opcua, memory")


user_repository, report_repository = _create_repositories()

event_bus = AsyncEventBus()

encryption_service = EncryptionService(settings)
opcua_config_service = OpcuaConfigService(settings, encryption_service)
historian = _create_historian()
opcua_config_service.set_connector(historian)

chart_service = ChartService(settings)
report_service = ReportService(settings)
data_flow_service = DataFlowService(settings, historian, chart_service, report_service)
user_service = UserService(settings, user_repository)
report_management_service = ReportManagementService(settings, report_repository)

logger.info("Database backend: %s", settings.database_backend)
logger.info("Historian backend: %s", settings.historian_backend)
logger.info("Data directory: %s", settings.data_dir)


def current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Acting user for audit fields; sessions are handled upstream."""
    return x_user_id or "system"


def apply_settings(new_settings: AppConfig) -> None:
    """Update global settings reference and refresh dependent singletons."""
    global settings
    settings = new_settings
    configure_logging(new_settings)
    for service in (encryption_service, opcua_config_service, chart_service, report_service,
                    data_flow_service, user_service, report_management_service):
        service.update_config(new_settings)
    if isinstance(historian, OpcUaHistorian):
        historian.update_config(new_settings)


def reload_settings_from_disk() -> AppConfig:
    """Force re-read of app_config.yaml and propagate changes."""
    get_settings.cache_clear()
    fresh = get_settings()
    apply_settings(fresh)
    return fresh
