"""YAML-backed settings for the reporting backend.

Every tunable lives in ``app_config.yaml``. A few deployment knobs can be
overridden from the environment: ``STORAGE``, ``HISTORIAN_BACKEND``,
``DATA_DIR``, ``LOG_LEVEL`` and ``HISTORIAN_CONFIG`` (alternate YAML file).
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

import yaml


CONFIG_PATH = Path(__file__).resolve().parent / "app_config.yaml"
BACKEND_ROOT = Path(__file__).resolve().parent.parent


def _under(base: Path, value: Any) -> Path:
    path = Path(str(value))
    return path if path.is_absolute() else base / path


@dataclass(frozen=True)
class AppConfig:
    raw: Dict[str, Any]

    def section(self, name: str) -> Dict[str, Any]:
        return self.raw.get(name) or {}

    @property
    def version(self) -> str:
        return str(self.raw.get("version", "v1"))

    storage = property(lambda self: self.section("storage"))
    historian = property(lambda self: self.section("historian"))
    reports = property(lambda self: self.section("reports"))
    charts = property(lambda self: self.section("charts"))
    analysis = property(lambda self: self.section("analysis"))
    security = property(lambda self: self.section("security"))
    opcua = property(lambda self: self.section("opcua"))
    users = property(lambda self: self.section("users"))
    server = property(lambda self: self.section("server"))
    logging = property(lambda self: self.section("logging"))

    @property
    def database_backend(self) -> str:
        return os.environ.get("STORAGE") or str(self.storage.get("backend", "sqlite"))

    @property
    def historian_backend(self) -> str:
        return os.environ.get("HISTORIAN_BACKEND") or str(self.historian.get("backend", "opcua"))

    @property
    def data_dir(self) -> Path:
        # read on every access so tests can point DATA_DIR at a temp dir
        return _under(BACKEND_ROOT, os.environ.get("DATA_DIR") or self.storage.get("data_dir", "data"))

    @property
    def database_path(self) -> Path:
        return self.data_dir / str(self.storage.get("database_file", "historian_reports.db"))

    @property
    def reports_dir(self) -> Path:
        return _under(self.data_dir, self.reports.get("output_dir", "reports"))

    @property
    def log_level(self) -> str:
        level = os.environ.get("LOG_LEVEL") or self.logging.get("level", "INFO")
        return str(level).upper()

    @property
    def cors_origins(self) -> List[str]:
        return list(self.server.get("cors_origins", ["http://localhost:5173"]))


@lru_cache(maxsize=1)
def get_settings(path: Path | None = None) -> AppConfig:
    if path is None:
        env_path = os.environ.get("HISTORIAN_CONFIG")
        path = Path(env_path) if env_path else CONFIG_PATH
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping at the top level")
    return AppConfig(raw=data)
