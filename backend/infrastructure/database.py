"""SQLModel database configuration."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, create_engine

from app.config import get_settings

logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None


def configure_engine(db_path: Optional[Path] = None) -> Engine:
    """(Re)bind the module engine to ``db_path`` (defaults to the configured file)."""
    global _engine
    path = db_path or get_settings().database_path
    path.parent.mkdir(parents=True, exist_ok=True)
    _engine = create_engine(
        f"sqlite:///{path}",
        echo=False,
        connect_args={"check_same_thread": False},
    )
    logger.info("SQLite database at %s", path)
    return _engine


def get_engine() -> Engine:
    return _engine or configure_engine()


def init_db() -> None:
    """Create tables if they do not exist."""
    from . import models  # noqa: F401  # ensure SQLModel metadata is loaded

    SQLModel.metadata.create_all(get_engine())


def SessionLocal() -> Session:
    return Session(get_engine())
