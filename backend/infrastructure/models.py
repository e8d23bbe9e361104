"""SQLModel ORM tables mirroring the domain entities."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from domain.clock import utc_now


class UserModel(SQLModel, table=True):
    id: str = Field(primary_key=True)
    username: str = Field(index=True, unique=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: str = Field(default="user")
    is_active: bool = Field(default=True)
    is_view_only: bool = Field(default=False)
    parent_user_id: Optional[str] = Field(default=None, index=True)
    require_password_change: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    last_login: Optional[datetime] = None


class SavedReportModel(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    description: str = Field(default="")
    config_json: str = Field(default="{}")  # serialized report configuration
    version: int = Field(default=1)
    created_by: str = Field(default="system")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    is_latest_version: bool = Field(default=True, index=True)
    change_description: str = Field(default="Initial version")
