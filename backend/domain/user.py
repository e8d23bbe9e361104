"""User account model."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from domain.clock import utc_now


class UserRole(str, Enum):
    ADMIN = "admin"
    USER = "user"
    VIEW_ONLY = "view-only"


@dataclass
class User:
    id: str
    username: str
    email: str
    password_hash: str
    role: UserRole = UserRole.USER
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    is_active: bool = True
    is_view_only: bool = False
    parent_user_id: Optional[str] = None
    require_password_change: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    last_login: Optional[datetime] = None

    def to_public_dict(self) -> dict:
        """Serialize without the password hash."""
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "role": self.role.value,
            "isActive": self.is_active,
            "isViewOnly": self.is_view_only,
            "parentUserId": self.parent_user_id,
            "requirePasswordChange": self.require_password_change,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "lastLogin": self.last_login.isoformat() if self.last_login else None,
        }
