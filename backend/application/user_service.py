"""User account management with automatic view-only shadow accounts."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional
from uuid import uuid4

import bcrypt

from app.config import AppConfig
from domain.clock import utc_now
from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.user import User, UserRole
from infrastructure.repository import UserRepository

logger = logging.getLogger(__name__)

VIEW_ONLY_SUFFIX = ".view"
UPDATABLE_FIELDS = ("email", "first_name", "last_name", "role", "is_active")


class UserService:
    def __init__(self, config: AppConfig, repository: UserRepository):
        self.config = config
        self.repository = repository

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    @property
    def _users_cfg(self) -> Dict[str, Any]:
        return self.config.users or {}

    @property
    def bcrypt_rounds(self) -> int:
        return int((self.config.security or {}).get("bcrypt_rounds", 12))

    # Password helpers ------------------------------------------------------------
    def hash_password(self, password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=self.bcrypt_rounds)).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    @staticmethod
    def _validate_password(password: str) -> None:
        if not password or len(password) < 6:
            raise ValidationError("Password must be at least 6 characters long")

    def _require(self, user_id: str) -> User:
        user = self.repository.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _ensure_unique(self, username: Optional[str] = None, email: Optional[str] = None,
                       exclude_id: Optional[str] = None) -> None:
        if username:
            clash = self.repository.find_by_username(username)
            if clash and clash.id != exclude_id:
                raise ConflictError(f"Username '{username}' already exists")
        if email:
            clash = self.repository.find_by_email(email)
            if clash and clash.id != exclude_id:
                raise ConflictError(f"Email '{email}' already exists")

    # Creation --------------------------------------------------------------------
    def create_user(self, username: str, email: str, password: str, role: UserRole = UserRole.USER,
                    first_name: Optional[str] = None, last_name: Optional[str] = None) -> User:
        username = (username or "").strip()
        email = (email or "").strip()
        if not username:
            raise ValidationError("Username is required")
        if "@" not in email:
            raise ValidationError("A valid email address is required")
        self._validate_password(password)
        self._ensure_unique(username=username, email=email)

        now = utc_now()
        user = User(
            id=f"user_{uuid4().hex}",
            username=username,
            email=email,
            password_hash=self.hash_password(password),
            role=UserRole(role),
            first_name=first_name,
            last_name=last_name,
            created_at=now,
            updated_at=now,
        )
        self.repository.save_user(user)
        logger.info("Created user %s (%s)", user.username, user.role.value)

        if user.role == UserRole.USER:
            self._create_shadow(user)
        return user

    def _create_shadow(self, parent: User) -> User:
        username = f"{parent.username}{VIEW_ONLY_SUFFIX}"
        domain = parent.email.split("@", 1)[1] if "@" in parent.email else self._users_cfg.get(
            "view_only_domain", "historian.local")
        email = f"{username}@{domain}"
        self._ensure_unique(username=username, email=email)
        now = utc_now()
        shadow = User(
            id=f"user_{uuid4().hex}",
            username=username,
            email=email,
            password_hash=parent.password_hash,
            role=UserRole.VIEW_ONLY,
            first_name=parent.first_name,
            last_name=f"{parent.last_name} (View Only)" if parent.last_name else "(View Only)",
            is_active=parent.is_active,
            is_view_only=True,
            parent_user_id=parent.id,
            created_at=now,
            updated_at=now,
        )
        self.repository.save_user(shadow)
        logger.info("Created view-only account %s for %s", shadow.username, parent.username)
        return shadow

    def create_view_only_account(self, parent_user_id: str) -> User:
        parent = self._require(parent_user_id)
        if parent.is_view_only:
            raise ValidationError("Cannot create a view-only account for a view-only user")
        if self.repository.find_view_only(parent.id):
            raise ConflictError(f"User '{parent.username}' already has a view-only account")
        return self._create_shadow(parent)

    def get_view_only_account(self, parent_user_id: str) -> Optional[User]:
        self._require(parent_user_id)
        return self.repository.find_view_only(parent_user_id)

    # Queries ---------------------------------------------------------------------
    def get_user(self, user_id: str) -> User:
        return self._require(user_id)

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.repository.find_by_username(username)

    def list_users(self, role: Optional[UserRole] = None, is_active: Optional[bool] = None,
                   search: Optional[str] = None, page: int = 1, page_size: int = 50) -> Dict[str, Any]:
        users = list(self.repository.list_users())
        if role is not None:
            users = [u for u in users if u.role == UserRole(role)]
        if is_active is not None:
            users = [u for u in users if u.is_active == is_active]
        if search:
            needle = search.lower()
            users = [
                u for u in users
                if any(needle in (field or "").lower() for field in (u.username, u.email, u.first_name, u.last_name))
            ]
        users.sort(key=lambda u: u.created_at, reverse=True)

        page = max(page, 1)
        page_size = max(page_size, 1)
        start = (page - 1) * page_size
        return {
            "users": users[start:start + page_size],
            "total": len(users),
            "page": page,
            "pageSize": page_size,
        }

    # Updates ---------------------------------------------------------------------
    def update_user(self, user_id: str, **changes: Any) -> User:
        user = self._require(user_id)
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        updates = {k: v for k, v in changes.items() if v is not None}
        if "email" in updates:
            self._ensure_unique(email=updates["email"], exclude_id=user.id)
        if "role" in updates:
            updates["role"] = UserRole(updates["role"])

        updated = replace(user, **updates, updated_at=utc_now())
        self.repository.save_user(updated)

        if "is_active" in updates:
            shadow = self.repository.find_view_only(user.id)
            if shadow is not None:
                self.repository.save_user(replace(shadow, is_active=updated.is_active, updated_at=updated.updated_at))
        logger.info("Updated user %s", user.username)
        return updated

    def delete_user(self, user_id: str) -> None:
        user = self._require(user_id)
        shadow = self.repository.find_view_only(user.id)
        if shadow is not None:
            self.repository.delete_user(shadow.id)
        self.repository.delete_user(user.id)
        logger.info("Deleted user %s%s", user.username, " and view-only account" if shadow else "")

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self._require(user_id)
        if not self.verify_password(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")
        self._validate_password(new_password)
        self.repository.save_user(replace(
            user,
            password_hash=self.hash_password(new_password),
            require_password_change=False,
            updated_at=utc_now(),
        ))

    def reset_password(self, user_id: str, new_password: str) -> None:
        user = self._require(user_id)
        self._validate_password(new_password)
        self.repository.save_user(replace(
            user,
            password_hash=self.hash_password(new_password),
            require_password_change=True,
            updated_at=utc_now(),
        ))
        logger.info("Password reset for %s", user.username)

    def activate_user(self, user_id: str) -> User:
        return self.update_user(user_id, is_active=True)

    def deactivate_user(self, user_id: str) -> User:
        return self.update_user(user_id, is_active=False)

    def authenticate(self, username: str, password: str) -> Optional[User]:
        user = self.repository.find_by_username(username)
        if user is None or not user.is_active:
            return None
        if not self.verify_password(password, user.password_hash):
            return None
        user = replace(user, last_login=utc_now())
        self.repository.save_user(user)
        return user

    # Seeding ---------------------------------------------------------------------
    def seed_initial_users(self) -> List[User]:
        if self.repository.count() > 0:
            return []
        created: List[User] = []
        for entry in self._users_cfg.get("seed", []) or []:
            try:
                created.append(self.create_user(
                    username=entry["username"],
                    email=entry["email"],
                    password=entry["password"],
                    role=UserRole(entry.get("role", "user")),
                    first_name=entry.get("first_name"),
                    last_name=entry.get("last_name"),
                ))
            except (ConflictError, ValidationError, KeyError) as exc:
                logger.warning("Skipping seed user %s: %s", entry.get("username"), exc)
        logger.info("Seeded %d initial user(s)", len(created))
        return created
