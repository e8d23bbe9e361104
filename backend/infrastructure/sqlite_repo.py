"""SQLite-backed repository implementations."""
from __future__ import annotations

import json
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlmodel import select

from domain.report import SavedReport
from domain.user import User, UserRole
from .database import SessionLocal, init_db
from .models import SavedReportModel, UserModel
from .repository import SavedReportRepository, UserRepository


class SQLiteUserRepository(UserRepository):
    def __init__(self):
        init_db()

    def get_user(self, user_id: str) -> Optional[User]:
        with SessionLocal() as session:
            model = session.get(UserModel, user_id)
            return self._user_from_model(model) if model else None

    def find_by_username(self, username: str) -> Optional[User]:
        with SessionLocal() as session:
            stmt = select(UserModel).where(func.lower(UserModel.username) == username.lower())
            model = session.exec(stmt).first()
            return self._user_from_model(model) if model else None

    def find_by_email(self, email: str) -> Optional[User]:
        with SessionLocal() as session:
            stmt = select(UserModel).where(func.lower(UserModel.email) == email.lower())
            model = session.exec(stmt).first()
            return self._user_from_model(model) if model else None

    def find_view_only(self, parent_user_id: str) -> Optional[User]:
        with SessionLocal() as session:
            stmt = (
                select(UserModel)
                .where(UserModel.parent_user_id == parent_user_id)
                .where(UserModel.is_view_only == True)  # noqa: E712
            )
            model = session.exec(stmt).first()
            return self._user_from_model(model) if model else None

    def list_users(self) -> Iterable[User]:
        with SessionLocal() as session:
            return [self._user_from_model(m) for m in session.exec(select(UserModel)).all()]

    def save_user(self, user: User) -> None:
        with SessionLocal() as session, session.begin():
            model = session.get(UserModel, user.id)
            if not model:
                model = UserModel(id=user.id, username=user.username, email=user.email,
                                  password_hash=user.password_hash)
            model.username = user.username
            model.email = user.email
            model.password_hash = user.password_hash
            model.first_name = user.first_name
            model.last_name = user.last_name
            model.role = user.role.value
            model.is_active = user.is_active
            model.is_view_only = user.is_view_only
            model.parent_user_id = user.parent_user_id
            model.require_password_change = user.require_password_change
            model.created_at = user.created_at
            model.updated_at = user.updated_at
            model.last_login = user.last_login
            session.add(model)

    def delete_user(self, user_id: str) -> bool:
        with SessionLocal() as session, session.begin():
            model = session.get(UserModel, user_id)
            if not model:
                return False
            session.delete(model)
            return True

    def count(self) -> int:
        with SessionLocal() as session:
            return session.exec(select(func.count()).select_from(UserModel)).one()

    @staticmethod
    def _user_from_model(model: UserModel) -> User:
        return User(
            id=model.id,
            username=model.username,
            email=model.email,
            password_hash=model.password_hash,
            role=UserRole(model.role),
            first_name=model.first_name,
            last_name=model.last_name,
            is_active=model.is_active,
            is_view_only=model.is_view_only,
            parent_user_id=model.parent_user_id,
            require_password_change=model.require_password_change,
            created_at=model.created_at,
            updated_at=model.updated_at,
            last_login=model.last_login,
        )


class SQLiteSavedReportRepository(SavedReportRepository):
    def __init__(self):
        init_db()

    def add(self, report: SavedReport) -> None:
        with SessionLocal() as session, session.begin():
            session.add(
                SavedReportModel(
                    id=report.id,
                    name=report.name,
                    description=report.description,
                    config_json=json.dumps(report.config),
                    version=report.version,
                    created_by=report.created_by,
                    created_at=report.created_at,
                    updated_at=report.updated_at,
                    is_latest_version=report.is_latest_version,
                    change_description=report.change_description,
                )
            )

    def get(self, report_id: str) -> Optional[SavedReport]:
        with SessionLocal() as session:
            model = session.get(SavedReportModel, report_id)
            return self._report_from_model(model) if model else None

    def list_by_name(self, name: str) -> List[SavedReport]:
        with SessionLocal() as session:
            stmt = (
                select(SavedReportModel)
                .where(SavedReportModel.name == name)
                .order_by(SavedReportModel.version.desc())
            )
            return [self._report_from_model(m) for m in session.exec(stmt).all()]

    def list_latest(self) -> List[SavedReport]:
        with SessionLocal() as session:
            stmt = (
                select(SavedReportModel)
                .where(SavedReportModel.is_latest_version == True)  # noqa: E712
                .order_by(SavedReportModel.updated_at.desc())
            )
            return [self._report_from_model(m) for m in session.exec(stmt).all()]

    def mark_not_latest(self, name: str) -> None:
        with SessionLocal() as session, session.begin():
            stmt = (
                select(SavedReportModel)
                .where(SavedReportModel.name == name)
                .where(SavedReportModel.is_latest_version == True)  # noqa: E712
            )
            for model in session.exec(stmt).all():
                model.is_latest_version = False
                session.add(model)

    def delete_by_name(self, name: str) -> int:
        with SessionLocal() as session, session.begin():
            models = session.exec(select(SavedReportModel).where(SavedReportModel.name == name)).all()
            for model in models:
                session.delete(model)
            return len(models)

    @staticmethod
    def _report_from_model(model: SavedReportModel) -> SavedReport:
        return SavedReport(
            id=model.id,
            name=model.name,
            description=model.description,
            config=json.loads(model.config_json or "{}"),
            version=model.version,
            created_by=model.created_by,
            created_at=model.created_at,
            updated_at=model.updated_at,
            is_latest_version=model.is_latest_version,
            change_description=model.change_description,
        )
