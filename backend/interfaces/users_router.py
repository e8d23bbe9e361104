"""User management endpoints."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from domain.errors import ReportingError
from domain.user import UserRole
from interfaces import deps

router = APIRouter(prefix="/users", tags=["users"])


class CreateUserRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=64)
    email: str
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.USER
    firstName: Optional[str] = None
    lastName: Optional[str] = None


class UpdateUserRequest(BaseModel):
    email: Optional[str] = None
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    role: Optional[UserRole] = None
    isActive: Optional[bool] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: str = Field(..., min_length=6)


class ResetPasswordRequest(BaseModel):
    newPassword: str = Field(..., min_length=6)


class LoginRequest(BaseModel):
    username: str
    password: str


def _raise(exc: ReportingError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.get("")
def list_users(
    role: Optional[UserRole] = None,
    isActive: Optional[bool] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    pageSize: int = Query(50, ge=1, le=500),
) -> Dict[str, Any]:
    result = deps.user_service.list_users(role=role, is_active=isActive, search=search,
                                          page=page, page_size=pageSize)
    return {
        "users": [u.to_public_dict() for u in result["users"]],
        "total": result["total"],
        "page": result["page"],
        "pageSize": result["pageSize"],
    }


@router.post("", status_code=201)
def create_user(payload: CreateUserRequest, actor: str = Depends(deps.current_user_id)) -> Dict[str, Any]:
    try:
        user = deps.user_service.create_user(
            username=payload.username,
            email=payload.email,
            password=payload.password,
            role=payload.role,
            first_name=payload.firstName,
            last_name=payload.lastName,
        )
    except ReportingError as exc:
        _raise(exc)
    view_only = deps.user_service.get_view_only_account(user.id)
    return {
        "user": user.to_public_dict(),
        "viewOnlyAccount": view_only.to_public_dict() if view_only else None,
        "createdBy": actor,
    }


@router.post("/login")
def login(payload: LoginRequest) -> Dict[str, Any]:
    user = deps.user_service.authenticate(payload.username, payload.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid username or password")
    return {"user": user.to_public_dict(), "requirePasswordChange": user.require_password_change}


@router.get("/{user_id}")
def get_user(user_id: str) -> Dict[str, Any]:
    try:
        return deps.user_service.get_user(user_id).to_public_dict()
    except ReportingError as exc:
        _raise(exc)


@router.put("/{user_id}")
def update_user(user_id: str, payload: UpdateUserRequest) -> Dict[str, Any]:
    try:
        user = deps.user_service.update_user(
            user_id,
            email=payload.email,
            first_name=payload.firstName,
            last_name=payload.lastName,
            role=payload.role,
            is_active=payload.isActive,
        )
    except ReportingError as exc:
        _raise(exc)
    return user.to_public_dict()


@router.delete("/{user_id}", status_code=204)
def delete_user(user_id: str) -> None:
    try:
        deps.user_service.delete_user(user_id)
    except ReportingError as exc:
        _raise(exc)


@router.get("/{user_id}/view-only")
def get_view_only_account(user_id: str) -> Dict[str, Any]:
    try:
        account = deps.user_service.get_view_only_account(user_id)
    except ReportingError as exc:
        _raise(exc)
    if account is None:
        raise HTTPException(status_code=404, detail="View-only account not found")
    return account.to_public_dict()


@router.post("/{user_id}/view-only", status_code=201)
def create_view_only_account(user_id: str) -> Dict[str, Any]:
    try:
        return deps.user_service.create_view_only_account(user_id).to_public_dict()
    except ReportingError as exc:
        _raise(exc)


@router.post("/{user_id}/password")
def change_password(user_id: str, payload: ChangePasswordRequest) -> Dict[str, Any]:
    try:
        deps.user_service.change_password(user_id, payload.currentPassword, payload.newPassword)
    except ReportingError as exc:
        _raise(exc)
    return {"success": True}


@router.post("/{user_id}/reset-password")
def reset_password(user_id: str, payload: ResetPasswordRequest) -> Dict[str, Any]:
    try:
        deps.user_service.reset_password(user_id, payload.newPassword)
    except ReportingError as exc:
        _raise(exc)
    return {"success": True, "requirePasswordChange": True}


@router.post("/{user_id}/activate")
def activate_user(user_id: str) -> Dict[str, Any]:
    try:
        return deps.user_service.activate_user(user_id).to_public_dict()
    except ReportingError as exc:
        _raise(exc)


@router.post("/{user_id}/deactivate")
def deactivate_user(user_id: str) -> Dict[str, Any]:
    try:
        return deps.user_service.deactivate_user(user_id).to_public_dict()
    except ReportingError as exc:
        _raise(exc)
