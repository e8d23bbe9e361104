"""OPC UA configuration and browsing endpoints."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from domain.errors import ReportingError
from domain.opcua_config import (
    AuthenticationMode,
    OpcuaConfiguration,
    SecurityMode,
    SecurityPolicy,
)
from interfaces import deps

router = APIRouter(prefix="/opcua", tags=["opcua"])


class ConfigurationRequest(BaseModel):
    name: str
    endpointUrl: str
    securityMode: SecurityMode = SecurityMode.NONE
    securityPolicy: SecurityPolicy = SecurityPolicy.NONE
    authenticationMode: AuthenticationMode = AuthenticationMode.ANONYMOUS
    username: Optional[str] = None
    password: Optional[str] = None
    sessionTimeout: int = Field(60000, gt=0)
    requestTimeout: int = Field(5000, gt=0)

    def to_domain(self, config_id: str = "") -> OpcuaConfiguration:
        return OpcuaConfiguration(
            id=config_id,
            name=self.name,
            endpoint_url=self.endpointUrl,
            security_mode=self.securityMode,
            security_policy=self.securityPolicy,
            authentication_mode=self.authenticationMode,
            username=self.username,
            password=self.password,
            session_timeout=self.sessionTimeout,
            request_timeout=self.requestTimeout,
        )


def _config_to_dict(cfg: OpcuaConfiguration) -> Dict[str, Any]:
    return {
        "id": cfg.id,
        "name": cfg.name,
        "endpointUrl": cfg.endpoint_url,
        "securityMode": cfg.security_mode.value,
        "securityPolicy": cfg.security_policy.value,
        "authenticationMode": cfg.authentication_mode.value,
        "username": cfg.username,
        "hasPassword": bool(cfg.password),
        "sessionTimeout": cfg.session_timeout,
        "requestTimeout": cfg.request_timeout,
        "isActive": cfg.is_active,
        "status": cfg.status.value,
        "createdAt": cfg.created_at.isoformat(),
        "updatedAt": cfg.updated_at.isoformat(),
        "createdBy": cfg.created_by,
        "lastTested": cfg.last_tested.isoformat() if cfg.last_tested else None,
        "lastError": cfg.last_error,
    }


def _raise(exc: ReportingError) -> None:
    raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@router.get("/configurations")
def list_configurations() -> List[Dict[str, Any]]:
    return [_config_to_dict(c) for c in deps.opcua_config_service.list_configurations()]


@router.post("/configurations", status_code=201)
def create_configuration(payload: ConfigurationRequest, actor: str = Depends(deps.current_user_id)) -> Dict[str, Any]:
    try:
        config_id = deps.opcua_config_service.save_configuration(payload.to_domain(), actor)
        return _config_to_dict(deps.opcua_config_service.load_configuration(config_id))
    except ReportingError as exc:
        _raise(exc)


@router.get("/configurations/active")
def get_active_configuration() -> Dict[str, Any]:
    active = deps.opcua_config_service.get_active_configuration()
    if active is None:
        raise HTTPException(status_code=404, detail="No active configuration")
    return _config_to_dict(active)


@router.get("/configurations/{config_id}")
def get_configuration(config_id: str) -> Dict[str, Any]:
    try:
        return _config_to_dict(deps.opcua_config_service.load_configuration(config_id))
    except ReportingError as exc:
        _raise(exc)


@router.put("/configurations/{config_id}")
def update_configuration(config_id: str, payload: ConfigurationRequest,
                         actor: str = Depends(deps.current_user_id)) -> Dict[str, Any]:
    try:
        deps.opcua_config_service.load_configuration(config_id)
        deps.opcua_config_service.save_configuration(payload.to_domain(config_id), actor)
        return _config_to_dict(deps.opcua_config_service.load_configuration(config_id))
    except ReportingError as exc:
        _raise(exc)


@router.delete("/configurations/{config_id}", status_code=204)
def delete_configuration(config_id: str) -> None:
    try:
        deps.opcua_config_service.delete_configuration(config_id)
    except ReportingError as exc:
        _raise(exc)


@router.post("/configurations/{config_id}/activate")
def activate_configuration(config_id: str) -> Dict[str, Any]:
    try:
        return _config_to_dict(deps.opcua_config_service.activate_configuration(config_id))
    except ReportingError as exc:
        _raise(exc)


@router.post("/configurations/{config_id}/test")
def test_configuration(config_id: str) -> Dict[str, Any]:
    try:
        cfg = deps.opcua_config_service.test_connection(config_id)
    except ReportingError as exc:
        _raise(exc)
    return {"success": cfg.last_error is None, "error": cfg.last_error, "configuration": _config_to_dict(cfg)}


@router.get("/browse")
def browse(nodeId: Optional[str] = Query(default=None)) -> List[Dict[str, Any]]:
    try:
        tags = deps.historian.browse(nodeId)
    except ReportingError as exc:
        _raise(exc)
    return [
        {
            "nodeId": t.node_id,
            "browseName": t.browse_name,
            "displayName": t.display_name,
            "nodeClass": t.node_class,
            "dataType": t.data_type,
        }
        for t in tags
    ]


@router.get("/read")
def read_variable(nodeId: str = Query(...)) -> Dict[str, Any]:
    try:
        result = deps.historian.read_variable(nodeId)
    except ReportingError as exc:
        _raise(exc)
    timestamp = result.get("timestamp")
    return {
        "nodeId": nodeId,
        "value": result["value"],
        "quality": result["quality"],
        "timestamp": timestamp.isoformat() if timestamp else None,
    }
