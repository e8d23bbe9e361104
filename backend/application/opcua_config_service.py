"""OPC UA connection configurations persisted to a JSON file."""
from __future__ import annotations

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, TYPE_CHECKING
from uuid import uuid4

from app.config import AppConfig
from application.encryption_service import EncryptionError, EncryptionService
from domain.clock import utc_now
from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.opcua_config import (
    AuthenticationMode,
    ConnectionStatus,
    OpcuaConfiguration,
    SecurityMode,
    SecurityPolicy,
)

if TYPE_CHECKING:  # pragma: no cover
    from infrastructure.repository import HistorianSource

logger = logging.getLogger(__name__)

PASSWORD_MASK = "********"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class OpcuaConfigService:
    def __init__(self, config: AppConfig, encryption: EncryptionService, file_path: Optional[Path] = None):
        self.config = config
        self.encryption = encryption
        self.file_path = file_path or config.data_dir / str(
            (config.opcua or {}).get("config_file", "opcua-configs.json"))
        self._connector: Optional["HistorianSource"] = None
        self._lock = threading.RLock()

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    def set_connector(self, connector: "HistorianSource") -> None:
        self._connector = connector

    # Storage -------------------------------------------------------------------
    def _read_store(self) -> Dict[str, Any]:
        if not self.file_path.exists():
            return {"configurations": [], "activeConfigId": None, "lastUpdated": None}
        return json.loads(self.file_path.read_text(encoding="utf-8"))

    def _write_store(self, store: Dict[str, Any]) -> None:
        store["lastUpdated"] = utc_now().isoformat()
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.file_path.with_suffix(".tmp")
        tmp.write_text(json.dumps(store, indent=2), encoding="utf-8")
        tmp.replace(self.file_path)

    @staticmethod
    def _to_record(cfg: OpcuaConfiguration, encrypted_password: Optional[str]) -> Dict[str, Any]:
        return {
            "id": cfg.id,
            "name": cfg.name,
            "endpointUrl": cfg.endpoint_url,
            "securityMode": cfg.security_mode.value,
            "securityPolicy": cfg.security_policy.value,
            "authenticationMode": cfg.authentication_mode.value,
            "username": cfg.username,
            "encryptedPassword": encrypted_password,
            "sessionTimeout": cfg.session_timeout,
            "requestTimeout": cfg.request_timeout,
            "isActive": cfg.is_active,
            "status": cfg.status.value,
            "createdAt": _iso(cfg.created_at),
            "updatedAt": _iso(cfg.updated_at),
            "createdBy": cfg.created_by,
            "lastTested": _iso(cfg.last_tested),
            "lastError": cfg.last_error,
        }

    def _from_record(self, record: Dict[str, Any], decrypt: bool) -> OpcuaConfiguration:
        password = None
        if record.get("encryptedPassword"):
            if decrypt:
                try:
                    password = self.encryption.decrypt(json.loads(record["encryptedPassword"]))
                except (EncryptionError, json.JSONDecodeError) as exc:
                    logger.error("Could not decrypt password for configuration %s: %s", record.get("id"), exc)
            else:
                password = PASSWORD_MASK
        return OpcuaConfiguration(
            id=record["id"],
            name=record["name"],
            endpoint_url=record["endpointUrl"],
            security_mode=SecurityMode(record.get("securityMode", "None")),
            security_policy=SecurityPolicy(record.get("securityPolicy", "None")),
            authentication_mode=AuthenticationMode(record.get("authenticationMode", "Anonymous")),
            username=record.get("username"),
            password=password,
            session_timeout=int(record.get("sessionTimeout", 60000)),
            request_timeout=int(record.get("requestTimeout", 5000)),
            is_active=bool(record.get("isActive", False)),
            status=ConnectionStatus(record.get("status", "untested")),
            created_at=_parse(record.get("createdAt")) or utc_now(),
            updated_at=_parse(record.get("updatedAt")) or utc_now(),
            created_by=record.get("createdBy", "system"),
            last_tested=_parse(record.get("lastTested")),
            last_error=record.get("lastError"),
        )

    @staticmethod
    def _find(store: Dict[str, Any], config_id: str) -> Optional[Dict[str, Any]]:
        return next((r for r in store["configurations"] if r["id"] == config_id), None)

    # Validation ------------------------------------------------------------------
    @staticmethod
    def validate(cfg: OpcuaConfiguration) -> None:
        if not cfg.name or not cfg.name.strip():
            raise ValidationError("Configuration name is required")
        if not cfg.endpoint_url or not cfg.endpoint_url.startswith("opc.tcp://"):
            raise ValidationError("Endpoint URL must start with opc.tcp://")
        if cfg.authentication_mode == AuthenticationMode.USERNAME and not cfg.username:
            raise ValidationError("Username is required for Username authentication")
        if (cfg.security_mode == SecurityMode.NONE) != (cfg.security_policy == SecurityPolicy.NONE):
            raise ValidationError("Security mode and security policy must both be None or both be set")
        if cfg.session_timeout <= 0 or cfg.request_timeout <= 0:
            raise ValidationError("Timeouts must be positive")

    # Operations ------------------------------------------------------------------
    def save_configuration(self, cfg: OpcuaConfiguration, user_id: str = "system") -> str:
        self.validate(cfg)
        with self._lock:
            store = self._read_store()
            now = utc_now()
            existing = self._find(store, cfg.id) if cfg.id else None

            if cfg.password and cfg.password != PASSWORD_MASK:
                encrypted = json.dumps(self.encryption.encrypt(cfg.password))
            else:
                encrypted = existing.get("encryptedPassword") if existing else None

            if existing:
                cfg.is_active = bool(existing.get("isActive", False))
                cfg.created_at = _parse(existing.get("createdAt")) or now
                cfg.created_by = existing.get("createdBy", user_id)
                cfg.status = ConnectionStatus(existing.get("status", "untested"))
                cfg.last_tested = _parse(existing.get("lastTested"))
                cfg.last_error = existing.get("lastError")
                cfg.updated_at = now
                store["configurations"] = [
                    self._to_record(cfg, encrypted) if r["id"] == cfg.id else r for r in store["configurations"]
                ]
                logger.info("Updated OPC UA configuration %s by %s", cfg.id, user_id)
            else:
                cfg.id = cfg.id or str(uuid4())
                cfg.is_active = False
                cfg.status = ConnectionStatus.UNTESTED
                cfg.created_at = now
                cfg.updated_at = now
                cfg.created_by = user_id
                store["configurations"].append(self._to_record(cfg, encrypted))
                logger.info("Created OPC UA configuration %s by %s", cfg.id, user_id)

            self._write_store(store)
            return cfg.id

    def load_configuration(self, config_id: str) -> OpcuaConfiguration:
        record = self._find(self._read_store(), config_id)
        if record is None:
            raise NotFoundError(f"Configuration {config_id} not found")
        return self._from_record(record, decrypt=True)

    def list_configurations(self) -> List[OpcuaConfiguration]:
        return [self._from_record(r, decrypt=False) for r in self._read_store()["configurations"]]

    def delete_configuration(self, config_id: str) -> None:
        with self._lock:
            store = self._read_store()
            record = self._find(store, config_id)
            if record is None:
                raise NotFoundError(f"Configuration {config_id} not found")
            if store.get("activeConfigId") == config_id or record.get("isActive"):
                raise ConflictError("Cannot delete active configuration")
            store["configurations"] = [r for r in store["configurations"] if r["id"] != config_id]
            self._write_store(store)
            logger.info("Deleted OPC UA configuration %s", config_id)

    def activate_configuration(self, config_id: str) -> OpcuaConfiguration:
        with self._lock:
            store = self._read_store()
            if self._find(store, config_id) is None:
                raise NotFoundError(f"Configuration {config_id} not found")
            for record in store["configurations"]:
                record["isActive"] = record["id"] == config_id
            store["activeConfigId"] = config_id
            self._write_store(store)
        logger.info("Activated OPC UA configuration %s", config_id)
        if self._connector is not None:
            self._connector.disconnect()
        return self.load_configuration(config_id)

    def get_active_configuration(self) -> Optional[OpcuaConfiguration]:
        store = self._read_store()
        active_id = store.get("activeConfigId")
        record = self._find(store, active_id) if active_id else None
        return self._from_record(record, decrypt=True) if record else None

    def test_connection(self, config_id: str) -> OpcuaConfiguration:
        cfg = self.load_configuration(config_id)
        if self._connector is None:
            raise ValidationError("No OPC UA connector configured")
        error = self._connector.test_connection(cfg)
        with self._lock:
            store = self._read_store()
            record = self._find(store, config_id)
            if record is not None:
                record["status"] = (ConnectionStatus.CONNECTED if error is None else ConnectionStatus.FAILED).value
                record["lastTested"] = utc_now().isoformat()
                record["lastError"] = error
                self._write_store(store)
        if error:
            logger.warning("Connection test for %s failed: %s", config_id, error)
        return self.load_configuration(config_id)

    def initialize_active_connection(self) -> bool:
        """Connect with the active configuration at startup; failures are logged only."""
        try:
            active = self.get_active_configuration()
            if active is None:
                logger.info("No active OPC UA configuration to initialize")
                return False
            if self._connector is None:
                return False
            error = self._connector.test_connection(active)
            if error:
                logger.warning("Active OPC UA configuration %s unreachable: %s", active.name, error)
                return False
            logger.info("Active OPC UA configuration %s is reachable", active.name)
            return True
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to initialize OPC UA connection: %s", exc)
            return False
