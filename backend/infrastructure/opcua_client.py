"""OPC UA historian access built on ``asyncua.sync``."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from asyncua import ua
from asyncua.sync import Client

from app.config import AppConfig
from domain.errors import DataSourceError, ValidationError
from domain.historian import QualityCode, TimeSeriesPoint, quality_label
from domain.opcua_config import AuthenticationMode, OpcuaConfiguration, OpcuaTagInfo, SecurityMode
from .repository import HistorianSource

logger = logging.getLogger(__name__)

_BROWSABLE = {ua.NodeClass.Object: "Object", ua.NodeClass.Variable: "Variable"}


def quality_from_status(status: Optional[ua.StatusCode]) -> int:
    """Map an OPC UA status code onto the historian's 192/64/0 scale by severity bits."""
    if status is None:
        return int(QualityCode.GOOD)
    severity = (int(status.value) >> 30) & 0b11
    if severity == 0:
        return int(QualityCode.GOOD)
    if severity == 1:
        return int(QualityCode.UNCERTAIN)
    return int(QualityCode.BAD)


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("nan")


class OpcUaHistorian(HistorianSource):
    """Lazily connects using the active configuration returned by ``config_provider``."""

    def __init__(self, config: AppConfig,
                 config_provider: Optional[Callable[[], Optional[OpcuaConfiguration]]] = None):
        self.config = config
        self._config_provider = config_provider
        self._client: Optional[Client] = None
        self._connected_id: Optional[str] = None
        self._lock = threading.RLock()

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    @property
    def _opcua_cfg(self) -> Dict[str, Any]:
        return self.config.opcua or {}

    @property
    def max_history_points(self) -> int:
        return int((self.config.historian or {}).get("max_history_points", 10000))

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # Connection ---------------------------------------------------------
    def _build_client(self, settings: OpcuaConfiguration) -> Client:
        timeout = max(settings.request_timeout / 1000.0, float(self._opcua_cfg.get("connect_timeout", 4.0)))
        client = Client(url=settings.endpoint_url, timeout=timeout)

        if settings.security_mode != SecurityMode.NONE:
            cert = self._opcua_cfg.get("certificate_path")
            key = self._opcua_cfg.get("private_key_path")
            if not cert or not key:
                raise ValidationError("Security mode requires opcua.certificate_path and opcua.private_key_path")
            client.set_security_string(
                f"{settings.security_policy.value},{settings.security_mode.value},{cert},{key}")

        if settings.authentication_mode == AuthenticationMode.USERNAME:
            client.set_user(settings.username or "")
            client.set_password(settings.password or "")
        return client

    def connect(self, settings: OpcuaConfiguration) -> None:
        with self._lock:
            self.disconnect()
            client = self._build_client(settings)
            try:
                client.connect()
            except Exception as exc:  # noqa: BLE001
                raise DataSourceError(f"Failed to connect to {settings.endpoint_url}: {exc}") from exc
            self._client = client
            self._connected_id = settings.id
            logger.info("Connected to OPC UA server %s", settings.endpoint_url)

    def disconnect(self) -> None:
        with self._lock:
            if self._client is None:
                return
            try:
                self._client.disconnect()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Error while disconnecting OPC UA client: %s", exc)
            finally:
                self._client = None
                self._connected_id = None

    def _ensure_client(self) -> Client:
        with self._lock:
            active = self._config_provider() if self._config_provider else None
            if self._client is not None and (active is None or active.id == self._connected_id):
                return self._client
            if active is None:
                raise DataSourceError("No active OPC UA configuration", status_code=503)
            self.connect(active)
            return self._client

    def test_connection(self, settings: OpcuaConfiguration) -> Optional[str]:
        try:
            client = self._build_client(settings)
            client.connect()
        except Exception as exc:  # noqa: BLE001
            return str(exc) or exc.__class__.__name__
        try:
            client.disconnect()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Disconnect after test failed: %s", exc)
        return None

    # Reads ------------------------------------------------------------------
    def browse(self, node_id: Optional[str] = None) -> List[OpcuaTagInfo]:
        client = self._ensure_client()
        try:
            node = client.get_node(node_id) if node_id else client.nodes.objects
            tags: List[OpcuaTagInfo] = []
            for child in node.get_children():
                node_class = child.read_node_class()
                if node_class not in _BROWSABLE:
                    continue
                data_type = None
                if node_class == ua.NodeClass.Variable:
                    data_type = child.read_data_type_as_variant_type().name
                tags.append(
                    OpcuaTagInfo(
                        node_id=child.nodeid.to_string(),
                        browse_name=child.read_browse_name().Name,
                        display_name=child.read_display_name().Text,
                        node_class=_BROWSABLE[node_class],
                        data_type=data_type,
                    )
                )
            return tags
        except DataSourceError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise DataSourceError(f"Browse failed for {node_id or 'Objects'}: {exc}") from exc

    def read_variable(self, node_id: str) -> Dict[str, Any]:
        point = self.read_current(node_id)
        return {"value": point.value, "quality": quality_label(point.quality), "timestamp": point.timestamp}

    def read_current(self, tag: str) -> TimeSeriesPoint:
        client = self._ensure_client()
        try:
            data_value = client.get_node(tag).read_data_value()
        except Exception as exc:  # noqa: BLE001
            raise DataSourceError(f"Read failed for {tag}: {exc}") from exc
        return TimeSeriesPoint(
            timestamp=data_value.SourceTimestamp or data_value.ServerTimestamp or datetime.now(timezone.utc),
            value=_as_float(data_value.Value.Value if data_value.Value is not None else None),
            quality=quality_from_status(data_value.StatusCode),
            tag_name=tag,
        )

    def read_history(self, tag: str, start: datetime, end: datetime,
                     max_points: Optional[int] = None) -> List[TimeSeriesPoint]:
        client = self._ensure_client()
        limit = max_points or self.max_history_points
        try:
            values = client.get_node(tag).read_raw_history(start, end, limit)
        except Exception as exc:  # noqa: BLE001
            raise DataSourceError(f"History read failed for {tag}: {exc}") from exc
        points = [
            TimeSeriesPoint(
                timestamp=dv.SourceTimestamp or dv.ServerTimestamp,
                value=_as_float(dv.Value.Value if dv.Value is not None else None),
                quality=quality_from_status(dv.StatusCode),
                tag_name=tag,
            )
            for dv in values
        ]
        logger.debug("Read %d historical value(s) for %s", len(points), tag)
        return sorted(points, key=lambda p: p.timestamp)
