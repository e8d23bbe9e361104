import math
from datetime import timedelta

import pytest
from asyncua import ua

from domain.errors import DataSourceError
from domain.historian import QualityCode
from domain.opcua_config import OpcuaConfiguration, SecurityMode, SecurityPolicy
from infrastructure.opcua_client import OpcUaHistorian, _as_float, quality_from_status


@pytest.mark.parametrize(
    "status,expected",
    [
        (None, QualityCode.GOOD),
        (ua.StatusCode(0), QualityCode.GOOD),
        (ua.StatusCode(0x40000000), QualityCode.UNCERTAIN),
        (ua.StatusCode(0x800A0000), QualityCode.BAD),
    ],
)
def test_quality_from_status(status, expected):
    assert quality_from_status(status) == expected


def test_as_float():
    assert _as_float(True) == 1.0
    assert _as_float("2.5") == 2.5
    assert math.isnan(_as_float(None))


def test_reads_without_active_configuration(app_config):
    historian = OpcUaHistorian(app_config, lambda: None)
    with pytest.raises(DataSourceError) as excinfo:
        historian.read_current("ns=2;s=Line1.Temp")
    assert excinfo.value.status_code == 503
    assert not historian.is_connected
    historian.disconnect()


def test_secured_connection_needs_certificates(app_config):
    historian = OpcUaHistorian(app_config)
    settings = OpcuaConfiguration(
        name="secure",
        endpoint_url="opc.tcp://localhost:4840",
        security_mode=SecurityMode.SIGN,
        security_policy=SecurityPolicy.BASIC256SHA256,
    )
    error = historian.test_connection(settings)
    assert "certificate_path" in error


class _Node:
    def __init__(self, data_value):
        self._data_value = data_value

    def read_data_value(self):
        return self._data_value


class _Client:
    def __init__(self, data_value):
        self._data_value = data_value

    def get_node(self, node_id):
        return _Node(self._data_value)


def test_read_current_without_server_timestamps_is_utc_aware(app_config, monkeypatch):
    historian = OpcUaHistorian(app_config)
    monkeypatch.setattr(historian, "_ensure_client", lambda: _Client(ua.DataValue(ua.Variant(3.5))))

    point = historian.read_current("ns=2;s=Line1.Temp")

    assert point.value == 3.5
    assert point.quality == QualityCode.GOOD
    assert point.timestamp.tzinfo is not None
    assert point.timestamp.utcoffset() == timedelta(0)
