import json

import pytest

from application.encryption_service import EncryptionService
from application.opcua_config_service import PASSWORD_MASK, OpcuaConfigService
from domain.errors import ConflictError, NotFoundError, ValidationError
from domain.opcua_config import (
    AuthenticationMode,
    ConnectionStatus,
    OpcuaConfiguration,
    SecurityMode,
    SecurityPolicy,
)
from infrastructure.memory_store import InMemoryHistorian


class FailingConnector(InMemoryHistorian):
    def __init__(self):
        super().__init__()
        self.disconnects = 0

    def test_connection(self, config):
        return "BadTimeout"

    def disconnect(self):
        self.disconnects += 1


@pytest.fixture
def service(app_config):
    svc = OpcuaConfigService(app_config, EncryptionService(app_config))
    svc.set_connector(InMemoryHistorian())
    return svc


def _config(**overrides):
    values = dict(name="Plant A", endpoint_url="opc.tcp://plant-a:4840")
    values.update(overrides)
    return OpcuaConfiguration(**values)


def test_save_and_load_decrypts_password(service):
    config_id = service.save_configuration(
        _config(authentication_mode=AuthenticationMode.USERNAME, username="opc", password="hunter22"),
        user_id="admin",
    )
    loaded = service.load_configuration(config_id)
    assert loaded.password == "hunter22"
    assert loaded.created_by == "admin"
    assert loaded.status == ConnectionStatus.UNTESTED
    assert not loaded.is_active

    stored = json.loads(service.file_path.read_text(encoding="utf-8"))
    record = stored["configurations"][0]
    assert "hunter22" not in service.file_path.read_text(encoding="utf-8")
    assert set(json.loads(record["encryptedPassword"])) == {"data", "iv", "tag", "algorithm"}
    assert stored["activeConfigId"] is None
    assert stored["lastUpdated"]


def test_list_masks_passwords(service):
    service.save_configuration(_config(password="hunter22"))
    service.save_configuration(_config(name="Plant B"))
    listed = {c.name: c for c in service.list_configurations()}
    assert listed["Plant A"].password == PASSWORD_MASK
    assert listed["Plant B"].password is None


def test_update_keeps_password_when_masked(service):
    config_id = service.save_configuration(_config(password="hunter22"), user_id="admin")
    service.save_configuration(_config(id=config_id, name="Renamed", password=PASSWORD_MASK), user_id="bob")
    loaded = service.load_configuration(config_id)
    assert loaded.name == "Renamed"
    assert loaded.password == "hunter22"
    assert loaded.created_by == "admin"
    assert len(service.list_configurations()) == 1


@pytest.mark.parametrize(
    "overrides,message",
    [
        ({"name": " "}, "name is required"),
        ({"endpoint_url": "http://plant"}, "opc.tcp://"),
        ({"authentication_mode": AuthenticationMode.USERNAME}, "Username is required"),
        ({"security_mode": SecurityMode.SIGN}, "both be None or both be set"),
        ({"security_policy": SecurityPolicy.BASIC256SHA256}, "both be None or both be set"),
        ({"request_timeout": 0}, "Timeouts must be positive"),
    ],
)
def test_validation(service, overrides, message):
    with pytest.raises(ValidationError, match=message):
        service.save_configuration(_config(**overrides))


def test_signed_configuration_is_accepted(service):
    config_id = service.save_configuration(
        _config(security_mode=SecurityMode.SIGN_AND_ENCRYPT, security_policy=SecurityPolicy.BASIC256SHA256))
    assert service.load_configuration(config_id).security_policy == SecurityPolicy.BASIC256SHA256


def test_activation_is_exclusive_and_blocks_delete(app_config):
    connector = FailingConnector()
    service = OpcuaConfigService(app_config, EncryptionService(app_config))
    service.set_connector(connector)
    first = service.save_configuration(_config())
    second = service.save_configuration(_config(name="Plant B"))

    service.activate_configuration(first)
    service.activate_configuration(second)

    assert service.get_active_configuration().id == second
    assert not service.load_configuration(first).is_active
    assert connector.disconnects == 2
    with pytest.raises(ConflictError, match="Cannot delete active configuration"):
        service.delete_configuration(second)
    service.delete_configuration(first)
    assert [c.id for c in service.list_configurations()] == [second]


def test_missing_configuration(service):
    with pytest.raises(NotFoundError):
        service.load_configuration("nope")
    with pytest.raises(NotFoundError):
        service.delete_configuration("nope")
    with pytest.raises(NotFoundError):
        service.activate_configuration("nope")
    assert service.get_active_configuration() is None


def test_connection_test_records_outcome(service, app_config):
    config_id = service.save_configuration(_config())
    ok = service.test_connection(config_id)
    assert ok.status == ConnectionStatus.CONNECTED
    assert ok.last_tested is not None
    assert ok.last_error is None

    service.set_connector(FailingConnector())
    failed = service.test_connection(config_id)
    assert failed.status == ConnectionStatus.FAILED
    assert failed.last_error == "BadTimeout"


def test_initialize_active_connection(service):
    assert service.initialize_active_connection() is False
    config_id = service.save_configuration(_config())
    service.activate_configuration(config_id)
    assert service.initialize_active_connection() is True
    service.set_connector(FailingConnector())
    assert service.initialize_active_connection() is False
