import stat

import pytest

from application.encryption_service import ALGORITHM, EncryptionError, EncryptionService


@pytest.fixture
def encryption(app_config):
    return EncryptionService(app_config)


def test_round_trip_and_payload_shape(encryption):
    payload = encryption.encrypt("s3cret-pässword")
    assert set(payload) == {"data", "iv", "tag", "algorithm"}
    assert payload["algorithm"] == ALGORITHM
    assert len(bytes.fromhex(payload["iv"])) == 16
    assert encryption.decrypt(payload) == "s3cret-pässword"


def test_same_plaintext_gets_fresh_iv(encryption):
    assert encryption.encrypt("x")["iv"] != encryption.encrypt("x")["iv"]


def test_tampered_ciphertext_is_rejected(encryption):
    payload = encryption.encrypt("hello")
    flipped = "0" if payload["data"][0] != "0" else "1"
    payload["data"] = flipped + payload["data"][1:]
    with pytest.raises(EncryptionError, match="Data decryption failed"):
        encryption.decrypt(payload)


def test_malformed_payload_is_rejected(encryption):
    with pytest.raises(EncryptionError):
        encryption.decrypt({"data": "zz"})


def test_key_file_is_persisted_and_reused(app_config, tmp_path):
    key_path = tmp_path / "keys" / "encryption.key"
    first = EncryptionService(app_config, key_path=key_path)
    payload = first.encrypt("persist me")

    assert key_path.exists()
    assert stat.S_IMODE(key_path.stat().st_mode) == 0o600
    assert EncryptionService(app_config, key_path=key_path).decrypt(payload) == "persist me"


def test_invalid_key_file(app_config, tmp_path):
    key_path = tmp_path / "short.key"
    key_path.write_text("abcd", encoding="utf-8")
    with pytest.raises(EncryptionError, match="invalid length"):
        EncryptionService(app_config, key_path=key_path)


def test_hash_and_verify(encryption):
    hashed = encryption.hash_value("value")
    assert len(hashed["hash"]) == 128
    assert encryption.verify_hash("value", hashed["hash"], hashed["salt"])
    assert not encryption.verify_hash("other", hashed["hash"], hashed["salt"])


def test_generate_token():
    assert len(EncryptionService.generate_token()) == 64
    assert len(EncryptionService.generate_token(8)) == 16
