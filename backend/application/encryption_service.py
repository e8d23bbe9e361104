"""Symmetric encryption for secrets at rest (OPC UA passwords)."""
from __future__ import annotations

import binascii
import hashlib
import hmac
import logging
import os
import secrets
from pathlib import Path
from typing import Dict, Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.exceptions import InvalidSignature

from app.config import AppConfig

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-cbc"
KEY_LENGTH = 32
IV_LENGTH = 16


class EncryptionError(Exception):
    """Raised when data cannot be encrypted or fails integrity checks."""


class EncryptionService:
    def __init__(self, config: AppConfig, key_path: Optional[Path] = None):
        self.config = config
        self.key_path = key_path or config.data_dir / str(
            (config.security or {}).get("encryption_key_file", "encryption.key"))
        self._key = self._load_or_create_key()

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    @property
    def iterations(self) -> int:
        return int((self.config.security or {}).get("pbkdf2_iterations", 100000))

    # Key management ---------------------------------------------------------
    def _load_or_create_key(self) -> bytes:
        if self.key_path.exists():
            key = binascii.unhexlify(self.key_path.read_text(encoding="utf-8").strip())
            if len(key) != KEY_LENGTH:
                raise EncryptionError(f"Encryption key at {self.key_path} has invalid length")
            return key

        key = secrets.token_bytes(KEY_LENGTH)
        self.key_path.parent.mkdir(parents=True, exist_ok=True)
        self.key_path.write_text(key.hex(), encoding="utf-8")
        os.chmod(self.key_path, 0o600)
        logger.info("Generated new encryption key at %s", self.key_path)
        return key

    def _signature(self, iv_hex: str, data_hex: str) -> crypto_hmac.HMAC:
        mac = crypto_hmac.HMAC(self._key, hashes.SHA256())
        mac.update((iv_hex + data_hex).encode("utf-8"))
        return mac

    # Encrypt / decrypt ---------------------------------------------------------
    def encrypt(self, plaintext: str) -> Dict[str, str]:
        iv = secrets.token_bytes(IV_LENGTH)
        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        data_hex = (encryptor.update(padded) + encryptor.finalize()).hex()
        iv_hex = iv.hex()
        tag = self._signature(iv_hex, data_hex).finalize().hex()
        return {"data": data_hex, "iv": iv_hex, "tag": tag, "algorithm": ALGORITHM}

    def decrypt(self, payload: Dict[str, str]) -> str:
        try:
            data_hex = payload["data"]
            iv_hex = payload["iv"]
            self._signature(iv_hex, data_hex).verify(bytes.fromhex(payload["tag"]))
            decryptor = Cipher(algorithms.AES(self._key), modes.CBC(bytes.fromhex(iv_hex))).decryptor()
            padded = decryptor.update(bytes.fromhex(data_hex)) + decryptor.finalize()
            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")
        except (KeyError, TypeError, ValueError, InvalidSignature) as exc:
            logger.warning("Decryption failed: %s", exc.__class__.__name__)
            raise EncryptionError("Data decryption failed") from exc

    # Hashing ---------------------------------------------------------------------
    def hash_value(self, data: str, salt: Optional[str] = None) -> Dict[str, str]:
        salt = salt or secrets.token_hex(32)
        digest = hashlib.pbkdf2_hmac("sha512", data.encode("utf-8"), salt.encode("utf-8"), self.iterations, dklen=64)
        return {"hash": digest.hex(), "salt": salt}

    def verify_hash(self, data: str, expected_hash: str, salt: str) -> bool:
        actual = self.hash_value(data, salt)["hash"]
        return hmac.compare_digest(actual, expected_hash)

    @staticmethod
    def generate_token(length: int = 32) -> str:
        return secrets.token_hex(length)
