"""
AES-256-GCM vault for session cookies.

Wire form of a sealed record: nonce (12 bytes) || auth tag (16 bytes) || ciphertext.
"""

import base64
import binascii
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import VaultError

logger = logging.getLogger(__name__)

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16


@dataclass(frozen=True)
class EncryptedSessionRecord:
    nonce: bytes
    auth_tag: bytes
    cipher_text: bytes

    def to_bytes(self) -> bytes:
        return self.nonce + self.auth_tag + self.cipher_text

    @classmethod
    def from_bytes(cls, blob: bytes) -> "EncryptedSessionRecord":
        if len(blob) < NONCE_BYTES + TAG_BYTES:
            raise VaultError("Encrypted record is truncated")
        return cls(
            nonce=blob[:NONCE_BYTES],
            auth_tag=blob[NONCE_BYTES:NONCE_BYTES + TAG_BYTES],
            cipher_text=blob[NONCE_BYTES + TAG_BYTES:],
        )

    def to_hex(self) -> str:
        return self.to_bytes().hex()


def _check_key(key: bytes):
    if len(key) != KEY_BYTES:
        raise VaultError(f"AES-256 key must be {KEY_BYTES} bytes, got {len(key)}")


def encrypt(plaintext: bytes, key: bytes) -> bytes:
    """Seal ``plaintext`` under a fresh random nonce."""
    _check_key(key)
    nonce = os.urandom(NONCE_BYTES)
    # AESGCM appends the tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    cipher_text, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return EncryptedSessionRecord(nonce, tag, cipher_text).to_bytes()


def decrypt(blob: bytes, key: bytes) -> bytes:
    _check_key(key)
    record = EncryptedSessionRecord.from_bytes(blob)
    try:
        return AESGCM(key).decrypt(record.nonce, record.cipher_text + record.auth_tag, None)
    except InvalidTag:
        raise VaultError("Encrypted record failed authentication (tampered or wrong key)")


def parse_key(value: str) -> bytes:
    """Accept a 32-byte key written as hex or base64."""
    value = value.strip()
    try:
        key = bytes.fromhex(value)
        if len(key) == KEY_BYTES:
            return key
    except ValueError:
        pass
    try:
        key = base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise VaultError("Encryption key is neither hex nor base64")
    _check_key(key)
    return key


class Vault:
    def __init__(self, key: Optional[bytes] = None):
        if key is None:
            logger.warning("No VTOP_ENCRYPTION_KEY configured; using an in-memory key. "
                           "Sealed sessions will not survive a restart.")
            key = AESGCM.generate_key(bit_length=256)
        _check_key(key)
        self._key = key

    @classmethod
    def from_settings(cls, settings) -> "Vault":
        if settings.encryption_key:
            return cls(parse_key(settings.encryption_key))
        return cls()

    def __repr__(self):
        return "Vault(key=<hidden>)"

    def encrypt(self, plaintext: Union[str, bytes]) -> bytes:
        if isinstance(plaintext, str):
            plaintext = plaintext.encode("utf-8")
        return encrypt(plaintext, self._key)

    def decrypt(self, blob: bytes) -> bytes:
        return decrypt(blob, self._key)


def save_record(path, blob: bytes) -> Path:
    """Write a sealed record readable by the owner only."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as f:
        f.write(blob)
    os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    logger.info("Sealed session written to %s", path)
    return path


def load_record(path) -> bytes:
    path = Path(path)
    if not path.exists():
        raise VaultError(f"No sealed session at {path}")
    mode = path.stat().st_mode
    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning("Sealed session %s is readable by other users", path)
    return path.read_bytes()
