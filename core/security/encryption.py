"""Secret encryption using AES-GCM.

Encrypts ERP passwords and cached session cookies at rest.
Values are bound to their tenant through GCM additional authenticated
data, so a ciphertext copied to another tenant's row fails to decrypt.
"""

import base64
import os
import secrets
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


ENCRYPTED_PREFIX = "enc:"


def generate_encryption_key() -> str:
    """Generate a new base64-encoded 256-bit key."""
    return base64.b64encode(secrets.token_bytes(32)).decode("utf-8")


@dataclass
class EncryptedValue:
    """Ciphertext plus the metadata needed to decrypt it."""
    ciphertext: str  # base64, GCM tag appended
    nonce: str       # base64 96-bit nonce
    key_version: int = 1

    def serialize(self) -> str:
        """Pack into a single column-friendly string."""
        return f"{ENCRYPTED_PREFIX}{self.key_version}:{self.nonce}:{self.ciphertext}"

    @classmethod
    def parse(cls, value: str) -> "EncryptedValue":
        if not value.startswith(ENCRYPTED_PREFIX):
            raise ValueError("Value is not encrypted")
        version, nonce, ciphertext = value[len(ENCRYPTED_PREFIX):].split(":", 2)
        return cls(ciphertext=ciphertext, nonce=nonce, key_version=int(version))


class SecretEncryption:
    """AES-256-GCM encryption for secrets stored in the mirror database.

    Usage:
        enc = SecretEncryption(generate_encryption_key())
        stored = enc.encrypt("hunter2", tenant_id="default")
        enc.decrypt(stored, tenant_id="default")  # "hunter2"
    """

    def __init__(self, encryption_key: str, key_version: int = 1):
        try:
            key = base64.b64decode(encryption_key)
        except ValueError as e:
            raise ValueError(f"Invalid encryption key: {e}")
        if len(key) != 32:
            raise ValueError("Invalid encryption key: must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)
        self.key_version = key_version

    def encrypt(self, plaintext: str, tenant_id: str) -> str:
        """Encrypt and serialize a secret for the given tenant."""
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), tenant_id.encode("utf-8"))
        return EncryptedValue(
            ciphertext=base64.b64encode(ciphertext).decode("utf-8"),
            nonce=base64.b64encode(nonce).decode("utf-8"),
            key_version=self.key_version,
        ).serialize()

    def decrypt(self, stored: str, tenant_id: str) -> str:
        """Decrypt a value produced by ``encrypt``.

        Raises:
            ValueError: wrong key, tampered data or wrong tenant
        """
        encrypted = EncryptedValue.parse(stored)
        try:
            plaintext = self._aesgcm.decrypt(
                base64.b64decode(encrypted.nonce),
                base64.b64decode(encrypted.ciphertext),
                tenant_id.encode("utf-8"),
            )
        except InvalidTag as e:
            raise ValueError("Secret decryption failed") from e
        return plaintext.decode("utf-8")


def is_encrypted(value: Optional[str]) -> bool:
    return bool(value) and value.startswith(ENCRYPTED_PREFIX)


def seal(encryption: Optional[SecretEncryption], value: Optional[str], tenant_id: str) -> Optional[str]:
    """Encrypt ``value`` when an encryption key is configured."""
    if encryption is None or value is None:
        return value
    return encryption.encrypt(value, tenant_id)


def unseal(encryption: Optional[SecretEncryption], value: Optional[str], tenant_id: str) -> Optional[str]:
    """Reverse of ``seal``; plaintext rows pass through unchanged."""
    if not is_encrypted(value):
        return value
    if encryption is None:
        raise ValueError("Encrypted value found but no SYNC_ENCRYPTION_KEY is configured")
    return encryption.decrypt(value, tenant_id)


def build_encryption(encryption_key: Optional[str]) -> Optional[SecretEncryption]:
    return SecretEncryption(encryption_key) if encryption_key else None
