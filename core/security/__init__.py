"""Security module - encryption of secrets at rest."""

from core.security.encryption import (
    SecretEncryption,
    build_encryption,
    generate_encryption_key,
)

__all__ = [
    "SecretEncryption",
    "build_encryption",
    "generate_encryption_key",
]
