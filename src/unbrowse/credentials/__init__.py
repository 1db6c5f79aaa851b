"""Credential storage interface, envelope crypto, and resolution."""

from unbrowse.credentials.crypto import (
    CredentialDecryptionError,
    decrypt_value,
    derive_key,
    encrypt_value,
)
from unbrowse.credentials.resolver import CredentialResolution, CredentialResolver
from unbrowse.credentials.store import CredentialRecord, CredentialStore

__all__ = [
    "CredentialDecryptionError",
    "CredentialRecord",
    "CredentialResolution",
    "CredentialResolver",
    "CredentialStore",
    "decrypt_value",
    "derive_key",
    "encrypt_value",
]
