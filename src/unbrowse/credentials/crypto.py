"""Credential envelope encryption.

Envelope format, as written by the browser extension:

    {"ciphertext": "<base64 ciphertext || 16-byte GCM tag>", "iv": "<base64>"}

An explicit ``"tag"`` field is also accepted, in which case ``ciphertext``
holds only the encrypted bytes. The AES-256 key is the SHA-256 digest of the
user's secret with no salt.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

GCM_TAG_LENGTH = 16
GCM_NONCE_LENGTH = 12


class CredentialDecryptionError(ValueError):
    """Decryption failed: wrong secret, tampered value, or malformed envelope."""


def derive_key(secret: str) -> bytes:
    """Derive the AES-256 key from a user secret."""
    return hashlib.sha256(secret.encode("utf-8")).digest()


def is_envelope(value: str) -> bool:
    """Return True when the value looks like an encrypted envelope."""
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return False
    return isinstance(parsed, dict) and "ciphertext" in parsed and "iv" in parsed


def encrypt_value(plaintext: str, secret: str) -> str:
    """Encrypt a credential value into the JSON envelope format."""
    nonce = os.urandom(GCM_NONCE_LENGTH)
    sealed = AESGCM(derive_key(secret)).encrypt(nonce, plaintext.encode("utf-8"), None)
    return json.dumps(
        {
            "ciphertext": base64.b64encode(sealed).decode("ascii"),
            "iv": base64.b64encode(nonce).decode("ascii"),
        }
    )


def decrypt_value(envelope: str | dict[str, Any], secret: str) -> str:
    """Decrypt a credential envelope.

    Raises:
        CredentialDecryptionError: on tag mismatch or malformed payload. The
            message never includes key material or plaintext.
    """
    data = _load_envelope(envelope)
    ciphertext = _b64(data.get("ciphertext"), "ciphertext")
    nonce = _b64(data.get("iv"), "iv")
    if data.get("tag") is not None:
        ciphertext += _b64(data["tag"], "tag")
    if len(ciphertext) < GCM_TAG_LENGTH:
        raise CredentialDecryptionError("ciphertext is shorter than the GCM tag")
    if not nonce:
        raise CredentialDecryptionError("iv is empty")

    try:
        plaintext = AESGCM(derive_key(secret)).decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise CredentialDecryptionError(
            "authentication tag mismatch (wrong credential key or tampered value)"
        ) from None

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise CredentialDecryptionError("decrypted value is not valid UTF-8") from None


def _load_envelope(envelope: str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(envelope, dict):
        return envelope
    try:
        parsed = json.loads(envelope)
    except (TypeError, ValueError):
        raise CredentialDecryptionError("encrypted value is not a JSON envelope") from None
    if not isinstance(parsed, dict):
        raise CredentialDecryptionError("encrypted value is not a JSON object")
    return parsed


def _b64(value: Any, label: str) -> bytes:
    if not isinstance(value, str):
        raise CredentialDecryptionError(f"envelope field '{label}' is missing")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise CredentialDecryptionError(
            f"envelope field '{label}' is not valid base64"
        ) from None
