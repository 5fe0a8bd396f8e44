"""Credential Decoder.

Vendor credentials are stored encrypted by the caller. This module turns
the stored ciphertext back into the plaintext credential string using
Fernet symmetric encryption. Any other ``decrypt(ciphertext, key)``
callable can be handed to the orchestrator factory instead.
"""

from __future__ import annotations

import base64
import hashlib
import logging

from cryptography.fernet import Fernet, InvalidToken

from .errors import CloudAuthError

log = logging.getLogger(__name__)


def _derive_key(password: str) -> bytes:
    """Derive a valid Fernet key from a password string."""
    key_bytes = hashlib.sha256(password.encode()).digest()
    return base64.urlsafe_b64encode(key_bytes)


def _fernet(key: str | bytes) -> Fernet:
    if not key:
        raise CloudAuthError("Encryption key is required to decrypt credentials")

    key_bytes = key.encode() if isinstance(key, str) else key
    try:
        return Fernet(key_bytes)
    except ValueError:
        # Not a urlsafe base64 32-byte key, derive one from it
        log.debug("Encryption key is not in Fernet format, deriving key")
        text = key if isinstance(key, str) else key.decode("utf-8", "replace")
        return Fernet(_derive_key(text))


def encrypt_credential(plaintext: str, key: str | bytes) -> str:
    """Encrypt a plaintext credential for storage.

    Args:
        plaintext: Vendor credential
        key: Fernet key or passphrase

    Returns:
        URL-safe ciphertext token
    """
    return _fernet(key).encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt_credential(ciphertext: str, key: str | bytes) -> str:
    """Decrypt a stored credential.

    Args:
        ciphertext: Token produced by encrypt_credential
        key: Fernet key or passphrase

    Returns:
        Plaintext credential

    Raises:
        CloudAuthError: If the token is malformed or the key is wrong
    """
    try:
        return _fernet(key).decrypt(ciphertext.encode("ascii")).decode("utf-8")
    except (InvalidToken, UnicodeError) as e:
        raise CloudAuthError("Failed to decrypt stored credential") from e
