"""Tenant access-token sealing and the credential provider used at delivery time.

Stored tokens are AES-256-GCM encrypted: base64(nonce || ciphertext+tag).
With CREDENTIALS_KEY unset the stored value is the token itself, which keeps
local setups and test tenants working without key material.

Security: decrypted tokens are never logged and never leave this process.
"""

from __future__ import annotations

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from flowrelay.domain.models import Tenant

_NONCE_SIZE = 12


class CredentialError(RuntimeError):
    """Credential key is malformed, or a stored credential does not decrypt with it."""


def _get_key() -> bytes | None:
    """AES-256 key from CREDENTIALS_KEY, or None when sealing is disabled.

    Raises:
        CredentialError: If the key is set but not 32 bytes of hex.
    """
    key_hex = os.environ.get("CREDENTIALS_KEY", "")
    if not key_hex:
        return None
    try:
        key = bytes.fromhex(key_hex)
    except ValueError:
        key = b""
    if len(key) != 32:
        raise CredentialError(
            "CREDENTIALS_KEY must be 32 bytes hex (64 hex chars). "
            "Generate with: openssl rand -hex 32"
        )
    return key


def seal_token(token: str) -> str:
    """Encrypt an access token for storage."""
    key = _get_key()
    if key is None:
        return token
    nonce = os.urandom(_NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, token.encode(), None)
    return base64.b64encode(nonce + ciphertext).decode()


def open_token(sealed: str) -> str:
    """Decrypt a stored access token.

    Raises:
        CredentialError: If the value is not valid for the configured key.
    """
    key = _get_key()
    if key is None:
        return sealed
    try:
        data = base64.b64decode(sealed, validate=True)
        plaintext = AESGCM(key).decrypt(data[:_NONCE_SIZE], data[_NONCE_SIZE:], None)
    except (ValueError, InvalidTag) as exc:
        raise CredentialError("stored access token cannot be decrypted") from exc
    return plaintext.decode()


def get_access_token(tenant: Tenant | None) -> str | None:
    """Decrypted bearer credential for a tenant, or None if unset."""
    if tenant is None or not tenant.access_token_enc:
        return None
    return open_token(tenant.access_token_enc) or None
