"""Symmetric encryption of OAuth secrets at rest.

Tokens are sealed with AES-256-GCM using a fresh 128-bit nonce per call and
serialized as three colon-separated hex fields::

    <nonce>:<tag>:<ciphertext>

The key is read once, lazily, either from the constructor or from the
``INTEGRATION_ENCRYPTION_KEY`` environment variable (64 hex characters).
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from rolodex.errors import VaultDecryptError, VaultError, VaultKeyError


ENCRYPTION_KEY_ENV = "INTEGRATION_ENCRYPTION_KEY"
KEY_BYTES = 32
NONCE_BYTES = 16
TAG_BYTES = 16


class CredentialVault:
    """Encrypts and decrypts integration tokens.

    Parameters
    ----------
    key_hex:
        Hex-encoded 256-bit key.  When omitted the key is read from
        ``env_var`` on first use.
    env_var:
        Environment variable holding the key.

    Raises
    ------
    VaultKeyError
        On the first ``encrypt``/``decrypt`` call when the key is missing,
        not valid hex, or not exactly 32 bytes long.
    """

    def __init__(self, key_hex: str | None = None, *, env_var: str = ENCRYPTION_KEY_ENV) -> None:
        self._key_hex = key_hex
        self._env_var = env_var
        self._aead: AESGCM | None = None

    def __repr__(self) -> str:
        return f"CredentialVault(env_var={self._env_var!r}, key=<redacted>)"

    def _cipher(self) -> AESGCM:
        if self._aead is not None:
            return self._aead

        raw = self._key_hex if self._key_hex is not None else os.environ.get(self._env_var)
        if raw is None or not raw.strip():
            raise VaultKeyError(f"{self._env_var} is not set")
        try:
            key = bytes.fromhex(raw.strip())
        except ValueError as exc:
            raise VaultKeyError(f"{self._env_var} must be a hex string") from exc
        if len(key) != KEY_BYTES:
            raise VaultKeyError(
                f"{self._env_var} must be a {KEY_BYTES * 2}-character hex string "
                f"({KEY_BYTES} bytes for AES-256), got {len(key)} bytes"
            )
        self._aead = AESGCM(key)
        return self._aead

    def encrypt(self, plaintext: str) -> str:
        """Seal *plaintext* and return a ``nonce:tag:ciphertext`` token."""
        if not plaintext:
            raise VaultError("Refusing to encrypt an empty value")
        aead = self._cipher()
        nonce = os.urandom(NONCE_BYTES)
        sealed = aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt(self, token: str) -> str:
        """Open a token produced by :meth:`encrypt`.

        Fails closed: any structural problem or authentication failure raises
        ``VaultDecryptError`` rather than returning partial plaintext.
        """
        aead = self._cipher()
        parts = token.split(":") if isinstance(token, str) else []
        if len(parts) != 3 or not all(parts):
            raise VaultDecryptError("Invalid encrypted data format")

        try:
            nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError as exc:
            raise VaultDecryptError("Invalid encrypted data format") from exc
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise VaultDecryptError("Invalid encrypted data format")

        try:
            opened = aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as exc:
            raise VaultDecryptError("Encrypted data failed authentication") from exc

        try:
            return opened.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise VaultDecryptError("Decrypted data is not valid UTF-8") from exc

    def decrypt_optional(self, token: str | None) -> str | None:
        """Decrypt *token* when present; ``None`` passes through."""
        if token is None or token == "":
            return None
        return self.decrypt(token)
