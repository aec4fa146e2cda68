"""
security.crypto
~~~~~~~~~~~~~~~

Authenticated encryption for everything the store writes to disk.

A single AES-256-GCM key is kept in the platform keychain (see
:class:`~atlasvault.security.keychain.KeychainService`). Every call to
:meth:`CryptoService.encrypt` draws a fresh 96-bit nonce and returns one
opaque blob laid out as::

    nonce (12 bytes) || ciphertext || tag (16 bytes)

so callers never need to know anything about the algorithm. Decryption fails
closed with :class:`~atlasvault.errors.AuthenticationFailed`.
"""

from __future__ import annotations

import logging
import os
import threading
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..config import settings
from ..errors import AuthenticationFailed, KeyUnavailable
from .keychain import KeychainService

logger = logging.getLogger(__name__)


# --------------------------------------------------------------------------- #
# Configuration
# --------------------------------------------------------------------------- #

#: AES-256
KEY_SIZE: int = 32

#: GCM standard nonce length
NONCE_SIZE: int = 12

#: GCM authentication tag length
TAG_SIZE: int = 16


class CryptoService:
    def __init__(
        self,
        keychain: KeychainService | None = None,
        key_account: str | None = None,
    ) -> None:
        self.keychain = keychain or KeychainService()
        self.key_account = key_account or settings.key_account
        self._aead: Optional[AESGCM] = None
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Key lifecycle
    # ------------------------------------------------------------------ #

    def ensure_key(self) -> AESGCM:
        """
        Load the installation key, creating and persisting one if absent.

        Safe to call more than once; only the first call touches the
        keychain. Raises :class:`KeyUnavailable` if secure storage refuses
        access or holds a key of the wrong size.
        """
        with self._lock:
            if self._aead is not None:
                return self._aead
            key = self.keychain.get(self.key_account)
            if key is None:
                key = AESGCM.generate_key(bit_length=KEY_SIZE * 8)
                self.keychain.set(self.key_account, key)
                logger.info("Generated new encryption key (%s)", self.key_account)
            elif len(key) != KEY_SIZE:
                raise KeyUnavailable(
                    f"stored key has {len(key)} bytes, expected {KEY_SIZE}"
                )
            self._aead = AESGCM(key)
            return self._aead

    def forget_key(self) -> None:
        """Delete the installation key from the keychain; the next use creates a new one."""
        with self._lock:
            self.keychain.delete(self.key_account)
            self._aead = None
        logger.warning("Encryption key removed (%s)", self.key_account)

    @property
    def has_key(self) -> bool:
        return self._aead is not None

    def _cipher(self) -> AESGCM:
        if self._aead is not None:
            return self._aead
        return self.ensure_key()

    # ------------------------------------------------------------------ #
    # AEAD
    # ------------------------------------------------------------------ #

    def encrypt(self, plaintext: bytes, associated_data: bytes | None = None) -> bytes:
        """Seal ``plaintext`` and return ``nonce || ciphertext || tag``."""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._cipher().encrypt(nonce, plaintext, associated_data or b"")
        return nonce + sealed

    def decrypt(self, blob: bytes, associated_data: bytes | None = None) -> bytes:
        """
        Open a blob produced by :meth:`encrypt`.

        Raises :class:`AuthenticationFailed` if the blob was altered, was
        sealed with another key or another ``associated_data``, or is too
        short to hold a nonce and a tag.
        """
        aead = self._cipher()
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise AuthenticationFailed("ciphertext too short")
        nonce, sealed = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return aead.decrypt(nonce, sealed, associated_data or b"")
        except InvalidTag as exc:
            raise AuthenticationFailed("ciphertext failed authentication") from exc
