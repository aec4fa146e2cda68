# -*- coding: utf-8 -*-
"""Secret keeper — raw key bytes in the platform credential store.

Entries live under one fixed service name; the entry name is the keyring
"username". Values are base64 text because keyring backends only store
strings.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError, PasswordDeleteError

from ..config import settings
from ..errors import KeyUnavailable

logger = logging.getLogger(__name__)


class KeychainService:
    def __init__(
        self,
        service: str | None = None,
        backend: KeyringBackend | None = None,
    ) -> None:
        self.service = service or settings.keychain_service
        self._backend = backend

    @property
    def backend(self) -> KeyringBackend:
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    def get(self, name: str) -> Optional[bytes]:
        try:
            stored = self.backend.get_password(self.service, name)
        except KeyringError as exc:
            raise KeyUnavailable(f"secure storage unavailable: {exc}") from exc
        if stored is None:
            return None
        try:
            return base64.b64decode(stored.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise KeyUnavailable(f"keychain entry {name!r} is not valid base64") from exc

    def set(self, name: str, data: bytes) -> None:
        encoded = base64.b64encode(data).decode("ascii")
        try:
            # Backends replace an existing entry in place.
            self.backend.set_password(self.service, name, encoded)
        except KeyringError as exc:
            raise KeyUnavailable(f"could not write keychain entry {name!r}: {exc}") from exc

    def delete(self, name: str) -> None:
        try:
            self.backend.delete_password(self.service, name)
        except PasswordDeleteError:
            logger.debug("Keychain entry %s already absent", name)
        except KeyringError as exc:
            raise KeyUnavailable(f"could not delete keychain entry {name!r}: {exc}") from exc
