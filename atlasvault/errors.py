# -*- coding: utf-8 -*-
"""Error kinds raised by the encrypted store.

Cipher engine and blob store raise these to their callers. The snapshot store
absorbs them on load and propagates them on save; the repository absorbs save
failures (see ``AppRepository.save``).
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for every failure surfaced by the store."""


class KeyUnavailable(StoreError):
    """Secure storage denied access, or the key could not be created."""


class AuthenticationFailed(StoreError):
    """Ciphertext did not verify (tampered, truncated or wrong key)."""


class NotFound(StoreError):
    """Missing blob, or missing domain entity by id."""


class EncodeError(StoreError):
    """Image or JSON serialization failed."""


class StoreIOError(StoreError):
    """Filesystem failure (disk full, permission denied...)."""
