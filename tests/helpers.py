# -*- coding: utf-8 -*-
"""Shared test fixtures: in-memory keyring, image factories, recording scheduler."""

from __future__ import annotations

from datetime import datetime
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from keyring.backend import KeyringBackend
from keyring.errors import KeyringLocked, PasswordDeleteError
from PIL import Image

from atlasvault.clinical.repository import AppRepository
from atlasvault.security.crypto import CryptoService
from atlasvault.security.keychain import KeychainService
from atlasvault.storage.file_store import EncryptedFileStore


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.entries: Dict[Tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> Optional[str]:
        return self.entries.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.entries[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if (service, username) not in self.entries:
            raise PasswordDeleteError("not found")
        del self.entries[(service, username)]


class LockedKeyring(MemoryKeyring):
    def get_password(self, service: str, username: str) -> Optional[str]:
        raise KeyringLocked("device locked")

    def set_password(self, service: str, username: str, password: str) -> None:
        raise KeyringLocked("device locked")


class RecordingScheduler:
    def __init__(self) -> None:
        self.scheduled: List[dict] = []
        self.cancelled: List[str] = []

    def schedule(self, identifier: str, fire_date: datetime, delay_seconds: float, title: str, body: str) -> None:
        self.scheduled.append(
            {
                "identifier": identifier,
                "fire_date": fire_date,
                "delay_seconds": delay_seconds,
                "title": title,
                "body": body,
            }
        )

    def cancel(self, identifier: str) -> None:
        self.cancelled.append(identifier)


def make_crypto(backend: Optional[KeyringBackend] = None) -> CryptoService:
    keychain = KeychainService(service="test.atlasvault", backend=backend or MemoryKeyring())
    return CryptoService(keychain=keychain, key_account="test-key")


def make_file_store(root: Path, backend: Optional[KeyringBackend] = None) -> EncryptedFileStore:
    return EncryptedFileStore(crypto=make_crypto(backend), root=root)


def make_repository(root: Path, backend: Optional[KeyringBackend] = None, **kwargs) -> AppRepository:
    kwargs.setdefault("scheduler", RecordingScheduler())
    kwargs.setdefault("min_reminder_delay_sec", 1.0)
    return AppRepository(make_file_store(root, backend), **kwargs)


def make_jpeg(width: int = 64, height: int = 48, color=(200, 120, 80)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="JPEG")
    return buf.getvalue()


def make_png(width: int = 300, height: int = 120) -> bytes:
    buf = BytesIO()
    Image.new("RGBA", (width, height), (255, 255, 255, 0)).save(buf, format="PNG")
    return buf.getvalue()
