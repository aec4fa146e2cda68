# -*- coding: utf-8 -*-
"""Encrypted blob store — logical paths mapped to ciphertext files on disk.

Every blob is sealed with the relative path as associated data, so a file
moved or copied to another logical path no longer opens.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import Iterable, List

from ..config import settings
from ..errors import NotFound, StoreIOError
from ..security.crypto import CryptoService

logger = logging.getLogger(__name__)

CACHEDIR_TAG = "CACHEDIR.TAG"
_CACHEDIR_SIGNATURE = (
    "Signature: 8a477f597d28d172789f06886806bc55\n"
    "# This directory holds encrypted clinical data and is excluded from backups.\n"
)
_BACKUP_XATTR = "user.xdg.robots.backup"
_TMP_SUFFIX = ".tmp"


def normalize_relative_path(relative_path: str) -> str:
    """Validate a logical path and return its canonical ``a/b/c`` form."""
    if not relative_path or not relative_path.strip():
        raise ValueError("empty logical path")
    pure = PurePosixPath(relative_path.replace("\\", "/"))
    if pure.is_absolute():
        raise ValueError(f"logical path must be relative: {relative_path!r}")
    parts = [p for p in pure.parts if p not in ("", ".")]
    if not parts or any(p == ".." for p in parts):
        raise ValueError(f"invalid logical path: {relative_path!r}")
    return "/".join(parts)


def _fsync_dir(path: Path) -> None:
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def _discard(path: str) -> None:
    try:
        os.unlink(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temp file %s: %s", path, exc)


class EncryptedFileStore:
    def __init__(self, crypto: CryptoService | None = None, root: Path | None = None) -> None:
        self.crypto = crypto or CryptoService()
        self.root = Path(root or settings.data_root)
        self._ensure_root()

    # ------------------------------------------------------------------ #
    # Root directory
    # ------------------------------------------------------------------ #

    def _ensure_root(self) -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True, mode=0o700)
        except OSError as exc:
            logger.warning("Could not create data root %s: %s", self.root, exc)
            return
        self._exclude_from_backup()

    def _exclude_from_backup(self) -> None:
        tag = self.root / CACHEDIR_TAG
        if not tag.exists():
            try:
                tag.write_text(_CACHEDIR_SIGNATURE, encoding="utf-8")
            except OSError as exc:
                logger.warning("Could not write %s: %s", tag, exc)
        if hasattr(os, "setxattr"):
            try:
                os.setxattr(self.root, _BACKUP_XATTR, b"false")
            except OSError as exc:
                # Not every filesystem supports user xattrs (tmpfs, some overlays).
                logger.debug("Backup xattr not set on %s: %s", self.root, exc)

    def path_for(self, relative_path: str) -> Path:
        return self.root.joinpath(*normalize_relative_path(relative_path).split("/"))

    # ------------------------------------------------------------------ #
    # Blob operations
    # ------------------------------------------------------------------ #

    def write(self, data: bytes, relative_path: str) -> Path:
        """
        Encrypt ``data`` and place it at ``relative_path``.

        The ciphertext goes to a temp file in the destination directory and
        is renamed into place, so readers see either the previous blob or the
        new one, never a partial file.
        """
        logical = normalize_relative_path(relative_path)
        target = self.path_for(logical)
        sealed = self.crypto.encrypt(data, associated_data=logical.encode("utf-8"))
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{target.name}.", suffix=_TMP_SUFFIX, dir=target.parent
            )
        except OSError as exc:
            raise StoreIOError(f"cannot prepare {logical}: {exc}") from exc
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(sealed)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, target)
        except BaseException as exc:
            _discard(tmp_path)
            if isinstance(exc, OSError):
                raise StoreIOError(f"cannot write {logical}: {exc}") from exc
            raise
        _fsync_dir(target.parent)
        return target

    def read(self, relative_path: str) -> bytes:
        logical = normalize_relative_path(relative_path)
        target = self.path_for(logical)
        try:
            sealed = target.read_bytes()
        except FileNotFoundError as exc:
            raise NotFound(f"no blob at {logical}") from exc
        except OSError as exc:
            raise StoreIOError(f"cannot read {logical}: {exc}") from exc
        return self.crypto.decrypt(sealed, associated_data=logical.encode("utf-8"))

    def exists(self, relative_path: str) -> bool:
        try:
            return self.path_for(relative_path).is_file()
        except ValueError:
            return False

    def delete(self, relative_path: str) -> bool:
        """Remove a blob. The caller must already have dropped every reference to it."""
        logical = normalize_relative_path(relative_path)
        target = self.path_for(logical)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StoreIOError(f"cannot delete {logical}: {exc}") from exc
        parent = target.parent
        while parent != self.root:
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
        return True

    def list_blobs(self, prefix: str = "") -> List[str]:
        base = self.path_for(prefix) if prefix else self.root
        if not base.is_dir():
            return []
        found: List[str] = []
        for fp in base.rglob("*"):
            if not fp.is_file():
                continue
            if fp.name == CACHEDIR_TAG or fp.name.startswith(".") or fp.name.endswith(_TMP_SUFFIX):
                continue
            found.append(fp.relative_to(self.root).as_posix())
        return sorted(found)

    def purge(self, keep: Iterable[str] = ()) -> None:
        """
        Remove every blob under the root. Only a full store reset calls this.

        Top-level entries holding any path in ``keep`` are left in place.
        """
        if not self.root.is_dir():
            return
        kept = {CACHEDIR_TAG}
        kept.update(PurePosixPath(normalize_relative_path(p)).parts[0] for p in keep)
        try:
            for child in self.root.iterdir():
                if child.name in kept:
                    continue
                if child.is_dir() and not child.is_symlink():
                    shutil.rmtree(child)
                else:
                    child.unlink()
        except OSError as exc:
            raise StoreIOError(f"cannot purge {self.root}: {exc}") from exc
