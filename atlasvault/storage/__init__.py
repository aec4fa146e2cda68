"""Encrypted on-disk storage: blob store and snapshot store."""

from .file_store import EncryptedFileStore
from .json_store import EncryptedJSONStore

__all__ = ["EncryptedFileStore", "EncryptedJSONStore"]
