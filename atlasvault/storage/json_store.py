# -*- coding: utf-8 -*-
"""Snapshot store — one pydantic value kept as a single encrypted JSON blob."""

from __future__ import annotations

import logging
from typing import Generic, Type, TypeVar

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from ..errors import EncodeError, StoreError
from .file_store import EncryptedFileStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EncryptedJSONStore(Generic[T]):
    def __init__(
        self,
        value_type: Type[T],
        file_store: EncryptedFileStore | None = None,
        file_path: str = "db.json",
    ) -> None:
        self.file_store = file_store or EncryptedFileStore()
        self.file_path = file_path
        self._adapter: TypeAdapter[T] = TypeAdapter(value_type)

    def load(self, default: T) -> T:
        """Return the stored value, or ``default`` when absent or unreadable."""
        if not self.file_store.exists(self.file_path):
            return default
        try:
            raw = self.file_store.read(self.file_path)
            return self._adapter.validate_json(raw)
        except (StoreError, ValidationError) as exc:
            logger.warning(
                "Snapshot %s unreadable, starting from default: %s",
                self.file_path,
                exc.__class__.__name__,
            )
            return default

    def save(self, value: T) -> None:
        try:
            data = self._adapter.dump_json(value)
        except PydanticSerializationError as exc:
            raise EncodeError(f"cannot serialize snapshot: {exc}") from exc
        self.file_store.write(data, self.file_path)
