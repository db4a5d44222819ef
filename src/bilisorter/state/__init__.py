"""Checkpoint persistence for the BiliSorter pipelines.

:class:`CheckpointStore` gives typed, whole-key access to every document the
pipelines persist. Each write replaces one key with a complete snapshot; there
are no multi-key transactions, so callers order their writes such that a crash
between two of them leaves a state that is safe to resume from.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import CorruptStateError, StateError
from .models import (
    Folder,
    FolderIndexCheckpoint,
    Item,
    LogEntry,
    OperationStatus,
    SourceMeta,
    Suggestion,
    SuggestionMap,
)
from .store import ChangeListener, JsonFileStore, KeyValueStore, MemoryStore

LOGGER = logging.getLogger(__name__)

OPERATION_LOG_LIMIT = 1000

_T = TypeVar("_T")


class StorageKeys:
    """Names of the persisted documents."""

    FOLDERS = "bilisorter_folders"
    FOLDER_SAMPLES = "bilisorter_folder_samples"
    FOLDER_INDEX_TIME = "bilisorter_folder_index_time"
    FOLDER_CHECKPOINT = "bilisorter_folder_checkpoint"
    SOURCE_ITEMS = "bilisorter_source_items"
    SOURCE_META = "bilisorter_source_meta"
    SUGGESTIONS = "bilisorter_suggestions"
    OPERATION_LOG = "bilisorter_operation_log"

    INDEX = (FOLDERS, FOLDER_SAMPLES, FOLDER_INDEX_TIME, FOLDER_CHECKPOINT)
    SOURCE = (SOURCE_ITEMS, SOURCE_META, SUGGESTIONS)
    ALL_CACHES = INDEX + SOURCE


_FOLDERS = TypeAdapter(List[Folder])
_ITEMS = TypeAdapter(List[Item])
_SAMPLES = TypeAdapter(Dict[str, List[str]])
_SUGGESTIONS = TypeAdapter(Dict[str, List[Suggestion]])
_LOG = TypeAdapter(List[LogEntry])
_TIMESTAMP = TypeAdapter(datetime)


class CheckpointStore:
    """Typed accessors over a :class:`KeyValueStore`."""

    def __init__(self, backend: KeyValueStore) -> None:
        """Wrap ``backend``.

        Args:
            backend: Durable key-value store holding JSON-compatible values.
        """
        self._backend = backend

    @classmethod
    def at(cls, directory: Path) -> "CheckpointStore":
        """Return a store persisting JSON documents under ``directory``."""
        return cls(JsonFileStore(directory))

    @property
    def backend(self) -> KeyValueStore:
        return self._backend

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener on the underlying store."""
        return self._backend.subscribe(listener)

    # Folder index ------------------------------------------------------

    async def load_folders(self) -> list[Folder]:
        return await self._load(StorageKeys.FOLDERS, _FOLDERS, [])

    async def save_folders(self, folders: Iterable[Folder]) -> None:
        await self._save(StorageKeys.FOLDERS, _FOLDERS, list(folders))

    async def load_samples(self) -> dict[str, list[str]]:
        return await self._load(StorageKeys.FOLDER_SAMPLES, _SAMPLES, {})

    async def save_samples(self, samples: dict[str, list[str]]) -> None:
        await self._save(StorageKeys.FOLDER_SAMPLES, _SAMPLES, samples)

    async def load_checkpoint(self) -> Optional[FolderIndexCheckpoint]:
        raw = await self._backend.get(StorageKeys.FOLDER_CHECKPOINT)
        if raw is None:
            return None
        return self._validate(StorageKeys.FOLDER_CHECKPOINT, FolderIndexCheckpoint.model_validate, raw)

    async def save_checkpoint(self, checkpoint: FolderIndexCheckpoint) -> None:
        await self._backend.set(StorageKeys.FOLDER_CHECKPOINT, checkpoint.model_dump(mode="json"))

    async def clear_checkpoint(self) -> None:
        await self._backend.remove(StorageKeys.FOLDER_CHECKPOINT)

    async def load_index_time(self) -> Optional[datetime]:
        return await self._load(StorageKeys.FOLDER_INDEX_TIME, _TIMESTAMP, None)

    async def save_index_time(self, timestamp: datetime) -> None:
        await self._save(StorageKeys.FOLDER_INDEX_TIME, _TIMESTAMP, timestamp)

    # Source folder -----------------------------------------------------

    async def load_source_items(self) -> list[Item]:
        return await self._load(StorageKeys.SOURCE_ITEMS, _ITEMS, [])

    async def save_source_items(self, items: Iterable[Item]) -> None:
        await self._save(StorageKeys.SOURCE_ITEMS, _ITEMS, list(items))

    async def load_source_meta(self) -> Optional[SourceMeta]:
        raw = await self._backend.get(StorageKeys.SOURCE_META)
        if raw is None:
            return None
        return self._validate(StorageKeys.SOURCE_META, SourceMeta.model_validate, raw)

    async def save_source_meta(self, meta: SourceMeta) -> None:
        await self._backend.set(StorageKeys.SOURCE_META, meta.model_dump(mode="json"))

    async def clear_source(self) -> None:
        """Drop cached items, pagination cursor and all suggestions."""
        await self._backend.remove(list(StorageKeys.SOURCE))

    # Suggestions -------------------------------------------------------

    async def load_suggestions(self) -> SuggestionMap:
        return await self._load(StorageKeys.SUGGESTIONS, _SUGGESTIONS, {})

    async def save_suggestions(self, suggestions: SuggestionMap) -> None:
        await self._save(StorageKeys.SUGGESTIONS, _SUGGESTIONS, suggestions)

    # Operation log -----------------------------------------------------

    async def load_operation_log(self, limit: int | None = None) -> list[LogEntry]:
        entries = await self._load(StorageKeys.OPERATION_LOG, _LOG, [])
        return entries if limit is None else entries[: max(0, limit)]

    async def append_operation_log(self, entry: LogEntry) -> None:
        """Prepend ``entry``; only the newest 1000 entries are kept."""
        entries = await self.load_operation_log()
        entries.insert(0, entry)
        await self._save(StorageKeys.OPERATION_LOG, _LOG, entries[:OPERATION_LOG_LIMIT])

    # Bulk ---------------------------------------------------------------

    async def clear_all(self) -> None:
        """Remove every cached pipeline document; the operation log is kept."""
        LOGGER.info("Clearing all cached folder, source and suggestion state")
        await self._backend.remove(list(StorageKeys.ALL_CACHES))

    # Internal helpers -------------------------------------------------

    async def _load(self, key: str, adapter: TypeAdapter[_T], default: _T) -> _T:
        raw = await self._backend.get(key)
        if raw is None:
            return default
        return self._validate(key, adapter.validate_python, raw)

    async def _save(self, key: str, adapter: TypeAdapter[Any], value: Any) -> None:
        await self._backend.set(key, adapter.dump_python(value, mode="json"))

    @staticmethod
    def _validate(key: str, validator: Callable[[Any], _T], raw: Any) -> _T:
        try:
            return validator(raw)
        except PydanticValidationError as exc:
            raise CorruptStateError(f"Invalid stored data for {key}: {exc}") from exc


__all__ = [
    "CheckpointStore",
    "StorageKeys",
    "OPERATION_LOG_LIMIT",
    "KeyValueStore",
    "JsonFileStore",
    "MemoryStore",
    "Folder",
    "FolderIndexCheckpoint",
    "Item",
    "LogEntry",
    "OperationStatus",
    "SourceMeta",
    "Suggestion",
    "SuggestionMap",
    "StateError",
    "CorruptStateError",
]
