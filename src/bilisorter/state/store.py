"""Durable key-value backends used by the checkpoint store."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Iterable, Protocol

from .errors import StateError

LOGGER = logging.getLogger(__name__)

ChangeListener = Callable[[str, Any], None]


class KeyValueStore(Protocol):
    """Whole-key read/replace store with change notifications."""

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, keys: str | Iterable[str]) -> None: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...


class _ListenerMixin:
    """Fan out change notifications; ``value`` is ``None`` for removals."""

    def __init__(self) -> None:
        self._listeners: list[ChangeListener] = []

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener`` and return a callable that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, key: str, value: Any) -> None:
        for listener in list(self._listeners):
            try:
                listener(key, value)
            except Exception:  # listeners are observers only
                LOGGER.exception("Store listener failed for key %s", key)


def _keys(keys: str | Iterable[str]) -> list[str]:
    return [keys] if isinstance(keys, str) else list(keys)


class MemoryStore(_ListenerMixin):
    """In-process store; values are deep-copied on the way in and out."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._data: dict[str, Any] = deepcopy(initial or {})

    async def get(self, key: str) -> Any | None:
        return deepcopy(self._data.get(key))

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = deepcopy(value)
        self._notify(key, value)

    async def remove(self, keys: str | Iterable[str]) -> None:
        for key in _keys(keys):
            if self._data.pop(key, None) is not None:
                self._notify(key, None)

    def snapshot(self) -> dict[str, Any]:
        """Return a copy of every stored document."""
        return deepcopy(self._data)


class JsonFileStore(_ListenerMixin):
    """Store keeping one JSON document per key inside ``directory``.

    Writes go to a temporary file that atomically replaces the previous
    document, so a crash leaves either the old or the new snapshot.
    """

    def __init__(self, directory: Path) -> None:
        super().__init__()
        self._directory = directory.expanduser()

    @property
    def directory(self) -> Path:
        return self._directory

    async def get(self, key: str) -> Any | None:
        path = self._path(key)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StateError(f"Invalid stored data for {key}: {exc}") from exc

    async def set(self, key: str, value: Any) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(value, ensure_ascii=False, indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self._path(key))
        except OSError as exc:
            Path(tmp_name).unlink(missing_ok=True)
            raise StateError(f"Could not write {key}: {exc}") from exc
        self._notify(key, value)

    async def remove(self, keys: str | Iterable[str]) -> None:
        for key in _keys(keys):
            path = self._path(key)
            if path.exists():
                path.unlink()
                self._notify(key, None)

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"


__all__ = ["ChangeListener", "KeyValueStore", "MemoryStore", "JsonFileStore"]
