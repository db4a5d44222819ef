"""Shared map of suggestions built up across classification runs."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional

from bilisorter.state.models import Suggestion, SuggestionMap


class ClassificationAccumulator:
    """Monotonically growing map of item id to suggestions.

    A key present in the map means the item is already classified and is
    skipped by incremental runs. Entries only disappear through
    :meth:`invalidate` or :meth:`invalidate_all`. Every mutating method is
    synchronous, so concurrent batches on one event loop merge atomically.
    """

    def __init__(self, existing: Optional[Mapping[str, list[Suggestion]]] = None) -> None:
        self._entries: SuggestionMap = {key: list(value) for key, value in (existing or {}).items()}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, item_id: str) -> list[Suggestion]:
        return list(self._entries.get(item_id, []))

    def merge(self, results: Mapping[str, list[Suggestion]]) -> None:
        """Record ``results``, replacing entries for the same items."""
        for item_id, suggestions in results.items():
            self._entries[item_id] = list(suggestions)

    def pending(self, item_ids: Iterable[str]) -> list[str]:
        """Return the ids in ``item_ids`` that have no entry yet."""
        return [item_id for item_id in item_ids if item_id not in self._entries]

    def invalidate(self, item_id: str) -> bool:
        """Forget one item's suggestions; return whether an entry existed."""
        return self._entries.pop(item_id, None) is not None

    def invalidate_all(self) -> None:
        self._entries.clear()

    def snapshot(self) -> SuggestionMap:
        return {key: list(value) for key, value in self._entries.items()}


__all__ = ["ClassificationAccumulator"]
