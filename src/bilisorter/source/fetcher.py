"""Windowed, resumable fetching of the source folder's items."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from bilisorter.config.models import SourceOptions
from bilisorter.errors import NotAuthenticatedError, NothingToLoadError, RateLimitedError
from bilisorter.remote.collection import CollectionClient, ItemWindow
from bilisorter.state import CheckpointStore, Item, SourceMeta

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class FetchResult:
    """Outcome of a window fetch.

    Attributes:
        items: Every cached source item after the fetch.
        meta: Persisted pagination cursor.
        rate_limited: Whether the window stopped on a persistent rate limit.
    """

    items: list[Item] = field(default_factory=list)
    meta: Optional[SourceMeta] = None
    rate_limited: bool = False


class SourceFetcher:
    """Fetch the source folder a bounded window of pages at a time."""

    def __init__(
        self,
        client: CollectionClient,
        store: CheckpointStore,
        options: Optional[SourceOptions] = None,
    ) -> None:
        self._client = client
        self._store = store
        self._options = options or SourceOptions()

    async def fetch_window(self, folder_id: int) -> FetchResult:
        """Fetch the first window of ``folder_id``, replacing cached items."""
        self._require_login()
        LOGGER.info("Fetching source items from folder %s", folder_id)
        window, rate_limited = await self._window(folder_id, start_page=1)
        meta = SourceMeta(
            folder_id=folder_id,
            total=window.total,
            next_page=window.next_page,
            has_more=window.has_more,
        )
        await self._store.save_source_items(window.items)
        await self._store.save_source_meta(meta)
        LOGGER.info("Fetched %d source items, total %d", len(window.items), window.total)
        return FetchResult(items=window.items, meta=meta, rate_limited=rate_limited)

    async def load_more(self) -> FetchResult:
        """Fetch the next window and append it to the cached items.

        Raises:
            NothingToLoadError: If nothing was fetched yet or the folder is exhausted.
        """
        self._require_login()
        meta = await self._store.load_source_meta()
        if meta is None or not meta.has_more:
            raise NothingToLoadError()

        existing = await self._store.load_source_items()
        LOGGER.info("Loading more source items from page %d", meta.next_page)
        window, rate_limited = await self._window(meta.folder_id, start_page=meta.next_page)
        items = existing + window.items
        updated = SourceMeta(
            folder_id=meta.folder_id,
            total=window.total or meta.total,
            next_page=window.next_page,
            has_more=window.has_more,
        )
        await self._store.save_source_items(items)
        await self._store.save_source_meta(updated)
        LOGGER.info("Loaded %d more items, %d cached", len(window.items), len(items))
        return FetchResult(items=items, meta=updated, rate_limited=rate_limited)

    async def refresh(self, folder_id: int) -> FetchResult:
        """Drop cached items, cursor and suggestions, then fetch the first window."""
        await self._store.clear_source()
        return await self.fetch_window(folder_id)

    async def _window(self, folder_id: int, *, start_page: int) -> tuple[ItemWindow, bool]:
        options = self._options
        try:
            window = await self._client.fetch_items_window(
                folder_id,
                start_page=start_page,
                max_pages=options.pages_per_load,
                page_size=options.page_size,
                page_delay=options.page_delay_seconds,
                retry_delay=options.retry_delay_seconds,
            )
        except RateLimitedError as exc:
            partial = exc.partial or ItemWindow(next_page=start_page)
            LOGGER.warning(
                "Rate limited at page %d of folder %s; keeping %d items",
                partial.next_page,
                folder_id,
                len(partial.items),
            )
            partial.has_more = True
            return partial, True
        return window, False

    def _require_login(self) -> None:
        if self._client.credentials is None:
            raise NotAuthenticatedError()


__all__ = ["FetchResult", "SourceFetcher"]
