"""Checkpointed, resumable folder sampling."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from bilisorter.config.models import SamplingOptions
from bilisorter.errors import BiliSorterError, OperationInProgressError
from bilisorter.events import (
    EventSink,
    FoldersReady,
    IndexCompleted,
    IndexFailed,
    IndexOutcome,
    IndexPaused,
    SamplingProgress,
    discard,
)
from bilisorter.policy import Action, Stage, decide
from bilisorter.remote.collection import CollectionClient
from bilisorter.state import CheckpointStore, Folder, FolderIndexCheckpoint

LOGGER = logging.getLogger(__name__)

RATE_LIMIT_PAUSE_REASON = "Rate limited by the collection API (HTTP 412); resume later."


class FolderIndexer:
    """Sample a few titles from every folder, resuming across interruptions.

    Progress is persisted after every folder: the sample cache first, then
    the checkpoint. A run interrupted at any point therefore resumes with the
    folders that are not yet in the checkpoint, and never samples a recorded
    folder twice.
    """

    def __init__(
        self,
        client: CollectionClient,
        store: CheckpointStore,
        options: Optional[SamplingOptions] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the indexer.

        Args:
            client: Collection API client.
            store: Checkpoint persistence.
            options: Sampling settings; defaults apply when omitted.
            sleep: Coroutine used for the delay between folders.
        """
        self._client = client
        self._store = store
        self._options = options or SamplingOptions()
        self._sleep = sleep
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, sink: EventSink = discard) -> IndexOutcome:
        """Index every folder, streaming progress to ``sink``.

        Returns:
            IndexOutcome: Completed, paused (resumable) or failed outcome.

        Raises:
            OperationInProgressError: If a run is already in flight.
        """
        if self._running:
            raise OperationInProgressError("indexing")
        self._running = True
        try:
            return await self._run(sink)
        finally:
            self._running = False

    async def _run(self, sink: EventSink) -> IndexOutcome:
        try:
            owner_id = await self._client.resolve_owner()
            folders = await self._client.fetch_folders(owner_id)
        except BiliSorterError as exc:
            LOGGER.error("Folder index failed: %s", exc)
            return IndexFailed(error=str(exc))
        LOGGER.info("Fetched %d folders", len(folders))

        checkpoint = await self._store.load_checkpoint()
        if checkpoint is None or checkpoint.owner_id != owner_id:
            if checkpoint is not None:
                LOGGER.info("Discarding checkpoint recorded for another account")
            checkpoint = FolderIndexCheckpoint(owner_id=owner_id, total_folders=len(folders))
            await self._store.save_checkpoint(checkpoint)

        samples = await self._store.load_samples()
        for folder in folders:
            cached = samples.get(str(folder.id))
            if cached:
                folder.sample_titles = list(cached)

        already_sampled = set(checkpoint.folders_sampled)
        remaining = [
            folder
            for folder in folders
            if folder.item_count > 0 and folder.id not in already_sampled
        ]
        LOGGER.info(
            "Sampling %d remaining folders (%d already cached)",
            len(remaining),
            len(already_sampled),
        )

        await sink(FoldersReady(folders=[folder.model_copy(deep=True) for folder in folders]))

        for position, folder in enumerate(remaining):
            await sink(
                SamplingProgress(
                    sampled=len(already_sampled) + position + 1,
                    total=len(folders),
                    current_folder=folder.name,
                )
            )
            try:
                paused = await self._sample(folder, samples, checkpoint)
            except BiliSorterError as exc:
                LOGGER.error("Folder index failed at folder %s: %s", folder.id, exc)
                return IndexFailed(error=str(exc))
            if paused:
                await self._store.save_samples(samples)
                await self._store.save_checkpoint(checkpoint)
                await self._store.save_folders(folders)
                return IndexPaused(
                    sampled=len(already_sampled) + position,
                    total=len(folders),
                    reason=RATE_LIMIT_PAUSE_REASON,
                )

            if position < len(remaining) - 1:
                await self._sleep(self._options.delay_seconds)

        timestamp = datetime.now(timezone.utc)
        await self._store.save_folders(folders)
        await self._store.save_index_time(timestamp)
        await self._store.clear_checkpoint()
        LOGGER.info("Folder index complete: %d folders", len(folders))
        return IndexCompleted(folders=[folder.model_copy(deep=True) for folder in folders], timestamp=timestamp)

    async def _sample(
        self,
        folder: Folder,
        samples: dict[str, list[str]],
        checkpoint: FolderIndexCheckpoint,
    ) -> bool:
        """Sample one folder; return ``True`` when the run must pause."""
        try:
            titles = await self._client.fetch_folder_sample(
                folder,
                page_size=self._options.page_size,
                max_titles=self._options.max_titles,
            )
        except BiliSorterError as exc:
            action = decide(exc, Stage.SAMPLING).action
            if action is Action.PAUSE:
                LOGGER.warning("Rate limited while sampling folder %s", folder.id)
                return True
            if action is Action.FAIL:
                raise
            LOGGER.warning("Sampling folder %s failed, skipping: %s", folder.id, exc)
            folder.sample_titles = []
            return False

        folder.sample_titles = titles
        samples[str(folder.id)] = titles
        checkpoint.mark_sampled(folder.id)
        await self._store.save_samples(samples)
        await self._store.save_checkpoint(checkpoint)
        return False


__all__ = ["FolderIndexer", "RATE_LIMIT_PAUSE_REASON"]
