"""Session layer wiring the pipelines to clients, state and progress channels."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Sequence

from pydantic import BaseModel, Field

from bilisorter.config.models import BiliSorterConfig
from bilisorter.errors import BiliSorterError, NoSourceItemsError, OperationInProgressError, ValidationError
from bilisorter.events import (
    IndexCompleted,
    IndexFailed,
    IndexOutcome,
    IndexPaused,
    PipelineEvent,
    PipelineFailed,
    SamplingProgress,
    SuggestionProgress,
    SuggestionsCompleted,
)
from bilisorter.indexing import FolderIndexer
from bilisorter.remote.collection import CollectionClient, Credentials
from bilisorter.source import FetchResult, SourceFetcher
from bilisorter.state import CheckpointStore, LogEntry, SuggestionMap
from bilisorter.suggestions import ClassificationAccumulator, SuggestionEngine

from .channel import ProgressChannel
from .status import INDEXING, SUGGESTING, StatusTable

LOGGER = logging.getLogger(__name__)


class OperationResult(BaseModel):
    """Outcome of a one-shot operation; failures are values, not exceptions."""

    success: bool
    error: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, **data: Any) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)


class Orchestrator:
    """Entry point for every request a client can make.

    One-shot operations return an :class:`OperationResult`. Streamed
    operations run as background tasks that report through a
    :class:`ProgressChannel`; a disconnected channel never stops them.
    """

    def __init__(
        self,
        config: BiliSorterConfig,
        store: CheckpointStore,
        *,
        client: Optional[CollectionClient] = None,
        engine: Optional[SuggestionEngine] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Resolved configuration.
            store: Checkpoint persistence shared by every pipeline.
            client: Collection client; built from ``config`` when omitted.
            engine: Suggestion engine; a default engine is used when omitted.
            sleep: Coroutine used for every pipeline delay.
        """
        self._config = config
        self._store = store
        self._client = client or CollectionClient(
            Credentials.from_settings(config.auth), http=config.http, sleep=sleep
        )
        self._indexer = FolderIndexer(self._client, store, config.sampling, sleep=sleep)
        self._fetcher = SourceFetcher(self._client, store, config.source)
        self._engine = engine or SuggestionEngine(sleep=sleep)
        self._status = StatusTable()
        self._tasks: set[asyncio.Task[Any]] = set()
        self._index_task: Optional[asyncio.Task[Any]] = None

    @property
    def status(self) -> StatusTable:
        return self._status

    @property
    def store(self) -> CheckpointStore:
        return self._store

    @property
    def index_task(self) -> Optional[asyncio.Task[Any]]:
        """Task of the most recently started indexing run."""
        return self._index_task

    async def aclose(self) -> None:
        await self._client.aclose()

    # One-shot operations ---------------------------------------------

    async def check_auth(self) -> OperationResult:
        auth = await self._client.check_auth()
        return OperationResult.ok(logged_in=auth.logged_in, owner_id=auth.owner_id, username=auth.username)

    async def get_index_status(self) -> OperationResult:
        async def run() -> OperationResult:
            folders = await self._store.load_folders()
            index_time = await self._store.load_index_time()
            checkpoint = await self._store.load_checkpoint()
            return OperationResult.ok(
                status=self._status.get(INDEXING).model_dump(mode="json"),
                folders=[folder.model_dump(mode="json") for folder in folders],
                index_time=index_time.isoformat() if index_time else None,
                checkpoint=checkpoint.model_dump(mode="json") if checkpoint else None,
            )

        return await self._one_shot("get_index_status", run())

    async def get_suggest_status(self) -> OperationResult:
        async def run() -> OperationResult:
            suggestions = await self._store.load_suggestions()
            return OperationResult.ok(
                status=self._status.get(SUGGESTING).model_dump(mode="json"),
                classified=len(suggestions),
            )

        return await self._one_shot("get_suggest_status", run())

    async def fetch_source(self, folder_id: int) -> OperationResult:
        return await self._one_shot("fetch_source", self._fetched(self._fetcher.fetch_window(folder_id)))

    async def refresh_source(self, folder_id: int) -> OperationResult:
        return await self._one_shot("refresh_source", self._fetched(self._fetcher.refresh(folder_id)))

    async def load_more(self) -> OperationResult:
        return await self._one_shot("load_more", self._fetched(self._fetcher.load_more()))

    async def force_reindex(self, channel: Optional[ProgressChannel] = None) -> OperationResult:
        """Clear every cached document, then start a fresh indexing run."""
        if self._status.get(INDEXING).in_progress:
            return OperationResult.failed(str(OperationInProgressError(INDEXING)))
        LOGGER.info("Force reindex: clearing all caches")
        await self._store.clear_all()
        self.start_index_folders(channel or ProgressChannel())
        return OperationResult.ok(started=True)

    async def clear_all(self) -> OperationResult:
        async def run() -> OperationResult:
            await self._store.clear_all()
            return OperationResult.ok()

        return await self._one_shot("clear_all", run())

    async def move_item(self, src_folder_id: int, dst_folder_id: int, item_id: str) -> OperationResult:
        """Move one item, then log it and drop it from the cached source state."""

        async def run() -> OperationResult:
            outcome = await self._client.move_item(src_folder_id, dst_folder_id, item_id)
            if not outcome.success:
                return OperationResult(success=False, error=outcome.error, data={"code": outcome.code})

            items = await self._store.load_source_items()
            folders = {folder.id: folder.name for folder in await self._store.load_folders()}
            title = next((item.title for item in items if item.external_id == item_id), item_id)
            await self._store.append_operation_log(
                LogEntry(
                    item_title=title,
                    item_id=item_id,
                    from_folder_name=folders.get(src_folder_id, str(src_folder_id)),
                    to_folder_name=folders.get(dst_folder_id, str(dst_folder_id)),
                )
            )
            await self._store.save_source_items(item for item in items if item.external_id != item_id)
            accumulator = ClassificationAccumulator(await self._store.load_suggestions())
            if accumulator.invalidate(item_id):
                await self._store.save_suggestions(accumulator.snapshot())
            LOGGER.info("Moved %s from folder %s to %s", item_id, src_folder_id, dst_folder_id)
            return OperationResult.ok()

        return await self._one_shot("move_item", run())

    async def reorder_folders(self, folder_ids: Sequence[int]) -> OperationResult:
        async def run() -> OperationResult:
            outcome = await self._client.sort_folders(folder_ids)
            if not outcome.success:
                return OperationResult(success=False, error=outcome.error, data={"code": outcome.code})
            folders = await self._store.load_folders()
            if folders:
                position = {folder_id: index for index, folder_id in enumerate(folder_ids)}
                folders.sort(key=lambda folder: position.get(folder.id, len(position)))
                await self._store.save_folders(folders)
            return OperationResult.ok()

        return await self._one_shot("reorder_folders", run())

    async def rename_folder(self, folder_id: int, title: str) -> OperationResult:
        async def run() -> OperationResult:
            new_title = title.strip()
            if not new_title:
                raise ValidationError("Folder title must not be empty.")
            outcome = await self._client.rename_folder(folder_id, new_title)
            if not outcome.success:
                return OperationResult(success=False, error=outcome.error, data={"code": outcome.code})
            folders = await self._store.load_folders()
            for folder in folders:
                if folder.id == folder_id:
                    folder.name = new_title
            await self._store.save_folders(folders)
            return OperationResult.ok()

        return await self._one_shot("rename_folder", run())

    async def operation_log(self, limit: Optional[int] = None) -> OperationResult:
        async def run() -> OperationResult:
            entries = await self._store.load_operation_log(limit)
            return OperationResult.ok(entries=[entry.model_dump(mode="json") for entry in entries])

        return await self._one_shot("operation_log", run())

    async def dispatch(self, request_type: str, **payload: Any) -> OperationResult:
        """Route a named one-shot request to its handler."""
        handlers: Dict[str, Callable[..., Awaitable[OperationResult]]] = {
            "check_auth": self.check_auth,
            "get_index_status": self.get_index_status,
            "get_suggest_status": self.get_suggest_status,
            "fetch_source": self.fetch_source,
            "refresh_source": self.refresh_source,
            "load_more": self.load_more,
            "force_reindex": self.force_reindex,
            "clear_all": self.clear_all,
            "move_item": self.move_item,
            "reorder_folders": self.reorder_folders,
            "rename_folder": self.rename_folder,
            "operation_log": self.operation_log,
        }
        handler = handlers.get(request_type)
        if handler is None:
            return OperationResult.failed(f"Unknown request type: {request_type}")
        try:
            inspect.signature(handler).bind(**payload)
        except TypeError as exc:
            return OperationResult.failed(f"Invalid payload for {request_type}: {exc}")
        return await handler(**payload)

    # Streamed operations ---------------------------------------------

    def start_index_folders(self, channel: ProgressChannel) -> asyncio.Task[Optional[IndexOutcome]]:
        """Start an indexing run in the background.

        The in-progress check happens before this method returns, so a second
        call made while a run is in flight gets a task that only reports the
        rejection on ``channel``.
        """
        try:
            self._status.begin(INDEXING, "Connecting...")
        except OperationInProgressError as exc:
            return self._spawn(self._reject(channel, exc))
        task = self._spawn(self._index_folders(channel))
        self._index_task = task
        return task

    def start_get_suggestions(self, channel: ProgressChannel) -> asyncio.Task[Optional[SuggestionsCompleted]]:
        """Start a classification run in the background."""
        try:
            self._status.begin(SUGGESTING, "Preparing classification...")
        except OperationInProgressError as exc:
            return self._spawn(self._reject(channel, exc))
        return self._spawn(self._get_suggestions(channel))

    async def _reject(self, channel: ProgressChannel, error: OperationInProgressError) -> None:
        LOGGER.warning("%s", error)
        await channel.emit(PipelineFailed(error=str(error)))

    async def _index_folders(self, channel: ProgressChannel) -> Optional[IndexOutcome]:
        async def sink(event: PipelineEvent) -> None:
            if isinstance(event, SamplingProgress):
                self._status.progress(
                    INDEXING, f"Sampling folder {event.sampled}/{event.total}: {event.current_folder}"
                )
            await channel.emit(event)

        outcome: IndexOutcome
        try:
            outcome = await self._indexer.run(sink)
        except Exception as exc:
            LOGGER.exception("Folder index crashed")
            outcome = IndexFailed(error=str(exc) or type(exc).__name__)

        if isinstance(outcome, IndexCompleted):
            self._status.finish(INDEXING)
        elif isinstance(outcome, IndexPaused):
            self._status.finish(INDEXING, text=f"Paused: sampled {outcome.sampled}/{outcome.total} folders")
        else:
            self._status.finish(INDEXING, error=outcome.error)
        await channel.emit(outcome)
        return outcome

    async def _get_suggestions(self, channel: ProgressChannel) -> Optional[SuggestionsCompleted]:
        async def on_progress(completed: int, total: int) -> None:
            self._status.progress(SUGGESTING, f"Classifying items... {completed}/{total}")
            await channel.emit(SuggestionProgress(completed=completed, total=total))

        try:
            items = await self._store.load_source_items()
            if not items:
                raise NoSourceItemsError()
            folders = await self._store.load_folders()
            meta = await self._store.load_source_meta()
            existing = await self._store.load_suggestions()
            source_folder_id = (
                (meta.folder_id if meta else None)
                or self._config.source_folder_id
                or (folders[0].id if folders else None)
            )
            outcome = await self._engine.classify(
                items, folders, source_folder_id, self._config, on_progress, existing
            )
            produced = {key: value for key, value in outcome.results.items() if key not in existing}
            results = await self._save_produced(produced)
        except Exception as exc:
            if isinstance(exc, BiliSorterError):
                LOGGER.error("Suggestion generation failed: %s", exc)
            else:
                LOGGER.exception("Suggestion generation crashed")
            error = str(exc) or type(exc).__name__
            self._status.finish(SUGGESTING, error=error)
            await channel.emit(PipelineFailed(error=error))
            return None

        text = f"{outcome.failed_count} items failed" if outcome.failed_count else None
        self._status.finish(SUGGESTING, text=text)
        event = SuggestionsCompleted(suggestions=results, failed_count=outcome.failed_count)
        await channel.emit(event)
        return event

    # Internal helpers -------------------------------------------------

    def _spawn(self, coroutine: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _save_produced(self, produced: SuggestionMap) -> SuggestionMap:
        """Merge this run's suggestions into the stored map and return the result.

        The stored map is re-read so refreshes, moves and resets made while
        the run was in flight are kept. Suggestions for items that are no
        longer cached are dropped.
        """
        cached = {item.external_id for item in await self._store.load_source_items()}
        accumulator = ClassificationAccumulator(await self._store.load_suggestions())
        accumulator.merge({key: value for key, value in produced.items() if key in cached})
        results = accumulator.snapshot()
        await self._store.save_suggestions(results)
        return results

    async def _fetched(self, pending: Awaitable[FetchResult]) -> OperationResult:
        result = await pending
        return OperationResult.ok(
            items=[item.model_dump(mode="json") for item in result.items],
            meta=result.meta.model_dump(mode="json") if result.meta else None,
            rate_limited=result.rate_limited,
        )

    async def _one_shot(self, name: str, operation: Awaitable[OperationResult]) -> OperationResult:
        try:
            return await operation
        except BiliSorterError as exc:
            LOGGER.error("%s failed: %s", name, exc)
            return OperationResult.failed(str(exc))


__all__ = ["OperationResult", "Orchestrator"]
