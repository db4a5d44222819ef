"""Tests for the session orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from bilisorter.config.models import BiliSorterConfig
from bilisorter.events import FoldersReady, IndexCompleted, PipelineEvent
from bilisorter.orchestrator import INDEXING, SUGGESTING, CollectingChannel, Orchestrator, ProgressChannel, StatusTable
from bilisorter.errors import OperationInProgressError
from bilisorter.state import CheckpointStore, Folder, Item, LogEntry, SourceMeta, Suggestion
from bilisorter.suggestions import SuggestionEngine

from .fakes import FakeCollectionAPI, ScriptedProvider, SleepRecorder, classify_all

FOLDERS = [(1, "Inbox", 25), (2, "Music", 4), (3, "Games", 0)]


def _config() -> BiliSorterConfig:
    config = BiliSorterConfig()
    config.llm.gemini_api_key = "key"
    return config


def _orchestrator(
    api: FakeCollectionAPI,
    store: CheckpointStore,
    sleeper: SleepRecorder,
    provider: ScriptedProvider | None = None,
) -> Orchestrator:
    engine = SuggestionEngine(lambda settings: provider or ScriptedProvider(classify_all()), sleep=sleeper)
    return Orchestrator(_config(), store, client=api.client(sleeper), engine=engine, sleep=sleeper)


class BrokenChannel(ProgressChannel):
    def __init__(self) -> None:
        super().__init__()
        self.attempts = 0

    async def send(self, event: PipelineEvent) -> None:
        self.attempts += 1
        raise ConnectionResetError("client went away")


def test_status_table_rejects_concurrent_begin() -> None:
    table = StatusTable()
    table.begin(INDEXING, "Connecting...")

    with pytest.raises(OperationInProgressError):
        table.begin(INDEXING)

    table.progress(INDEXING, "Sampling 1/2")
    assert table.get(INDEXING).progress_text == "Sampling 1/2"
    table.finish(INDEXING, error="boom")
    status = table.get(INDEXING)
    assert not status.in_progress
    assert status.last_error == "boom"
    assert not table.get(SUGGESTING).in_progress


@pytest.mark.asyncio
async def test_indexing_streams_events_and_updates_status(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(folders=FOLDERS), store, sleeper)
    channel = CollectingChannel()

    task = orchestrator.start_index_folders(channel)
    assert orchestrator.index_task is task
    outcome = await task

    assert isinstance(outcome, IndexCompleted)
    assert channel.types() == ["folders_ready", "sampling_progress", "sampling_progress", "index_complete"]
    assert not orchestrator.status.get(INDEXING).in_progress
    result = await orchestrator.get_index_status()
    assert result.success
    assert [folder["id"] for folder in result.data["folders"]] == [1, 2, 3]
    assert result.data["checkpoint"] is None


@pytest.mark.asyncio
async def test_disconnected_channel_does_not_stop_pipeline(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(folders=FOLDERS), store, sleeper)
    channel = BrokenChannel()

    outcome = await orchestrator.start_index_folders(channel)

    assert isinstance(outcome, IndexCompleted)
    assert channel.closed
    assert channel.attempts == 1
    assert await store.load_index_time() is not None


@pytest.mark.asyncio
async def test_second_index_request_reports_in_progress(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(folders=FOLDERS), store, sleeper)
    first, second = CollectingChannel(), CollectingChannel()

    task_one = orchestrator.start_index_folders(first)
    task_two = orchestrator.start_index_folders(second)

    assert isinstance(await task_one, IndexCompleted)
    assert await task_two is None
    assert second.types() == ["error"]
    assert "already in progress" in second.events[0].error


@pytest.mark.asyncio
async def test_suggestions_persist_results(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI(folders=FOLDERS)
    orchestrator = _orchestrator(api, store, sleeper)
    await orchestrator.start_index_folders(CollectingChannel())
    await orchestrator.fetch_source(1)
    channel = CollectingChannel()

    completed = await orchestrator.start_get_suggestions(channel)

    assert completed is not None
    assert len(completed.suggestions) == 25
    assert channel.types()[-1] == "suggestions_complete"
    assert "suggestion_progress" in channel.types()
    assert set(await store.load_suggestions()) == set(completed.suggestions)
    status = await orchestrator.get_suggest_status()
    assert status.data["classified"] == 25


@pytest.mark.asyncio
async def test_suggestions_without_items_fail(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(folders=FOLDERS), store, sleeper)
    channel = CollectingChannel()

    result = await orchestrator.start_get_suggestions(channel)

    assert result is None
    assert channel.types() == ["error"]
    assert orchestrator.status.get(SUGGESTING).last_error == "No source items: fetch the source folder first."


@pytest.mark.asyncio
async def test_source_folder_falls_back_to_config_then_first_folder(
    store: CheckpointStore, sleeper: SleepRecorder
) -> None:
    provider = ScriptedProvider(classify_all(folder_id=3, folder_name="Games"))
    orchestrator = _orchestrator(FakeCollectionAPI(), store, sleeper, provider)
    await store.save_folders([Folder(id=1, name="Inbox"), Folder(id=2, name="Music"), Folder(id=3, name="Games")])
    await store.save_source_items([Item(external_id="BV1", title="Clip")])

    await orchestrator.start_get_suggestions(CollectingChannel())

    assert "Inbox (ID: 1" not in provider.prompts[0]
    assert "Music (ID: 2" in provider.prompts[0]


@pytest.mark.asyncio
async def test_move_item_logs_and_drops_cached_state(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI()
    orchestrator = _orchestrator(api, store, sleeper)
    await store.save_folders([Folder(id=1, name="Inbox"), Folder(id=2, name="Music")])
    await store.save_source_items([Item(external_id="BV1", title="Song"), Item(external_id="BV2", title="Other")])
    await store.save_suggestions(
        {
            "BV1": [Suggestion(target_folder_id=2, target_folder_name="Music", confidence=0.9)],
            "BV2": [Suggestion(target_folder_id=2, target_folder_name="Music", confidence=0.3)],
        }
    )

    result = await orchestrator.dispatch("move_item", src_folder_id=1, dst_folder_id=2, item_id="BV1")

    assert result.success
    assert [item.external_id for item in await store.load_source_items()] == ["BV2"]
    assert set(await store.load_suggestions()) == {"BV2"}
    log = await store.load_operation_log()
    assert [(entry.item_title, entry.from_folder_name, entry.to_folder_name) for entry in log] == [
        ("Song", "Inbox", "Music")
    ]


@pytest.mark.asyncio
async def test_failed_move_changes_nothing(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI(move_code=-403)
    orchestrator = _orchestrator(api, store, sleeper)
    await store.save_source_items([Item(external_id="BV1", title="Song")])

    result = await orchestrator.move_item(1, 2, "BV1")

    assert not result.success
    assert result.error == "move rejected"
    assert len(await store.load_source_items()) == 1
    assert await store.load_operation_log() == []


@pytest.mark.asyncio
async def test_reorder_and_rename_update_cached_folders(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(), store, sleeper)
    await store.save_folders([Folder(id=1, name="A"), Folder(id=2, name="B"), Folder(id=3, name="C")])

    reorder = await orchestrator.reorder_folders([3, 1, 2])
    rename = await orchestrator.rename_folder(1, "  Renamed  ")
    empty = await orchestrator.rename_folder(2, "   ")

    assert reorder.success and rename.success
    assert not empty.success
    folders = await store.load_folders()
    assert [(folder.id, folder.name) for folder in folders] == [(3, "C"), (1, "Renamed"), (2, "B")]


@pytest.mark.asyncio
async def test_force_reindex_clears_caches_and_restarts(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(folders=FOLDERS), store, sleeper)
    await store.save_source_items([Item(external_id="BV1", title="Song")])
    await store.save_source_meta(SourceMeta(folder_id=1))
    await store.append_operation_log(LogEntry(item_title="t", item_id="BV1", from_folder_name="a", to_folder_name="b"))
    channel = CollectingChannel()

    result = await orchestrator.force_reindex(channel)
    assert result.success
    assert orchestrator.index_task is not None
    await orchestrator.index_task

    assert await store.load_source_items() == []
    assert await store.load_source_meta() is None
    assert len(await store.load_folders()) == 3
    assert len(await store.load_operation_log()) == 1
    assert isinstance(channel.events[0], FoldersReady)


@pytest.mark.asyncio
async def test_one_shot_failures_are_returned(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(), store, sleeper)

    more = await orchestrator.load_more()
    unknown = await orchestrator.dispatch("launch_rockets")

    assert not more.success
    assert more.error == "No more items to load."
    assert not unknown.success
    assert "Unknown request type" in (unknown.error or "")


class GatedProvider(ScriptedProvider):
    """Provider that holds every response until ``release`` is set."""

    def __init__(self) -> None:
        super().__init__(classify_all())
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def complete(self, prompt: str, system: str) -> str:
        self.started.set()
        await self.release.wait()
        return await super().complete(prompt, system)


@pytest.mark.asyncio
async def test_refresh_during_suggestions_is_not_overwritten(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI(folders=FOLDERS)
    provider = GatedProvider()
    orchestrator = _orchestrator(api, store, sleeper, provider)
    await orchestrator.start_index_folders(CollectingChannel())
    await orchestrator.fetch_source(1)

    task = orchestrator.start_get_suggestions(CollectingChannel())
    await provider.started.wait()
    api.folders = [(1, "Inbox", 0), (2, "Music", 4), (3, "Games", 0)]
    refreshed = await orchestrator.refresh_source(1)
    provider.release.set()
    completed = await task

    assert refreshed.success
    assert refreshed.data["items"] == []
    assert completed is not None
    assert completed.suggestions == {}
    assert await store.load_suggestions() == {}


@pytest.mark.asyncio
async def test_dispatch_rejects_payload_not_matching_handler(store: CheckpointStore, sleeper: SleepRecorder) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(folders=FOLDERS), store, sleeper)

    result = await orchestrator.dispatch("fetch_source", folder=1)

    assert not result.success
    assert "Invalid payload for fetch_source" in (result.error or "")
    assert await store.load_source_items() == []


@pytest.mark.asyncio
async def test_dispatch_propagates_type_errors_raised_by_handlers(
    store: CheckpointStore, sleeper: SleepRecorder, monkeypatch: pytest.MonkeyPatch
) -> None:
    orchestrator = _orchestrator(FakeCollectionAPI(), store, sleeper)

    async def broken() -> None:
        raise TypeError("unsupported operand")

    monkeypatch.setattr(orchestrator, "clear_all", broken)

    with pytest.raises(TypeError, match="unsupported operand"):
        await orchestrator.dispatch("clear_all")
