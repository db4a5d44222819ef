"""Tests for the pipeline commands of the CLI."""

import os
from pathlib import Path
from typing import Any

import pytest
from click.testing import CliRunner

from bilisorter.cli import cli
from bilisorter.config import BiliSorterConfig
from bilisorter.orchestrator import Orchestrator
from bilisorter.state import CheckpointStore, MemoryStore
from bilisorter.suggestions import SuggestionEngine

from .fakes import FakeCollectionAPI, ScriptedProvider, SleepRecorder, classify_all


def _env_with_home(tmp_path: Path, **extra: str) -> dict[str, Any]:
    env = {key: value for key, value in os.environ.items() if not key.startswith("BILISORTER__")}
    env["HOME"] = str(tmp_path)
    env.update(extra)
    return env


def _use_fake_api(monkeypatch: pytest.MonkeyPatch, api: FakeCollectionAPI) -> CheckpointStore:
    store = CheckpointStore(MemoryStore())

    def build(config: BiliSorterConfig) -> Orchestrator:
        sleeper = SleepRecorder()
        engine = SuggestionEngine(lambda settings: ScriptedProvider(classify_all()), sleep=sleeper)
        return Orchestrator(config, store, client=api.client(sleeper), engine=engine, sleep=sleeper)

    monkeypatch.setattr("bilisorter.cli._build_orchestrator", build)
    return store


def test_cli_help_displays_commands() -> None:
    runner = CliRunner()
    result = runner.invoke(cli, ["--help"])

    assert result.exit_code == 0
    assert "BiliSorter sorts favourited videos" in result.output
    for command in ("index", "fetch", "suggest", "move", "config"):
        assert command in result.output


def test_auth_without_credentials_reports_logged_out(tmp_path: Path) -> None:
    runner = CliRunner()

    result = runner.invoke(cli, ["auth"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert "Not logged in" in result.output


def test_status_and_log_on_empty_state(tmp_path: Path) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path)

    status = runner.invoke(cli, ["status"], env=env)
    log = runner.invoke(cli, ["log"], env=env)

    assert status.exit_code == 0
    assert "Last full index: never" in status.output
    assert "Classified items: 0" in status.output
    assert log.exit_code == 0
    assert "No moves recorded yet." in log.output


def test_index_fetch_and_suggest_flow(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = CliRunner()
    env = _env_with_home(tmp_path, BILISORTER__LLM__GEMINI_API_KEY="key")
    api = FakeCollectionAPI(folders=[(1, "Inbox", 3), (2, "Music", 2)])
    store = _use_fake_api(monkeypatch, api)

    indexed = runner.invoke(cli, ["index"], env=env)
    fetched = runner.invoke(cli, ["fetch", "1"], env=env)
    suggested = runner.invoke(cli, ["suggest"], env=env)

    assert indexed.exit_code == 0
    assert "Indexed 2 folders." in indexed.output
    assert fetched.exit_code == 0
    assert "3 items cached (total 3)" in fetched.output
    assert "all pages loaded" in fetched.output
    assert suggested.exit_code == 0
    assert "Suggestions ready for 3 items." in suggested.output
    assert store.backend.snapshot()


def test_index_json_emits_events(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = CliRunner()
    _use_fake_api(monkeypatch, FakeCollectionAPI(folders=[(1, "Inbox", 3)]))

    result = runner.invoke(cli, ["index", "--json"], env=_env_with_home(tmp_path))

    assert result.exit_code == 0
    assert '"folders_ready"' in result.output
    assert '"index_complete"' in result.output


def test_suggest_without_source_items_exits_non_zero(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = CliRunner()
    _use_fake_api(monkeypatch, FakeCollectionAPI())

    result = runner.invoke(cli, ["suggest"], env=_env_with_home(tmp_path))

    assert result.exit_code == 1
    assert "No source items" in result.output


def test_failed_move_reports_json_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = CliRunner()
    _use_fake_api(monkeypatch, FakeCollectionAPI(move_code=-403))

    result = runner.invoke(cli, ["move", "1", "2", "BV1", "--json"], env=_env_with_home(tmp_path))

    assert result.exit_code == 1
    assert '"move_error"' in result.output
    assert "move rejected" in result.output


def test_clear_requires_confirmation(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    runner = CliRunner()
    _use_fake_api(monkeypatch, FakeCollectionAPI())

    aborted = runner.invoke(cli, ["clear"], input="n\n", env=_env_with_home(tmp_path))
    cleared = runner.invoke(cli, ["clear", "--yes"], env=_env_with_home(tmp_path))

    assert aborted.exit_code == 1
    assert cleared.exit_code == 0
    assert "Cleared all caches" in cleared.output
