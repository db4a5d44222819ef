"""Command line interface for the BiliSorter project."""

from __future__ import annotations

import asyncio
import difflib
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.syntax import Syntax
from rich.table import Table

from bilisorter.config import BiliSorterConfig, ConfigError, ConfigManager, resolve_with_precedence
from bilisorter.events import (
    FoldersReady,
    IndexCompleted,
    IndexFailed,
    IndexPaused,
    PipelineEvent,
    PipelineFailed,
    SamplingProgress,
    SuggestionProgress,
    SuggestionsCompleted,
)
from bilisorter.logging_setup import configure_logging
from bilisorter.orchestrator import CollectingChannel, OperationResult, Orchestrator, ProgressChannel
from bilisorter.state import CheckpointStore

console = Console()

_T = TypeVar("_T")


class ConsoleChannel(ProgressChannel):
    """Render pipeline events on the terminal."""

    def __init__(self, output: Console, *, quiet: bool = False) -> None:
        super().__init__()
        self._console = output
        self._quiet = quiet

    async def send(self, event: PipelineEvent) -> None:
        if isinstance(event, (IndexFailed, PipelineFailed)):
            self._console.print(f"[red]Error: {event.error}[/red]")
            return
        if self._quiet:
            return
        if isinstance(event, FoldersReady):
            self._console.print(f"[cyan]Found {len(event.folders)} folders.[/cyan]")
        elif isinstance(event, SamplingProgress):
            self._console.print(f"Sampling folder {event.sampled}/{event.total}: {event.current_folder}")
        elif isinstance(event, IndexCompleted):
            self._console.print(f"[green]Indexed {len(event.folders)} folders.[/green]")
        elif isinstance(event, IndexPaused):
            self._console.print(
                f"[yellow]Paused after {event.sampled}/{event.total} folders: {event.reason}[/yellow]"
            )
        elif isinstance(event, SuggestionProgress):
            self._console.print(f"Classified batch {event.completed}/{event.total}")
        elif isinstance(event, SuggestionsCompleted):
            summary = f"[green]Suggestions ready for {len(event.suggestions)} items.[/green]"
            if event.failed_count:
                summary += f" [yellow]{event.failed_count} items failed.[/yellow]"
            self._console.print(summary)


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    raise click.ClickException(message) from original


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(f"Cannot assign into '{segment}': it is not a mapping in the config file.")
        node = existing
    node[path[-1]] = value


def _manager(ctx: click.Context) -> ConfigManager:
    return ConfigManager(config_path=ctx.obj.get("config_path"))


def _load_config(ctx: click.Context) -> BiliSorterConfig:
    """Load configuration and install logging for a pipeline command."""
    try:
        config = _manager(ctx).load()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    configure_logging(config, verbose=ctx.obj.get("verbose", False))
    return config


def _build_orchestrator(config: BiliSorterConfig) -> Orchestrator:
    store = CheckpointStore.at(Path(config.state.directory))
    return Orchestrator(config, store)


def _run(config: BiliSorterConfig, handler: Callable[[Orchestrator], Awaitable[_T]]) -> _T:
    """Run ``handler`` against a fresh orchestrator on a new event loop."""

    async def runner() -> _T:
        orchestrator = _build_orchestrator(config)
        try:
            return await handler(orchestrator)
        finally:
            await orchestrator.aclose()

    return asyncio.run(runner())


def _quiet_enabled(ctx: click.Context, quiet: bool, config: BiliSorterConfig) -> bool:
    explicit = ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE
    return quiet if explicit else config.cli.quiet_default


def _require_success(result: OperationResult, *, code: str, json_output: bool) -> None:
    if not result.success:
        _handle_cli_error(
            result.error or "Operation failed.",
            code=code,
            json_output=json_output,
            details=result.data or None,
        )


def _render_items(items: list[dict[str, Any]], meta: Optional[dict[str, Any]], rate_limited: bool) -> None:
    table = Table(title="Source items", show_lines=False)
    table.add_column("BVID", style="cyan", no_wrap=True)
    table.add_column("Title")
    table.add_column("Uploader")
    table.add_column("Valid", justify="center")
    for item in items:
        table.add_row(
            item["external_id"],
            item["title"],
            item["owner_name"],
            "yes" if item["validity_flag"] == 0 else "no",
        )
    console.print(table)
    if meta:
        more = "more pages available" if meta["has_more"] else "all pages loaded"
        console.print(
            f"[green]{len(items)} items cached (total {meta['total']}), next page {meta['next_page']}, {more}.[/green]"
        )
    if rate_limited:
        console.print("[yellow]Rate limited by the collection API; run `bilisorter more` later to resume.[/yellow]")


async def _stream(
    start: Callable[[ProgressChannel], "asyncio.Task[Any]"],
    channel: ProgressChannel,
) -> Any:
    return await start(channel)


def _finish_stream(outcome: Any, channel: ProgressChannel, *, json_output: bool) -> None:
    """Emit collected events in JSON mode and exit non-zero on failure."""
    failed = outcome is None or isinstance(outcome, IndexFailed)
    if json_output and isinstance(channel, CollectingChannel):
        console.print_json(data={"events": [event.payload() for event in channel.events]})
        if failed:
            raise SystemExit(1)
        return
    if failed:
        raise SystemExit(1)


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="bilisorter")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Use this configuration file instead of ~/.bilisorter/config.yaml.",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[Path], verbose: bool) -> None:
    """BiliSorter sorts favourited videos into folders with AI suggestions.

    Returns:
        None: This function is invoked for its side effects.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit the login state as JSON.")
@click.pass_context
def auth(ctx: click.Context, json_output: bool) -> None:
    """Check whether the configured session credential is logged in."""
    config = _load_config(ctx)
    result = _run(config, lambda orchestrator: orchestrator.check_auth())
    if json_output:
        console.print_json(data=result.data)
        return
    if result.data.get("logged_in"):
        console.print(
            f"[green]Logged in as {result.data.get('username')} (uid {result.data.get('owner_id')}).[/green]"
        )
    else:
        console.print("[yellow]Not logged in. Set auth.sessdata with `bilisorter config set`.[/yellow]")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit progress events as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def index(ctx: click.Context, json_output: bool, quiet: bool) -> None:
    """Sample every folder, resuming from the last checkpoint."""
    config = _load_config(ctx)
    channel = CollectingChannel() if json_output else ConsoleChannel(console, quiet=_quiet_enabled(ctx, quiet, config))
    outcome = _run(config, lambda orchestrator: _stream(orchestrator.start_index_folders, channel))
    _finish_stream(outcome, channel, json_output=json_output)


def _fetch_command(
    ctx: click.Context,
    json_output: bool,
    operation: Callable[[Orchestrator], Awaitable[OperationResult]],
) -> None:
    config = _load_config(ctx)
    result = _run(config, operation)
    _require_success(result, code="fetch_error", json_output=json_output)
    if json_output:
        console.print_json(data=result.data)
        return
    _render_items(result.data["items"], result.data.get("meta"), result.data.get("rate_limited", False))


@cli.command()
@click.argument("folder_id", type=int)
@click.option("--json", "json_output", is_flag=True, help="Emit fetched items as JSON.")
@click.pass_context
def fetch(ctx: click.Context, folder_id: int, json_output: bool) -> None:
    """Fetch the first pages of FOLDER_ID as the source folder."""
    _fetch_command(ctx, json_output, lambda orchestrator: orchestrator.fetch_source(folder_id))


@cli.command()
@click.argument("folder_id", type=int)
@click.option("--json", "json_output", is_flag=True, help="Emit fetched items as JSON.")
@click.pass_context
def refresh(ctx: click.Context, folder_id: int, json_output: bool) -> None:
    """Drop cached items and suggestions, then fetch FOLDER_ID again."""
    _fetch_command(ctx, json_output, lambda orchestrator: orchestrator.refresh_source(folder_id))


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit cached items as JSON.")
@click.pass_context
def more(ctx: click.Context, json_output: bool) -> None:
    """Fetch the next pages of the source folder."""
    _fetch_command(ctx, json_output, lambda orchestrator: orchestrator.load_more())


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit progress events as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def suggest(ctx: click.Context, json_output: bool, quiet: bool) -> None:
    """Classify cached source items that have no suggestions yet."""
    config = _load_config(ctx)
    quiet_enabled = _quiet_enabled(ctx, quiet, config)
    channel = CollectingChannel() if json_output else ConsoleChannel(console, quiet=quiet_enabled)
    outcome = _run(config, lambda orchestrator: _stream(orchestrator.start_get_suggestions, channel))
    _finish_stream(outcome, channel, json_output=json_output)
    if json_output or quiet_enabled or not isinstance(outcome, SuggestionsCompleted):
        return

    table = Table(title="Suggestions")
    table.add_column("BVID", style="cyan", no_wrap=True)
    table.add_column("Best folder")
    table.add_column("Confidence", justify="right")
    for item_id, suggestions in outcome.suggestions.items():
        if suggestions:
            best = suggestions[0]
            table.add_row(item_id, best.target_folder_name, f"{best.confidence:.2f}")
        else:
            table.add_row(item_id, "-", "-")
    console.print(table)


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit status information as JSON.")
@click.pass_context
def status(ctx: click.Context, json_output: bool) -> None:
    """Display the cached index, checkpoint and suggestion state."""
    config = _load_config(ctx)

    async def collect(orchestrator: Orchestrator) -> tuple[OperationResult, OperationResult]:
        return await orchestrator.get_index_status(), await orchestrator.get_suggest_status()

    index_result, suggest_result = _run(config, collect)
    _require_success(index_result, code="state_error", json_output=json_output)
    _require_success(suggest_result, code="state_error", json_output=json_output)

    if json_output:
        console.print_json(data={"index": index_result.data, "suggestions": suggest_result.data})
        return

    folders = index_result.data["folders"]
    table = Table(title="Folders")
    table.add_column("ID", justify="right")
    table.add_column("Name")
    table.add_column("Items", justify="right")
    table.add_column("Samples", justify="right")
    for folder in folders:
        table.add_row(str(folder["id"]), folder["name"], str(folder["item_count"]), str(len(folder["sample_titles"])))
    console.print(table)

    index_time = index_result.data.get("index_time") or "never"
    console.print(f"Last full index: {index_time}")
    checkpoint = index_result.data.get("checkpoint")
    if checkpoint:
        console.print(
            f"[yellow]Indexing checkpoint: {len(checkpoint['folders_sampled'])}/"
            f"{checkpoint['total_folders']} folders sampled.[/yellow]"
        )
    console.print(f"Classified items: {suggest_result.data.get('classified', 0)}")


@cli.command()
@click.argument("src_folder_id", type=int)
@click.argument("dst_folder_id", type=int)
@click.argument("item_id")
@click.option("--json", "json_output", is_flag=True, help="Emit the result as JSON.")
@click.pass_context
def move(ctx: click.Context, src_folder_id: int, dst_folder_id: int, item_id: str, json_output: bool) -> None:
    """Move ITEM_ID from SRC_FOLDER_ID to DST_FOLDER_ID."""
    config = _load_config(ctx)
    result = _run(config, lambda orchestrator: orchestrator.move_item(src_folder_id, dst_folder_id, item_id))
    _require_success(result, code="move_error", json_output=json_output)
    if json_output:
        console.print_json(data=result.model_dump(mode="json"))
        return
    console.print(f"[green]Moved {item_id} to folder {dst_folder_id}.[/green]")


@cli.command()
@click.argument("folder_ids", nargs=-1, required=True, type=int)
@click.option("--json", "json_output", is_flag=True, help="Emit the result as JSON.")
@click.pass_context
def reorder(ctx: click.Context, folder_ids: tuple[int, ...], json_output: bool) -> None:
    """Reorder folders to match FOLDER_IDS."""
    config = _load_config(ctx)
    result = _run(config, lambda orchestrator: orchestrator.reorder_folders(list(folder_ids)))
    _require_success(result, code="reorder_error", json_output=json_output)
    if json_output:
        console.print_json(data=result.model_dump(mode="json"))
        return
    console.print(f"[green]Reordered {len(folder_ids)} folders.[/green]")


@cli.command()
@click.argument("folder_id", type=int)
@click.argument("title")
@click.option("--json", "json_output", is_flag=True, help="Emit the result as JSON.")
@click.pass_context
def rename(ctx: click.Context, folder_id: int, title: str, json_output: bool) -> None:
    """Rename FOLDER_ID to TITLE."""
    config = _load_config(ctx)
    result = _run(config, lambda orchestrator: orchestrator.rename_folder(folder_id, title))
    _require_success(result, code="rename_error", json_output=json_output)
    if json_output:
        console.print_json(data=result.model_dump(mode="json"))
        return
    console.print(f"[green]Renamed folder {folder_id} to {title.strip()}.[/green]")


@cli.command()
@click.option("--json", "json_output", is_flag=True, help="Emit progress events as JSON.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.pass_context
def reindex(ctx: click.Context, json_output: bool, quiet: bool) -> None:
    """Clear every cache and index all folders from scratch."""
    config = _load_config(ctx)
    channel = CollectingChannel() if json_output else ConsoleChannel(console, quiet=_quiet_enabled(ctx, quiet, config))

    async def run(orchestrator: Orchestrator) -> Any:
        result = await orchestrator.force_reindex(channel)
        if not result.success or orchestrator.index_task is None:
            return result
        return await orchestrator.index_task

    outcome = _run(config, run)
    if isinstance(outcome, OperationResult):
        _require_success(outcome, code="reindex_error", json_output=json_output)
    _finish_stream(outcome, channel, json_output=json_output)


@cli.command()
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
@click.pass_context
def clear(ctx: click.Context, yes: bool) -> None:
    """Remove cached folders, samples, source items and suggestions."""
    if not yes:
        click.confirm("Clear all cached folder, source and suggestion data?", abort=True)
    config = _load_config(ctx)
    result = _run(config, lambda orchestrator: orchestrator.clear_all())
    _require_success(result, code="state_error", json_output=False)
    console.print("[green]Cleared all caches. The operation log was kept.[/green]")


@cli.command()
@click.option("--limit", type=int, help="Number of entries to show.")
@click.option("--json", "json_output", is_flag=True, help="Emit log entries as JSON.")
@click.pass_context
def log(ctx: click.Context, limit: Optional[int], json_output: bool) -> None:
    """Show the most recent moves, newest first."""
    config = _load_config(ctx)
    effective = limit if limit is not None else config.cli.log_history_limit
    result = _run(config, lambda orchestrator: orchestrator.operation_log(effective))
    _require_success(result, code="state_error", json_output=json_output)
    entries = result.data["entries"]
    if json_output:
        console.print_json(data={"entries": entries})
        return
    if not entries:
        console.print("[yellow]No moves recorded yet.[/yellow]")
        return
    for entry in entries:
        console.print(
            f"[{entry['timestamp']}] {entry['item_title']} ({entry['item_id']}): "
            f"{entry['from_folder_name']} -> {entry['to_folder_name']}"
        )


@cli.group()
def config() -> None:
    """Manage BiliSorter configuration files and overrides.

    Returns:
        None: This function is invoked for its side effects.
    """


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.pass_context
def config_view(ctx: click.Context, no_env: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Args:
        ctx: Click context carrying the configuration path.
        no_env: If True, ignore environment-derived overrides.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = _manager(ctx)
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    yaml_text = yaml.safe_dump(loaded.model_dump(mode="python"), sort_keys=False, allow_unicode=True)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        ctx: Click context carrying the configuration path.
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = _manager(ctx)
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'llm.provider'.")

    try:
        parsed_value = yaml.safe_load(value)
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Unable to parse value: {exc}") from exc
    if segments[0] == "auth" and parsed_value is not None:
        parsed_value = value

    file_data = manager.load_file_overrides()
    try:
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=BiliSorterConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    # The header timestamp always changes; compare the settings only.
    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if "# Last updated:" not in line
    ]
    changed = [line for line in diff if line[:1] in "+-" and not line.startswith(("+++", "---"))]
    if not changed:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


@config.command("edit")
@click.pass_context
def config_edit(ctx: click.Context) -> None:
    """Open the configuration file in an interactive editor session.

    Raises:
        click.ClickException: If edited content is invalid or cannot be saved.
    """
    manager = _manager(ctx)
    manager.ensure_exists()

    original = manager.read_text()
    edited = click.edit(original, extension=".yaml")

    if edited is None:
        console.print("[yellow]Edit cancelled; no changes applied.[/yellow]")
        return

    if edited == original:
        console.print("[yellow]No changes detected.[/yellow]")
        return

    try:
        parsed = yaml.safe_load(edited) or {}
    except yaml.YAMLError as exc:
        raise click.ClickException(f"Invalid YAML: {exc}") from exc

    if not isinstance(parsed, dict):
        raise click.ClickException("Configuration file must contain a top-level mapping.")

    try:
        resolve_with_precedence(defaults=BiliSorterConfig(), file_overrides=parsed)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(parsed)
    console.print("[green]Configuration updated successfully.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli(obj={})


if __name__ == "__main__":
    main()
