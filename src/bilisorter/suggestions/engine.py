"""Parallel, incremental AI classification of source items."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from bilisorter.config.models import BiliSorterConfig, LLMSettings
from bilisorter.errors import (
    MissingCredentialError,
    NoTargetFoldersError,
    NoValidItemsError,
    ParseError,
)
from bilisorter.policy import Stage, decide
from bilisorter.remote.providers import ClassificationProvider, build_provider
from bilisorter.state.models import Folder, Item, Suggestion, SuggestionMap

from .accumulator import ClassificationAccumulator
from .parser import parse_classifications
from .prompt import SYSTEM_PROMPT, build_prompt

LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Awaitable[None]]
ProviderFactory = Callable[[LLMSettings], ClassificationProvider]


@dataclass(slots=True)
class ClassificationOutcome:
    """Result of one classification run.

    Attributes:
        results: Existing suggestions merged with the ones produced by this run.
        failed_count: Items whose batch exhausted its retries.
    """

    results: SuggestionMap = field(default_factory=dict)
    failed_count: int = 0


class SuggestionEngine:
    """Classify items into target folders in concurrent batches."""

    def __init__(
        self,
        provider_factory: Optional[ProviderFactory] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the engine.

        Args:
            provider_factory: Builds the provider for the configured LLM
                settings; :func:`build_provider` is used when omitted.
            sleep: Coroutine used for retry backoff.
        """
        self._provider_factory = provider_factory
        self._sleep = sleep

    async def classify(
        self,
        items: Sequence[Item],
        folders: Sequence[Folder],
        source_folder_id: Optional[int],
        settings: BiliSorterConfig,
        on_progress: Optional[ProgressCallback] = None,
        existing: Optional[Mapping[str, list[Suggestion]]] = None,
    ) -> ClassificationOutcome:
        """Classify every valid item that has no suggestions yet.

        Args:
            items: Cached source items.
            folders: Indexed folders; the source folder is excluded as a target.
            source_folder_id: Folder the items currently live in.
            settings: Provider and batching configuration.
            on_progress: Awaited with ``(completed_batches, total_batches)``.
            existing: Suggestions from earlier runs; their items are skipped.

        Returns:
            ClassificationOutcome: Merged suggestions and the failed-item count.

        Raises:
            NoTargetFoldersError: If no folder other than the source exists.
            NoValidItemsError: If every item is flagged invalid.
            MissingCredentialError: If the configured provider has no API key.
        """
        valid = [item for item in items if item.is_valid]
        targets = [folder for folder in folders if folder.id != source_folder_id]
        if not targets:
            raise NoTargetFoldersError()
        if not valid:
            raise NoValidItemsError()
        if not settings.llm.active_api_key:
            raise MissingCredentialError(settings.llm.provider_label)

        accumulator = ClassificationAccumulator(existing)
        pending = set(accumulator.pending(item.external_id for item in valid))
        to_process = [item for item in valid if item.external_id in pending]
        if not to_process:
            LOGGER.info("All items already have suggestions; nothing to do")
            return ClassificationOutcome(results=accumulator.snapshot(), failed_count=0)

        if self._provider_factory is not None:
            provider = self._provider_factory(settings.llm)
        else:
            provider = build_provider(settings.llm, settings.http)

        options = settings.suggest
        batches = [
            to_process[start : start + options.batch_size]
            for start in range(0, len(to_process), options.batch_size)
        ]
        LOGGER.info(
            "Classifying %d items in %d batches via %s/%s (%d already done)",
            len(to_process),
            len(batches),
            settings.llm.provider,
            settings.llm.active_model,
            len(valid) - len(to_process),
        )

        progress = _BatchProgress(total=len(batches), callback=on_progress)

        async def run_batch(index: int, batch: list[Item]) -> None:
            results = await self._classify_batch(index, batch, targets, provider, settings)
            if results is None:
                progress.failed += len(batch)
            else:
                accumulator.merge(results)
            progress.completed += 1
            await progress.report()

        await asyncio.gather(*(run_batch(index, batch) for index, batch in enumerate(batches)))
        return ClassificationOutcome(results=accumulator.snapshot(), failed_count=progress.failed)

    async def _classify_batch(
        self,
        index: int,
        batch: list[Item],
        targets: list[Folder],
        provider: ClassificationProvider,
        settings: BiliSorterConfig,
    ) -> Optional[SuggestionMap]:
        """Return the batch's suggestions, or ``None`` once retries are exhausted."""
        options = settings.suggest
        prompt = build_prompt(batch, targets, options)
        attempt = 0
        while True:
            try:
                text = await provider.complete(prompt, SYSTEM_PROMPT)
                break
            except Exception as exc:
                attempt += 1
                LOGGER.error("Batch %d attempt %d failed: %s", index + 1, attempt, exc)
                decision = decide(exc, Stage.CLASSIFICATION, retries=options.max_retries)
                if not decision.allows_retry(attempt):
                    return None
                backoff = options.backoff_seconds * attempt
                LOGGER.info("Retrying batch %d in %.1fs", index + 1, backoff)
                await self._sleep(backoff)

        try:
            parsed = parse_classifications(text, max_suggestions=options.max_suggestions)
        except ParseError as exc:
            LOGGER.error("Failed to parse batch %d response: %s", index + 1, exc)
            LOGGER.debug("Raw response: %s", text[:500])
            return {}
        batch_ids = {item.external_id for item in batch}
        unknown = sorted(set(parsed) - batch_ids)
        if unknown:
            LOGGER.warning("Batch %d response named unknown items: %s", index + 1, ", ".join(unknown))
        return {key: value for key, value in parsed.items() if key in batch_ids}


@dataclass(slots=True)
class _BatchProgress:
    total: int
    callback: Optional[ProgressCallback] = None
    completed: int = 0
    failed: int = 0

    async def report(self) -> None:
        if self.callback is not None:
            await self.callback(self.completed, self.total)


__all__ = ["ClassificationOutcome", "ProgressCallback", "SuggestionEngine"]
