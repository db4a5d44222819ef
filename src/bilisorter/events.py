"""Progress and terminal events streamed by the long-running pipelines."""

from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, List, Literal, Union

from pydantic import BaseModel, Field

from bilisorter.state.models import Folder, SuggestionMap


class PipelineEvent(BaseModel):
    """Base class for every streamed event; ``type`` names the wire message."""

    type: str

    def payload(self) -> dict:
        """Return a JSON-compatible representation of the event."""
        return self.model_dump(mode="json")


class FoldersReady(PipelineEvent):
    type: Literal["folders_ready"] = "folders_ready"
    folders: List[Folder]


class SamplingProgress(PipelineEvent):
    type: Literal["sampling_progress"] = "sampling_progress"
    sampled: int
    total: int
    current_folder: str


class IndexCompleted(PipelineEvent):
    type: Literal["index_complete"] = "index_complete"
    folders: List[Folder]
    timestamp: datetime


class IndexPaused(PipelineEvent):
    """Sampling stopped on a rate limit; the checkpoint allows resuming."""

    type: Literal["index_paused"] = "index_paused"
    sampled: int
    total: int
    reason: str


class IndexFailed(PipelineEvent):
    type: Literal["error"] = "error"
    error: str


class SuggestionProgress(PipelineEvent):
    type: Literal["suggestion_progress"] = "suggestion_progress"
    completed: int
    total: int


class SuggestionsCompleted(PipelineEvent):
    type: Literal["suggestions_complete"] = "suggestions_complete"
    suggestions: SuggestionMap = Field(default_factory=dict)
    failed_count: int = 0


class PipelineFailed(PipelineEvent):
    type: Literal["error"] = "error"
    error: str


IndexOutcome = Union[IndexCompleted, IndexPaused, IndexFailed]
EventSink = Callable[[PipelineEvent], Awaitable[None]]


async def discard(event: PipelineEvent) -> None:
    """Event sink that drops everything."""


__all__ = [
    "EventSink",
    "FoldersReady",
    "IndexCompleted",
    "IndexFailed",
    "IndexOutcome",
    "IndexPaused",
    "PipelineEvent",
    "PipelineFailed",
    "SamplingProgress",
    "SuggestionProgress",
    "SuggestionsCompleted",
    "discard",
]
