"""State data models persisted by the pipelines."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Folder(BaseModel):
    """A remote favourites folder.

    Attributes:
        id: Remote folder identity.
        name: Folder title.
        item_count: Number of items the folder holds upstream.
        sample_titles: Up to ten randomly sampled item titles.
    """

    id: int
    name: str
    item_count: int = 0
    sample_titles: List[str] = Field(default_factory=list)


class FolderIndexCheckpoint(BaseModel):
    """Durable record of which folders have already been sampled.

    Attributes:
        owner_id: Identity the checkpoint belongs to.
        folders_sampled: Ids of sampled folders, in sampling order.
        total_folders: Folder count when the run started.
        timestamp: Checkpoint creation time.
    """

    owner_id: str
    folders_sampled: List[int] = Field(default_factory=list)
    total_folders: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)

    def mark_sampled(self, folder_id: int) -> None:
        """Record ``folder_id`` as sampled; repeated ids are ignored."""
        if folder_id not in self.folders_sampled:
            self.folders_sampled.append(folder_id)


class SourceMeta(BaseModel):
    """Pagination cursor for the selected source folder."""

    folder_id: int
    total: int = 0
    next_page: int = 1
    has_more: bool = False
    last_fetch_time: datetime = Field(default_factory=_utcnow)


class Item(BaseModel):
    """A favourited video.

    ``tags`` is never populated by the fetch pipeline; it stays empty.
    """

    external_id: str
    title: str
    cover_url: str = ""
    owner_name: str = ""
    play_count: int = 0
    favorited_at: Optional[datetime] = None
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    validity_flag: int = 0

    @property
    def is_valid(self) -> bool:
        return self.validity_flag == 0


class Suggestion(BaseModel):
    """A candidate destination folder for one item."""

    target_folder_id: int
    target_folder_name: str
    confidence: float = Field(ge=0.0, le=1.0)


class LogEntry(BaseModel):
    """One applied move, kept in the operation log."""

    timestamp: datetime = Field(default_factory=_utcnow)
    item_title: str
    item_id: str
    from_folder_name: str
    to_folder_name: str


class OperationStatus(BaseModel):
    """Transient status of one pipeline; never persisted."""

    in_progress: bool = False
    progress_text: Optional[str] = None
    last_error: Optional[str] = None


SuggestionMap = Dict[str, List[Suggestion]]


__all__ = [
    "Folder",
    "FolderIndexCheckpoint",
    "SourceMeta",
    "Item",
    "Suggestion",
    "SuggestionMap",
    "LogEntry",
    "OperationStatus",
]
