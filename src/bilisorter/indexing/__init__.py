"""Folder indexing pipeline."""

from .indexer import RATE_LIMIT_PAUSE_REASON, FolderIndexer

__all__ = ["FolderIndexer", "RATE_LIMIT_PAUSE_REASON"]
