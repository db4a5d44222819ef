"""Source folder fetching pipeline."""

from .fetcher import FetchResult, SourceFetcher

__all__ = ["FetchResult", "SourceFetcher"]
