"""Process-scoped status of the long-running pipelines."""

from __future__ import annotations

from typing import Optional

from bilisorter.errors import OperationInProgressError
from bilisorter.state.models import OperationStatus

INDEXING = "indexing"
SUGGESTING = "suggesting"
PIPELINES = (INDEXING, SUGGESTING)


class StatusTable:
    """One :class:`OperationStatus` per pipeline, kept in memory only."""

    def __init__(self) -> None:
        self._statuses = {name: OperationStatus() for name in PIPELINES}

    def get(self, name: str) -> OperationStatus:
        """Return a copy of the status of ``name``."""
        return self._statuses[name].model_copy()

    def begin(self, name: str, text: Optional[str] = None) -> None:
        """Mark ``name`` as running.

        Raises:
            OperationInProgressError: If ``name`` is already running.
        """
        if self._statuses[name].in_progress:
            raise OperationInProgressError(name)
        self._statuses[name] = OperationStatus(in_progress=True, progress_text=text)

    def progress(self, name: str, text: str) -> None:
        self._statuses[name].progress_text = text

    def finish(self, name: str, error: Optional[str] = None, text: Optional[str] = None) -> None:
        """Mark ``name`` as idle, recording ``error`` as its last error."""
        self._statuses[name] = OperationStatus(in_progress=False, progress_text=text, last_error=error)


__all__ = ["INDEXING", "PIPELINES", "SUGGESTING", "StatusTable"]
