"""Best-effort delivery of pipeline events to a client."""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from bilisorter.events import PipelineEvent

LOGGER = logging.getLogger(__name__)

SendCallback = Callable[[PipelineEvent], Union[Awaitable[None], None]]


class ProgressChannel:
    """Channel that never lets a disconnected client stop a pipeline.

    The first failed send marks the channel closed; every later event is
    dropped silently while the pipeline keeps running and persisting.
    Subclasses override :meth:`send`, or pass a callback instead.
    """

    def __init__(self, callback: Optional[SendCallback] = None) -> None:
        self._callback = callback
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    async def send(self, event: PipelineEvent) -> None:
        """Deliver ``event``; raising marks the channel disconnected."""
        if self._callback is None:
            return
        result: Any = self._callback(event)
        if inspect.isawaitable(result):
            await result

    async def emit(self, event: PipelineEvent) -> None:
        if self._closed:
            return
        try:
            await self.send(event)
        except Exception as exc:
            LOGGER.info("Progress channel disconnected (%s); continuing without it", exc)
            self._closed = True


class CollectingChannel(ProgressChannel):
    """Channel that keeps every delivered event in ``events``."""

    def __init__(self) -> None:
        super().__init__()
        self.events: list[PipelineEvent] = []

    async def send(self, event: PipelineEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [event.type for event in self.events]


__all__ = ["CollectingChannel", "ProgressChannel", "SendCallback"]
