"""Failure decision table applied at every unit of pipeline work."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .errors import (
    AuthError,
    OperationInProgressError,
    ParseError,
    RateLimitedError,
    TransportError,
    ValidationError,
)


class Stage(str, Enum):
    """Unit of work the failure happened in."""

    SAMPLING = "sampling"
    PAGING = "paging"
    CLASSIFICATION = "classification"


class Action(str, Enum):
    """What the pipeline does with a failed unit of work.

    ``PAUSE`` stops the run and persists a resumable position, ``SKIP`` drops
    the unit and continues, ``FAIL`` aborts the invocation and ``RETRY``
    repeats the unit up to ``Decision.retries`` more times.
    """

    PAUSE = "pause"
    SKIP = "skip"
    FAIL = "fail"
    RETRY = "retry"


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of :func:`decide`.

    Attributes:
        action: Action to apply.
        retries: Retry budget when ``action`` is ``RETRY``.
    """

    action: Action
    retries: int = 0

    def allows_retry(self, attempt: int) -> bool:
        """Return whether a retry is permitted after ``attempt`` failures."""
        return self.action is Action.RETRY and attempt <= self.retries


def decide(error: BaseException, stage: Stage, *, retries: int = 1) -> Decision:
    """Classify ``error`` raised while processing a unit of ``stage``.

    Args:
        error: Exception raised by the unit of work.
        stage: Pipeline stage the unit belongs to.
        retries: Retry budget for retry-worthy failures at this stage.

    Returns:
        Decision: Action to apply, with its retry budget.
    """
    if isinstance(error, (AuthError, ValidationError, OperationInProgressError)):
        return Decision(Action.FAIL)

    if isinstance(error, ParseError):
        return Decision(Action.SKIP)

    if isinstance(error, RateLimitedError):
        if stage is Stage.SAMPLING:
            return Decision(Action.PAUSE)
        return Decision(Action.RETRY, retries)

    if isinstance(error, TransportError):
        if stage is Stage.SAMPLING:
            return Decision(Action.SKIP)
        if stage is Stage.PAGING:
            return Decision(Action.PAUSE)
        return Decision(Action.RETRY, retries)

    if stage is Stage.CLASSIFICATION:
        return Decision(Action.RETRY, retries)
    if stage is Stage.SAMPLING:
        return Decision(Action.SKIP)
    return Decision(Action.FAIL)


__all__ = ["Action", "Decision", "Stage", "decide"]
