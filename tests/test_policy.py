"""Tests for the failure decision table."""

from __future__ import annotations

import pytest

from bilisorter.errors import (
    MissingCredentialError,
    NotAuthenticatedError,
    ParseError,
    RateLimitedError,
    TransportError,
)
from bilisorter.policy import Action, Stage, decide


@pytest.mark.parametrize(
    ("error", "stage", "action"),
    [
        (RateLimitedError(), Stage.SAMPLING, Action.PAUSE),
        (RateLimitedError(), Stage.PAGING, Action.RETRY),
        (TransportError("boom"), Stage.SAMPLING, Action.SKIP),
        (TransportError("boom"), Stage.PAGING, Action.PAUSE),
        (TransportError("boom"), Stage.CLASSIFICATION, Action.RETRY),
        (ParseError("bad"), Stage.CLASSIFICATION, Action.SKIP),
        (MissingCredentialError("Gemini"), Stage.CLASSIFICATION, Action.FAIL),
        (NotAuthenticatedError(), Stage.SAMPLING, Action.FAIL),
        (RuntimeError("unexpected"), Stage.CLASSIFICATION, Action.RETRY),
        (RuntimeError("unexpected"), Stage.PAGING, Action.FAIL),
    ],
)
def test_decide_maps_error_and_stage(error: Exception, stage: Stage, action: Action) -> None:
    assert decide(error, stage).action is action


def test_retry_budget_is_bounded() -> None:
    decision = decide(TransportError("boom"), Stage.CLASSIFICATION, retries=2)

    assert decision.allows_retry(1)
    assert decision.allows_retry(2)
    assert not decision.allows_retry(3)
    assert not decide(ParseError("bad"), Stage.CLASSIFICATION).allows_retry(1)
