"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from bilisorter.state import CheckpointStore, MemoryStore

from .fakes import SleepRecorder


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def store() -> CheckpointStore:
    return CheckpointStore(MemoryStore())
