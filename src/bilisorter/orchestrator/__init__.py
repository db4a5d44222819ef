"""Session layer: status table, progress channels and the orchestrator."""

from .channel import CollectingChannel, ProgressChannel
from .session import OperationResult, Orchestrator
from .status import INDEXING, PIPELINES, SUGGESTING, StatusTable

__all__ = [
    "CollectingChannel",
    "INDEXING",
    "OperationResult",
    "Orchestrator",
    "PIPELINES",
    "ProgressChannel",
    "StatusTable",
    "SUGGESTING",
]
