"""State management errors."""

from bilisorter.errors import BiliSorterError


class StateError(BiliSorterError):
    """Base exception for durable store operations."""


class CorruptStateError(StateError):
    """Raised when a stored document cannot be decoded into its model."""
