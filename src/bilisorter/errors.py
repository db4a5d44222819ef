"""Error taxonomy shared by the BiliSorter pipelines.

Every error carries a short human-readable message; the orchestrator surfaces
``str(error)`` as the reason string for failed or paused runs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from bilisorter.remote.collection import ItemWindow


class BiliSorterError(Exception):
    """Base exception for BiliSorter operations."""


class AuthError(BiliSorterError):
    """Raised when the collection credentials are missing or rejected."""


class NotAuthenticatedError(AuthError):
    """Raised when no session credential is configured."""

    def __init__(self, message: str = "Not logged in: no session credential configured.") -> None:
        super().__init__(message)


class SessionExpiredError(AuthError):
    """Raised when the session credential no longer resolves to an owner."""

    def __init__(self, message: str = "Session expired: log in again and update the credential.") -> None:
        super().__init__(message)


class RateLimitedError(BiliSorterError):
    """Raised when the upstream API rejects a request with HTTP 412.

    Attributes:
        url: Request URL that was rejected.
        partial: Items fetched earlier in the same window, when raised from a
            paginated fetch.
    """

    def __init__(self, url: str = "", *, partial: Optional["ItemWindow"] = None) -> None:
        super().__init__(f"Rate limited (HTTP 412) - {url}" if url else "Rate limited (HTTP 412)")
        self.url = url
        self.partial = partial


class TransportError(BiliSorterError):
    """Raised for non-2xx, non-JSON or otherwise unusable responses."""


class ValidationError(BiliSorterError):
    """Raised when an invocation cannot start with the given inputs."""


class NoTargetFoldersError(ValidationError):
    """Raised when no folder other than the source folder exists."""

    def __init__(self, message: str = "No target folders available.") -> None:
        super().__init__(message)


class NoValidItemsError(ValidationError):
    """Raised when every candidate item is flagged invalid."""

    def __init__(self, message: str = "No valid items to classify.") -> None:
        super().__init__(message)


class NoSourceItemsError(ValidationError):
    """Raised when suggestions are requested before any item was fetched."""

    def __init__(self, message: str = "No source items: fetch the source folder first.") -> None:
        super().__init__(message)


class MissingCredentialError(ValidationError):
    """Raised when the configured classification provider has no API key."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"Configure the {provider} API key first (llm settings).")
        self.provider = provider


class ParseError(BiliSorterError):
    """Raised when a classification response is not well-formed."""


class OperationInProgressError(BiliSorterError):
    """Raised when a pipeline is started while another run is in flight."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"The {operation} operation is already in progress.")
        self.operation = operation


class NothingToLoadError(BiliSorterError):
    """Raised when ``load_more`` is called without further pages."""

    def __init__(self, message: str = "No more items to load.") -> None:
        super().__init__(message)


__all__ = [
    "BiliSorterError",
    "AuthError",
    "NotAuthenticatedError",
    "SessionExpiredError",
    "RateLimitedError",
    "TransportError",
    "ValidationError",
    "NoTargetFoldersError",
    "NoValidItemsError",
    "NoSourceItemsError",
    "MissingCredentialError",
    "ParseError",
    "OperationInProgressError",
    "NothingToLoadError",
]
