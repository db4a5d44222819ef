"""Remote API clients."""

from .collection import (
    ALREADY_IN_TARGET_CODE,
    ActionResult,
    AuthResult,
    CollectionClient,
    Credentials,
    ItemWindow,
)
from .providers import (
    ClassificationProvider,
    ClaudeProvider,
    GeminiProvider,
    build_provider,
)

__all__ = [
    "ALREADY_IN_TARGET_CODE",
    "ActionResult",
    "AuthResult",
    "CollectionClient",
    "Credentials",
    "ItemWindow",
    "ClassificationProvider",
    "ClaudeProvider",
    "GeminiProvider",
    "build_provider",
]
