"""AI classification pipeline."""

from .accumulator import ClassificationAccumulator
from .engine import ClassificationOutcome, ProgressCallback, SuggestionEngine
from .parser import MAX_SUGGESTIONS, parse_classifications
from .prompt import SYSTEM_PROMPT, build_prompt

__all__ = [
    "ClassificationAccumulator",
    "ClassificationOutcome",
    "ProgressCallback",
    "SuggestionEngine",
    "MAX_SUGGESTIONS",
    "parse_classifications",
    "SYSTEM_PROMPT",
    "build_prompt",
]
