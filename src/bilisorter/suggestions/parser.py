"""Parsing of classification responses into bounded suggestion lists."""

from __future__ import annotations

import json
import re
from typing import Any

from bilisorter.errors import ParseError
from bilisorter.state.models import Suggestion, SuggestionMap

MAX_SUGGESTIONS = 5

_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_OBJECT = re.compile(r"\{[\s\S]*\}")


def _extract_json(text: str) -> str:
    match = _FENCED.search(text)
    if match:
        return match.group(1)
    match = _OBJECT.search(text)
    if match:
        return match.group(0)
    return text


def parse_classifications(text: str, *, max_suggestions: int = MAX_SUGGESTIONS) -> SuggestionMap:
    """Parse a provider response.

    The payload may be wrapped in a markdown code fence. Entries without an
    item id or a suggestions list are ignored, suggestions without a folder id
    or name are dropped, confidence is clamped to ``[0, 1]`` and every list is
    sorted by descending confidence and truncated to ``max_suggestions``.

    Args:
        text: Raw response text.
        max_suggestions: Suggestions kept per item (at most 5).

    Returns:
        SuggestionMap: Suggestions keyed by item id.

    Raises:
        ParseError: If the text holds no JSON object with a ``classifications`` array.
    """
    limit = min(max_suggestions, MAX_SUGGESTIONS)
    try:
        data = json.loads(_extract_json(text).strip())
    except json.JSONDecodeError as exc:
        raise ParseError(f"Response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict) or not isinstance(data.get("classifications"), list):
        raise ParseError("Invalid response format: missing classifications array")

    results: SuggestionMap = {}
    for entry in data["classifications"]:
        if not isinstance(entry, dict):
            continue
        item_id = entry.get("bvid") or entry.get("id")
        raw_suggestions = entry.get("suggestions")
        if not item_id or not isinstance(raw_suggestions, list):
            continue
        suggestions = [s for s in (_suggestion(raw) for raw in raw_suggestions) if s is not None]
        suggestions.sort(key=lambda suggestion: suggestion.confidence, reverse=True)
        results[str(item_id)] = suggestions[:limit]
    return results


def _suggestion(raw: Any) -> Suggestion | None:
    if not isinstance(raw, dict):
        return None
    folder_id = raw.get("folder_id")
    folder_name = raw.get("folder_name")
    if not folder_id or not folder_name:
        return None
    try:
        target_id = int(folder_id)
        confidence = float(raw.get("confidence") or 0)
    except (TypeError, ValueError):
        return None
    return Suggestion(
        target_folder_id=target_id,
        target_folder_name=str(folder_name),
        confidence=max(0.0, min(1.0, confidence)),
    )


__all__ = ["MAX_SUGGESTIONS", "parse_classifications"]
