"""Tests for classification response parsing."""

from __future__ import annotations

import json

import pytest

from bilisorter.errors import ParseError
from bilisorter.suggestions import parse_classifications


def test_parses_fenced_payload_and_bounds_suggestions() -> None:
    suggestions = [
        {"folder_id": index, "folder_name": f"F{index}", "confidence": confidence}
        for index, confidence in enumerate([0.2, 1.7, 0.9, -0.3, 0.5, 0.6, 0.4], start=1)
    ]
    text = "Here you go:\n```json\n" + json.dumps({"classifications": [{"bvid": "BV1", "suggestions": suggestions}]}) + "\n```"

    result = parse_classifications(text)

    parsed = result["BV1"]
    assert len(parsed) == 5
    assert [s.confidence for s in parsed] == [1.0, 0.9, 0.6, 0.5, 0.4]
    assert all(0.0 <= s.confidence <= 1.0 for s in parsed)


def test_accepts_bare_object_and_id_key() -> None:
    text = 'Sure! {"classifications": [{"id": "BV2", "suggestions": [{"folder_id": "7", "folder_name": "Music", "confidence": 0.8}]}]} Done.'

    result = parse_classifications(text)

    assert result["BV2"][0].target_folder_id == 7
    assert result["BV2"][0].target_folder_name == "Music"


def test_drops_suggestions_without_folder_identity() -> None:
    payload = {
        "classifications": [
            {
                "bvid": "BV3",
                "suggestions": [
                    {"folder_name": "No id", "confidence": 0.9},
                    {"folder_id": 4, "confidence": 0.9},
                    {"folder_id": 5, "folder_name": "Kept"},
                ],
            },
            {"suggestions": []},
        ]
    }

    result = parse_classifications(json.dumps(payload))

    assert list(result) == ["BV3"]
    assert [(s.target_folder_id, s.confidence) for s in result["BV3"]] == [(5, 0.0)]


@pytest.mark.parametrize("text", ["not json at all", '{"results": []}', "```json\n[1, 2]\n```"])
def test_malformed_payload_raises_parse_error(text: str) -> None:
    with pytest.raises(ParseError):
        parse_classifications(text)
