"""Prompt construction for classification batches."""

from __future__ import annotations

from typing import Sequence

from bilisorter.config.models import SuggestOptions
from bilisorter.state.models import Folder, Item

SYSTEM_PROMPT = (
    "You are a video classification assistant. Assign each video to the most "
    "suitable favourites folder using its title, uploader, description and tags. "
    "Reply with JSON only, without any explanatory text."
)

_OUTPUT_FORMAT = """Return JSON in this format:
{
  "classifications": [
    {
      "bvid": "video BVID",
      "suggestions": [
        {"folder_id": 123, "folder_name": "folder name", "confidence": 0.95}
      ]
    }
  ]
}

Return at most {max_suggestions} suggestions per video, ordered by confidence from high to low.
Confidence ranges from 0 to 1: >= 0.8 is high, 0.5-0.8 medium, < 0.5 low."""


def build_prompt(
    items: Sequence[Item],
    folders: Sequence[Folder],
    options: SuggestOptions | None = None,
) -> str:
    """Render the classification request for one batch.

    Args:
        items: Items to classify.
        folders: Candidate destination folders.
        options: Limits on sample titles, description length and suggestions.

    Returns:
        str: Prompt text sent as the user message.
    """
    options = options or SuggestOptions()
    folder_lines = []
    for folder in folders:
        line = f"- {folder.name} (ID: {folder.id}, {folder.item_count} items)"
        samples = folder.sample_titles[: options.sample_titles_in_prompt]
        if samples:
            line += "\n  Examples: " + ", ".join(samples)
        folder_lines.append(line)

    item_lines = []
    for item in items:
        line = f"- BVID: {item.external_id}\n  Title: {item.title}\n  Uploader: {item.owner_name}"
        if item.description:
            line += f"\n  Description: {item.description[: options.description_chars]}"
        if item.tags:
            line += "\n  Tags: " + ", ".join(item.tags)
        item_lines.append(line)

    output_format = _OUTPUT_FORMAT.replace("{max_suggestions}", str(options.max_suggestions))
    return (
        "Classify the following videos into the most suitable favourites folders.\n\n"
        "## Available folders\n\n"
        + "\n".join(folder_lines)
        + "\n\n## Videos to classify\n\n"
        + "\n".join(item_lines)
        + "\n\n## Output format\n\n"
        + output_format
    )


__all__ = ["SYSTEM_PROMPT", "build_prompt"]
