"""Normalize LLM message content across providers.

Anthropic (with extended thinking) and Gemini return ``content`` as a list of
content blocks rather than a string, both for whole messages and for stream
chunks. Thinking blocks are never part of the visible text.
"""

from __future__ import annotations

from typing import Any


def extract_text(content: str | list[Any] | None, separator: str = "") -> str:
    """Extract visible text from a message or chunk ``content`` field.

    Args:
        content: String content or a list of content blocks.
        separator: Joiner for multiple text blocks.

    Returns:
        The text; empty string when the content carries no text blocks.
    """
    if content is None:
        return ""
    if isinstance(content, str):
        return content

    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            text = block.get("text")
            if isinstance(text, str):
                parts.append(text)
    return separator.join(parts)
