"""Normalize chat model message content to plain text."""

from __future__ import annotations

from typing import Any


def extract_text(content: str | list[Any]) -> str:
    """Return the text of an ``AIMessage.content`` value.

    Most providers return a string. Some return a list of content blocks; the
    ``text`` of every ``{"type": "text"}`` block is joined with newlines.
    Anything else is stringified.
    """
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        parts = [
            block["text"]
            for block in content
            if isinstance(block, dict)
            and block.get("type") == "text"
            and isinstance(block.get("text"), str)
        ]
        if parts:
            return "\n".join(parts)

    return str(content)
