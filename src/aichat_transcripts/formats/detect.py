"""Classify raw text as a modern chat, a legacy chat, or not a chat."""

from enum import Enum

from .frontmatter import looks_like_frontmatter, split_frontmatter
from .legacy import is_legacy
from .modern import has_message_blocks


class ChatFormat(str, Enum):
    MODERN = "modern"
    LEGACY = "legacy"
    INVALID = "invalid"


def detect_format(text: str) -> ChatFormat:
    """Return the format generation of ``text``.

    Ordinary notes must come back INVALID: a leading ``---`` block only
    counts as chat metadata when it holds no markdown (headers, tables, links,
    images, code fences) and looks like ``key: value`` pairs.
    """
    if has_message_blocks(text):
        return ChatFormat.MODERN

    block, _ = split_frontmatter(text)
    if block is not None and looks_like_frontmatter(block):
        return ChatFormat.MODERN

    if is_legacy(text):
        return ChatFormat.LEGACY

    return ChatFormat.INVALID
