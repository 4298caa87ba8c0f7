"""Legacy five-backtick chat files.

The oldest chat files had no frontmatter. Attached notes were listed as
wikilinks under a ``# Context Files`` header, and the conversation followed
under ``# AI Chat History`` as fenced blocks of four or five backticks tagged
with the speaker::

    # Context Files
    [[Projects/Plan]]

    # AI Chat History

    `````user
    Summarize the plan
    `````

    ````ai-gpt-4o
    The plan has three phases...
    ````

Parsing is best effort: missing sections or broken fences yield whatever
could be recovered and never raise.
"""

import logging
import re
from typing import Optional

from ..core import ChatDocument, ChatMetadata, ContextFile, Message, new_message_id
from .frontmatter import now_iso

logger = logging.getLogger(__name__)

TITLE_MAX_CHARS = 50

_SECTION_RE = re.compile(r"^#\s+(Context Files|AI Chat History)\s*$", re.MULTILINE)
_CONTEXT_SECTION_RE = re.compile(r"^#\s+Context Files\s*$(.*?)(?=^#\s|\Z)", re.MULTILINE | re.DOTALL)
_WIKILINK_RE = re.compile(r"\[\[([^\]|\n]+)(?:\|[^\]\n]*)?\]\]")
_BLOCK_RE = re.compile(
    r"(?<!`)(?P<fence>`{4,5})(?P<tag>user|ai(?:-[^\s`]+)?)[ \t]*\n(?P<body>.*?)(?<!`)(?P=fence)(?!`)",
    re.DOTALL,
)


def is_legacy(text: str) -> bool:
    """Return True if ``text`` has a legacy section header and at least one role block."""
    return bool(_SECTION_RE.search(text) and _BLOCK_RE.search(text))


def parse_legacy(text: str, fallback_id: str) -> Optional[ChatDocument]:
    """Convert a legacy file into the unified message model."""
    messages = []
    model = ""
    for match in _BLOCK_RE.finditer(text):
        tag = match.group("tag")
        if tag == "user":
            role = "user"
        else:
            role = "assistant"
            if not model and tag.startswith("ai-"):
                model = tag[3:]
        messages.append(Message(
            role=role,
            message_id=new_message_id(),
            content=match.group("body").strip(),
        ))

    if not messages:
        logger.debug("No role blocks found in legacy chat %s", fallback_id)

    now = now_iso()
    metadata = ChatMetadata(
        id=fallback_id,
        model=model,
        created=now,
        last_modified=now,
        title=derive_title(messages),
        context_files=_parse_context_files(text),
    )
    return ChatDocument(metadata=metadata, messages=messages, source_format="legacy")


def derive_title(messages: list[Message]) -> str:
    """Build a title from the first user message, truncated with ``...``."""
    first_user = next((m for m in messages if m.role == "user" and m.content.strip()), None)
    if first_user is None:
        return "Untitled Chat"
    text = " ".join(first_user.content.split())
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + "..."
    return text


def _parse_context_files(text: str) -> list[ContextFile]:
    section = _CONTEXT_SECTION_RE.search(text)
    if not section:
        return []
    paths = (link.strip() for link in _WIKILINK_RE.findall(section.group(1)))
    return [ContextFile.from_path(path) for path in dict.fromkeys(paths) if path]
