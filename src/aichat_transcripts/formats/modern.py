"""Sentinel-delimited message blocks (the current chat file format).

Each message is written between a start and an end sentinel::

    <!-- SYSTEMSCULPT-MESSAGE-START role="assistant" message-id="a1" has-reasoning="true" -->
    <!-- REASONING
    Let me look at the file first.
    -->
    <!-- TOOL-CALLS
    [{"id": "call_1", "messageId": "a1", "request": {...}, "state": "completed"}]
    -->
    Here is what I found.
    <!-- SYSTEMSCULPT-MESSAGE-END -->

Reasoning, tool-call and content sub-blocks appear in the order they were
produced. Older files put a single content blob first and the TOOL-CALLS and
REASONING blocks after it, with tool calls in a flat ``{id, type, function}``
shape; both layouts are read by the same position-aware parser.

The sentinel strings are part of the on-disk format and must stay byte-stable.
"""

import html
import json
import logging
import re
from typing import Optional

from ..core import ChatDocument, ChatMetadata, Message, MessagePart, ToolCall
from ..parts import (
    content_from_parts,
    parts_for_writing,
    reasoning_from_parts,
    tool_calls_from_parts,
)
from .frontmatter import now_iso, parse_metadata, serialize_metadata

logger = logging.getLogger(__name__)

MESSAGE_START = "<!-- SYSTEMSCULPT-MESSAGE-START"
MESSAGE_END = "<!-- SYSTEMSCULPT-MESSAGE-END -->"

_MESSAGE_RE = re.compile(
    r"<!-- SYSTEMSCULPT-MESSAGE-START ([^\n]*?) -->(.*?)<!-- SYSTEMSCULPT-MESSAGE-END -->",
    re.DOTALL,
)
_MESSAGE_PAIR_RE = re.compile(
    r"<!-- SYSTEMSCULPT-MESSAGE-START\b.*?<!-- SYSTEMSCULPT-MESSAGE-END -->",
    re.DOTALL,
)
_ATTR_RE = re.compile(r'([\w-]+)="(.*?)"')
_BLOCK_RE = re.compile(
    r"<!-- REASONING\n(?P<reasoning>.*?)\n-->|<!-- TOOL-CALLS\n(?P<tool_calls>.*?)\n-->",
    re.DOTALL,
)


def has_message_blocks(text: str) -> bool:
    """Return True if ``text`` holds at least one matched start/end sentinel pair."""
    return bool(_MESSAGE_PAIR_RE.search(text))


# ── Read side ────────────────────────────────────────────────────


def parse_modern(text: str, fallback_id: str) -> Optional[ChatDocument]:
    """Parse a frontmatter + message-block chat file.

    Messages are returned exactly as stored; tool reconciliation and turn
    coalescing happen later in :mod:`aichat_transcripts.normalize`.
    """
    metadata = parse_metadata(text)
    if metadata is None:
        if not has_message_blocks(text):
            return None
        logger.warning("Chat %s has message blocks but no usable frontmatter", fallback_id)
        now = now_iso()
        metadata = ChatMetadata(
            id=fallback_id, created=now, last_modified=now, title=fallback_id,
        )

    return ChatDocument(metadata=metadata, messages=parse_messages(text), source_format="modern")


def parse_messages(text: str) -> list[Message]:
    """Parse every sentinel-delimited message block in document order."""
    messages = []
    for match in _MESSAGE_RE.finditer(text):
        attrs = {key: html.unescape(value) for key, value in _ATTR_RE.findall(match.group(1))}
        role = attrs.get("role")
        message_id = attrs.get("message-id")
        if not role or not message_id:
            logger.debug("Skipping message block without role/message-id: %r", match.group(1))
            continue

        parts = _parse_body(_strip_framing(match.group(2)), message_id)
        messages.append(Message(
            role=role,
            message_id=message_id,
            content=content_from_parts(parts),
            reasoning=reasoning_from_parts(parts),
            tool_calls=tool_calls_from_parts(parts),
            message_parts=parts,
            tool_call_id=attrs.get("tool-call-id") or None,
            streaming=attrs.get("streaming") == "true",
        ))
    return messages


def _strip_framing(body: str) -> str:
    """Remove the newline the serializer puts after the start and before the end sentinel."""
    if body.startswith("\n"):
        body = body[1:]
    if body.endswith("\n"):
        body = body[:-1]
    return body


def _parse_body(body: str, message_id: str) -> list[MessagePart]:
    parts: list[MessagePart] = []

    def add(part_type: str, data, part_id: Optional[str] = None) -> None:
        ts = len(parts)
        parts.append(MessagePart(
            id=part_id or f"{part_type}-{message_id}-{ts}", type=part_type, timestamp=ts, data=data,
        ))

    def add_content(segment: str, after_block: bool, before_block: bool) -> None:
        # Blocks are written with a newline on each side; drop exactly that one.
        if after_block and segment.startswith("\n"):
            segment = segment[1:]
        if before_block and segment.endswith("\n"):
            segment = segment[:-1]
        if segment.strip():
            add("content", segment)

    cursor = 0
    for block in _BLOCK_RE.finditer(body):
        add_content(body[cursor:block.start()], after_block=cursor > 0, before_block=True)
        cursor = block.end()

        reasoning = block.group("reasoning")
        if reasoning is not None:
            # Reasoning is kept verbatim, including surrounding whitespace.
            if reasoning:
                add("reasoning", reasoning)
            continue

        for call in _parse_tool_calls(block.group("tool_calls"), message_id):
            add("tool_call", call, part_id=f"tool_call_part-{call.id}")

    add_content(body[cursor:], after_block=cursor > 0, before_block=False)
    return parts


def _parse_tool_calls(raw: str, message_id: str) -> list[ToolCall]:
    raw = raw.strip()
    if not raw:
        return []
    try:
        entries = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.debug("Ignoring unparseable TOOL-CALLS block in %s: %s", message_id, e)
        return []

    if isinstance(entries, dict):
        entries = [entries]
    if not isinstance(entries, list):
        return []
    return [ToolCall.from_dict(entry, message_id) for entry in entries if isinstance(entry, dict)]


# ── Write side ───────────────────────────────────────────────────


def render_document(metadata: ChatMetadata, messages: list[Message]) -> str:
    """Render a complete chat file: frontmatter, a blank line, message blocks."""
    return f"{serialize_metadata(metadata)}\n{serialize_messages(messages)}"


def serialize_messages(messages: list[Message]) -> str:
    return "\n\n".join(message_to_markdown(msg) for msg in messages)


def message_to_markdown(msg: Message) -> str:
    """Render one message as a sentinel-delimited block.

    Messages without parts are written in the order reasoning, tool calls,
    content, which is the order they are read back in.
    """
    parts = parts_for_writing(msg)
    body = "".join(_render_part(part) for part in parts)

    has_tool_calls = bool(msg.tool_calls) or any(p.type == "tool_call" for p in parts)
    has_reasoning = bool(msg.reasoning) or any(p.type == "reasoning" for p in parts)

    attributes = f'role="{_attr(msg.role)}" message-id="{_attr(msg.message_id)}"'
    if msg.tool_call_id:
        attributes += f' tool-call-id="{_attr(msg.tool_call_id)}"'
    if has_tool_calls:
        attributes += ' has-tool-calls="true"'
    if has_reasoning:
        attributes += ' has-reasoning="true"'
    if msg.streaming:
        attributes += ' streaming="true"'

    return f"{MESSAGE_START} {attributes} -->\n{body}\n{MESSAGE_END}"


def _render_part(part: MessagePart) -> str:
    if part.type == "content":
        return part.data if isinstance(part.data, str) else str(part.data or "")
    if part.type == "reasoning":
        return f"\n<!-- REASONING\n{part.data}\n-->\n" if isinstance(part.data, str) else ""
    if part.type == "tool_call":
        data = part.data.to_dict() if isinstance(part.data, ToolCall) else part.data
        return f"\n<!-- TOOL-CALLS\n{json.dumps([data], indent=2, ensure_ascii=False)}\n-->\n"
    logger.debug("Dropping part %s of unknown type %r", part.id, part.type)
    return ""


def _attr(value: str) -> str:
    return html.escape(value, quote=True)
