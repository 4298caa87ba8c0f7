"""Helpers for the ordered ``message_parts`` of a message.

A message's ``content`` and ``reasoning`` are never authoritative on their own:
when parts exist they are the concatenation of the content-type and
reasoning-type parts in timestamp order.
"""

from dataclasses import replace
from typing import Optional

from .core import Message, MessagePart, ToolCall


def sorted_parts(parts: list[MessagePart]) -> list[MessagePart]:
    return sorted(parts, key=lambda p: p.timestamp)


def content_from_parts(parts: list[MessagePart]) -> str:
    return "".join(
        p.data if isinstance(p.data, str) else str(p.data or "")
        for p in sorted_parts(parts)
        if p.type == "content"
    )


def reasoning_from_parts(parts: list[MessagePart]) -> Optional[str]:
    text = "".join(
        p.data for p in sorted_parts(parts) if p.type == "reasoning" and isinstance(p.data, str)
    )
    return text or None


def tool_calls_from_parts(parts: list[MessagePart]) -> list[ToolCall]:
    return [p.data for p in sorted_parts(parts) if p.type == "tool_call" and isinstance(p.data, ToolCall)]


def materialize_parts(msg: Message) -> list[MessagePart]:
    """Return the message's parts, synthesizing them from scalar fields if needed.

    Synthesized parts follow the fixed order reasoning -> tool calls -> content.
    """
    if msg.message_parts:
        return [replace(p) for p in sorted_parts(msg.message_parts)]

    parts: list[MessagePart] = []
    idx = 0
    if msg.reasoning:
        parts.append(MessagePart(
            id=f"reasoning-{msg.message_id}-{idx}", type="reasoning", timestamp=idx, data=msg.reasoning,
        ))
        idx += 1
    for call in msg.tool_calls:
        parts.append(MessagePart(
            id=f"tool_call_part-{call.id}", type="tool_call", timestamp=idx, data=call,
        ))
        idx += 1
    if msg.content and msg.content.strip():
        parts.append(MessagePart(
            id=f"content-{msg.message_id}-{idx}", type="content", timestamp=idx, data=msg.content,
        ))
    return parts


def merge_adjacent_reasoning(parts: list[MessagePart]) -> list[MessagePart]:
    """Collapse runs of consecutive reasoning parts into the first of the run."""
    merged: list[MessagePart] = []
    for part in parts:
        prev = merged[-1] if merged else None
        if prev is not None and prev.type == "reasoning" and part.type == "reasoning":
            merged[-1] = replace(prev, data=f"{prev.data}{part.data}")
            continue
        merged.append(part)
    return merged


def with_parts(msg: Message, parts: list[MessagePart]) -> Message:
    """Return a copy of ``msg`` whose derived fields are recomputed from ``parts``."""
    return replace(
        msg,
        message_parts=parts,
        content=content_from_parts(parts),
        reasoning=reasoning_from_parts(parts),
    )


def parts_for_writing(msg: Message) -> list[MessagePart]:
    """Return the parts to serialize, covering every entry of ``msg.tool_calls``.

    Tool calls with no matching ``tool_call`` part are appended after the last
    part so they are written instead of dropped.
    """
    if not msg.message_parts:
        return materialize_parts(msg)

    parts = sorted_parts(msg.message_parts)
    covered = {p.data.id for p in parts if p.type == "tool_call" and isinstance(p.data, ToolCall)}
    next_ts = parts[-1].timestamp + 1
    for call in msg.tool_calls:
        if call.id in covered:
            continue
        covered.add(call.id)
        parts.append(MessagePart(id=f"tool_call_part-{call.id}", type="tool_call", timestamp=next_ts, data=call))
        next_ts += 1
    return parts
