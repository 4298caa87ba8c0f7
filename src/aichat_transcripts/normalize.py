"""Load-time normalization of parsed messages.

Two passes turn the flat records stored on disk into the conversation shown
to the user:

1. :func:`reconcile_tool_messages` folds standalone ``tool`` records into the
   ``tool_calls`` of the assistant message that issued them.
2. :func:`coalesce_assistant_turns` merges each run of consecutive assistant
   records (one per tool-use step) into a single assistant turn.

Both passes build new messages instead of mutating their input, and every
ToolCall that changes owner is deep-copied, so no ToolCall instance is ever
shared between two messages.
"""

import json
import logging
import time
from dataclasses import dataclass, replace
from functools import reduce
from typing import Any, Optional

from .core import (
    Message,
    MessagePart,
    ToolCall,
    ToolCallError,
    ToolCallRequest,
    ToolCallResult,
    new_message_id,
    new_tool_call_id,
)
from .parts import materialize_parts, merge_adjacent_reasoning, with_parts

logger = logging.getLogger(__name__)

RECOVERED_TOOL_NAME = "legacy.recovered"
CONTEXT_NOTE_PREFIX = "Context Note (legacy tool result): "


def normalize_messages(messages: list[Message]) -> list[Message]:
    return coalesce_assistant_turns(reconcile_tool_messages(messages))


# ── Tool-call reconciliation ─────────────────────────────────────


@dataclass(frozen=True)
class _FoldState:
    messages: tuple[Message, ...] = ()
    last_assistant: Optional[int] = None  # index into messages


def reconcile_tool_messages(messages: list[Message]) -> list[Message]:
    """Attach every ``tool`` record to the most recent preceding assistant message.

    A tool record with no assistant before it becomes a system note so its
    result is not lost.
    """
    return list(reduce(_reconcile_step, messages, _FoldState()).messages)


def _reconcile_step(state: _FoldState, msg: Message) -> _FoldState:
    if msg.role == "assistant":
        return _FoldState(state.messages + (msg,), len(state.messages))
    if msg.role != "tool":
        return _FoldState(state.messages + (msg,), state.last_assistant)

    result, call_state = tool_result_from_content(msg.content)

    idx = state.last_assistant
    if idx is None:
        logger.debug("Tool record %s has no preceding assistant message", msg.message_id)
        return _FoldState(state.messages + (_context_note(result),), None)

    call_id = msg.tool_call_id or new_tool_call_id()
    owner = _attach_result(state.messages[idx], call_id, result, call_state)
    return _FoldState(state.messages[:idx] + (owner,) + state.messages[idx + 1:], idx)


def tool_result_from_content(content: str) -> tuple[ToolCallResult, str]:
    """Interpret the text of a ``tool`` record as a result and a ToolCall state.

    JSON content is parsed; anything else is kept as raw text. An ``error``
    field marks a failure, or a denial when its code is ``USER_DENIED``.
    """
    raw = content or ""
    parsed: Any
    try:
        parsed = json.loads(raw) if raw else None
    except ValueError:
        parsed = raw

    if isinstance(parsed, dict) and parsed.get("error") is not None:
        error = parsed["error"]
        if not isinstance(error, dict):
            error = {"message": str(error)}
        code = str(error.get("code") or "EXECUTION_FAILED")
        result = ToolCallResult(
            success=False,
            error=ToolCallError(
                code=code,
                message=str(error.get("message") or "Tool execution failed."),
                details=error.get("details"),
            ),
        )
        return result, "denied" if code == "USER_DENIED" else "failed"

    return ToolCallResult(success=True, data=parsed if parsed is not None else raw), "completed"


def _attach_result(owner: Message, call_id: str, result: ToolCallResult, call_state: str) -> Message:
    calls = list(owner.tool_calls)
    match = next((i for i, call in enumerate(calls) if call.id == call_id), None)

    if match is not None:
        updated = calls[match].reassigned(owner.message_id)
        updated.result = result
        updated.state = call_state
        calls[match] = updated
    else:
        updated = ToolCall(
            id=call_id,
            message_id=owner.message_id,
            request=ToolCallRequest(id=call_id, name=RECOVERED_TOOL_NAME),
            state=call_state,
            result=result,
            timestamp=int(time.time() * 1000),
        )
        calls.append(updated)

    parts = owner.message_parts
    if parts:
        parts = _sync_tool_call_part(parts, updated)
    return replace(owner, tool_calls=calls, message_parts=parts)


def _sync_tool_call_part(parts: list[MessagePart], call: ToolCall) -> list[MessagePart]:
    synced = [
        replace(p, data=call) if p.type == "tool_call" and getattr(p.data, "id", None) == call.id else p
        for p in parts
    ]
    if not any(p.data is call for p in synced):
        next_ts = max(p.timestamp for p in parts) + 1
        synced.append(MessagePart(id=f"tool_call_part-{call.id}", type="tool_call", timestamp=next_ts, data=call))
    return synced


def _context_note(result: ToolCallResult) -> Message:
    if result.success:
        data = result.data
        summary = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    else:
        summary = json.dumps(result.error.to_dict() if result.error else None, ensure_ascii=False)
    return Message(role="system", message_id=new_message_id(), content=f"{CONTEXT_NOTE_PREFIX}{summary}")


# ── Assistant-turn coalescing ────────────────────────────────────


def coalesce_assistant_turns(messages: list[Message]) -> list[Message]:
    """Merge each run of consecutive assistant messages into one turn.

    The first message of a run is the turn root and keeps its id; later
    messages of the run are folded into it. All other messages pass through
    unchanged and in order.
    """
    coalesced: list[Message] = []
    open_turn: Optional[int] = None

    for msg in messages:
        if msg.role != "assistant":
            open_turn = None
            coalesced.append(msg)
            continue

        if open_turn is None:
            coalesced.append(_open_turn(msg))
            open_turn = len(coalesced) - 1
            continue

        coalesced[open_turn] = _merge_into_turn(coalesced[open_turn], msg)

    return coalesced


def _open_turn(msg: Message) -> Message:
    calls = _owned_calls(msg, msg.message_id)
    parts = [
        replace(p, data=calls.get(p.data.id, p.data)) if _is_call_part(p) else p
        for p in msg.message_parts
    ]
    return replace(msg, tool_calls=[calls[call.id] for call in msg.tool_calls], message_parts=parts)


def _merge_into_turn(root: Message, incoming: Message) -> Message:
    target = root.message_id

    merged = _owned_calls(root, target)
    for call_id, call in _owned_calls(incoming, target).items():
        existing = merged.get(call_id)
        if existing is not None and existing.result is not None and call.result is None:
            continue
        merged[call_id] = call

    combined: list[MessagePart] = []
    seen_calls: set[str] = set()
    for source, part in _tagged_parts(root, incoming):
        if _is_call_part(part):
            if part.data.id in seen_calls:
                continue
            seen_calls.add(part.data.id)
            data = merged[part.data.id]
        elif part.type == "reasoning":
            data = part.data if isinstance(part.data, str) else str(part.data or "")
        else:
            data = part.data
        ts = len(combined) + 1
        combined.append(MessagePart(
            id=part.id or f"part-{source}-{ts}", type=part.type, timestamp=ts, data=data,
        ))

    turn = with_parts(root, merge_adjacent_reasoning(combined))
    return replace(
        turn,
        tool_calls=list(merged.values()),
        annotations=incoming.annotations or turn.annotations,
        web_search_enabled=(
            incoming.web_search_enabled if incoming.web_search_enabled is not None else turn.web_search_enabled
        ),
    )


def _tagged_parts(root: Message, incoming: Message):
    for msg in (root, incoming):
        for part in materialize_parts(msg):
            yield msg.message_id, part


def _owned_calls(msg: Message, owner_id: str) -> dict[str, ToolCall]:
    """Deep copies of every ToolCall a message carries, keyed by id, owned by ``owner_id``."""
    calls: dict[str, ToolCall] = {}
    for call in msg.tool_calls:
        calls.setdefault(call.id, call.reassigned(owner_id))
    for part in msg.message_parts:
        if _is_call_part(part):
            calls.setdefault(part.data.id, part.data.reassigned(owner_id))
    return calls


def _is_call_part(part: MessagePart) -> bool:
    return part.type == "tool_call" and isinstance(part.data, ToolCall)
