"""Core data models for aichat-transcripts."""

import copy
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

SYSTEM_PROMPT_TYPES = ("general-use", "concise", "agent", "custom")
TOOL_CALL_STATES = ("pending", "approved", "denied", "executing", "completed", "failed")


@dataclass
class ContextFile:
    """A note attached to a chat as context."""

    path: str
    type: str = "source"  # "source" | "extraction"

    @classmethod
    def from_path(cls, path: str) -> "ContextFile":
        return cls(path=path, type="extraction" if "/Extractions/" in path else "source")


@dataclass
class SystemPrompt:
    type: str = "general-use"  # one of SYSTEM_PROMPT_TYPES
    path: Optional[str] = None  # only meaningful for "custom"


@dataclass
class ChatMetadata:
    """The frontmatter header of a chat file."""

    id: str
    model: str = ""
    created: str = ""  # ISO-8601
    last_modified: str = ""
    title: str = ""
    version: int = 0
    tags: list[str] = field(default_factory=list)
    context_files: list[ContextFile] = field(default_factory=list)
    system_prompt: SystemPrompt = field(default_factory=SystemPrompt)
    chat_font_size: Optional[str] = None  # "small" | "medium" | "large"
    agent_mode: bool = True


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: str = "{}"
    type: str = "function"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.name, "arguments": self.arguments},
        }

    @classmethod
    def from_dict(cls, data: dict, fallback_id: str = "") -> "ToolCallRequest":
        function = data.get("function") or {}
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = _json_text(arguments)
        return cls(
            id=str(data.get("id") or fallback_id),
            name=str(function.get("name") or "unknown"),
            arguments=arguments,
            type=str(data.get("type") or "function"),
        )


@dataclass
class ToolCallError:
    code: str
    message: str
    details: Any = None

    def to_dict(self) -> dict:
        out = {"code": self.code, "message": self.message}
        if self.details is not None:
            out["details"] = self.details
        return out


@dataclass
class ToolCallResult:
    """Outcome of a tool execution: either ``data`` or ``error`` is set."""

    success: bool
    data: Any = None
    error: Optional[ToolCallError] = None

    def to_dict(self) -> dict:
        if self.success:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error.to_dict() if self.error else None}

    @classmethod
    def from_dict(cls, data: Any) -> "ToolCallResult":
        # Older files stored the bare tool output instead of a result envelope.
        if not isinstance(data, dict) or "success" not in data:
            return cls(success=True, data=data)
        if data.get("success"):
            return cls(success=True, data=data.get("data"))
        raw_error = data.get("error") or {}
        if not isinstance(raw_error, dict):
            raw_error = {"message": str(raw_error)}
        return cls(
            success=False,
            error=ToolCallError(
                code=str(raw_error.get("code") or "EXECUTION_FAILED"),
                message=str(raw_error.get("message") or "Tool execution failed."),
                details=raw_error.get("details"),
            ),
        )


@dataclass
class ToolCall:
    """A tool invocation owned by exactly one assistant message."""

    id: str
    message_id: str
    request: ToolCallRequest
    state: str = "completed"  # one of TOOL_CALL_STATES
    result: Optional[ToolCallResult] = None
    timestamp: int = 0  # epoch milliseconds
    auto_approved: bool = False

    def to_dict(self) -> dict:
        out = {
            "id": self.id,
            "messageId": self.message_id,
            "request": self.request.to_dict(),
            "state": self.state,
            "timestamp": self.timestamp,
        }
        if self.result is not None:
            out["result"] = self.result.to_dict()
        if self.auto_approved:
            out["autoApproved"] = True
        return out

    @classmethod
    def from_dict(cls, data: dict, message_id: str) -> "ToolCall":
        """Build a ToolCall from its serialized form.

        Accepts both the current ``{request: {...}}`` shape and the older flat
        ``{id, type, function}`` shape written before requests were nested.
        """
        call_id = str(data.get("id") or new_tool_call_id())
        raw_request = data.get("request")
        if not isinstance(raw_request, dict):
            raw_request = data
        result = data.get("result")
        state = data.get("state")
        if state not in TOOL_CALL_STATES:
            state = "completed"
        timestamp = data.get("timestamp")
        return cls(
            id=call_id,
            message_id=str(data.get("messageId") or message_id),
            request=ToolCallRequest.from_dict(raw_request, fallback_id=call_id),
            state=state,
            result=ToolCallResult.from_dict(result) if result is not None else None,
            timestamp=int(timestamp) if isinstance(timestamp, (int, float)) else 0,
            auto_approved=bool(data.get("autoApproved", False)),
        )

    def reassigned(self, message_id: str) -> "ToolCall":
        """Return a deep copy owned by ``message_id``."""
        clone = copy.deepcopy(self)
        clone.message_id = message_id
        return clone


@dataclass
class MessagePart:
    """One chronologically ordered piece of a message."""

    id: str
    type: str  # "reasoning" | "tool_call" | "content"
    timestamp: int
    data: Any  # str for reasoning/content, ToolCall for tool_call


@dataclass
class Message:
    """A single message within a chat.

    ``content`` and ``reasoning`` are derived from ``message_parts`` whenever
    parts are present; see :func:`aichat_transcripts.parts.with_parts`.
    """

    role: str  # "user" | "assistant" | "system" | "tool"
    message_id: str
    content: str = ""
    reasoning: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    message_parts: list[MessagePart] = field(default_factory=list)
    tool_call_id: Optional[str] = None  # tool role only
    annotations: list = field(default_factory=list)
    web_search_enabled: Optional[bool] = None
    streaming: bool = False


@dataclass
class ChatDocument:
    """A chat loaded from the store."""

    metadata: ChatMetadata
    messages: list[Message]
    source_format: str = "modern"  # "modern" | "legacy"


@dataclass
class ChatScan:
    """Result of a bulk directory load."""

    chats: list[ChatDocument] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)  # store paths that did not load


def new_message_id() -> str:
    return str(uuid.uuid4())


def new_tool_call_id() -> str:
    """Return an OpenAI-style call id: ``call_`` plus 24 hex characters."""
    return "call_" + uuid.uuid4().hex[:24]


def _json_text(value: Any) -> str:
    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        return str(value)
