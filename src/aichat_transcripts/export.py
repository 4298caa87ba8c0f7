"""Export chats to Markdown and JSON formats."""

import json

from .core import ChatDocument, ChatMetadata, Message
from .parts import parts_for_writing


def chat_to_markdown(doc: ChatDocument) -> str:
    """Export a chat as a clean, readable Markdown transcript."""
    meta = doc.metadata
    lines = [f"# {meta.title}", ""]

    if meta.model:
        lines.append(f"**Model:** {meta.model}")
    lines.append(f"**Created:** {meta.created}")
    lines.append(f"**Updated:** {meta.last_modified}")
    if meta.tags:
        lines.append("**Tags:** " + ", ".join(f"#{tag}" for tag in meta.tags))
    lines.append(f"**Messages:** {len(doc.messages)}")
    lines.extend(["", "---", ""])

    for msg in doc.messages:
        lines.append(f"## {msg.role.capitalize()}")
        lines.append("")
        for part in parts_for_writing(msg):
            if part.type == "reasoning":
                lines.extend(f"> {line}" for line in part.data.splitlines())
            elif part.type == "tool_call":
                call = part.data
                lines.append(f"- Tool `{call.request.name}` ({call.state})")
            else:
                lines.append(part.data)
            lines.append("")
        lines.extend(["---", ""])

    return "\n".join(lines)


def chat_to_json(doc: ChatDocument) -> str:
    """Export a chat and its messages as structured JSON."""
    data = {
        "chat": _metadata_to_dict(doc.metadata),
        "source_format": doc.source_format,
        "messages": [_message_to_dict(msg) for msg in doc.messages],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def _metadata_to_dict(meta: ChatMetadata) -> dict:
    return {
        "id": meta.id,
        "title": meta.title,
        "model": meta.model,
        "created": meta.created,
        "last_modified": meta.last_modified,
        "version": meta.version,
        "tags": list(meta.tags),
        "context_files": [{"path": f.path, "type": f.type} for f in meta.context_files],
        "system_prompt": {"type": meta.system_prompt.type, "path": meta.system_prompt.path},
        "chat_font_size": meta.chat_font_size,
        "agent_mode": meta.agent_mode,
    }


def _message_to_dict(msg: Message) -> dict:
    return {
        "role": msg.role,
        "message_id": msg.message_id,
        "content": msg.content,
        "reasoning": msg.reasoning,
        "tool_calls": [call.to_dict() for call in msg.tool_calls],
    }
