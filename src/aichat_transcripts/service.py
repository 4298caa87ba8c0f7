"""Saving and loading chats through a document store.

Write path: messages -> tool-result size capping -> serializer -> store.
Read path: raw text -> format detection -> per-format parser ->
tool-call reconciliation -> assistant-turn coalescing.

Loads never raise for a single bad file; saves raise :class:`ChatSaveError`.
Saves of the same chat id are not locked against each other, so callers must
not run two of them concurrently.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional

from .config import MAX_TOOL_RESULT_BYTES, TRUNCATION_PREVIEW_CHARS, get_default_chat_tag
from .core import (
    SYSTEM_PROMPT_TYPES,
    ChatDocument,
    ChatMetadata,
    ChatScan,
    ContextFile,
    Message,
    SystemPrompt,
    ToolCall,
    ToolCallError,
    ToolCallResult,
)
from .formats import parse_document
from .formats.frontmatter import merge_tags, normalize_tag, now_iso, parse_metadata
from .formats.modern import MESSAGE_START, render_document
from .normalize import normalize_messages
from .store import DocumentStore

logger = logging.getLogger(__name__)

CHAT_EXTENSION = ".md"


class ChatStorageError(Exception):
    """Base class for chat storage failures."""


class ChatSaveError(ChatStorageError):
    """A chat could not be written."""


class EmptyOverwriteError(ChatSaveError):
    """Refused to replace a chat that has messages with an empty one."""


@dataclass
class SaveResult:
    version: int
    path: str


class ChatStorageService:
    """Reads and writes chat files in one directory of a document store."""

    def __init__(
        self,
        store: DocumentStore,
        chat_directory: str,
        default_tag: Optional[str] = None,
        max_tool_result_bytes: int = MAX_TOOL_RESULT_BYTES,
    ):
        self.store = store
        self.chat_directory = chat_directory.rstrip("/")
        self.default_tag = normalize_tag(get_default_chat_tag() if default_tag is None else default_tag)
        self.max_tool_result_bytes = max_tool_result_bytes

    def chat_path(self, chat_id: str) -> str:
        return f"{self.chat_directory}/{chat_id}{CHAT_EXTENSION}"

    # ── Save ─────────────────────────────────────────────────────

    async def save_chat(
        self,
        chat_id: str,
        messages: list[Message],
        model: str,
        *,
        context_files: Optional[Iterable[str]] = None,
        system_prompt_type: Optional[str] = None,
        system_prompt_path: Optional[str] = None,
        title: Optional[str] = None,
        chat_font_size: Optional[str] = None,
        agent_mode: Optional[bool] = None,
    ) -> SaveResult:
        """Write ``messages`` as the new version of chat ``chat_id``.

        Optional arguments left as None keep the value stored in the existing
        file, or fall back to the defaults for a new chat.

        Raises:
            EmptyOverwriteError: ``messages`` is empty but the stored chat has
                messages. The file is left untouched.
            ChatSaveError: the store failed to read or write the file.
        """
        path = self.chat_path(chat_id)
        try:
            existing_text: Optional[str] = None
            if await self.store.exists(path):
                existing_text = await self.store.read(path)
        except Exception as e:
            raise ChatSaveError(f"Failed to save chat to {chat_id}{CHAT_EXTENSION}") from e

        existing = parse_metadata(existing_text) if existing_text is not None else None

        if not messages and existing_text is not None and MESSAGE_START in existing_text:
            logger.error("Refusing to overwrite chat %s with an empty message list", chat_id)
            raise EmptyOverwriteError(f"Cannot save empty messages over existing chat content in {path}")

        now = now_iso()
        version = (existing.version if existing else 0) + 1
        metadata = ChatMetadata(
            id=chat_id,
            model=model,
            created=existing.created if existing else now,
            last_modified=now,
            title=title or (existing.title if existing else "") or "Untitled Chat",
            version=version,
            tags=merge_tags(existing.tags if existing else [], self.default_tag),
            context_files=self._resolve_context_files(context_files, existing),
            system_prompt=self._resolve_system_prompt(system_prompt_type, system_prompt_path, existing),
            chat_font_size=chat_font_size or (existing.chat_font_size if existing else None) or "medium",
            agent_mode=agent_mode if agent_mode is not None else (existing.agent_mode if existing else True),
        )

        text = render_document(metadata, cap_tool_results(messages, self.max_tool_result_bytes))

        try:
            if not await self.store.exists(self.chat_directory):
                await self.store.create_folder(self.chat_directory)
            if existing_text is not None:
                await self.store.modify(path, text)
            else:
                await self.store.create(path, text)
        except Exception as e:
            logger.error("Failed to write chat %s: %s", path, e)
            raise ChatSaveError(f"Failed to save chat to {chat_id}{CHAT_EXTENSION}") from e

        logger.debug("Saved chat %s version %d (%d messages)", chat_id, version, len(messages))
        return SaveResult(version=version, path=path)

    @staticmethod
    def _resolve_context_files(
        context_files: Optional[Iterable[str]], existing: Optional[ChatMetadata]
    ) -> list[ContextFile]:
        if context_files is None:
            return list(existing.context_files) if existing else []
        paths = dict.fromkeys(p.strip() for p in context_files)
        return [ContextFile.from_path(p) for p in paths if p]

    @staticmethod
    def _resolve_system_prompt(
        prompt_type: Optional[str], prompt_path: Optional[str], existing: Optional[ChatMetadata]
    ) -> SystemPrompt:
        if prompt_type is None:
            return existing.system_prompt if existing else SystemPrompt()
        prompt_type = prompt_type.lower()
        if prompt_type not in SYSTEM_PROMPT_TYPES:
            logger.warning("Unknown system prompt type %r, using general-use", prompt_type)
            return SystemPrompt()
        if prompt_type == "custom" and prompt_path:
            return SystemPrompt(type="custom", path=prompt_path)
        return SystemPrompt(type=prompt_type)

    # ── Load ─────────────────────────────────────────────────────

    async def load_chat(self, chat_id: str) -> Optional[ChatDocument]:
        """Load one chat, or None if it is missing, unreadable or not a chat."""
        path = self.chat_path(chat_id)
        try:
            if not await self.store.exists(path):
                return None
            return await self._load_path(path)
        except Exception as e:
            logger.warning("Failed to load chat %s: %s", path, e)
            return None

    async def get_metadata(self, chat_id: str) -> Optional[ChatMetadata]:
        path = self.chat_path(chat_id)
        try:
            if not await self.store.exists(path):
                return None
            return parse_metadata(await self.store.read(path))
        except Exception as e:
            logger.warning("Failed to read metadata of %s: %s", path, e)
            return None

    async def scan_chats(self) -> ChatScan:
        """Load every chat in the directory.

        Each file is loaded independently; files that fail or are not chats
        are recorded in ``skipped``. If the directory itself cannot be
        listed the scan is empty.
        """
        try:
            files = await self.store.list(self.chat_directory)
        except Exception as e:
            logger.warning("Failed to list chat directory %s: %s", self.chat_directory, e)
            return ChatScan()

        chat_files = [f for f in files if f.endswith(CHAT_EXTENSION)]
        results = await asyncio.gather(
            *(self._load_path(path) for path in chat_files), return_exceptions=True
        )

        scan = ChatScan()
        for path, result in zip(chat_files, results):
            if isinstance(result, ChatDocument):
                scan.chats.append(result)
                continue
            if isinstance(result, Exception):
                logger.warning("Skipping unreadable chat file %s: %s", path, result)
            scan.skipped.append(path)

        if scan.skipped:
            logger.info("Loaded %d chats, skipped %d files", len(scan.chats), len(scan.skipped))
        return scan

    async def load_chats(self) -> list[ChatDocument]:
        return (await self.scan_chats()).chats

    async def _load_path(self, path: str) -> Optional[ChatDocument]:
        text = await self.store.read(path)
        stem = path.rsplit("/", 1)[-1].removesuffix(CHAT_EXTENSION)
        doc = parse_document(text, fallback_id=stem)
        if doc is None:
            return None
        return replace(doc, messages=normalize_messages(doc.messages))


# ── Tool-result size capping ─────────────────────────────────────


def cap_tool_results(messages: list[Message], max_bytes: int = MAX_TOOL_RESULT_BYTES) -> list[Message]:
    """Prepare messages for writing by bounding the size of tool results.

    Results whose JSON exceeds ``max_bytes`` are replaced by a truncation
    marker recording the original size. ``tool`` records whose
    ``tool_call_id`` names a known ToolCall get their content rebuilt from
    that call's (capped) result.
    """
    capped_calls: dict[str, ToolCall] = {}

    def cap_call(call: ToolCall) -> ToolCall:
        if call.result is None:
            return call
        if not call.result.success:
            error = cap_error(call.result.error, max_bytes)
            if error is call.result.error:
                return call
            return replace(call, result=ToolCallResult(success=False, error=error))
        data = cap_result_data(call.result.data, max_bytes)
        if data is call.result.data:
            return call
        return replace(call, result=ToolCallResult(success=True, data=data))

    prepared = []
    for msg in messages:
        if not msg.tool_calls and not any(p.type == "tool_call" for p in msg.message_parts):
            prepared.append(msg)
            continue
        calls = [cap_call(call) for call in msg.tool_calls]
        by_id = {call.id: call for call in calls}
        parts = []
        for part in msg.message_parts:
            if part.type == "tool_call" and isinstance(part.data, ToolCall):
                call = by_id.setdefault(part.data.id, cap_call(part.data))
                part = replace(part, data=call)
            parts.append(part)
        capped_calls.update(by_id)
        prepared.append(replace(msg, tool_calls=calls, message_parts=parts))

    return [_rebuild_tool_content(msg, capped_calls, max_bytes) for msg in prepared]


def cap_result_data(data: Any, max_bytes: int = MAX_TOOL_RESULT_BYTES) -> Any:
    """Return ``data`` unchanged, or a truncation marker if its JSON is too large."""
    serialized = _to_json(data)
    size = len(serialized.encode("utf-8"))
    if size <= max_bytes:
        return data
    return {
        "truncated": True,
        "original_size": size,
        "truncation_info": f"Content truncated - original size: {size} bytes",
        "preview": serialized[:TRUNCATION_PREVIEW_CHARS],
    }


def cap_error(error: Optional[ToolCallError], max_bytes: int = MAX_TOOL_RESULT_BYTES) -> Optional[ToolCallError]:
    """Return ``error`` unchanged, or a copy whose details hold a truncation marker.

    The marker measures the whole serialized error. The code is kept and the
    message is cut to the preview length.
    """
    if error is None:
        return None
    payload = error.to_dict()
    marker = cap_result_data(payload, max_bytes)
    if marker is payload:
        return error
    return ToolCallError(code=error.code, message=error.message[:TRUNCATION_PREVIEW_CHARS], details=marker)


def _rebuild_tool_content(msg: Message, calls: dict[str, ToolCall], max_bytes: int) -> Message:
    if msg.role != "tool":
        return msg
    call = calls.get(msg.tool_call_id or "")
    if call is None or call.result is None:
        if len(msg.content.encode("utf-8")) > max_bytes:
            return replace(msg, content=_to_json(cap_result_data(msg.content, max_bytes)), message_parts=[])
        return msg

    if call.result.success:
        payload = cap_result_data(call.result.data, max_bytes)
    else:
        payload = {"error": call.result.error.to_dict() if call.result.error else {}}
    return replace(msg, content=_to_json(payload), message_parts=[])


def _to_json(data: Any) -> str:
    try:
        return json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps(str(data), ensure_ascii=False)
