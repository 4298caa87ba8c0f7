"""Tests for saving and loading chats through the storage service."""

import json
from unittest.mock import AsyncMock, patch

import pytest

from aichat_transcripts.core import ContextFile, Message, SystemPrompt, ToolCallError, ToolCallResult
from aichat_transcripts.formats.detect import ChatFormat, detect_format
from aichat_transcripts.formats.frontmatter import split_frontmatter
from aichat_transcripts.formats.modern import MESSAGE_START
from aichat_transcripts.service import (
    ChatSaveError,
    ChatStorageService,
    EmptyOverwriteError,
    cap_result_data,
    cap_tool_results,
)
from aichat_transcripts.store import FileSystemStore

from conftest import make_call, ok


def write_chat(tmp_path, name, text):
    chats = tmp_path / "Chats"
    chats.mkdir(exist_ok=True)
    path = chats / f"{name}.md"
    path.write_text(text, encoding="utf-8")
    return path


class TestSaveChat:
    @pytest.mark.asyncio
    async def test_creates_file_and_directory(self, service, tmp_path, sample_messages):
        result = await service.save_chat("new-chat", sample_messages, "openai/gpt-4o")
        assert result.version == 1
        assert result.path == "Chats/new-chat.md"
        text = (tmp_path / "Chats" / "new-chat.md").read_text(encoding="utf-8")
        assert detect_format(text) is ChatFormat.MODERN
        assert text.count(MESSAGE_START) == 4

    @pytest.mark.asyncio
    async def test_version_increments(self, service, sample_messages):
        versions = [(await service.save_chat("c", sample_messages, "m")).version for _ in range(3)]
        assert versions == [1, 2, 3]
        assert (await service.get_metadata("c")).version == 3

    @pytest.mark.asyncio
    async def test_created_preserved(self, service, sample_messages):
        await service.save_chat("c", sample_messages, "m")
        created = (await service.get_metadata("c")).created
        await service.save_chat("c", sample_messages, "m")
        assert (await service.get_metadata("c")).created == created

    @pytest.mark.asyncio
    async def test_refuses_empty_overwrite(self, service, chat_dir):
        before = (chat_dir / "chat-001.md").read_text(encoding="utf-8")
        with pytest.raises(EmptyOverwriteError):
            await service.save_chat("chat-001", [], "m")
        assert (chat_dir / "chat-001.md").read_text(encoding="utf-8") == before

    @pytest.mark.asyncio
    async def test_empty_save_of_new_chat_allowed(self, service):
        assert (await service.save_chat("blank", [], "m")).version == 1

    @pytest.mark.asyncio
    async def test_empty_save_over_header_only_file_allowed(self, service, tmp_path):
        write_chat(tmp_path, "header", "---\nid: header\nversion: 2\n---\n")
        assert (await service.save_chat("header", [], "m")).version == 3

    @pytest.mark.asyncio
    async def test_defaults_for_new_chat(self, service):
        await service.save_chat("c", [], "m")
        meta = await service.get_metadata("c")
        assert meta.title == "Untitled Chat"
        assert meta.chat_font_size == "medium"
        assert meta.system_prompt == SystemPrompt()
        assert meta.agent_mode is True
        assert meta.tags == []

    @pytest.mark.asyncio
    async def test_unset_fields_keep_existing_values(self, service, chat_dir):
        await service.save_chat("chat-001", [Message(role="user", message_id="u", content="hi")], "openai/gpt-4o")
        meta = await service.get_metadata("chat-001")
        assert meta.version == 4
        assert meta.title == "Refactor the auth module"
        assert meta.created == "2025-01-20T10:00:00.000Z"
        assert meta.last_modified != "2025-01-20T11:30:00.000Z"
        assert meta.tags == ["project"]
        assert meta.chat_font_size == "medium"

    @pytest.mark.asyncio
    async def test_explicit_fields(self, service):
        await service.save_chat(
            "c",
            [],
            "m",
            context_files=["Notes/A", "Notes/Extractions/B", " Notes/A ", ""],
            system_prompt_type="Custom",
            system_prompt_path="Prompts/Pirate",
            title="Pirate talk",
            chat_font_size="small",
            agent_mode=False,
        )
        meta = await service.get_metadata("c")
        assert meta.context_files == [
            ContextFile(path="Notes/A", type="source"),
            ContextFile(path="Notes/Extractions/B", type="extraction"),
        ]
        assert meta.system_prompt == SystemPrompt(type="custom", path="Prompts/Pirate")
        assert meta.title == "Pirate talk"
        assert meta.chat_font_size == "small"
        assert meta.agent_mode is False

    @pytest.mark.asyncio
    async def test_unknown_system_prompt_type(self, service):
        await service.save_chat("c", [], "m", system_prompt_type="yelling")
        assert (await service.get_metadata("c")).system_prompt == SystemPrompt()

    @pytest.mark.asyncio
    async def test_unreadable_version_restarts_at_one(self, service, tmp_path):
        write_chat(tmp_path, "x", "---\nid: x\nversion: .inf\n---\n")
        result = await service.save_chat("x", [Message(role="user", message_id="u", content="hi")], "m")
        assert result.version == 1

    @pytest.mark.asyncio
    async def test_write_failure(self, service, store, sample_messages):
        with patch.object(store, "create", AsyncMock(side_effect=OSError("disk full"))):
            with pytest.raises(ChatSaveError, match="Failed to save chat to c.md") as exc_info:
                await service.save_chat("c", sample_messages, "m")
        assert isinstance(exc_info.value.__cause__, OSError)

    @pytest.mark.asyncio
    async def test_read_failure(self, service, store, chat_dir, sample_messages):
        with patch.object(store, "read", AsyncMock(side_effect=OSError("locked"))):
            with pytest.raises(ChatSaveError):
                await service.save_chat("chat-001", sample_messages, "m")

    @pytest.mark.asyncio
    async def test_existing_file_is_modified_not_created(self, service, store, chat_dir, sample_messages):
        with patch.object(store, "create", AsyncMock()) as create:
            await service.save_chat("chat-001", sample_messages, "m")
        create.assert_not_called()


class TestTags:
    @pytest.mark.asyncio
    async def test_merge_is_idempotent(self, store, tmp_path, sample_messages):
        write_chat(tmp_path, "tagged", "---\nid: tagged\ntags:\n- existing\n- keep\n---\n")
        service = ChatStorageService(store, "Chats", default_tag="new")
        await service.save_chat("tagged", sample_messages, "m")
        await service.save_chat("tagged", sample_messages, "m")
        assert (await service.get_metadata("tagged")).tags == ["existing", "keep", "new"]

    @pytest.mark.asyncio
    async def test_default_tag_is_normalized(self, store):
        service = ChatStorageService(store, "Chats", default_tag="#project")
        await service.save_chat("c", [], "m")
        assert (await service.get_metadata("c")).tags == ["project"]

    def test_default_tag_from_environment(self, store, monkeypatch):
        monkeypatch.setenv("AICHAT_DEFAULT_TAG", " #inbox ")
        assert ChatStorageService(store, "Chats").default_tag == "inbox"


class TestLoadChat:
    @pytest.mark.asyncio
    async def test_saved_chat_reads_back(self, service, sample_messages):
        await service.save_chat("c", sample_messages, "m")
        doc = await service.load_chat("c")
        assert [m.message_id for m in doc.messages] == ["u1", "a1", "u2"]
        turn = doc.messages[1]
        assert turn.content == "It lives in src/auth.ts."
        assert turn.reasoning == "Found it."
        assert turn.tool_calls[0].result.data == ["src/auth.ts"]

    @pytest.mark.asyncio
    async def test_resave_of_loaded_chat_is_stable(self, service, tmp_path, sample_messages):
        path = tmp_path / "Chats" / "c.md"
        await service.save_chat("c", sample_messages, "m")

        bodies = []
        for _ in range(2):
            doc = await service.load_chat("c")
            await service.save_chat("c", doc.messages, "m")
            bodies.append(split_frontmatter(path.read_text(encoding="utf-8"))[1])
        assert bodies[0] == bodies[1]

    @pytest.mark.asyncio
    async def test_modern_chat(self, service, chat_dir):
        doc = await service.load_chat("chat-001")
        assert doc.source_format == "modern"
        assert [m.message_id for m in doc.messages] == ["u1", "a1"]
        turn = doc.messages[1]
        assert turn.content == "The module exports a single function."
        assert turn.reasoning == "I should read the file first."
        assert [c.id for c in turn.tool_calls] == ["call_1"]

    @pytest.mark.asyncio
    async def test_tool_record_reconciled(self, service, chat_dir):
        doc = await service.load_chat("chat-002")
        assert [m.role for m in doc.messages] == ["user", "assistant"]
        call = doc.messages[1].tool_calls[0]
        assert call.id == "call_w"
        assert call.state == "completed"
        assert call.result.data == {"temperature": 21}

    @pytest.mark.asyncio
    async def test_legacy_chat(self, service, chat_dir):
        doc = await service.load_chat("old-chat")
        assert doc.source_format == "legacy"
        assert doc.metadata.id == "old-chat"
        assert [m.content for m in doc.messages] == ["Hello", "Hi"]

    @pytest.mark.asyncio
    async def test_missing_and_non_chat(self, service, chat_dir):
        assert await service.load_chat("nope") is None
        assert await service.load_chat("table-note") is None

    @pytest.mark.asyncio
    async def test_read_error_returns_none(self, service, store, chat_dir):
        with patch.object(store, "read", AsyncMock(side_effect=UnicodeDecodeError("utf-8", b"", 0, 1, "bad"))):
            assert await service.load_chat("chat-001") is None

    @pytest.mark.asyncio
    async def test_legacy_migrates_on_save(self, service, chat_dir):
        doc = await service.load_chat("old-chat")
        result = await service.save_chat("old-chat", doc.messages, doc.metadata.model, title=doc.metadata.title)
        assert result.version == 1
        migrated = await service.load_chat("old-chat")
        assert migrated.source_format == "modern"
        assert migrated.metadata.title == "Hello"
        assert [m.content for m in migrated.messages] == ["Hello", "Hi"]


class FlakyStore(FileSystemStore):
    def __init__(self, root, broken):
        super().__init__(root)
        self.broken = broken

    async def read(self, path):
        if path == self.broken:
            raise OSError(f"cannot read {path}")
        return await super().read(path)


class TestScanChats:
    @pytest.mark.asyncio
    async def test_loads_only_chats(self, service, chat_dir):
        scan = await service.scan_chats()
        assert sorted(doc.metadata.id for doc in scan.chats) == ["chat-001", "chat-002", "old-chat"]
        assert scan.skipped == ["Chats/plain.md", "Chats/table-note.md"]

    @pytest.mark.asyncio
    async def test_one_bad_file_does_not_stop_the_rest(self, tmp_path, chat_dir):
        service = ChatStorageService(FlakyStore(tmp_path, "Chats/chat-002.md"), "Chats", default_tag="")
        scan = await service.scan_chats()
        assert sorted(doc.metadata.id for doc in scan.chats) == ["chat-001", "old-chat"]
        assert "Chats/chat-002.md" in scan.skipped

    @pytest.mark.asyncio
    async def test_list_failure_gives_empty_scan(self, service, store, chat_dir):
        with patch.object(store, "list", AsyncMock(side_effect=OSError("gone"))):
            scan = await service.scan_chats()
        assert scan.chats == []
        assert scan.skipped == []

    @pytest.mark.asyncio
    async def test_missing_directory(self, service):
        assert await service.load_chats() == []

    @pytest.mark.asyncio
    async def test_load_chats_returns_documents(self, service, chat_dir):
        assert len(await service.load_chats()) == 3


class TestCapToolResults:
    def test_small_data_unchanged(self):
        data = {"ok": True}
        assert cap_result_data(data, 100) is data

    def test_marker(self):
        marker = cap_result_data("x" * 200, 100)
        assert marker["truncated"] is True
        assert marker["original_size"] == 202
        assert marker["truncation_info"] == "Content truncated - original size: 202 bytes"
        assert marker["preview"] == json.dumps("x" * 200)

    def test_size_counts_utf8_bytes(self):
        # 40 characters, 120 bytes
        assert cap_result_data("€" * 40, 100)["original_size"] == 122

    def test_calls_and_parts_capped(self):
        call = make_call("call_1", "a1", ok("x" * 200))
        messages = [Message(role="assistant", message_id="a1", tool_calls=[call])]
        capped = cap_tool_results(messages, 100)[0]
        assert capped.tool_calls[0].result.data["truncated"] is True
        assert call.result.data == "x" * 200

    def test_small_errors_untouched(self):
        failed = ToolCallResult(success=False, error=ToolCallError(code="E", message="bad"))
        messages = [Message(role="assistant", message_id="a1", tool_calls=[make_call("call_1", "a1", failed)])]
        assert cap_tool_results(messages, 100)[0].tool_calls[0].result is failed

    def test_oversized_error_capped(self):
        error = ToolCallError(code="E", message="bad", details={"trace": "z" * 500})
        failed = ToolCallResult(success=False, error=error)
        messages = [
            Message(role="assistant", message_id="a1", tool_calls=[make_call("call_1", "a1", failed, state="failed")]),
            Message(role="tool", message_id="t1", content="", tool_call_id="call_1"),
        ]
        capped = cap_tool_results(messages, 100)
        result = capped[0].tool_calls[0].result
        assert result.success is False
        assert result.error.code == "E"
        assert result.error.message == "bad"
        assert result.error.details["truncated"] is True
        assert result.error.details["original_size"] > 500
        assert error.details == {"trace": "z" * 500}
        assert json.loads(capped[1].content)["error"]["details"]["truncated"] is True

    def test_tool_record_rebuilt_from_call(self):
        messages = [
            Message(role="assistant", message_id="a1", tool_calls=[make_call("call_1", "a1", ok(["a"]))]),
            Message(role="tool", message_id="t1", content="stale", tool_call_id="call_1"),
        ]
        assert cap_tool_results(messages)[1].content == json.dumps(["a"], indent=2)

    def test_tool_record_rebuilt_from_error(self):
        failed = ToolCallResult(success=False, error=ToolCallError(code="E", message="bad"))
        messages = [
            Message(role="assistant", message_id="a1", tool_calls=[make_call("call_1", "a1", failed, state="failed")]),
            Message(role="tool", message_id="t1", content="", tool_call_id="call_1"),
        ]
        content = json.loads(cap_tool_results(messages)[1].content)
        assert content == {"error": {"code": "E", "message": "bad"}}

    def test_oversized_orphan_tool_content(self):
        messages = [Message(role="tool", message_id="t1", content="y" * 200)]
        content = json.loads(cap_tool_results(messages, 100)[0].content)
        assert content["truncated"] is True

    @pytest.mark.asyncio
    async def test_saved_file_holds_marker(self, store):
        service = ChatStorageService(store, "Chats", default_tag="", max_tool_result_bytes=100)
        call = make_call("call_1", "a1", ok("x" * 200))
        await service.save_chat("big", [Message(role="assistant", message_id="a1", tool_calls=[call])], "m")
        doc = await service.load_chat("big")
        assert doc.messages[0].tool_calls[0].result.data["original_size"] == 202
