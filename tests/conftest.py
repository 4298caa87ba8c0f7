"""Shared test fixtures for aichat-transcripts."""

import pytest

from aichat_transcripts.core import Message, ToolCall, ToolCallRequest, ToolCallResult
from aichat_transcripts.service import ChatStorageService
from aichat_transcripts.store import FileSystemStore

MODERN_CHAT = """---
id: chat-001
model: openai/gpt-4o
created: '2025-01-20T10:00:00.000Z'
lastModified: '2025-01-20T11:30:00.000Z'
title: Refactor the auth module
version: 3
tags:
- project
systemMessage:
  type: general-use
chatFontSize: medium
agentMode: true
---

<!-- SYSTEMSCULPT-MESSAGE-START role="user" message-id="u1" -->
Help me refactor the auth module
<!-- SYSTEMSCULPT-MESSAGE-END -->

<!-- SYSTEMSCULPT-MESSAGE-START role="assistant" message-id="a1" has-tool-calls="true" has-reasoning="true" -->
<!-- REASONING
I should read the file first.
-->
<!-- TOOL-CALLS
[{"id": "call_1", "messageId": "a1", "request": {"id": "call_1", "type": "function", "function": {"name": "read_file", "arguments": "{}"}}, "state": "completed", "timestamp": 1, "result": {"success": true, "data": "export function authenticate() {}"}}]
-->
<!-- SYSTEMSCULPT-MESSAGE-END -->

<!-- SYSTEMSCULPT-MESSAGE-START role="assistant" message-id="a2" -->
The module exports a single function.
<!-- SYSTEMSCULPT-MESSAGE-END -->
"""

# Sentinel blocks with a content blob first, trailing TOOL-CALLS/REASONING
# blocks and tool calls in the flat {id, type, function} shape.
AGGREGATED_CHAT = """---
id: chat-002
model: gpt-4
title: Weather check
version: 1
---

<!-- SYSTEMSCULPT-MESSAGE-START role="user" message-id="u1" -->
What's the weather in Oslo?
<!-- SYSTEMSCULPT-MESSAGE-END -->

<!-- SYSTEMSCULPT-MESSAGE-START role="assistant" message-id="a1" has-tool-calls="true" has-reasoning="true" -->
Let me check.
<!-- TOOL-CALLS
[
  {
    "id": "call_w",
    "type": "function",
    "function": {
      "name": "get_weather",
      "arguments": "{}"
    }
  }
]
-->
<!-- REASONING
The user wants the weather.
-->
<!-- SYSTEMSCULPT-MESSAGE-END -->

<!-- SYSTEMSCULPT-MESSAGE-START role="tool" message-id="t1" tool-call-id="call_w" -->
{"temperature": 21}
<!-- SYSTEMSCULPT-MESSAGE-END -->
"""

LEGACY_CHAT = """# Context Files
[[Projects/Plan]]
[[Projects/Extractions/Report|the report]]

# AI Chat History

`````user
Hello`````

````ai-gpt-4o
Hi
````
"""

TABLE_NOTE = """---
| Database | Storage Model |
| --- | --- |
---

Some notes about databases.
"""

PLAIN_NOTE = "Just some plain text without any special format.\n"


def make_call(call_id: str, message_id: str, result=None, state: str = "completed") -> ToolCall:
    return ToolCall(
        id=call_id,
        message_id=message_id,
        request=ToolCallRequest(id=call_id, name="search", arguments="{}"),
        state=state,
        result=result,
        timestamp=1,
    )


def ok(data) -> ToolCallResult:
    return ToolCallResult(success=True, data=data)


@pytest.fixture
def sample_messages():
    return [
        Message(role="user", message_id="u1", content="Find the auth module"),
        Message(role="assistant", message_id="a1", tool_calls=[make_call("call_1", "a1", ok(["src/auth.ts"]))]),
        Message(role="assistant", message_id="a2", content="It lives in src/auth.ts.", reasoning="Found it."),
        Message(role="user", message_id="u2", content="Thanks!"),
    ]


@pytest.fixture
def store(tmp_path):
    return FileSystemStore(tmp_path)


@pytest.fixture
def service(store):
    return ChatStorageService(store, "Chats", default_tag="")


@pytest.fixture
def chat_dir(tmp_path):
    """Create a Chats directory holding every supported format plus non-chat notes."""
    chats = tmp_path / "Chats"
    chats.mkdir()
    (chats / "chat-001.md").write_text(MODERN_CHAT, encoding="utf-8")
    (chats / "chat-002.md").write_text(AGGREGATED_CHAT, encoding="utf-8")
    (chats / "old-chat.md").write_text(LEGACY_CHAT, encoding="utf-8")
    (chats / "table-note.md").write_text(TABLE_NOTE, encoding="utf-8")
    (chats / "plain.md").write_text(PLAIN_NOTE, encoding="utf-8")
    (chats / "data.json").write_text("{}", encoding="utf-8")
    return chats
