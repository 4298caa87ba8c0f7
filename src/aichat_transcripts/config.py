"""Platform-aware path resolution and settings for the chat store."""

import os
import sys
from pathlib import Path

APP_DIR_NAME = "aichat-transcripts"
CHAT_DIRECTORY = "Chats"

# Tool results whose JSON exceeds this many UTF-8 bytes are replaced by a
# truncation marker before a chat is written.
MAX_TOOL_RESULT_BYTES = 50_000
TRUNCATION_PREVIEW_CHARS = 2_000


def get_store_root() -> Path:
    """Return the root directory of the document store holding chat files."""
    env = os.environ.get("AICHAT_CHATS_PATH")
    if env:
        return Path(env).expanduser()

    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    elif sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "")) / APP_DIR_NAME
    else:  # Linux
        xdg = os.environ.get("XDG_DATA_HOME")
        base = Path(xdg) if xdg else Path.home() / ".local" / "share"
        return base / APP_DIR_NAME


def get_default_chat_tag() -> str:
    """Return the raw tag added to every saved chat (may carry a leading ``#``)."""
    return os.environ.get("AICHAT_DEFAULT_TAG", "")
