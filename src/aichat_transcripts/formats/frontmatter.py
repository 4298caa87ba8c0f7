"""YAML frontmatter header of a chat file.

The header sits between two ``---`` lines at the very start of the file::

    ---
    id: 3f1c...
    model: openai/gpt-4o
    created: '2025-01-20T10:00:00.000Z'
    lastModified: '2025-01-20T11:30:00.000Z'
    title: Refactor the auth module
    version: 4
    tags:
    - project
    systemMessage:
      type: general-use
    chatFontSize: medium
    agentMode: true
    ---

The keys are part of the on-disk format and must not be renamed.
"""

import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Iterable, Optional

import yaml

from ..core import SYSTEM_PROMPT_TYPES, ChatMetadata, ContextFile, SystemPrompt

logger = logging.getLogger(__name__)

FRONTMATTER_RE = re.compile(r"\A---\n(.*?)\n---", re.DOTALL)

_WIKILINK_RE = re.compile(r"^\[\[(.*?)\]\]$")

# Markdown constructs that never appear in a chat header; a leading ``---``
# block containing any of them is a horizontal rule or a note, not metadata.
_MARKDOWN_PATTERNS = (
    re.compile(r"\A\s*#{1,6}\s"),  # header opening the block
    re.compile(r"^\s*\|.*\|\s*$", re.MULTILINE),  # table rows
    re.compile(r"\A\s*\d+\.\s+\*\*"),  # numbered list with bold lead
    re.compile(r"\A\s*[-*+]\s+"),  # list opening the block
    re.compile(r"```"),  # code fences
    re.compile(r"!?\[[^\]\n]*\]\([^)\n]*\)"),  # links and images
)
_KEY_VALUE_RE = re.compile(r"^\s*[\w-]+\s*:(\s|$)", re.MULTILINE)
_REQUIRED_KEY_RE = re.compile(r"\b(id|model|title)\s*:")


def now_iso() -> str:
    """Return the current UTC time as ``YYYY-MM-DDTHH:MM:SS.mmmZ``."""
    return _format_datetime(datetime.now(timezone.utc))


def split_frontmatter(text: str) -> tuple[Optional[str], str]:
    """Split a file into its frontmatter body and the remaining text."""
    match = FRONTMATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1), text[match.end():]


def looks_like_frontmatter(block: str) -> bool:
    """Return True if a leading ``---`` block is metadata rather than markdown."""
    if any(p.search(block) for p in _MARKDOWN_PATTERNS):
        return False
    return bool(_KEY_VALUE_RE.search(block) or _REQUIRED_KEY_RE.search(block))


def normalize_tag(tag: str) -> str:
    return tag.strip().lstrip("#").strip()


def normalize_tags(raw: Any) -> list[str]:
    """Normalize tags given as a list, a JSON-array string or a single string.

    Entries are trimmed, stripped of leading ``#`` and deduplicated.
    """
    if isinstance(raw, str):
        text = raw.strip()
        entries: Any = [text]
        if text.startswith("[") and text.endswith("]"):
            try:
                parsed = json.loads(text)
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                entries = parsed
            elif isinstance(parsed, str):
                entries = [parsed]
        raw = entries

    if not isinstance(raw, list):
        return []

    tags = (normalize_tag(entry) for entry in raw if isinstance(entry, str))
    return list(dict.fromkeys(tag for tag in tags if tag))


def merge_tags(existing: Iterable[str], default_tag: str = "") -> list[str]:
    """Return ``existing`` plus ``default_tag``, normalized and deduplicated."""
    merged = list(existing)
    if default_tag:
        merged.append(default_tag)
    return normalize_tags(merged)


def parse_metadata(text: str) -> Optional[ChatMetadata]:
    """Parse the file-leading frontmatter of ``text``.

    Returns None when there is no frontmatter, it is not a YAML mapping, or it
    lacks an ``id``. Every other field falls back to a default.
    """
    block, _ = split_frontmatter(text)
    if block is None:
        return None

    try:
        parsed = yaml.safe_load(block)
    except yaml.YAMLError as e:
        logger.debug("Unparseable frontmatter: %s", e)
        return None

    if not isinstance(parsed, dict):
        return None

    chat_id = parsed.get("id")
    if chat_id is None or str(chat_id).strip() == "":
        return None
    chat_id = str(chat_id).strip()

    now = now_iso()
    font_size = parsed.get("chatFontSize")
    agent_mode = parsed.get("agentMode")

    return ChatMetadata(
        id=chat_id,
        model=str(parsed.get("model") or ""),
        created=_coerce_timestamp(parsed.get("created"), now),
        last_modified=_coerce_timestamp(parsed.get("lastModified"), now),
        title=str(parsed.get("title") or chat_id),
        version=_coerce_version(parsed.get("version")),
        tags=normalize_tags(parsed.get("tags")),
        context_files=_parse_context_files(parsed.get("context_files")),
        system_prompt=_parse_system_prompt(parsed),
        chat_font_size=font_size if font_size in ("small", "medium", "large") else None,
        agent_mode=agent_mode if isinstance(agent_mode, bool) else True,
    )


def serialize_metadata(meta: ChatMetadata) -> str:
    """Render ``meta`` as a frontmatter block, including both ``---`` lines."""
    data: dict[str, Any] = {
        "id": meta.id,
        "model": meta.model,
        "created": meta.created,
        "lastModified": meta.last_modified,
        "title": meta.title,
        "version": meta.version,
    }
    if meta.tags:
        data["tags"] = list(meta.tags)
    if meta.context_files:
        data["context_files"] = [{"path": f.path, "type": f.type} for f in meta.context_files]

    system_message: dict[str, str] = {"type": meta.system_prompt.type}
    if meta.system_prompt.type == "custom" and meta.system_prompt.path:
        system_message["path"] = meta.system_prompt.path
    data["systemMessage"] = system_message

    if meta.chat_font_size:
        data["chatFontSize"] = meta.chat_font_size
    data["agentMode"] = meta.agent_mode

    body = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)
    return f"---\n{body}---\n"


# ── Private helpers ──────────────────────────────────────────────


def _format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _coerce_timestamp(value: Any, default: str) -> str:
    # YAML resolves unquoted ISO timestamps to datetime objects.
    if isinstance(value, datetime):
        return _format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _coerce_version(value: Any) -> int:
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


def _strip_wikilink(path: str) -> str:
    return _WIKILINK_RE.sub(r"\1", path.strip())


def _parse_context_files(raw: Any) -> list[ContextFile]:
    if not isinstance(raw, list):
        return []

    files = []
    for entry in raw:
        if isinstance(entry, str):
            context_file = ContextFile.from_path(entry.strip())
        elif isinstance(entry, dict) and entry.get("path"):
            file_type = entry.get("type")
            context_file = ContextFile(
                path=str(entry["path"]).strip(),
                type=file_type if file_type in ("source", "extraction") else "source",
            )
        else:
            continue
        if context_file.path:
            files.append(context_file)
    return files


def _parse_system_prompt(parsed: dict) -> SystemPrompt:
    raw = parsed.get("systemMessage")
    if isinstance(raw, dict):
        prompt_type = str(raw.get("type") or "").lower()
        if prompt_type not in SYSTEM_PROMPT_TYPES:
            return SystemPrompt()
        path = raw.get("path")
        if prompt_type == "custom" and isinstance(path, str) and path.strip():
            return SystemPrompt(type="custom", path=_strip_wikilink(path))
        return SystemPrompt(type=prompt_type)

    # Files written before systemMessage existed stored only a custom prompt path.
    legacy_path = parsed.get("customPromptFilePath")
    if isinstance(legacy_path, str) and legacy_path.strip():
        return SystemPrompt(type="custom", path=_strip_wikilink(legacy_path))
    return SystemPrompt()
