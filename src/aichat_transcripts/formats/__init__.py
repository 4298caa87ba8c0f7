"""On-disk chat formats and the dispatch from detected format to parser."""

from typing import Callable, Optional

from ..core import ChatDocument
from .detect import ChatFormat, detect_format
from .legacy import parse_legacy
from .modern import parse_modern

_PARSERS: dict[ChatFormat, Callable[[str, str], Optional[ChatDocument]]] = {
    ChatFormat.MODERN: parse_modern,
    ChatFormat.LEGACY: parse_legacy,
}


def parse_document(text: str, fallback_id: str) -> Optional[ChatDocument]:
    """Parse a chat file of any supported generation.

    Returns None for text that is not a chat. ``fallback_id`` (usually the
    file stem) is used when the file itself carries no id.
    """
    parser = _PARSERS.get(detect_format(text))
    if parser is None:
        return None
    return parser(text, fallback_id)
