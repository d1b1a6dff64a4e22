"""
Rich text conversion for Notion blocks.

Notion caps a single rich text object at 2000 characters, so longer runs are
split into consecutive objects carrying the same annotations. A rich text
array holds at most 100 objects; callers cut longer arrays with
chunk_rich_text and continue the text in further blocks.
"""

import copy
import re
from typing import Dict, List, Optional

from ..models import TextRun


MAX_TEXT_LENGTH = 2000
MAX_RICH_TEXT_ITEMS = 100

LINKABLE_URL = re.compile(r'^(https?://|mailto:)', re.IGNORECASE)


def annotations(run: TextRun) -> Dict:
    return {
        "bold": run.bold,
        "italic": run.italic,
        "strikethrough": run.strikethrough,
        "underline": False,
        "code": run.code,
        "color": "default",
    }


def split_text(text: str, limit: int = MAX_TEXT_LENGTH) -> List[str]:
    """Cut ``text`` into consecutive pieces of at most ``limit`` characters."""
    if not text:
        return [""]
    return [text[i:i + limit] for i in range(0, len(text), limit)]


def remap_link(url: Optional[str], link_map: Optional[Dict[str, str]] = None) -> Optional[str]:
    """
    Rewrite a link to a migrated source item so it points at its new page.

    Args:
        url: Link target as found in the source
        link_map: Destination URL keyed by source item id

    Returns:
        The destination URL when the link mentions a migrated item, the
        original URL when it is linkable, otherwise None
    """
    if not url:
        return None
    for source_id, destination_url in (link_map or {}).items():
        if source_id and source_id in url:
            return destination_url
    # Notion rejects relative and custom-scheme links outright.
    return url if LINKABLE_URL.match(url) else None


def to_rich_text(runs: List[TextRun], link_map: Optional[Dict[str, str]] = None) -> List[Dict]:
    """
    Convert text runs into a Notion rich text array.

    Args:
        runs: Styled runs in reading order
        link_map: Destination URL keyed by source item id, for link remapping

    Returns:
        Rich text objects, none longer than MAX_TEXT_LENGTH characters
    """
    rich_text: List[Dict] = []
    for run in runs:
        if not run.text:
            continue

        if run.equation:
            rich_text.append({
                "type": "equation",
                "equation": {"expression": run.text},
                "annotations": annotations(run),
            })
            continue

        link = remap_link(run.link, link_map)
        for piece in split_text(run.text):
            rich_text.append({
                "type": "text",
                "text": {"content": piece, "link": {"url": link} if link else None},
                "annotations": annotations(run),
            })
    return rich_text


def plain(text: str) -> List[Dict]:
    """Rich text for unstyled literal text."""
    return to_rich_text([TextRun(text=text)])


def clamp_rich_text(rich_text: List[Dict]) -> List[Dict]:
    """Merge adjacent text objects with the same styling and link while they fit in one object."""
    merged: List[Dict] = []
    for item in rich_text:
        previous = merged[-1] if merged else None
        if (previous is not None
                and item["type"] == "text" and previous["type"] == "text"
                and previous["annotations"] == item["annotations"]
                and previous["text"]["link"] == item["text"]["link"]
                and len(previous["text"]["content"]) + len(item["text"]["content"]) <= MAX_TEXT_LENGTH):
            previous["text"]["content"] += item["text"]["content"]
        else:
            merged.append(copy.deepcopy(item))
    return merged


def chunk_rich_text(rich_text: List[Dict], size: int = MAX_RICH_TEXT_ITEMS) -> List[List[Dict]]:
    """
    Cut a rich text array into arrays Notion accepts.

    Returns:
        At least one array; every array after the first continues the text
    """
    clamped = clamp_rich_text(rich_text)
    if not clamped:
        return [[]]
    return [clamped[i:i + size] for i in range(0, len(clamped), size)]


def flatten_rich_text(rich_text: List[Dict]) -> List[Dict]:
    """The same text without styling, in as few objects as possible."""
    content = "".join(
        item["text"]["content"] if item["type"] == "text" else item["equation"]["expression"]
        for item in rich_text
    )
    return plain(content) if content else []
