"""Pure translation of cached source blocks into Notion blocks."""

from .blocks import (
    BlockTranslator,
    MediaPlaceholder,
    Translation,
    count_blocks,
    normalize_language,
    translate,
)
from .rich_text import MAX_TEXT_LENGTH, remap_link, to_rich_text

__all__ = [
    "BlockTranslator",
    "MAX_TEXT_LENGTH",
    "MediaPlaceholder",
    "Translation",
    "count_blocks",
    "normalize_language",
    "remap_link",
    "to_rich_text",
    "translate",
]
