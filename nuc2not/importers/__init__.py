"""Source clients and the Markdown parser that feeds the cache."""

from .base import BaseSource
from .markdown import MarkdownParser, collect_media, parse_inline, parse_markdown
from .mock import MockSource
from .nuclino import NuclinoClient

__all__ = [
    "BaseSource",
    "MarkdownParser",
    "MockSource",
    "NuclinoClient",
    "collect_media",
    "parse_inline",
    "parse_markdown",
]
