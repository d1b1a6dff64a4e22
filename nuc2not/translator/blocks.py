"""
Block translator for nuc2not.

This module maps the cached SourceBlock tree of a page onto Notion block JSON.
Translation is total: every source node yields at least one destination block,
constructs Notion cannot express are rendered with reduced fidelity and
reported as TranslationDegraded notices, and media is replaced by placeholder
callouts for a human to upload. Text that needs more rich text objects than
one block may hold continues in the blocks that follow.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional
from urllib.parse import unquote

from ..errors import TranslationDegraded
from ..importers.markdown import NUCLINO_FILE_URL
from ..models import SourceBlock, TextRun
from .rich_text import (
    LINKABLE_URL, MAX_RICH_TEXT_ITEMS, chunk_rich_text, clamp_rich_text, flatten_rich_text, plain, to_rich_text
)


DEFAULT_MAX_DEPTH = 4

FLATTEN_INDENT = "    "
FLATTEN_MARKER = "- "

MEDIA_ICON = "📎"

NOTION_LANGUAGES = {
    "abap", "arduino", "bash", "basic", "c", "clojure", "coffeescript", "c++", "c#",
    "css", "dart", "diff", "docker", "elixir", "elm", "erlang", "flow", "fortran",
    "f#", "gherkin", "glsl", "go", "graphql", "groovy", "haskell", "html", "java",
    "javascript", "json", "julia", "kotlin", "latex", "less", "lisp", "livescript",
    "lua", "makefile", "markdown", "markup", "matlab", "mermaid", "nix",
    "objective-c", "ocaml", "pascal", "perl", "php", "plain text", "powershell",
    "prolog", "protobuf", "python", "r", "reason", "ruby", "rust", "sass", "scala",
    "scheme", "scss", "shell", "sql", "swift", "typescript", "vb.net", "verilog",
    "vhdl", "visual basic", "webassembly", "xml", "yaml", "java/c/c++/c#",
}

LANGUAGE_ALIASES = {
    "py": "python", "python3": "python",
    "js": "javascript", "jsx": "javascript", "node": "javascript",
    "ts": "typescript", "tsx": "typescript",
    "sh": "shell", "zsh": "shell", "console": "shell",
    "ps1": "powershell", "pwsh": "powershell",
    "yml": "yaml",
    "md": "markdown",
    "cpp": "c++", "cxx": "c++", "hpp": "c++",
    "cs": "c#", "csharp": "c#",
    "fs": "f#", "fsharp": "f#",
    "rb": "ruby",
    "rs": "rust",
    "golang": "go",
    "kt": "kotlin",
    "objc": "objective-c",
    "tex": "latex",
    "dockerfile": "docker",
    "make": "makefile",
    "proto": "protobuf",
    "htm": "html",
    "wasm": "webassembly",
    "vb": "visual basic",
    "text": "plain text", "txt": "plain text", "plaintext": "plain text",
}

# Kinds whose Notion counterpart accepts nested children.
CONTAINERS = {
    "paragraph": "paragraph",
    "bulleted_list_item": "bulleted_list_item",
    "numbered_list_item": "numbered_list_item",
    "to_do": "to_do",
    "quote": "quote",
}


def normalize_language(language: Optional[str]) -> str:
    """Map a fence info string onto Notion's code language list."""
    name = (language or "").strip().lower()
    name = LANGUAGE_ALIASES.get(name, name)
    return name if name in NOTION_LANGUAGES else "plain text"


def descendant_text(node: SourceBlock) -> str:
    """All text in a subtree, one line per block that has any."""
    parts = []
    if node.plain_text:
        parts.append(node.plain_text)
    for key in ("value", "expression", "url"):
        if isinstance(node.attrs.get(key), str):
            parts.append(node.attrs[key])
    for child in node.children:
        text = descendant_text(child)
        if text:
            parts.append(text)
    return "\n".join(parts)


def count_blocks(blocks: List[Dict]) -> int:
    """Number of blocks in a destination tree, nested ones included."""
    total = 0
    for block in blocks:
        total += 1
        total += count_blocks(block.get(block["type"], {}).get("children", []))
    return total


@dataclass
class MediaPlaceholder:
    """
    A media file that has to be uploaded by hand.
    """
    media_id: str
    filename: str
    placement: str


@dataclass
class Translation:
    """
    Result of translating one page.
    """
    blocks: List[Dict] = field(default_factory=list)
    media: List[MediaPlaceholder] = field(default_factory=list)
    degraded: List[TranslationDegraded] = field(default_factory=list)

    @property
    def block_count(self) -> int:
        return count_blocks(self.blocks)


class BlockTranslator:
    """
    Translates SourceBlock trees into Notion block JSON.

    One instance may be reused across pages; :meth:`translate_page` resets the
    collected media and degradation notices on every call.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, link_map: Optional[Dict[str, str]] = None):
        """
        Initialize the translator.

        Args:
            max_depth: Deepest nesting level rendered natively; deeper
                descendants are flattened into indented sibling paragraphs
            link_map: Destination URL keyed by source item id, for rewriting
                links between migrated pages
        """
        if max_depth < 1:
            raise ValueError(f"max_depth must be at least 1: {max_depth}")
        self.max_depth = max_depth
        self.link_map = dict(link_map or {})
        self._media: List[MediaPlaceholder] = []
        self._degraded: List[TranslationDegraded] = []
        self._linked_media: Dict[str, str] = {}
        self._context = ""

        self._handlers: Dict[str, Callable[[SourceBlock, int], List[Dict]]] = {
            "paragraph": self._container,
            "bulleted_list_item": self._container,
            "numbered_list_item": self._container,
            "to_do": self._container,
            "quote": self._container,
            "heading": self._heading,
            "code": self._code,
            "divider": self._divider,
            "equation": self._equation,
            "image": self._image,
            "file": self._file,
            "table": self._table,
            "html": self._html,
        }

    def translate_page(self, blocks: List[SourceBlock]) -> Translation:
        """
        Translate the content of one page.

        Args:
            blocks: Top-level content blocks of the cached item

        Returns:
            Translation holding the destination blocks in source order plus
            every media placeholder and degradation notice produced
        """
        self._media = []
        self._degraded = []
        self._linked_media = {}
        self._context = ""

        result: List[Dict] = []
        for block in blocks:
            result.extend(self.translate(block, 0))

        for notice in self._degraded:
            logging.warning(f"Translation degraded: {notice}")

        return Translation(blocks=result, media=list(self._media), degraded=list(self._degraded))

    def translate(self, node: SourceBlock, depth: int = 0) -> List[Dict]:
        """
        Translate one node and its descendants.

        Args:
            node: The source block
            depth: Nesting depth of ``node``, 0 for page top level

        Returns:
            A non-empty list of destination blocks; the node's own block comes
            first, followed by any descendants that had to be placed beside it
            and a placeholder for every source file its text linked to
        """
        enclosing, self._linked_media = self._linked_media, {}
        try:
            handler = self._handlers.get(node.kind)
            blocks = handler(node, depth) if handler else self._unknown(node)
            for media_id, filename in self._linked_media.items():
                blocks.append(self._placeholder(media_id, filename))
        finally:
            self._linked_media = enclosing
        return blocks

    # Helpers

    def _rich_text(self, runs: List[TextRun]) -> List[Dict]:
        return clamp_rich_text(to_rich_text(self._detach_media_links(runs), self.link_map))

    def _text_chunks(self, runs: List[TextRun]) -> List[List[Dict]]:
        """Rich text for ``runs``, cut into arrays a single block accepts."""
        return chunk_rich_text(self._rich_text(runs))

    def _detach_media_links(self, runs: List[TextRun]) -> List[TextRun]:
        """
        Drop links to source files, which only open with source credentials.

        The linked files are collected so a placeholder follows the block.
        """
        detached = []
        for run in runs:
            media = NUCLINO_FILE_URL.search(run.link) if run.link else None
            if media:
                self._linked_media.setdefault(media.group('id'), unquote(media.group('name')))
                run = run.model_copy(update={"link": None})
            detached.append(run)
        return detached

    @staticmethod
    def _paragraphs(chunks: List[List[Dict]]) -> List[Dict]:
        return [{"type": "paragraph", "paragraph": {"rich_text": chunk}} for chunk in chunks]

    def _degrade(self, kind: str, reason: str) -> None:
        self._degraded.append(TranslationDegraded(kind, reason))

    def _remember(self, node: SourceBlock) -> None:
        text = node.plain_text.strip()
        if text:
            self._context = text[:60]

    def _siblings(self, children: List[SourceBlock], depth: int) -> List[Dict]:
        """Children of a block that cannot hold any, placed after it at the same depth."""
        blocks: List[Dict] = []
        for child in children:
            blocks.extend(self.translate(child, depth))
        return blocks

    def _nested(self, children: List[SourceBlock], depth: int):
        """
        Translate the children of a container at ``depth``.

        Returns:
            Tuple of (children to nest, blocks to place after the container)
        """
        if not children:
            return [], []
        if depth + 1 < self.max_depth:
            nested: List[Dict] = []
            for child in children:
                nested.extend(self.translate(child, depth + 1))
            return nested, []

        flattened: List[Dict] = []
        for child in children:
            flattened.extend(self._flatten(child, 1))
        return [], flattened

    def _flatten(self, node: SourceBlock, extra_depth: int) -> List[Dict]:
        """Render a node nested past max_depth as an indented paragraph."""
        prefix = FLATTEN_INDENT * extra_depth + FLATTEN_MARKER

        if node.kind in CONTAINERS or node.kind == "heading":
            self._remember(node)
            blocks = self._paragraphs(self._text_chunks([TextRun(text=prefix)] + node.text))
        elif node.kind == "table":
            return self.translate(node, self.max_depth - 1)
        else:
            blocks = self.translate(node.model_copy(update={"children": []}), self.max_depth - 1)

        for child in node.children:
            blocks.extend(self._flatten(child, extra_depth + 1))
        return blocks

    # Handlers

    def _container(self, node: SourceBlock, depth: int) -> List[Dict]:
        self._remember(node)
        block_type = CONTAINERS[node.kind]
        chunks = self._text_chunks(node.text)
        body: Dict = {"rich_text": chunks[0]}
        if node.kind == "to_do":
            body["checked"] = bool(node.attrs.get("checked", False))

        continued = self._paragraphs(chunks[1:])
        children, after = self._nested(node.children, depth)
        # Continued text precedes the children.
        if node.children and depth + 1 < self.max_depth:
            children = continued + children
        else:
            after = continued + after

        if children:
            body["children"] = children
        return [{"type": block_type, block_type: body}] + after

    def _heading(self, node: SourceBlock, depth: int) -> List[Dict]:
        self._remember(node)
        level = node.attrs.get("level", 1)
        level = min(max(int(level), 1), 3)
        block_type = f"heading_{level}"
        chunks = self._text_chunks(node.text)
        block = {"type": block_type, block_type: {"rich_text": chunks[0]}}
        return [block] + self._paragraphs(chunks[1:]) + self._siblings(node.children, depth)

    def _code_blocks(self, text: str, language: str) -> List[Dict]:
        return [
            {"type": "code", "code": {"rich_text": chunk, "language": language}}
            for chunk in chunk_rich_text(plain(text))
        ]

    def _code(self, node: SourceBlock, depth: int) -> List[Dict]:
        language = normalize_language(node.attrs.get("language"))
        return self._code_blocks(node.plain_text, language) + self._siblings(node.children, depth)

    def _divider(self, node: SourceBlock, depth: int) -> List[Dict]:
        return [{"type": "divider", "divider": {}}] + self._siblings(node.children, depth)

    def _equation(self, node: SourceBlock, depth: int) -> List[Dict]:
        expression = node.attrs.get("expression") or node.plain_text
        block = {"type": "equation", "equation": {"expression": expression}}
        return [block] + self._siblings(node.children, depth)

    def _image(self, node: SourceBlock, depth: int) -> List[Dict]:
        if node.attrs.get("media_id"):
            return [self._media_placeholder(node)] + self._siblings(node.children, depth)

        url = node.attrs.get("url", "")
        alt = node.attrs.get("alt") or ""
        if not LINKABLE_URL.match(url) or url.lower().startswith("mailto:"):
            self._degrade("image", f"unsupported image URL '{url[:80]}'")
            return self._paragraphs(chunk_rich_text(plain(alt or url))) + self._siblings(node.children, depth)

        body: Dict = {"type": "external", "external": {"url": url}}
        if alt:
            body["caption"] = plain(alt)[:MAX_RICH_TEXT_ITEMS]
        return [{"type": "image", "image": body}] + self._siblings(node.children, depth)

    def _file(self, node: SourceBlock, depth: int) -> List[Dict]:
        if node.attrs.get("media_id"):
            return [self._media_placeholder(node)] + self._siblings(node.children, depth)

        caption = node.attrs.get("caption") or node.attrs.get("filename") or node.attrs.get("url", "")
        runs = [TextRun(text=caption, link=node.attrs.get("url"))]
        return self._paragraphs(self._text_chunks(runs)) + self._siblings(node.children, depth)

    def _media_placeholder(self, node: SourceBlock) -> Dict:
        media_id = node.attrs["media_id"]
        return self._placeholder(media_id, node.attrs.get("filename") or media_id)

    def _placeholder(self, media_id: str, filename: str) -> Dict:
        """Callout standing in for media the Notion API cannot ingest."""
        if self._context:
            placement = f"at the {MEDIA_ICON} {filename} placeholder, after \"{self._context}\""
        else:
            placement = f"at the {MEDIA_ICON} {filename} placeholder, at the top of the page"
        self._media.append(MediaPlaceholder(media_id=media_id, filename=filename, placement=placement))

        return {"type": "callout", "callout": {
            "rich_text": plain(f"{filename}: upload this file here manually, then delete this note."),
            "icon": {"type": "emoji", "emoji": MEDIA_ICON},
            "color": "gray_background",
        }}

    def _table(self, node: SourceBlock, depth: int) -> List[Dict]:
        rows = [row for row in node.children if row.kind == "table_row"]
        if not rows:
            self._degrade("table", "table without rows")
            return self._unknown_paragraphs(node)

        width = max(len(row.children) for row in rows) or 1
        table_rows = []
        for row in rows:
            cells = [self._cell(cell) for cell in row.children]
            cells.extend([] for _ in range(width - len(cells)))
            table_rows.append({"type": "table_row", "table_row": {"cells": cells}})

        return [{"type": "table", "table": {
            "table_width": width,
            "has_column_header": bool(node.attrs.get("has_header", False)),
            "has_row_header": False,
            "children": table_rows,
        }}]

    def _cell(self, cell: SourceBlock) -> List[Dict]:
        rich_text = self._rich_text(cell.text)
        if len(rich_text) > MAX_RICH_TEXT_ITEMS:
            self._degrade("table_cell", "cell styling dropped to fit the rich text limit")
            rich_text = flatten_rich_text(rich_text)[:MAX_RICH_TEXT_ITEMS]
        return rich_text

    def _html(self, node: SourceBlock, depth: int) -> List[Dict]:
        self._degrade("html", "raw HTML rendered as a code block")
        value = node.attrs.get("value") or node.plain_text
        return self._code_blocks(value, "plain text") + self._siblings(node.children, depth)

    def _unknown(self, node: SourceBlock) -> List[Dict]:
        self._degrade(node.kind, "unsupported block kind rendered as plain text")
        return self._unknown_paragraphs(node)

    def _unknown_paragraphs(self, node: SourceBlock) -> List[Dict]:
        return self._paragraphs(chunk_rich_text(plain(descendant_text(node))))


def translate(node: SourceBlock, depth: int = 0, max_depth: int = DEFAULT_MAX_DEPTH,
              link_map: Optional[Dict[str, str]] = None) -> List[Dict]:
    """
    Translate a single source node with a throwaway translator.

    Returns:
        A non-empty list of Notion block dicts
    """
    return BlockTranslator(max_depth=max_depth, link_map=link_map).translate(node, depth)
