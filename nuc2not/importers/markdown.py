"""
Markdown parser for Nuclino item content.

Nuclino returns page bodies as Markdown. This module turns that text into the
SourceBlock tree the cache stores: block structure is recognised line by line,
list nesting from indentation, and inline styling with a single tokenizing
regex.
"""

import re
from typing import List, Optional, Tuple
from urllib.parse import unquote

from ..models import SourceBlock, TextRun


NUCLINO_FILE_URL = re.compile(
    r'https?://files\.nuclino\.com/files/(?P<id>[0-9a-fA-F-]{36})/(?P<name>[^/?#\s)]+)'
)

FENCE = re.compile(r'^\s*(```|~~~)\s*([\w+#.-]*)\s*$')
HEADING = re.compile(r'^(#{1,6})\s+(.*?)(?:\s+#+)?\s*$')
DIVIDER = re.compile(r'^\s{0,3}([-*_])(\s*\1){2,}\s*$')
LIST_ITEM = re.compile(r'^(\s*)([-*+]|\d+[.)])\s+(.*)$')
TASK = re.compile(r'^\[([ xX])\]\s+(.*)$')
QUOTE = re.compile(r'^\s{0,3}>\s?(.*)$')
TABLE_SEPARATOR = re.compile(r'^\s*\|?\s*:?-+:?\s*(\|\s*:?-+:?\s*)*\|?\s*$')
HTML_START = re.compile(r'^\s*<(?:[a-zA-Z][\w-]*(?=[\s/>]|$)|!--|/[a-zA-Z])')
IMAGE = re.compile(r'!\[(?P<alt>[^\]]*)\]\((?P<url>[^)\s]+)(?:\s+"[^"]*")?\)')
LONE_LINK = re.compile(r'^\s*\[(?P<text>[^\]]+)\]\((?P<url>[^)\s]+)\)\s*$')

INLINE = re.compile(
    r'(?P<escape>\\(?P<escaped>[\\`*_{}\[\]()#+\-.!|~$<>]))'
    r'|(?P<code>`(?P<code_text>[^`]+)`)'
    r'|(?P<link>\[(?P<link_text>[^\]]+)\]\((?P<link_url>[^)\s]+)(?:\s+"[^"]*")?\))'
    r'|(?P<autolink><(?P<autolink_url>https?://[^>\s]+)>)'
    r'|(?P<bold>\*\*(?P<bold_star>.+?)\*\*|__(?P<bold_under>.+?)__)'
    r'|(?P<strike>~~(?P<strike_text>.+?)~~)'
    r'|(?P<italic>\*(?P<italic_star>[^\s*](?:.*?[^\s*])?)\*'
    r'|(?<!\w)_(?P<italic_under>[^\s_](?:.*?[^\s_])?)_(?!\w))'
    r'|(?P<math>\$(?P<math_text>[^\s$](?:[^$\n]*?[^\s$])?)\$)'
)


def indent_width(prefix: str) -> int:
    """Columns of leading whitespace, counting a tab as four spaces."""
    return len(prefix.replace('\t', '    '))


def parse_inline(text: str, base: Optional[TextRun] = None) -> List[TextRun]:
    """
    Split inline Markdown into styled text runs.

    Args:
        text: Inline Markdown (no block syntax)
        base: Style inherited from an enclosing span

    Returns:
        Runs in reading order; adjacent runs with equal style are merged
    """
    style = base or TextRun(text="")
    runs: List[TextRun] = []
    last_end = 0

    for match in INLINE.finditer(text):
        if match.start() > last_end:
            runs.append(style.model_copy(update={"text": text[last_end:match.start()]}))
        last_end = match.end()

        if match.group('escape'):
            runs.append(style.model_copy(update={"text": match.group('escaped')}))
        elif match.group('code'):
            runs.append(style.model_copy(update={"text": match.group('code_text'), "code": True}))
        elif match.group('link'):
            linked = style.model_copy(update={"link": match.group('link_url')})
            runs.extend(parse_inline(match.group('link_text'), linked))
        elif match.group('autolink'):
            url = match.group('autolink_url')
            runs.append(style.model_copy(update={"text": url, "link": url}))
        elif match.group('bold'):
            inner = match.group('bold_star') or match.group('bold_under')
            runs.extend(parse_inline(inner, style.model_copy(update={"bold": True})))
        elif match.group('strike'):
            runs.extend(parse_inline(match.group('strike_text'), style.model_copy(update={"strikethrough": True})))
        elif match.group('italic'):
            inner = match.group('italic_star') or match.group('italic_under')
            runs.extend(parse_inline(inner, style.model_copy(update={"italic": True})))
        elif match.group('math'):
            runs.append(style.model_copy(update={"text": match.group('math_text'), "equation": True}))

    if last_end < len(text):
        runs.append(style.model_copy(update={"text": text[last_end:]}))

    return merge_runs(runs)


def merge_runs(runs: List[TextRun]) -> List[TextRun]:
    """Join neighbouring runs that share a style and drop empty ones."""
    merged: List[TextRun] = []
    for run in runs:
        if not run.text:
            continue
        if merged and merged[-1].same_style(run):
            merged[-1] = merged[-1].model_copy(update={"text": merged[-1].text + run.text})
        else:
            merged.append(run)
    return merged


class MarkdownParser:
    """
    Converts one Markdown document into a list of SourceBlocks.

    Media hosted by the source service is recognised through ``media_pattern``,
    whose ``id`` and ``name`` groups become the block's ``media_id`` and
    ``filename`` attributes.
    """

    def __init__(self, media_pattern: re.Pattern = NUCLINO_FILE_URL):
        self.media_pattern = media_pattern

    def parse(self, text: str) -> List[SourceBlock]:
        lines = text.replace('\r\n', '\n').replace('\r', '\n').split('\n')
        return self._parse_lines(lines)

    # Block level

    def _parse_lines(self, lines: List[str]) -> List[SourceBlock]:
        blocks: List[SourceBlock] = []
        list_stack: List[Tuple[int, SourceBlock]] = []
        paragraph: List[str] = []
        blank_before = False
        i = 0

        def flush_paragraph():
            if paragraph:
                blocks.extend(self._paragraph_blocks('\n'.join(paragraph)))
                paragraph.clear()

        while i < len(lines):
            line = lines[i]

            if not line.strip():
                flush_paragraph()
                blank_before = True
                i += 1
                continue

            fence = FENCE.match(line)
            if fence:
                flush_paragraph()
                block, i = self._code_block(lines, i, fence)
                self._attach(blocks, list_stack, line, block)
                blank_before = False
                continue

            if line.strip() == '$$' or (line.strip().startswith('$$') and line.strip().endswith('$$')
                                        and len(line.strip()) > 4):
                flush_paragraph()
                list_stack.clear()
                block, i = self._math_block(lines, i)
                blocks.append(block)
                blank_before = False
                continue

            if DIVIDER.match(line):
                flush_paragraph()
                list_stack.clear()
                blocks.append(SourceBlock(kind="divider"))
                i += 1
                blank_before = False
                continue

            item = LIST_ITEM.match(line)
            if item:
                flush_paragraph()
                self._list_item(blocks, list_stack, item)
                i += 1
                blank_before = False
                continue

            if list_stack and line[:1] in (' ', '\t'):
                self._list_continuation(list_stack, line, blank_before)
                i += 1
                blank_before = False
                continue

            list_stack.clear()

            heading = HEADING.match(line)
            if heading:
                flush_paragraph()
                blocks.extend(self._text_block("heading", heading.group(2), {"level": len(heading.group(1))}))
                i += 1
                blank_before = False
                continue

            if QUOTE.match(line):
                flush_paragraph()
                block, i = self._quote_block(lines, i)
                blocks.append(block)
                blank_before = False
                continue

            if line.lstrip().startswith('|') and i + 1 < len(lines) and TABLE_SEPARATOR.match(lines[i + 1]):
                flush_paragraph()
                block, i = self._table_block(lines, i)
                blocks.append(block)
                blank_before = False
                continue

            if HTML_START.match(line) and not paragraph:
                block, i = self._html_block(lines, i)
                blocks.append(block)
                blank_before = False
                continue

            paragraph.append(line.strip())
            blank_before = False
            i += 1

        flush_paragraph()
        return blocks

    def _attach(self, blocks: List[SourceBlock], list_stack: List[Tuple[int, SourceBlock]],
                line: str, block: SourceBlock) -> None:
        """Nest an indented block under the open list item, or append it at top level."""
        indent = indent_width(line[:len(line) - len(line.lstrip())])
        while list_stack and list_stack[-1][0] >= indent:
            list_stack.pop()
        if list_stack:
            list_stack[-1][1].children.append(block)
        else:
            blocks.append(block)

    def _list_item(self, blocks: List[SourceBlock], list_stack: List[Tuple[int, SourceBlock]],
                   match: re.Match) -> None:
        indent = indent_width(match.group(1))
        marker = match.group(2)
        content = match.group(3)

        attrs = {}
        task = TASK.match(content)
        if task:
            kind = "to_do"
            attrs["checked"] = task.group(1) in ('x', 'X')
            content = task.group(2)
        elif marker[0].isdigit():
            kind = "numbered_list_item"
            attrs["start"] = int(marker[:-1])
        else:
            kind = "bulleted_list_item"

        text, images = self._split_images(content)
        block = SourceBlock(kind=kind, text=parse_inline(text), attrs=attrs, children=images)

        while list_stack and list_stack[-1][0] >= indent:
            list_stack.pop()
        if list_stack:
            list_stack[-1][1].children.append(block)
        else:
            blocks.append(block)
        list_stack.append((indent, block))

    def _list_continuation(self, list_stack: List[Tuple[int, SourceBlock]], line: str,
                           blank_before: bool) -> None:
        indent = indent_width(line[:len(line) - len(line.lstrip())])
        while len(list_stack) > 1 and list_stack[-1][0] >= indent:
            list_stack.pop()
        owner = list_stack[-1][1]
        content = line.strip()

        if blank_before or not owner.text:
            owner.children.extend(self._paragraph_blocks(content))
        else:
            owner.text = merge_runs(owner.text + [TextRun(text="\n")] + parse_inline(content))

    def _code_block(self, lines: List[str], start: int, fence: re.Match) -> Tuple[SourceBlock, int]:
        marker = fence.group(1)
        language = fence.group(2) or ""
        body: List[str] = []
        i = start + 1
        while i < len(lines) and lines[i].strip() != marker:
            body.append(lines[i])
            i += 1
        code = '\n'.join(body)
        block = SourceBlock(
            kind="code",
            text=[TextRun(text=code)] if code else [],
            attrs={"language": language}
        )
        return block, i + 1

    def _math_block(self, lines: List[str], start: int) -> Tuple[SourceBlock, int]:
        first = lines[start].strip()
        if first != '$$':
            return SourceBlock(kind="equation", attrs={"expression": first[2:-2].strip()}), start + 1

        body: List[str] = []
        i = start + 1
        while i < len(lines) and lines[i].strip() != '$$':
            body.append(lines[i])
            i += 1
        return SourceBlock(kind="equation", attrs={"expression": '\n'.join(body).strip()}), i + 1

    def _quote_block(self, lines: List[str], start: int) -> Tuple[SourceBlock, int]:
        inner: List[str] = []
        i = start
        while i < len(lines):
            match = QUOTE.match(lines[i])
            if not match:
                break
            inner.append(match.group(1))
            i += 1

        children = self._parse_lines(inner)
        text: List[TextRun] = []
        if children and children[0].kind == "paragraph":
            text = children.pop(0).text
        return SourceBlock(kind="quote", text=text, children=children), i

    def _table_block(self, lines: List[str], start: int) -> Tuple[SourceBlock, int]:
        rows = [self._table_row(lines[start])]
        i = start + 2
        while i < len(lines) and lines[i].lstrip().startswith('|'):
            rows.append(self._table_row(lines[i]))
            i += 1
        return SourceBlock(kind="table", children=rows, attrs={"has_header": True}), i

    @staticmethod
    def _table_row(line: str) -> SourceBlock:
        content = line.strip()
        if content.startswith('|'):
            content = content[1:]
        if content.endswith('|') and not content.endswith('\\|'):
            content = content[:-1]
        cells = re.split(r'(?<!\\)\|', content)
        return SourceBlock(
            kind="table_row",
            children=[SourceBlock(kind="table_cell", text=parse_inline(cell.strip())) for cell in cells]
        )

    @staticmethod
    def _html_block(lines: List[str], start: int) -> Tuple[SourceBlock, int]:
        body: List[str] = []
        i = start
        while i < len(lines) and lines[i].strip():
            body.append(lines[i])
            i += 1
        return SourceBlock(kind="html", attrs={"value": '\n'.join(body)}), i

    # Text-bearing blocks

    def _text_block(self, kind: str, content: str, attrs: dict) -> List[SourceBlock]:
        text, images = self._split_images(content)
        return [SourceBlock(kind=kind, text=parse_inline(text), attrs=attrs)] + images

    def _paragraph_blocks(self, content: str) -> List[SourceBlock]:
        """A paragraph, split around any images it embeds."""
        lone = LONE_LINK.match(content)
        if lone:
            media = self.media_pattern.search(lone.group('url'))
            if media:
                return [SourceBlock(kind="file", attrs={
                    "url": lone.group('url'),
                    "media_id": media.group('id'),
                    "filename": unquote(media.group('name')),
                    "caption": lone.group('text')
                })]

        blocks: List[SourceBlock] = []
        last_end = 0
        for match in IMAGE.finditer(content):
            before = content[last_end:match.start()].strip()
            if before:
                blocks.append(SourceBlock(kind="paragraph", text=parse_inline(before)))
            blocks.append(self._image_block(match))
            last_end = match.end()

        rest = content[last_end:].strip()
        if rest:
            blocks.append(SourceBlock(kind="paragraph", text=parse_inline(rest)))
        return blocks

    def _split_images(self, content: str) -> Tuple[str, List[SourceBlock]]:
        images = [self._image_block(match) for match in IMAGE.finditer(content)]
        return IMAGE.sub('', content).strip(), images

    def _image_block(self, match: re.Match) -> SourceBlock:
        url = match.group('url')
        attrs = {"url": url, "alt": match.group('alt')}
        media = self.media_pattern.search(url)
        if media:
            attrs["media_id"] = media.group('id')
            attrs["filename"] = unquote(media.group('name'))
        return SourceBlock(kind="image", attrs=attrs)


def parse_markdown(text: str, media_pattern: re.Pattern = NUCLINO_FILE_URL) -> List[SourceBlock]:
    """
    Parse a Markdown document into SourceBlocks.

    Args:
        text: The Markdown source
        media_pattern: Regex recognising URLs of media hosted by the source

    Returns:
        Top-level blocks in document order
    """
    return MarkdownParser(media_pattern).parse(text or "")


def collect_media(blocks: List[SourceBlock]) -> List[Tuple[str, str]]:
    """
    Every (media_id, filename) referenced in a block tree, first occurrence first.

    Covers media blocks and source file links inside text.
    """
    found: List[Tuple[str, str]] = []
    seen = set()

    def add(media_id: str, filename: str):
        if media_id not in seen:
            seen.add(media_id)
            found.append((media_id, filename))

    def walk(nodes: List[SourceBlock]):
        for node in nodes:
            media_id = node.attrs.get("media_id")
            if media_id:
                add(media_id, node.attrs.get("filename") or media_id)
            for run in node.text:
                linked = NUCLINO_FILE_URL.search(run.link) if run.link else None
                if linked:
                    add(linked.group('id'), unquote(linked.group('name')))
            walk(node.children)

    walk(blocks)
    return found
