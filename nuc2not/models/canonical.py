"""
Canonical source-document models for nuc2not.

This module defines the block tree every source page is parsed into before it
is cached. The translator only ever sees these structures, never raw Markdown.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field


class TextRun(BaseModel):
    """
    A span of inline text sharing one set of styling flags.
    """

    text: str = Field(
        ...,
        description="The literal text of the run"
    )

    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    code: bool = False
    equation: bool = Field(
        default=False,
        description="True when the run is inline math rather than prose"
    )

    link: Optional[str] = Field(
        default=None,
        description="Target URL when the run is a hyperlink"
    )

    def same_style(self, other: "TextRun") -> bool:
        """True when both runs would render with identical annotations."""
        return (self.bold, self.italic, self.strikethrough, self.code, self.equation, self.link) == \
            (other.bold, other.italic, other.strikethrough, other.code, other.equation, other.link)


class SourceBlock(BaseModel):
    """
    The universal structure for one node of a cached page's content.

    Lists are modelled as chains: a list item's nested items are its children.
    Tables hold ``table_row`` children whose children are ``table_cell`` blocks.
    """

    kind: str = Field(
        ...,
        description="Block kind tag, e.g. 'paragraph', 'heading', 'bulleted_list_item'"
    )

    text: List[TextRun] = Field(
        default_factory=list,
        description="Inline text runs of this block, in order"
    )

    children: List['SourceBlock'] = Field(
        default_factory=list,
        description="Nested blocks, in source order"
    )

    attrs: Dict[str, Any] = Field(
        default_factory=dict,
        description="Kind-specific attributes (heading level, code language, media id, ...)"
    )

    @property
    def plain_text(self) -> str:
        """Concatenated text of this block's own runs."""
        return "".join(run.text for run in self.text)


# Enable forward references for self-referencing model
SourceBlock.model_rebuild()
