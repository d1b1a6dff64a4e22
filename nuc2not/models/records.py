"""
Item and bookkeeping models for nuc2not.

This module defines what the cache stores about each source item and what the
migrator records about each migration attempt.
"""

from enum import Enum
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from .canonical import SourceBlock


class ItemKind(str, Enum):
    PAGE = "page"
    COLLECTION = "collection"


class WorkspaceRef(BaseModel):
    """
    A source workspace as returned by the source client.
    """

    id: str
    name: str
    child_ids: List[str] = Field(
        default_factory=list,
        description="Ordered ids of the workspace's top-level items"
    )


class TreeEntry(BaseModel):
    """
    One row of a flat workspace listing; callers rebuild the hierarchy.
    """

    id: str
    parent_id: Optional[str] = None
    kind: ItemKind
    title: str = ""


class MediaRef(BaseModel):
    """
    A media attachment referenced by a cached item.
    """

    media_id: str
    filename: str
    local_path: Optional[str] = Field(
        default=None,
        description="Path of the downloaded blob; only set after a successful download"
    )


class CachedItem(BaseModel):
    """
    One source page or collection, fully hydrated.
    """

    id: str = Field(
        ...,
        description="Source-assigned identifier, unique within the source"
    )

    workspace_id: Optional[str] = None

    parent_id: Optional[str] = Field(
        default=None,
        description="Id of the containing collection; None for workspace top level"
    )

    title: str = ""

    kind: ItemKind = ItemKind.PAGE

    created_at: Optional[datetime] = None

    updated_at: Optional[datetime] = None

    author: Optional[str] = Field(
        default=None,
        description="Best-effort identity of the creator"
    )

    url: Optional[str] = Field(
        default=None,
        description="Source URL of the item, used to rewrite internal links"
    )

    content_blocks: List[SourceBlock] = Field(default_factory=list)

    media_refs: List[MediaRef] = Field(default_factory=list)

    def media_path(self, media_id: str) -> Optional[str]:
        """Local blob path for ``media_id``, if it was downloaded."""
        for ref in self.media_refs:
            if ref.media_id == media_id:
                return ref.local_path
        return None


class MigrationStatus(str, Enum):
    PENDING = "pending"
    CREATED = "created"
    FAILED = "failed"


class MigrationRecord(BaseModel):
    """
    Correspondence between a cached item and its destination page.
    """

    item_id: str

    destination_page_id: Optional[str] = Field(
        default=None,
        description="Set as soon as the destination page exists, even if appending later fails"
    )

    destination_url: Optional[str] = None

    status: MigrationStatus = MigrationStatus.PENDING

    attempts: int = 0

    blocks_appended: int = Field(
        default=0,
        description="Top-level translated blocks already appended to the destination page"
    )

    last_attempt_at: datetime = Field(default_factory=datetime.now)

    error: Optional[str] = None
