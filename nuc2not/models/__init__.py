"""Data models for nuc2not."""

from .canonical import SourceBlock, TextRun
from .records import (
    CachedItem,
    ItemKind,
    MediaRef,
    MigrationRecord,
    MigrationStatus,
    TreeEntry,
    WorkspaceRef,
)

__all__ = [
    "SourceBlock",
    "TextRun",
    "CachedItem",
    "ItemKind",
    "MediaRef",
    "MigrationRecord",
    "MigrationStatus",
    "TreeEntry",
    "WorkspaceRef"
]
