"""
Cache builder for nuc2not.

This module pulls one source workspace into the local cache: the workspace
reference, every item in enumeration order, and the media each item embeds.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..database import CacheStore
from ..errors import NotFound, SourceError
from ..importers import BaseSource
from ..models import CachedItem, MediaRef, WorkspaceRef


@dataclass
class CacheSummary:
    """
    Outcome of one caching run.
    """
    workspace: str = ""
    items_listed: int = 0
    cached: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    media_downloaded: int = 0
    media_failed: int = 0

    def summary(self) -> str:
        lines = [
            "\n" + "=" * 60,
            f"CACHE SUMMARY: {self.workspace}",
            "=" * 60,
            f"  Items listed:       {self.items_listed}",
            f"  Items cached:       {len(self.cached)}",
            f"  Items failed:       {len(self.failed)}",
            f"  Media downloaded:   {self.media_downloaded}",
            f"  Media failed:       {self.media_failed}",
        ]
        if self.failed:
            lines.append(f"\n  ERRORS ({len(self.failed)}):")
            for item_id, error in list(self.failed.items())[:50]:
                lines.append(f"    • {item_id}: {error}")
            if len(self.failed) > 50:
                lines.append(f"    ... and {len(self.failed) - 50} more")
        lines.append("=" * 60)
        return "\n".join(lines)


class CacheBuilder:
    """
    Copies a source workspace into a CacheStore.

    Per-item source failures are logged and skipped; a StoreError aborts the run.
    """

    def __init__(self, source: BaseSource, store: CacheStore):
        """
        Initialize the cache builder.

        Args:
            source: Client for the source service
            store: Open cache store for the workspace
        """
        self.source = source
        self.store = store

    def build_cache(self, workspace: WorkspaceRef) -> CacheSummary:
        """
        Cache every item of ``workspace`` along with its media.

        Args:
            workspace: The workspace to pull

        Returns:
            CacheSummary with the cached and failed item ids
        """
        summary = CacheSummary(workspace=workspace.name)
        self.store.put_workspace(workspace)

        entries = self.source.list_tree(workspace)
        summary.items_listed = len(entries)
        logging.info(f"Caching {len(entries)} items from workspace '{workspace.name}'")

        for position, entry in enumerate(entries):
            try:
                item = self.source.get_item(entry.id)
            except (NotFound, SourceError) as e:
                logging.error(f"Failed to fetch item {entry.id} ('{entry.title}'): {e}")
                summary.failed[entry.id] = str(e)
                continue

            item = item.model_copy(update={
                "parent_id": entry.parent_id,
                "workspace_id": item.workspace_id or workspace.id,
            })
            item.media_refs = self._download_media(item, summary)

            self.store.put(item, position=position)
            summary.cached.append(item.id)
            logging.info(f"Cached [{position + 1}/{len(entries)}] '{item.title}' ({item.id})")

        return summary

    def _download_media(self, item: CachedItem, summary: CacheSummary) -> List[MediaRef]:
        """Download and store every media file of an item; failed ones are left out."""
        stored: List[MediaRef] = []
        for ref in item.media_refs:
            try:
                data = self.source.download_media(ref.media_id)
            except (NotFound, SourceError) as e:
                logging.warning(f"Could not download '{ref.filename}' ({ref.media_id}) of item {item.id}: {e}")
                summary.media_failed += 1
                continue

            local_path = self.store.put_blob(ref.media_id, data, ref.filename)
            stored.append(ref.model_copy(update={"local_path": local_path}))
            summary.media_downloaded += 1
        return stored


def build_cache(source: BaseSource, store: CacheStore, workspace: WorkspaceRef) -> CacheSummary:
    """Cache ``workspace`` from ``source`` into ``store``."""
    return CacheBuilder(source, store).build_cache(workspace)
