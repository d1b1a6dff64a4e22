"""
Migration orchestrator for nuc2not.

This module recreates cached items as destination pages. Each item moves
through pending to created (or failed) and its MigrationRecord is written
after every step, so an interrupted run picks up where it stopped: created
pages are skipped, and a page created by a failed attempt is reused with
appending resumed after the blocks already sent.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional

from ..database import CacheStore
from ..errors import DestinationError, NotFound
from ..exporters import BaseDestination
from ..models import CachedItem, ItemKind, MigrationRecord, MigrationStatus
from ..translator import BlockTranslator, Translation, count_blocks
from ..translator.blocks import DEFAULT_MAX_DEPTH
from .prompts import LoggingPrompter, ManualUploadPrompter
from .tree import ItemTree


COLLECTION_ICON = "📁"


@dataclass
class MigrationSummary:
    """
    Outcome of one migration run.
    """
    created: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    blocked: List[str] = field(default_factory=list)
    blocks_created: int = 0
    uploads_requested: int = 0
    degradations: int = 0

    def summary(self) -> str:
        lines = [
            "\n" + "=" * 60,
            "MIGRATION SUMMARY",
            "=" * 60,
            f"  Pages created:      {len(self.created)}",
            f"  Pages skipped:      {len(self.skipped)} (already done)",
            f"  Pages failed:       {len(self.failed)}",
            f"  Pages blocked:      {len(self.blocked)} (parent failed)",
            f"  Blocks created:     {self.blocks_created}",
            f"  Manual uploads:     {self.uploads_requested}",
            f"  Degraded blocks:    {self.degradations}",
        ]
        if self.failed:
            lines.append(f"\n  ERRORS ({len(self.failed)}):")
            for item_id, error in list(self.failed.items())[:50]:
                lines.append(f"    • {item_id}: {error}")
            if len(self.failed) > 50:
                lines.append(f"    ... and {len(self.failed) - 50} more")
        lines.append("=" * 60)
        return "\n".join(lines)


class Migrator:
    """
    Walks cached items and recreates them in the destination.

    Never talks to the source; everything comes from the cache store.
    """

    def __init__(self, store: CacheStore, destination: BaseDestination,
                 prompter: Optional[ManualUploadPrompter] = None,
                 max_depth: int = DEFAULT_MAX_DEPTH):
        """
        Initialize the migrator.

        Args:
            store: Open cache store of the workspace being migrated
            destination: Destination client
            prompter: Receives manual upload requests (logged only by default)
            max_depth: Deepest block nesting rendered natively
        """
        self.store = store
        self.destination = destination
        self.prompter = prompter or LoggingPrompter()
        self.max_depth = max_depth
        self.summary = MigrationSummary()
        self.link_map: Dict[str, str] = self._load_link_map()

    def _load_link_map(self) -> Dict[str, str]:
        """Destination URLs of items created by earlier runs, keyed by source id."""
        return {
            record.item_id: record.destination_url
            for record in self.store.list_records(MigrationStatus.CREATED)
            if record.destination_url
        }

    def _record(self, item_id: str) -> MigrationRecord:
        try:
            return self.store.get_record(item_id)
        except NotFound:
            return MigrationRecord(item_id=item_id)

    def _resolve_parent(self, item: CachedItem, parent_id: Optional[str]) -> str:
        if parent_id:
            return parent_id
        if item.parent_id:
            parent_record = self._record(item.parent_id)
            if parent_record.status == MigrationStatus.CREATED and parent_record.destination_page_id:
                return parent_record.destination_page_id
        raise NotFound("destination parent for item", item.id)

    def migrate_page(self, item_id: str, parent_id: Optional[str] = None) -> Optional[MigrationRecord]:
        """
        Migrate a single cached item.

        Args:
            item_id: Source id of the cached item
            parent_id: Destination page to create it under; defaults to the
                page created for the item's cached parent

        Returns:
            The item's record once created (or already created), None on failure
        """
        record = self._record(item_id)
        if record.status == MigrationStatus.CREATED:
            logging.info(f"Skipping {item_id}: already migrated to {record.destination_page_id}")
            self.summary.skipped.append(item_id)
            return record

        record.status = MigrationStatus.PENDING
        record.attempts += 1
        record.last_attempt_at = datetime.now()
        record.error = None
        self.store.put_record(record)

        try:
            item = self.store.get(item_id)
            translation = BlockTranslator(self.max_depth, self.link_map).translate_page(item.content_blocks)
            self._create_or_reuse_page(item, record, parent_id)
            blocks_sent = self._append_remaining(record, translation)
        except (DestinationError, NotFound) as e:
            logging.error(f"Failed to migrate {item_id}: {e}")
            record.status = MigrationStatus.FAILED
            record.error = str(e)
            record.last_attempt_at = datetime.now()
            self.store.put_record(record)
            self.summary.failed[item_id] = str(e)
            return None

        record.status = MigrationStatus.CREATED
        record.last_attempt_at = datetime.now()
        self.store.put_record(record)

        if record.destination_url:
            self.link_map[item_id] = record.destination_url
        self.summary.created.append(item_id)
        self.summary.blocks_created += blocks_sent
        self.summary.degradations += len(translation.degraded)
        logging.info(f"Migrated '{item.title}' ({item_id}) -> {record.destination_url or record.destination_page_id}")

        self._request_uploads(item, record, translation)
        return record

    def _create_or_reuse_page(self, item: CachedItem, record: MigrationRecord, parent_id: Optional[str]) -> None:
        if record.destination_page_id:
            logging.info(
                f"Reusing page {record.destination_page_id} for '{item.title}', "
                f"resuming after {record.blocks_appended} blocks"
            )
            return

        metadata = {}
        if item.kind == ItemKind.COLLECTION:
            metadata["icon"] = COLLECTION_ICON

        page = self.destination.create_page(self._resolve_parent(item, parent_id), item.title, metadata)
        record.destination_page_id = page.id
        record.destination_url = page.url
        record.blocks_appended = 0
        self.store.put_record(record)

    def _append_remaining(self, record: MigrationRecord, translation: Translation) -> int:
        """Append the blocks not sent by earlier attempts; returns the number of blocks created."""
        remaining = translation.blocks[record.blocks_appended:]

        def on_progress(count: int):
            record.blocks_appended += count
            self.store.put_record(record)

        self.destination.append_blocks(record.destination_page_id, remaining, on_progress)
        return count_blocks(remaining)

    def _local_media_path(self, item: CachedItem, media_id: str, filename: str) -> Optional[str]:
        try:
            return self.store.get_blob_path(media_id)
        except NotFound:
            local_path = item.media_path(media_id)
            if not local_path:
                logging.warning(f"Media '{filename}' of {item.id} is not in the cache")
            return local_path

    def _request_uploads(self, item: CachedItem, record: MigrationRecord, translation: Translation) -> None:
        """
        Ask for every media file of the page: each placeholder, then each
        cached attachment the page text never placed.
        """
        placed = set()
        for placeholder in translation.media:
            placed.add(placeholder.media_id)
            local_path = self._local_media_path(item, placeholder.media_id, placeholder.filename)
            self.prompter.prompt(record.destination_page_id, local_path, placeholder.placement)
            self.summary.uploads_requested += 1

        for ref in item.media_refs:
            if ref.media_id in placed:
                continue
            placed.add(ref.media_id)
            local_path = self._local_media_path(item, ref.media_id, ref.filename)
            placement = f"anywhere on the page: {ref.filename} is attached in Nuclino but not placed in the text"
            self.prompter.prompt(record.destination_page_id, local_path, placement)
            self.summary.uploads_requested += 1

    def migrate_workspace(self, root_parent: str) -> MigrationSummary:
        """
        Migrate every cached item, each parent before its children.

        A failed item keeps its whole subtree from being attempted in this
        run; siblings and other subtrees carry on.

        Args:
            root_parent: Destination page that receives the workspace's top-level items

        Returns:
            MigrationSummary of this run
        """
        workspace = self.store.get_workspace()
        tree = ItemTree(self.store.list_items(workspace.id))
        logging.info(f"Migrating {len(tree)} cached items of workspace '{workspace.name}'")

        stack = [(item_id, root_parent) for item_id in reversed(tree.roots)]
        while stack:
            item_id, parent_page_id = stack.pop()
            record = self.migrate_page(item_id, parent_page_id)
            if record is None:
                blocked = tree.descendants(item_id)
                if blocked:
                    logging.warning(f"Not migrating {len(blocked)} items below failed item {item_id}")
                self.summary.blocked.extend(blocked)
                continue
            for child_id in reversed(tree.children_of(item_id)):
                stack.append((child_id, record.destination_page_id))

        return self.summary
