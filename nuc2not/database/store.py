"""
Local cache store for nuc2not.

This module keeps everything pulled from the source in a DuckDB database plus
a directory of media blobs, one pair per workspace. The same database holds
the migration records, so a cache directory is everything needed to resume a
migration on another day or another machine.
"""

import duckdb
import hashlib
import json
import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional
from datetime import datetime

from ..errors import NotFound, StoreError
from ..models import CachedItem, MigrationRecord, MigrationStatus, WorkspaceRef


def slugify(name: str) -> str:
    """
    Turn a workspace name into a directory-safe slug.

    Args:
        name: Human-readable workspace name

    Returns:
        Lowercase slug of ASCII letters, digits and dashes
    """
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')
    return slug or "workspace"


def safe_filename(name: str) -> str:
    """Strip path separators and control characters from a file name."""
    cleaned = re.sub(r'[<>:"/\\|?*\x00-\x1F]', '_', name).strip('. ')
    return cleaned[:120] or "blob"


class CacheStore:
    """
    Manages the DuckDB database and blob directory for one cached workspace.
    """

    DB_FILENAME = "cache.duckdb"
    BLOB_DIRNAME = "blobs"

    def __init__(self, root: str):
        """
        Initialize the cache store.

        Args:
            root: Directory holding this workspace's database and blobs
        """
        self.root = Path(root)
        self.db_path = self.root / self.DB_FILENAME
        self.blob_dir = self.root / self.BLOB_DIRNAME
        self.connection = None

    @classmethod
    def for_workspace(cls, cache_dir: str, workspace_name: str) -> "CacheStore":
        """Build the store located at ``<cache_dir>/<slug of workspace_name>``."""
        return cls(str(Path(cache_dir) / slugify(workspace_name)))

    def connect(self):
        """Establish connection to the database, creating the cache directory."""
        with self._storage_errors("open cache"):
            self.root.mkdir(parents=True, exist_ok=True)
            self.connection = duckdb.connect(str(self.db_path))

    def disconnect(self):
        """Close the database connection."""
        if self.connection:
            self.connection.close()
            self.connection = None

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        self.initialize_database()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()

    @contextmanager
    def _storage_errors(self, action: str) -> Iterator[None]:
        try:
            yield
        except (duckdb.Error, OSError) as e:
            raise StoreError(f"Failed to {action}: {e}") from e

    def _conn(self):
        if not self.connection:
            raise StoreError("Cache connection not established")
        return self.connection

    def initialize_database(self):
        """
        Create all necessary tables if they don't exist.
        """
        conn = self._conn()
        with self._storage_errors("initialize cache schema"):
            conn.execute("""
                CREATE TABLE IF NOT EXISTS workspace (
                    id VARCHAR PRIMARY KEY,
                    name VARCHAR NOT NULL,
                    child_ids VARCHAR NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS items (
                    id VARCHAR PRIMARY KEY,
                    workspace_id VARCHAR,
                    parent_id VARCHAR,
                    position INTEGER NOT NULL,
                    payload VARCHAR NOT NULL,
                    cached_at TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS blobs (
                    media_id VARCHAR PRIMARY KEY,
                    filename VARCHAR,
                    local_path VARCHAR NOT NULL,
                    size BIGINT NOT NULL,
                    sha256 VARCHAR NOT NULL,
                    stored_at TIMESTAMP NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS migration_records (
                    item_id VARCHAR PRIMARY KEY,
                    destination_page_id VARCHAR,
                    destination_url VARCHAR,
                    status VARCHAR NOT NULL,
                    attempts INTEGER NOT NULL,
                    blocks_appended INTEGER NOT NULL,
                    last_attempt_at TIMESTAMP NOT NULL,
                    error VARCHAR
                )
            """)

    # Workspace

    def put_workspace(self, workspace: WorkspaceRef) -> None:
        """Remember which source workspace this cache belongs to."""
        conn = self._conn()
        with self._storage_errors(f"store workspace {workspace.id}"):
            conn.execute("DELETE FROM workspace WHERE id <> ?", [workspace.id])
            conn.execute("""
                INSERT OR REPLACE INTO workspace (id, name, child_ids)
                VALUES (?, ?, ?)
            """, [workspace.id, workspace.name, json.dumps(workspace.child_ids)])

    def get_workspace(self) -> WorkspaceRef:
        """
        Retrieve the cached workspace.

        Raises:
            NotFound: If nothing has been cached into this store yet
        """
        conn = self._conn()
        with self._storage_errors("read workspace"):
            row = conn.execute("SELECT id, name, child_ids FROM workspace").fetchone()
        if not row:
            raise NotFound("workspace", str(self.root))
        return WorkspaceRef(id=row[0], name=row[1], child_ids=json.loads(row[2]))

    # Items

    def put(self, item: CachedItem, position: Optional[int] = None) -> None:
        """
        Insert or fully overwrite a cached item.

        Args:
            item: The hydrated item to store
            position: Enumeration order within the workspace; keeps the
                existing position (or appends at the end) when omitted
        """
        conn = self._conn()
        with self._storage_errors(f"store item {item.id}"):
            if position is None:
                row = conn.execute("SELECT position FROM items WHERE id = ?", [item.id]).fetchone()
                if row:
                    position = row[0]
                else:
                    position = conn.execute("SELECT COALESCE(MAX(position), -1) + 1 FROM items").fetchone()[0]

            conn.execute("""
                INSERT OR REPLACE INTO items (id, workspace_id, parent_id, position, payload, cached_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [
                item.id,
                item.workspace_id,
                item.parent_id,
                position,
                item.model_dump_json(),
                datetime.now()
            ])

    def get(self, item_id: str) -> CachedItem:
        """
        Retrieve a cached item by id.

        Raises:
            NotFound: If the item was never cached
        """
        payload = self.get_payload(item_id)
        return CachedItem.model_validate_json(payload)

    def get_payload(self, item_id: str) -> str:
        """The stored JSON of an item exactly as written."""
        conn = self._conn()
        with self._storage_errors(f"read item {item_id}"):
            row = conn.execute("SELECT payload FROM items WHERE id = ?", [item_id]).fetchone()
        if not row:
            raise NotFound("item", item_id)
        return row[0]

    def contains(self, item_id: str) -> bool:
        conn = self._conn()
        with self._storage_errors(f"read item {item_id}"):
            row = conn.execute("SELECT 1 FROM items WHERE id = ?", [item_id]).fetchone()
        return row is not None

    def list_ids(self, workspace_id: Optional[str] = None) -> List[str]:
        """
        List cached item ids in source enumeration order.

        Args:
            workspace_id: Restrict to one workspace; all items when None
        """
        conn = self._conn()
        with self._storage_errors("list items"):
            if workspace_id:
                rows = conn.execute("""
                    SELECT id FROM items WHERE workspace_id = ? ORDER BY position
                """, [workspace_id]).fetchall()
            else:
                rows = conn.execute("SELECT id FROM items ORDER BY position").fetchall()
        return [row[0] for row in rows]

    def list_items(self, workspace_id: Optional[str] = None) -> List[CachedItem]:
        """List cached items in source enumeration order."""
        conn = self._conn()
        with self._storage_errors("list items"):
            if workspace_id:
                rows = conn.execute("""
                    SELECT payload FROM items WHERE workspace_id = ? ORDER BY position
                """, [workspace_id]).fetchall()
            else:
                rows = conn.execute("SELECT payload FROM items ORDER BY position").fetchall()
        return [CachedItem.model_validate_json(row[0]) for row in rows]

    # Blobs

    def put_blob(self, media_id: str, data: bytes, filename: Optional[str] = None) -> str:
        """
        Write a media blob to disk and index it.

        Args:
            media_id: Source id of the media file
            data: Raw bytes
            filename: Original file name, used for the on-disk name

        Returns:
            The local path of the stored blob
        """
        conn = self._conn()
        target_dir = self.blob_dir / safe_filename(media_id)
        target = target_dir / safe_filename(filename or media_id)

        with self._storage_errors(f"store blob {media_id}"):
            target_dir.mkdir(parents=True, exist_ok=True)
            tmp = target.with_name(target.name + ".tmp")
            tmp.write_bytes(data)
            tmp.replace(target)

            conn.execute("""
                INSERT OR REPLACE INTO blobs (media_id, filename, local_path, size, sha256, stored_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, [
                media_id,
                filename,
                str(target),
                len(data),
                hashlib.sha256(data).hexdigest(),
                datetime.now()
            ])

        logging.debug(f"Stored blob {media_id} ({len(data)} bytes) at {target}")
        return str(target)

    def get_blob_path(self, media_id: str) -> str:
        """
        Local path of a stored blob.

        Raises:
            NotFound: If the blob was never stored or its file has gone missing
        """
        conn = self._conn()
        with self._storage_errors(f"read blob {media_id}"):
            row = conn.execute("SELECT local_path FROM blobs WHERE media_id = ?", [media_id]).fetchone()
        if not row or not Path(row[0]).is_file():
            raise NotFound("blob", media_id)
        return row[0]

    # Migration records

    def put_record(self, record: MigrationRecord) -> None:
        """Insert or overwrite the migration record for one item."""
        conn = self._conn()
        with self._storage_errors(f"store migration record {record.item_id}"):
            conn.execute("""
                INSERT OR REPLACE INTO migration_records
                    (item_id, destination_page_id, destination_url, status, attempts,
                     blocks_appended, last_attempt_at, error)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                record.item_id,
                record.destination_page_id,
                record.destination_url,
                record.status.value,
                record.attempts,
                record.blocks_appended,
                record.last_attempt_at,
                record.error
            ])

    def get_record(self, item_id: str) -> MigrationRecord:
        """
        Retrieve the migration record of an item.

        Raises:
            NotFound: If migration of the item was never attempted
        """
        conn = self._conn()
        with self._storage_errors(f"read migration record {item_id}"):
            row = conn.execute("""
                SELECT item_id, destination_page_id, destination_url, status, attempts,
                       blocks_appended, last_attempt_at, error
                FROM migration_records
                WHERE item_id = ?
            """, [item_id]).fetchone()
        if not row:
            raise NotFound("migration record", item_id)
        return self._record_from_row(row)

    def list_records(self, status: Optional[MigrationStatus] = None) -> List[MigrationRecord]:
        """List migration records, optionally filtered by status."""
        conn = self._conn()
        query = """
            SELECT item_id, destination_page_id, destination_url, status, attempts,
                   blocks_appended, last_attempt_at, error
            FROM migration_records
        """
        params = []
        if status:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY last_attempt_at"

        with self._storage_errors("list migration records"):
            rows = conn.execute(query, params).fetchall()
        return [self._record_from_row(row) for row in rows]

    @staticmethod
    def _record_from_row(row) -> MigrationRecord:
        return MigrationRecord(
            item_id=row[0],
            destination_page_id=row[1],
            destination_url=row[2],
            status=MigrationStatus(row[3]),
            attempts=row[4],
            blocks_appended=row[5],
            last_attempt_at=row[6],
            error=row[7]
        )
