"""
Unit tests for core nuc2not components.

Tests the pieces every layer relies on: configuration management, data
models, request pacing, the cache store, and command line parsing.
"""

import os
import shutil
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from nuc2not.config import ConfigManager
from nuc2not.database import CacheStore, safe_filename, slugify
from nuc2not.errors import NotFound, StoreError, TranslationDegraded
from nuc2not.models import (
    CachedItem, ItemKind, MediaRef, MigrationRecord, MigrationStatus,
    SourceBlock, TextRun, WorkspaceRef
)
from nuc2not.pacing import FixedIntervalPacer, NoPacing


class FakeClock:
    """Monotonic clock that only moves when told to, or when slept on."""

    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def clock(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestConfigManager(unittest.TestCase):
    """Test configuration management functionality."""

    def setUp(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = Path(self.temp_dir) / "test_config.yaml"

    def tearDown(self):
        """Clean up test fixtures."""
        if self.config_path.exists():
            self.config_path.unlink()
        os.rmdir(self.temp_dir)

    def test_config_creation_with_defaults(self):
        """Test config manager falls back to defaults when file missing."""
        config = ConfigManager(str(self.config_path))

        self.assertAlmostEqual(config.source_wait_seconds, 0.75)
        self.assertAlmostEqual(config.destination_wait_seconds, 0.35)
        self.assertEqual(config.max_depth, 4)
        self.assertEqual(config.cache_directory, ".cache")
        self.assertEqual(config.log_filename, "nuc2not.log")
        self.assertEqual(config.get("destination.max_retries"), 5)
        self.assertEqual(config.get("source.max_retries"), 3)

    def test_config_loading_from_file(self):
        """Test loading configuration from YAML file layered over defaults."""
        test_config = """
source:
  wait_ms: 500

destination:
  max_depth: 6

paths:
  cache_dir: "test-cache"
"""
        with open(self.config_path, 'w') as f:
            f.write(test_config)

        config = ConfigManager(str(self.config_path))

        self.assertAlmostEqual(config.source_wait_seconds, 0.5)
        self.assertEqual(config.max_depth, 6)
        self.assertEqual(config.cache_directory, "test-cache")
        # Keys missing from the file keep their defaults
        self.assertEqual(config.get("source.max_retries"), 3)
        self.assertEqual(config.get("destination.batch_size"), 100)

    def test_invalid_yaml_falls_back_to_defaults(self):
        """Test that a broken file does not prevent startup."""
        with open(self.config_path, 'w') as f:
            f.write("source: [unclosed")

        config = ConfigManager(str(self.config_path))
        self.assertAlmostEqual(config.source_wait_seconds, 0.75)

    def test_dot_notation_access(self):
        """Test accessing config values with dot notation."""
        config = ConfigManager(str(self.config_path))

        self.assertEqual(config.get("destination.notion_version"), "2022-06-28")
        self.assertEqual(config.get("nonexistent.key", "default"), "default")
        self.assertIsInstance(config.get_section("source"), dict)

    def test_set_overrides_in_memory(self):
        """Test command line overrides through set()."""
        config = ConfigManager(str(self.config_path))
        config.set("source.wait_ms", 100)
        self.assertAlmostEqual(config.source_wait_seconds, 0.1)

    def test_config_reload(self):
        """Test configuration reloading."""
        with open(self.config_path, 'w') as f:
            f.write("destination:\n  max_depth: 2")

        config = ConfigManager(str(self.config_path))
        self.assertEqual(config.max_depth, 2)

        with open(self.config_path, 'w') as f:
            f.write("destination:\n  max_depth: 3")

        config.reload()
        self.assertEqual(config.max_depth, 3)

    def test_api_keys_come_from_environment(self):
        """Test that credentials are read from the environment."""
        config = ConfigManager(str(self.config_path))
        with patch.dict(os.environ, {"NUCLINO_API_KEY": "nuc-key", "NOTION_API_KEY": "not-key"}):
            self.assertEqual(config.source_api_key, "nuc-key")
            self.assertEqual(config.destination_api_key, "not-key")


class TestDataModels(unittest.TestCase):
    """Test data model validation and functionality."""

    def test_source_block_with_children(self):
        """Test SourceBlock with nested children."""
        child = SourceBlock(kind="bulleted_list_item", text=[TextRun(text="child")])
        parent = SourceBlock(kind="bulleted_list_item", text=[TextRun(text="par"), TextRun(text="ent", bold=True)],
                             children=[child])

        self.assertEqual(len(parent.children), 1)
        self.assertEqual(parent.plain_text, "parent")
        self.assertEqual(parent.children[0].plain_text, "child")
        self.assertEqual(parent.attrs, {})

    def test_text_run_style_comparison(self):
        """Test TextRun.same_style ignores the text itself."""
        self.assertTrue(TextRun(text="a", bold=True).same_style(TextRun(text="b", bold=True)))
        self.assertFalse(TextRun(text="a").same_style(TextRun(text="a", link="https://example.com")))

    def test_cached_item_media_path(self):
        """Test looking up the local path of a downloaded media file."""
        item = CachedItem(
            id="item-1",
            title="Page",
            media_refs=[
                MediaRef(media_id="m1", filename="a.png", local_path="/cache/blobs/m1/a.png"),
                MediaRef(media_id="m2", filename="b.pdf")
            ]
        )

        self.assertEqual(item.kind, ItemKind.PAGE)
        self.assertEqual(item.media_path("m1"), "/cache/blobs/m1/a.png")
        self.assertIsNone(item.media_path("m2"))
        self.assertIsNone(item.media_path("missing"))

    def test_migration_record_defaults(self):
        """Test a fresh MigrationRecord is pending and has sent nothing."""
        record = MigrationRecord(item_id="item-1")

        self.assertEqual(record.status, MigrationStatus.PENDING)
        self.assertEqual(record.attempts, 0)
        self.assertEqual(record.blocks_appended, 0)
        self.assertIsNone(record.destination_page_id)
        self.assertIsNone(record.error)

    def test_translation_degraded_is_a_warning(self):
        """Test degradation notices carry the kind and reason."""
        notice = TranslationDegraded("html", "raw HTML")
        self.assertIsInstance(notice, UserWarning)
        self.assertEqual(notice.kind, "html")
        self.assertIn("raw HTML", str(notice))


class TestPacing(unittest.TestCase):
    """Test request pacing strategies."""

    def test_first_call_is_immediate(self):
        """Test the first call never waits."""
        fake = FakeClock()
        pacer = FixedIntervalPacer(0.75, sleep=fake.sleep, clock=fake.clock)

        pacer.wait_before_next_call()
        self.assertEqual(fake.sleeps, [])

    def test_waits_out_remaining_interval(self):
        """Test later calls sleep only for what remains of the interval."""
        fake = FakeClock()
        pacer = FixedIntervalPacer(0.75, sleep=fake.sleep, clock=fake.clock)

        pacer.wait_before_next_call()
        fake.now += 0.25
        pacer.wait_before_next_call()
        self.assertEqual(len(fake.sleeps), 1)
        self.assertAlmostEqual(fake.sleeps[0], 0.5)

        # Back-to-back call waits the whole interval
        pacer.wait_before_next_call()
        self.assertAlmostEqual(fake.sleeps[1], 0.75)

        # Enough time passed: no wait at all
        fake.now += 2.0
        pacer.wait_before_next_call()
        self.assertEqual(len(fake.sleeps), 2)

    def test_negative_interval_rejected(self):
        """Test that a negative interval is a configuration error."""
        with self.assertRaises(ValueError):
            FixedIntervalPacer(-1)

    def test_no_pacing(self):
        """Test the no-op strategy."""
        self.assertIsNone(NoPacing().wait_before_next_call())


class TestCacheStore(unittest.TestCase):
    """Test cache store functionality."""

    def setUp(self):
        """Set up test cache directory."""
        self.temp_dir = tempfile.mkdtemp()
        self.root = Path(self.temp_dir) / "demo"

    def tearDown(self):
        """Clean up test cache directory."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def make_item(self, item_id, title="Page", parent_id=None):
        return CachedItem(
            id=item_id,
            workspace_id="ws-1",
            parent_id=parent_id,
            title=title,
            content_blocks=[SourceBlock(kind="paragraph", text=[TextRun(text=f"Body of {title}")])]
        )

    def test_database_initialization(self):
        """Test database creation and table initialization."""
        with CacheStore(str(self.root)) as store:
            self.assertTrue(store.db_path.exists())
            self.assertIsNotNone(store.connection)
            self.assertEqual(store.list_ids(), [])

    def test_for_workspace_uses_slug(self):
        """Test the per-workspace cache location."""
        store = CacheStore.for_workspace(self.temp_dir, "Team Wiki!")
        self.assertEqual(store.root, Path(self.temp_dir) / "team-wiki")
        self.assertEqual(store.db_path.name, "cache.duckdb")

    def test_item_operations(self):
        """Test item upsert, lookup and listing."""
        with CacheStore(str(self.root)) as store:
            store.put(self.make_item("a", "Alpha"), position=0)
            store.put(self.make_item("b", "Beta", parent_id="a"), position=1)

            retrieved = store.get("b")
            self.assertEqual(retrieved.title, "Beta")
            self.assertEqual(retrieved.parent_id, "a")
            self.assertEqual(retrieved.content_blocks[0].plain_text, "Body of Beta")
            self.assertTrue(store.contains("a"))
            self.assertFalse(store.contains("zzz"))

            self.assertEqual(store.list_ids(), ["a", "b"])
            self.assertEqual([item.id for item in store.list_items("ws-1")], ["a", "b"])
            self.assertEqual(store.list_ids("other-ws"), [])

    def test_missing_item_is_not_found(self):
        """Test absence is reported as NotFound."""
        with CacheStore(str(self.root)) as store:
            with self.assertRaises(NotFound):
                store.get("missing")

    def test_upsert_overwrites_and_keeps_position(self):
        """Test a re-put replaces the item but keeps its enumeration order."""
        with CacheStore(str(self.root)) as store:
            store.put(self.make_item("a", "Alpha"), position=0)
            store.put(self.make_item("b", "Beta"), position=1)
            store.put(self.make_item("a", "Alpha v2"))

            self.assertEqual(store.get("a").title, "Alpha v2")
            self.assertEqual(store.list_ids(), ["a", "b"])

            store.put(self.make_item("c", "Gamma"))
            self.assertEqual(store.list_ids(), ["a", "b", "c"])

    def test_identical_items_store_identical_payloads(self):
        """Test that storing the same item twice yields the same bytes."""
        with CacheStore(str(self.root)) as store:
            store.put(self.make_item("a", "Alpha"))
            first = store.get_payload("a")
            store.put(self.make_item("a", "Alpha"))
            self.assertEqual(store.get_payload("a"), first)

    def test_blob_operations(self):
        """Test storing and locating media blobs."""
        with CacheStore(str(self.root)) as store:
            path = store.put_blob("media-1", b"image-bytes", "diagram.png")

            self.assertEqual(Path(path).read_bytes(), b"image-bytes")
            self.assertEqual(Path(path).name, "diagram.png")
            self.assertEqual(store.get_blob_path("media-1"), path)

            with self.assertRaises(NotFound):
                store.get_blob_path("media-2")

            Path(path).unlink()
            with self.assertRaises(NotFound):
                store.get_blob_path("media-1")

    def test_workspace_operations(self):
        """Test the cached workspace reference."""
        with CacheStore(str(self.root)) as store:
            with self.assertRaises(NotFound):
                store.get_workspace()

            store.put_workspace(WorkspaceRef(id="ws-1", name="Demo", child_ids=["a", "c"]))
            workspace = store.get_workspace()
            self.assertEqual(workspace.name, "Demo")
            self.assertEqual(workspace.child_ids, ["a", "c"])

    def test_migration_record_operations(self):
        """Test migration record upsert and filtering."""
        with CacheStore(str(self.root)) as store:
            with self.assertRaises(NotFound):
                store.get_record("a")

            store.put_record(MigrationRecord(item_id="a", destination_page_id="p1",
                                             status=MigrationStatus.CREATED, attempts=1))
            store.put_record(MigrationRecord(item_id="b", status=MigrationStatus.FAILED,
                                             attempts=2, error="boom"))

            record = store.get_record("b")
            self.assertEqual(record.status, MigrationStatus.FAILED)
            self.assertEqual(record.attempts, 2)
            self.assertEqual(record.error, "boom")

            created = store.list_records(MigrationStatus.CREATED)
            self.assertEqual([r.item_id for r in created], ["a"])
            self.assertEqual(len(store.list_records()), 2)

            store.put_record(MigrationRecord(item_id="b", status=MigrationStatus.CREATED, blocks_appended=7))
            self.assertEqual(store.get_record("b").blocks_appended, 7)
            self.assertEqual(len(store.list_records()), 2)

    def test_records_survive_reopening(self):
        """Test that the cache is durable across connections."""
        with CacheStore(str(self.root)) as store:
            store.put(self.make_item("a"))
            store.put_record(MigrationRecord(item_id="a", status=MigrationStatus.CREATED))

        with CacheStore(str(self.root)) as store:
            self.assertEqual(store.list_ids(), ["a"])
            self.assertEqual(store.get_record("a").status, MigrationStatus.CREATED)

    def test_storage_failure_raises_store_error(self):
        """Test I/O faults surface as StoreError."""
        blocker = Path(self.temp_dir) / "not-a-directory"
        blocker.write_text("occupied")

        with self.assertRaises(StoreError):
            CacheStore(str(blocker)).connect()

    def test_use_without_connection_raises_store_error(self):
        """Test calls before connect() fail cleanly."""
        with self.assertRaises(StoreError):
            CacheStore(str(self.root)).get("a")


class TestUtilityFunctions(unittest.TestCase):
    """Test utility functions."""

    def test_slugify(self):
        """Test workspace slugs are directory safe."""
        self.assertEqual(slugify("Team Wiki"), "team-wiki")
        self.assertEqual(slugify("  R&D / Notes  "), "r-d-notes")
        self.assertEqual(slugify("!!!"), "workspace")

    def test_safe_filename(self):
        """Test file names lose path separators."""
        self.assertEqual(safe_filename("a/b\\c.png"), "a_b_c.png")
        self.assertNotIn("/", safe_filename("../../etc/passwd"))
        self.assertEqual(safe_filename(""), "blob")

    def test_argument_parsing(self):
        """Test the command line surface."""
        from main import parse_arguments

        args = parse_arguments(["migrate-page", "--workspace", "Wiki", "--parent", "p-1", "a", "b"])
        self.assertEqual(args.command, "migrate-page")
        self.assertEqual(args.page_ids, ["a", "b"])
        self.assertEqual(args.parent, "p-1")
        self.assertFalse(args.dry_run)

        args = parse_arguments(["--dry-run", "--no-prompt", "--wait", "100", "migrate-workspace",
                                "--workspace", "Wiki", "--parent", "p-1"])
        self.assertTrue(args.dry_run)
        self.assertTrue(args.no_prompt)
        self.assertEqual(args.wait, 100)

        args = parse_arguments(["cache"])
        self.assertIsNone(args.workspace)


if __name__ == '__main__':
    # Run all tests
    unittest.main(verbosity=2)
