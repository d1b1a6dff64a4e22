#!/usr/bin/env python3
"""
nuc2not - Nuclino to Notion migration tool

Main entry point. The `cache` command pulls a Nuclino workspace into the local
cache; the `migrate-*` commands recreate cached pages in Notion, prompting for
every file that has to be uploaded by hand.
"""

import logging
import sys
import argparse
import shutil
import tempfile
from collections import Counter
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from dotenv import load_dotenv

from nuc2not import __version__
from nuc2not.config import ConfigManager, config
from nuc2not.database import CacheStore
from nuc2not.errors import MigrationToolError, NotFound
from nuc2not.exporters import BaseDestination, NotionClient, RecordingDestination
from nuc2not.importers import NuclinoClient
from nuc2not.models import MigrationStatus, WorkspaceRef
from nuc2not.pacing import FixedIntervalPacer
from nuc2not.pipeline import CacheBuilder, ConsolePrompter, LoggingPrompter, Migrator


def setup_logging(cfg: ConfigManager):
    """Configure logging for the application."""
    level = getattr(logging, cfg.get("logging.level", "INFO").upper())
    format_str = cfg.get("logging.format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = cfg.log_filename

    logging.basicConfig(
        level=level,
        format=format_str,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file)
        ]
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def require_key(value: Optional[str], name: str) -> str:
    if not value:
        raise MigrationToolError(f"You must provide an API key in the environment variable {name}")
    return value


def make_source(cfg: ConfigManager) -> NuclinoClient:
    """Build the Nuclino client from configuration."""
    return NuclinoClient(
        require_key(cfg.source_api_key, "NUCLINO_API_KEY"),
        base_url=cfg.get("source.base_url"),
        pacer=FixedIntervalPacer(cfg.source_wait_seconds),
        max_retries=int(cfg.get("source.max_retries", 3)),
        timeout=float(cfg.get("source.timeout", 30.0)),
        page_size=int(cfg.get("source.page_size", 100))
    )


def make_destination(cfg: ConfigManager, dry_run: bool) -> BaseDestination:
    """Build the Notion client, or an in-memory stand-in for dry runs."""
    batch_size = int(cfg.get("destination.batch_size", 100))
    if dry_run:
        return RecordingDestination(batch_size=batch_size)

    return NotionClient(
        require_key(cfg.destination_api_key, "NOTION_API_KEY"),
        base_url=cfg.get("destination.base_url"),
        notion_version=cfg.get("destination.notion_version"),
        pacer=FixedIntervalPacer(cfg.destination_wait_seconds),
        max_retries=int(cfg.get("destination.max_retries", 5)),
        backoff_initial=float(cfg.get("destination.backoff_initial", 1.0)),
        backoff_multiplier=float(cfg.get("destination.backoff_multiplier", 2.0)),
        backoff_max=float(cfg.get("destination.backoff_max", 60.0)),
        batch_size=batch_size,
        timeout=float(cfg.get("destination.timeout", 60.0))
    )


def choose_workspace(workspaces: List[WorkspaceRef], name: Optional[str]) -> Optional[WorkspaceRef]:
    """
    Pick the workspace to cache, asking the user when no name was given.

    Args:
        workspaces: Workspaces visible to the API key
        name: Workspace name from the command line, if any

    Returns:
        The chosen workspace, or None if the user chose nothing
    """
    if name:
        for workspace in workspaces:
            if workspace.name == name:
                return workspace
        raise NotFound("workspace", name)

    if not workspaces:
        print("No workspaces are visible with this API key.")
        return None

    ordered = sorted(workspaces, key=lambda w: w.name.lower())
    print("\nSelect a workspace to cache:")
    for index, workspace in enumerate(ordered, 1):
        print(f"  {index}. {workspace.name}")

    while True:
        response = input("\nWorkspace number (empty to quit): ").strip()
        if not response:
            return None
        if response.isdigit() and 1 <= int(response) <= len(ordered):
            return ordered[int(response) - 1]
        print(f"Please enter a number between 1 and {len(ordered)}")


@contextmanager
def open_cache(cfg: ConfigManager, workspace_name: str, dry_run: bool = False) -> Iterator[CacheStore]:
    """
    Open an existing workspace cache.

    A dry run works on a throwaway copy of the database so the real migration
    records stay untouched.
    """
    store = CacheStore.for_workspace(cfg.cache_directory, workspace_name)
    if not store.db_path.exists():
        raise NotFound("cache for workspace", f"{workspace_name} (run `cache` first)")

    if not dry_run:
        with store:
            yield store
        return

    with tempfile.TemporaryDirectory(prefix="nuc2not-dry-run-") as tmp:
        shutil.copy2(store.db_path, Path(tmp) / CacheStore.DB_FILENAME)
        with CacheStore(tmp) as scratch:
            yield scratch


def run_cache(cfg: ConfigManager, args) -> int:
    """
    Execute the cache command: pull a workspace into the local cache.
    """
    with make_source(cfg) as source:
        workspace = choose_workspace(source.list_workspaces(), args.workspace)
        if workspace is None:
            print("Nothing to do.")
            return 0

        logging.info(f"Caching workspace '{workspace.name}' ({workspace.id})")
        with CacheStore.for_workspace(cfg.cache_directory, workspace.name) as store:
            try:
                summary = CacheBuilder(source, store).build_cache(workspace)
            except KeyboardInterrupt:
                logging.info("Caching interrupted by user")
                print("\nCaching interrupted. Run the command again to refresh the cache.")
                return 1

    print(summary.summary())
    print(f"\nCache written to {store.root}")
    return 1 if summary.failed else 0


def run_migration(cfg: ConfigManager, args) -> int:
    """
    Execute migrate-page or migrate-workspace.
    """
    prompter = LoggingPrompter() if args.no_prompt or args.dry_run else ConsolePrompter()

    with open_cache(cfg, args.workspace, args.dry_run) as store, \
            make_destination(cfg, args.dry_run) as destination:
        migrator = Migrator(store, destination, prompter, max_depth=cfg.max_depth)
        try:
            if args.command == "migrate-workspace":
                migrator.migrate_workspace(args.parent)
            else:
                for page_id in args.page_ids:
                    migrator.migrate_page(page_id, args.parent)
        except KeyboardInterrupt:
            logging.info("Migration interrupted by user")
            print("\nMigration interrupted. Run the command again to resume.")

    summary = migrator.summary
    print(summary.summary())
    if args.dry_run:
        print("\nDry run: nothing was sent to Notion and no migration records were kept.")
    return 1 if summary.failed else 0


def run_status(cfg: ConfigManager, args) -> int:
    """
    Execute the status command: report migration progress of a cached workspace.
    """
    with open_cache(cfg, args.workspace) as store:
        workspace = store.get_workspace()
        item_ids = store.list_ids(workspace.id)
        records = {record.item_id: record for record in store.list_records()}

    counts = Counter(record.status for record in records.values())
    not_started = sum(1 for item_id in item_ids if item_id not in records)

    print("\n" + "=" * 60)
    print(f"STATUS: {workspace.name}")
    print("=" * 60)
    print(f"  Items cached:       {len(item_ids)}")
    print(f"  Created:            {counts[MigrationStatus.CREATED]}")
    print(f"  Pending:            {counts[MigrationStatus.PENDING]}")
    print(f"  Failed:             {counts[MigrationStatus.FAILED]}")
    print(f"  Not started:        {not_started}")

    failed = [record for record in records.values() if record.status == MigrationStatus.FAILED]
    if failed:
        print(f"\n  FAILED ({len(failed)}):")
        for record in failed:
            print(f"    • {record.item_id} (attempts: {record.attempts}): {record.error}")
    print("=" * 60)
    return 0


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="nuc2not - cache a Nuclino workspace and migrate it to Notion",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py cache                                     # Choose a workspace and cache it
  python main.py cache --workspace "Team Wiki"             # Cache a named workspace
  python main.py migrate-workspace --workspace "Team Wiki" --parent <notion-page-id>
  python main.py migrate-page --workspace "Team Wiki" --parent <notion-page-id> <item-id>
  python main.py --dry-run migrate-workspace --workspace "Team Wiki" --parent test
  python main.py status --workspace "Team Wiki"

API keys are read from NUCLINO_API_KEY and NOTION_API_KEY (a .env file works too).
        """
    )

    parser.add_argument(
        "--wait",
        type=int,
        metavar="MS",
        help="Milliseconds to wait between Nuclino requests (default: from config, 750)"
    )

    parser.add_argument(
        "--config",
        type=str,
        help="Path to the configuration file (default: config.yaml)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Record what a migration would create instead of calling Notion"
    )

    parser.add_argument(
        "--no-prompt",
        action="store_true",
        help="Log manual upload requests instead of waiting for each one"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"nuc2not {__version__}"
    )

    commands = parser.add_subparsers(dest="command", required=True)

    cache = commands.add_parser("cache", help="Populate the cache for a Nuclino workspace")
    cache.add_argument("--workspace", help="Workspace name (asks when omitted)")

    page = commands.add_parser("migrate-page", help="Migrate individual cached pages")
    page.add_argument("--workspace", required=True, help="Name of the cached workspace")
    page.add_argument("--parent", required=True, help="Notion page to create the pages under")
    page.add_argument("page_ids", nargs="+", metavar="PAGE_ID", help="Nuclino item ids")

    workspace = commands.add_parser("migrate-workspace", help="Migrate a whole cached workspace")
    workspace.add_argument("--workspace", required=True, help="Name of the cached workspace")
    workspace.add_argument("--parent", required=True, help="Notion page to create the top-level pages under")

    status = commands.add_parser("status", help="Show migration progress of a cached workspace")
    status.add_argument("--workspace", required=True, help="Name of the cached workspace")

    return parser.parse_args(argv)


COMMANDS = {
    "cache": run_cache,
    "migrate-page": run_migration,
    "migrate-workspace": run_migration,
    "status": run_status,
}


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    args = parse_arguments(argv)
    load_dotenv()

    cfg = ConfigManager(args.config) if args.config else config
    if args.wait is not None:
        cfg.set("source.wait_ms", args.wait)
    setup_logging(cfg)

    logging.info(f"nuc2not {__version__}: {args.command}")

    try:
        exit_code = COMMANDS[args.command](cfg, args)
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
        print("\nInterrupted.")
        exit_code = 1
    except MigrationToolError as e:
        logging.error(f"{args.command} failed: {e}")
        print(f"\n{args.command} failed: {e}")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
