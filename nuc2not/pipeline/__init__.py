"""The cache-then-migrate pipeline."""

from .cache_builder import CacheBuilder, CacheSummary, build_cache
from .migrator import MigrationSummary, Migrator
from .prompts import ConsolePrompter, LoggingPrompter, ManualUploadPrompter
from .tree import ItemTree

__all__ = [
    "CacheBuilder",
    "CacheSummary",
    "ConsolePrompter",
    "ItemTree",
    "LoggingPrompter",
    "ManualUploadPrompter",
    "MigrationSummary",
    "Migrator",
    "build_cache",
]
