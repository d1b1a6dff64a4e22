"""
nuc2not: Nuclino to Notion migration tool.

Caches a Nuclino workspace locally, then recreates it page by page in Notion.
"""

__version__ = "0.1.0"
__author__ = "nuc2not Project"

# Import main components
from .database import CacheStore
from .models import CachedItem, MigrationRecord, SourceBlock, TextRun, WorkspaceRef
from .importers import BaseSource, MockSource, NuclinoClient
from .translator import BlockTranslator, Translation
from .exporters import BaseDestination, NotionClient, RecordingDestination
from .pipeline import CacheBuilder, Migrator

__all__ = [
    "CacheStore",
    "CachedItem",
    "MigrationRecord",
    "SourceBlock",
    "TextRun",
    "WorkspaceRef",
    "BaseSource",
    "MockSource",
    "NuclinoClient",
    "BlockTranslator",
    "Translation",
    "BaseDestination",
    "NotionClient",
    "RecordingDestination",
    "CacheBuilder",
    "Migrator"
]
