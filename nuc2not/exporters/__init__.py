"""Destination clients that receive migrated pages."""

from .base import BLOCKS_PER_REQUEST, REQUEST_NESTING_LIMIT, BaseDestination, CreatedPage
from .notion import NotionClient
from .recording import RecordingDestination

__all__ = [
    "BLOCKS_PER_REQUEST",
    "BaseDestination",
    "CreatedPage",
    "NotionClient",
    "REQUEST_NESTING_LIMIT",
    "RecordingDestination",
]
