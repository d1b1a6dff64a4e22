"""
Base source client interface for nuc2not.

This module defines the abstract interface the cache builder pulls from.
"""

from abc import ABC, abstractmethod
from typing import List

from ..models import CachedItem, TreeEntry, WorkspaceRef


class BaseSource(ABC):
    """
    Abstract base class for all source clients.

    Each implementation exposes a workspace as a flat tree listing plus
    per-item retrieval, so the cache builder never depends on the source's
    wire format.
    """

    @abstractmethod
    def list_workspaces(self) -> List[WorkspaceRef]:
        """
        List every workspace visible with the configured credentials.

        Returns:
            WorkspaceRef objects in the order the source reports them
        """
        pass

    @abstractmethod
    def list_tree(self, workspace: WorkspaceRef) -> List[TreeEntry]:
        """
        Flat listing of a workspace's items, parents before children.

        Args:
            workspace: The workspace to enumerate

        Returns:
            One TreeEntry per item; callers rebuild the hierarchy from parent_id
        """
        pass

    @abstractmethod
    def get_item(self, item_id: str) -> CachedItem:
        """
        Retrieve one item with its parsed block tree and media references.

        Blob bytes are not included; see :meth:`download_media`.

        Raises:
            NotFound: If the item does not exist
            SourceError: On a non-retryable source fault
        """
        pass

    @abstractmethod
    def download_media(self, media_id: str) -> bytes:
        """
        Download the raw bytes of a media file.

        Raises:
            NotFound: If the file does not exist
            SourceError: On a non-retryable source fault
        """
        pass

    def close(self) -> None:
        """Release any held connections."""
        return None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
