"""
Mock source for testing nuc2not.

This module provides an in-memory workspace with hardcoded pages so the cache
builder and the whole pipeline can run without network access.
"""

from typing import Dict, List, Optional, Set
from datetime import datetime

from ..errors import NotFound, SourceError
from ..models import CachedItem, ItemKind, MediaRef, TreeEntry, WorkspaceRef
from .base import BaseSource
from .markdown import collect_media, parse_markdown


DIAGRAM_ID = "0b6c1f6e-4a53-4a0e-9d8e-2f0f7c1a9e11"
HANDOUT_ID = "5d2e8b3a-91c4-4f6b-a7e2-6c3b0d4f8a22"

HANDBOOK_MD = """# Welcome

This is the **team handbook**. Start with the pages below.
"""

ONBOARDING_MD = f"""## First week

- [x] Get a laptop
- [ ] Read the *architecture* overview
    - Services
        - Storage layer
    1. Ask your buddy

![Architecture](https://files.nuclino.com/files/{DIAGRAM_ID}/architecture.png)

```python
print("hello")
```

[Onboarding handout](https://files.nuclino.com/files/{HANDOUT_ID}/handout.pdf)
"""

RELEASE_NOTES_MD = """# Release 1.2

> Shipped on time.

| Feature | Status |
| --- | --- |
| Search | done |
| Export | ~~dropped~~ |

---

See [the handbook](https://app.nuclino.com/Demo/General/Team-Handbook-1a2b3c4d) for details.
"""


class MockSource(BaseSource):
    """
    In-memory source that returns hardcoded test data.

    Tests may inject failures per item id or per media id, and inspect
    ``calls`` to see which operations were issued.
    """

    def __init__(self, workspace: Optional[WorkspaceRef] = None,
                 items: Optional[List[CachedItem]] = None,
                 blobs: Optional[Dict[str, bytes]] = None):
        """
        Initialize the mock source.

        Args:
            workspace: Workspace to expose; a demo workspace when omitted
            items: Items of the workspace in pre-order with parent_id set
            blobs: Media bytes keyed by media id
        """
        if items is None:
            workspace, items, blobs = self._create_test_workspace()
        self.workspace = workspace or WorkspaceRef(
            id="ws-test",
            name="Test Workspace",
            child_ids=[item.id for item in items if item.parent_id is None]
        )
        self._items = {item.id: item for item in items}
        self._order = [item.id for item in items]
        self._blobs = dict(blobs or {})
        self.failing_items: Dict[str, Exception] = {}
        self.failing_media: Set[str] = set()
        self.calls: List[str] = []

    def list_workspaces(self) -> List[WorkspaceRef]:
        self.calls.append("list_workspaces")
        return [self.workspace]

    def list_tree(self, workspace: WorkspaceRef) -> List[TreeEntry]:
        self.calls.append(f"list_tree:{workspace.id}")
        if workspace.id != self.workspace.id:
            raise NotFound("workspace", workspace.id)
        return [
            TreeEntry(id=item.id, parent_id=item.parent_id, kind=item.kind, title=item.title)
            for item in (self._items[item_id] for item_id in self._order)
        ]

    def get_item(self, item_id: str) -> CachedItem:
        self.calls.append(f"get_item:{item_id}")
        if item_id in self.failing_items:
            raise self.failing_items[item_id]
        if item_id not in self._items:
            raise NotFound("item", item_id)
        return self._items[item_id].model_copy(deep=True)

    def download_media(self, media_id: str) -> bytes:
        self.calls.append(f"download_media:{media_id}")
        if media_id in self.failing_media:
            raise SourceError(f"Simulated download failure for {media_id}", status_code=500)
        if media_id not in self._blobs:
            raise NotFound("media", media_id)
        return self._blobs[media_id]

    @staticmethod
    def page(item_id: str, title: str, markdown: str = "", parent_id: Optional[str] = None,
             kind: ItemKind = ItemKind.PAGE, workspace_id: str = "ws-test") -> CachedItem:
        """
        Build a CachedItem the way the Nuclino client would from Markdown content.
        """
        blocks = parse_markdown(markdown)
        return CachedItem(
            id=item_id,
            workspace_id=workspace_id,
            parent_id=parent_id,
            title=title,
            kind=kind,
            created_at=datetime(2024, 5, 22, 9, 30),
            updated_at=datetime(2024, 6, 1, 17, 0),
            author="Jane Doe <jane@example.com>",
            url=f"https://app.nuclino.com/Demo/General/{title.replace(' ', '-')}-{item_id}",
            content_blocks=blocks,
            media_refs=[MediaRef(media_id=media_id, filename=filename)
                        for media_id, filename in collect_media(blocks)]
        )

    def _create_test_workspace(self):
        """
        Create a small demo workspace covering collections, nesting and media.

        Returns:
            Tuple of (workspace, items in pre-order, blobs)
        """
        workspace_id = "ws-demo"
        items = [
            self.page("1a2b3c4d", "Team Handbook", HANDBOOK_MD,
                      kind=ItemKind.COLLECTION, workspace_id=workspace_id),
            self.page("2b3c4d5e", "Onboarding", ONBOARDING_MD,
                      parent_id="1a2b3c4d", workspace_id=workspace_id),
            self.page("3c4d5e6f", "Release Notes", RELEASE_NOTES_MD, workspace_id=workspace_id),
        ]
        workspace = WorkspaceRef(id=workspace_id, name="Demo", child_ids=["1a2b3c4d", "3c4d5e6f"])
        blobs = {
            DIAGRAM_ID: b"\x89PNG\r\n\x1a\nfake-diagram",
            HANDOUT_ID: b"%PDF-1.4 fake-handout",
        }
        return workspace, items, blobs
