"""
Recording destination for dry runs and tests.

Pages and blocks are kept in memory and every call is logged, so a migration
can be rehearsed end to end without touching Notion.
"""

import copy
import logging
from typing import Any, Dict, List, Optional

from ..errors import DestinationError
from .base import BaseDestination, CreatedPage, children_of


class RecordingDestination(BaseDestination):
    """
    In-memory destination that records what a migration would create.

    Tests can queue failures with :meth:`fail_next_appends` and
    :meth:`fail_pages_titled`, and inspect ``calls`` and :meth:`tree`.
    """

    def __init__(self, batch_size: int = 100, nesting_limit: int = 2,
                 url_base: str = "https://www.notion.so"):
        super().__init__(batch_size=batch_size, nesting_limit=nesting_limit)
        self.url_base = url_base.rstrip('/')
        self.pages: Dict[str, Dict[str, Any]] = {}
        self.children: Dict[str, List[Dict]] = {}
        self.calls: List[tuple] = []
        self._append_failures: List[Exception] = []
        self._title_failures: Dict[str, Exception] = {}
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter:04d}"

    def fail_next_appends(self, error: Optional[Exception] = None, times: int = 1) -> None:
        """Make the next ``times`` append requests raise ``error``."""
        error = error or DestinationError("Simulated conflict", status_code=409)
        self._append_failures.extend([error] * times)

    def fail_pages_titled(self, title: str, error: Optional[Exception] = None) -> None:
        """Make every page creation with ``title`` raise ``error``."""
        self._title_failures[title] = error or DestinationError("Simulated rejection", status_code=400)

    def create_page(self, parent_id: str, title: str, metadata: Optional[Dict[str, Any]] = None) -> CreatedPage:
        self.calls.append(("create_page", parent_id, title))
        if title in self._title_failures:
            raise self._title_failures[title]

        page_id = self._next_id("page")
        url = f"{self.url_base}/{page_id}"
        self.pages[page_id] = {
            "parent_id": parent_id,
            "title": title,
            "metadata": dict(metadata or {}),
            "url": url,
        }
        self.children[page_id] = []
        logging.info(f"[dry-run] Created page '{title}' ({page_id}) under {parent_id}")
        return CreatedPage(id=page_id, url=url)

    def append_batch(self, parent_id: str, blocks: List[Dict]) -> List[str]:
        self.calls.append(("append", parent_id, len(blocks)))
        if self._append_failures:
            raise self._append_failures.pop(0)

        created_ids = []
        for block in blocks:
            block_id = self._next_id("block")
            stored = copy.deepcopy(block)
            stored["id"] = block_id
            self.children.setdefault(parent_id, []).append(stored)
            self.children[block_id] = []
            created_ids.append(block_id)
        logging.debug(f"[dry-run] Appended {len(blocks)} blocks to {parent_id}")
        return created_ids

    def tree(self, parent_id: str) -> List[Dict]:
        """
        The blocks under a page or block as the destination would show them.

        Children sent inline and children appended later are merged, inline first.
        """
        rendered = []
        for block in self.children.get(parent_id, []):
            rendered.append(self._render(block))
        return rendered

    def _render(self, block: Dict) -> Dict:
        block_type = block["type"]
        body = {key: value for key, value in block[block_type].items() if key != "children"}
        children = [self._render(child) for child in children_of(block)]
        if "id" in block:
            children.extend(self.tree(block["id"]))
        if children:
            body["children"] = children
        return {"type": block_type, block_type: body}

    def child_pages(self, parent_id: str) -> List[str]:
        """Ids of pages created under ``parent_id``, in creation order."""
        return [page_id for page_id, page in self.pages.items() if page["parent_id"] == parent_id]
