"""
Arena of cached items indexed by id.

The migration walks the workspace hierarchy parents first. Items keep the
order in which the cache builder enumerated them, so children are visited in
source order.
"""

from typing import Dict, Iterator, List

from ..models import CachedItem


class ItemTree:
    """
    Parent/child index over a list of cached items.

    Items whose parent is not among the given items are treated as roots.
    """

    def __init__(self, items: List[CachedItem]):
        self.items: Dict[str, CachedItem] = {item.id: item for item in items}
        self.children: Dict[str, List[str]] = {item_id: [] for item_id in self.items}
        self.roots: List[str] = []

        for item in items:
            if item.parent_id and item.parent_id in self.items and item.parent_id != item.id:
                self.children[item.parent_id].append(item.id)
            else:
                self.roots.append(item.id)

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self.items

    def get(self, item_id: str) -> CachedItem:
        return self.items[item_id]

    def children_of(self, item_id: str) -> List[str]:
        return list(self.children.get(item_id, []))

    def descendants(self, item_id: str) -> List[str]:
        """All ids below ``item_id`` in pre-order."""
        found: List[str] = []
        stack = list(reversed(self.children_of(item_id)))
        while stack:
            current = stack.pop()
            found.append(current)
            stack.extend(reversed(self.children_of(current)))
        return found

    def walk(self) -> Iterator[str]:
        """Every reachable id in pre-order: each parent before its children."""
        for root in self.roots:
            yield root
            yield from self.descendants(root)
