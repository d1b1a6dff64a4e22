"""
Base destination interface for nuc2not.

The destination accepts pages and blocks through a narrow API with request
size and nesting limits. This module holds the batching logic shared by every
destination so implementations only supply the raw calls.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple
from pydantic import BaseModel

from ..errors import DestinationError


BLOCKS_PER_REQUEST = 100
MAX_BLOCKS_IN_REQUEST = 1000
REQUEST_NESTING_LIMIT = 2


class CreatedPage(BaseModel):
    """
    A page that exists in the destination.
    """

    id: str
    url: Optional[str] = None


def children_of(block: Dict) -> List[Dict]:
    return block.get(block["type"], {}).get("children", [])


def nesting_depth(block: Dict) -> int:
    """Levels of children below ``block``; 0 for a block without children."""
    children = children_of(block)
    if not children:
        return 0
    return 1 + max(nesting_depth(child) for child in children)


def block_count(block: Dict) -> int:
    return 1 + sum(block_count(child) for child in children_of(block))


def split_children(block: Dict) -> Tuple[Dict, List[Dict]]:
    """Separate a block from its children so they can be appended later."""
    block_type = block["type"]
    body = {key: value for key, value in block[block_type].items() if key != "children"}
    return {"type": block_type, block_type: body}, children_of(block)


def widest(block: Dict) -> int:
    """Most children held directly by any block in the subtree."""
    children = children_of(block)
    return max([len(children)] + [widest(child) for child in children])


def fits_in_request(block: Dict, nesting_limit: int = REQUEST_NESTING_LIMIT) -> bool:
    """Whether a block and all of its children can be sent in one append request."""
    return (nesting_depth(block) <= nesting_limit
            and widest(block) <= BLOCKS_PER_REQUEST
            and block_count(block) <= MAX_BLOCKS_IN_REQUEST)


def split_for_request(block: Dict, nesting_limit: int = REQUEST_NESTING_LIMIT) -> Tuple[Dict, List[Dict]]:
    """
    Cut a block that does not fit one request into a head to send now and
    children to append to the created head afterwards.

    The head keeps as many leading children as fit, so blocks that must be
    created with children (tables) arrive with their first rows.
    """
    head, children = split_children(block)
    inline: List[Dict] = []
    size = 1
    if nesting_depth(block) <= nesting_limit:
        for child in children[:BLOCKS_PER_REQUEST]:
            child_size = block_count(child)
            if not fits_in_request(child, nesting_limit) or size + child_size > MAX_BLOCKS_IN_REQUEST:
                break
            inline.append(child)
            size += child_size
    if inline:
        head[head["type"]]["children"] = inline
    return head, children[len(inline):]


class BaseDestination(ABC):
    """
    Abstract base class for all destinations.
    """

    def __init__(self, batch_size: int = BLOCKS_PER_REQUEST, nesting_limit: int = REQUEST_NESTING_LIMIT):
        """
        Initialize the destination.

        Args:
            batch_size: Maximum top-level blocks per append request
            nesting_limit: Levels of children a block may carry in one request
        """
        if not 1 <= batch_size <= BLOCKS_PER_REQUEST:
            raise ValueError(f"batch_size must be between 1 and {BLOCKS_PER_REQUEST}: {batch_size}")
        self.batch_size = batch_size
        self.nesting_limit = nesting_limit

    @abstractmethod
    def create_page(self, parent_id: str, title: str, metadata: Optional[Dict[str, Any]] = None) -> CreatedPage:
        """
        Create an empty page under ``parent_id``.

        Args:
            parent_id: Destination page to nest the new page under
            title: Page title
            metadata: Optional ``icon`` (emoji) and extra ``properties``

        Raises:
            DestinationError: If the destination rejects the page
        """
        pass

    @abstractmethod
    def append_batch(self, parent_id: str, blocks: List[Dict]) -> List[str]:
        """
        Append one request's worth of blocks to a page or block.

        Returns:
            Ids of the created top-level blocks, in order

        Raises:
            DestinationError: If the destination rejects the request
        """
        pass

    def append_blocks(self, page_id: str, blocks: List[Dict],
                      on_progress: Optional[Callable[[int], None]] = None) -> int:
        """
        Append any number of blocks, in order, within the API's request limits.

        Blocks are sent in batches of at most ``batch_size``. A block that does
        not fit one request (children nested deeper than ``nesting_limit``,
        more than 100 children on one block, or too many blocks) is sent with
        only the leading children that fit, and the rest are then appended to
        the created block recursively.

        Args:
            page_id: Destination page (or block) to append to
            blocks: Top-level blocks in order
            on_progress: Called with the number of top-level blocks that were
                just durably appended, including all of their descendants

        Returns:
            Number of top-level blocks appended
        """
        appended = 0
        tranche: List[Dict] = []
        tranche_size = 0

        def report(count: int):
            if on_progress and count:
                on_progress(count)

        def flush(hold_last: bool = False) -> List[str]:
            nonlocal appended, tranche, tranche_size
            created_ids = self.append_batch(page_id, tranche)
            durable = len(tranche) - 1 if hold_last else len(tranche)
            report(durable)
            appended += durable
            tranche, tranche_size = [], 0
            return created_ids

        for block in blocks:
            fits = fits_in_request(block, self.nesting_limit)
            if fits:
                head, children = block, []
            else:
                head, children = split_for_request(block, self.nesting_limit)

            size = block_count(head)
            if tranche and tranche_size + size > MAX_BLOCKS_IN_REQUEST:
                flush()

            if not fits:
                tranche.append(head)
                created_ids = flush(hold_last=True)
                if not created_ids:
                    raise DestinationError(f"Append to {page_id} returned no block ids")
                logging.debug(f"Appending {len(children)} remaining children to block {created_ids[-1]}")
                self.append_blocks(created_ids[-1], children)
                report(1)
                appended += 1
                continue

            tranche.append(block)
            tranche_size += size
            if len(tranche) == self.batch_size:
                flush()

        if tranche:
            flush()

        return appended

    def close(self) -> None:
        return None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
