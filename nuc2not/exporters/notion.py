"""
Notion destination client for nuc2not.

This module wraps the two Notion endpoints a migration needs: page creation
and block-children appends. Notion answers 409 when a page is modified
concurrently (including by our own previous request that it has not finished
applying) and 429 when rate limited; both are retried with exponential
backoff before giving up.
"""

import httpx
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..errors import DestinationError
from ..pacing import FixedIntervalPacer, PacingStrategy
from ..translator.rich_text import plain
from .base import BLOCKS_PER_REQUEST, REQUEST_NESTING_LIMIT, BaseDestination, CreatedPage


DEFAULT_BASE_URL = "https://api.notion.com/v1"
NOTION_VERSION = "2022-06-28"

RETRYABLE_STATUS = (409, 429)


class NotionClient(BaseDestination):
    """
    Paced Notion client with conflict-aware retries.
    """

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL,
                 notion_version: str = NOTION_VERSION,
                 pacer: Optional[PacingStrategy] = None,
                 max_retries: int = 5,
                 backoff_initial: float = 1.0,
                 backoff_multiplier: float = 2.0,
                 backoff_max: float = 60.0,
                 batch_size: int = BLOCKS_PER_REQUEST,
                 nesting_limit: int = REQUEST_NESTING_LIMIT,
                 timeout: float = 60.0,
                 transport: Optional[httpx.BaseTransport] = None,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize the Notion client.

        Args:
            api_key: Notion integration token
            base_url: API root, without trailing slash
            notion_version: Value of the Notion-Version header
            pacer: Strategy consulted before every request (default 350ms fixed interval)
            max_retries: Extra attempts for 409, 429 and network errors
            backoff_initial: Seconds to wait before the first retry
            backoff_multiplier: Growth factor of the wait between retries
            backoff_max: Upper bound of any single wait
            batch_size: Maximum top-level blocks per append request
            nesting_limit: Levels of children a block may carry in one request
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport, used by tests
            sleep: Function used to wait between retries
        """
        super().__init__(batch_size=batch_size, nesting_limit=nesting_limit)
        self.pacer = pacer or FixedIntervalPacer(0.35)
        self.max_retries = max_retries
        self.backoff_initial = backoff_initial
        self.backoff_multiplier = backoff_multiplier
        self.backoff_max = backoff_max
        self._sleep = sleep
        self.client = httpx.Client(
            base_url=base_url.rstrip('/'),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Notion-Version": notion_version,
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport
        )

    def close(self) -> None:
        self.client.close()

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_initial * self.backoff_multiplier ** attempt, self.backoff_max)

    def _retry_wait(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if response.status_code == 429 and retry_after:
            try:
                return min(float(retry_after), self.backoff_max)
            except ValueError:
                pass
        return self._backoff(attempt)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("message", response.text[:500])
        except ValueError:
            return response.text[:500]

    def _request(self, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Issue one paced request, retrying conflicts, rate limits and network errors.

        Raises:
            DestinationError: On any other error status, or once retries are exhausted
        """
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            self.pacer.wait_before_next_call()
            try:
                response = self.client.request(method, path, json=payload)
            except httpx.TransportError as e:
                if attempt + 1 >= attempts:
                    raise DestinationError(f"Notion {method} {path} failed after {attempts} attempts: {e}")
                wait = self._backoff(attempt)
                logging.warning(f"Notion network error attempt {attempt + 1}/{attempts}, retry in {wait:.1f}s: {e}")
                self._sleep(wait)
                continue

            if response.status_code in (200, 201):
                return response.json()

            if response.status_code in RETRYABLE_STATUS and attempt + 1 < attempts:
                wait = self._retry_wait(response, attempt)
                logging.warning(
                    f"Notion {response.status_code} attempt {attempt + 1}/{attempts} for {method} {path}, "
                    f"retry in {wait:.1f}s"
                )
                self._sleep(wait)
                continue

            raise DestinationError(
                f"Notion {method} {path} returned {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code
            )

        raise DestinationError(f"Notion {method} {path} failed after {attempts} attempts")

    def create_page(self, parent_id: str, title: str, metadata: Optional[Dict[str, Any]] = None) -> CreatedPage:
        metadata = metadata or {}
        payload: Dict[str, Any] = {
            "parent": {"page_id": parent_id},
            "properties": {"title": {"title": plain(title)}},
        }
        payload["properties"].update(metadata.get("properties", {}))
        if metadata.get("icon"):
            payload["icon"] = {"type": "emoji", "emoji": metadata["icon"]}

        page = self._request("POST", "/pages", payload)
        logging.info(f"Created Notion page '{title}' ({page['id']})")
        return CreatedPage(id=page["id"], url=page.get("url"))

    def append_batch(self, parent_id: str, blocks: List[Dict]) -> List[str]:
        result = self._request("PATCH", f"/blocks/{parent_id}/children", {"children": blocks})
        created = [block["id"] for block in result.get("results", [])]
        logging.debug(f"Appended {len(blocks)} blocks to {parent_id}")
        # Some API versions list every child of the parent; the new ones come last.
        return created[-len(blocks):] if blocks else []
