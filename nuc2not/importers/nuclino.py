"""
Nuclino source client for nuc2not.

This module wraps the Nuclino REST API. Every request waits on the configured
pacer first, transient faults are retried a bounded number of times, and item
content is parsed from Markdown into SourceBlocks before it leaves the client.
"""

import httpx
import logging
from typing import Any, Dict, List, Optional
from pydantic import ValidationError

from ..errors import NotFound, SourceError
from ..models import CachedItem, ItemKind, MediaRef, TreeEntry, WorkspaceRef
from ..pacing import FixedIntervalPacer, PacingStrategy
from .base import BaseSource
from .markdown import collect_media, parse_markdown


DEFAULT_BASE_URL = "https://api.nuclino.com/v0"


class NuclinoClient(BaseSource):
    """
    Paced, retrying client for the Nuclino API.
    """

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL,
                 pacer: Optional[PacingStrategy] = None, max_retries: int = 3,
                 timeout: float = 30.0, page_size: int = 100,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize the Nuclino client.

        Args:
            api_key: Nuclino API key
            base_url: API root, without trailing slash
            pacer: Strategy consulted before every request (default 750ms fixed interval)
            max_retries: Extra attempts for 5xx responses and network errors
            timeout: Per-request timeout in seconds
            page_size: Items requested per page when listing
            transport: Optional httpx transport, used by tests
        """
        self.base_url = base_url.rstrip('/')
        self.pacer = pacer or FixedIntervalPacer(0.75)
        self.max_retries = max_retries
        self.page_size = page_size
        self.client = httpx.Client(
            base_url=self.base_url,
            headers={"Authorization": api_key, "Accept": "application/json"},
            timeout=timeout,
            transport=transport
        )
        # Download URLs are presigned and must not carry the API key.
        self.download_client = httpx.Client(timeout=timeout, follow_redirects=True, transport=transport)
        self._users: Dict[str, str] = {}

    def close(self) -> None:
        self.client.close()
        self.download_client.close()

    def _request(self, client: httpx.Client, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        Issue one paced GET, retrying transient failures.

        Raises:
            NotFound: On HTTP 404
            SourceError: On any other 4xx, or once retries are exhausted
        """
        attempts = self.max_retries + 1
        last_error: Optional[SourceError] = None

        for attempt in range(1, attempts + 1):
            self.pacer.wait_before_next_call()
            try:
                response = client.get(url, params=params)
            except httpx.RequestError as e:
                logging.warning(f"Nuclino network error attempt {attempt}/{attempts} for {url}: {e}")
                last_error = SourceError(f"Network error calling {url}: {e}")
                continue

            if response.status_code >= 500:
                logging.warning(f"Nuclino {response.status_code} attempt {attempt}/{attempts} for {url}")
                last_error = SourceError(
                    f"Nuclino returned {response.status_code} for {url}",
                    status_code=response.status_code
                )
                continue

            if response.status_code == 404:
                raise NotFound("source object", url)

            if response.status_code >= 400:
                raise SourceError(
                    f"Nuclino returned {response.status_code} for {url}: {self._error_message(response)}",
                    status_code=response.status_code
                )

            return response

        raise last_error

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("message", response.text[:500])
        except ValueError:
            return response.text[:500]

    def _get_data(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        response = self._request(self.client, path, params)
        try:
            body = response.json()
        except ValueError as e:
            raise SourceError(f"Nuclino returned invalid JSON for {path}: {e}")
        if body.get("status") != "success":
            raise SourceError(f"Nuclino request for {path} failed: {body.get('message', body)}")
        return body.get("data") or {}

    def _paged(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        query = dict(params or {})
        query["limit"] = self.page_size
        while True:
            data = self._get_data(path, query)
            page = data.get("results", [])
            results.extend(page)
            if len(page) < self.page_size:
                return results
            query["after"] = page[-1]["id"]

    def list_workspaces(self) -> List[WorkspaceRef]:
        return [
            WorkspaceRef(id=raw["id"], name=raw.get("name", raw["id"]), child_ids=raw.get("childIds", []))
            for raw in self._paged("/workspaces")
        ]

    def list_tree(self, workspace: WorkspaceRef) -> List[TreeEntry]:
        listed = {raw["id"]: raw for raw in self._paged("/items", {"workspaceId": workspace.id})}
        logging.info(f"Listed {len(listed)} items in workspace '{workspace.name}'")

        entries: List[TreeEntry] = []
        visited = set()

        def visit(item_id: str, parent_id: Optional[str]):
            if item_id in visited:
                return
            visited.add(item_id)
            raw = listed.get(item_id, {})
            entries.append(TreeEntry(
                id=item_id,
                parent_id=parent_id,
                kind=self._kind(raw),
                title=raw.get("title", "")
            ))
            for child_id in raw.get("childIds", []):
                visit(child_id, item_id)

        for child_id in workspace.child_ids:
            visit(child_id, None)

        # Anything the listing returned but no collection claims.
        for item_id in listed:
            visit(item_id, None)

        return entries

    @staticmethod
    def _kind(raw: Dict[str, Any]) -> ItemKind:
        return ItemKind.COLLECTION if raw.get("object") == "collection" else ItemKind.PAGE

    def get_item(self, item_id: str) -> CachedItem:
        raw = self._get_data(f"/items/{item_id}")
        try:
            return self._item_from_raw(raw)
        except (KeyError, TypeError, ValidationError) as e:
            raise SourceError(f"Nuclino returned a malformed item {item_id}: {e}")

    def _item_from_raw(self, raw: Dict[str, Any]) -> CachedItem:
        blocks = parse_markdown(raw.get("content") or "")
        media = collect_media(blocks)
        known = {media_id for media_id, _ in media}
        for file_id in (raw.get("contentMeta") or {}).get("fileIds", []):
            if file_id not in known:
                media.append((file_id, file_id))

        return CachedItem(
            id=raw["id"],
            workspace_id=raw.get("workspaceId"),
            title=raw.get("title") or "",
            kind=self._kind(raw),
            created_at=raw.get("createdAt"),
            updated_at=raw.get("lastUpdatedAt"),
            author=self._author(raw.get("createdUserId")),
            url=raw.get("url"),
            content_blocks=blocks,
            media_refs=[MediaRef(media_id=media_id, filename=filename) for media_id, filename in media]
        )

    def _author(self, user_id: Optional[str]) -> Optional[str]:
        """Best-effort display name for a user id, memoized per client."""
        if not user_id:
            return None
        if user_id not in self._users:
            try:
                user = self._get_data(f"/users/{user_id}")
                name = " ".join(part for part in (user.get("firstName"), user.get("lastName")) if part)
                email = user.get("email")
                self._users[user_id] = f"{name} <{email}>" if name and email else (name or email or user_id)
            except (NotFound, SourceError) as e:
                logging.debug(f"Could not resolve user {user_id}: {e}")
                self._users[user_id] = user_id
        return self._users[user_id]

    def get_file_info(self, media_id: str) -> Dict[str, Any]:
        return self._get_data(f"/files/{media_id}")

    def download_media(self, media_id: str) -> bytes:
        info = self.get_file_info(media_id)
        url = (info.get("download") or {}).get("url")
        if not url:
            raise SourceError(f"Nuclino file {media_id} has no download URL")
        return self._request(self.download_client, url).content
