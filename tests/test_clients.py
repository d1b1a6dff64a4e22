"""
Unit tests for the source and destination API clients.

HTTP is faked with httpx.MockTransport and waiting is injected, so these tests
never touch the network and never sleep.
"""

import itertools
import json
import unittest

import httpx

from nuc2not.errors import DestinationError, NotFound, SourceError
from nuc2not.exporters import NotionClient, RecordingDestination
from nuc2not.importers import NuclinoClient
from nuc2not.models import ItemKind, WorkspaceRef
from nuc2not.pacing import NoPacing, PacingStrategy


MEDIA_ID = "0b6c1f6e-4a53-4a0e-9d8e-2f0f7c1a9e11"


class CountingPacer(PacingStrategy):
    def __init__(self):
        self.calls = 0

    def wait_before_next_call(self):
        self.calls += 1


def ok(data):
    return httpx.Response(200, json={"status": "success", "data": data})


def nested_list(depth, text="item"):
    """A Notion bulleted list item with ``depth`` levels of children."""
    block = {"type": "bulleted_list_item", "bulleted_list_item": {"rich_text": []}}
    if depth:
        block["bulleted_list_item"]["children"] = [nested_list(depth - 1, text)]
    return block


def table(rows):
    return {"type": "table", "table": {
        "table_width": 1,
        "has_column_header": False,
        "has_row_header": False,
        "children": [{"type": "table_row", "table_row": {"cells": [[
            {"type": "text", "text": {"content": f"r{i}", "link": None}}
        ]]}} for i in range(rows)],
    }}


def paragraphs(count):
    return [{"type": "paragraph", "paragraph": {"rich_text": [
        {"type": "text", "text": {"content": f"p{i}", "link": None}}
    ]}} for i in range(count)]


class TestNuclinoClient(unittest.TestCase):
    """Test the paced, retrying source client."""

    def make_client(self, handler, **kwargs):
        kwargs.setdefault("pacer", NoPacing())
        client = NuclinoClient("secret-key", transport=httpx.MockTransport(handler), **kwargs)
        self.addCleanup(client.close)
        return client

    def test_every_call_is_paced_and_authenticated(self):
        """Test the pacer runs before each request and the key is sent."""
        seen = []

        def handler(request):
            seen.append(request)
            return ok({"results": [{"id": "ws-1", "name": "Demo", "childIds": ["a"]}]})

        pacer = CountingPacer()
        client = self.make_client(handler, pacer=pacer)
        workspaces = client.list_workspaces()

        self.assertEqual(workspaces, [WorkspaceRef(id="ws-1", name="Demo", child_ids=["a"])])
        self.assertEqual(pacer.calls, 1)
        self.assertEqual(seen[0].headers["Authorization"], "secret-key")
        self.assertEqual(seen[0].url.path, "/v0/workspaces")

    def test_list_tree_pages_and_orders_parents_first(self):
        """Test paging through items and rebuilding pre-order from childIds."""
        pages = {
            None: [{"object": "collection", "id": "c1", "title": "Handbook", "childIds": ["p1", "p2"]},
                   {"object": "item", "id": "p1", "title": "One"}],
            "p1": [{"object": "item", "id": "p2", "title": "Two"},
                   {"object": "item", "id": "p3", "title": "Three"}],
            "p3": [],
        }
        afters = []

        def handler(request):
            self.assertEqual(request.url.params["workspaceId"], "ws-1")
            after = request.url.params.get("after")
            afters.append(after)
            return ok({"results": pages[after]})

        client = self.make_client(handler, page_size=2)
        entries = client.list_tree(WorkspaceRef(id="ws-1", name="Demo", child_ids=["c1", "p3"]))

        self.assertEqual(afters, [None, "p1", "p3"])
        self.assertEqual([entry.id for entry in entries], ["c1", "p1", "p2", "p3"])
        self.assertEqual([entry.parent_id for entry in entries], [None, "c1", "c1", None])
        self.assertEqual(entries[0].kind, ItemKind.COLLECTION)
        self.assertEqual(entries[1].title, "One")

    def test_get_item_parses_content_and_resolves_author(self):
        """Test item hydration: blocks, media refs and memoized author lookup."""
        user_calls = []

        def handler(request):
            if request.url.path.startswith("/v0/users/"):
                user_calls.append(request.url.path)
                return ok({"id": "u1", "firstName": "Jane", "lastName": "Doe", "email": "jane@example.com"})
            item_id = request.url.path.rsplit("/", 1)[-1]
            return ok({
                "object": "item",
                "id": item_id,
                "workspaceId": "ws-1",
                "title": "Page",
                "url": f"https://app.nuclino.com/Demo/General/Page-{item_id}",
                "createdAt": "2024-05-22T09:30:00.000Z",
                "lastUpdatedAt": "2024-06-01T17:00:00.000Z",
                "createdUserId": "u1",
                "content": f"# Hello\n\n![d](https://files.nuclino.com/files/{MEDIA_ID}/diagram.png)",
                "contentMeta": {"itemIds": [], "fileIds": [MEDIA_ID, "extra-file"]},
            })

        client = self.make_client(handler)
        item = client.get_item("i1")
        client.get_item("i2")

        self.assertEqual(item.id, "i1")
        self.assertEqual(item.kind, ItemKind.PAGE)
        self.assertEqual(item.author, "Jane Doe <jane@example.com>")
        self.assertEqual(item.created_at.year, 2024)
        self.assertEqual([block.kind for block in item.content_blocks], ["heading", "image"])
        self.assertEqual([(ref.media_id, ref.filename) for ref in item.media_refs],
                         [(MEDIA_ID, "diagram.png"), ("extra-file", "extra-file")])
        self.assertTrue(all(ref.local_path is None for ref in item.media_refs))
        self.assertEqual(len(user_calls), 1)

    def test_transient_failures_are_retried(self):
        """Test 5xx responses and network errors are retried."""
        responses = iter(["503", "error", "ok"])

        def handler(request):
            outcome = next(responses)
            if outcome == "error":
                raise httpx.ConnectError("connection reset", request=request)
            if outcome == "503":
                return httpx.Response(503, text="unavailable")
            return ok({"results": []})

        pacer = CountingPacer()
        client = self.make_client(handler, pacer=pacer, max_retries=3)

        self.assertEqual(client.list_workspaces(), [])
        self.assertEqual(pacer.calls, 3)

    def test_retries_are_bounded(self):
        """Test exhausted retries raise SourceError."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="broken")

        client = self.make_client(handler, max_retries=2)
        with self.assertRaises(SourceError) as ctx:
            client.get_item("i1")

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(len(calls), 3)

    def test_not_found_and_client_errors_are_not_retried(self):
        """Test 404 maps to NotFound and other 4xx to SourceError, immediately."""
        calls = []

        def handler(request):
            calls.append(request)
            if "missing" in request.url.path:
                return httpx.Response(404, json={"status": "fail", "message": "Not found"})
            return httpx.Response(403, json={"status": "fail", "message": "Forbidden"})

        client = self.make_client(handler)
        with self.assertRaises(NotFound):
            client.get_item("missing")
        with self.assertRaises(SourceError) as ctx:
            client.get_item("secret")

        self.assertEqual(ctx.exception.status_code, 403)
        self.assertIn("Forbidden", str(ctx.exception))
        self.assertEqual(len(calls), 2)

    def test_unsuccessful_envelope_is_an_error(self):
        """Test a 200 response with a failure status is still an error."""
        client = self.make_client(lambda request: httpx.Response(200, json={"status": "fail", "message": "nope"}))
        with self.assertRaises(SourceError):
            client.list_workspaces()

    def test_malformed_item_is_a_source_error(self):
        """Test an item payload without an id raises SourceError, not KeyError."""
        client = self.make_client(lambda request: ok({"object": "item", "title": "No id", "content": "text"}))
        with self.assertRaises(SourceError) as ctx:
            client.get_item("i1")

        self.assertIn("malformed item i1", str(ctx.exception))

    def test_redirect_loop_on_download_is_a_source_error(self):
        """Test request errors other than transport faults are retried, then raised as SourceError."""
        download_requests = []

        def handler(request):
            if request.url.host == "files.example.com":
                download_requests.append(request)
                return httpx.Response(302, headers={"Location": "https://files.example.com/loop"})
            return ok({"id": "f1", "download": {"url": "https://files.example.com/loop"}})

        client = self.make_client(handler, max_retries=1)
        with self.assertRaises(SourceError) as ctx:
            client.download_media("f1")

        self.assertIn("files.example.com", str(ctx.exception))
        self.assertGreater(len(download_requests), 2)

    def test_download_media_uses_unauthenticated_download_url(self):
        """Test media is fetched from the presigned URL without the API key."""
        download_requests = []

        def handler(request):
            if request.url.host == "files.example.com":
                download_requests.append(request)
                return httpx.Response(200, content=b"image-bytes")
            return ok({"id": "f1", "fileName": "a.png",
                       "download": {"url": "https://files.example.com/f1?sig=abc"}})

        client = self.make_client(handler)

        self.assertEqual(client.download_media("f1"), b"image-bytes")
        self.assertEqual(len(download_requests), 1)
        self.assertNotIn("Authorization", download_requests[0].headers)


class TestNotionClient(unittest.TestCase):
    """Test the destination client with conflict-aware retries."""

    def make_client(self, handler, **kwargs):
        self.sleeps = []
        kwargs.setdefault("pacer", NoPacing())
        client = NotionClient("notion-key", transport=httpx.MockTransport(handler),
                              sleep=self.sleeps.append, **kwargs)
        self.addCleanup(client.close)
        return client

    @staticmethod
    def append_handler(requests):
        counter = itertools.count(1)

        def handler(request):
            body = json.loads(request.content)
            requests.append((request.method, request.url.path, body))
            if request.url.path == "/v1/pages":
                return httpx.Response(200, json={"id": "page-1", "url": "https://www.notion.so/page-1"})
            results = [{"id": f"blk-{next(counter)}"} for _ in body["children"]]
            return httpx.Response(200, json={"object": "list", "results": results})

        return handler

    def test_create_page(self):
        """Test page creation payload and headers."""
        requests = []
        seen_headers = []

        def handler(request):
            seen_headers.append(request.headers)
            return self.append_handler(requests)(request)

        client = self.make_client(handler)
        page = client.create_page("parent-1", "Handbook", {"icon": "📁"})

        self.assertEqual(page.id, "page-1")
        self.assertEqual(page.url, "https://www.notion.so/page-1")
        method, path, body = requests[0]
        self.assertEqual((method, path), ("POST", "/v1/pages"))
        self.assertEqual(body["parent"], {"page_id": "parent-1"})
        self.assertEqual(body["properties"]["title"]["title"][0]["text"]["content"], "Handbook")
        self.assertEqual(body["icon"], {"type": "emoji", "emoji": "📁"})
        self.assertEqual(seen_headers[0]["Authorization"], "Bearer notion-key")
        self.assertEqual(seen_headers[0]["Notion-Version"], "2022-06-28")

    def test_append_is_chunked_in_order(self):
        """Test 250 blocks go out as 100, 100 and 50, in order."""
        requests = []
        progress = []
        client = self.make_client(self.append_handler(requests))

        appended = client.append_blocks("page-1", paragraphs(250), on_progress=progress.append)

        self.assertEqual(appended, 250)
        self.assertEqual([len(body["children"]) for _, _, body in requests], [100, 100, 50])
        self.assertEqual(progress, [100, 100, 50])
        self.assertEqual(requests[1][2]["children"][0]["paragraph"]["rich_text"][0]["text"]["content"], "p100")
        self.assertTrue(all(path == "/v1/blocks/page-1/children" for _, path, _ in requests))

    def test_conflict_retried_until_success(self):
        """Test an append answered 409 three times still succeeds."""
        responses = [409, 409, 409, 200]
        calls = []

        def handler(request):
            calls.append(request)
            status = responses.pop(0)
            if status == 409:
                return httpx.Response(409, json={"code": "conflict_error", "message": "Conflict"})
            return httpx.Response(200, json={"results": [{"id": "blk-1"}]})

        client = self.make_client(handler, backoff_initial=1.0, backoff_multiplier=2.0)
        client.append_blocks("page-1", paragraphs(1))

        self.assertEqual(len(calls), 4)
        self.assertEqual(self.sleeps, [1.0, 2.0, 4.0])

    def test_conflict_retries_are_bounded(self):
        """Test exhausted conflict retries raise DestinationError with the status."""
        client = self.make_client(lambda request: httpx.Response(409, json={"message": "Conflict"}),
                                  max_retries=2)

        with self.assertRaises(DestinationError) as ctx:
            client.append_blocks("page-1", paragraphs(1))

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(len(self.sleeps), 2)

    def test_backoff_is_capped_and_retry_after_honoured(self):
        """Test rate limit waits follow Retry-After and never exceed the cap."""
        responses = [
            httpx.Response(429, headers={"Retry-After": "7"}, json={"message": "slow down"}),
            httpx.Response(429, headers={"Retry-After": "600"}, json={"message": "slow down"}),
            httpx.Response(200, json={"id": "page-1", "url": None}),
        ]
        client = self.make_client(lambda request: responses.pop(0), backoff_max=30.0)

        client.create_page("parent", "T")
        self.assertEqual(self.sleeps, [7.0, 30.0])

    def test_other_errors_are_not_retried(self):
        """Test validation errors fail immediately."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"code": "validation_error", "message": "body failed validation"})

        client = self.make_client(handler)
        with self.assertRaises(DestinationError) as ctx:
            client.create_page("parent", "T")

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("body failed validation", str(ctx.exception))
        self.assertEqual(len(calls), 1)
        self.assertEqual(self.sleeps, [])

    def test_network_errors_are_retried(self):
        """Test transport errors back off and retry."""
        outcomes = ["error", "ok"]

        def handler(request):
            if outcomes.pop(0) == "error":
                raise httpx.ReadTimeout("timed out", request=request)
            return httpx.Response(200, json={"id": "page-1"})

        client = self.make_client(handler)
        self.assertEqual(client.create_page("parent", "T").id, "page-1")
        self.assertEqual(self.sleeps, [1.0])

    def test_deep_children_are_appended_separately(self):
        """Test blocks nested past the request limit are split off and appended to their parent block."""
        requests = []
        client = self.make_client(self.append_handler(requests))

        client.append_blocks("page-1", [nested_list(3)])

        self.assertEqual(len(requests), 2)
        first, second = requests[0][2], requests[1][2]
        self.assertNotIn("children", first["children"][0]["bulleted_list_item"])
        self.assertEqual(requests[1][1], "/v1/blocks/blk-1/children")
        # The remaining two levels fit in one request
        self.assertIn("children", second["children"][0]["bulleted_list_item"])


class TestRecordingDestination(unittest.TestCase):
    """Test the in-memory destination used for dry runs."""

    def test_tree_reassembles_split_children(self):
        """Test the recorded tree equals what was sent, however it was split."""
        destination = RecordingDestination()
        page = destination.create_page("root", "Page")

        blocks = [nested_list(4)] + paragraphs(3)
        destination.append_blocks(page.id, blocks)

        self.assertEqual(destination.tree(page.id), blocks)
        self.assertEqual(destination.pages[page.id]["title"], "Page")
        self.assertEqual(destination.child_pages("root"), [page.id])

    def test_wide_table_is_created_then_extended(self):
        """Test a table with more than 100 rows keeps its first rows inline and gets the rest appended."""
        destination = RecordingDestination()
        page = destination.create_page("root", "Page")
        progress = []

        appended = destination.append_blocks(page.id, [table(150)], on_progress=progress.append)

        appends = [call for call in destination.calls if call[0] == "append"]
        self.assertEqual([call[2] for call in appends], [1, 50])
        sent_table = destination.children[page.id][0]
        self.assertEqual(len(sent_table["table"]["children"]), 100)
        self.assertEqual(appends[1][1], sent_table["id"])
        self.assertEqual(destination.tree(page.id), [table(150)])
        self.assertEqual((appended, progress), (1, [1]))

    def test_wide_list_item_children_are_batched(self):
        """Test no request carries more than 100 children on one block."""
        item = nested_list(0)
        item["bulleted_list_item"]["children"] = paragraphs(250)
        destination = RecordingDestination()
        page = destination.create_page("root", "Page")

        destination.append_blocks(page.id, [item] + paragraphs(2))

        appends = [call[2] for call in destination.calls if call[0] == "append"]
        self.assertEqual(appends, [1, 100, 50, 2])
        self.assertEqual(len(destination.children[page.id][0]["bulleted_list_item"]["children"]), 100)
        self.assertEqual(destination.tree(page.id), [item] + paragraphs(2))

    def test_queued_failures(self):
        """Test failure injection."""
        destination = RecordingDestination()
        destination.fail_next_appends(times=1)
        destination.fail_pages_titled("Bad")

        with self.assertRaises(DestinationError):
            destination.create_page("root", "Bad")
        page = destination.create_page("root", "Good")
        with self.assertRaises(DestinationError):
            destination.append_blocks(page.id, paragraphs(1))
        destination.append_blocks(page.id, paragraphs(1))
        self.assertEqual(len(destination.tree(page.id)), 1)

    def test_batch_size_bounds(self):
        """Test batch sizes outside the API limit are rejected."""
        with self.assertRaises(ValueError):
            RecordingDestination(batch_size=101)


if __name__ == '__main__':
    unittest.main(verbosity=2)
