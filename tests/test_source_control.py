import httpx
import pytest

from conftest import pr_payload, push_payload
from core.entities import Event, ResourceRecord
from services.source_control import MAX_STORED_PATCH_CHARS, GitHubClient

RESOURCE = ResourceRecord(id="res-1", owner_tenant_id="tenant-a", full_name="acme/widgets")


def _event(kind, payload):
    return Event(id="evt-1", resource_id="res-1", kind=kind, payload=payload, actor="octocat", occurred_at=0)


def _client(handler, token="ghs_test"):
    return GitHubClient(token=token, transport=httpx.MockTransport(handler))


async def test_push_uses_compare_endpoint():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"files": [
            {"filename": "a.py", "status": "modified", "additions": 2, "deletions": 1, "patch": "+x"},
        ]})

    changes = await _client(handler).fetch_file_changes(RESOURCE, _event("push", push_payload()))

    assert seen[0].url.path == f"/repos/acme/widgets/compare/{'a' * 40}...{'b' * 40}"
    assert seen[0].headers["Authorization"] == "Bearer ghs_test"
    assert changes[0].filename == "a.py"
    assert changes[0].changes == 3


async def test_pull_request_uses_files_endpoint_and_caps_patches():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/repos/acme/widgets/pulls/42/files"
        return httpx.Response(200, json=[
            {"filename": "big.py", "status": "added", "additions": 1, "deletions": 0, "patch": "p" * 60000},
        ])

    changes = await _client(handler).fetch_file_changes(RESOURCE, _event("pull_request", pr_payload()))

    assert len(changes[0].patch) == MAX_STORED_PATCH_CHARS


async def test_other_kinds_have_no_diff():
    def handler(request):
        raise AssertionError("no request expected")

    assert await _client(handler).fetch_file_changes(RESOURCE, _event("issues", {})) is None


async def test_http_errors_propagate():
    def handler(request):
        return httpx.Response(502)

    with pytest.raises(httpx.HTTPStatusError):
        await _client(handler).fetch_file_changes(RESOURCE, _event("push", push_payload()))
