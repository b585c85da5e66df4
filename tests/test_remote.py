"""Tests for the PocketBase HTTP client."""

from __future__ import annotations

import json

import httpx
import pytest

from taskdown.sync import (
    CollectionNotFoundError,
    PocketBaseClient,
    RemoteAuthError,
    RemoteError,
)


def _client(handler, token="tok") -> PocketBaseClient:
    return PocketBaseClient(
        "http://pb.test/",
        page_size=2,
        token_provider=lambda: token,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_get_full_list_drains_every_page():
    pages = {
        "1": {"page": 1, "totalPages": 2, "items": [{"id": "a"}, {"id": "b"}]},
        "2": {"page": 2, "totalPages": 2, "items": [{"id": "c"}]},
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        assert request.url.path == "/api/collections/tasks/records"
        assert request.headers["Authorization"] == "tok"
        return httpx.Response(200, json=pages[request.url.params["page"]])

    client = _client(handler)
    items = await client.collection("tasks").get_full_list()
    await client.aclose()

    assert [item["id"] for item in items] == ["a", "b", "c"]
    assert seen == [{"page": "1", "perPage": "2"}, {"page": "2", "perPage": "2"}]


@pytest.mark.asyncio
async def test_missing_collection_raises_collection_not_found():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"code": 404, "message": "Missing collection context."})

    client = _client(handler)
    with pytest.raises(CollectionNotFoundError) as excinfo:
        await client.collection("notes").get_full_list()
    await client.aclose()

    assert isinstance(excinfo.value, RemoteError)
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_update_of_missing_record_is_a_plain_remote_error():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        return httpx.Response(404, json={"message": "The requested resource wasn't found."})

    client = _client(handler)
    with pytest.raises(RemoteError) as excinfo:
        await client.collection("tasks").update("gone", {"title": "x"})
    await client.aclose()

    assert not isinstance(excinfo.value, CollectionNotFoundError)


@pytest.mark.asyncio
async def test_create_posts_json_payload():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={**body, "id": "new1", "updated": "2024-01-01 00:00:00.000Z"})

    client = _client(handler)
    created = await client.collection("tasks").create({"title": "Buy milk", "done": False})
    await client.aclose()

    assert created["id"] == "new1"
    assert created["title"] == "Buy milk"


@pytest.mark.asyncio
async def test_rejected_credentials_raise_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "The request requires valid record authorization token."})

    client = _client(handler)
    with pytest.raises(RemoteAuthError):
        await client.collection("tasks").get_full_list()
    await client.aclose()


@pytest.mark.asyncio
async def test_network_failure_is_wrapped():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = _client(handler)
    with pytest.raises(RemoteError, match="connection refused"):
        await client.health()
    await client.aclose()


@pytest.mark.asyncio
async def test_auth_endpoints_skip_token_provider():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured[request.url.path] = request.headers.get("Authorization")
        return httpx.Response(200, json={"token": "fresh", "record": {"email": "a@b.c"}})

    client = _client(handler, token="stale")
    await client.auth_with_password("a@b.c", "pw")
    await client.auth_refresh("old-token")
    await client.aclose()

    assert captured["/api/collections/users/auth-with-password"] is None
    assert captured["/api/collections/users/auth-refresh"] == "old-token"
