"""HTTP client for the PocketBase records API."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

logger = logging.getLogger("taskdown.sync.remote")

TokenProvider = Callable[[], Optional[str]]


class RemoteError(RuntimeError):
    """A remote call failed (network error or non-success response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CollectionNotFoundError(RemoteError):
    """The collection does not exist on the server."""


class RemoteAuthError(RemoteError):
    """The server rejected our credentials."""


class PocketBaseClient:
    """Async client for the subset of the PocketBase API that sync needs."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        page_size: int = 200,
        token_provider: Optional[TokenProvider] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self._token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def collection(self, name: str) -> "RemoteCollection":
        return RemoteCollection(self, name)

    async def health(self) -> Dict[str, Any]:
        """Lightweight reachability probe (``GET /api/health``)."""
        return await self.request("GET", "/api/health")

    async def auth_with_password(self, identity: str, password: str) -> Dict[str, Any]:
        return await self.request(
            "POST",
            "/api/collections/users/auth-with-password",
            json={"identity": identity, "password": password},
            authenticated=False,
        )

    async def auth_refresh(self, token: str) -> Dict[str, Any]:
        return await self.request(
            "POST",
            "/api/collections/users/auth-refresh",
            headers={"Authorization": token},
            authenticated=False,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        authenticated: bool = True,
        collection: Optional[str] = None,
    ) -> Any:
        request_headers = dict(headers or {})
        if authenticated and self._token_provider:
            token = self._token_provider()
            if token:
                request_headers["Authorization"] = token

        try:
            response = await self._client.request(
                method,
                path,
                json=json,
                params=params,
                headers=request_headers,
            )
        except httpx.HTTPError as exc:
            raise RemoteError(f"{method} {path} failed: {exc}") from exc

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise RemoteError(
                    f"{method} {path} returned invalid JSON", response.status_code
                ) from exc

        message = _error_message(response)
        if response.status_code in (401, 403):
            raise RemoteAuthError(message, response.status_code)
        if response.status_code == 404 and collection is not None:
            raise CollectionNotFoundError(
                f"Collection '{collection}' not found: {message}", 404
            )
        raise RemoteError(f"{method} {path} -> {response.status_code}: {message}", response.status_code)

    async def aclose(self) -> None:
        await self._client.aclose()


class RemoteCollection:
    """CRUD over one PocketBase collection."""

    def __init__(self, client: PocketBaseClient, name: str):
        self.client = client
        self.name = name
        self._path = f"/api/collections/{name}/records"

    async def get_full_list(self) -> List[Dict[str, Any]]:
        """Fetch every record, draining the server's pagination."""
        items: List[Dict[str, Any]] = []
        page = 1
        while True:
            data = await self.client.request(
                "GET",
                self._path,
                params={"page": page, "perPage": self.client.page_size},
                collection=self.name,
            )
            batch = data.get("items") or []
            items.extend(batch)
            total_pages = int(data.get("totalPages") or 1)
            if not batch or page >= total_pages:
                break
            page += 1
        logger.debug("Fetched %d record(s) from '%s'", len(items), self.name)
        return items

    async def create(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.client.request("POST", self._path, json=payload, collection=self.name)

    async def update(self, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self.client.request("PATCH", f"{self._path}/{record_id}", json=payload)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


__all__ = [
    "CollectionNotFoundError",
    "PocketBaseClient",
    "RemoteAuthError",
    "RemoteCollection",
    "RemoteError",
]
