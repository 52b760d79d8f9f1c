"""
Low-level record store helpers (JSON over HTTP).
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional
from urllib.parse import quote, urlencode

import httpx

from core.config import Settings

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 20.0


class StoreTransportError(RuntimeError):
    """The record store could not be reached (DNS, refused connection, timeout)."""


@dataclass(frozen=True)
class HttpResult:
    status: int
    body: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        """Parsed body, or None when it is not valid JSON."""
        try:
            return json.loads(self.body) if self.body else None
        except ValueError:
            return None

    def rows(self) -> Optional[list]:
        """The `data` list of a collection response, or None when the shape is wrong."""
        parsed = self.json()
        if not isinstance(parsed, dict):
            return None
        data = parsed.get("data")
        if data is None:
            return []
        return data if isinstance(data, list) else None


def error_message(result: HttpResult, default: str) -> str:
    """Pull a readable message out of an error body; fall back to `default`."""
    parsed = result.json()
    if not isinstance(parsed, dict):
        return default
    errors = parsed.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        msg = errors[0].get("message")
        if msg:
            return str(msg)
    error = parsed.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return default


async def http_json(
    method: str,
    url: str,
    payload: Any = None,
    headers: Optional[Mapping[str, str]] = None,
    *,
    timeout: float = DEFAULT_TIMEOUT,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> HttpResult:
    """
    Perform one JSON request and return status + raw body.
    Non-2xx responses are returned as-is; only transport failures raise.
    """
    request_headers = {"Content-Type": "application/json"}
    if headers:
        request_headers.update(headers)
    content = json.dumps(payload) if payload is not None else None

    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            resp = await client.request(method, url, content=content, headers=request_headers)
    except httpx.HTTPError as exc:
        log.error("http_json transport failure method=%s url=%s error=%s", method, url.split("?", 1)[0], exc)
        raise StoreTransportError(f"HTTP request failed: {exc}") from exc

    return HttpResult(status=resp.status_code, body=resp.text)


RequestFn = Callable[..., Awaitable[HttpResult]]


def _query(filters: Mapping[str, Any], fields: Iterable[str] = (), limit: Optional[int] = None) -> str:
    params = []
    for field, value in filters.items():
        if isinstance(value, bool):
            value = "true" if value else "false"
        params.append((f"filter[{field}][_eq]", str(value)))
    fields = list(fields)
    if fields:
        params.append(("fields", ",".join(fields)))
    if limit is not None:
        params.append(("limit", str(limit)))
    return urlencode(params)


class StoreClient:
    """
    Thin wrapper binding the store base URL and operator credential.
    `request` defaults to http_json and can be swapped for a fake.
    """

    def __init__(self, settings: Settings, request: RequestFn = http_json):
        self._base = settings.store_url.rstrip("/")
        self._token = settings.store_token
        self._timeout = settings.store_timeout
        self._request = request

    def _admin_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    async def _call(self, method: str, path: str, payload: Any = None, headers=None) -> HttpResult:
        return await self._request(
            method,
            f"{self._base}{path}",
            payload,
            self._admin_headers() if headers is None else headers,
            timeout=self._timeout,
        )

    async def list_users(self, filters: Mapping[str, Any], fields: Iterable[str] = (), limit: Optional[int] = None) -> HttpResult:
        return await self._call("GET", f"/users?{_query(filters, fields, limit)}")

    async def list_items(
        self, collection: str, filters: Mapping[str, Any], fields: Iterable[str] = (), limit: Optional[int] = None
    ) -> HttpResult:
        return await self._call("GET", f"/items/{collection}?{_query(filters, fields, limit)}")

    async def create_user(self, data: Mapping[str, Any]) -> HttpResult:
        return await self._call("POST", "/users", dict(data))

    async def create_item(self, collection: str, data: Mapping[str, Any]) -> HttpResult:
        return await self._call("POST", f"/items/{collection}", dict(data))

    async def patch_user(self, user_id: str, data: Mapping[str, Any]) -> HttpResult:
        return await self._call("PATCH", f"/users/{quote(str(user_id), safe='')}", dict(data))

    async def patch_item(self, collection: str, item_id: str, data: Mapping[str, Any]) -> HttpResult:
        return await self._call("PATCH", f"/items/{collection}/{quote(str(item_id), safe='')}", dict(data))

    async def patch_items_where(self, collection: str, filters: Mapping[str, Any], data: Mapping[str, Any]) -> HttpResult:
        """Conditional bulk update; the 2xx body lists the updated keys."""
        query_filter = {field: {"_eq": value} for field, value in filters.items()}
        return await self._call(
            "PATCH",
            f"/items/{collection}",
            {"query": {"filter": query_filter}, "data": dict(data)},
        )

    async def patch_profiles_by_user(self, user_id: str, data: Mapping[str, Any]) -> HttpResult:
        return await self._call("PATCH", "/items/profiles", {"keys": [{"user": user_id}], "data": [dict(data)]})

    async def login(self, email: str, password: str) -> HttpResult:
        # End-user credentials only; the operator token is not sent.
        return await self._call("POST", "/auth/login", {"email": email, "password": password}, headers={})

    async def fetch_me(self, access_token: str, fields: Iterable[str] = ()) -> HttpResult:
        query = f"?fields={','.join(fields)}" if fields else ""
        return await self._call(
            "GET",
            f"/users/me{query}",
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )


__all__ = [
    "DEFAULT_TIMEOUT",
    "HttpResult",
    "StoreClient",
    "StoreTransportError",
    "error_message",
    "http_json",
]
