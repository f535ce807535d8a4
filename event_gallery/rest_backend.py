"""HTTP adapter for a Supabase-compatible backend.

Rows go through PostgREST (``/rest/v1``), blobs through the Storage API
(``/storage/v1``) and the principal comes from the Auth API (``/auth/v1``).
``requests`` is blocking, so every call is moved off the event loop with
``asyncio.to_thread``; all requests carry a timeout.

No push transport is bundled: ``NullChangeFeed`` accepts subscriptions and
never fires. Plug a realtime client implementing ``ChangeFeed`` in its place.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Optional
from urllib.parse import quote

import requests

from .backend import Backend, ChangeEvent
from .constants import IO_TIMEOUT_SECS, MEDIA_BUCKET
from .domain import Principal
from .errors import GalleryError, TransientNetworkError, classify_http_status


def _pg_value(value) -> str:
    text = str(value)
    if any(c in text for c in ',()"\\ '):
        text = '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'
    return text


def build_filters(eq=None, in_=None) -> list[tuple[str, str]]:
    """PostgREST query parameters for equality and membership filters."""
    params: list[tuple[str, str]] = []
    for column, value in (eq or {}).items():
        params.append((column, f"eq.{value}"))
    for column, values in (in_ or {}).items():
        params.append((column, "in.(" + ",".join(_pg_value(v) for v in values) + ")"))
    return params


class RestClient:
    """Shared session, auth headers and error mapping."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        access_token: str = "",
        timeout: float = IO_TIMEOUT_SECS,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise GalleryError("backend_url is not configured")
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.access_token = access_token
        self.timeout = timeout
        self._session = session or requests.Session()

    def headers(self, extra: dict | None = None) -> dict:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    def request(self, method: str, path: str, *, timeout: float | None = None, headers=None, **kwargs):
        url = path if path.startswith("http") else f"{self.base_url}{path}"
        try:
            resp = self._session.request(
                method, url, headers=self.headers(headers), timeout=timeout or self.timeout, **kwargs
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientNetworkError(f"{method} {url}: {e}") from e
        except requests.RequestException as e:
            raise GalleryError(f"{method} {url}: {e}") from e
        if resp.status_code >= 400:
            raise classify_http_status(resp.status_code, self._error_message(resp))
        return resp

    @staticmethod
    def _error_message(resp) -> str:
        try:
            data = resp.json()
        except ValueError:
            return f"HTTP {resp.status_code}: {resp.text[:200]}"
        if isinstance(data, dict):
            text = data.get("message") or data.get("error_description") or data.get("error")
            if text:
                return f"HTTP {resp.status_code}: {text}"
        return f"HTTP {resp.status_code}"

    def close(self):
        self._session.close()


class RestRowStore:
    def __init__(self, client: RestClient):
        self._client = client

    def _select(self, table, eq, in_, order_by, descending, columns) -> list[dict]:
        params = [("select", columns)] + build_filters(eq, in_)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        return self._client.request("GET", f"/rest/v1/{table}", params=params).json()

    async def select(self, table, *, eq=None, in_=None, order_by=None, descending=False, columns="*"):
        return await asyncio.to_thread(self._select, table, eq, in_, order_by, descending, columns)

    def _insert(self, table, row) -> dict:
        resp = self._client.request(
            "POST", f"/rest/v1/{table}", json=row, headers={"Prefer": "return=representation"}
        )
        data = resp.json()
        return data[0] if isinstance(data, list) and data else (data or {})

    async def insert(self, table: str, row: dict) -> dict:
        return await asyncio.to_thread(self._insert, table, row)

    def _update(self, table, values, eq) -> list[dict]:
        resp = self._client.request(
            "PATCH",
            f"/rest/v1/{table}",
            params=build_filters(eq),
            json=values,
            headers={"Prefer": "return=representation"},
        )
        return resp.json() or []

    async def update(self, table: str, values: dict, *, eq: dict[str, Any]) -> list[dict]:
        return await asyncio.to_thread(self._update, table, values, eq)

    def _delete(self, table, eq) -> int:
        if not eq:
            raise GalleryError("refusing to delete without a filter")
        resp = self._client.request(
            "DELETE", f"/rest/v1/{table}", params=build_filters(eq), headers={"Prefer": "return=representation"}
        )
        data = resp.json() if resp.content else []
        return len(data) if isinstance(data, list) else 0

    async def delete(self, table: str, *, eq: dict[str, Any]) -> int:
        return await asyncio.to_thread(self._delete, table, eq)

    def _rpc(self, function, params):
        resp = self._client.request("POST", f"/rest/v1/rpc/{function}", json=params)
        return resp.json() if resp.content else None

    async def rpc(self, function: str, params: dict) -> Any:
        return await asyncio.to_thread(self._rpc, function, params)


class RestObjectStore:
    def __init__(self, client: RestClient, bucket: str = MEDIA_BUCKET):
        self._client = client
        self.bucket = bucket

    def _upload(self, path, payload_b64, content_type, upsert):
        body = base64.b64decode(payload_b64)
        self._client.request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{quote(path)}",
            data=body,
            headers={"Content-Type": content_type, "x-upsert": "true" if upsert else "false"},
        )
        logging.debug(f"[rest] uploaded {len(body)} bytes to {self.bucket}/{path}")

    async def upload(self, path: str, payload_b64: str, *, content_type: str, upsert: bool = True) -> None:
        await asyncio.to_thread(self._upload, path, payload_b64, content_type, upsert)

    def public_url(self, path: str) -> str:
        return f"{self._client.base_url}/storage/v1/object/public/{self.bucket}/{quote(path)}"

    def _remove(self, paths):
        self._client.request("DELETE", f"/storage/v1/object/{self.bucket}", json={"prefixes": list(paths)})

    async def remove(self, paths: list[str]) -> None:
        await asyncio.to_thread(self._remove, paths)


class RestImageFetcher:
    def __init__(self, session: Optional[requests.Session] = None):
        self._session = session or requests.Session()

    def _fetch(self, url, timeout) -> bytes:
        try:
            resp = self._session.get(url, timeout=timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientNetworkError(f"GET {url}: {e}") from e
        if resp.status_code >= 400:
            raise classify_http_status(resp.status_code, f"GET {url}: HTTP {resp.status_code}")
        return resp.content

    async def fetch(self, url: str, *, timeout: float) -> bytes:
        return await asyncio.to_thread(self._fetch, url, timeout)

    def _probe(self, url, timeout) -> bool:
        try:
            resp = self._session.head(url, timeout=timeout, allow_redirects=True)
        except requests.RequestException as e:
            logging.debug(f"[rest] probe of {url} failed: {e}")
            return False
        return resp.status_code < 400

    async def probe(self, url: str, *, timeout: float) -> bool:
        return await asyncio.to_thread(self._probe, url, timeout)


class RestIdentityProvider:
    """Principal behind the configured access token, fetched once and cached."""

    def __init__(self, client: RestClient):
        self._client = client
        self._principal: Principal | None = None

    def current_principal(self) -> Principal | None:
        return self._principal

    def _fetch_user(self) -> Principal | None:
        if not self._client.access_token:
            return None
        data = self._client.request("GET", "/auth/v1/user").json()
        metadata = data.get("user_metadata") or {}
        return Principal(
            id=str(data["id"]),
            email=data.get("email") or "",
            display_name=metadata.get("display_name") or "",
        )

    async def refresh(self) -> Principal | None:
        self._principal = await asyncio.to_thread(self._fetch_user)
        return self._principal

    def sign_out(self):
        self._principal = None
        self._client.access_token = ""


class _NullSubscription:
    def unsubscribe(self) -> None:
        pass


class NullChangeFeed:
    def subscribe(self, table, callback, *, eq=None):
        logging.debug(f"[rest] change feed not available, subscription to {table} is inert")
        return _NullSubscription()


def build_rest_backend(settings: dict, session: Optional[requests.Session] = None) -> Backend:
    session = session or requests.Session()
    client = RestClient(
        settings.get("backend_url", ""),
        settings.get("anon_key", ""),
        settings.get("access_token", ""),
        timeout=float(settings.get("io_timeout_secs", IO_TIMEOUT_SECS)),
        session=session,
    )
    return Backend(
        rows=RestRowStore(client),
        objects=RestObjectStore(client, settings.get("media_bucket", MEDIA_BUCKET)),
        images=RestImageFetcher(session),
        identity=RestIdentityProvider(client),
        feed=NullChangeFeed(),
    )


__all__ = [
    "RestClient",
    "RestRowStore",
    "RestObjectStore",
    "RestImageFetcher",
    "RestIdentityProvider",
    "NullChangeFeed",
    "ChangeEvent",
    "build_filters",
    "build_rest_backend",
]
