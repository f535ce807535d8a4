"""Interfaces of the remote collaborators the gallery engine talks to.

The engine never imports a concrete backend. Anything implementing these
protocols (the REST adapter in ``rest_backend``, an in-memory fake in tests)
can be plugged into a ``Backend`` bundle.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from .domain import Principal


@dataclass(frozen=True)
class ChangeEvent:
    """A table-level mutation notice. No usable row payload is guaranteed."""

    table: str
    operation: str  # INSERT | UPDATE | DELETE


@runtime_checkable
class RowStore(Protocol):
    """Row-level CRUD over the remote relational store."""

    async def select(
        self,
        table: str,
        *,
        eq: dict[str, Any] | None = None,
        in_: dict[str, list] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        columns: str = "*",
    ) -> list[dict]:
        ...

    async def insert(self, table: str, row: dict) -> dict:
        ...

    async def update(self, table: str, values: dict, *, eq: dict[str, Any]) -> list[dict]:
        ...

    async def delete(self, table: str, *, eq: dict[str, Any]) -> int:
        """Delete matching rows, returning how many were removed."""
        ...

    async def rpc(self, function: str, params: dict) -> Any:
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Binary blob storage addressed by path inside the media bucket."""

    async def upload(self, path: str, payload_b64: str, *, content_type: str, upsert: bool = True) -> None:
        """Store the base64 ``payload_b64`` at ``path``; upsert overwrites."""
        ...

    def public_url(self, path: str) -> str:
        ...

    async def remove(self, paths: list[str]) -> None:
        ...


@runtime_checkable
class ImageFetcher(Protocol):
    async def fetch(self, url: str, *, timeout: float) -> bytes:
        ...

    async def probe(self, url: str, *, timeout: float) -> bool:
        """True if ``url`` answers within ``timeout``. Fails closed."""
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    def current_principal(self) -> Principal | None:
        ...


@runtime_checkable
class Subscription(Protocol):
    def unsubscribe(self) -> None:
        """Stop delivering events. Calling it twice is harmless."""
        ...


@runtime_checkable
class ChangeFeed(Protocol):
    def subscribe(
        self,
        table: str,
        callback: Callable[[ChangeEvent], None],
        *,
        eq: dict[str, Any] | None = None,
    ) -> Subscription:
        ...


@dataclass
class Backend:
    rows: RowStore
    objects: ObjectStore
    images: ImageFetcher
    identity: IdentityProvider
    feed: ChangeFeed
