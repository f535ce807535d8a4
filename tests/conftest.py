import asyncio
import base64
import io
import itertools
import logging
import os
from datetime import datetime, timezone

# Ensure Qt runs in offscreen mode for headless CI/test environments
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest
from PIL import Image

from event_gallery.backend import Backend, ChangeEvent
from event_gallery.domain import Principal
from event_gallery.errors import NotFoundError, TransientNetworkError

# Configure logging for tests so debug information from the engine is visible
# when a test hangs or fails.
handler = logging.StreamHandler()
formatter = logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s')
handler.setFormatter(formatter)
root = logging.getLogger()
if not root.handlers:
    root.addHandler(handler)
root.setLevel(logging.DEBUG)

# Reduce verbosity for noisy external libraries
logging.getLogger('PIL').setLevel(logging.WARNING)

PUBLIC_PREFIX = "https://cdn.test/storage/v1/object/public/media/"


def make_png(width=4, height=3, color="red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color=color).save(buf, "PNG")
    return buf.getvalue()


def ts(minute: int) -> str:
    """Row timestamp ``minute`` minutes after a fixed origin."""
    return f"2024-05-01T12:{minute:02d}:00.123Z"


def _matches(row, eq=None, in_=None) -> bool:
    for column, value in (eq or {}).items():
        if str(row.get(column)) != str(value):
            return False
    for column, values in (in_ or {}).items():
        if str(row.get(column)) not in {str(v) for v in values}:
            return False
    return True


class FakeRowStore:
    """In-memory tables with per-operation failure injection.

    ``fail_on(table, op, exc)`` makes the next and all later calls raise.
    ``select_hooks[table]`` is awaited after a select computed its rows and
    before it returns them, which lets tests hold a response in flight.
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self.calls: list[tuple[str, str]] = []
        self.failures: dict[tuple[str, str], Exception] = {}
        self.rpc_results: dict[str, object] = {}
        self.protected: set[str] = set()  # media ids whose delete is silently refused
        self.select_hooks = {}
        self._ids = itertools.count(1)

    def fail_on(self, table, op, exc=None):
        self.failures[(table, op)] = exc or TransientNetworkError(f"{op} {table} failed")

    def heal(self, table=None, op=None):
        if table is None:
            self.failures.clear()
        else:
            self.failures.pop((table, op), None)

    def _check(self, table, op):
        self.calls.append((op, table))
        exc = self.failures.get((table, op))
        if exc is not None:
            raise exc

    def count(self, op, table) -> int:
        return self.calls.count((op, table))

    async def select(self, table, *, eq=None, in_=None, order_by=None, descending=False, columns="*"):
        await asyncio.sleep(0)
        self._check(table, "select")
        rows = [dict(r) for r in self.tables.get(table, []) if _matches(r, eq, in_)]
        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by)), reverse=descending)
        hook = self.select_hooks.get(table)
        if hook is not None:
            await hook(table, eq)
        return rows

    async def insert(self, table, row):
        await asyncio.sleep(0)
        self._check(table, "insert")
        stored = dict(row)
        stored.setdefault("id", f"{table}-{next(self._ids)}")
        stored.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        self.tables.setdefault(table, []).append(stored)
        return dict(stored)

    async def update(self, table, values, *, eq):
        await asyncio.sleep(0)
        self._check(table, "update")
        updated = []
        for row in self.tables.get(table, []):
            if _matches(row, eq):
                row.update(values)
                updated.append(dict(row))
        return updated

    async def delete(self, table, *, eq):
        await asyncio.sleep(0)
        self._check(table, "delete")
        rows = self.tables.get(table, [])
        doomed = [r for r in rows if _matches(r, eq) and str(r.get("id")) not in self.protected]
        self.tables[table] = [r for r in rows if r not in doomed]
        return len(doomed)

    async def rpc(self, function, params):
        await asyncio.sleep(0)
        self._check(function, "rpc")
        return self.rpc_results.get(params.get("user_id"))


class FakeObjectStore:
    def __init__(self):
        self.blobs: dict[str, bytes] = {}
        self.fail_upload: set[str] = set()
        self.fail_remove: set[str] = set()
        self.removed: list[str] = []
        self.delay = 0.0
        self.active = 0
        self.max_active = 0

    async def upload(self, path, payload_b64, *, content_type, upsert=True):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if path in self.fail_upload:
                raise TransientNetworkError(f"upload of {path} failed")
            if path in self.blobs and not upsert:
                raise ValueError(f"{path} exists")
            self.blobs[path] = base64.b64decode(payload_b64)
        finally:
            self.active -= 1

    def public_url(self, path):
        return PUBLIC_PREFIX + path

    async def remove(self, paths):
        await asyncio.sleep(0)
        for path in paths:
            if path in self.fail_remove:
                raise TransientNetworkError(f"remove of {path} failed")
        for path in paths:
            self.blobs.pop(path, None)
            self.removed.append(path)


class FakeImageFetcher:
    def __init__(self):
        self.responses: dict[str, bytes] = {}
        self.default = make_png()
        self.fail_urls: set[str] = set()
        self.fail_all = False
        self.calls: list[str] = []
        self.probes: list[str] = []
        self.delay = 0.0

    async def fetch(self, url, *, timeout):
        self.calls.append(url)
        await asyncio.sleep(self.delay)
        if self.fail_all or url in self.fail_urls:
            raise NotFoundError(f"GET {url}: HTTP 404")
        return self.responses.get(url, self.default)

    async def probe(self, url, *, timeout):
        self.probes.append(url)
        await asyncio.sleep(0)
        return not (self.fail_all or url in self.fail_urls)


class FakeIdentity:
    def __init__(self, principal=None):
        self.principal = principal

    def current_principal(self):
        return self.principal


class FakeSubscription:
    def __init__(self, table, callback, eq):
        self.table = table
        self.callback = callback
        self.eq = eq
        self.active = True

    def unsubscribe(self):
        self.active = False


class FakeChangeFeed:
    def __init__(self):
        self.subscriptions: list[FakeSubscription] = []

    def subscribe(self, table, callback, *, eq=None):
        sub = FakeSubscription(table, callback, eq)
        self.subscriptions.append(sub)
        return sub

    @property
    def active(self):
        return [s for s in self.subscriptions if s.active]

    def emit(self, table, operation="INSERT", row=None) -> int:
        """Deliver a notification to every matching live subscription."""
        delivered = 0
        for sub in self.active:
            if sub.table != table:
                continue
            if sub.eq and not _matches(row or {}, sub.eq):
                continue
            sub.callback(ChangeEvent(table, operation))
            delivered += 1
        return delivered


class FakeBackend(Backend):
    """Backend bundle made of in-memory fakes, plus seeding helpers."""

    @classmethod
    def create(cls, principal=None):
        return cls(
            rows=FakeRowStore(),
            objects=FakeObjectStore(),
            images=FakeImageFetcher(),
            identity=FakeIdentity(principal),
            feed=FakeChangeFeed(),
        )

    def seed_event(self, event_id="evt-1", created_by="u-creator", creator_display_name="Carol", name="Wedding"):
        self.rows.tables.setdefault("events", []).append(
            {"id": event_id, "name": name, "created_by": created_by, "creator_display_name": creator_display_name}
        )

    def add_media(self, media_id, user_id, minute, event_id="evt-1", url=None, kind="photo"):
        path = f"{event_id}/photos/{user_id}_{minute}.jpg"
        self.objects.blobs[path] = make_png()
        row = {
            "id": media_id,
            "event_id": event_id,
            "user_id": user_id,
            "url": url or PUBLIC_PREFIX + path,
            "type": kind,
            "created_at": ts(minute),
        }
        self.rows.tables.setdefault("media", []).append(row)
        return row

    def add_like(self, media_id, user_id):
        self.rows.tables.setdefault("likes", []).append({"media_id": media_id, "user_id": user_id})

    def add_participant(self, user_id, display_name, event_id="evt-1"):
        self.rows.tables.setdefault("event_participants", []).append(
            {"event_id": event_id, "user_id": user_id, "display_name": display_name}
        )

    def add_profile(self, user_id, display_name):
        self.rows.tables.setdefault("user", []).append({"id": user_id, "display_name": display_name})

    def media_ids(self, event_id="evt-1") -> set[str]:
        return {r["id"] for r in self.rows.tables.get("media", []) if r["event_id"] == event_id}


ME = Principal(id="u-me", email="me.self@example.com", display_name="")


@pytest.fixture
def backend():
    return FakeBackend.create(principal=ME)


@pytest.fixture
def gallery(backend):
    """An event with three photos by three uploaders and a few likes.

    Newest first: m3 (Ann), m2 (Bob), m1 (Carol, the creator).
    """
    backend.seed_event()
    backend.add_participant("u-bob", "Bob")
    backend.add_profile("u-ann", "Ann")
    backend.add_media("m1", "u-creator", 1)
    backend.add_media("m2", "u-bob", 2)
    backend.add_media("m3", "u-ann", 3)
    backend.add_like("m2", "u-ann")
    backend.add_like("m2", "u-me")
    backend.add_like("m1", "u-bob")
    return backend


@pytest.fixture
def image_file(tmp_path):
    def _make(name="photo.jpg", size=(200, 100), color="blue", fmt="JPEG"):
        path = tmp_path / name
        Image.new("RGB", size, color=color).save(path, fmt)
        return str(path)

    return _make
