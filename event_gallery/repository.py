"""Repository module: the authoritative media list for one event.

Single responsibility: turn raw remote rows (events, media, likes, identity
sources) into fully resolved MediaItems, and own the write path to the row
store. The list is replaced wholesale by ``reload``; the only in-place edits
are id-keyed patches used by optimistic mutations.
"""

from __future__ import annotations

import dataclasses
import logging

from PySide6.QtCore import QObject, Signal

from .backend import IdentityProvider, RowStore
from .constants import EVENTS_TABLE, LIKES_TABLE, MEDIA_KIND_PHOTO, MEDIA_TABLE
from .domain import EventContext, MediaItem
from .errors import DegradedFeatureError, NotFoundError, PermissionDeniedError, ReloadError
from .identity import IdentityResolver
from .timing import timed


def aggregate_likes(like_rows, principal_id: str | None) -> dict[str, tuple[int, bool]]:
    """media id -> (likes_count, liked by principal). Duplicate rows count once."""
    seen: set[tuple[str, str]] = set()
    out: dict[str, tuple[int, bool]] = {}
    for row in like_rows or []:
        media_id = str(row.get("media_id") or "")
        user_id = str(row.get("user_id") or "")
        if not media_id or (media_id, user_id) in seen:
            continue
        seen.add((media_id, user_id))
        count, liked = out.get(media_id, (0, False))
        out[media_id] = (count + 1, liked or (principal_id is not None and user_id == principal_id))
    return out


class MediaRepository(QObject):
    """Persistence-facing side of the gallery.

    ``reload`` may be called concurrently. Each call takes a generation
    number; a finished reload replaces the list only if nothing newer has
    been applied yet and the event is still the active one. Older reloads
    finish harmlessly and just return their result.
    """

    items_changed = Signal(list)  # list[MediaItem]
    event_changed = Signal(object)  # EventContext
    reload_failed = Signal(str)  # error message

    def __init__(self, rows: RowStore, identity: IdentityProvider, resolver: IdentityResolver | None = None):
        super().__init__()
        self._rows = rows
        self._identity = identity
        self._resolver = resolver or IdentityResolver(rows, identity)
        self._items: list[MediaItem] = []
        self._event: EventContext | None = None
        self._event_id: str | None = None
        self._generation = 0
        self._applied_generation = 0
        self._inflight = 0
        self.last_error: str | None = None
        self.likes_error: DegradedFeatureError | None = None

    # ---------------- State -----------------
    @property
    def items(self) -> list[MediaItem]:
        return list(self._items)

    @property
    def event(self) -> EventContext | None:
        return self._event

    @property
    def event_id(self) -> str | None:
        return self._event_id

    @property
    def likes_available(self) -> bool:
        return self.likes_error is None

    @property
    def loading(self) -> bool:
        return self._inflight > 0

    def get(self, media_id: str) -> MediaItem | None:
        for item in self._items:
            if item.id == media_id:
                return item
        return None

    # ---------------- Internal helpers -----------------
    def _principal_id(self) -> str | None:
        principal = self._identity.current_principal()
        return principal.id if principal is not None else None

    def _is_current(self, generation: int, event_id: str) -> bool:
        return generation > self._applied_generation and event_id == self._event_id

    async def _fetch_likes(self, media_ids: list[str]) -> list[dict]:
        if not media_ids:
            return []
        try:
            rows = await self._rows.select(LIKES_TABLE, in_={"media_id": media_ids}, columns="media_id,user_id")
            self.likes_error = None
            return rows or []
        except Exception as e:
            # Likes are optional: everyone shows zero rather than failing the reload
            self.likes_error = DegradedFeatureError(f"likes unavailable: {e}")
            logging.warning(f"[repository] likes unavailable, continuing without them: {e}")
            return []

    def _build_items(self, media_rows, names, likes) -> list[MediaItem]:
        items: list[MediaItem] = []
        for row in media_rows:
            media_id = str(row.get("id") or "")
            count, liked = likes.get(media_id, (0, False))
            uid = str(row.get("user_id") or "")
            try:
                items.append(MediaItem.from_row(row, names[uid], count, liked))
            except (KeyError, TypeError, ValueError) as e:
                logging.warning(f"[repository] skipping malformed media row {media_id!r}: {e}")
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items

    # ---------------- Public API -----------------
    async def load_event(self, event_id: str) -> EventContext:
        rows = await self._rows.select(
            EVENTS_TABLE, eq={"id": event_id}, columns="id,name,created_by,creator_display_name"
        )
        if not rows:
            raise NotFoundError(f"event {event_id} not found")
        return EventContext.from_row(rows[0])

    @timed("repository.reload")
    async def reload(self, event_id: str) -> list[MediaItem]:
        self._generation += 1
        generation = self._generation
        self._event_id = event_id
        self._inflight += 1
        try:
            try:
                event = await self.load_event(event_id)
                media_rows = await self._rows.select(
                    MEDIA_TABLE,
                    eq={"event_id": event_id, "type": MEDIA_KIND_PHOTO},
                    order_by="created_at",
                    descending=True,
                )
            except Exception as e:
                message = f"Failed to load media: {e}"
                logging.error(f"[repository] reload #{generation} for {event_id} failed: {e}")
                if self._is_current(generation, event_id):
                    self.last_error = message
                    self.reload_failed.emit(message)
                raise ReloadError(message) from e

            media_rows = media_rows or []
            media_ids = [str(r.get("id")) for r in media_rows if r.get("id") is not None]
            like_rows = await self._fetch_likes(media_ids)
            names = await self._resolver.resolve_many([str(r.get("user_id") or "") for r in media_rows], event)
            likes = aggregate_likes(like_rows, self._principal_id())
            items = self._build_items(media_rows, names, likes)

            if self._is_current(generation, event_id):
                self._applied_generation = generation
                self.last_error = None
                if self._event != event:
                    self._event = event
                    self.event_changed.emit(event)
                self._items = items
                logging.debug(f"[repository] reload #{generation} applied: {len(items)} items for {event_id}")
                self.items_changed.emit(self.items)
            else:
                logging.debug(f"[repository] reload #{generation} superseded, result dropped")
            return items
        finally:
            self._inflight -= 1

    def patch_item(self, media_id: str, **changes) -> MediaItem | None:
        """Replace one item by id. Other items are left untouched."""
        for idx, item in enumerate(self._items):
            if item.id == media_id:
                patched = dataclasses.replace(item, **changes)
                self._items[idx] = patched
                self.items_changed.emit(self.items)
                return patched
        return None

    def remove_item(self, media_id: str) -> bool:
        for idx, item in enumerate(self._items):
            if item.id == media_id:
                del self._items[idx]
                self.items_changed.emit(self.items)
                return True
        return False

    # ---------------- Write path -----------------
    async def insert_media(self, event_id: str, user_id: str, url: str, kind: str = MEDIA_KIND_PHOTO) -> dict:
        return await self._rows.insert(
            MEDIA_TABLE, {"event_id": event_id, "user_id": user_id, "url": url, "type": kind}
        )

    async def delete_media_row(self, media_id: str):
        deleted = await self._rows.delete(MEDIA_TABLE, eq={"id": media_id})
        if deleted:
            return
        # Zero rows: either already gone or hidden from us by policy
        remaining = await self._rows.select(MEDIA_TABLE, eq={"id": media_id}, columns="id")
        if remaining:
            raise PermissionDeniedError(f"not allowed to delete media {media_id}")
        logging.debug(f"[repository] media {media_id} was already deleted")

    async def insert_like(self, media_id: str, user_id: str) -> dict:
        return await self._rows.insert(LIKES_TABLE, {"media_id": media_id, "user_id": user_id})

    async def delete_like(self, media_id: str, user_id: str):
        await self._rows.delete(LIKES_TABLE, eq={"media_id": media_id, "user_id": user_id})


__all__ = ["MediaRepository", "aggregate_likes"]
