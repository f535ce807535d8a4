"""Change feed listener: table notifications -> full repository reloads.

Notifications carry no usable row payload, so every one of them maps to a
reload of the active event. The like table cannot be filtered by event on the
server, which means other events' likes wake us up too; reloads are scoped to
our event id and idempotent, so the extra work is harmless. Bursts of
notifications inside the debounce window collapse into one reload.
"""

from __future__ import annotations

import asyncio
import logging

from .backend import ChangeEvent, ChangeFeed, Subscription
from .constants import LIKES_TABLE, MEDIA_TABLE, RELOAD_DEBOUNCE_MS
from .errors import GalleryError


class ChangeFeedListener:
    def __init__(self, feed: ChangeFeed, repository, debounce_ms: int = RELOAD_DEBOUNCE_MS):
        self._feed = feed
        self._repository = repository
        self._debounce = max(0, int(debounce_ms)) / 1000.0
        self._subscriptions: list[Subscription] = []
        self._event_id: str | None = None
        self._timer: asyncio.Handle | None = None
        self._tasks: set[asyncio.Task] = set()
        self.notifications = 0
        self.reloads = 0

    @property
    def active(self) -> bool:
        return bool(self._subscriptions)

    @property
    def event_id(self) -> str | None:
        return self._event_id

    def start(self, event_id: str):
        if self.active:
            self.stop()
        self._event_id = event_id
        self._subscriptions = [
            self._feed.subscribe(MEDIA_TABLE, self._on_change, eq={"event_id": event_id}),
            self._feed.subscribe(LIKES_TABLE, self._on_change),
        ]
        logging.info(f"[feed] listening for media/like changes of event {event_id}")

    def stop(self):
        for sub in self._subscriptions:
            try:
                sub.unsubscribe()
            except Exception as e:
                logging.warning(f"[feed] unsubscribe failed: {e}")
        if self._subscriptions:
            logging.info(f"[feed] unsubscribed from event {self._event_id}")
        self._subscriptions = []
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_change(self, change: ChangeEvent):
        if not self.active:
            return
        self.notifications += 1
        logging.debug(f"[feed] {change.operation} on {change.table}")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logging.warning("[feed] change received outside the event loop, ignored")
            return
        if self._timer is not None:
            self._timer.cancel()
        if self._debounce:
            self._timer = loop.call_later(self._debounce, self._fire)
        else:
            self._timer = loop.call_soon(self._fire)

    def _fire(self):
        self._timer = None
        if not self.active or self._event_id is None:
            return
        task = asyncio.ensure_future(self._reload(self._event_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reload(self, event_id: str):
        self.reloads += 1
        try:
            await self._repository.reload(event_id)
        except GalleryError as e:
            # The repository already published the failure
            logging.warning(f"[feed] reload after change failed: {e}")

    async def wait_idle(self):
        """Wait until pending debounced and running reloads have finished."""
        while self._timer is not None or self._tasks:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            else:
                await asyncio.sleep(self._debounce or 0)
