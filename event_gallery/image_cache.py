"""
In-memory cache of decoded gallery images keyed by media id.

Render requests go through ``get``: a hit returns immediately, a miss returns
None (the view shows a placeholder) and starts one background load on the
running event loop. Concurrent requests for the same id share that load, so
each image is downloaded once. Failed loads are never stored, which keeps a
later retry possible.

The cache can be bounded (LRU eviction) or unbounded with ``maxsize=None``.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
from collections import OrderedDict
from dataclasses import dataclass

from PIL import Image
from PySide6.QtCore import QObject, Signal

from .cache_config import is_cache_disabled
from .constants import IMAGE_CACHE_SIZE, IO_TIMEOUT_SECS
from .domain import MediaItem
from .timing import time_operation
from .url_fallback import candidate_urls

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedImage:
    media_id: str
    data: bytes
    width: int
    height: int
    format: str
    source_url: str = ""

    @property
    def data_uri(self) -> str:
        mime = f"image/{(self.format or 'jpeg').lower()}"
        return f"data:{mime};base64,{base64.b64encode(self.data).decode('ascii')}"


def decode_image(data: bytes) -> tuple[int, int, str]:
    """Return (width, height, format) or raise if the bytes are not an image."""
    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
        fmt = img.format or ""
        img.verify()
    return width, height, fmt


class ImageCache(QObject):
    """Decoded images for one gallery session.

    Entries are written once per id (first writer wins) and live until
    evicted, discarded or the session closes.
    """

    image_ready = Signal(str, object)  # media id, CachedImage
    image_failed = Signal(str)  # media id

    def __init__(self, fetcher, maxsize: int | None = IMAGE_CACHE_SIZE, timeout: float = IO_TIMEOUT_SECS):
        """
        Args:
            fetcher: ImageFetcher used for downloads
            maxsize: Maximum number of images to keep (None = never evict)
            timeout: Per-request download timeout in seconds
        """
        super().__init__()
        self._fetcher = fetcher
        self._maxsize = maxsize
        self._timeout = timeout
        self._cache: OrderedDict[str, CachedImage] = OrderedDict()
        self._inflight: dict[str, asyncio.Task] = {}
        self._closed = False
        self._hits = 0
        self._misses = 0
        self._failures = 0
        self._downloads = 0

    def __contains__(self, media_id: str) -> bool:
        return media_id in self._cache

    def __len__(self) -> int:
        return len(self._cache)

    def peek(self, media_id: str) -> CachedImage | None:
        """Cached entry without touching LRU order or statistics."""
        return self._cache.get(media_id)

    def get(self, item: MediaItem) -> CachedImage | None:
        """Cached image for ``item``, or None after scheduling a background load."""
        cached = self._lookup(item.id)
        if cached is not None:
            return cached
        self._schedule(item)
        return None

    async def fetch(self, item: MediaItem) -> CachedImage | None:
        """Awaitable variant of ``get``; joins an in-flight load for the same id."""
        cached = self._lookup(item.id)
        if cached is not None:
            return cached
        if self._closed:
            return None
        task = self._start_load(item)
        # Shield so one cancelled waiter does not cancel the shared download
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if self._closed and task.cancelled():
                return None
            raise

    def retry(self, item: MediaItem):
        """Request a load again after a failure (no-op if cached or loading)."""
        if item.id not in self._cache:
            self._schedule(item)

    def _lookup(self, media_id: str) -> CachedImage | None:
        if media_id in self._cache:
            self._hits += 1
            self._cache.move_to_end(media_id)
            return self._cache[media_id]
        self._misses += 1
        return None

    def _schedule(self, item: MediaItem):
        if self._closed:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"[image-cache] no running loop, cannot load {item.id}")
            return
        self._start_load(item)

    def _start_load(self, item: MediaItem) -> asyncio.Task:
        task = self._inflight.get(item.id)
        if task is not None:
            return task
        task = asyncio.ensure_future(self._load(item))
        self._inflight[item.id] = task

        def _done(t, media_id=item.id):
            if self._inflight.get(media_id) is t:
                del self._inflight[media_id]

        task.add_done_callback(_done)
        return task

    async def _load(self, item: MediaItem) -> CachedImage | None:
        self._downloads += 1
        for url in candidate_urls(item.url):
            try:
                with time_operation("image_cache.download"):
                    data = await self._fetcher.fetch(url, timeout=self._timeout)
                width, height, fmt = decode_image(data)
            except Exception as e:
                logger.debug(f"[image-cache] {item.id}: {url[:100]} failed: {e}")
                continue
            return self._store(CachedImage(item.id, data, width, height, fmt, url))
        self._failures += 1
        logger.warning(f"[image-cache] all URL variants failed for {item.id}")
        if not self._closed:
            self.image_failed.emit(item.id)
        return None

    def _store(self, image: CachedImage) -> CachedImage | None:
        if self._closed:
            return None
        existing = self._cache.get(image.media_id)
        if existing is not None:
            return existing
        if not is_cache_disabled():
            self._cache[image.media_id] = image
            if self._maxsize is not None:
                while len(self._cache) > self._maxsize:
                    evicted, _ = self._cache.popitem(last=False)
                    logger.debug(f"[image-cache] evicted {evicted}")
        self.image_ready.emit(image.media_id, image)
        return image

    def discard(self, media_id: str):
        self._cache.pop(media_id, None)

    def clear(self):
        """Drop all entries and reset statistics."""
        self._cache.clear()
        self._hits = 0
        self._misses = 0
        self._failures = 0
        self._downloads = 0

    def close(self):
        """End of the gallery session: cancel loads and forget everything."""
        self._closed = True
        for task in list(self._inflight.values()):
            task.cancel()
        self._inflight.clear()
        self._cache.clear()

    def get_stats(self) -> dict:
        total = self._hits + self._misses
        hit_rate = (self._hits / total * 100) if total > 0 else 0.0
        return {
            "size": len(self._cache),
            "maxsize": self._maxsize,
            "hits": self._hits,
            "misses": self._misses,
            "failures": self._failures,
            "downloads": self._downloads,
            "inflight": len(self._inflight),
            "hit_rate": hit_rate,
        }
