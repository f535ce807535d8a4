"""URL repair ladder for remote images.

Storage URLs arrive double-encoded, half-encoded or with stale query strings
depending on who wrote the row. Rather than guess, loaders walk an ordered
list of pure ``str -> str`` transforms until one of them loads.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from PySide6.QtCore import QObject, Signal

# RFC 3986 pchar minus '/', which separates the segments we encode one by one
_SEGMENT_SAFE = "-._~!$&'()*+,;=:@"
# Characters a browser's encodeURI leaves alone
_ENCODE_URI_SAFE = ";,/?:@&=+$-_.!~*'()#"


def normalize_url(url: str) -> str:
    """Decode any existing percent-encoding, then re-encode each path segment.

    ``a%20b`` and ``a b`` both become ``a%20b``, so an already-encoded URL is
    never encoded a second time.
    """
    if not url:
        return url
    parts = urlsplit(url)
    segments = [quote(unquote(seg), safe=_SEGMENT_SAFE) for seg in parts.path.split("/")]
    return urlunsplit((parts.scheme, parts.netloc, "/".join(segments), parts.query, parts.fragment))


def raw_url(url: str) -> str:
    return url


def encode_full_url(url: str) -> str:
    return quote(url, safe=_ENCODE_URI_SAFE)


def strip_query(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


FALLBACK_TRANSFORMS: list[Callable[[str], str]] = [normalize_url, raw_url, encode_full_url, strip_query]


def candidate_urls(url: str) -> list[str]:
    """Distinct URLs to try, in ladder order."""
    out: list[str] = []
    for transform in FALLBACK_TRANSFORMS:
        candidate = transform(url)
        if candidate and candidate not in out:
            out.append(candidate)
    return out


async def resolve_reachable_url(url: str, fetcher, timeout: float) -> str | None:
    """First candidate the fetcher's bounded probe reports reachable, else None."""
    for candidate in candidate_urls(url):
        try:
            if await fetcher.probe(candidate, timeout=timeout):
                return candidate
        except Exception as e:
            logging.debug(f"[url-fallback] probe raised for {candidate}: {e}")
    return None


class FallbackImageSource(QObject):
    """Per-widget URL escalation used when the cache is bypassed.

    The view binds ``current_url`` to its image element and reports load
    failures; after the last level ``retry_required`` fires and the view shows
    a retry affordance instead of failing silently.
    """

    url_changed = Signal(str)
    retry_required = Signal()

    def __init__(self, url: str, transforms: list[Callable[[str], str]] | None = None):
        super().__init__()
        self._url = url
        self._transforms = list(transforms or FALLBACK_TRANSFORMS)
        self._level = 0
        self._loaded = False

    @property
    def level(self) -> int:
        return self._level

    @property
    def exhausted(self) -> bool:
        return self._level >= len(self._transforms)

    @property
    def loaded(self) -> bool:
        return self._loaded

    @property
    def current_url(self) -> str | None:
        if self.exhausted:
            return None
        return self._transforms[self._level](self._url)

    def on_loaded(self):
        self._loaded = True
        logging.debug(f"[url-fallback] loaded at level {self._level}: {str(self.current_url)[:100]}")

    def on_load_failed(self):
        if self.exhausted:
            return
        logging.debug(f"[url-fallback] level {self._level} failed for {self._url[:100]}")
        self._level += 1
        if self.exhausted:
            self.retry_required.emit()
        else:
            self.url_changed.emit(self.current_url)

    def retry(self):
        self._level = 0
        self._loaded = False
        self.url_changed.emit(self.current_url)
