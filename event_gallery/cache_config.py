"""Kill switch for the in-memory image cache.

With ``EVENT_GALLERY_DISABLE_CACHE`` set, ImageCache still coalesces
concurrent loads but keeps nothing afterwards, so every render goes back to
the network. Useful when chasing stale-image reports.
"""

import logging
import os

DISABLE_CACHE_ENV_VAR = "EVENT_GALLERY_DISABLE_CACHE"

_TRUTHY = frozenset({"1", "true", "yes", "on"})

# Read once per process; reset_cache_config() forces a re-read
_disabled: bool | None = None


def is_cache_disabled() -> bool:
    global _disabled
    if _disabled is None:
        _disabled = os.environ.get(DISABLE_CACHE_ENV_VAR, "").strip().lower() in _TRUTHY
        if _disabled:
            logging.info(f"[cache_config] image cache off ({DISABLE_CACHE_ENV_VAR} is set)")
    return _disabled


def reset_cache_config():
    global _disabled
    _disabled = None
