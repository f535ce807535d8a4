import json
import logging
import os

from . import constants

CONFIG_PATH = os.path.expanduser("~/.event_gallery_config.json")

DEFAULT_SETTINGS = {
    "backend_url": "",
    "anon_key": "",
    "access_token": "",
    "media_bucket": constants.MEDIA_BUCKET,
    "upload_target_width": constants.UPLOAD_TARGET_WIDTH,
    "upload_jpeg_quality": constants.UPLOAD_JPEG_QUALITY,
    "upload_concurrency": constants.UPLOAD_CONCURRENCY,
    "image_cache_size": constants.IMAGE_CACHE_SIZE,
    "probe_timeout_secs": constants.PROBE_TIMEOUT_SECS,
    "io_timeout_secs": constants.IO_TIMEOUT_SECS,
    "reload_debounce_ms": constants.RELOAD_DEBOUNCE_MS,
    "default_sort": "newest",
}

# Environment variables taking precedence over the config file
ENV_OVERRIDES = {
    "EVENT_GALLERY_URL": "backend_url",
    "EVENT_GALLERY_ANON_KEY": "anon_key",
    "EVENT_GALLERY_ACCESS_TOKEN": "access_token",
}


def load_settings(path: str | None = None) -> dict:
    """Return DEFAULT_SETTINGS overlaid with the config file and the environment."""
    path = path or CONFIG_PATH
    settings = DEFAULT_SETTINGS.copy()
    if os.path.exists(path):
        try:
            with open(path) as f:
                stored = json.load(f)
            if isinstance(stored, dict):
                settings.update(stored)
            else:
                logging.warning(f"[settings] Ignoring {path}: top-level value is not an object")
        except (OSError, ValueError) as e:
            logging.warning(f"[settings] Could not read {path}, using defaults: {e}")
    for env_var, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_var)
        if value:
            settings[key] = value
    return settings


def get_setting(key, default=None, path: str | None = None):
    """Utility function to get a single setting value"""
    path = path or CONFIG_PATH
    try:
        if os.path.exists(path):
            with open(path) as f:
                settings = json.load(f)
                return settings.get(key, default)
    except Exception:
        logging.exception("Failed to load settings")
        raise
    return default


def set_setting(key, value, path: str | None = None):
    """Utility function to set a single setting value"""
    path = path or CONFIG_PATH
    try:
        settings = {}
        if os.path.exists(path):
            with open(path) as f:
                settings = json.load(f)

        settings[key] = value

        with open(path, "w") as f:
            json.dump(settings, f, indent=2)
    except Exception as e:
        logging.error(f"Could not save setting {key}: {e}")
