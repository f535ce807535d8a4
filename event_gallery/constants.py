"""Project-wide constants for the event gallery sync engine.

Centralizes table names, storage layout and tuning values so the
repository, upload pipeline and mutation code agree on them.
"""

# Remote tables
EVENTS_TABLE = "events"
"""Event rows (id, name, created_by, creator_display_name)"""

MEDIA_TABLE = "media"
"""Media rows (id, event_id, user_id, url, type, created_at)"""

LIKES_TABLE = "likes"
"""Like rows (media_id, user_id); cannot be filtered by event server-side"""

PARTICIPANTS_TABLE = "event_participants"
"""Participation rows carrying a display_name snapshot taken at join time"""

PROFILE_TABLE = "user"
"""User profile rows (id, display_name)"""

DISPLAY_NAME_RPC = "get_user_display_name"
"""Privileged lookup for principals the profile table policy hides"""

# Storage
MEDIA_BUCKET = "media"
"""Object store bucket holding uploaded photos"""

MEDIA_KIND_PHOTO = "photo"
"""Value of media.type for photos; the gallery only shows this kind"""

UPLOAD_SUBDIR = "photos"
"""Path segment between event id and file name in the bucket"""

# Identity
DISPLAY_NAME_PREFIX_LEN = 6
"""Number of user id characters used in the synthetic 'User <prefix>' label"""

# Upload standardization
UPLOAD_TARGET_WIDTH = 1080
"""Width in pixels every uploaded photo is resized to (aspect preserved)"""

UPLOAD_JPEG_QUALITY = 70
"""JPEG quality used when re-encoding uploads"""

UPLOAD_EXTENSION = "jpg"
"""File extension of standardized uploads"""

UPLOAD_CONTENT_TYPE = "image/jpeg"

UPLOAD_CONCURRENCY = 3
"""Maximum number of assets processed at the same time in one batch"""

# Cache / network
IMAGE_CACHE_SIZE = 256
"""Maximum number of decoded images kept in memory (None disables eviction)"""

PROBE_TIMEOUT_SECS = 5.0
"""Timeout for URL reachability probes; unreachable on expiry"""

IO_TIMEOUT_SECS = 30.0
"""Timeout for row/object store requests"""

RELOAD_DEBOUNCE_MS = 300
"""Window in which change feed notifications collapse into one reload"""
