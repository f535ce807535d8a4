"""Error taxonomy shared by the repository, uploads and mutations."""

from __future__ import annotations


class GalleryError(Exception):
    """Base error. ``retryable`` tells the UI whether to offer a retry action."""

    retryable = False

    def __init__(self, message: str = "", *, retryable: bool | None = None):
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class TransientNetworkError(GalleryError):
    """Timeouts, dropped connections, transient 5xx responses."""

    retryable = True


class NotFoundError(GalleryError):
    pass


class PermissionDeniedError(GalleryError):
    pass


class DegradedFeatureError(GalleryError):
    """An optional subsystem (e.g. likes) is unavailable."""


class ReloadError(GalleryError):
    """Fetching the event or its media rows failed; the list was not replaced."""

    retryable = True


class PartialBatchFailure(GalleryError):
    """Some items of a batch failed. Successful items are kept."""

    def __init__(self, succeeded: int, failed: int, action: str = "items"):
        self.succeeded = succeeded
        self.failed = failed
        self.total = succeeded + failed
        super().__init__(f"{succeeded} of {self.total} {action} succeeded")


def classify_http_status(status: int, message: str = "") -> GalleryError:
    """Map an HTTP status code onto the error taxonomy."""
    text = message or f"HTTP {status}"
    if status == 404:
        return NotFoundError(text)
    if status in (401, 403):
        return PermissionDeniedError(text)
    if status >= 500 or status in (408, 429):
        return TransientNetworkError(text)
    return GalleryError(text)


__all__ = [
    "GalleryError",
    "TransientNetworkError",
    "NotFoundError",
    "PermissionDeniedError",
    "DegradedFeatureError",
    "ReloadError",
    "PartialBatchFailure",
    "classify_http_status",
]
