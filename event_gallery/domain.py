from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .constants import MEDIA_KIND_PHOTO
from .errors import PartialBatchFailure

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value) -> datetime:
    """Parse the ISO-8601 timestamps the row store returns.

    Accepts a trailing ``Z``, any number of fractional digits and naive
    values (treated as UTC). datetime objects pass through.
    """
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        # fromisoformat on 3.10 only accepts 3 or 6 fraction digits
        text = _FRACTION_RE.sub(lambda m: "." + (m.group(1) + "000000")[:6], text, count=1)
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class MediaItem:
    """One photo of the authoritative list, fully resolved for display.

    Built once per fetch cycle by the repository; local edits produce a new
    instance through ``dataclasses.replace``.
    """

    id: str
    event_id: str
    user_id: str
    url: str
    created_at: datetime
    display_name: str
    likes_count: int = 0
    user_has_liked: bool = False
    kind: str = MEDIA_KIND_PHOTO

    @classmethod
    def from_row(cls, row: dict, display_name: str, likes_count: int = 0, user_has_liked: bool = False):
        return cls(
            id=str(row["id"]),
            event_id=str(row["event_id"]),
            user_id=str(row["user_id"]),
            url=row.get("url") or "",
            created_at=parse_timestamp(row["created_at"]),
            display_name=display_name,
            likes_count=max(0, int(likes_count)),
            user_has_liked=bool(user_has_liked),
            kind=row.get("type") or MEDIA_KIND_PHOTO,
        )


@dataclass(frozen=True)
class EventContext:
    id: str
    name: str = ""
    created_by: str = ""
    creator_display_name: str | None = None

    @classmethod
    def from_row(cls, row: dict):
        return cls(
            id=str(row["id"]),
            name=row.get("name") or "",
            created_by=str(row.get("created_by") or ""),
            creator_display_name=row.get("creator_display_name") or None,
        )

    def is_creator(self, user_id: str | None) -> bool:
        return bool(user_id) and user_id == self.created_by


@dataclass(frozen=True)
class Principal:
    """The currently authenticated user."""

    id: str
    email: str = ""
    display_name: str = ""  # from session metadata, may be empty


@dataclass(frozen=True)
class LocalAsset:
    uri: str  # local file path returned by the picker
    file_name: str = ""
    mime_type: str = ""


class UploadState(Enum):
    PENDING = "pending"
    RESIZING = "resizing"
    UPLOADING = "uploading"
    INSERTING = "inserting"
    DONE = "done"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (UploadState.DONE, UploadState.FAILED)


_UPLOAD_ORDER = [
    UploadState.PENDING,
    UploadState.RESIZING,
    UploadState.UPLOADING,
    UploadState.INSERTING,
    UploadState.DONE,
]


@dataclass
class UploadJob:
    asset: LocalAsset
    index: int
    target_path: str = ""
    state: UploadState = UploadState.PENDING
    error: str | None = None
    url: str | None = None

    def advance(self, state: UploadState):
        """Move forward to ``state``. Any non-terminal state may move to FAILED."""
        if self.state.terminal:
            raise ValueError(f"upload job {self.index} already {self.state.value}")
        if state is not UploadState.FAILED and _UPLOAD_ORDER.index(state) <= _UPLOAD_ORDER.index(self.state):
            raise ValueError(f"upload job {self.index} cannot go from {self.state.value} to {state.value}")
        self.state = state

    def fail(self, error: str):
        self.advance(UploadState.FAILED)
        self.error = error


@dataclass
class UploadSummary:
    succeeded: int = 0
    failed: int = 0
    jobs: list[UploadJob] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.succeeded + self.failed

    @property
    def all_succeeded(self) -> bool:
        return self.failed == 0 and self.succeeded > 0

    @property
    def message(self) -> str:
        return f"{self.succeeded} of {self.total} photos uploaded"

    def as_error(self) -> PartialBatchFailure | None:
        return PartialBatchFailure(self.succeeded, self.failed, "uploads") if self.failed else None


class SortBy(Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    MOST_LIKES = "most_likes"
    BY_USER = "by_user"


@dataclass(frozen=True)
class UserGroup:
    user_id: str
    display_name: str
    items: tuple[MediaItem, ...] = ()


@dataclass
class DeleteOutcome:
    media_id: str
    blob_deleted: bool = False
    row_deleted: bool = False
    error: str | None = None

    @property
    def ok(self) -> bool:
        # A surviving orphaned blob is tolerated; a surviving row is not.
        return self.row_deleted


@dataclass
class BulkDeleteSummary:
    outcomes: list[DeleteOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if not o.ok)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def message(self) -> str:
        return f"{self.succeeded} of {self.total} photos deleted"

    def as_error(self) -> PartialBatchFailure | None:
        return PartialBatchFailure(self.succeeded, self.failed, "deletes") if self.failed else None


@dataclass(frozen=True)
class GalleryState:
    event: EventContext | None
    items: list[MediaItem]
    visible: list[MediaItem]
    groups: list[UserGroup] = field(default_factory=list)
    sort_by: SortBy = SortBy.NEWEST
    only_mine: bool = False
    selection_mode: bool = False
    selected: list[str] = field(default_factory=list)
    loading: bool = False
    error: str | None = None
    is_creator: bool = False
    upload_done: int = 0
    upload_total: int = 0
