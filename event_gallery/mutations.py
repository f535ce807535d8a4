"""Likes and deletes, applied optimistically where the user expects it.

Like toggles flip the local item first and revert if the store refuses.
Deletes remove the blob, then the row. Blob failures do not stop the row
deletion: an orphaned blob is invisible, a dangling row is a broken tile.
"""

from __future__ import annotations

import logging
from urllib.parse import unquote, urlsplit

from .backend import IdentityProvider, ObjectStore
from .commands import ToggleLikeCommand
from .constants import MEDIA_BUCKET
from .domain import BulkDeleteSummary, DeleteOutcome, EventContext, MediaItem
from .errors import GalleryError


def storage_path_from_url(url: str, bucket: str = MEDIA_BUCKET) -> str:
    """Object path inside ``bucket`` for a public URL ('' if it cannot be derived).

    Values that are not URLs are taken to be paths already.
    """
    if not url:
        return ""
    if "://" not in url:
        return url.lstrip("/")
    path = unquote(urlsplit(url).path)
    for marker in (f"/public/{bucket}/", f"/{bucket}/"):
        idx = path.find(marker)
        if idx != -1:
            return path[idx + len(marker):]
    return ""


def can_delete(item: MediaItem, principal_id: str | None, event: EventContext | None) -> bool:
    """Event creators may delete anything, everyone else only their own photos."""
    if not principal_id or item is None:
        return False
    if event is not None and event.is_creator(principal_id):
        return True
    return item.user_id == principal_id


class MutationCoordinator:
    def __init__(
        self,
        repository,
        objects: ObjectStore,
        identity: IdentityProvider,
        bus=None,
        bucket: str = MEDIA_BUCKET,
    ):
        self._repository = repository
        self._objects = objects
        self._identity = identity
        self._bus = bus
        self._bucket = bucket
        self._likes_inflight: set[str] = set()

    def _principal_id(self) -> str | None:
        principal = self._identity.current_principal()
        return principal.id if principal is not None else None

    def can_delete(self, item: MediaItem) -> bool:
        return can_delete(item, self._principal_id(), self._repository.event)

    # ---------------- Likes -----------------
    async def toggle_like(self, media_id: str) -> bool:
        """Flip the principal's like on ``media_id``. False if it was reverted or ignored."""
        user_id = self._principal_id()
        if user_id is None:
            if self._bus is not None:
                self._bus.error("Like failed", "You must be signed in to like photos")
            return False
        if media_id in self._likes_inflight:
            logging.debug(f"[mutations] like toggle for {media_id} already in flight, ignored")
            return False
        cmd = ToggleLikeCommand(self._repository, media_id)
        try:
            cmd.execute()
        except KeyError:
            logging.debug(f"[mutations] like toggle for unknown media {media_id}")
            return False

        self._likes_inflight.add(media_id)
        try:
            if cmd.liked_after:
                await self._repository.insert_like(media_id, user_id)
            else:
                await self._repository.delete_like(media_id, user_id)
            return True
        except Exception as e:
            logging.warning(f"[mutations] like toggle for {media_id} failed, reverting: {e}")
            cmd.undo()
            if self._bus is not None:
                self._bus.error("Like failed", "Could not update your like. Please try again.")
            return False
        finally:
            self._likes_inflight.discard(media_id)

    # ---------------- Deletes -----------------
    async def _delete_one(self, item: MediaItem) -> DeleteOutcome:
        outcome = DeleteOutcome(media_id=item.id)
        errors: list[str] = []

        path = storage_path_from_url(item.url, self._bucket)
        if path:
            try:
                await self._objects.remove([path])
                outcome.blob_deleted = True
            except Exception as e:
                logging.warning(f"[mutations] blob delete failed for {item.id} ({path}): {e}")
                errors.append(f"storage: {e}")
        else:
            logging.warning(f"[mutations] no storage path in url of {item.id}: {item.url[:100]}")
            errors.append("storage: unknown object path")

        try:
            await self._repository.delete_media_row(item.id)
            outcome.row_deleted = True
        except Exception as e:
            logging.error(f"[mutations] row delete failed for {item.id}: {e}")
            errors.append(f"row: {e}")

        if errors:
            outcome.error = "; ".join(errors)
        if outcome.row_deleted:
            self._repository.remove_item(item.id)
        return outcome

    async def delete(self, media_id: str) -> DeleteOutcome:
        item = self._repository.get(media_id)
        if item is None:
            outcome = DeleteOutcome(media_id=media_id, error="not found")
        elif not self.can_delete(item):
            outcome = DeleteOutcome(media_id=media_id, error="not allowed")
        else:
            outcome = await self._delete_one(item)

        if self._bus is not None:
            if outcome.ok and outcome.error:
                self._bus.error("Photo deleted", f"Removed from gallery, but the file could not be deleted ({outcome.error})")
            elif outcome.ok:
                self._bus.success("Photo deleted", "Media removed from gallery")
            else:
                self._bus.error("Delete failed", outcome.error or "Failed to delete media")
        return outcome

    async def bulk_delete(self, media_ids: list[str], selection=None) -> BulkDeleteSummary:
        summary = BulkDeleteSummary()
        for media_id in list(media_ids):
            item = self._repository.get(media_id)
            if item is None:
                summary.outcomes.append(DeleteOutcome(media_id=media_id, error="not found"))
                continue
            if not self.can_delete(item):
                summary.outcomes.append(DeleteOutcome(media_id=media_id, error="not allowed"))
                continue
            summary.outcomes.append(await self._delete_one(item))
        logging.info(f"[mutations] bulk delete: {summary.succeeded}/{summary.total} deleted")

        if selection is not None:
            selection.exit_mode()
        if self._bus is not None:
            self._bus.batch_result("Delete photos", summary.succeeded, summary.total)

        event_id = self._repository.event_id
        if event_id is not None:
            try:
                await self._repository.reload(event_id)
            except GalleryError as e:
                logging.warning(f"[mutations] reload after bulk delete failed: {e}")
        return summary
