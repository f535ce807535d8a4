from __future__ import annotations

from dataclasses import dataclass


class Command:
    description: str = ""

    def execute(self):
        raise NotImplementedError

    def undo(self):
        raise NotImplementedError


@dataclass
class ToggleLikeCommand(Command):
    """Optimistic like flip on one item of the repository.

    ``execute`` patches only the affected item by id so a reload landing at the
    same time is not clobbered; ``undo`` restores the captured values.
    """

    repository: object  # MediaRepository
    media_id: str
    _old_liked: bool | None = None
    _old_count: int | None = None
    description: str = "Toggle Like"

    @property
    def liked_after(self) -> bool:
        """The state the remote store must be brought to."""
        return not self._old_liked

    def execute(self):
        if self._old_liked is None:
            item = self.repository.get(self.media_id)
            if item is None:
                raise KeyError(self.media_id)
            self._old_liked = item.user_has_liked
            self._old_count = item.likes_count
        delta = -1 if self._old_liked else 1
        self.repository.patch_item(
            self.media_id,
            user_has_liked=not self._old_liked,
            likes_count=max(0, self._old_count + delta),
        )

    def undo(self):
        if self._old_liked is not None:
            self.repository.patch_item(self.media_id, user_has_liked=self._old_liked, likes_count=self._old_count)
