from PySide6.QtCore import QObject, Signal


class SelectionModel(QObject):
    """Media ids marked for bulk deletion, plus the selection-mode flag."""

    selectionChanged = Signal(list)  # list of selected media ids
    selectionModeChanged = Signal(bool)

    def __init__(self):
        super().__init__()
        self._selected: list[str] = []  # kept in tap order
        self._mode = False

    @property
    def selection_mode(self) -> bool:
        return self._mode

    def enter_mode(self):
        if self._mode:
            return
        self._mode = True
        self.selectionModeChanged.emit(True)

    def exit_mode(self):
        """Leave selection mode; the selection does not survive it."""
        self.clear()
        if not self._mode:
            return
        self._mode = False
        self.selectionModeChanged.emit(False)

    def toggle_mode(self):
        if self._mode:
            self.exit_mode()
        else:
            self.enter_mode()

    def clear(self):
        if not self._selected:
            return
        self._selected = []
        self.selectionChanged.emit([])

    def set(self, media_ids: list[str]):
        ids: list[str] = []
        for media_id in media_ids:
            if media_id and media_id not in ids:
                ids.append(media_id)
        self._selected = ids
        self.selectionChanged.emit(list(self._selected))

    def toggle(self, media_id: str):
        if not media_id:
            return
        if media_id in self._selected:
            self._selected.remove(media_id)
        else:
            self._selected.append(media_id)
        self.selectionChanged.emit(list(self._selected))

    def prune(self, valid_ids):
        """Forget ids that are no longer in the gallery."""
        valid = set(valid_ids)
        kept = [m for m in self._selected if m in valid]
        if kept != self._selected:
            self._selected = kept
            self.selectionChanged.emit(list(self._selected))

    def selected(self) -> list[str]:
        return list(self._selected)

    def is_selected(self, media_id: str) -> bool:
        return media_id in self._selected

    def __len__(self):
        return len(self._selected)
