import logging

from PySide6.QtCore import QObject, Signal

from .backend import Backend
from .change_feed import ChangeFeedListener
from .domain import GalleryState, LocalAsset, SortBy, UploadSummary
from .errors import GalleryError, PermissionDeniedError
from .identity import IdentityResolver
from .image_cache import ImageCache
from .mutations import MutationCoordinator
from .notifications import NotificationBus
from .repository import MediaRepository
from .selection import SelectionModel
from .settings import DEFAULT_SETTINGS
from .uploads import UploadPipeline
from .url_fallback import resolve_reachable_url
from .vm_filters import FilterController


class GalleryViewModel(QObject):
    """ViewModel for one gallery visit. Exposes state and actions, no UI code."""

    gallery_state_changed = Signal(object)  # emits GalleryState
    event_changed = Signal(object)  # EventContext
    image_ready = Signal(str, object)  # media id, CachedImage
    upload_progress = Signal(int, int)  # succeeded, total

    def __init__(self, backend: Backend, settings: dict | None = None, bus: NotificationBus | None = None):
        super().__init__()
        self._settings = {**DEFAULT_SETTINGS, **(settings or {})}
        self._backend = backend
        self.bus = bus or NotificationBus()
        self._init_state()
        self._init_services()
        self._init_controllers()
        self._connect_signals()

    def _init_state(self):
        self._event_id: str | None = None
        self._visible = []
        self._groups = []
        self._error: str | None = None
        self._upload_done = 0
        self._upload_total = 0
        self._closed = False

    def _init_services(self):
        s = self._settings
        backend = self._backend
        self.resolver = IdentityResolver(backend.rows, backend.identity)
        self.repository = MediaRepository(backend.rows, backend.identity, self.resolver)
        self.image_cache = ImageCache(
            backend.images,
            maxsize=s["image_cache_size"],
            timeout=float(s["io_timeout_secs"]),
        )
        self.feed = ChangeFeedListener(backend.feed, self.repository, debounce_ms=int(s["reload_debounce_ms"]))
        self.uploads = UploadPipeline(
            backend.objects,
            self.repository,
            backend.identity,
            concurrency=int(s["upload_concurrency"]),
            target_width=int(s["upload_target_width"]),
            quality=int(s["upload_jpeg_quality"]),
        )
        self.mutations = MutationCoordinator(
            self.repository, backend.objects, backend.identity, bus=self.bus, bucket=s["media_bucket"]
        )

    def _init_controllers(self):
        self.selection_model = SelectionModel()
        try:
            sort_by = SortBy(self._settings.get("default_sort") or SortBy.NEWEST.value)
        except ValueError:
            logging.warning(f"[viewmodel] unknown default_sort {self._settings.get('default_sort')!r}, using newest")
            sort_by = SortBy.NEWEST
        self._filter_ctrl = FilterController(sort_by)

    def _connect_signals(self):
        self.repository.items_changed.connect(self._on_items_changed)
        self.repository.event_changed.connect(self._on_event_changed)
        self.repository.reload_failed.connect(self._on_reload_failed)
        self.selection_model.selectionChanged.connect(lambda _ids: self._emit_state())
        self.selection_model.selectionModeChanged.connect(lambda _mode: self._emit_state())
        self.image_cache.image_ready.connect(self.image_ready.emit)
        self.uploads.progress_changed.connect(self._on_upload_progress)

    # ---------------- Projection -----------------
    def _principal_id(self) -> str | None:
        principal = self._backend.identity.current_principal()
        return principal.id if principal is not None else None

    def _recompute(self):
        items = self.repository.items
        principal_id = self._principal_id()
        self._visible = self._filter_ctrl.apply(items, principal_id)
        self._groups = self._filter_ctrl.groups(items, principal_id)

    def _on_items_changed(self, items):
        # Patches also land here; only an applied reload resets last_error
        if self.repository.last_error is None:
            self._error = None
        self.selection_model.prune(i.id for i in items)
        self._recompute()
        self._emit_state()

    def _on_event_changed(self, event):
        self.event_changed.emit(event)

    def _on_reload_failed(self, message: str):
        self._error = message
        self._emit_state()

    def _on_upload_progress(self, done: int, total: int):
        self._upload_done = done
        self._upload_total = total
        self.upload_progress.emit(done, total)
        self._emit_state()

    def _emit_state(self):
        if self._closed:
            return
        self.gallery_state_changed.emit(self.state())

    def state(self) -> GalleryState:
        event = self.repository.event
        principal_id = self._principal_id()
        return GalleryState(
            event=event,
            items=self.repository.items,
            visible=list(self._visible),
            groups=list(self._groups),
            sort_by=self._filter_ctrl.sort_by,
            only_mine=self._filter_ctrl.only_mine,
            selection_mode=self.selection_model.selection_mode,
            selected=self.selection_model.selected(),
            loading=self.repository.loading,
            error=self._error,
            is_creator=bool(event and event.is_creator(principal_id)),
            upload_done=self._upload_done,
            upload_total=self._upload_total,
        )

    # ---------------- Lifecycle -----------------
    async def open(self, event_id: str) -> bool:
        """Load the gallery of ``event_id`` and start listening for changes."""
        if self._event_id is not None and self._event_id != event_id:
            self.selection_model.exit_mode()
            self.image_cache.clear()
        self._event_id = event_id
        try:
            return await self.refresh()
        finally:
            if not self._closed:
                self.feed.start(event_id)

    async def refresh(self) -> bool:
        if self._event_id is None:
            return False
        self._error = None
        self._emit_state()
        try:
            await self.repository.reload(self._event_id)
        except GalleryError as e:
            self._error = str(e)
            self._emit_state()
            return False
        self._emit_state()
        return True

    async def retry(self) -> bool:
        logging.info(f"[viewmodel] retrying load of event {self._event_id}")
        return await self.refresh()

    def close(self):
        if self._closed:
            return
        self.feed.stop()
        self.image_cache.close()
        self.selection_model.exit_mode()
        self._closed = True
        logging.info(f"[viewmodel] closed gallery of event {self._event_id}")

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def event_id(self) -> str | None:
        return self._event_id

    # ---------------- Sort / filter -----------------
    def set_sort(self, sort_by) -> bool:
        if not self._filter_ctrl.set_sort(sort_by):
            return False
        self._recompute()
        self._emit_state()
        return True

    def set_only_mine(self, only_mine: bool) -> bool:
        if not self._filter_ctrl.set_only_mine(only_mine):
            return False
        self._recompute()
        self._emit_state()
        return True

    # ---------------- Selection -----------------
    def toggle_selection_mode(self):
        self.selection_model.toggle_mode()

    def toggle_item_selection(self, media_id: str) -> bool:
        if not self.selection_model.selection_mode or self.repository.get(media_id) is None:
            return False
        self.selection_model.toggle(media_id)
        return True

    def begin_selection(self, media_id: str) -> bool:
        """Long-press entry into selection mode; event creators only."""
        event = self.repository.event
        if event is None or not event.is_creator(self._principal_id()):
            return False
        self.selection_model.enter_mode()
        return self.toggle_item_selection(media_id)

    # ---------------- Actions -----------------
    async def upload(self, assets: list[LocalAsset]) -> UploadSummary:
        if self._event_id is None:
            raise GalleryError("no gallery is open")
        self._upload_done = 0
        self._upload_total = len(assets or [])
        self._emit_state()
        try:
            summary = await self.uploads.upload(self._event_id, assets)
        except PermissionDeniedError as e:
            self.bus.error("Upload failed", str(e))
            summary = UploadSummary()
        finally:
            self._upload_done = 0
            self._upload_total = 0
        if summary.total:
            self.bus.batch_result("Upload photos", summary.succeeded, summary.total)
        if summary.succeeded:
            await self.refresh()
        else:
            self._emit_state()
        return summary

    async def toggle_like(self, media_id: str) -> bool:
        return await self.mutations.toggle_like(media_id)

    async def delete(self, media_id: str):
        return await self.mutations.delete(media_id)

    async def delete_selected(self):
        return await self.mutations.bulk_delete(self.selection_model.selected(), self.selection_model)

    def can_delete(self, media_id: str) -> bool:
        item = self.repository.get(media_id)
        return item is not None and self.mutations.can_delete(item)

    def image_for(self, media_id: str):
        """Cached image for ``media_id``, or None while it loads (see ``image_ready``)."""
        item = self.repository.get(media_id)
        if item is None:
            return None
        return self.image_cache.get(item)

    async def reachable_url(self, media_id: str) -> str | None:
        """First URL variant of the item that answers a bounded probe, for views loading it themselves."""
        item = self.repository.get(media_id)
        if item is None:
            return None
        url = await resolve_reachable_url(
            item.url, self._backend.images, timeout=float(self._settings["probe_timeout_secs"])
        )
        if url is None:
            logging.info(f"[viewmodel] no reachable URL for {media_id}")
        return url


class GallerySession:
    """Root provider: backend, settings and the notification bus.

    Every gallery opened through the session shares its bus, and ``close``
    tears all of them down.
    """

    def __init__(self, backend: Backend, settings: dict | None = None, bus: NotificationBus | None = None):
        self.backend = backend
        self.settings = {**DEFAULT_SETTINGS, **(settings or {})}
        self.bus = bus or NotificationBus()
        self._galleries: list[GalleryViewModel] = []

    @property
    def galleries(self) -> list[GalleryViewModel]:
        return list(self._galleries)

    async def open_gallery(self, event_id: str) -> GalleryViewModel:
        vm = GalleryViewModel(self.backend, self.settings, self.bus)
        self._galleries.append(vm)
        await vm.open(event_id)
        return vm

    def close_gallery(self, vm: GalleryViewModel):
        vm.close()
        if vm in self._galleries:
            self._galleries.remove(vm)

    def close(self):
        for vm in list(self._galleries):
            self.close_gallery(vm)
        self.bus.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.close()
        return False
