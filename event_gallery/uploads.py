"""Batched photo upload pipeline.

Each selected asset becomes an UploadJob that moves strictly forward through
resizing -> uploading -> inserting -> done, or drops to failed. A failing job
never aborts its siblings; the batch reports how many of each outcome it had.
Rows are only written to the store here; the gallery list itself changes on
the next repository reload.
"""

from __future__ import annotations

import asyncio
import base64
import io
import logging
import time
from collections.abc import Callable
from urllib.parse import unquote, urlparse

from PIL import Image, ImageOps
from PySide6.QtCore import QObject, Signal

from .backend import IdentityProvider, ObjectStore
from .constants import (
    UPLOAD_CONCURRENCY,
    UPLOAD_CONTENT_TYPE,
    UPLOAD_EXTENSION,
    UPLOAD_JPEG_QUALITY,
    UPLOAD_SUBDIR,
    UPLOAD_TARGET_WIDTH,
)
from .domain import LocalAsset, UploadJob, UploadState, UploadSummary
from .errors import PermissionDeniedError
from .timing import time_operation


def local_path(uri: str) -> str:
    """Picker results may be plain paths or file:// URIs."""
    if uri.startswith("file://"):
        return unquote(urlparse(uri).path)
    return uri


def standardize(path: str, target_width: int = UPLOAD_TARGET_WIDTH, quality: int = UPLOAD_JPEG_QUALITY) -> bytes:
    """Resize to ``target_width`` (aspect kept) and re-encode as JPEG."""
    with Image.open(path) as src:
        img = ImageOps.exif_transpose(src)
        if img.mode != "RGB":
            img = img.convert("RGB")
        width, height = img.size
        new_height = max(1, round(height * target_width / width))
        img = img.resize((target_width, new_height), Image.Resampling.LANCZOS)
        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=quality, optimize=True)
    return buf.getvalue()


def encode_for_transfer(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def build_upload_path(event_id: str, user_id: str, timestamp_ms: int, index: int, ext: str = UPLOAD_EXTENSION) -> str:
    return f"{event_id}/{UPLOAD_SUBDIR}/{user_id}_{timestamp_ms}_{index}.{ext}"


class UploadPipeline(QObject):
    job_state_changed = Signal(int, str)  # job index, state value
    progress_changed = Signal(int, int)  # succeeded, total
    finished = Signal(object)  # UploadSummary

    def __init__(
        self,
        objects: ObjectStore,
        repository,
        identity: IdentityProvider,
        concurrency: int = UPLOAD_CONCURRENCY,
        target_width: int = UPLOAD_TARGET_WIDTH,
        quality: int = UPLOAD_JPEG_QUALITY,
    ):
        super().__init__()
        self._objects = objects
        self._repository = repository
        self._identity = identity
        self._concurrency = max(1, int(concurrency))
        self._target_width = int(target_width)
        self._quality = int(quality)
        self.active = False

    async def upload(
        self,
        event_id: str,
        assets: list[LocalAsset],
        progress: Callable[[int, int], None] | None = None,
    ) -> UploadSummary:
        principal = self._identity.current_principal()
        if principal is None:
            raise PermissionDeniedError("You must be signed in to upload photos")
        summary = UploadSummary(jobs=[UploadJob(asset=a, index=i) for i, a in enumerate(assets or [])])
        total = len(summary.jobs)
        if not total:
            self.finished.emit(summary)
            return summary

        timestamp_ms = int(time.time() * 1000)
        for job in summary.jobs:
            job.target_path = build_upload_path(event_id, principal.id, timestamp_ms, job.index)

        semaphore = asyncio.Semaphore(self._concurrency)
        logging.info(f"[uploads] starting batch of {total} for event {event_id}")
        self.active = True

        async def _run(job: UploadJob):
            async with semaphore:
                await self._process(job, event_id, principal.id)
            if job.state is UploadState.DONE:
                summary.succeeded += 1
            else:
                summary.failed += 1
            self.progress_changed.emit(summary.succeeded, total)
            if progress is not None:
                try:
                    progress(summary.succeeded, total)
                except Exception as e:
                    logging.error(f"[uploads] progress callback error: {e}")

        try:
            await asyncio.gather(*(_run(job) for job in summary.jobs))
        finally:
            self.active = False
        logging.info(f"[uploads] batch finished: {summary.succeeded} succeeded, {summary.failed} failed")
        self.finished.emit(summary)
        return summary

    def _advance(self, job: UploadJob, state: UploadState):
        job.advance(state)
        self.job_state_changed.emit(job.index, state.value)

    async def _process(self, job: UploadJob, event_id: str, user_id: str):
        step = "standardize"
        try:
            self._advance(job, UploadState.RESIZING)
            with time_operation("uploads.standardize"):
                data = standardize(local_path(job.asset.uri), self._target_width, self._quality)
            payload = encode_for_transfer(data)

            step = "upload"
            self._advance(job, UploadState.UPLOADING)
            with time_operation("uploads.upload"):
                await self._objects.upload(job.target_path, payload, content_type=UPLOAD_CONTENT_TYPE, upsert=True)
            job.url = self._objects.public_url(job.target_path)

            step = "insert"
            self._advance(job, UploadState.INSERTING)
            await self._repository.insert_media(event_id, user_id, job.url)
            self._advance(job, UploadState.DONE)
        except Exception as e:
            logging.warning(f"[uploads] job {job.index} ({job.asset.uri}) failed at {step}: {e}")
            job.fail(f"{step} failed: {e}")
            self.job_state_changed.emit(job.index, UploadState.FAILED.value)
