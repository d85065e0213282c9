"""Photo upload pipeline.

A file becomes evidence in four steps: normalize (orientation, size, JPEG),
write to blob storage under a bounded timeout, record the photo row, announce
it. A photo row only exists once its bytes are in storage, so the gate never
counts something that is still uploading or failed.
"""

import asyncio
import hashlib
import io
import logging
import time
from dataclasses import dataclass
from pathlib import PurePath
from typing import TYPE_CHECKING, Optional, Sequence, Union
from uuid import UUID

from PIL import Image, ImageOps, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import Settings, get_settings
from app.core.exceptions import (
    AuthorizationRejection,
    ConflictRejection,
    PersistenceFailure,
    PhotoNotFound,
    UploadFailure,
    ValidationRejection,
)
from app.models.enums import JobEventType, JobStatus, PhotoPhase
from app.models.job import CleaningJob, JobPhoto
from app.services.access import is_administrator, is_assigned_worker
from app.services.audit import AuditService
from app.services.categories import PhotoCategory, effective_phase, find_category
from app.services.job_store import JobStore
from app.services.notifications import JobEventPublisher
from app.services.storage import StorageService, sanitize_filename

if TYPE_CHECKING:
    from app.core.security import AuthenticatedUser

logger = logging.getLogger(__name__)

# Which job status accepts uploads for each phase
UPLOAD_STATUS = {
    PhotoPhase.BEFORE: JobStatus.PENDING,
    PhotoPhase.AFTER: JobStatus.IN_PROGRESS,
}

# Sent by mobile clients and form posts that do not know the image type
GENERIC_CONTENT_TYPES = {"application/octet-stream", "binary/octet-stream"}


@dataclass(frozen=True)
class NormalizedImage:
    data: bytes
    filename: str
    width: int
    height: int
    content_type: str = "image/jpeg"

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()


def jpeg_filename(filename: Optional[str]) -> str:
    """`IMG_0042.HEIC` -> `IMG_0042.jpg`"""
    stem = PurePath(sanitize_filename(filename or "photo")).stem or "photo"
    return f"{stem}.jpg"


def normalize_image(
    raw: bytes,
    filename: Optional[str] = None,
    max_dimension: int = 1600,
    quality: int = 90,
) -> NormalizedImage:
    """Re-encode an upload as an upright RGB JPEG.

    The longest side is bounded by `max_dimension` with the aspect ratio
    kept; smaller images are never upscaled.
    """
    try:
        with Image.open(io.BytesIO(raw)) as source:
            img = ImageOps.exif_transpose(source)
            if img.mode != "RGB":
                img = img.convert("RGB")
            img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)

            buffer = io.BytesIO()
            img.save(buffer, format="JPEG", quality=quality, optimize=True)
            width, height = img.size
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise UploadFailure(
            f"Could not read image: {e}",
            filename=filename,
        ) from e

    return NormalizedImage(
        data=buffer.getvalue(),
        filename=jpeg_filename(filename),
        width=width,
        height=height,
    )


def build_object_path(
    job_id: UUID,
    phase: Union[PhotoPhase, str],
    category_key: str,
    timestamp_ms: int,
    filename: str,
) -> str:
    phase_value = phase.value if isinstance(phase, PhotoPhase) else phase
    return f"{job_id}/{phase_value}/{category_key}/{timestamp_ms}_{sanitize_filename(filename)}"


_last_timestamp_ms = 0


def next_timestamp_ms() -> int:
    """Wall-clock milliseconds, strictly increasing within the process."""
    global _last_timestamp_ms
    _last_timestamp_ms = max(int(time.time() * 1000), _last_timestamp_ms + 1)
    return _last_timestamp_ms


@dataclass(frozen=True)
class IncomingFile:
    filename: str
    data: bytes
    content_type: Optional[str] = None


@dataclass(frozen=True)
class UploadOutcome:
    """Result for one file of a batch."""

    filename: str
    category_key: str
    phase: PhotoPhase
    ok: bool
    photo_id: Optional[UUID] = None
    object_path: Optional[str] = None
    storage_ref: Optional[str] = None
    error: Optional[str] = None
    timed_out: bool = False


@dataclass(frozen=True)
class UploadTarget:
    job_id: UUID
    category: PhotoCategory
    phase: PhotoPhase


class UploadPipeline:
    """Normalize, store and record job photos."""

    def __init__(
        self,
        store: JobStore,
        storage: StorageService,
        publisher: JobEventPublisher,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.storage = storage
        self.publisher = publisher
        self.settings = settings or get_settings()
        # One AsyncSession is shared by concurrent uploads; writes take turns
        self._write_lock = asyncio.Lock()

    # === Validation ===

    def resolve_target(
        self,
        job: CleaningJob,
        category_key: str,
        phase: Union[PhotoPhase, str],
    ) -> UploadTarget:
        """Pick the phase the photo really belongs to and check it is wanted.

        General areas always land in `after`. Keys the job does not require
        are rejected so no orphan photos are stored.
        """
        category = find_category(category_key, job.unit_type, job.features or [])
        if category is None:
            raise ValidationRejection(
                f"'{category_key}' is not a documentation category for this job",
                missing=(),
                reason="unknown_category",
            )

        target_phase = effective_phase(category, phase)
        accepted_status = UPLOAD_STATUS[target_phase]
        if job.status != accepted_status:
            raise ConflictRejection(
                f"{target_phase.value.capitalize()} photos can only be added "
                f"while the job is {accepted_status.value}",
                current_status=job.status.value,
            )

        return UploadTarget(job_id=job.id, category=category, phase=target_phase)

    def _check_uploader(self, job: CleaningJob, actor: "AuthenticatedUser") -> None:
        if not (is_assigned_worker(job, actor) or is_administrator(actor)):
            raise AuthorizationRejection("You are not assigned to this job")

    # === Uploads ===

    async def upload(
        self,
        job_id: UUID,
        phase: Union[PhotoPhase, str],
        category_key: str,
        file: IncomingFile,
        actor: "AuthenticatedUser",
    ) -> UploadOutcome:
        """Upload one file. Raises UploadFailure if it does not make it."""
        job = await self.store.read_job(job_id)
        self._check_uploader(job, actor)
        target = self.resolve_target(job, category_key, phase)
        return await self._upload_one(job, target, file, actor)

    async def upload_many(
        self,
        job_id: UUID,
        phase: Union[PhotoPhase, str],
        category_key: str,
        files: Sequence[IncomingFile],
        actor: "AuthenticatedUser",
    ) -> list[UploadOutcome]:
        """Upload a batch concurrently, one outcome per file.

        A failed or timed-out file is reported on its own; its siblings
        still land.
        """
        job = await self.store.read_job(job_id)
        self._check_uploader(job, actor)
        target = self.resolve_target(job, category_key, phase)

        async def attempt(file: IncomingFile) -> UploadOutcome:
            try:
                return await self._upload_one(job, target, file, actor)
            except UploadFailure as e:
                return UploadOutcome(
                    filename=file.filename,
                    category_key=target.category.key,
                    phase=target.phase,
                    ok=False,
                    error=e.message,
                    timed_out=e.timed_out,
                )

        outcomes = await asyncio.gather(*(attempt(f) for f in files))
        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.info(
                f"[UPLOAD] {failed}/{len(outcomes)} files failed for job {target.job_id} "
                f"({target.phase.value}/{target.category.key})"
            )
        return list(outcomes)

    async def _upload_one(
        self,
        job: CleaningJob,
        target: UploadTarget,
        file: IncomingFile,
        actor: "AuthenticatedUser",
    ) -> UploadOutcome:
        category_key = target.category.key

        def failure(message: str, timed_out: bool = False) -> UploadFailure:
            return UploadFailure(
                message,
                category_key=category_key,
                filename=file.filename,
                timed_out=timed_out,
            )

        max_bytes = self.settings.max_upload_size_mb * 1024 * 1024
        if len(file.data) > max_bytes:
            raise failure(f"File exceeds {self.settings.max_upload_size_mb}MB limit")
        # Untyped uploads are left to the decoder
        content_type = (file.content_type or "").split(";")[0].strip().lower()
        if (
            content_type
            and content_type not in GENERIC_CONTENT_TYPES
            and content_type not in StorageService.ALLOWED_MIME_TYPES
        ):
            raise failure(f"Unsupported file type: {file.content_type}")

        normalized = await asyncio.to_thread(
            normalize_image,
            file.data,
            file.filename,
            self.settings.photo_max_dimension,
            self.settings.photo_jpeg_quality,
        )

        object_path = build_object_path(
            target.job_id,
            target.phase,
            category_key,
            next_timestamp_ms(),
            normalized.filename,
        )

        try:
            storage_ref = await asyncio.wait_for(
                self.storage.put(object_path, normalized.data, normalized.content_type),
                timeout=self.settings.upload_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.info(
                f"[UPLOAD] Timed out after {self.settings.upload_timeout_seconds}s: {object_path}"
            )
            raise failure("Upload timed out", timed_out=True)
        except Exception as e:
            logger.info(f"[UPLOAD] Storage write failed for {object_path}: {e}")
            raise failure(f"Storage error: {e}")

        photo = JobPhoto(
            job_id=target.job_id,
            category_key=category_key,
            phase=target.phase,
            object_path=object_path,
            storage_ref=storage_ref,
            file_hash=normalized.sha256,
            mime_type=normalized.content_type,
            file_size_bytes=normalized.size_bytes,
            original_filename=file.filename,
            uploaded_by_id=actor.uid,
        )

        async with self._write_lock:
            try:
                await self.store.write_photo(photo)
                await self.store.commit()
            except SQLAlchemyError as e:
                await self.store.rollback()
                logger.info(f"[UPLOAD] Could not record photo {object_path}: {e}")
                await self._discard_blob(object_path)
                raise failure("Could not record photo")

            # A sibling's rollback may have expired the job
            await self.store.refresh_job(job)
            await self.publisher.publish(
                JobEventType.PHOTO_UPLOADED,
                job,
                {
                    "photo_id": str(photo.id),
                    "category_key": category_key,
                    "phase": target.phase.value,
                },
            )

        logger.info(f"[UPLOAD] Stored {object_path} ({normalized.size_bytes} bytes)")
        return UploadOutcome(
            filename=file.filename,
            category_key=category_key,
            phase=target.phase,
            ok=True,
            photo_id=photo.id,
            object_path=object_path,
            storage_ref=storage_ref,
        )

    async def _discard_blob(self, object_path: str) -> None:
        try:
            await self.storage.delete(object_path)
        except Exception as e:
            logger.warning(f"[UPLOAD] Could not remove orphan blob {object_path}: {e}")

    # === Listing and removal ===

    async def list_photos(self, job_id: UUID) -> dict[PhotoPhase, list[JobPhoto]]:
        """Photos of a job grouped by phase, oldest first."""
        grouped: dict[PhotoPhase, list[JobPhoto]] = {phase: [] for phase in PhotoPhase}
        for photo in await self.store.list_photos(job_id):
            grouped[photo.phase].append(photo)
        return grouped

    async def photo_counts(self, job_id: UUID) -> dict[PhotoPhase, dict[str, int]]:
        return {
            phase: await self.store.read_photo_counts(job_id, phase)
            for phase in PhotoPhase
        }

    async def delete_photo(
        self,
        job_id: UUID,
        photo_id: UUID,
        actor: "AuthenticatedUser",
    ) -> None:
        """Remove one photo while the job is still open."""
        job = await self.store.read_job(job_id)
        self._check_uploader(job, actor)

        if job.status == JobStatus.COMPLETED:
            raise ConflictRejection(
                "Photos of a completed job cannot be removed",
                current_status=job.status.value,
            )

        photo = await self.store.read_photo(job_id, photo_id)
        if photo is None:
            raise PhotoNotFound(photo_id)

        object_path = photo.object_path
        category_key = photo.category_key
        phase = photo.phase

        async with self._write_lock:
            try:
                await AuditService(self.store.db).log_photo_deleted(
                    photo_id, job_id, actor, category_key, object_path
                )
                await self.store.delete_photo(photo)
                await self.store.commit()
            except SQLAlchemyError as e:
                await self.store.rollback()
                logger.error(f"[UPLOAD] Could not delete photo {photo_id}: {e}")
                raise PersistenceFailure("Could not delete photo") from e

            await self.publisher.publish(
                JobEventType.PHOTO_DELETED,
                job,
                {
                    "photo_id": str(photo_id),
                    "category_key": category_key,
                    "phase": phase.value,
                },
            )

        await self._discard_blob(object_path)
