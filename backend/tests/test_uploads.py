"""Tests for photo normalization and the upload pipeline."""

import io
import logging
import uuid

import pytest
from PIL import Image

from app.core.exceptions import (
    AuthorizationRejection,
    ConflictRejection,
    PhotoNotFound,
    UploadFailure,
    ValidationRejection,
)
from app.models.enums import JobStatus, PhotoPhase
from app.services.notifications import job_channel
from app.services.uploads import (
    IncomingFile,
    build_object_path,
    jpeg_filename,
    next_timestamp_ms,
    normalize_image,
)

from conftest import add_photos, make_image_bytes

BASE_KEYS = ["stove", "stove_back", "fridge", "fridge_back", "toilet", "bathtub", "sink"]


def decoded(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def jpeg(name: str = "photo.jpg", width: int = 640, height: int = 480) -> IncomingFile:
    return IncomingFile(filename=name, data=make_image_bytes(width, height), content_type="image/jpeg")


# === Normalization ===


def test_large_image_is_downscaled_keeping_aspect():
    result = normalize_image(make_image_bytes(4000, 3000), "big.jpg")
    assert (result.width, result.height) == (1600, 1200)
    img = decoded(result.data)
    assert img.format == "JPEG"
    assert img.size == (1600, 1200)


def test_small_image_is_not_upscaled():
    result = normalize_image(make_image_bytes(800, 600), "small.jpg")
    assert (result.width, result.height) == (800, 600)


def test_png_with_alpha_becomes_rgb_jpeg():
    result = normalize_image(make_image_bytes(300, 200, fmt="PNG", mode="RGBA"), "shot.png")
    img = decoded(result.data)
    assert img.format == "JPEG"
    assert img.mode == "RGB"
    assert result.filename == "shot.jpg"
    assert result.content_type == "image/jpeg"


def test_exif_orientation_is_applied():
    # Orientation 6: stored landscape, displayed portrait
    result = normalize_image(make_image_bytes(640, 480, orientation=6), "rotated.jpg")
    assert (result.width, result.height) == (480, 640)


def test_unreadable_bytes_fail():
    with pytest.raises(UploadFailure) as exc:
        normalize_image(b"definitely not an image", "notes.txt")
    assert exc.value.filename == "notes.txt"


def test_hash_and_size_describe_normalized_bytes():
    result = normalize_image(make_image_bytes(100, 100))
    assert result.size_bytes == len(result.data)
    assert len(result.sha256) == 64


@pytest.mark.parametrize(
    "name,expected",
    [
        ("IMG_0042.HEIC", "IMG_0042.jpg"),
        ("kitchen sink.png", "kitchen_sink.jpg"),
        ("../../etc/passwd", "passwd.jpg"),
        (None, "photo.jpg"),
    ],
)
def test_jpeg_filename(name, expected):
    assert jpeg_filename(name) == expected


def test_object_path_layout():
    job_id = uuid.UUID("00000000-0000-0000-0000-000000000001")
    path = build_object_path(job_id, PhotoPhase.BEFORE, "stove", 1700000000000, "a b.jpg")
    assert path == f"{job_id}/before/stove/1700000000000_a_b.jpg"


def test_timestamps_strictly_increase():
    first = next_timestamp_ms()
    second = next_timestamp_ms()
    assert second > first


# === Pipeline ===


async def test_before_upload_is_recorded(make_job, pipeline, store, worker, storage_provider):
    job = await make_job()

    outcome = await pipeline.upload(job.id, "before", "stove", jpeg("stove.jpg"), worker)

    assert outcome.ok
    assert outcome.phase == PhotoPhase.BEFORE
    assert outcome.object_path.startswith(f"{job.id}/before/stove/")
    assert outcome.object_path in storage_provider.objects
    photos = await store.list_photos(job.id)
    assert [p.category_key for p in photos] == ["stove"]
    assert photos[0].uploaded_by_id == worker.uid
    assert photos[0].mime_type == "image/jpeg"


async def test_unrequired_category_is_rejected(make_job, pipeline, store, worker, storage_provider):
    job = await make_job()
    with pytest.raises(ValidationRejection) as exc:
        await pipeline.upload(job.id, "before", "dishwasher", jpeg(), worker)
    assert exc.value.reason == "unknown_category"
    assert storage_provider.objects == {}
    assert await store.list_photos(job.id) == []


async def test_general_area_photo_is_recorded_as_after(make_job, machine, pipeline, store, worker):
    job = await make_job()
    await add_photos(store, job.id, PhotoPhase.BEFORE, BASE_KEYS)
    await machine.start(job.id, worker)

    outcome = await pipeline.upload(job.id, "before", "kitchen", jpeg(), worker)

    assert outcome.phase == PhotoPhase.AFTER
    assert "/after/kitchen/" in outcome.object_path


async def test_general_area_photo_waits_for_start(make_job, pipeline, worker):
    job = await make_job()
    with pytest.raises(ConflictRejection) as exc:
        await pipeline.upload(job.id, "after", "kitchen", jpeg(), worker)
    assert exc.value.current_status == "pending"


async def test_before_photos_close_once_started(make_job, machine, pipeline, store, worker):
    job = await make_job()
    await add_photos(store, job.id, PhotoPhase.BEFORE, BASE_KEYS)
    await machine.start(job.id, worker)

    with pytest.raises(ConflictRejection):
        await pipeline.upload(job.id, "before", "stove", jpeg(), worker)


async def test_other_worker_cannot_upload(make_job, pipeline, other_worker):
    job = await make_job()
    with pytest.raises(AuthorizationRejection):
        await pipeline.upload(job.id, "before", "stove", jpeg(), other_worker)


async def test_timeout_affects_only_the_slow_file(make_job, pipeline, store, worker, storage_provider):
    job = await make_job()
    storage_provider.delays["slow"] = 1.0

    outcomes = await pipeline.upload_many(
        job.id,
        "before",
        "sink",
        [jpeg("one.jpg"), jpeg("slow.jpg"), jpeg("two.jpg")],
        worker,
    )

    by_name = {o.filename: o for o in outcomes}
    assert by_name["one.jpg"].ok
    assert by_name["two.jpg"].ok
    assert not by_name["slow.jpg"].ok
    assert by_name["slow.jpg"].timed_out
    assert by_name["slow.jpg"].error == "Upload timed out"

    photos = await store.list_photos(job.id)
    assert sorted(p.original_filename for p in photos) == ["one.jpg", "two.jpg"]


async def test_storage_failure_is_reported_per_file(make_job, pipeline, store, worker, storage_provider):
    job = await make_job()
    storage_provider.failures.add("broken")

    outcomes = await pipeline.upload_many(
        job.id, "before", "toilet", [jpeg("broken.jpg"), jpeg("fine.jpg")], worker
    )

    assert [o.ok for o in outcomes] == [False, True]
    assert outcomes[0].error.startswith("Storage error")
    assert not outcomes[0].timed_out
    assert len(await store.list_photos(job.id)) == 1


async def test_per_file_failures_stay_below_warning(make_job, pipeline, worker, storage_provider, caplog):
    job = await make_job()
    storage_provider.failures.add("broken")
    garbage = IncomingFile(filename="garbage.jpg", data=b"\x00" * 32, content_type="image/jpeg")
    caplog.set_level(logging.DEBUG, logger="app")

    outcomes = await pipeline.upload_many(
        job.id, "before", "toilet", [jpeg("broken.jpg"), garbage], worker
    )

    assert not any(o.ok for o in outcomes)
    ours = [r for r in caplog.records if r.name.startswith("app.")]
    assert ours
    assert [r for r in ours if r.levelno >= logging.WARNING] == []


async def test_undecodable_file_is_reported_per_file(make_job, pipeline, store, worker):
    job = await make_job()
    garbage = IncomingFile(filename="bad.jpg", data=b"\x00" * 32, content_type="image/jpeg")

    outcomes = await pipeline.upload_many(job.id, "before", "fridge", [garbage, jpeg()], worker)

    assert [o.ok for o in outcomes] == [False, True]
    assert outcomes[0].category_key == "fridge"


async def test_unsupported_content_type(make_job, pipeline, worker):
    job = await make_job()
    pdf = IncomingFile(filename="scan.pdf", data=b"%PDF-1.4", content_type="application/pdf")
    with pytest.raises(UploadFailure) as exc:
        await pipeline.upload(job.id, "before", "stove", pdf, worker)
    assert "Unsupported" in exc.value.message


async def test_untyped_image_is_accepted(make_job, pipeline, store, worker):
    job = await make_job()
    untyped = IncomingFile(
        filename="phone.jpg",
        data=make_image_bytes(),
        content_type="application/octet-stream",
    )

    outcome = await pipeline.upload(job.id, "before", "stove", untyped, worker)

    assert outcome.ok
    photo = (await store.list_photos(job.id))[0]
    assert photo.mime_type == "image/jpeg"


async def test_untyped_garbage_still_fails(make_job, pipeline, worker):
    job = await make_job()
    untyped = IncomingFile(filename="blob.bin", data=b"\x00" * 32, content_type="application/octet-stream")
    with pytest.raises(UploadFailure):
        await pipeline.upload(job.id, "before", "stove", untyped, worker)


async def test_oversized_file(make_job, pipeline, worker, settings):
    job = await make_job()
    pipeline.settings = settings.model_copy(update={"max_upload_size_mb": 0})
    with pytest.raises(UploadFailure):
        await pipeline.upload(job.id, "before", "stove", jpeg(), worker)


async def test_upload_publishes_event(make_job, pipeline, worker, transport):
    job = await make_job()
    async with transport.subscribe(job_channel(job.id)) as sub:
        outcome = await pipeline.upload(job.id, "before", "stove", jpeg(), worker)
        event = await sub.next_event(timeout=1)

    assert event["type"] == "photo.uploaded"
    assert event["payload"]["photo_id"] == str(outcome.photo_id)
    assert event["payload"]["category_key"] == "stove"
    assert event["payload"]["phase"] == "before"


async def test_uploads_unblock_start(make_job, machine, pipeline, worker):
    job = await make_job()
    for key in BASE_KEYS:
        await pipeline.upload(job.id, "before", key, jpeg(f"{key}.jpg"), worker)

    job = await machine.start(job.id, worker)
    assert job.status == JobStatus.IN_PROGRESS


async def test_photos_grouped_by_phase(make_job, pipeline, store, worker):
    job = await make_job()
    await add_photos(store, job.id, PhotoPhase.BEFORE, ["stove", "sink"])

    grouped = await pipeline.list_photos(job.id)
    counts = await pipeline.photo_counts(job.id)

    assert len(grouped[PhotoPhase.BEFORE]) == 2
    assert grouped[PhotoPhase.AFTER] == []
    assert counts[PhotoPhase.BEFORE] == {"stove": 1, "sink": 1}


async def test_delete_photo(make_job, pipeline, store, worker, storage_provider):
    job = await make_job()
    outcome = await pipeline.upload(job.id, "before", "stove", jpeg(), worker)

    await pipeline.delete_photo(job.id, outcome.photo_id, worker)

    assert await store.list_photos(job.id) == []
    assert outcome.object_path in storage_provider.deleted
    assert outcome.object_path not in storage_provider.objects


async def test_delete_missing_photo(make_job, pipeline, worker):
    job = await make_job()
    with pytest.raises(PhotoNotFound):
        await pipeline.delete_photo(job.id, uuid.uuid4(), worker)


async def test_completed_job_photos_are_kept(make_job, machine, pipeline, store, worker):
    job = await make_job()
    await add_photos(store, job.id, PhotoPhase.BEFORE, BASE_KEYS)
    await machine.start(job.id, worker)
    await add_photos(
        store,
        job.id,
        PhotoPhase.AFTER,
        BASE_KEYS + ["kitchen", "bathroom", "living_room", "bedroom_1", "bedroom_2"],
    )
    await machine.complete(job.id, worker)
    photo = (await store.list_photos(job.id))[0]

    with pytest.raises(ConflictRejection):
        await pipeline.delete_photo(job.id, photo.id, worker)
