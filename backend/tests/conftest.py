"""Shared test fixtures."""

import asyncio
import io
import os
from typing import Optional

# Settings are read on first use; set them before any app module loads
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///")
os.environ.setdefault("FIREBASE_PROJECT_ID", "field-jobs-test")
os.environ.setdefault("STORAGE_PROVIDER", "gcs")
os.environ.setdefault("GCS_BUCKET_NAME", "field-jobs-test")
os.environ.setdefault("GCS_PROJECT_ID", "field-jobs-test")
os.environ.setdefault("ALLOWED_ORIGINS", "http://localhost:3000")

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.core.database import Base
from app.core.security import AuthenticatedUser
from app.models.enums import ActorRole, PhotoPhase
from app.models.job import JobPhoto
# Import all models to register with Base.metadata
import app.models  # noqa: F401
from app.services.job_store import JobStore
from app.services.notifications import InMemoryTransport, JobEventPublisher
from app.services.state_machine import JobStateMachine
from app.services.storage import StorageProviderInterface, StorageService
from app.services.uploads import UploadPipeline

WORKER_ID = "worker-1"
OTHER_WORKER_ID = "worker-2"
REQUESTER_ID = "requester-1"
ADMIN_ID = "admin-1"


class MemoryStorageProvider(StorageProviderInterface):
    """Blob store kept in a dict.

    `delays` and `failures` are keyed by a substring of the object path
    (usually the file name) so single files of a batch can misbehave.
    """

    def __init__(self):
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.delays: dict[str, float] = {}
        self.failures: set[str] = set()

    async def put_object(self, object_path: str, data: bytes, content_type: str) -> str:
        for marker, delay in self.delays.items():
            if marker in object_path:
                await asyncio.sleep(delay)
        if any(marker in object_path for marker in self.failures):
            raise RuntimeError("storage unavailable")
        self.objects[object_path] = data
        return f"mem://test-bucket/{object_path}"

    async def generate_presigned_download_url(self, object_path: str, ttl_seconds: int) -> str:
        return f"https://storage.test/{object_path}?ttl={ttl_seconds}"

    async def delete_object(self, object_path: str) -> bool:
        self.deleted.append(object_path)
        return self.objects.pop(object_path, None) is not None


def make_image_bytes(
    width: int = 640,
    height: int = 480,
    fmt: str = "JPEG",
    mode: str = "RGB",
    orientation: Optional[int] = None,
) -> bytes:
    """Encode a solid-color test image."""
    color = (200, 30, 30, 255)[: len(mode)] if mode in ("RGB", "RGBA") else 128
    img = Image.new(mode, (width, height), color)
    buffer = io.BytesIO()
    if orientation is not None:
        exif = Image.Exif()
        exif[0x0112] = orientation
        img.save(buffer, format=fmt, exif=exif)
    else:
        img.save(buffer, format=fmt)
    return buffer.getvalue()


async def add_photos(store: JobStore, job_id, phase: PhotoPhase, keys, per_key: int = 1):
    """Record confirmed photos directly, bypassing storage."""
    for key in keys:
        for index in range(per_key):
            await store.write_photo(
                JobPhoto(
                    job_id=job_id,
                    category_key=key,
                    phase=phase,
                    object_path=f"{job_id}/{phase.value}/{key}/{index}_photo.jpg",
                    storage_ref=f"mem://test-bucket/{job_id}/{phase.value}/{key}/{index}_photo.jpg",
                    file_hash="0" * 64,
                    mime_type="image/jpeg",
                    file_size_bytes=1024,
                    original_filename="photo.jpg",
                    uploaded_by_id=WORKER_ID,
                )
            )
    await store.commit()


@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite async engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///",
        echo=False,
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(db_session):
    return JobStore(db_session)


@pytest.fixture
def storage_provider():
    return MemoryStorageProvider()


@pytest.fixture
def storage(storage_provider):
    return StorageService(storage_provider)


@pytest.fixture
def transport():
    return InMemoryTransport(queue_size=50)


@pytest.fixture
def publisher(transport):
    return JobEventPublisher(transport)


@pytest.fixture
def settings():
    return get_settings().model_copy(update={"upload_timeout_seconds": 0.2})


@pytest.fixture
def machine(store, publisher, storage):
    return JobStateMachine(store, publisher, storage)


@pytest.fixture
def pipeline(store, storage, publisher, settings):
    return UploadPipeline(store, storage, publisher, settings)


@pytest.fixture
def admin():
    return AuthenticatedUser(uid=ADMIN_ID, role=ActorRole.ADMINISTRATOR)


@pytest.fixture
def worker():
    return AuthenticatedUser(uid=WORKER_ID, role=ActorRole.WORKER)


@pytest.fixture
def other_worker():
    return AuthenticatedUser(uid=OTHER_WORKER_ID, role=ActorRole.WORKER)


@pytest.fixture
def requester():
    return AuthenticatedUser(uid=REQUESTER_ID, role=ActorRole.REQUESTER)


@pytest.fixture
def make_job(machine, admin):
    """Create a pending job assigned to WORKER_ID."""

    async def _make(unit_type="2_beds", features=None, **kwargs):
        kwargs.setdefault("assigned_worker_id", WORKER_ID)
        kwargs.setdefault("requester_id", REQUESTER_ID)
        return await machine.create_job(
            admin,
            unit_type=unit_type,
            features=features or [],
            **kwargs,
        )

    return _make


class ActingAs:
    """Switch the caller the test app sees."""

    def __init__(self, user: AuthenticatedUser):
        self.user = user


@pytest.fixture
def acting_as(admin):
    return ActingAs(admin)


@pytest.fixture
def app(session_factory, storage, publisher, transport, acting_as):
    """Create a test application instance with in-memory DB."""
    from app.core.database import get_db
    from app.core.security import get_current_user
    from app.main import app as _app
    from app.services.notifications import get_event_publisher, get_notification_transport
    from app.services.storage import get_storage_service

    async def override_get_db():
        async with session_factory() as session:
            yield session

    _app.dependency_overrides[get_db] = override_get_db
    _app.dependency_overrides[get_current_user] = lambda: acting_as.user
    _app.dependency_overrides[get_storage_service] = lambda: storage
    _app.dependency_overrides[get_event_publisher] = lambda: publisher
    _app.dependency_overrides[get_notification_transport] = lambda: transport
    yield _app
    _app.dependency_overrides.clear()


@pytest.fixture
async def client(app):
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
