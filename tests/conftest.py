"""
Pytest configuration and shared fixtures for service-catalog tests.

This module provides:
- Isolated environment (temp database and storage directory)
- Database fixtures
- Storage fixtures (local filesystem and an in-memory object store)
- Service and API client fixtures
- Test image factories
"""

import os
import tempfile
from io import BytesIO
from typing import AsyncGenerator, Dict, List, Optional
from uuid import uuid4

# Must happen before the application settings are imported.
_TEST_ROOT = tempfile.mkdtemp(prefix="service-catalog-tests-")
os.environ.setdefault("STORAGE_PATH", os.path.join(_TEST_ROOT, "uploads"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_TEST_ROOT, 'app.db')}")
os.environ.setdefault("STORAGE_BACKEND", "local")

import pytest
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import AsyncSession

from service_catalog.core.config import settings
from service_catalog.core.errors import StorageDeleteError, StorageWriteError
from service_catalog.db.session import build_engine, build_sessionmaker, init_models, get_session
from service_catalog.repositories.service_category_repository import ServiceCategoryRepository
from service_catalog.schemas.service_category import (
    ImageAttachment,
    IncomingSubService,
    SubServiceInput,
    UploadedImage,
)
from service_catalog.services.service_category_service import ServiceCategoryService
from service_catalog.storage.local import LocalStorageBackend
from service_catalog.storage.protocol import build_object_key


# ============================================================================
# In-memory object store
# ============================================================================


class InMemoryObjectStore:
    """Object store stub keeping objects in a dict.

    ``locator`` resolves back to the stored bytes via ``resolve``. Failures
    can be injected per call number (1-based) for puts, or for every remove.
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.put_calls = 0
        self.removed: List[str] = []
        self.fail_put_calls: set = set()
        self.fail_removes = False

    async def put(self, data: bytes, suggested_name: str, folder: str) -> ImageAttachment:
        self.put_calls += 1
        if self.put_calls in self.fail_put_calls:
            raise StorageWriteError("Injected upload failure", {"call": self.put_calls})
        key = build_object_key(suggested_name, folder)
        self.objects[key] = data
        return ImageAttachment(locator=f"memory://{key}", deletion_handle=key)

    async def remove(self, deletion_handle: str) -> None:
        if self.fail_removes:
            raise StorageDeleteError("Injected delete failure", {"key": deletion_handle})
        self.removed.append(deletion_handle)
        self.objects.pop(deletion_handle, None)

    async def load(self, deletion_handle: str) -> bytes:
        if deletion_handle not in self.objects:
            raise FileNotFoundError(deletion_handle)
        return self.objects[deletion_handle]

    def resolve(self, locator: str) -> bytes:
        return self.objects[locator[len("memory://"):]]

    def holds(self, attachment: Optional[ImageAttachment]) -> bool:
        return attachment is not None and attachment.deletion_handle in self.objects


# ============================================================================
# Database fixtures
# ============================================================================


@pytest.fixture
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """A fresh SQLite database per test with the schema created."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_models(engine)
    session_factory = build_sessionmaker(engine)

    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def repository(db_session: AsyncSession) -> ServiceCategoryRepository:
    return ServiceCategoryRepository(db_session)


# ============================================================================
# Storage fixtures
# ============================================================================


@pytest.fixture
def memory_store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def local_storage(tmp_path) -> LocalStorageBackend:
    return LocalStorageBackend(base_path=str(tmp_path / "storage"), public_path="/uploads")


@pytest.fixture
def service(repository: ServiceCategoryRepository, memory_store: InMemoryObjectStore) -> ServiceCategoryService:
    return ServiceCategoryService(repository, memory_store)


# ============================================================================
# API Client fixtures
# ============================================================================


@pytest.fixture
async def async_client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async client against the app, wired to the test database.

    Storage is a LocalStorageBackend on settings.STORAGE_PATH so that
    returned locators are served by the app's static files mount.
    """
    from service_catalog.main import app
    from service_catalog.api.dependencies import get_storage

    storage = LocalStorageBackend(settings.STORAGE_PATH, settings.STORAGE_PUBLIC_PATH)

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_storage] = lambda: storage

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        client.storage = storage
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Test data fixtures
# ============================================================================


def make_image_bytes(color: str = "red", image_format: str = "PNG", size=(4, 4)) -> bytes:
    """Encode a tiny solid-colour image."""
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=image_format)
    return buffer.getvalue()


def make_upload(label: str = "image", color: str = "red") -> UploadedImage:
    """Distinct bytes per label so stored objects can be told apart."""
    return UploadedImage(
        data=make_image_bytes(color) + label.encode(),
        filename=f"{label}.png",
        content_type="image/png",
    )


def make_entry(
    name: str,
    slug: Optional[str] = None,
    upload: Optional[UploadedImage] = None,
    **extra,
) -> IncomingSubService:
    fields = SubServiceInput(
        name=name,
        slug=slug or name.lower().replace(" ", "-"),
        description=extra.pop("description", f"{name} description"),
        **extra,
    )
    return IncomingSubService(fields=fields, upload=upload)


def category_fields(name: Optional[str] = None, slug: Optional[str] = None) -> dict:
    suffix = uuid4().hex[:6]
    return {
        "name": name or f"Web Design {suffix}",
        "slug": slug or f"web-design-{suffix}",
        "description": "Websites that convert.",
    }


@pytest.fixture
def png_bytes() -> bytes:
    return make_image_bytes()
