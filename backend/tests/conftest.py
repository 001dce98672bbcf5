"""Shared fixtures: per-test SQLite catalog, tmp storage root, ASGI client."""
import os
import tempfile

# Keep the module-level engine and storage away from real services
_scratch = tempfile.mkdtemp(prefix="filedrop-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_scratch}/import.db"
os.environ["FILE_STORAGE_PATH"] = os.path.join(_scratch, "uploads")

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from filedrop.database import get_db
from filedrop.main import app
from filedrop.models import Base
from filedrop.services.catalog import CatalogService
from filedrop.services.file_storage import FileStorageService, get_file_storage
from filedrop.services.uploads import UploadService


@pytest.fixture
def storage(tmp_path):
    """Storage service rooted in a fresh temp dir."""
    return FileStorageService(tmp_path / "storage")


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def catalog(db):
    return CatalogService(db)


@pytest.fixture
def uploads(storage, catalog):
    return UploadService(storage, catalog)


@pytest.fixture
async def client(session_factory, storage):
    """httpx client talking to the app in-process, with test DB and storage."""

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_file_storage] = lambda: storage
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
