"""Shared test configuration.

Environment defaults are set before any application module is imported so
the settings object can be built without a real database or broker.
"""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOCAL_STORAGE_PATH", os.path.join(tempfile.gettempdir(), "vidproxy-test-uploads"))
os.environ.setdefault("STORAGE_BACKEND", "local")
os.environ.setdefault("QUEUE_BACKEND", "local")
os.environ.setdefault("LOG_JSON", "false")

import threading
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from vidproxy.core.database import Base
from vidproxy.core.errors import NoVideoStream, StorageNotFound
from vidproxy.core.storage import StorageResult
from vidproxy.modules.transcoding.ffmpeg import Dimensions, MediaMetadata, compute_low_res_dimensions
from vidproxy.modules.video import models  # noqa: F401


@pytest_asyncio.fixture
async def session_factory():
    """Isolated in-memory database with the schema created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


class FakeToolkit:
    """Stands in for MediaToolkit; writes small files instead of running ffmpeg."""

    def __init__(
        self,
        metadata: Optional[MediaMetadata] = None,
        probe_error: Optional[Exception] = None,
        transcode_error: Optional[Exception] = None,
        thumbnail_error: Optional[Exception] = None,
    ):
        self.metadata = metadata or MediaMetadata(duration=30.0, width=1920, height=1080)
        self.probe_error = probe_error
        self.transcode_error = transcode_error
        self.thumbnail_error = thumbnail_error
        self.seen_paths: list[str] = []
        self.thumbnail_offsets: list[float] = []
        self.progress_callbacks: list = []
        self._lock = threading.Lock()

    def _record(self, *paths: str) -> None:
        with self._lock:
            self.seen_paths.extend(paths)

    def probe(self, input_path: str) -> MediaMetadata:
        self._record(input_path)
        if self.probe_error is not None:
            raise self.probe_error
        return self.metadata

    def transcode_low_res(self, input_path, output_path, source, target_height=None, duration=0.0, progress_callback=None):
        self._record(input_path, output_path)
        with open(output_path, "wb") as f:
            f.write(b"partial-mp4")
        if progress_callback is not None:
            self.progress_callbacks.append(progress_callback)
            for fraction in (0.25, 0.5, 1.0):
                progress_callback(fraction)
        if self.transcode_error is not None:
            raise self.transcode_error
        return compute_low_res_dimensions(source.width, source.height, target_height or 480)

    def extract_thumbnail(self, input_path, output_path, duration, at_percent=None, size=None):
        self._record(input_path, output_path)
        with open(output_path, "wb") as f:
            f.write(b"jpeg")
        if self.thumbnail_error is not None:
            raise self.thumbnail_error
        self.thumbnail_offsets.append(duration * (10.0 if at_percent is None else at_percent) / 100.0)
        return size or Dimensions(320, 240)


class FakeStorageService:
    """In-memory async storage with injectable failures."""

    def __init__(self, put_error: Optional[Exception] = None, fail_keys: Optional[set] = None):
        self.objects: dict[str, bytes] = {}
        self.content_types: dict[str, str] = {}
        self.put_error = put_error
        self.fail_keys = fail_keys or set()
        self.put_calls: list[str] = []

    async def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> StorageResult:
        self.put_calls.append(key)
        if self.put_error is not None and (not self.fail_keys or key in self.fail_keys):
            raise self.put_error
        self.objects[key] = data
        self.content_types[key] = content_type
        return StorageResult(key=key, url=f"http://storage.test/{key}", file_size=len(data))

    async def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise StorageNotFound(f"Object not found: {key}", key=key)
        return self.objects[key]

    async def delete(self, key: str) -> bool:
        if key not in self.objects:
            raise StorageNotFound(f"Object not found: {key}", key=key)
        del self.objects[key]
        return True

    async def exists(self, key: str) -> bool:
        return key in self.objects

    async def sign(self, key: str, expires_in: Optional[int] = None) -> str:
        return f"http://storage.test/{key}?expires={expires_in}"


@pytest.fixture
def fake_toolkit():
    return FakeToolkit()


@pytest.fixture
def no_video_toolkit():
    return FakeToolkit(probe_error=NoVideoStream("No video stream found"))


@pytest.fixture
def fake_storage():
    return FakeStorageService()


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "video-processing"
    path.mkdir()
    return str(path)


@pytest.fixture
def toolkit_factory():
    """Build FakeToolkit instances with custom metadata or failures."""
    return FakeToolkit


@pytest.fixture
def storage_factory():
    """Build FakeStorageService instances with injected failures."""
    return FakeStorageService
