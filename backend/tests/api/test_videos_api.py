"""HTTP tests for the video API.

The app runs in-process through httpx's ASGI transport. Jobs are recorded
by a dispatcher stand-in instead of being processed.
"""

import uuid
from unittest.mock import AsyncMock, patch
from urllib.parse import urlparse

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from vidproxy.core.config import settings
from vidproxy.core.errors import StoragePermissionDenied
from vidproxy.core.storage import Storage, StorageConfig, StorageService
from vidproxy.main import app
from vidproxy.modules.job.dispatcher import JobDispatcher
from vidproxy.modules.video.repository import VideoRepository
from vidproxy.modules.video.router import get_video_service
from vidproxy.modules.video.service import VideoSubmissionService
from vidproxy.modules.video.state import JobStateMachine


class RecordingDispatcher(JobDispatcher):
    transport = "test"

    def __init__(self):
        self.dispatched: list[tuple[uuid.UUID, str, bytes]] = []

    async def dispatch(self, job_id, file_name, content=None) -> bool:
        self.dispatched.append((job_id, file_name, content))
        return True


@pytest_asyncio.fixture
async def api(session_factory, tmp_path):
    storage = StorageService(
        Storage(config=StorageConfig(backend="local", local_path=str(tmp_path), public_base_url="http://testserver"))
    )
    dispatcher = RecordingDispatcher()

    async def override_service():
        async with session_factory() as session:
            yield VideoSubmissionService(session, storage=storage, dispatcher=dispatcher)

    app.dependency_overrides[get_video_service] = override_service
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client, dispatcher, tmp_path
    app.dependency_overrides.clear()


async def upload(client: AsyncClient, name: str = "clip.mov", content: bytes = b"fake-video-bytes"):
    return await client.post(
        "/api/v1/videos",
        files={"video": (name, content, "video/quicktime")},
    )


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload_stores_original_and_queues_job(self, api) -> None:
        client, dispatcher, storage_root = api

        response = await upload(client)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "uploading"
        assert body["file_name"].endswith("_clip.mov")
        assert body["original_url"] == f"http://testserver/uploads/{body['file_name']}"
        assert (storage_root / body["file_name"]).read_bytes() == b"fake-video-bytes"
        assert dispatcher.dispatched == [(uuid.UUID(body["id"]), body["file_name"], b"fake-video-bytes")]

    @pytest.mark.asyncio
    async def test_unsupported_extension_is_rejected(self, api) -> None:
        client, dispatcher, storage_root = api

        response = await upload(client, name="notes.txt")

        assert response.status_code == 400
        assert "Unsupported video format" in response.json()["detail"]
        assert dispatcher.dispatched == []
        assert list(storage_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_empty_file_is_rejected(self, api) -> None:
        client, _, _ = api
        response = await upload(client, content=b"")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_file_field(self, api) -> None:
        client, _, _ = api
        response = await client.post("/api/v1/videos", data={"other": "x"})
        assert response.status_code == 422


    @pytest.mark.asyncio
    async def test_storage_refusal_is_403(self, api) -> None:
        client, dispatcher, _ = api
        refused = AsyncMock(side_effect=StoragePermissionDenied("Cannot write 1700_clip.mov: read-only", key="1700_clip.mov"))

        with patch.object(StorageService, "put", refused):
            response = await upload(client)

        assert response.status_code == 403
        assert "read-only" in response.json()["detail"]
        assert dispatcher.dispatched == []

class TestQueries:
    @pytest.mark.asyncio
    async def test_get_video_reports_status(self, api) -> None:
        client, _, _ = api
        video_id = (await upload(client)).json()["id"]

        response = await client.get(f"/api/v1/videos/{video_id}")

        assert response.status_code == 200
        body = response.json()
        assert body["id"] == video_id
        assert body["status"] == "uploading"
        assert body["low_res_url"] is None

    @pytest.mark.asyncio
    async def test_unknown_video_is_404(self, api) -> None:
        client, _, _ = api
        response = await client.get(f"/api/v1/videos/{uuid.uuid4()}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_is_paginated(self, api) -> None:
        client, _, _ = api
        for i in range(3):
            await upload(client, name=f"clip{i}.mp4")

        response = await client.get("/api/v1/videos", params={"page": 1, "limit": 2})

        body = response.json()
        assert response.status_code == 200
        assert body["total"] == 3
        assert body["total_pages"] == 2
        assert len(body["items"]) == 2

    @pytest.mark.asyncio
    async def test_page_size_is_bounded(self, api) -> None:
        client, _, _ = api
        response = await client.get("/api/v1/videos", params={"limit": 101})
        assert response.status_code == 422


class TestDownloadUrls:
    @pytest.mark.asyncio
    async def test_outputs_only_signed_once_completed(self, api, session_factory) -> None:
        client, _, _ = api
        body = (await upload(client)).json()
        video_id = body["id"]

        pending = (await client.get(f"/api/v1/videos/{video_id}/download-url")).json()
        assert pending["original"].endswith(body["file_name"])
        assert pending["low_res"] is None
        assert pending["thumbnail"] is None

        machine = JobStateMachine(session_factory)
        await machine.claim(uuid.UUID(video_id))
        await machine.complete(uuid.UUID(video_id), "l", "t", 30.0, 1920, 1080)

        completed = (await client.get(f"/api/v1/videos/{video_id}/download-url")).json()
        stem = body["file_name"].rsplit(".", 1)[0]
        assert completed["low_res"].endswith(f"{stem}_low.mov")
        assert completed["thumbnail"].endswith(f"{stem}_thumb.jpg")
        assert completed["expires_in"] == 900


class TestReprocessAndDelete:
    @pytest.mark.asyncio
    async def test_reprocess_dispatches_without_bytes(self, api) -> None:
        client, dispatcher, _ = api
        body = (await upload(client)).json()

        response = await client.post(f"/api/v1/videos/{body['id']}/reprocess")

        assert response.status_code == 202
        assert dispatcher.dispatched[-1] == (uuid.UUID(body["id"]), body["file_name"], None)

    @pytest.mark.asyncio
    async def test_delete_with_purge_removes_files(self, api, session_factory) -> None:
        client, _, storage_root = api
        body = (await upload(client)).json()

        response = await client.delete(f"/api/v1/videos/{body['id']}", params={"purge_files": True})

        assert response.status_code == 200
        assert not (storage_root / body["file_name"]).exists()
        async with session_factory() as session:
            assert await VideoRepository(session).get_job(uuid.UUID(body["id"])) is None

    @pytest.mark.asyncio
    async def test_delete_unknown_is_404(self, api) -> None:
        client, _, _ = api
        response = await client.delete(f"/api/v1/videos/{uuid.uuid4()}")
        assert response.status_code == 404


class TestHealth:
    @pytest.mark.asyncio
    async def test_liveness_and_correlation_id(self, api) -> None:
        client, _, _ = api

        response = await client.get("/health", headers={"X-Correlation-ID": "req-123"})

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.headers["X-Correlation-ID"] == "req-123"

    @pytest.mark.asyncio
    async def test_metrics_endpoint(self, api) -> None:
        client, _, _ = api
        await client.get("/health")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text


class TestLocalFiles:
    """Files of the local backend are served under /uploads."""

    @pytest_asyncio.fixture
    async def served_api(self, session_factory):
        storage = StorageService(
            Storage(
                config=StorageConfig(
                    backend="local",
                    local_path=settings.LOCAL_STORAGE_PATH,
                    public_base_url="http://testserver",
                )
            )
        )

        async def override_service():
            async with session_factory() as session:
                yield VideoSubmissionService(session, storage=storage, dispatcher=RecordingDispatcher())

        app.dependency_overrides[get_video_service] = override_service
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
            yield client
        app.dependency_overrides.clear()

    @pytest.mark.asyncio
    async def test_uploaded_original_is_downloadable(self, served_api) -> None:
        uploaded = await upload(served_api, content=b"original-bytes")
        original_url = uploaded.json()["original_url"]

        response = await served_api.get(urlparse(original_url).path)

        assert response.status_code == 200
        assert response.content == b"original-bytes"

    @pytest.mark.asyncio
    async def test_missing_file_is_404(self, served_api) -> None:
        response = await served_api.get("/uploads/0_missing.mov")
        assert response.status_code == 404
