"""Tests for the caller-facing upload service."""

import base64
import re
from unittest.mock import AsyncMock

import pytest
import respx
from redis.exceptions import ConnectionError as RedisConnectionError

from repobatch.core.exceptions import QueueUnavailableError, ValidationError
from repobatch.queue.redis_queue import RedisUploadQueue
from repobatch.service import UploadService, generate_path
from tests.fixtures.github import request_json

PATH_PATTERN = re.compile(
    r"^uploads/\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}-\d{3}Z-[0-9a-z]{9}\.(\w+)$"
)


def make_service(settings, github_client, shared_queue, serverless=False) -> UploadService:
    return UploadService(
        settings, github_client, shared_queue, serverless=lambda: serverless
    )


@pytest.fixture
def queued_service(test_settings, github_client, fake_redis) -> UploadService:
    return make_service(
        test_settings, github_client, RedisUploadQueue(fake_redis, threshold=20)
    )


@pytest.fixture
def memory_service(test_settings, github_client) -> UploadService:
    return make_service(test_settings, github_client, RedisUploadQueue(None, threshold=20))


class TestGeneratePath:
    def test_keeps_extension(self):
        match = PATH_PATTERN.match(generate_path("holiday.photo.png"))

        assert match is not None
        assert match.group(1) == "png"

    def test_defaults_to_jpg(self):
        match = PATH_PATTERN.match(generate_path("snapshot"))

        assert match is not None
        assert match.group(1) == "jpg"

    def test_paths_are_unique(self):
        assert len({generate_path("a.png") for _ in range(50)}) == 50

    def test_custom_prefix(self):
        assert generate_path("a.png", prefix="media/img").startswith("media/img/")


class TestBuildItem:
    """Validation of incoming uploads."""

    def test_builds_pending_item(self, memory_service):
        item = memory_service.build_item(b"\x89PNG", "cat.png", "image/png")

        assert PATH_PATTERN.match(item.path)
        assert base64.b64decode(item.content) == b"\x89PNG"
        assert item.original_name == "cat.png"
        assert item.size == 4
        assert item.content_type == "image/png"

    def test_rejects_non_images(self, memory_service):
        with pytest.raises(ValidationError, match="Only image files"):
            memory_service.build_item(b"text", "notes.txt", "text/plain")

    def test_rejects_oversized_files(self, test_settings, github_client):
        config = test_settings.model_copy(update={"MAX_UPLOAD_BYTES": 3})
        service = make_service(config, github_client, RedisUploadQueue(None))

        with pytest.raises(ValidationError, match="File size"):
            service.build_item(b"1234", "big.png", "image/png")


class TestEnqueue:
    """Queued, direct and fallback paths."""

    async def test_queues_when_shared_queue_enabled(self, queued_service, github_api):
        item = queued_service.build_item(b"img", "a.png", "image/png")

        result = await queued_service.enqueue(item)

        assert result.mode == "queued"
        assert result.queue_size == 1
        assert result.filename == item.path
        assert result.urls.raw == (
            f"https://raw.githubusercontent.com/octo/images/main/{item.path}"
        )
        assert result.url == result.urls.raw
        assert await queued_service.shared_queue.size() == 1
        assert not github_api["put_contents"].called

    async def test_direct_when_queue_not_configured(self, memory_service, github_api):
        item = memory_service.build_item(b"img", "a.png", "image/png")

        result = await memory_service.enqueue(item)

        assert result.mode == "direct"
        assert result.commit_sha == "commit-1"
        assert result.note == "Uploaded directly (Redis queue not configured)"
        body = request_json(github_api["put_contents"].calls.last.request)
        assert body["message"] == "Upload image: a.png"

    async def test_direct_on_serverless(
        self, test_settings, github_client, fake_redis, github_api
    ):
        service = make_service(
            test_settings, github_client, RedisUploadQueue(fake_redis), serverless=True
        )
        item = service.build_item(b"img", "a.png", "image/png")

        result = await service.enqueue(item)

        assert result.mode == "direct"
        assert result.note == "Uploaded directly (Queue disabled on Serverless)"
        assert await service.shared_queue.size() == 0

    async def test_falls_back_when_redis_unreachable(
        self, queued_service, fake_redis, github_api
    ):
        fake_redis.lpush = AsyncMock(side_effect=RedisConnectionError("refused"))
        item = queued_service.build_item(b"img", "a.png", "image/png")

        result = await queued_service.enqueue(item)

        assert result.mode == "direct"
        assert result.note == "Uploaded directly (Redis queue unavailable)"
        assert github_api["put_contents"].call_count == 1

    async def test_threshold_triggers_processor(
        self, test_settings, github_client, fake_redis, github_api
    ):
        """Reaching the threshold commits the backlog in one batch."""
        service = make_service(
            test_settings, github_client, RedisUploadQueue(fake_redis, threshold=2)
        )

        for name in ("a.png", "b.png"):
            await service.enqueue(service.build_item(b"img", name, "image/png"))
        await service.shared_queue._background.pop()

        assert await service.shared_queue.size() == 0
        assert github_api["create_commit"].call_count == 1
        assert github_api["create_blob"].call_count == 2

    async def test_threshold_posts_to_processing_url(
        self, test_settings, github_client, fake_redis
    ):
        config = test_settings.model_copy(
            update={"PROCESS_QUEUE_URL": "https://uploads.example.com/process-queue"}
        )
        service = make_service(
            config, github_client, RedisUploadQueue(fake_redis, threshold=1)
        )

        with respx.mock(assert_all_called=False) as mock:
            route = mock.post("https://uploads.example.com/process-queue").respond(200)
            await service.enqueue(service.build_item(b"img", "a.png", "image/png"))
            await service.shared_queue._background.pop()

        assert route.called
        assert await service.shared_queue.size() == 1


class TestSubmit:
    async def test_waits_for_batched_commit(self, test_settings, github_client, github_api):
        service = make_service(
            test_settings, github_client, RedisUploadQueue(None, threshold=1)
        )
        item = service.build_item(b"img", "a.png", "image/png")

        result = await service.submit(item)

        assert result.commit_sha == "commit-1"
        assert result.batch_size == 1
        assert result.urls.jsdelivr_commit == (
            f"https://cdn.jsdelivr.net/gh/octo/images@commit-1/{item.path}"
        )
        body = request_json(github_api["create_commit"].calls.last.request)
        assert body["message"] == "Upload image: a.png"

    async def test_serverless_submit_is_direct(
        self, test_settings, github_client, github_api
    ):
        service = make_service(
            test_settings, github_client, RedisUploadQueue(None), serverless=True
        )

        result = await service.submit(service.build_item(b"img", "a.png", "image/png"))

        assert result.mode == "direct"
        assert service.memory_queue.size() == 0


class TestProcessNow:
    async def test_flushes_memory_queue(self, memory_service, github_api):
        future = memory_service.memory_queue.add(
            memory_service.build_item(b"img", "a.png", "image/png")
        )

        count = await memory_service.process_now()

        assert count == 1
        assert (await future).commit_sha == "commit-1"

    async def test_forces_shared_queue(self, queued_service, github_api):
        await queued_service.enqueue(
            queued_service.build_item(b"img", "a.png", "image/png")
        )

        count = await queued_service.process_now()

        assert count == 1
        assert await queued_service.shared_queue.size() == 0


class TestStatus:
    async def test_memory_status(self, memory_service):
        memory_service.memory_queue.add(
            memory_service.build_item(b"img", "a.png", "image/png")
        )

        status = await memory_service.status()

        assert status.queue_size == 1
        assert status.oldest_timestamp is not None
        assert status.max_batch_size == 100
        memory_service.memory_queue.close()

    async def test_shared_status(self, queued_service):
        await queued_service.enqueue(
            queued_service.build_item(b"img", "a.png", "image/png")
        )

        status = await queued_service.status()

        assert status.queue_size == 1
        assert status.batch_timeout == 5000

    async def test_shared_status_when_redis_unreachable(self, queued_service, fake_redis):
        fake_redis.llen = AsyncMock(side_effect=RedisConnectionError("refused"))

        with pytest.raises(QueueUnavailableError):
            await queued_service.status()


async def test_aclose_drains_memory_queue(memory_service, github_api):
    future = memory_service.memory_queue.add(
        memory_service.build_item(b"img", "a.png", "image/png")
    )

    await memory_service.aclose()

    assert (await future).commit_sha == "commit-1"
    assert github_api["create_commit"].call_count == 1


async def test_aclose_finishes_triggered_processing(
    test_settings, github_client, fake_redis, github_api
):
    """A threshold-triggered batch completes before the clients close."""
    service = make_service(
        test_settings, github_client, RedisUploadQueue(fake_redis, threshold=2)
    )
    for name in ("a.png", "b.png"):
        await service.enqueue(service.build_item(b"img", name, "image/png"))

    await service.aclose()

    assert github_api["update_ref"].call_count == 1
    assert fake_redis.lists.get("upload-queue", []) == []
    assert fake_redis.closed is True
