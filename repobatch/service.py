"""Caller-facing upload service.

Chooses between the shared Redis queue (optimistic, batched), the in-process
queue (confirmed, batched) and a direct single-file commit depending on the
configured backends and the runtime environment.
"""

import base64
import logging
import secrets
import string
from collections.abc import Callable
from datetime import datetime, timezone
from types import TracebackType

import httpx

from repobatch.core.config import BATCH_TIMEOUT_MS, MAX_BATCH_SIZE, Settings, settings
from repobatch.core.environment import is_serverless
from repobatch.core.exceptions import QueueUnavailableError, ValidationError
from repobatch.github.client import GitHubClient
from repobatch.github.committer import BatchCommitter
from repobatch.github.direct import DirectUploader
from repobatch.github.urls import predicted_urls
from repobatch.metrics import ITEMS_ENQUEUED
from repobatch.queue.memory import UploadQueue
from repobatch.queue.processor import QueueProcessor
from repobatch.queue.redis_queue import RedisUploadQueue
from repobatch.queue.types import (
    BatchResult,
    DirectResult,
    PendingItem,
    PredictedResult,
    QueueStatus,
    now_ms,
)

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase


def generate_path(original_name: str, prefix: str = "uploads") -> str:
    """Unique destination path for an upload.

    Format: {prefix}/{utc-timestamp}-{9 random base36 chars}.{ext}
    """
    now = datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    extension = original_name.rsplit(".", 1)[-1] if "." in original_name else ""
    return f"{prefix}/{stamp}-{suffix}.{extension or 'jpg'}"


class UploadService:
    """Entry point for storing files in the repository."""

    def __init__(
        self,
        config: Settings,
        github: GitHubClient,
        shared_queue: RedisUploadQueue,
        serverless: Callable[[], bool] = is_serverless,
    ) -> None:
        """Initialize service.

        Args:
            config: Application settings
            github: GitHub client bound to the target repository
            shared_queue: Shared queue (may be disabled)
            serverless: Environment classifier
        """
        self.config = config
        self.github = github
        self.serverless = serverless
        self.committer = BatchCommitter.from_settings(github, config)
        self.direct = DirectUploader(github, branch=config.GITHUB_BRANCH)
        self.shared_queue = shared_queue
        if self.shared_queue.trigger is None:
            self.shared_queue.trigger = self._trigger_processing
        self.processor = QueueProcessor(
            shared_queue,
            self.committer,
            threshold=shared_queue.threshold,
            serverless=serverless,
        )
        self.memory_queue = UploadQueue(self.committer, threshold=shared_queue.threshold)

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "UploadService":
        """Build the service and its clients from settings."""
        config = config or settings
        github = GitHubClient.from_settings(config)
        shared_queue = RedisUploadQueue.from_settings(config)
        return cls(config, github, shared_queue)

    async def __aenter__(self) -> "UploadService":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Flush the in-process queue and close clients."""
        try:
            await self.memory_queue.drain()
        finally:
            self.memory_queue.close()
            await self.shared_queue.aclose()
            await self.github.aclose()

    @property
    def queueing_enabled(self) -> bool:
        return self.processor.is_enabled()

    def build_item(
        self, data: bytes, original_name: str, content_type: str
    ) -> PendingItem:
        """Validate an upload and turn it into a pending item.

        Raises:
            ValidationError: If the file is not an image or is too large
        """
        if not content_type.startswith("image/"):
            raise ValidationError("Only image files are allowed")
        if len(data) > self.config.MAX_UPLOAD_BYTES:
            limit_mb = self.config.MAX_UPLOAD_BYTES // (1024 * 1024)
            raise ValidationError(f"File size must be less than {limit_mb}MB")

        return PendingItem(
            path=generate_path(original_name, self.config.UPLOAD_PREFIX),
            content=base64.b64encode(data).decode("ascii"),
            original_name=original_name,
            size=len(data),
            content_type=content_type,
        )

    async def enqueue(self, item: PendingItem) -> PredictedResult | DirectResult:
        """Queue an item for batching, or commit it directly.

        Returns:
            PredictedResult when the shared queue accepted the item,
            DirectResult when it was committed on its own
        """
        if not self.shared_queue.is_enabled():
            return await self._direct(item, "Uploaded directly (Redis queue not configured)")
        if self.serverless():
            return await self._direct(item, "Uploaded directly (Queue disabled on Serverless)")

        try:
            queue_size = await self.shared_queue.add(item)
        except QueueUnavailableError as e:
            logger.warning("Shared queue unavailable, uploading directly: %s", e)
            return await self._direct(item, "Uploaded directly (Redis queue unavailable)")

        ITEMS_ENQUEUED.labels(mode="queued").inc()
        urls = predicted_urls(
            self.github.owner, self.github.repo, self.config.GITHUB_BRANCH, item.path
        )
        return PredictedResult(
            filename=item.path,
            url=urls.raw,
            urls=urls,
            size=item.size,
            content_type=item.content_type,
            queue_size=queue_size,
        )

    async def submit(self, item: PendingItem) -> BatchResult | DirectResult:
        """Commit an item and wait for the confirmed result.

        Long-lived processes batch through the in-process queue; serverless
        runtimes commit directly.

        Raises:
            GitHubAPIError: If the batch containing the item failed
        """
        if self.serverless():
            return await self._direct(item, "Uploaded directly (Queue disabled on Serverless)")
        ITEMS_ENQUEUED.labels(mode="memory").inc()
        return await self.memory_queue.add(item)

    async def process_now(self) -> int:
        """Commit pending items without waiting for the batch triggers.

        Returns:
            Number of items committed
        """
        if self.queueing_enabled:
            result = await self.processor.process(force=True)
            return result.processed_count or 0
        return await self.memory_queue.process_now()

    async def status(self) -> QueueStatus:
        """Queue size and waiting time of the active backend."""
        if self.queueing_enabled:
            return await self.processor.status()

        oldest = self.memory_queue.oldest_timestamp()
        waiting = now_ms() - oldest if oldest else 0
        return QueueStatus(
            queue_size=self.memory_queue.size(),
            oldest_timestamp=oldest,
            waiting_time=waiting,
            max_batch_size=MAX_BATCH_SIZE,
            batch_timeout=BATCH_TIMEOUT_MS,
        )

    async def _direct(self, item: PendingItem, note: str) -> DirectResult:
        logger.info("Using direct upload for %s: %s", item.path, note)
        ITEMS_ENQUEUED.labels(mode="direct").inc()
        return await self.direct.upload(item, note=note)

    async def _trigger_processing(self) -> None:
        """Best-effort processing signal fired when the threshold is reached."""
        if self.config.PROCESS_QUEUE_URL:
            async with httpx.AsyncClient(timeout=10) as client:
                response = await client.post(self.config.PROCESS_QUEUE_URL)
                response.raise_for_status()
            return
        result = await self.processor.process()
        logger.info("Auto-submit result: %s", result.message)
