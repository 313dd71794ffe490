"""Trigger evaluation and batch orchestration for the shared queue."""

import logging
from collections.abc import Callable

from repobatch.core.config import (
    BATCH_TIMEOUT_MS,
    MAX_BATCH_BYTES,
    MAX_BATCH_SIZE,
    auto_submit_threshold,
)
from repobatch.core.environment import is_serverless
from repobatch.github.committer import BatchCommitter
from repobatch.metrics import PROCESSOR_RUNS, QUEUE_SIZE
from repobatch.queue.redis_queue import RedisUploadQueue
from repobatch.queue.types import QueueProcessResult, QueueStatus, now_ms

logger = logging.getLogger(__name__)


class QueueProcessor:
    """Flushes the shared queue when it is old enough or full.

    Safe to call repeatedly and from many processes; every outcome,
    including lock contention and failures, is returned as a
    QueueProcessResult.
    """

    def __init__(
        self,
        queue: RedisUploadQueue,
        committer: BatchCommitter,
        threshold: int | None = None,
        max_batch_size: int = MAX_BATCH_SIZE,
        max_batch_bytes: int = MAX_BATCH_BYTES,
        batch_timeout_ms: int = BATCH_TIMEOUT_MS,
        serverless: Callable[[], bool] = is_serverless,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """Initialize processor.

        Args:
            queue: Shared queue to drain
            committer: Committer used for each batch
            threshold: Queue size that makes a batch ready
                (default: configured auto-submit threshold)
            max_batch_size: Maximum items per commit
            max_batch_bytes: Maximum serialized bytes per commit
            batch_timeout_ms: Age of the oldest item that makes a batch ready
            serverless: Environment classifier; batching is disabled when True
            clock: Epoch milliseconds source
        """
        self.queue = queue
        self.committer = committer
        self.threshold = threshold or auto_submit_threshold()
        self.max_batch_size = max_batch_size
        self.max_batch_bytes = max_batch_bytes
        self.batch_timeout_ms = batch_timeout_ms
        self.serverless = serverless
        self.clock = clock

    def is_enabled(self) -> bool:
        return self.queue.is_enabled() and not self.serverless()

    async def status(self) -> QueueStatus:
        """Current queue size and age of the oldest item."""
        queue_size = await self.queue.size()
        oldest = await self.queue.get_oldest_timestamp()
        QUEUE_SIZE.set(queue_size)
        return QueueStatus(
            queue_size=queue_size,
            oldest_timestamp=oldest,
            waiting_time=self.clock() - oldest if oldest else 0,
            max_batch_size=self.max_batch_size,
            batch_timeout=self.batch_timeout_ms,
        )

    async def process(self, force: bool = False) -> QueueProcessResult:
        """Commit one batch if the queue is ready and the lock is free.

        Args:
            force: Skip the age/size readiness check
        """
        if not self.is_enabled():
            PROCESSOR_RUNS.labels(outcome="disabled").inc()
            return QueueProcessResult(
                message="Queueing disabled (no Redis or serverless environment)",
                processed=False,
                disabled=True,
                queue_size=0,
            )

        lock_acquired = False
        try:
            if not await self.queue.should_process():
                logger.debug("Cannot process: queue is being processed or empty")
                PROCESSOR_RUNS.labels(outcome="idle").inc()
                return QueueProcessResult(
                    message="Queue is being processed or empty", processed=False
                )

            queue_size = await self.queue.size()
            oldest = await self.queue.get_oldest_timestamp()
            waiting_time = self.clock() - oldest if oldest is not None else 0
            # Unparseable-only backlog is read and dropped under the lock
            is_old_enough = oldest is None or waiting_time >= self.batch_timeout_ms
            is_full = queue_size >= self.threshold
            QUEUE_SIZE.set(queue_size)

            logger.info(
                "Queue status - size: %d, waiting: %dms, is_old_enough: %s, "
                "is_full: %s, threshold: %d",
                queue_size,
                waiting_time,
                is_old_enough,
                is_full,
                self.threshold,
            )

            if not (is_old_enough or is_full or force):
                PROCESSOR_RUNS.labels(outcome="not_ready").inc()
                return QueueProcessResult(
                    message="Queue not ready yet",
                    queue_size=queue_size,
                    waiting_time=waiting_time,
                    processed=False,
                )

            lock_acquired = await self.queue.acquire_lock()
            if not lock_acquired:
                PROCESSOR_RUNS.labels(outcome="locked").inc()
                return QueueProcessResult(
                    message="Another process is handling the queue", processed=False
                )

            batch = await self.queue.get_batch(self.max_batch_size, self.max_batch_bytes)
            items = batch.items
            logger.info("Retrieved %d items from queue", len(items))
            if not items:
                # Drop any unparseable entries so they do not block the tail
                await self.queue.remove_items(batch.consumed)
                PROCESSOR_RUNS.labels(outcome="empty").inc()
                return QueueProcessResult(message="Queue is empty", processed=False)

            total_size = sum(item.size for item in items)
            logger.info(
                "Processing batch of %d files (%.2fMB)",
                len(items),
                total_size / 1024 / 1024,
            )

            results = await self.committer.commit_with_retry(items)
            commit_sha = results[0].commit_sha

            if not await self.queue.holds_lock():
                # Another process may be reading the same tail; keep the items
                logger.warning(
                    "Queue lock expired during commit %s, leaving %d items queued",
                    commit_sha,
                    batch.consumed,
                )
                PROCESSOR_RUNS.labels(outcome="lock_expired").inc()
                return QueueProcessResult(
                    processed=True,
                    message=(
                        f"Uploaded {len(items)} files in single commit; "
                        "lock expired, items left queued"
                    ),
                    batch_size=len(items),
                    processed_count=len(items),
                    commit_sha=commit_sha,
                )

            # Items leave the queue only once their commit has landed
            await self.queue.remove_items(batch.consumed)
            logger.info("Removed %d items from queue", batch.consumed)

            PROCESSOR_RUNS.labels(outcome="committed").inc()
            return QueueProcessResult(
                processed=True,
                message=f"Uploaded {len(items)} files in single commit",
                batch_size=len(items),
                processed_count=len(items),
                commit_sha=commit_sha,
            )
        except Exception as e:
            logger.exception("Queue processor error: %s", e)
            PROCESSOR_RUNS.labels(outcome="failed").inc()
            return QueueProcessResult(
                error=f"Queue processing failed: {e}",
                processed=False,
                message=str(e) or type(e).__name__,
            )
        finally:
            if lock_acquired:
                await self._release_lock()

    async def _release_lock(self) -> None:
        try:
            await self.queue.release_lock()
        except Exception as e:
            logger.warning("Failed to release queue lock: %s", e)
