"""Redis-backed upload queue shared by many process instances.

Items are pushed at the head of a list and popped from the tail, so the tail
holds the oldest entry. A SET NX PX key provides the cross-process lock that
makes at most one instance commit a batch at a time.
"""

import asyncio
import json
import logging
import secrets
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from redis.asyncio.client import Redis as AsyncRedis
from redis.exceptions import RedisError

from repobatch.core.config import (
    LOCK_KEY,
    LOCK_TIMEOUT_MS,
    QUEUE_KEY,
    Settings,
    auto_submit_threshold,
)
from repobatch.core.exceptions import QueueUnavailableError
from repobatch.metrics import QUEUE_SIZE
from repobatch.queue.types import PendingItem, now_ms

logger = logging.getLogger(__name__)

# Small reads keep each request under hosted Redis request-size limits
CHUNK_SIZE = 5

Trigger = Callable[[], Awaitable[Any]]


@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    """Re-raise Redis client failures as QueueUnavailableError."""
    try:
        yield
    except RedisError as e:
        raise QueueUnavailableError(f"Redis queue unreachable during {operation}: {e}") from e


@dataclass
class QueueBatch:
    """Items read from the tail of the queue.

    consumed counts every entry scanned, including unparseable entries that
    were skipped, so removing it pops exactly what was read.
    """

    items: list[PendingItem] = field(default_factory=list)
    consumed: int = 0


class RedisUploadQueue:
    """Shared pending queue with a distributed processing lock."""

    def __init__(
        self,
        redis: AsyncRedis | None,
        trigger: Trigger | None = None,
        threshold: int | None = None,
        queue_key: str = QUEUE_KEY,
        lock_key: str = LOCK_KEY,
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
    ) -> None:
        """Initialize queue.

        Args:
            redis: Async Redis client, or None when the queue is disabled
            trigger: Coroutine factory fired when the threshold is reached
            threshold: Queue size that fires the trigger
                (default: configured auto-submit threshold)
            queue_key: List key holding serialized items
            lock_key: Key used as the processing lock
            lock_timeout_ms: Lock expiry in milliseconds
        """
        self.redis = redis
        self.trigger = trigger
        self.threshold = threshold or auto_submit_threshold()
        self.queue_key = queue_key
        self.lock_key = lock_key
        self.lock_timeout_ms = lock_timeout_ms
        self._background: set[asyncio.Task[None]] = set()
        self._lock_token: str | None = None

    @classmethod
    def from_settings(
        cls, config: Settings, trigger: Trigger | None = None
    ) -> "RedisUploadQueue":
        """Create a queue from settings; disabled when REDIS_URL is unset."""
        redis: AsyncRedis | None = None
        if config.REDIS_URL:
            try:
                redis = AsyncRedis.from_url(
                    config.REDIS_URL,
                    decode_responses=True,
                    max_connections=config.REDIS_POOL_SIZE,
                    socket_timeout=5,
                    socket_connect_timeout=5,
                )
                logger.info("Redis queue enabled")
            except (RedisError, ValueError) as e:
                logger.warning("Failed to initialize Redis, queue disabled: %s", e)
                redis = None
        else:
            logger.info("Redis not configured, queue disabled")
        return cls(redis, trigger=trigger, threshold=auto_submit_threshold(config))

    def is_enabled(self) -> bool:
        return self.redis is not None

    async def aclose(self) -> None:
        """Wait for running trigger tasks, then close the Redis client."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        if self.redis is not None:
            await self.redis.aclose()

    async def add(self, item: PendingItem) -> int:
        """Add item to queue.

        Returns:
            Queue size after the push

        Raises:
            QueueUnavailableError: If Redis is not configured or unreachable
        """
        if self.redis is None:
            raise QueueUnavailableError("Redis queue not available")
        with _redis_errors("add"):
            await self.redis.lpush(self.queue_key, item.to_json())
            queue_size = int(await self.redis.llen(self.queue_key))

        QUEUE_SIZE.set(queue_size)
        logger.info("Added %s to queue. Queue size: %d", item.path, queue_size)

        if queue_size >= self.threshold:
            self._signal_trigger()
        return queue_size

    def _signal_trigger(self) -> None:
        if self.trigger is None:
            return
        task = asyncio.get_running_loop().create_task(self._run_trigger())
        # Hold a reference until done so the task is not collected
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_trigger(self) -> None:
        try:
            await self.trigger()  # type: ignore[misc]
        except Exception as e:
            logger.warning("Auto-submit trigger failed: %s", e)

    async def size(self) -> int:
        """Get queue size."""
        if self.redis is None:
            return 0
        with _redis_errors("size"):
            return int(await self.redis.llen(self.queue_key))

    def _safe_parse(self, raw: Any) -> PendingItem | None:
        try:
            if isinstance(raw, (str, bytes)):
                return PendingItem.model_validate_json(raw)
            if isinstance(raw, dict):
                return PendingItem.model_validate(raw)
        except (PydanticValidationError, ValueError) as e:
            logger.warning("Failed to parse queue item: %s", e)
        return None

    async def get_batch(
        self, max_items: int = 100, max_bytes: int = 10 * 1024 * 1024
    ) -> QueueBatch:
        """Read the oldest items, stopping at max_items or max_bytes.

        Size is estimated from the raw JSON length. At least one item is
        returned whenever a parseable entry exists.
        """
        batch = QueueBatch()
        if self.redis is None:
            return batch

        current_bytes = 0
        for start in range(0, max_items, CHUNK_SIZE):
            if current_bytes >= max_bytes:
                break

            end = min(start + CHUNK_SIZE, max_items)
            chunk = await self._read_tail(start, end)
            if not chunk:
                break

            for raw in chunk:
                item = self._safe_parse(raw)
                if item is None:
                    batch.consumed += 1
                    continue

                item_size = len(raw) if isinstance(raw, (str, bytes)) else len(json.dumps(raw))
                if current_bytes + item_size > max_bytes and batch.items:
                    return batch

                batch.items.append(item)
                batch.consumed += 1
                current_bytes += item_size

            # Short chunk means we reached the head of the queue
            if len(chunk) < end - start:
                break

        return batch

    async def _read_tail(self, start: int, end: int) -> list[Any]:
        """Entries start..end-1 counted from the tail, oldest first."""
        assert self.redis is not None
        with _redis_errors("read"):
            # Negative indexes count from the tail; reverse to oldest first
            chunk = await self.redis.lrange(self.queue_key, -end, -(start + 1))
        return list(reversed(chunk))

    async def get_items(
        self, max_items: int = 100, max_bytes: int = 10 * 1024 * 1024
    ) -> list[PendingItem]:
        """Get items from queue respecting limits."""
        return (await self.get_batch(max_items, max_bytes)).items

    async def remove_items(self, count: int) -> None:
        """Pop count entries from the tail (oldest items)."""
        if self.redis is None or count <= 0:
            return
        with _redis_errors("remove"):
            for _ in range(count):
                await self.redis.rpop(self.queue_key)

    async def acquire_lock(self) -> bool:
        """Try to acquire lock for processing.

        Succeeds only if the lock key is absent; a held lock is never
        stolen, it has to expire. The stored value is the acquisition time
        in epoch milliseconds followed by a random owner suffix.
        """
        if self.redis is None:
            return False
        token = f"{now_ms()}-{secrets.token_hex(4)}"
        with _redis_errors("lock"):
            result = await self.redis.set(
                self.lock_key,
                token,
                nx=True,  # Only set if not exists
                px=self.lock_timeout_ms,
            )
        if result:
            self._lock_token = token
        return bool(result)

    async def holds_lock(self) -> bool:
        """Check that the lock taken by acquire_lock has not expired."""
        if self.redis is None or self._lock_token is None:
            return False
        with _redis_errors("lock"):
            current = await self.redis.get(self.lock_key)
        if isinstance(current, bytes):
            current = current.decode()
        return current == self._lock_token

    async def release_lock(self) -> None:
        """Delete the lock if this queue still owns it."""
        if self.redis is None:
            return
        if await self.holds_lock():
            with _redis_errors("unlock"):
                await self.redis.delete(self.lock_key)
        self._lock_token = None

    async def should_process(self) -> bool:
        """Check if the queue has items and no lock is held.

        Advisory only; acquire_lock is the real gate.
        """
        if self.redis is None:
            return False
        if await self.size() == 0:
            return False
        with _redis_errors("lock"):
            return int(await self.redis.exists(self.lock_key)) == 0

    async def get_oldest_timestamp(self, max_scan: int = 100) -> int | None:
        """Get the enqueue time of the oldest parseable entry.

        Unparseable entries at the tail are skipped; they are dropped by the
        next batch read. Returns None when no parseable entry is found
        within max_scan entries.
        """
        if self.redis is None:
            return None
        for start in range(0, max_scan, CHUNK_SIZE):
            end = min(start + CHUNK_SIZE, max_scan)
            chunk = await self._read_tail(start, end)
            for raw in chunk:
                item = self._safe_parse(raw)
                if item is not None:
                    return item.timestamp
            if len(chunk) < end - start:
                break
        return None
