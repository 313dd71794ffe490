"""In-process upload queue for long-lived single instances.

Collects up to MAX_BATCH_SIZE files and commits them together once the
batch is full, the auto-submit threshold is reached, or BATCH_TIMEOUT_MS
has passed since the first item arrived.
"""

import asyncio
import logging
from dataclasses import dataclass

from repobatch.core.config import BATCH_TIMEOUT_MS, MAX_BATCH_SIZE, auto_submit_threshold
from repobatch.github.committer import BatchCommitter
from repobatch.queue.types import BatchResult, PendingItem

logger = logging.getLogger(__name__)


@dataclass
class QueueEntry:
    """A pending item and the future its caller is waiting on."""

    item: PendingItem
    future: "asyncio.Future[BatchResult]"

    def fulfill(self, result: BatchResult) -> None:
        if not self.future.done():
            self.future.set_result(result)

    def fail(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class UploadQueue:
    """Ephemeral batching queue owning a single flush timer."""

    def __init__(
        self,
        committer: BatchCommitter,
        max_batch_size: int = MAX_BATCH_SIZE,
        batch_timeout_ms: int = BATCH_TIMEOUT_MS,
        threshold: int | None = None,
    ) -> None:
        """Initialize queue.

        Args:
            committer: Committer used for every batch
            max_batch_size: Hard cap on items per commit
            batch_timeout_ms: Delay between the first item and a flush
            threshold: Size that triggers an immediate flush
                (default: configured auto-submit threshold)
        """
        self.committer = committer
        self.max_batch_size = max_batch_size
        self.batch_timeout_ms = batch_timeout_ms
        self.threshold = threshold or auto_submit_threshold()
        self._entries: list[QueueEntry] = []
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: "asyncio.Task[int] | None" = None

    @property
    def flushing(self) -> bool:
        return self._flush_task is not None and not self._flush_task.done()

    def size(self) -> int:
        return len(self._entries)

    def oldest_timestamp(self) -> int | None:
        if not self._entries:
            return None
        return self._entries[0].item.timestamp

    def add(self, item: PendingItem) -> "asyncio.Future[BatchResult]":
        """Queue an item.

        Must be called from a running event loop.

        Returns:
            Future resolved with the item's BatchResult, or failed with the
            batch error
        """
        loop = asyncio.get_running_loop()
        entry = QueueEntry(item=item, future=loop.create_future())
        self._entries.append(entry)
        logger.debug("Queue size: %d", len(self._entries))

        # Start timer on first item
        if len(self._entries) == 1 and self._timer is None and not self.flushing:
            self._start_timer()

        if len(self._entries) >= self.threshold or len(self._entries) >= self.max_batch_size:
            logger.info(
                "Batch ready (%d files), processing immediately", len(self._entries)
            )
            self._start_flush()

        return entry.future

    async def flush(self) -> int:
        """Commit the oldest batch now.

        Returns:
            Number of items committed (0 if empty, already flushing, or failed)
        """
        task = self._start_flush()
        if task is None:
            return 0
        return await task

    async def process_now(self) -> int:
        """Flush immediately and return the number of items committed."""
        return await self.flush()

    async def drain(self) -> int:
        """Flush repeatedly until the queue is empty."""
        total = 0
        while self._entries or self.flushing:
            if self.flushing and self._flush_task is not None:
                total += await self._flush_task
                continue
            task = self._start_flush()
            if task is None:
                break
            committed = await task
            if committed == 0:
                # Failed batch
                break
            total += committed
        self._cancel_timer()
        return total

    def close(self) -> None:
        """Cancel the timer and every item that has not been flushed."""
        self._cancel_timer()
        entries, self._entries = self._entries, []
        for entry in entries:
            entry.future.cancel()

    def _start_timer(self) -> None:
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.batch_timeout_ms / 1000, self._on_timeout)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        logger.info("Batch timeout reached, processing batch")
        self._start_flush()

    def _start_flush(self) -> "asyncio.Task[int] | None":
        # Only one batch in flight per instance
        if self.flushing:
            logger.debug("Another batch is processing, skipping")
            return None

        if not self._entries:
            logger.debug("Queue is empty, nothing to process")
            return None

        self._cancel_timer()
        batch = self._entries[: self.max_batch_size]
        del self._entries[: self.max_batch_size]

        self._flush_task = asyncio.get_running_loop().create_task(
            self._process_batch(batch)
        )
        return self._flush_task

    async def _process_batch(self, batch: list[QueueEntry]) -> int:
        logger.info("Processing batch of %d files in single commit", len(batch))
        try:
            results = await self.committer.commit_with_retry(
                [entry.item for entry in batch]
            )
        except Exception as e:
            logger.error("Batch upload error: %s", e)
            for entry in batch:
                entry.fail(e)
            return 0
        else:
            for entry, result in zip(batch, results):
                entry.fulfill(result)
            logger.info("Successfully uploaded batch of %d files", len(batch))
            return len(batch)
        finally:
            if self._entries:
                logger.info(
                    "%d files remaining in queue, starting new batch",
                    len(self._entries),
                )
                if len(self._entries) >= min(self.threshold, self.max_batch_size):
                    # Runs once this task has finished
                    asyncio.get_running_loop().call_soon(self._start_flush)
                else:
                    self._start_timer()
