"""Pending upload queues."""

from repobatch.queue.types import (
    BatchResult,
    DirectResult,
    PendingItem,
    PredictedResult,
    QueueProcessResult,
    QueueStatus,
)

__all__ = [
    "BatchResult",
    "DirectResult",
    "PendingItem",
    "PredictedResult",
    "QueueProcessResult",
    "QueueStatus",
]
