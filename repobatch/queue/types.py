"""Shared queue types and models."""

import time
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class PendingItem(BaseModel):
    """One caller's request to persist one file.

    Serialized with aliases so entries match the shared list's wire format.
    """

    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(alias="filename")
    content: str = Field(alias="base64Content")  # base64 encoded payload
    original_name: str = Field(alias="originalName")
    size: int = Field(ge=0)
    content_type: str = Field(default="application/octet-stream", alias="type")
    timestamp: int = Field(default_factory=now_ms)

    def to_json(self) -> str:
        """Serialize for the shared queue."""
        return self.model_dump_json(by_alias=True)


class FileUrls(BaseModel):
    """Branch-relative and commit-pinned locations of a committed file."""

    github: str
    raw: str
    jsdelivr: str
    github_commit: str
    raw_commit: str
    jsdelivr_commit: str


class PredictedUrls(BaseModel):
    """Branch-relative locations a queued file will have once committed."""

    github: str
    raw: str
    jsdelivr: str


class PredictedResult(BaseModel):
    """Optimistic response for an item accepted by the shared queue.

    The URLs are not durable until a batch containing the item is committed.
    """

    success: bool = True
    message: str = "File queued for batch upload"
    filename: str
    url: str
    urls: PredictedUrls
    size: int
    content_type: str
    queue_size: int
    mode: Literal["queued"] = "queued"
    note: str = "File will be uploaded in batch (up to 100 files or after 5 seconds)"


class BatchResult(BaseModel):
    """Confirmed result for one item of a committed batch."""

    success: bool = True
    url: str
    urls: FileUrls
    filename: str
    size: int
    content_type: str
    commit_sha: str
    batch_size: int
    github_url: str


class DirectResult(BaseModel):
    """Result of a single-file commit made without the queue."""

    success: bool = True
    url: str
    urls: FileUrls
    filename: str
    size: int
    content_type: str
    commit_sha: str
    github_url: str | None = None
    mode: Literal["direct"] = "direct"
    note: str | None = None


class QueueProcessResult(BaseModel):
    """Structured outcome of one queue processor invocation."""

    processed: bool
    message: str
    queue_size: int | None = None
    waiting_time: int | None = None
    processed_count: int | None = None
    batch_size: int | None = None
    commit_sha: str | None = None
    error: str | None = None
    disabled: bool | None = None


class QueueStatus(BaseModel):
    """Snapshot of the pending queue for polling clients."""

    queue_size: int
    oldest_timestamp: int | None = None
    waiting_time: int = 0
    max_batch_size: int
    batch_timeout: int
