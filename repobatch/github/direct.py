"""Single-file commits used when batching is disabled."""

import logging

from repobatch.core.config import DIRECT_RETRY_BASE_DELAY, MAX_RETRIES
from repobatch.core.exceptions import GitHubAPIError
from repobatch.github.client import GitHubClient
from repobatch.github.retry import call_with_retry
from repobatch.github.urls import file_urls
from repobatch.queue.types import DirectResult, PendingItem

logger = logging.getLogger(__name__)


def _is_contents_conflict(error: Exception) -> bool:
    return isinstance(error, GitHubAPIError) and error.status_code == 409


class DirectUploader:
    """Writes one file per commit through the contents API."""

    def __init__(
        self,
        client: GitHubClient,
        branch: str = "main",
        max_retries: int = MAX_RETRIES,
        base_delay: float = DIRECT_RETRY_BASE_DELAY,
    ) -> None:
        self.client = client
        self.branch = branch
        self.max_retries = max_retries
        self.base_delay = base_delay

    async def upload(self, item: PendingItem, note: str | None = None) -> DirectResult:
        """Commit a single item, retrying on 409 conflicts.

        Args:
            item: Item to write
            note: Optional explanation attached to the result

        Returns:
            Confirmed result for the new commit
        """
        response = await call_with_retry(
            lambda: self.client.create_or_update_file_contents(
                path=item.path,
                message=f"Upload image: {item.original_name}",
                content=item.content,
                branch=self.branch,
            ),
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            should_retry=_is_contents_conflict,
            description=f"Direct upload of {item.path}",
        )

        commit_sha = response["commit"]["sha"]
        content = response.get("content") or {}
        urls = file_urls(
            self.client.owner, self.client.repo, self.branch, commit_sha, item.path
        )
        logger.info("Uploaded %s directly in commit %s", item.path, commit_sha)
        return DirectResult(
            url=urls.raw,
            urls=urls,
            filename=item.path,
            size=item.size,
            content_type=item.content_type,
            commit_sha=commit_sha,
            github_url=content.get("html_url"),
            note=note,
        )
