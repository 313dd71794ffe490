"""Multi-file atomic commits through the GitHub git data API."""

import asyncio
import logging
from collections.abc import Sequence

from repobatch.core.config import BATCH_RETRY_BASE_DELAY, MAX_RETRIES, Settings
from repobatch.core.exceptions import GitHubAPIError
from repobatch.github.client import BLOB_MODE, GitHubClient
from repobatch.github.retry import call_with_retry, is_conflict
from repobatch.github.urls import file_urls
from repobatch.metrics import BATCH_FAILURES, BATCHES_COMMITTED, FILES_COMMITTED, REF_CONFLICTS
from repobatch.queue.types import BatchResult, PendingItem

logger = logging.getLogger(__name__)

MESSAGE_NAMES_LIMIT = 100


def commit_message(items: Sequence[PendingItem]) -> str:
    """Build the commit message for a batch.

    Args:
        items: Items in the batch, in commit order

    Returns:
        Single-file message, or batch message with names cut at 100 chars
    """
    names = ", ".join(item.original_name for item in items)
    if len(items) == 1:
        return f"Upload image: {names}"
    suffix = "..." if len(names) > MESSAGE_NAMES_LIMIT else ""
    return f"Batch upload {len(items)} images: {names[:MESSAGE_NAMES_LIMIT]}{suffix}"


class BatchCommitter:
    """Commits a list of pending items as one commit on a branch."""

    def __init__(
        self,
        client: GitHubClient,
        branch: str = "main",
        max_retries: int = MAX_RETRIES,
        base_delay: float = BATCH_RETRY_BASE_DELAY,
    ) -> None:
        """Initialize committer.

        Args:
            client: GitHub API client bound to owner/repo
            branch: Branch to fast-forward
            max_retries: Additional attempts after a ref conflict
            base_delay: Backoff base in seconds
        """
        self.client = client
        self.branch = branch
        self.max_retries = max_retries
        self.base_delay = base_delay

    @classmethod
    def from_settings(cls, client: GitHubClient, config: Settings) -> "BatchCommitter":
        return cls(client, branch=config.GITHUB_BRANCH)

    async def commit(self, items: Sequence[PendingItem]) -> list[BatchResult]:
        """Run the ref → tree → blobs → tree → commit → ref sequence once.

        Args:
            items: Items to commit; paths must be unique

        Returns:
            One BatchResult per item, in input order

        Raises:
            GitHubAPIError: If any step fails; a conflict status on the final
                ref update means another writer advanced the branch
        """
        if not items:
            return []

        client = self.client

        # Read the head fresh on every attempt
        head_sha = await client.get_ref(self.branch)
        base_tree = await client.get_commit(head_sha)

        blob_shas = await asyncio.gather(
            *(client.create_blob(item.content) for item in items)
        )
        entries = [
            {"path": item.path, "mode": BLOB_MODE, "type": "blob", "sha": sha}
            for item, sha in zip(items, blob_shas)
        ]
        tree_sha = await client.create_tree(base_tree, entries)

        commit_sha = await client.create_commit(
            commit_message(items), tree_sha, [head_sha]
        )

        try:
            await client.update_ref(self.branch, commit_sha, force=False)
        except GitHubAPIError as e:
            if e.is_conflict:
                REF_CONFLICTS.inc()
            raise

        logger.info(
            "Committed batch of %d files as %s on %s",
            len(items),
            commit_sha,
            self.branch,
        )
        return self._build_results(items, commit_sha)

    async def commit_with_retry(self, items: Sequence[PendingItem]) -> list[BatchResult]:
        """Commit items, restarting the whole sequence on ref conflicts.

        Raises:
            GitHubAPIError: On a non-conflict error, or the last conflict
                once retries are exhausted
        """
        try:
            results = await call_with_retry(
                lambda: self.commit(items),
                max_retries=self.max_retries,
                base_delay=self.base_delay,
                should_retry=is_conflict,
                description=f"Batch upload of {len(items)} files",
            )
        except Exception:
            BATCH_FAILURES.inc()
            raise

        BATCHES_COMMITTED.inc()
        FILES_COMMITTED.inc(len(items))
        return results

    def _build_results(
        self, items: Sequence[PendingItem], commit_sha: str
    ) -> list[BatchResult]:
        owner, repo = self.client.owner, self.client.repo
        results = []
        for item in items:
            urls = file_urls(owner, repo, self.branch, commit_sha, item.path)
            results.append(
                BatchResult(
                    url=urls.raw,
                    urls=urls,
                    filename=item.path,
                    size=item.size,
                    content_type=item.content_type,
                    commit_sha=commit_sha,
                    batch_size=len(items),
                    github_url=urls.github,
                )
            )
        return results
