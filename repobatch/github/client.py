"""Async client for the GitHub git data and contents APIs."""

import logging
from typing import Any

import httpx

from repobatch.core.config import Settings
from repobatch.core.exceptions import GitHubAPIError

logger = logging.getLogger(__name__)

BLOB_MODE = "100644"


class GitHubClient:
    """Thin wrapper over the REST endpoints used to build commits."""

    def __init__(
        self,
        owner: str,
        repo: str,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        timeout: float = 30,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize client.

        Args:
            owner: Repository owner
            repo: Repository name
            token: Personal access or app token
            base_url: API root
            timeout: Request timeout in seconds
            client: Optional pre-built HTTP client (closed by the caller)
        """
        self.owner = owner
        self.repo = repo
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url, headers=headers, timeout=timeout
        )

    @classmethod
    def from_settings(cls, config: Settings) -> "GitHubClient":
        """Create a client from application settings."""
        return cls(
            owner=config.GITHUB_OWNER,
            repo=config.GITHUB_REPO,
            token=config.GITHUB_TOKEN,
            base_url=config.GITHUB_API_URL,
            timeout=config.GITHUB_TIMEOUT,
        )

    @property
    def repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.client.aclose()

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        url = f"{self.repo_path}{path}"
        try:
            response = await self.client.request(method, url, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = e.response.reason_phrase
            try:
                message = e.response.json().get("message", message)
            except ValueError:
                pass
            raise GitHubAPIError(
                f"{method} {url} failed: {message}", e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise GitHubAPIError(f"{method} {url} failed: {e}") from e
        return response.json()

    async def get_ref(self, branch: str) -> str:
        """Get the commit sha a branch points to."""
        data = await self._request("GET", f"/git/ref/heads/{branch}")
        return data["object"]["sha"]

    async def get_commit(self, commit_sha: str) -> str:
        """Get the tree sha of a commit."""
        data = await self._request("GET", f"/git/commits/{commit_sha}")
        return data["tree"]["sha"]

    async def create_blob(self, content: str) -> str:
        """Create a blob from base64 content and return its sha."""
        data = await self._request(
            "POST", "/git/blobs", json={"content": content, "encoding": "base64"}
        )
        return data["sha"]

    async def create_tree(self, base_tree: str, entries: list[dict[str, str]]) -> str:
        """Create a tree layering entries onto base_tree and return its sha."""
        data = await self._request(
            "POST", "/git/trees", json={"base_tree": base_tree, "tree": entries}
        )
        return data["sha"]

    async def create_commit(self, message: str, tree: str, parents: list[str]) -> str:
        """Create a commit object and return its sha."""
        data = await self._request(
            "POST",
            "/git/commits",
            json={"message": message, "tree": tree, "parents": parents},
        )
        return data["sha"]

    async def update_ref(self, branch: str, commit_sha: str, force: bool = False) -> None:
        """Move a branch to commit_sha.

        Raises:
            GitHubAPIError: With a conflict status if the update is not a
                fast-forward and force is False
        """
        await self._request(
            "PATCH",
            f"/git/refs/heads/{branch}",
            json={"sha": commit_sha, "force": force},
        )

    async def create_or_update_file_contents(
        self, path: str, message: str, content: str, branch: str
    ) -> dict[str, Any]:
        """Commit a single file through the contents API."""
        return await self._request(
            "PUT",
            f"/contents/{path}",
            json={"message": message, "content": content, "branch": branch},
        )
