"""Public URLs for files stored in a GitHub repository."""

from repobatch.queue.types import FileUrls, PredictedUrls


def github_url(owner: str, repo: str, ref: str, path: str) -> str:
    return f"https://github.com/{owner}/{repo}/blob/{ref}/{path}"


def raw_url(owner: str, repo: str, ref: str, path: str) -> str:
    return f"https://raw.githubusercontent.com/{owner}/{repo}/{ref}/{path}"


def jsdelivr_url(owner: str, repo: str, ref: str, path: str) -> str:
    return f"https://cdn.jsdelivr.net/gh/{owner}/{repo}@{ref}/{path}"


def predicted_urls(owner: str, repo: str, branch: str, path: str) -> PredictedUrls:
    """Branch-relative URLs, valid once the file lands on the branch."""
    return PredictedUrls(
        github=github_url(owner, repo, branch, path),
        raw=raw_url(owner, repo, branch, path),
        jsdelivr=jsdelivr_url(owner, repo, branch, path),
    )


def file_urls(
    owner: str, repo: str, branch: str, commit_sha: str, path: str
) -> FileUrls:
    """All six URLs for a committed file.

    Branch-relative URLs follow later updates to the path; commit-pinned URLs
    always resolve to the content of commit_sha.
    """
    return FileUrls(
        github=github_url(owner, repo, branch, path),
        raw=raw_url(owner, repo, branch, path),
        jsdelivr=jsdelivr_url(owner, repo, branch, path),
        github_commit=github_url(owner, repo, commit_sha, path),
        raw_commit=raw_url(owner, repo, commit_sha, path),
        jsdelivr_commit=jsdelivr_url(owner, repo, commit_sha, path),
    )
