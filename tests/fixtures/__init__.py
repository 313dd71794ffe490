"""Test fixture package for repobatch.

Contains fixtures for:
- In-memory Redis for the shared queue
- Mocked GitHub API routes
"""

from .github import github_api, github_client, test_settings
from .redis import InMemoryRedis, fake_redis

__all__ = [
    # GitHub
    "github_api",
    "github_client",
    "test_settings",
    # Redis
    "InMemoryRedis",
    "fake_redis",
]
