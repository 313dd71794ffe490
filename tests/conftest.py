"""Test configuration."""

import os
from collections.abc import Generator
from pathlib import Path
from typing import List

import pytest
from pytest import Config

from repobatch.core.logging import configure_logging

fixture = pytest.fixture

pytest_plugins: List[str] = [
    "tests.fixtures.redis",
    "tests.fixtures.github",
]

# Provider variables that would make every test look serverless
_SERVERLESS_VARS = (
    "VERCEL",
    "AWS_LAMBDA_FUNCTION_NAME",
    "FUNCTIONS_WORKER_RUNTIME",
    "K_SERVICE",
    "GCP_PROJECT",
    "GCLOUD_PROJECT",
)


@fixture(scope="session")
def project_root() -> Path:
    """Get the project root directory."""
    return Path(__file__).parent.parent


@fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep host configuration out of tests."""
    for name in _SERVERLESS_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("AUTO_SUBMIT_THRESHOLD", raising=False)
    monkeypatch.setenv("TESTING", "true")
    yield


def pytest_configure(config: Config) -> None:
    """Configure pytest.

    Args:
        config: Pytest configuration object
    """
    configure_logging(testing=True, level=os.getenv("TEST_LOG_LEVEL", "info"))
    config.addinivalue_line("markers", "integration: mark test as an integration test")
