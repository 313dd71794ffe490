"""Tests for conflict retry with exponential backoff."""

from unittest.mock import AsyncMock, patch

import pytest

from repobatch.core.exceptions import GitHubAPIError
from repobatch.github.retry import call_with_retry, is_conflict


def conflict() -> GitHubAPIError:
    return GitHubAPIError("Update is not a fast forward", 422)


@pytest.fixture
def mock_sleep():
    with patch("repobatch.github.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


async def test_returns_first_success(mock_sleep):
    operation = AsyncMock(return_value="ok")

    assert await call_with_retry(operation) == "ok"
    operation.assert_awaited_once()
    mock_sleep.assert_not_awaited()


async def test_retries_conflicts_with_exponential_backoff(mock_sleep):
    """Delays double each attempt from the base delay."""
    operation = AsyncMock(side_effect=[conflict(), conflict(), conflict(), "ok"])

    result = await call_with_retry(operation, max_retries=3, base_delay=0.5)

    assert result == "ok"
    assert operation.await_count == 4
    assert [c.args[0] for c in mock_sleep.await_args_list] == [1.0, 2.0, 4.0]


async def test_raises_last_conflict_after_exhausting_retries(mock_sleep):
    errors = [conflict() for _ in range(4)]
    operation = AsyncMock(side_effect=errors)

    with pytest.raises(GitHubAPIError) as exc_info:
        await call_with_retry(operation, max_retries=3, base_delay=0)

    assert exc_info.value is errors[-1]
    assert operation.await_count == 4


async def test_does_not_retry_other_errors(mock_sleep):
    operation = AsyncMock(side_effect=GitHubAPIError("Bad credentials", 401))

    with pytest.raises(GitHubAPIError):
        await call_with_retry(operation)

    operation.assert_awaited_once()
    mock_sleep.assert_not_awaited()


def test_is_conflict_matches_rejected_ref_updates():
    assert is_conflict(GitHubAPIError("conflict", 409))
    assert is_conflict(GitHubAPIError("not a fast forward", 422))
    assert not is_conflict(GitHubAPIError("server error", 500))
    assert not is_conflict(ValueError("nope"))
