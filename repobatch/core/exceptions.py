"""Exception hierarchy for repobatch."""

# Status codes GitHub returns when a non-force ref update is rejected
CONFLICT_STATUS_CODES = frozenset({409, 422})


class RepoBatchError(Exception):
    """Base class for all repobatch errors."""


class ValidationError(RepoBatchError):
    """Raised when an upload is rejected before it reaches a queue."""


class QueueUnavailableError(RepoBatchError):
    """Raised when the shared queue backend is missing or unreachable."""


class GitHubAPIError(RepoBatchError):
    """Raised when a GitHub API call returns an error status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize error.

        Args:
            message: Error message from the API or transport
            status_code: HTTP status code, if a response was received
        """
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def is_conflict(self) -> bool:
        """Whether the error is an optimistic-concurrency rejection."""
        return self.status_code in CONFLICT_STATUS_CODES

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"{self.message} (status {self.status_code})"
