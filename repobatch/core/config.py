"""Application configuration."""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Batch triggers shared by both queue backends
MAX_BATCH_SIZE = 100
BATCH_TIMEOUT_MS = 5000  # 5 seconds
DEFAULT_AUTO_SUBMIT_THRESHOLD = 20

# Shared queue limits
LOCK_TIMEOUT_MS = 30000  # 30 seconds
MAX_BATCH_BYTES = 100 * 1024 * 1024  # 100MB per batch
QUEUE_KEY = "upload-queue"
LOCK_KEY = "upload-queue-lock"

# Commit retry policy
MAX_RETRIES = 3
BATCH_RETRY_BASE_DELAY = 0.5  # seconds
DIRECT_RETRY_BASE_DELAY = 0.1  # seconds


class Settings(BaseSettings):
    """
    Application settings.

    Environment variables will be loaded and validated using Pydantic.
    """

    app_name: str = "repobatch"
    version: str = "0.1.0"

    # GitHub Settings
    GITHUB_TOKEN: str | None = None
    GITHUB_OWNER: str = ""
    GITHUB_REPO: str = ""
    GITHUB_BRANCH: str = "main"
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_TIMEOUT: int = 30

    # Redis Settings (queue disabled when unset)
    REDIS_URL: str | None = None
    REDIS_POOL_SIZE: int = 10

    # Batching Settings
    # Kept as raw text so a malformed value falls back to the default
    AUTO_SUBMIT_THRESHOLD: str | None = None
    PROCESS_QUEUE_URL: str | None = None
    POLL_INTERVAL_SECONDS: float = Field(default=5.0, gt=0)

    # Upload Settings
    UPLOAD_PREFIX: str = "uploads"
    MAX_UPLOAD_BYTES: int = Field(default=100 * 1024 * 1024, gt=0)

    # Logging Settings
    LOG_LEVEL: str = "INFO"
    JSON_LOGS: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="allow",  # Allow extra fields in environment
    )

    @model_validator(mode="after")
    def strip_upload_prefix(self) -> "Settings":
        """Normalise the upload prefix so paths never carry doubled slashes."""
        self.UPLOAD_PREFIX = self.UPLOAD_PREFIX.strip("/")
        return self

    @property
    def redis_enabled(self) -> bool:
        """Whether a shared queue backend is configured."""
        return bool(self.REDIS_URL)


def auto_submit_threshold(config: Settings | None = None) -> int:
    """Get the queue size that triggers an immediate batch.

    Args:
        config: Settings to read from (default: process settings)

    Returns:
        Positive threshold, or the default when unset or invalid
    """
    raw = (config or settings).AUTO_SUBMIT_THRESHOLD
    if raw:
        try:
            parsed = int(raw.strip())
        except ValueError:
            return DEFAULT_AUTO_SUBMIT_THRESHOLD
        if parsed > 0:
            return parsed
    return DEFAULT_AUTO_SUBMIT_THRESHOLD


# Create settings instance
settings = Settings()
