"""Configuration settings for bindsync.

Precedence: CLI option > pipeline definition > BINDSYNC_* environment > defaults.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BINDSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Trigger fingerprints and JSONL run logs
    state_dir: Path = Field(default=Path(".bindsync"))

    # Publish loop
    retry_budget: int = Field(default=5, ge=1)
    retry_backoff: float = Field(default=1.0, ge=0.0)

    # Mainline
    remote: str = "origin"
    branch: str = "master"
    git_author_name: str = "bindsync-bot"
    git_author_email: str = "bindsync-bot@users.noreply.github.com"

    # 0 = one worker per platform
    max_workers: int = Field(default=0, ge=0)

    @property
    def logs_dir(self) -> Path:
        return self.state_dir / "logs"

    def ensure_state_dir(self) -> None:
        """Create state directory if it doesn't exist."""
        self.state_dir.mkdir(parents=True, exist_ok=True)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Get cached settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Reset settings cache (useful for testing)."""
    global _settings
    _settings = None
