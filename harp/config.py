"""
HARP Client Configuration

Environment-based configuration for the Gradio Space client.
"""
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _app_version_from_package() -> str:
    """Read version from pyproject.toml — the single source of truth."""
    try:
        from importlib.metadata import version
        return version("harp-gradio")
    except Exception:
        pass
    # Fallback: parse pyproject.toml directly (dev / non-installed mode)
    try:
        import re
        pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
        match = re.search(r'^version\s*=\s*"([^"]+)"', pyproject.read_text(), re.MULTILINE)
        if match:
            return match.group(1)
    except Exception:
        pass
    return "0.0.0-unknown"


def _default_log_file() -> Path:
    """The legacy client wrote HARP.log into the user's Documents folder."""
    documents = Path.home() / "Documents"
    return (documents if documents.is_dir() else Path.home()) / "HARP.log"


class Settings(BaseSettings):
    """Client settings loaded from environment variables (``HARP_*``)."""

    app_name: str = "HARP"
    app_version: str = _app_version_from_package()
    debug: bool = False

    # HTTP protocol constants, fixed per process
    connect_timeout: float = 10.0  # seconds
    max_redirects: int = 5
    # Upper bound on a single long-poll read. None waits for the server indefinitely.
    read_timeout: Optional[float] = 300.0

    # Private Spaces need a HuggingFace token
    hf_token: Optional[str] = None

    # Gradio endpoint names exposed by HARP-compatible Spaces
    schema_endpoint: str = "controls"
    predict_endpoint: str = "predict"
    file_route: str = "file="

    # Retry policy for idempotent steps (schema fetch, upload, download)
    retry_attempts: int = 3
    retry_backoff: list[float] = [1.0, 2.0, 4.0]  # seconds between attempts

    # StatusWatcher sampling period
    status_poll_interval: float = 0.1  # seconds

    # Temporary artifacts (input copies, downloaded outputs)
    temp_dir: Optional[Path] = None

    # Logging
    log_file: Optional[Path] = _default_log_file()
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_prefix="HARP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("retry_attempts")
    @classmethod
    def _at_least_one_attempt(cls, v: int) -> int:
        if v < 1:
            logging.getLogger(__name__).warning(
                "HARP_RETRY_ATTEMPTS=%s is below 1; using a single attempt", v
            )
            return 1
        return v

    @property
    def resolved_temp_dir(self) -> Path:
        """Directory for temporary artifacts; the system temp dir unless overridden."""
        if self.temp_dir is not None:
            return self.temp_dir
        import tempfile
        return Path(tempfile.gettempdir())

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0-based); reuses the last entry."""
        if not self.retry_backoff:
            return 0.0
        return self.retry_backoff[min(attempt, len(self.retry_backoff) - 1)]


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience access
settings = get_settings()
