"""Client configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is loaded from ``MEDIALOG_*`` environment variables (or .env file)."""

    # --- App ---
    app_name: str = "medialog"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Remote API ---
    api_base_url: str = "http://localhost:3000/api"
    request_timeout_seconds: float = 10.0

    # --- Storage ---
    storage_mode: str = "cloud"  # cloud | local
    storage_backend: str = "file"  # file | memory
    storage_dir: Path = Path.home() / ".medialog"

    # --- Backup (GitHub Gist) ---
    backup_enabled: bool = False
    github_token: str = ""  # needs the 'gist' scope only
    github_api_url: str = "https://api.github.com"

    model_config = SettingsConfigDict(
        env_prefix="MEDIALOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
