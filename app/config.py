"""Runtime configuration, read from the environment and ``.env`` by pydantic-settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Every tunable of the transfer engine; env var names are the upper-cased fields."""

    # Spotify
    spotify_client_id: str = ""
    spotify_redirect_uri: str = "playlisttransfer://callback"

    # Apple Music
    apple_developer_token: str = ""
    apple_storefront: str = "us"

    # Deep links
    url_scheme: str = "playlisttransfer"

    # Storage
    history_dir: str = "./data/PlaylistHistory"
    db_path: str = "./data/playlist_transfer.db"
    secret_key: str = "change-me"

    # HTTP
    connect_timeout: float = 10.0
    read_timeout: float = 30.0
    max_attempts: int = 3

    # Transfer engine
    export_batch_size: int = 100
    resolve_concurrency: int = 1
    refresh_margin_seconds: int = 60

    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @field_validator("export_batch_size")
    @classmethod
    def _batch_size_in_range(cls, value: int) -> int:
        # Spotify rejects add-items requests with more than 100 URIs.
        if not 1 <= value <= 100:
            raise ValueError("export_batch_size must be between 1 and 100")
        return value

    @property
    def db_abs_path(self) -> Path:
        """Absolute database path; the parent directory is created on access."""
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path.resolve()

    @property
    def history_abs_path(self) -> Path:
        """Absolute history directory, created on access."""
        path = Path(self.history_dir)
        path.mkdir(parents=True, exist_ok=True)
        return path.resolve()


@lru_cache
def get_settings() -> Settings:
    """Settings are parsed once per process; tests call ``cache_clear()``."""
    return Settings()
