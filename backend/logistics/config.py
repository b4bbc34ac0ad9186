"""Application configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_BACKEND_DIR = Path(__file__).parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_url: str = "postgresql://localhost/logistics"

    # Pipeline
    test_level: int = 1  # number of steps to run; raise to run the full pipeline
    step_group_code: str = "PG_PROC"
    time_update_interval: float = 10.0
    step_timeout_seconds: float | None = None
    output_dir: Path = _BACKEND_DIR / "output"
    column_mapping_path: Path = _BACKEND_DIR / "column_mapping.yaml"

    # Dropbox
    dropbox_app_key: str = ""
    dropbox_app_secret: str = ""
    dropbox_refresh_token: str = ""
    dropbox_folder: str = "/송장"

    # KakaoWork
    kakaowork_app_key: str = ""
    kakaowork_chatrooms: dict[str, str] = {}  # notification type -> chat room id

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False

    @field_validator("test_level")
    @classmethod
    def _positive_test_level(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"test_level must be >= 1, got {v}")
        return v


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
