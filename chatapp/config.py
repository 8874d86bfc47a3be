from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Flat-file storage
    DATA_DIR: str = "data"
    USERS_FILE: str = "users.json"
    CHATS_FILE: str = "chats.json"
    RECENT_CHATS_FILE: str = "recentChats.json"

    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: list[str] = ["*"]

    @property
    def data_path(self) -> Path:
        return Path(self.DATA_DIR)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
