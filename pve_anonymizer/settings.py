from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import DEFAULT_HASH_SALT


class Settings(BaseSettings):
    """Anonymizer configuration loaded from ANONYMIZER_* environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="ANONYMIZER_", extra="ignore"
    )

    log_level: str = "INFO"

    hash_salt: str = DEFAULT_HASH_SALT
    max_processing_time_ms: int = Field(default=5000, gt=0)
    enable_pseudonyms: bool = True
    preserve_structure: bool = True

    mapping_db_path: str = "mappings.db"
    api_key: str | None = None
    cors_origins: str = "*"


@lru_cache
def get_settings() -> Settings:
    return Settings()
