# farmhub/config.py
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    database_url: str = Field(
        default=f"sqlite:///{(BASE_DIR / 'farms.db').as_posix()}",
        validation_alias="DATABASE_URL",
    )
    farm_directory: str = Field(default="sql", validation_alias="FARM_DIRECTORY")
    farm_fixture_path: Optional[str] = Field(
        default=None, validation_alias="FARM_FIXTURE_PATH"
    )
    record_api_url: Optional[str] = Field(
        default=None, validation_alias="RECORD_API_URL"
    )
    record_api_project_id: Optional[str] = Field(
        default=None, validation_alias="RECORD_API_PROJECT_ID"
    )
    record_api_key: Optional[str] = Field(
        default=None, validation_alias="RECORD_API_KEY"
    )
    record_api_timeout: float = Field(
        default=10.0, validation_alias="RECORD_API_TIMEOUT"
    )
    preference_store: str = Field(
        default="sqlite", validation_alias="PREFERENCE_STORE"
    )
    preference_store_path: Optional[str] = Field(
        default=None, validation_alias="PREFERENCE_STORE_PATH"
    )
    log_path: Optional[str] = Field(default=None, validation_alias="LOG_PATH")
    port: int = Field(default=8000, validation_alias="PORT")

    @field_validator("farm_directory", "preference_store", mode="after")
    @classmethod
    def normalize_provider(cls, value: str) -> str:
        return value.lower() if value else value


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig()
