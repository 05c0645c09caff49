"""
Service settings loaded from environment variables (or a .env file).
"""

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    db_name: str = Field(
        default="contacts.db",
        description="Path of the SQLite database holding the Contact table",
    )
    log_level: str = Field(
        default="INFO",
        description="Root log level: DEBUG, INFO, WARNING, ERROR",
    )
    serialize_writes: bool = Field(
        default=True,
        description="Run each identify request's match-then-write in one immediate transaction",
    )
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    @field_validator("log_level", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid LOG_LEVEL: {v}")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
