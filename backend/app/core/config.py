# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# This keeps deployment flexible without hardcoding secrets.

import json
from typing import Annotated, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./tracking.db or a Postgres URL.
    # Needed by SQLAlchemy to connect to the event store.
    DATABASE_URL: str

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    # Create tables on startup when no external migration step owns the schema.
    AUTO_CREATE_TABLES: bool = True

    # Tracking endpoint guards. A batch above these limits is rejected whole.
    TRACK_MAX_BATCH_EVENTS: int = Field(default=500, gt=0)
    TRACK_MAX_BODY_BYTES: int = Field(default=1_048_576, gt=0)

    # The tracking snippet runs on third-party pages, so the endpoint is
    # CORS-open by default. Comma separated when set from the environment.
    CORS_ALLOW_ORIGINS: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["*"])

    # Upper bound on funnel_step rows read by one sessionization pass.
    FUNNEL_PATHS_MAX_EVENTS: int = Field(default=200_000, gt=0)

    # Level for the structured JSON loggers.
    LOG_LEVEL: str = "INFO"

    @field_validator("CORS_ALLOW_ORIGINS", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            if value.strip().startswith("["):
                return safe_json_loads(value)
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_log_level(cls, value: str) -> str:
        return (value or "INFO").strip().upper()


# Instantiate a single settings object for app-wide import.
# Any module can just `from app.core.config import settings`.
settings = Settings()
