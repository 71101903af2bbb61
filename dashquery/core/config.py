from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DATABASE_PATH: str = ":memory:"
    DUCKDB_THREADS: Optional[int] = None
    DUCKDB_MEMORY_LIMIT: Optional[str] = None  # e.g. "2GB"

    # Row caps per call site
    PREVIEW_DEFAULT_ROWS: int = 1_000
    PREVIEW_MAX_ROWS: int = 10_000
    STREAM_MAX_ROWS: int = 1_000

    # Result cache stays dormant unless switched on
    QUERY_CACHE_ENABLED: bool = False
    CACHE_TTL: int = 300

    # Parse statements with sqlglot instead of the keyword denylist
    SQL_STRICT_GUARD: bool = False

    LOG_LEVEL: str = "INFO"

    # This tells Pydantic to read from the .env file
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


# Create a single instance of the settings to use everywhere
settings = Settings()
