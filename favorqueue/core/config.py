from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AnyUrl, Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    ENV: str = Field(default="dev", description="dev|staging|prod")
    APP_NAME: str = "Favor Queue API"
    APP_HOST: str = "0.0.0.0"
    APP_PORT: int = 8081

    # DB
    DB_URL: AnyUrl | str = "sqlite+aiosqlite:///./favorqueue.db"
    RUN_MIGRATIONS_ON_STARTUP: bool = True

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str | None = "favorqueue-debug.log"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    # Scheduling
    SCHEDULE_PRIORITY_PER_CYCLE: int = Field(default=3, ge=1)
    SCHEDULE_PERSONAL_PER_CYCLE: int = Field(default=1, ge=1)
    ETA_MINUTES_PER_TICKET: int = Field(default=5, ge=0)
    PENDING_EXPIRY_DAYS: int = Field(default=7, ge=1)

@lru_cache
def get_settings() -> Settings:
    return Settings()
