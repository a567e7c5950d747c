from __future__ import annotations

import os

APP_VERSION = "1.0.0"

_DEFAULT_SECRET_KEYS = ("change-me-in-production", "dev-secret-key-change-in-production")


class Settings:
    PROJECT_NAME: str = "FreeCore Workflow Engine"
    API_V1_PREFIX: str = "/api/v1"

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "production")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    POSTGRES_HOST: str = os.getenv("POSTGRES_HOST", "localhost")
    POSTGRES_PORT: str = os.getenv("POSTGRES_PORT", "5432")
    POSTGRES_DB: str = os.getenv("POSTGRES_DB", "freecore")
    POSTGRES_USER: str = os.getenv("POSTGRES_USER", "freecore")
    POSTGRES_PASSWORD: str = os.getenv("POSTGRES_PASSWORD", "freecore")
    # Full URL override, e.g. sqlite+aiosqlite:///./freecore.db for local runs
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")

    RESET_DB: bool = os.getenv("RESET_DB", "").lower() in ("1", "true", "yes")
    SEED_WORKFLOW_TEMPLATES: bool = os.getenv("SEED_WORKFLOW_TEMPLATES", "true").lower() in (
        "1",
        "true",
        "yes",
    )

    SECRET_KEY: str = os.getenv("SECRET_KEY", "change-me-in-production")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

    # Hard cap on automatic hops per operation, applied on top of the
    # per-template stage-count bound. 0 = stage count only.
    WORKFLOW_MAX_CASCADE_HOPS: int = int(os.getenv("WORKFLOW_MAX_CASCADE_HOPS", "0"))

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
