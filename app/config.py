"""Runtime configuration, read once from environment variables."""
import os
from functools import lru_cache
from typing import List, Optional

from pydantic import BaseModel, Field


def _normalized_database_url() -> str:
    url = os.getenv("DATABASE_URL", "sqlite:///./moderation.db")
    # Render/Heroku hand out postgres:// but SQLAlchemy needs postgresql://
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    database_url: str = Field(default="sqlite:///./moderation.db")
    log_level: str = Field(default="INFO", description="Python logging level name")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    notifications_enabled: bool = True
    smtp_host: Optional[str] = None
    smtp_port: int = Field(default=25, ge=1, le=65535)
    smtp_from: str = "no-reply@localhost"
    notifier_workers: int = Field(default=2, ge=1, le=32)

    soft_delete_grace_days: int = Field(default=30, ge=1)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    origins = os.getenv("CORS_ORIGINS")
    return Settings(
        database_url=_normalized_database_url(),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_file=os.getenv("LOG_FILE") or None,
        notifications_enabled=_env_bool("NOTIFICATIONS_ENABLED", True),
        smtp_host=os.getenv("SMTP_HOST") or None,
        smtp_port=int(os.getenv("SMTP_PORT", "25")),
        smtp_from=os.getenv("SMTP_FROM", "no-reply@localhost"),
        notifier_workers=int(os.getenv("NOTIFIER_WORKERS", "2")),
        soft_delete_grace_days=int(os.getenv("SOFT_DELETE_GRACE_DAYS", "30")),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()] if origins else ["*"],
    )
