"""Application configuration utilities."""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    LOG_LEVEL: str = "INFO"
    TZ: str = "UTC"

    STORE_BACKEND: str = "memory"
    DATABASE_URL: str = ""
    DATABASE_NAME: str = "staffsched"

    SMTP_SERVER: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str | None = None
    SMTP_PASSWORD: str | None = None
    SMTP_TIMEOUT: int = 30
    SMTP_MAX_RETRIES: int = 3
    MAIL_SENDER: str = "noreply@example.com"
    MAIL_SENDER_NAME: str = "Task Management System"

    SCHEDULE_ID_RETRIES: int = 3
    STRICT_STATUS_TRANSITIONS: bool = False

    @property
    def smtp_configured(self) -> bool:
        return bool(self.SMTP_SERVER and self.SMTP_USERNAME and self.SMTP_PASSWORD)


@lru_cache
def get_settings() -> Settings:
    return Settings(
        LOG_LEVEL=os.getenv("LOG_LEVEL", "INFO"),
        TZ=os.getenv("TZ", "UTC"),
        STORE_BACKEND=os.getenv("STORE_BACKEND", "memory"),
        DATABASE_URL=os.getenv("DATABASE_URL", ""),
        DATABASE_NAME=os.getenv("DATABASE_NAME", "staffsched"),
        SMTP_SERVER=os.getenv("SMTP_SERVER", ""),
        SMTP_PORT=int(os.getenv("SMTP_PORT", "587")),
        SMTP_USERNAME=os.getenv("SMTP_USERNAME"),
        SMTP_PASSWORD=os.getenv("SMTP_PASSWORD"),
        SMTP_TIMEOUT=int(os.getenv("SMTP_TIMEOUT", "30")),
        SMTP_MAX_RETRIES=int(os.getenv("SMTP_MAX_RETRIES", "3")),
        MAIL_SENDER=os.getenv("MAIL_SENDER", os.getenv("SMTP_USERNAME") or "noreply@example.com"),
        MAIL_SENDER_NAME=os.getenv("MAIL_SENDER_NAME", "Task Management System"),
        SCHEDULE_ID_RETRIES=int(os.getenv("SCHEDULE_ID_RETRIES", "3")),
        STRICT_STATUS_TRANSITIONS=_flag("STRICT_STATUS_TRANSITIONS"),
    )


settings = get_settings()
