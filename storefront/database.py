from __future__ import annotations
import logging
import os
import sys
from typing import Optional
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    DATABASE_URL: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.getenv("DATABASE_NAME", "zontropati")
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    JWT_SECRET: str = "dev-secret-change-me"
    JWT_EXPIRES_MIN: int = 60 * 24
    PAGE_SIZE: int = 6
    MAX_SESSIONS: int = 10_000
    SESSION_IDLE_MIN: int = 120
    LOG_LEVEL: str = "INFO"
    STORE_NAME: str = "ZontropaTi"
    ADMIN_EMAIL: Optional[str] = None
    ADMIN_PASSWORD: Optional[str] = None
    PORT: int = 8000

settings = Settings()

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None

async def get_db() -> AsyncIOMotorDatabase:
    global _client, _db
    if _db is None:
        _client = AsyncIOMotorClient(settings.DATABASE_URL)
        _db = _client[settings.DATABASE_NAME]
    return _db

def configure_logging(level: str | None = None) -> None:
    """Install a single stream handler on the package logger."""
    log = logging.getLogger("storefront")
    log.setLevel((level or settings.LOG_LEVEL).upper())
    if not log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s - %(name)s - [%(levelname)-7s] - %(message)s"
        ))
        log.addHandler(handler)
