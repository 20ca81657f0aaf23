"""
config.py — Application & Document Store Configuration
District Data Console
"""

from pydantic_settings import BaseSettings
from pydantic import Field
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    # ── App ───────────────────────────────────────────────
    APP_NAME: str = "District Data Console"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = Field(default=False)
    API_PREFIX: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    # ── Document Store ────────────────────────────────────
    STORE_BACKEND: str = Field(default="firestore")     # firestore | memory
    FIRESTORE_PROJECT: Optional[str] = Field(default=None)
    FIRESTORE_DATABASE: Optional[str] = Field(default=None)
    BATCH_WRITE_LIMIT: int = 500

    # ── Location Catalog ──────────────────────────────────
    CATALOG_SOURCE: str = Field(default="store")         # store | seed
    CATALOG_PATH: Optional[str] = Field(default=None)

    # ── Calendar ──────────────────────────────────────────
    TIMEZONE: str = "Asia/Kolkata"

    # ── Security ──────────────────────────────────────────
    SECRET_KEY: str = Field(default="CHANGE_ME_IN_PRODUCTION")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # ── Root Account ──────────────────────────────────────
    MAIN_ADMIN_EMAIL: str = "mainadmin@demo.com"
    MAIN_ADMIN_PASSWORD: str = Field(default="CHANGE_ME_IN_PRODUCTION")
    MAIN_ADMIN_NAME: str = "Main Admin"

    # ── Uploads ───────────────────────────────────────────
    MAX_UPLOAD_MB: int = 25

    # ── Messaging ─────────────────────────────────────────
    MESSAGE_WEBHOOK_URL: Optional[str] = Field(default=None)   # unset → record only
    MESSAGE_WEBHOOK_TIMEOUT: float = 10.0
    MESSAGE_BATCH_SIZE: int = 1000
    MESSAGE_MAX_LENGTH: int = 1600
    MOBILE_COUNTRY_CODE: str = "91"

    # ── CORS ──────────────────────────────────────────────
    ALLOWED_ORIGINS: list = ["http://localhost:3000", "http://localhost:5173"]

    model_config = {"env_file": ".env", "case_sensitive": True}


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
