from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Compass API"
    ENV: str = Field(default=os.getenv("ENV", "local"))
    DEBUG: bool = Field(default=os.getenv("DEBUG", "false").lower() == "true")
    LOG_FORMAT: str = Field(default=os.getenv("LOG_FORMAT", "console"))  # "console" | "json"
    LOG_LEVEL: str = Field(default=os.getenv("LOG_LEVEL", "INFO"))

    # Flow playback
    MESSAGE_REVEAL_DELAY_S: float = 1.5
    AUTO_ADVANCE_PAUSE_S: float = 1.5
    API_REVEAL_DELAY_S: float = 0.0  # HTTP callers get messages in batches

    # Input limits
    MAX_INPUT_LENGTH: int = 1000
    SMS_MAX_LENGTH: int = 160

    # Flow resources & storage
    FLOW_DIRS: List[str] = Field(default_factory=list)
    STORAGE_DIR: Optional[str] = None  # unset -> in-memory store
    STORAGE_RETRIES: int = 1

    # Sessions
    SESSION_IDLE_TIMEOUT_S: float = 86400.0
    CLEAR_COMPLETED_SESSIONS: bool = True

    # Safe defaults shown on every failure path
    EMERGENCY_NUMBER: str = "911"
    REGION: str = "US"

    class Config:
        env_file = (".env.backend", ".env.local", ".env")
        env_file_encoding = "utf-8"
        case_sensitive = True
        extra = "ignore"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Cached Settings instance. Call anywhere.
    """
    return Settings()
