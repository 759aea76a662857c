# -*- coding: utf-8 -*-
"""
Sync Server Configuration
"""

from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite:///./rc_sync.db"

    # JWT (token üretimi bu servisin işi değil, sadece doğrulanır)
    SECRET_KEY: str = "rc-obra-sync-secret-key-change-this"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60  # 1 saat

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Sync
    SYNCED_TABLES: List[str] = ['clients', 'budgets', 'contracts', 'financial']
    DEFAULT_PULL_PAGE_SIZE: int = 100
    MAX_PULL_PAGE_SIZE: int = 500
    MAX_PUSH_BATCH_SIZE: int = 500
    TOMBSTONE_RETENTION_DAYS: int = 30

    class Config:
        env_file = ".env"


settings = Settings()
