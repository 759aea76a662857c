# -*- coding: utf-8 -*-
"""
Veritabanı bağlantı yönetimi
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from .config import settings

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

if _is_sqlite:
    # Tek dosya; FastAPI thread havuzundan erişilir
    engine = create_engine(
        settings.DATABASE_URL,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
    )
else:
    engine = create_engine(
        settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency injection için veritabanı session'ı."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
