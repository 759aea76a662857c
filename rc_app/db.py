# -*- coding: utf-8 -*-
"""
Yerel veritabanı

SQLite bağlantı yönetimi ve senkronizasyon tablolarının kurulumu.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

DOCS_DIR = os.path.join(os.path.expanduser("~"), "Documents", "RcObra")
DB_PATH = os.path.join(DOCS_DIR, "data.db")

# Arka plan senkronizasyonu ile UI aynı dosyaya yazar
BUSY_TIMEOUT_SECONDS = 30

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sync_rows (
        table_name TEXT NOT NULL,
        local_id TEXT NOT NULL,
        server_id TEXT,
        payload TEXT NOT NULL DEFAULT '{}',
        updated_at INTEGER NOT NULL,
        server_last_modified INTEGER,
        sync_status TEXT NOT NULL,
        prior_status TEXT,
        inflight_updated_at INTEGER,
        device_id TEXT,
        failure_count INTEGER NOT NULL DEFAULT 0,
        quarantined INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        was_sent INTEGER NOT NULL DEFAULT 0,
        PRIMARY KEY (table_name, local_id)
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_sync_rows_server_id
    ON sync_rows(table_name, server_id)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_sync_rows_pending
    ON sync_rows(table_name, sync_status, updated_at)
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_watermarks (
        device_id TEXT NOT NULL,
        table_name TEXT NOT NULL,
        last_pulled_at INTEGER NOT NULL DEFAULT 0,
        updated_at TEXT,
        PRIMARY KEY (device_id, table_name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_config (
        key TEXT PRIMARY KEY,
        value TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sync_conflicts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        table_name VARCHAR(100) NOT NULL,
        local_id VARCHAR(64) NOT NULL,
        server_id VARCHAR(36),
        strategy VARCHAR(50),
        resolution VARCHAR(50),
        reason TEXT,
        local_data TEXT,
        remote_data TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
]


def get_connection(db_path: Optional[str] = None) -> sqlite3.Connection:
    """Veritabanı bağlantısı al."""
    path = db_path or DB_PATH
    if path == DB_PATH:
        os.makedirs(DOCS_DIR, exist_ok=True)
    conn = sqlite3.connect(path, timeout=BUSY_TIMEOUT_SECONDS)
    conn.row_factory = sqlite3.Row
    pragmas = [
        "PRAGMA journal_mode=WAL",
        "PRAGMA synchronous=NORMAL",
        "PRAGMA temp_store=MEMORY",
        "PRAGMA wal_autocheckpoint=1000",
    ]
    for pragma in pragmas:
        try:
            conn.execute(pragma)
        except sqlite3.DatabaseError as e:
            logger.debug(f"Pragma uygulanamadı ({pragma}): {e}")
    return conn


@contextmanager
def transaction(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """
    Yazma kilidiyle açılan tek bir işlem.

    Blok hatasız biterse COMMIT, aksi halde ROLLBACK yapılır ve hata
    yukarı iletilir.
    """
    conn = get_connection(db_path)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except sqlite3.Error as e:
            logger.error(f"Veritabanı işlemi geri alındı: {e}")
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


def initialize_database(db_path: Optional[str] = None):
    """Senkronizasyon tablolarını oluştur."""
    conn = get_connection(db_path)
    try:
        with conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.debug(f"Veritabanı hazır: {db_path or DB_PATH}")
    finally:
        conn.close()
