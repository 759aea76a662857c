# -*- coding: utf-8 -*-
"""
Sync Server Database Models

Sunucu kayıt deposu: kayıtlar, tombstone'lar, idempotency makbuzları,
cihazlar ve tablo saatleri.

Zaman damgaları epoch milisaniyesi (BigInteger) olarak saklanır.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    BigInteger, Column, DateTime, Index, Integer, JSON, String, UniqueConstraint
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


def generate_uuid() -> str:
    return str(uuid.uuid4())


# ============================================================
# CİHAZLAR
# ============================================================

class Device(Base):
    """Senkronize olan cihazlar (ilk senkronizasyonda kaydedilir)"""
    __tablename__ = "devices"

    device_id = Column(String(36), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    registered_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime, nullable=True)


class DeviceWatermark(Base):
    """Cihazın tablo bazında onayladığı son sunucu zaman damgası"""
    __tablename__ = "device_watermarks"

    device_id = Column(String(36), primary_key=True)
    table_name = Column(String(50), primary_key=True)
    server_watermark = Column(BigInteger, default=0, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


# ============================================================
# SYNC TABLES
# ============================================================

class SyncRecord(Base):
    """
    Tüm senkronize kayıtlar.

    Silinen kayıt tombstone olarak kalır (deleted_at dolu). Silmede
    updated_at ve deleted_at aynı zaman damgasını alır.
    """
    __tablename__ = "sync_records"

    server_id = Column(String(36), primary_key=True, default=generate_uuid)
    table_name = Column(String(50), nullable=False, index=True)

    # Veri
    payload = Column(JSON, nullable=False, default=dict)

    # Sunucu zaman damgaları (tablo içinde kesin artan)
    updated_at = Column(BigInteger, nullable=False)
    deleted_at = Column(BigInteger, nullable=True)

    # Device tracking
    device_id = Column(String(36), nullable=True)          # Son yazan cihaz
    origin_device_id = Column(String(36), nullable=True)   # Kaydı oluşturan cihaz
    origin_local_id = Column(String(64), nullable=True)    # Oluşturan cihazdaki localId
    owner_id = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint('table_name', 'updated_at', name='uq_sync_records_table_updated'),
        Index('idx_sync_records_table_deleted', 'table_name', 'deleted_at'),
    )


class PushReceipt(Base):
    """
    Idempotency indeksi: (device_id, table_name, local_id) için
    kabul edilen son sürüm.
    """
    __tablename__ = "push_receipts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(36), nullable=False)
    table_name = Column(String(50), nullable=False)
    local_id = Column(String(64), nullable=False)
    server_id = Column(String(36), nullable=False, index=True)
    op = Column(String(10), nullable=False)
    client_updated_at = Column(BigInteger, nullable=False)
    server_updated_at = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('device_id', 'table_name', 'local_id', name='uq_push_receipts_key'),
    )


class TableClock(Base):
    """Tablo başına son verilen sunucu zaman damgası"""
    __tablename__ = "table_clocks"

    table_name = Column(String(50), primary_key=True)
    last_timestamp = Column(BigInteger, default=0, nullable=False)


class SyncLog(Base):
    """Senkronizasyon log'ları (debugging için)"""
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String(36), nullable=True, index=True)
    action = Column(String(50))  # push, conflict, compact
    server_id = Column(String(36), nullable=True)
    table_name = Column(String(50), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
