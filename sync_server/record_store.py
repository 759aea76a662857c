# -*- coding: utf-8 -*-
"""
Server Record Store

Yetkili kayıt deposu. Her kabul edilen yazma updated_at'i tablo saatiyle
damgalar ve yazan cihazı saklar. Silme kaydı tutar (tombstone).
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from .clock import next_timestamp, now_ms
from .models import Device, DeviceWatermark, PushReceipt, SyncLog, SyncRecord, generate_uuid
from .schemas import validate_payload

logger = logging.getLogger(__name__)


class ServerRecordStore:
    """Tek bir DB session'ı üzerinde çalışan kayıt deposu."""

    def __init__(self, db: Session, clock: Callable[[], int] = now_ms,
                 id_factory: Callable[[], str] = generate_uuid):
        self.db = db
        self.clock = clock
        self.id_factory = id_factory

    def get(self, table: str, server_id: str) -> Optional[SyncRecord]:
        return self.db.query(SyncRecord).filter(
            SyncRecord.table_name == table,
            SyncRecord.server_id == server_id
        ).first()

    def upsert(self, table: str, payload: dict, device_id: str,
               record: Optional[SyncRecord] = None,
               origin_local_id: Optional[str] = None,
               owner_id: Optional[str] = None) -> SyncRecord:
        """
        Kaydı ekle veya güncelle.

        Raises:
            ValueError: Payload tablo şemasına uymuyorsa
        """
        validate_payload(table, payload)
        timestamp = next_timestamp(self.db, table, self.clock)

        if record is None:
            record = SyncRecord(
                server_id=self.id_factory(),
                table_name=table,
                payload=dict(payload),
                updated_at=timestamp,
                device_id=device_id,
                origin_device_id=device_id,
                origin_local_id=origin_local_id,
                owner_id=owner_id,
            )
            self.db.add(record)
        else:
            record.payload = dict(payload)
            record.updated_at = timestamp
            record.device_id = device_id

        self.db.flush()
        return record

    def soft_delete(self, record: SyncRecord, device_id: str) -> SyncRecord:
        """Kaydı tombstone yap; updated_at ve deleted_at aynı değeri alır."""
        timestamp = next_timestamp(self.db, record.table_name, self.clock)
        record.updated_at = timestamp
        record.deleted_at = timestamp
        record.device_id = device_id
        self.db.flush()
        return record

    def find_changed_since(self, table: str, watermark: int,
                           page_size: int) -> Tuple[List[SyncRecord], int, bool]:
        """
        watermark'tan sonra değişen kayıtlar (tombstone'lar dahil).

        Returns:
            (kayıtlar, sonraki watermark, daha fazla var mı)
        """
        rows = self.db.query(SyncRecord).filter(
            SyncRecord.table_name == table,
            or_(SyncRecord.updated_at > watermark, SyncRecord.deleted_at > watermark)
        ).order_by(
            SyncRecord.updated_at.asc(), SyncRecord.server_id.asc()
        ).limit(page_size + 1).all()

        has_more = len(rows) > page_size
        rows = rows[:page_size]
        next_watermark = rows[-1].updated_at if rows else watermark
        return rows, next_watermark, has_more

    def latest_timestamps(self, tables: List[str]) -> Dict[str, int]:
        """Tablo bazında en son updated_at."""
        result = {table: 0 for table in tables}
        rows = self.db.query(
            SyncRecord.table_name, func.max(SyncRecord.updated_at)
        ).filter(SyncRecord.table_name.in_(tables)).group_by(SyncRecord.table_name).all()
        for table, latest in rows:
            result[table] = latest or 0
        return result

    def compact_tombstones(self, tables: List[str], retention_ms: int) -> int:
        """
        Tüm cihazların watermark'ının geçtiği ve saklama süresini doldurmuş
        tombstone'ları kalıcı olarak sil.

        Returns:
            Silinen kayıt sayısı
        """
        device_ids = [d.device_id for d in self.db.query(Device.device_id).all()]
        retention_cutoff = self.clock() - retention_ms
        purged = 0

        for table in tables:
            marks = {
                w.device_id: w.server_watermark
                for w in self.db.query(DeviceWatermark).filter(
                    DeviceWatermark.table_name == table
                ).all()
            }
            floor = min((marks.get(d, 0) for d in device_ids), default=retention_cutoff)
            limit = min(floor, retention_cutoff)

            doomed = [r.server_id for r in self.db.query(SyncRecord.server_id).filter(
                SyncRecord.table_name == table,
                SyncRecord.deleted_at.isnot(None),
                SyncRecord.deleted_at <= limit
            ).all()]
            if not doomed:
                continue

            self.db.query(PushReceipt).filter(
                PushReceipt.server_id.in_(doomed)
            ).delete(synchronize_session=False)
            self.db.query(SyncRecord).filter(
                SyncRecord.server_id.in_(doomed)
            ).delete(synchronize_session=False)
            self.db.add(SyncLog(
                action='compact',
                table_name=table,
                details={'purged': len(doomed), 'limit': limit}
            ))
            purged += len(doomed)
            logger.info(f"Tombstone temizliği ({table}): {len(doomed)} kayıt, sınır={limit}")

        self.db.flush()
        return purged
