# -*- coding: utf-8 -*-
"""
Senkronizasyon İşleyicisi

Pull: watermark'tan sonraki değişiklikleri sayfalı döndürür.
Push: gelen satırları sırayla işler ve her satır için sonuç döndürür
(accepted / conflict / rejected).

Aynı (deviceId, tablo) için push'lar kısa bir kritik bölgede sıraya
girer; pull'lar salt okunurdur ve kilitlenmez.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .clock import now_ms
from .config import settings
from .models import Device, DeviceWatermark, PushReceipt, SyncLog, SyncRecord, generate_uuid
from .record_store import ServerRecordStore
from .schemas import (
    PullResponse,
    PullRow,
    PushItem,
    PushRequest,
    PushResponse,
    PushResult,
    check_device_id,
    format_validation_error,
)

logger = logging.getLogger(__name__)


class SyncRequestError(Exception):
    """İstek düzeyinde hata (HTTP yanıtına çevrilir)"""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR", status_code: int = 400):
        super().__init__(message)
        self.code = code
        self.status_code = status_code


def record_to_row(record: SyncRecord, device_id: Optional[str] = None) -> PullRow:
    """Kaydı kablo satırına çevir; localId yalnızca oluşturan cihaza gider."""
    local_id = None
    if device_id and record.origin_device_id == device_id:
        local_id = record.origin_local_id
    return PullRow(
        server_id=record.server_id,
        updated_at=record.updated_at,
        deleted_at=record.deleted_at,
        payload=record.payload or {},
        device_id=record.device_id,
        local_id=local_id,
    )


class SyncHandler:
    """
    Pull/push iş kuralları.

    Saat ve id üreteci dışarıdan verilebilir (testler için).
    """

    def __init__(self, clock: Callable[[], int] = now_ms,
                 id_factory: Callable[[], str] = generate_uuid,
                 tables: Optional[List[str]] = None):
        self.clock = clock
        self.id_factory = id_factory
        self.tables = list(tables or settings.SYNCED_TABLES)
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def lock_for(self, device_id: str, table: str) -> threading.Lock:
        """(deviceId, tablo) kilidi"""
        key = (device_id, table)
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def store(self, db: Session) -> ServerRecordStore:
        return ServerRecordStore(db, clock=self.clock, id_factory=self.id_factory)

    # ============================================================
    # DOĞRULAMA
    # ============================================================

    def check_table(self, table: str):
        if table not in self.tables:
            raise SyncRequestError(f"Bilinmeyen tablo: {table}")

    def check_device(self, device_id: str):
        try:
            check_device_id(device_id)
        except ValueError as e:
            raise SyncRequestError(str(e))

    def register_device(self, db: Session, device_id: str, user_id: str) -> Device:
        """Cihazı ilk senkronizasyonda kaydet; başka kullanıcıya aitse reddet."""
        device = db.query(Device).filter(Device.device_id == device_id).first()
        now = datetime.utcnow()

        if device is None:
            device = Device(device_id=device_id, user_id=user_id,
                            registered_at=now, last_seen_at=now)
            db.add(device)
            logger.info(f"Yeni cihaz kaydedildi: {device_id} (kullanıcı={user_id})")
        elif device.user_id != user_id:
            raise SyncRequestError(
                "Cihaz başka bir kullanıcıya kayıtlı", code="AUTH_EXPIRED", status_code=403
            )
        else:
            device.last_seen_at = now

        db.flush()
        return device

    # ============================================================
    # PULL
    # ============================================================

    def pull(self, db: Session, user_id: str, table: str, device_id: str,
             last_sync: int, limit: Optional[int] = None) -> PullResponse:
        """
        lastSync'ten sonraki değişiklikler.

        Aynı lastSync ile tekrar çağrı aynı sayfayı döndürür.
        """
        self.check_table(table)
        self.check_device(device_id)
        if last_sync < 0:
            raise SyncRequestError("lastSync negatif olamaz")

        page_size = min(limit or settings.DEFAULT_PULL_PAGE_SIZE, settings.MAX_PULL_PAGE_SIZE)

        self.register_device(db, device_id, user_id)
        self._confirm_watermark(db, device_id, table, last_sync)

        rows, new_watermark, has_more = self.store(db).find_changed_since(
            table, last_sync, page_size
        )
        db.commit()

        logger.debug(
            f"Pull {table} (cihaz={device_id}): {len(rows)} satır, "
            f"{last_sync} -> {new_watermark}"
        )
        return PullResponse(
            rows=[record_to_row(r, device_id) for r in rows],
            new_watermark=new_watermark,
            has_more=has_more,
        )

    def _confirm_watermark(self, db: Session, device_id: str, table: str, last_sync: int):
        # Cihaz lastSync'e kadar her şeyi işledi; tombstone temizliği buna bakar
        mark = db.query(DeviceWatermark).filter(
            DeviceWatermark.device_id == device_id,
            DeviceWatermark.table_name == table
        ).first()
        if mark is None:
            db.add(DeviceWatermark(device_id=device_id, table_name=table,
                                   server_watermark=last_sync))
        elif last_sync > mark.server_watermark:
            mark.server_watermark = last_sync

    # ============================================================
    # PUSH
    # ============================================================

    def push(self, db: Session, user_id: str, request: PushRequest) -> PushResponse:
        """
        Batch'i işle.

        Satırlar giriş sırasıyla işlenir; bir satırın sonucu diğerine bağlı
        değildir. Tüm batch tek bir transaction'da commit edilir.
        """
        table = request.table
        device_id = request.device_id
        self.check_table(table)
        self.check_device(device_id)
        # Sınırın üstündeki satırlar işlenmez; sonuçta yer almadıkları için
        # istemci onları bekleyen durumuna geri alır ve sonraki batch'te gönderir
        batch = request.data[:settings.MAX_PUSH_BATCH_SIZE]
        if len(batch) < len(request.data):
            logger.warning(
                f"Push {table} (cihaz={device_id}): {len(request.data)} satırın "
                f"yalnızca ilk {len(batch)} tanesi işlendi"
            )

        with self.lock_for(device_id, table):
            self.register_device(db, device_id, user_id)
            store = self.store(db)

            results = [
                self._process_item(db, store, table, device_id, user_id, raw)
                for raw in batch
            ]

            counts = {'accepted': 0, 'conflict': 0, 'rejected': 0}
            for result in results:
                counts[result.status] += 1
            db.add(SyncLog(device_id=device_id, action='push', table_name=table, details=counts))
            db.commit()

        logger.info(
            f"Push {table} (cihaz={device_id}): {counts['accepted']} kabul, "
            f"{counts['conflict']} çakışma, {counts['rejected']} red"
        )
        return PushResponse(results=results, server_time=self.clock())

    def _process_item(self, db: Session, store: ServerRecordStore, table: str,
                      device_id: str, user_id: str, raw: Any) -> PushResult:
        """Gelen tek değişikliği işle."""
        try:
            item = PushItem.model_validate(raw)
        except ValidationError as e:
            local_id = raw.get('localId') if isinstance(raw, dict) else None
            return PushResult(
                local_id=str(local_id or ''),
                status='rejected',
                reason=f"VALIDATION_ERROR: {format_validation_error(e)}",
            )

        receipt = db.query(PushReceipt).filter(
            PushReceipt.device_id == device_id,
            PushReceipt.table_name == table,
            PushReceipt.local_id == item.local_id
        ).first()

        # Aynı sürümün tekrarı: önceki sonucu döndür
        if (receipt is not None and receipt.client_updated_at == item.updated_at
                and receipt.op == item.op):
            logger.debug(f"Tekrar eden push: {table}/{item.local_id} -> {receipt.server_id}")
            return self._accepted(item, receipt.server_id, receipt.server_updated_at)

        record = None
        if item.server_id:
            record = store.get(table, item.server_id)
            if record is None:
                if item.op == 'delete':
                    return self._accepted(item, item.server_id, None)
                return self._rejected(item, f"Bilinmeyen serverId: {item.server_id}")
        elif receipt is not None:
            # Yanıtı kaybolmuş bir eklemenin sonraki sürümü
            record = store.get(table, receipt.server_id)

        if record is None:
            if item.op == 'delete':
                # Sunucuda hiç oluşmamış kayıt
                return self._accepted(item, None, None)
            try:
                record = store.upsert(table, item.payload, device_id,
                                      origin_local_id=item.local_id, owner_id=user_id)
            except ValueError as e:
                return self._rejected(item, f"VALIDATION_ERROR: {e}")
            self._save_receipt(db, receipt, device_id, table, item, record)
            return self._accepted(item, record.server_id, record.updated_at)

        if record.deleted_at is not None:
            if item.op == 'delete':
                return self._accepted(item, record.server_id, record.updated_at)
            return self._conflict(db, item, record, device_id)

        if not self._is_current(item, receipt, record):
            return self._conflict(db, item, record, device_id)

        if item.op == 'delete':
            store.soft_delete(record, device_id)
        else:
            try:
                store.upsert(table, item.payload, device_id, record=record)
            except ValueError as e:
                return self._rejected(item, f"VALIDATION_ERROR: {e}")

        self._save_receipt(db, receipt, device_id, table, item, record)
        return self._accepted(item, record.server_id, record.updated_at)

    def _is_current(self, item: PushItem, receipt: Optional[PushReceipt],
                    record: SyncRecord) -> bool:
        """İstemcinin temel aldığı sürüm sunucudaki güncel sürüm mü?"""
        if item.base_version is not None:
            return item.base_version == record.updated_at
        if receipt is not None and receipt.server_id == record.server_id:
            return receipt.server_updated_at == record.updated_at
        return item.updated_at > record.updated_at

    def _save_receipt(self, db: Session, receipt: Optional[PushReceipt], device_id: str,
                      table: str, item: PushItem, record: SyncRecord):
        if receipt is None:
            receipt = PushReceipt(device_id=device_id, table_name=table, local_id=item.local_id)
            db.add(receipt)
        receipt.server_id = record.server_id
        receipt.op = item.op
        receipt.client_updated_at = item.updated_at
        receipt.server_updated_at = record.updated_at
        db.flush()

    def _accepted(self, item: PushItem, server_id: Optional[str],
                  server_updated_at: Optional[int]) -> PushResult:
        return PushResult(
            local_id=item.local_id,
            status='accepted',
            server_id=server_id,
            server_updated_at=server_updated_at,
        )

    def _rejected(self, item: PushItem, reason: str) -> PushResult:
        logger.warning(f"Push reddedildi: {item.local_id} - {reason}")
        return PushResult(local_id=item.local_id, status='rejected', reason=reason)

    def _conflict(self, db: Session, item: PushItem, record: SyncRecord,
                  device_id: str) -> PushResult:
        db.add(SyncLog(
            device_id=device_id,
            action='conflict',
            server_id=record.server_id,
            table_name=record.table_name,
            details={
                'local_id': item.local_id,
                'client_updated_at': item.updated_at,
                'base_version': item.base_version,
                'server_updated_at': record.updated_at,
            }
        ))
        return PushResult(
            local_id=item.local_id,
            status='conflict',
            server_id=record.server_id,
            server_updated_at=record.updated_at,
            server_row=record_to_row(record, device_id),
        )

    # ============================================================
    # DURUM VE BAKIM
    # ============================================================

    def status(self, db: Session) -> Dict[str, Any]:
        return {
            'serverTime': self.clock(),
            'tables': self.store(db).latest_timestamps(self.tables),
        }

    def compact(self, db: Session, retention_days: Optional[int] = None) -> int:
        days = settings.TOMBSTONE_RETENTION_DAYS if retention_days is None else retention_days
        purged = self.store(db).compact_tombstones(self.tables, days * 24 * 3600 * 1000)
        db.commit()
        return purged
