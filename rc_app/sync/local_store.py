# -*- coding: utf-8 -*-
"""
Local Record Store

Alan satırlarını senkronizasyon metadatası ile birlikte saklar
(sync_rows tablosu). Tüm yazmalar satır bazında atomiktir: her işlem
tek bir BEGIN IMMEDIATE ... COMMIT içinde çalışır.

Durum geçişleri:
    put      : CLEAN / PENDING_UPSERT -> PENDING_UPSERT
               IN_FLIGHT -> IN_FLIGHT (prior = PENDING_UPSERT)
    delete   : sunucuya hiç gitmemiş satır -> fiziksel silme
               diğerleri -> PENDING_DELETE (IN_FLIGHT ise prior)
    push ack : gönderilen sürüm değişmediyse -> CLEAN
               arada değiştiyse -> prior durum
"""

import json
import logging
import sqlite3
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..db import get_connection, transaction
from .conflict_handler import ConflictDecision, ConflictResolver, Resolution
from .models import (
    ApplyAction,
    ApplyResult,
    DomainRow,
    PENDING_STATUSES,
    ServerRow,
    SyncOperation,
    SyncStatus,
    now_ms,
)

logger = logging.getLogger(__name__)


class LocalStoreError(Exception):
    """Yerel depo hatası"""
    pass


class RowNotFoundError(LocalStoreError):
    """Satır bulunamadı"""
    pass


class RowLockedError(LocalStoreError):
    """Silinmeyi bekleyen satır değiştirilemez"""
    pass


def _dump(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, sort_keys=True)


def _row_to_domain(row: sqlite3.Row) -> DomainRow:
    return DomainRow(
        table=row['table_name'],
        local_id=row['local_id'],
        payload=json.loads(row['payload']),
        updated_at=row['updated_at'],
        sync_status=SyncStatus(row['sync_status']),
        server_id=row['server_id'],
        server_last_modified=row['server_last_modified'],
        prior_status=SyncStatus(row['prior_status']) if row['prior_status'] else None,
        inflight_updated_at=row['inflight_updated_at'],
        device_id=row['device_id'],
        failure_count=row['failure_count'],
        quarantined=bool(row['quarantined']),
        last_error=row['last_error'],
        was_sent=bool(row['was_sent']),
    )


class LocalRecordStore:
    """
    Yerel kayıt deposu.

    Alan modülleri put/delete ile yazar; Pull Engine apply_server_row,
    Push Engine select_pending / mark_in_flight / acknowledge kullanır.
    """

    def __init__(
        self,
        db_path: Optional[str],
        device_id: str,
        resolver: Optional[ConflictResolver] = None,
        clock: Callable[[], int] = now_ms
    ):
        """
        Args:
            db_path: SQLite veritabanı yolu
            device_id: Bu cihazın kimliği
            resolver: Çakışma çözücü (varsayılan server-wins)
            clock: Milisaniye saat fonksiyonu
        """
        self.db_path = db_path
        self.device_id = device_id
        self.resolver = resolver or ConflictResolver()
        self.clock = clock

    # ============================================================
    # OKUMA
    # ============================================================

    def _fetch(self, conn: sqlite3.Connection, table: str, local_id: str) -> Optional[DomainRow]:
        row = conn.execute(
            "SELECT * FROM sync_rows WHERE table_name = ? AND local_id = ?",
            (table, local_id)
        ).fetchone()
        return _row_to_domain(row) if row else None

    def _fetch_by_server_id(self, conn: sqlite3.Connection, table: str,
                            server_id: str) -> Optional[DomainRow]:
        row = conn.execute(
            "SELECT * FROM sync_rows WHERE table_name = ? AND server_id = ?",
            (table, server_id)
        ).fetchone()
        return _row_to_domain(row) if row else None

    def get(self, table: str, local_id: str) -> Optional[DomainRow]:
        """Satırı local_id ile al."""
        conn = get_connection(self.db_path)
        try:
            return self._fetch(conn, table, local_id)
        finally:
            conn.close()

    def get_by_server_id(self, table: str, server_id: str) -> Optional[DomainRow]:
        """Satırı server_id ile al."""
        conn = get_connection(self.db_path)
        try:
            return self._fetch_by_server_id(conn, table, server_id)
        finally:
            conn.close()

    def list_rows(self, table: str, include_deleted: bool = False) -> List[DomainRow]:
        """Tablodaki satırlar (varsayılan olarak silinmeyi bekleyenler hariç)."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM sync_rows WHERE table_name = ? ORDER BY updated_at, local_id",
                (table,)
            ).fetchall()
        finally:
            conn.close()

        result = [_row_to_domain(r) for r in rows]
        if not include_deleted:
            result = [r for r in result if r.pending_operation != SyncOperation.DELETE]
        return result

    def count_pending(self, table: Optional[str] = None) -> int:
        """Gönderilmeyi bekleyen satır sayısı."""
        sql = """
            SELECT COUNT(*) FROM sync_rows
            WHERE sync_status IN (?, ?, ?)
        """
        params: List[Any] = [
            SyncStatus.PENDING_UPSERT.value,
            SyncStatus.PENDING_DELETE.value,
            SyncStatus.IN_FLIGHT.value,
        ]
        if table:
            sql += " AND table_name = ?"
            params.append(table)
        conn = get_connection(self.db_path)
        try:
            return conn.execute(sql, params).fetchone()[0]
        finally:
            conn.close()

    # ============================================================
    # ALAN MODÜLLERİNİN YAZMALARI
    # ============================================================

    def put(self, table: str, payload: Dict[str, Any],
            local_id: Optional[str] = None) -> DomainRow:
        """
        Satırı ekle veya güncelle; satır PENDING_UPSERT olur.

        updated_at her yazmada kesin artar (max(saat, önceki + 1)).

        Raises:
            RowLockedError: Satır silinmeyi bekliyorsa
        """
        if not isinstance(payload, dict):
            raise TypeError("payload dict olmalı")
        local_id = local_id or str(uuid.uuid4())
        data = _dump(payload)

        with transaction(self.db_path) as conn:
            existing = self._fetch(conn, table, local_id)

            if existing is None:
                conn.execute("""
                    INSERT INTO sync_rows
                    (table_name, local_id, payload, updated_at, sync_status, device_id)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (table, local_id, data, self.clock(),
                      SyncStatus.PENDING_UPSERT.value, self.device_id))
            else:
                if existing.pending_operation == SyncOperation.DELETE:
                    raise RowLockedError(f"Silinmeyi bekleyen satır değiştirilemez: {table}/{local_id}")

                if existing.sync_status == SyncStatus.IN_FLIGHT:
                    status = SyncStatus.IN_FLIGHT
                    prior = SyncStatus.PENDING_UPSERT.value
                else:
                    status = SyncStatus.PENDING_UPSERT
                    prior = None

                conn.execute("""
                    UPDATE sync_rows
                    SET payload = ?, updated_at = ?, sync_status = ?, prior_status = ?,
                        device_id = ?, failure_count = 0, quarantined = 0, last_error = NULL
                    WHERE table_name = ? AND local_id = ?
                """, (data, max(self.clock(), existing.updated_at + 1), status.value,
                      prior, self.device_id, table, local_id))

            row = self._fetch(conn, table, local_id)

        logger.debug(f"Yerel yazma: {table}/{local_id} ({row.sync_status.value})")
        return row

    def delete(self, table: str, local_id: str) -> bool:
        """
        Satırı sil.

        Sunucuya hiç gönderilmemiş satır fiziksel olarak silinir, diğerleri
        PENDING_DELETE olarak işaretlenir.

        Returns:
            Satır fiziksel olarak silindiyse True
        """
        with transaction(self.db_path) as conn:
            existing = self._fetch(conn, table, local_id)
            if existing is None:
                raise RowNotFoundError(f"Satır bulunamadı: {table}/{local_id}")

            if existing.pending_operation == SyncOperation.DELETE:
                return False

            if (existing.server_id is None and not existing.was_sent
                    and existing.sync_status != SyncStatus.IN_FLIGHT):
                conn.execute(
                    "DELETE FROM sync_rows WHERE table_name = ? AND local_id = ?",
                    (table, local_id)
                )
                logger.debug(f"Gönderilmemiş satır silindi: {table}/{local_id}")
                return True

            if existing.sync_status == SyncStatus.IN_FLIGHT:
                status = SyncStatus.IN_FLIGHT
                prior = SyncStatus.PENDING_DELETE.value
            else:
                status = SyncStatus.PENDING_DELETE
                prior = None

            conn.execute("""
                UPDATE sync_rows
                SET updated_at = ?, sync_status = ?, prior_status = ?, device_id = ?,
                    failure_count = 0, quarantined = 0, last_error = NULL
                WHERE table_name = ? AND local_id = ?
            """, (max(self.clock(), existing.updated_at + 1), status.value, prior,
                  self.device_id, table, local_id))

        logger.debug(f"Silme işaretlendi: {table}/{local_id}")
        return False

    # ============================================================
    # PUSH ENGINE
    # ============================================================

    def select_pending(self, table: str, limit: int,
                       exclude: Iterable[str] = ()) -> List[DomainRow]:
        """
        Bekleyen satırları en eskiden yeniye seç.

        Karantinadaki satırlar ve exclude içindeki local_id'ler atlanır.
        Dönen listede eklemeler/güncellemeler silmelerden önce gelir.
        """
        excluded = set(exclude)
        selected: List[DomainRow] = []

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT * FROM sync_rows
                WHERE table_name = ? AND sync_status IN (?, ?) AND quarantined = 0
                ORDER BY updated_at, local_id
            """, (table, SyncStatus.PENDING_UPSERT.value, SyncStatus.PENDING_DELETE.value))
            for row in cursor:
                if row['local_id'] in excluded:
                    continue
                selected.append(_row_to_domain(row))
                if len(selected) >= limit:
                    break
        finally:
            conn.close()

        upserts = [r for r in selected if r.sync_status == SyncStatus.PENDING_UPSERT]
        deletes = [r for r in selected if r.sync_status == SyncStatus.PENDING_DELETE]
        return upserts + deletes

    def mark_in_flight(self, table: str, local_ids: Iterable[str]) -> List[DomainRow]:
        """
        Satırları IN_FLIGHT yap.

        Returns:
            Gönderilecek sürümlerin anlık görüntüleri (sırası korunur)
        """
        snapshots = []
        with transaction(self.db_path) as conn:
            for local_id in local_ids:
                row = self._fetch(conn, table, local_id)
                if row is None or row.sync_status not in PENDING_STATUSES:
                    continue
                conn.execute("""
                    UPDATE sync_rows
                    SET sync_status = ?, prior_status = ?, inflight_updated_at = ?, was_sent = 1
                    WHERE table_name = ? AND local_id = ?
                """, (SyncStatus.IN_FLIGHT.value, row.sync_status.value, row.updated_at,
                      table, local_id))
                snapshots.append(self._fetch(conn, table, local_id))
        return snapshots

    def revert_in_flight(self, table: str, local_ids: Iterable[str]) -> int:
        """IN_FLIGHT satırları önceki bekleyen durumlarına döndür."""
        reverted = 0
        with transaction(self.db_path) as conn:
            for local_id in local_ids:
                cur = conn.execute("""
                    UPDATE sync_rows
                    SET sync_status = COALESCE(prior_status, ?), prior_status = NULL,
                        inflight_updated_at = NULL
                    WHERE table_name = ? AND local_id = ? AND sync_status = ?
                """, (SyncStatus.PENDING_UPSERT.value, table, local_id,
                      SyncStatus.IN_FLIGHT.value))
                reverted += cur.rowcount
        if reverted:
            logger.debug(f"{reverted} satır IN_FLIGHT'tan geri alındı ({table})")
        return reverted

    def recover_in_flight(self) -> int:
        """Başlangıçta yarım kalmış gönderimleri geri al."""
        with transaction(self.db_path) as conn:
            cur = conn.execute("""
                UPDATE sync_rows
                SET sync_status = COALESCE(prior_status, ?), prior_status = NULL,
                    inflight_updated_at = NULL
                WHERE sync_status = ?
            """, (SyncStatus.PENDING_UPSERT.value, SyncStatus.IN_FLIGHT.value))
            recovered = cur.rowcount
        if recovered:
            logger.info(f"Yarım kalmış {recovered} gönderim bekleyen duruma alındı")
        return recovered

    def acknowledge(self, table: str, local_id: str, server_id: Optional[str],
                    server_updated_at: Optional[int], sent_updated_at: int,
                    op: SyncOperation) -> str:
        """
        Sunucunun kabul ettiği sürümü işle.

        Satır gönderildiğinden beri değişmediyse CLEAN olur; değiştiyse
        server_id ve server_last_modified yazılır ve satır bekleyen
        durumuna döner. Kabul edilen silmede satır fiziksel olarak silinir.

        Returns:
            'clean', 'pending', 'removed' veya 'missing'
        """
        with transaction(self.db_path) as conn:
            row = self._fetch(conn, table, local_id)
            if row is None:
                logger.warning(f"Onaylanan satır yerelde yok: {table}/{local_id}")
                return 'missing'

            if row.sync_status != SyncStatus.IN_FLIGHT:
                logger.warning(f"IN_FLIGHT olmayan satır için onay yok sayıldı: {table}/{local_id}")
                return 'pending' if row.is_pending else 'clean'

            if op == SyncOperation.DELETE:
                conn.execute(
                    "DELETE FROM sync_rows WHERE table_name = ? AND local_id = ?",
                    (table, local_id)
                )
                return 'removed'

            if not server_id:
                raise LocalStoreError(f"Kabul edilen eklemede serverId yok: {table}/{local_id}")

            self._release_server_id(conn, table, server_id, local_id)

            if row.updated_at == sent_updated_at:
                conn.execute("""
                    UPDATE sync_rows
                    SET sync_status = ?, prior_status = NULL, inflight_updated_at = NULL,
                        server_id = ?, server_last_modified = ?, failure_count = 0,
                        last_error = NULL
                    WHERE table_name = ? AND local_id = ?
                """, (SyncStatus.CLEAN.value, server_id, server_updated_at, table, local_id))
                return 'clean'

            # Gönderimden sonra yerel değişiklik oldu
            status = row.prior_status or SyncStatus.PENDING_UPSERT
            conn.execute("""
                UPDATE sync_rows
                SET sync_status = ?, prior_status = NULL, inflight_updated_at = NULL,
                    server_id = ?, server_last_modified = ?
                WHERE table_name = ? AND local_id = ?
            """, (status.value, server_id, server_updated_at, table, local_id))
            logger.debug(f"Uçuştayken değişen satır bekleyen kaldı: {table}/{local_id}")
            return 'pending'

    def _release_server_id(self, conn: sqlite3.Connection, table: str,
                           server_id: str, local_id: str):
        # Aynı server_id'yi taşıyan eski bir CLEAN kopya varsa kaldırılır
        other = self._fetch_by_server_id(conn, table, server_id)
        if other is None or other.local_id == local_id:
            return
        if other.sync_status != SyncStatus.CLEAN:
            raise LocalStoreError(
                f"serverId {server_id} başka bir bekleyen satırda: {table}/{other.local_id}"
            )
        conn.execute(
            "DELETE FROM sync_rows WHERE table_name = ? AND local_id = ?",
            (table, other.local_id)
        )
        logger.warning(f"Çift kopya kaldırıldı: {table}/{other.local_id} ({server_id})")

    def record_rejection(self, table: str, local_id: str, reason: str,
                         threshold: int) -> bool:
        """
        Sunucunun reddettiği satırı bekleyen duruma döndür ve hata sayacını artır.

        Returns:
            Satır bu çağrıyla karantinaya alındıysa True
        """
        with transaction(self.db_path) as conn:
            row = self._fetch(conn, table, local_id)
            if row is None:
                return False

            failures = row.failure_count + 1
            quarantine = failures >= threshold
            status = row.effective_status
            conn.execute("""
                UPDATE sync_rows
                SET sync_status = ?, prior_status = NULL, inflight_updated_at = NULL,
                    failure_count = ?, quarantined = ?, last_error = ?
                WHERE table_name = ? AND local_id = ?
            """, (status.value, failures, 1 if quarantine else 0, reason, table, local_id))

        if quarantine and not row.quarantined:
            logger.warning(f"Satır karantinaya alındı ({failures} hata): {table}/{local_id} - {reason}")
            return True
        logger.warning(f"Satır reddedildi ({failures}/{threshold}): {table}/{local_id} - {reason}")
        return False

    def release_quarantine(self, table: str, local_id: str) -> bool:
        """Karantinadaki satırı tekrar gönderilebilir yap."""
        with transaction(self.db_path) as conn:
            cur = conn.execute("""
                UPDATE sync_rows
                SET quarantined = 0, failure_count = 0, last_error = NULL
                WHERE table_name = ? AND local_id = ? AND quarantined = 1
            """, (table, local_id))
            return cur.rowcount > 0

    def list_quarantined(self, table: Optional[str] = None) -> List[DomainRow]:
        """Karantinadaki satırlar."""
        sql = "SELECT * FROM sync_rows WHERE quarantined = 1"
        params: List[Any] = []
        if table:
            sql += " AND table_name = ?"
            params.append(table)
        conn = get_connection(self.db_path)
        try:
            return [_row_to_domain(r) for r in conn.execute(sql, params).fetchall()]
        finally:
            conn.close()

    # ============================================================
    # PULL ENGINE
    # ============================================================

    def apply_server_row(self, table: str, server_row: ServerRow) -> ApplyResult:
        """
        Sunucudan gelen satırı uygula.

        - Yerelde yok: CLEAN olarak eklenir (tombstone ise yok sayılır)
        - Yereldeki sürümden eski ya da aynı: yok sayılır
        - Yerel CLEAN: üzerine yazılır, tombstone ise silinir
        - Yerel bekleyen: çakışma çözücüye gider
        """
        with transaction(self.db_path) as conn:
            local = self._fetch_by_server_id(conn, table, server_row.server_id)

            if local is None and server_row.local_id:
                # Bu cihazın yanıtı kaybolmuş bir eklemesi
                candidate = self._fetch(conn, table, server_row.local_id)
                if candidate is not None and candidate.server_id is None:
                    return self._adopt(conn, candidate, server_row)

            if local is None:
                if server_row.is_tombstone:
                    return ApplyResult(ApplyAction.IGNORED)
                conn.execute("""
                    INSERT INTO sync_rows
                    (table_name, local_id, server_id, payload, updated_at,
                     server_last_modified, sync_status, device_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (table, server_row.server_id, server_row.server_id,
                      _dump(server_row.payload), server_row.updated_at,
                      server_row.updated_at, SyncStatus.CLEAN.value, server_row.device_id))
                return ApplyResult(ApplyAction.INSERTED, server_row.server_id)

            if (local.server_last_modified is not None
                    and server_row.updated_at <= local.server_last_modified):
                return ApplyResult(ApplyAction.IGNORED, local.local_id)

            if local.sync_status == SyncStatus.CLEAN:
                if server_row.is_tombstone:
                    self._remove(conn, local)
                    return ApplyResult(ApplyAction.REMOVED, local.local_id)
                self._overwrite(conn, local, server_row)
                return ApplyResult(ApplyAction.UPDATED, local.local_id)

            decision = self._resolve(conn, local, server_row)
            return ApplyResult(ApplyAction.RESOLVED, local.local_id, decision)

    def _adopt(self, conn: sqlite3.Connection, local: DomainRow,
               server_row: ServerRow) -> ApplyResult:
        if server_row.device_id == self.device_id or server_row.device_id is None:
            if server_row.is_tombstone:
                self._remove(conn, local)
                return ApplyResult(ApplyAction.REMOVED, local.local_id)
            # Sunucudaki son sürümü bu cihaz yazdı: bekleyen değişiklik korunur
            conn.execute("""
                UPDATE sync_rows
                SET server_id = ?, server_last_modified = ?
                WHERE table_name = ? AND local_id = ?
            """, (server_row.server_id, server_row.updated_at, local.table, local.local_id))
            logger.info(f"Yanıtı kaybolan ekleme eşleştirildi: {local.table}/{local.local_id}")
            return ApplyResult(ApplyAction.REBASED, local.local_id)

        decision = self._resolve(conn, local, server_row)
        return ApplyResult(ApplyAction.RESOLVED, local.local_id, decision)

    def _remove(self, conn: sqlite3.Connection, local: DomainRow):
        conn.execute(
            "DELETE FROM sync_rows WHERE table_name = ? AND local_id = ?",
            (local.table, local.local_id)
        )

    def _overwrite(self, conn: sqlite3.Connection, local: DomainRow, server_row: ServerRow):
        conn.execute("""
            UPDATE sync_rows
            SET payload = ?, updated_at = ?, server_id = ?, server_last_modified = ?,
                sync_status = ?, prior_status = NULL, inflight_updated_at = NULL,
                device_id = ?, failure_count = 0, quarantined = 0, last_error = NULL
            WHERE table_name = ? AND local_id = ?
        """, (_dump(server_row.payload), max(local.updated_at, server_row.updated_at),
              server_row.server_id, server_row.updated_at, SyncStatus.CLEAN.value,
              server_row.device_id, local.table, local.local_id))

    # ============================================================
    # ÇAKIŞMALAR
    # ============================================================

    def resolve_conflict(self, table: str, local_id: str,
                         server_row: ServerRow) -> Optional[ConflictDecision]:
        """
        Push yanıtındaki çakışmayı çöz ve uygula.

        Returns:
            Karar; satır yerelde yoksa None
        """
        with transaction(self.db_path) as conn:
            local = self._fetch(conn, table, local_id)
            if local is None:
                return None
            return self._resolve(conn, local, server_row)

    def _resolve(self, conn: sqlite3.Connection, local: DomainRow,
                 server_row: ServerRow) -> ConflictDecision:
        decision = self.resolver.resolve(local, server_row)

        if decision.resolution == Resolution.REMOVE_LOCAL:
            self._remove(conn, local)
        elif decision.resolution == Resolution.TAKE_SERVER:
            self._overwrite(conn, local, server_row)
        else:
            # KEEP_LOCAL: yerel değişiklik sunucu sürümünün üzerine yeniden gönderilir
            status = local.effective_status
            conn.execute("""
                UPDATE sync_rows
                SET server_id = ?, server_last_modified = ?, sync_status = ?,
                    prior_status = NULL, inflight_updated_at = NULL
                WHERE table_name = ? AND local_id = ?
            """, (server_row.server_id, server_row.updated_at, status.value,
                  local.table, local.local_id))

        self._log_conflict(conn, local, server_row, decision)
        logger.info(
            f"Çakışma çözüldü ({decision.resolution.value}): "
            f"{local.table}/{local.local_id} - {decision.reason}"
        )
        return decision

    def _log_conflict(self, conn: sqlite3.Connection, local: DomainRow,
                      server_row: ServerRow, decision: ConflictDecision):
        """Çakışmayı sync_conflicts tablosuna kaydet"""
        conn.execute("""
            INSERT INTO sync_conflicts
            (table_name, local_id, server_id, strategy, resolution, reason,
             local_data, remote_data, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            local.table,
            local.local_id,
            server_row.server_id,
            decision.strategy,
            decision.resolution.value,
            decision.reason,
            json.dumps(local.payload, default=str),
            json.dumps(server_row.to_dict(), default=str),
            datetime.now().isoformat(),
        ))

    def get_conflicts(self, table: Optional[str] = None,
                      limit: int = 100) -> List[Dict[str, Any]]:
        """Çakışma kayıtlarını al (en yeni önce)."""
        sql = "SELECT * FROM sync_conflicts"
        params: List[Any] = []
        if table:
            sql += " WHERE table_name = ?"
            params.append(table)
        sql += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        conn = get_connection(self.db_path)
        try:
            rows = conn.execute(sql, params).fetchall()
        finally:
            conn.close()

        conflicts = []
        for row in rows:
            item = dict(row)
            item['local_data'] = json.loads(item['local_data']) if item['local_data'] else None
            item['remote_data'] = json.loads(item['remote_data']) if item['remote_data'] else None
            conflicts.append(item)
        return conflicts
