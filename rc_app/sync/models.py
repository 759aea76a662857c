# -*- coding: utf-8 -*-
"""
Sync Veri Modelleri

Senkronizasyon motorunda kullanılan veri yapıları ve hata türleri.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Dict, Any


# Senkronize edilen tablolar (varsayılan sıra)
SYNCED_TABLES = [
    'clients',
    'budgets',
    'contracts',
    'financial',
]


def now_ms() -> int:
    """Milisaniye cinsinden duvar saati."""
    return int(time.time() * 1000)


class SyncStatus(Enum):
    """Satır senkronizasyon durumları"""
    CLEAN = "clean"                     # Sunucu ile aynı
    PENDING_UPSERT = "pending_upsert"   # Gönderilecek ekleme/güncelleme
    PENDING_DELETE = "pending_delete"   # Gönderilecek silme
    IN_FLIGHT = "in_flight"             # Gönderildi, yanıt bekleniyor


PENDING_STATUSES = (SyncStatus.PENDING_UPSERT, SyncStatus.PENDING_DELETE)


class SyncOperation(Enum):
    """Push işlem türleri"""
    UPSERT = "upsert"
    DELETE = "delete"


class ErrorCode(Enum):
    """Motorun dışarı bildirdiği hata kodları"""
    AUTH_EXPIRED = "AUTH_EXPIRED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFLICT = "CONFLICT"
    SCHEMA_MISMATCH = "SCHEMA_MISMATCH"
    CANCELLED = "CANCELLED"
    STORAGE_ERROR = "STORAGE_ERROR"


class SyncError(Exception):
    """Senkronizasyon hatalarının temel sınıfı"""
    code = ErrorCode.TRANSPORT_ERROR

    def __init__(self, message: str = "", code: Optional[ErrorCode] = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class SchemaMismatchError(SyncError):
    """Sunucu satırı yerel şemaya uymuyor"""
    code = ErrorCode.SCHEMA_MISMATCH


class CycleCancelledError(SyncError):
    """Döngü dışarıdan iptal edildi"""
    code = ErrorCode.CANCELLED


@dataclass
class DomainRow:
    """Senkronizasyon metadatası ile birlikte tek bir yerel satır"""
    table: str
    local_id: str
    payload: Dict[str, Any]
    updated_at: int
    sync_status: SyncStatus
    server_id: Optional[str] = None
    server_last_modified: Optional[int] = None
    prior_status: Optional[SyncStatus] = None
    inflight_updated_at: Optional[int] = None
    device_id: Optional[str] = None
    failure_count: int = 0
    quarantined: bool = False
    last_error: Optional[str] = None
    was_sent: bool = False

    @property
    def effective_status(self) -> SyncStatus:
        """IN_FLIGHT satırlar için asıl bekleyen durum"""
        if self.sync_status == SyncStatus.IN_FLIGHT and self.prior_status:
            return self.prior_status
        return self.sync_status

    @property
    def pending_operation(self) -> Optional[SyncOperation]:
        """Satırın bekleyen işlemi (CLEAN ise None)"""
        status = self.effective_status
        if status == SyncStatus.PENDING_UPSERT:
            return SyncOperation.UPSERT
        if status == SyncStatus.PENDING_DELETE:
            return SyncOperation.DELETE
        return None

    @property
    def is_pending(self) -> bool:
        return self.pending_operation is not None

    def to_push_item(self) -> Dict[str, Any]:
        """Push isteğindeki tek bir eleman"""
        op = self.pending_operation or SyncOperation.UPSERT
        updated_at = self.inflight_updated_at
        if updated_at is None:
            updated_at = self.updated_at
        return {
            'localId': self.local_id,
            'serverId': self.server_id,
            'updatedAt': updated_at,
            'op': op.value,
            'payload': self.payload,
            'baseVersion': self.server_last_modified,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Dict'e dönüştür"""
        return {
            'table': self.table,
            'local_id': self.local_id,
            'server_id': self.server_id,
            'payload': self.payload,
            'updated_at': self.updated_at,
            'server_last_modified': self.server_last_modified,
            'sync_status': self.sync_status.value,
            'prior_status': self.prior_status.value if self.prior_status else None,
            'device_id': self.device_id,
            'failure_count': self.failure_count,
            'quarantined': self.quarantined,
            'last_error': self.last_error,
        }


def _require_int(data: Dict[str, Any], key: str, allow_none: bool = False) -> Optional[int]:
    value = data.get(key)
    if value is None and allow_none:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SchemaMismatchError(f"'{key}' negatif olmayan tam sayı olmalı: {value!r}")
    return value


@dataclass
class ServerRow:
    """Sunucudan gelen tek bir satır (tombstone dahil)"""
    server_id: str
    updated_at: int
    payload: Dict[str, Any] = field(default_factory=dict)
    deleted_at: Optional[int] = None
    device_id: Optional[str] = None
    local_id: Optional[str] = None

    @property
    def is_tombstone(self) -> bool:
        return self.deleted_at is not None

    @classmethod
    def from_dict(cls, d: Any) -> 'ServerRow':
        """Dict'ten oluştur, uymayan satırda SchemaMismatchError fırlatır."""
        if not isinstance(d, dict):
            raise SchemaMismatchError(f"Satır nesne değil: {type(d).__name__}")

        server_id = d.get('serverId')
        if not isinstance(server_id, str) or not server_id:
            raise SchemaMismatchError("'serverId' eksik")

        payload = d.get('payload')
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise SchemaMismatchError(f"'payload' nesne değil: {server_id}")

        device_id = d.get('deviceId')
        local_id = d.get('localId')
        return cls(
            server_id=server_id,
            updated_at=_require_int(d, 'updatedAt'),
            payload=payload,
            deleted_at=_require_int(d, 'deletedAt', allow_none=True),
            device_id=device_id if isinstance(device_id, str) else None,
            local_id=local_id if isinstance(local_id, str) and local_id else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'serverId': self.server_id,
            'updatedAt': self.updated_at,
            'deletedAt': self.deleted_at,
            'payload': self.payload,
            'deviceId': self.device_id,
            'localId': self.local_id,
        }


@dataclass
class PullPage:
    """Tek bir pull sayfası"""
    rows: List[Dict[str, Any]]
    new_watermark: int
    has_more: bool = False


@dataclass
class PushOutcome:
    """Push yanıtındaki satır sonucu"""
    local_id: str
    status: str   # accepted, conflict, rejected
    server_id: Optional[str] = None
    server_updated_at: Optional[int] = None
    server_row: Optional[ServerRow] = None
    reason: Optional[str] = None

    ACCEPTED = 'accepted'
    CONFLICT = 'conflict'
    REJECTED = 'rejected'

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'PushOutcome':
        """Dict'ten oluştur"""
        status = d.get('status')
        if status not in (cls.ACCEPTED, cls.CONFLICT, cls.REJECTED):
            raise ValueError(f"Bilinmeyen push sonucu: {status!r}")
        local_id = d.get('localId')
        if not isinstance(local_id, str):
            raise ValueError("Push sonucunda 'localId' yok")

        server_row = None
        if d.get('serverRow') is not None:
            server_row = ServerRow.from_dict(d['serverRow'])

        return cls(
            local_id=local_id,
            status=status,
            server_id=d.get('serverId'),
            server_updated_at=d.get('serverUpdatedAt'),
            server_row=server_row,
            reason=d.get('reason'),
        )


@dataclass
class PushResponse:
    """Push yanıtı"""
    results: List[PushOutcome]
    server_time: Optional[int] = None


class ApplyAction(Enum):
    """Sunucu satırı uygulandığında yerelde olan"""
    INSERTED = "inserted"
    UPDATED = "updated"
    REMOVED = "removed"
    IGNORED = "ignored"
    REBASED = "rebased"
    RESOLVED = "resolved"


@dataclass
class ApplyResult:
    """apply_server_row sonucu"""
    action: ApplyAction
    local_id: Optional[str] = None
    decision: Optional[Any] = None   # ConflictDecision


@dataclass
class CycleReport:
    """Tek bir senkronizasyon döngüsünün özeti"""
    success: bool = False
    pulled_count: int = 0
    pushed_count: int = 0
    conflicts: int = 0
    rejected: int = 0
    quarantined: int = 0
    skipped: int = 0
    error_code: Optional[ErrorCode] = None
    error: Optional[str] = None
    duration_ms: float = 0

    def to_dict(self) -> Dict[str, Any]:
        """Dict'e dönüştür"""
        return {
            'success': self.success,
            'pulled_count': self.pulled_count,
            'pushed_count': self.pushed_count,
            'conflicts': self.conflicts,
            'rejected': self.rejected,
            'quarantined': self.quarantined,
            'skipped': self.skipped,
            'error_code': self.error_code.value if self.error_code else None,
            'error': self.error,
            'duration_ms': self.duration_ms,
        }
