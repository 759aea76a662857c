# -*- coding: utf-8 -*-
"""
RC Obra Senkronizasyon Modülü

Çevrimdışı çalışan istemci ile sunucu arasında çift yönlü veri
senkronizasyonu sağlar.

Akış: alan modülleri LocalRecordStore'a yazar; SyncService önce tüm
tabloları çeker (PullEngine), sonra bekleyen değişiklikleri gönderir
(PushEngine).

Çakışma Çözümü: server-wins (satır bazında)
"""

from .models import (
    SyncStatus,
    SyncOperation,
    ErrorCode,
    SyncError,
    SchemaMismatchError,
    CycleCancelledError,
    DomainRow,
    ServerRow,
    CycleReport,
    SYNCED_TABLES,
)
from .config import SyncConfig, get_sync_config, save_sync_config, clear_sync_config
from .conflict_handler import (
    ConflictResolver,
    ConflictDecision,
    Resolution,
    SERVER_WINS,
    CLIENT_WINS,
    LAST_WRITE_WINS,
)
from .events import EventHub
from .local_store import LocalRecordStore, RowLockedError, RowNotFoundError
from .watermarks import WatermarkStore
from .sync_client import SyncClient, AuthExpiredError, TransportError, RequestRejectedError
from .pull_engine import PullEngine
from .push_engine import PushEngine
from .sync_service import SyncService, ServiceState, UserStatus
from .sync_manager import SyncManager

__all__ = [
    # Models
    'SyncStatus',
    'SyncOperation',
    'ErrorCode',
    'SyncError',
    'SchemaMismatchError',
    'CycleCancelledError',
    'DomainRow',
    'ServerRow',
    'CycleReport',
    'SYNCED_TABLES',
    # Config
    'SyncConfig',
    'get_sync_config',
    'save_sync_config',
    'clear_sync_config',
    # Core
    'ConflictResolver',
    'ConflictDecision',
    'Resolution',
    'SERVER_WINS',
    'CLIENT_WINS',
    'LAST_WRITE_WINS',
    'EventHub',
    'LocalRecordStore',
    'RowLockedError',
    'RowNotFoundError',
    'WatermarkStore',
    'SyncClient',
    'AuthExpiredError',
    'TransportError',
    'RequestRejectedError',
    'PullEngine',
    'PushEngine',
    # Orchestrator
    'SyncService',
    'ServiceState',
    'UserStatus',
    'SyncManager',
]

__version__ = '1.0.0'
