# -*- coding: utf-8 -*-
"""
Sync Manager

Senkronizasyon bileşenlerini bir araya getirir. Tüm bağımlılıklar
burada açıkça kurulur ve ilgili sınıflara verilir.
"""

import logging
import random
from typing import Any, Callable, Dict, Optional

from ..db import DB_PATH, initialize_database
from . import events
from .config import SyncConfig, get_sync_config, save_config_value
from .conflict_handler import ConflictResolver
from .local_store import LocalRecordStore
from .models import now_ms
from .pull_engine import PullEngine
from .push_engine import PushEngine
from .sync_client import SyncClient
from .sync_service import SyncService
from .watermarks import WatermarkStore

logger = logging.getLogger(__name__)


class SyncManager:
    """
    Senkronizasyon yöneticisi.

    Kullanım:
        manager = SyncManager(db_path)
        manager.initialize(config)
        manager.on('authExpired', handler)
        manager.start()
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
        session=None,
        sleep: Optional[Callable[[float], Any]] = None,
        rand: Callable[[], float] = random.random
    ):
        """
        Args:
            db_path: SQLite veritabanı yolu
            clock: Yerel zaman damgası kaynağı (ms)
            session: HTTP oturumu (verilmezse requests.Session)
            sleep: Geri çekilme bekleme fonksiyonu
            rand: Jitter için rastgele sayı fonksiyonu
        """
        self.db_path = db_path or DB_PATH
        self._clock = clock
        self._session = session
        self._sleep = sleep
        self._rand = rand

        self.config: Optional[SyncConfig] = None
        self.events = events.EventHub()
        self.store: Optional[LocalRecordStore] = None
        self.watermarks: Optional[WatermarkStore] = None
        self.client: Optional[SyncClient] = None
        self.pull_engine: Optional[PullEngine] = None
        self.push_engine: Optional[PushEngine] = None
        self.service: Optional[SyncService] = None

        initialize_database(self.db_path)

    @property
    def is_initialized(self) -> bool:
        return self.service is not None

    def initialize(self, config: Optional[SyncConfig] = None, online: bool = True) -> bool:
        """
        Bileşenleri kur.

        Args:
            config: SyncConfig (verilmezse veritabanından okunur)
            online: Başlangıç bağlantı durumu
        """
        config = config or get_sync_config(self.db_path)
        if not config.device_id:
            config.device_id = get_sync_config(self.db_path).device_id
        config.validate()
        self.config = config

        resolver = ConflictResolver(config.conflict_policy)
        self.store = LocalRecordStore(self.db_path, config.device_id,
                                      resolver=resolver, clock=self._clock)
        self.watermarks = WatermarkStore(self.db_path, config.device_id)
        self.client = SyncClient(config, session=self._session)

        self.pull_engine = PullEngine(
            self.store, self.watermarks, self.client, self.events,
            page_size=config.pull_page_size
        )
        self.push_engine = PushEngine(
            self.store, self.client, self.events,
            batch_size=config.push_batch_size,
            max_row_failures=config.max_row_failures
        )
        self.service = SyncService(
            config, self.store, self.pull_engine, self.push_engine, self.events,
            online=online, sleep=self._sleep, rand=self._rand
        )

        self.store.recover_in_flight()
        logger.info(f"Sync manager hazır (cihaz={config.device_id}, tablolar={config.tables})")
        return True

    def _require_service(self) -> SyncService:
        if self.service is None:
            raise RuntimeError("SyncManager başlatılmadı, önce initialize() çağırın")
        return self.service

    # ============================================================
    # OLAYLAR VE KONTROL
    # ============================================================

    def on(self, event: str, callback: Callable[[Dict[str, Any]], None]):
        """Olay dinleyicisi ekle."""
        return self.events.on(event, callback)

    def start(self):
        self._require_service().start()

    def stop(self):
        if self.service is not None:
            self.service.stop()

    def sync_now(self):
        return self._require_service().sync_now()

    def set_online(self, online: bool):
        self._require_service().set_online(online)

    def set_auth_token(self, token: str, persist: bool = True):
        """Yeni token'ı kullan ve döngüleri tekrar aç."""
        service = self._require_service()
        self.client.set_auth_token(token)
        if persist:
            save_config_value('auth_token', token, self.db_path)
        service.reauthenticated()

    def logout(self):
        """Çalışan döngüyü iptal et ve token'ı unut."""
        service = self._require_service()
        service.cancel()
        self.client.set_auth_token("")
        save_config_value('auth_token', "", self.db_path)

    # ============================================================
    # DURUM
    # ============================================================

    def get_status_info(self) -> Dict[str, Any]:
        """Durum bilgisi"""
        if self.service is None:
            return {'initialized': False}

        quarantined = self.store.list_quarantined()
        return {
            'initialized': True,
            'device_id': self.config.device_id,
            'user_status': self.service.user_status().value,
            'pending': {t: self.store.count_pending(t) for t in self.config.tables},
            'quarantined': [
                {'table': r.table, 'local_id': r.local_id, 'error': r.last_error}
                for r in quarantined
            ],
            'watermarks': self.watermarks.get_all(),
            **self.service.get_stats(),
        }
