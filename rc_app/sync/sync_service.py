# -*- coding: utf-8 -*-
"""
Arka Plan Senkronizasyon Servisi

Belirli aralıklarla pull + push döngüsü çalıştırır.
Online/offline durumunu takip eder, aynı anda tek döngüye izin verir.

Durumlar:
    IDLE    -> RUNNING   zamanlayıcı veya sync_now (yalnızca online iken)
    RUNNING -> IDLE      döngü bitti
    RUNNING -> BACKOFF   geçici hata, tekrar öncesi bekleme
    *       -> OFFLINE   bağlantı koptu, zamanlayıcı susar
    OFFLINE -> IDLE      bağlantı geldi, hemen döngü tetiklenir
    *       -> IDLE      authExpired; yeniden giriş yapılana kadar döngü yok
"""

import logging
import random
import sqlite3
import threading
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from . import events
from .config import SyncConfig
from .local_store import LocalRecordStore
from .models import CycleCancelledError, CycleReport, ErrorCode
from .pull_engine import PullEngine
from .push_engine import PushEngine
from .retry import CycleContext
from .sync_client import AuthExpiredError, RequestRejectedError, TransportError

logger = logging.getLogger(__name__)


class ServiceState(Enum):
    """Orkestratör durumu"""
    IDLE = "idle"
    RUNNING = "running"
    BACKOFF = "backoff"
    OFFLINE = "offline"


class UserStatus(Enum):
    """Kullanıcıya gösterilen durum"""
    OK = "ok"
    OFFLINE = "offline"
    RETRYING = "retrying"
    NEEDS_ATTENTION = "needs_attention"


class SyncService:
    """
    Senkronizasyon orkestratörü.

    Özellikler:
    - Önce tüm tablolar çekilir, sonra tüm tablolar gönderilir
    - Tek döngü garantisi (single-flight)
    - Geçici hatalarda jitter'lı üstel geri çekilme
    - Thread-safe; arka plan zamanlayıcısı opsiyonel
    """

    def __init__(
        self,
        config: SyncConfig,
        store: LocalRecordStore,
        pull_engine: PullEngine,
        push_engine: PushEngine,
        event_hub: events.EventHub,
        online: bool = True,
        sleep: Optional[Callable[[float], Any]] = None,
        rand: Callable[[], float] = random.random
    ):
        """
        Args:
            config: SyncConfig instance
            store: LocalRecordStore instance
            pull_engine: PullEngine instance
            push_engine: PushEngine instance
            event_hub: Olay dağıtıcı
            online: Başlangıçta bağlantı var mı
            sleep: Geri çekilme bekleme fonksiyonu (testler için)
            rand: Jitter için rastgele sayı fonksiyonu
        """
        self.config = config
        self.store = store
        self.pull_engine = pull_engine
        self.push_engine = push_engine
        self.events = event_hub
        self._sleep = sleep
        self._rand = rand

        self._online = online
        self._state = ServiceState.IDLE if online else ServiceState.OFFLINE
        self._auth_required = False
        self._retrying = False

        self._cycle_lock = threading.Lock()
        self._state_lock = threading.RLock()
        self._current_ctx: Optional[CycleContext] = None

        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._wake = threading.Event()

        # İstatistikler
        self._sync_count = 0
        self._error_count = 0
        self._last_sync: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_report: Optional[CycleReport] = None

    @property
    def state(self) -> ServiceState:
        """Mevcut durum"""
        return self._state

    @property
    def is_online(self) -> bool:
        return self._online

    @property
    def auth_required(self) -> bool:
        """Yeniden giriş bekleniyor mu?"""
        return self._auth_required

    @property
    def last_report(self) -> Optional[CycleReport]:
        return self._last_report

    def _set_state(self, state: ServiceState):
        """Durumu güncelle ve olay yayınla"""
        with self._state_lock:
            if self._state == state:
                return
            previous = self._state
            self._state = state
        logger.debug(f"Sync durumu: {previous.value} -> {state.value}")
        self.events.emit(events.STATE_CHANGED, {
            'state': state.value,
            'previous': previous.value,
        })

    # ============================================================
    # ZAMANLAYICI
    # ============================================================

    def start(self):
        """Arka plan zamanlayıcısını başlat"""
        if self._running:
            logger.warning("Sync servisi zaten çalışıyor")
            return

        self.store.recover_in_flight()
        self._running = True
        self._wake.clear()
        self._thread = threading.Thread(target=self._run_loop, daemon=True)
        self._thread.name = "SyncService"
        self._thread.start()
        logger.info(f"Sync servisi başlatıldı (interval={self.config.cycle_interval_ms}ms)")

    def stop(self):
        """Zamanlayıcıyı durdur, çalışan döngüyü iptal et"""
        self._running = False
        self.cancel()
        self._wake.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None
        logger.info("Sync servisi durduruldu")

    def _run_loop(self):
        """Ana döngü"""
        while self._running:
            if self._online and not self._auth_required:
                try:
                    self.run_cycle()
                except Exception as e:
                    self._error_count += 1
                    self._last_error = str(e)
                    logger.error(f"Sync döngüsü hatası: {e}")

            # Interval kadar bekle (trigger ile erken uyanır)
            self._wake.wait(self.config.cycle_interval_ms / 1000.0)
            self._wake.clear()

    def trigger(self):
        """Döngüyü hemen başlat (arka planda veya satır içinde)."""
        if self._running and self._thread and self._thread.is_alive():
            self._wake.set()
        else:
            self.run_cycle()

    # ============================================================
    # DIŞ SİNYALLER
    # ============================================================

    def sync_now(self) -> Optional[CycleReport]:
        """
        Hemen senkronize et.

        Returns:
            Döngü raporu; döngü çalışmadıysa None
        """
        return self.run_cycle()

    def set_online(self, online: bool):
        """Çalışma ortamından gelen bağlantı sinyali."""
        with self._state_lock:
            was_online = self._online
            self._online = online

        if not online:
            ctx = self._current_ctx
            if ctx is not None:
                ctx.cancel()
            self._set_state(ServiceState.OFFLINE)
            if was_online:
                logger.info("Bağlantı koptu, senkronizasyon duraklatıldı")
            return

        if not was_online:
            logger.info("Bağlantı geldi, senkronizasyon tetikleniyor")
            if self._state == ServiceState.OFFLINE:
                self._set_state(ServiceState.IDLE)
            self.trigger()

    def cancel(self):
        """Çalışan döngüyü iptal et (ör. çıkış yapılırken)."""
        ctx = self._current_ctx
        if ctx is not None:
            ctx.cancel()
            logger.info("Senkronizasyon döngüsü iptal istendi")

    def reauthenticated(self):
        """Host yeniden giriş yaptı; döngüler tekrar açılır."""
        if self._auth_required:
            logger.info("Yeniden giriş yapıldı, senkronizasyon tekrar açık")
        self._auth_required = False

    # ============================================================
    # DÖNGÜ
    # ============================================================

    def run_cycle(self) -> Optional[CycleReport]:
        """
        Tek bir pull-then-push döngüsü.

        Offline iken, yeniden giriş beklenirken veya başka bir döngü
        çalışırken hiçbir şey yapmaz ve None döner.
        """
        if not self._online:
            logger.debug("Offline, döngü atlandı")
            return None
        if self._auth_required:
            logger.debug("Yeniden giriş bekleniyor, döngü atlandı")
            return None
        if not self._cycle_lock.acquire(blocking=False):
            logger.debug("Döngü zaten çalışıyor")
            return None

        try:
            return self._do_cycle()
        finally:
            self._cycle_lock.release()

    def _do_cycle(self) -> CycleReport:
        ctx = CycleContext(
            self.config,
            cancel_event=threading.Event(),
            sleep=self._sleep,
            rand=self._rand,
            on_backoff=self._on_backoff,
            on_resume=self._on_resume,
        )
        self._current_ctx = ctx
        report = CycleReport()
        started = time.monotonic()

        self._set_state(ServiceState.RUNNING)
        self.events.emit(events.CYCLE_START, {'tables': list(self.config.tables)})

        try:
            # Önce tüm tablolar çekilir
            for table in self.config.tables:
                stats = self.pull_engine.pull_table(table, ctx)
                report.pulled_count += stats['applied']
                report.conflicts += stats['conflicts']
                report.skipped += stats['skipped']

            # Sonra tüm tablolar gönderilir
            for table in self.config.tables:
                stats = self.push_engine.push_table(table, ctx)
                report.pushed_count += stats['accepted']
                report.conflicts += stats['conflicts']
                report.rejected += stats['rejected']
                report.quarantined += stats['quarantined']

        except AuthExpiredError as e:
            self._auth_required = True
            self._fail(report, ErrorCode.AUTH_EXPIRED, e, started)
            logger.warning(f"Oturum süresi doldu, döngü durduruldu: {e}")
            self.events.emit(events.AUTH_EXPIRED, {'message': str(e)})
            return report

        except CycleCancelledError as e:
            self._fail(report, ErrorCode.CANCELLED, e, started)
            logger.info("Döngü iptal edildi, watermark'lar ilerletilmedi")
            return report

        except TransportError as e:
            self._retrying = True
            self._fail(report, ErrorCode.TRANSPORT_ERROR, e, started)
            logger.error(f"Sunucuya ulaşılamadı, sonraki döngüde tekrar denenecek: {e}")
            return report

        except RequestRejectedError as e:
            self._fail(report, ErrorCode.VALIDATION_ERROR, e, started)
            logger.error(f"Sunucu isteği reddetti: {e}")
            return report

        except sqlite3.Error as e:
            self._fail(report, ErrorCode.STORAGE_ERROR, e, started)
            logger.error(f"Yerel depo hatası, döngü durduruldu: {e}")
            return report

        except Exception as e:
            self._fail(report, None, e, started)
            logger.error(f"Beklenmeyen sync hatası: {e}")
            raise

        finally:
            self._current_ctx = None

        report.success = True
        report.duration_ms = (time.monotonic() - started) * 1000
        self._sync_count += 1
        self._retrying = False
        self._last_sync = datetime.now()
        self._last_error = None
        self._last_report = report
        self._settle_state()
        self.events.emit(events.CYCLE_DONE, report.to_dict())

        logger.info(
            f"Sync tamamlandı: {report.pulled_count} alındı, "
            f"{report.pushed_count} gönderildi, {report.conflicts} çakışma"
        )
        return report

    def _fail(self, report: CycleReport, code: Optional[ErrorCode],
              error: Exception, started: float):
        report.success = False
        report.error_code = code
        report.error = str(error)
        report.duration_ms = (time.monotonic() - started) * 1000
        self._error_count += 1
        self._last_error = str(error)
        self._last_report = report
        self._settle_state()
        self.events.emit(events.CYCLE_FAILED, report.to_dict())

    def _settle_state(self):
        """Döngü sonunda IDLE veya OFFLINE'a dön"""
        self._set_state(ServiceState.IDLE if self._online else ServiceState.OFFLINE)

    def _on_backoff(self, delay: float, error: Exception):
        self._retrying = True
        self._set_state(ServiceState.BACKOFF)

    def _on_resume(self):
        if self._online:
            self._set_state(ServiceState.RUNNING)

    # ============================================================
    # DURUM
    # ============================================================

    def user_status(self) -> UserStatus:
        """Kullanıcıya gösterilecek durum."""
        if not self._online:
            return UserStatus.OFFLINE
        if self.store.list_quarantined():
            return UserStatus.NEEDS_ATTENTION
        if self._retrying or self._state == ServiceState.BACKOFF:
            return UserStatus.RETRYING
        return UserStatus.OK

    def get_stats(self) -> Dict[str, Any]:
        """İstatistikleri döndür"""
        return {
            'state': self._state.value,
            'is_online': self._online,
            'auth_required': self._auth_required,
            'last_sync': self._last_sync.isoformat() if self._last_sync else None,
            'last_error': self._last_error,
            'sync_count': self._sync_count,
            'error_count': self._error_count,
            'interval_ms': self.config.cycle_interval_ms,
        }
