# -*- coding: utf-8 -*-
"""
Retry & Backoff

Geçici hatalarda (ağ, 5xx, zaman aşımı) isteğin tamamı tekrar denenir.
Bekleme süresi jitter'lı üsteldir: d = min(base * 2^n, cap), süre [d/2, d].
Bir döngüdeki tüm istekler aynı tekrar bütçesini paylaşır.
"""

import logging
import random
import threading
from typing import Any, Callable, Optional

from .config import SyncConfig
from .models import CycleCancelledError
from .sync_client import TransportError

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_ms: int, cap_ms: int,
                  rand: Callable[[], float] = random.random) -> float:
    """
    attempt. tekrar için bekleme süresi (saniye).

    Args:
        attempt: 0'dan başlayan deneme numarası
        base_ms: Taban gecikme
        cap_ms: Üst sınır
        rand: [0, 1) aralığında sayı üreten fonksiyon
    """
    d = min(base_ms * (2 ** attempt), cap_ms)
    return (d / 2 + rand() * d / 2) / 1000.0


class RetryBudget:
    """Döngü başına tekrar hakkı."""

    def __init__(self, max_retries: int):
        self.max_retries = max_retries
        self.used = 0

    @property
    def remaining(self) -> int:
        return max(self.max_retries - self.used, 0)

    def consume(self) -> bool:
        """Bir hak kullan; hak kalmadıysa False."""
        if self.used >= self.max_retries:
            return False
        self.used += 1
        return True


class CycleContext:
    """
    Tek bir senkronizasyon döngüsünün çalışma bağlamı.

    İptal bayrağını, tekrar bütçesini ve bekleme fonksiyonunu taşır.
    """

    def __init__(
        self,
        config: SyncConfig,
        cancel_event: Optional[threading.Event] = None,
        sleep: Optional[Callable[[float], Any]] = None,
        rand: Callable[[], float] = random.random,
        on_backoff: Optional[Callable[[float, Exception], None]] = None,
        on_resume: Optional[Callable[[], None]] = None
    ):
        """
        Args:
            config: SyncConfig instance
            cancel_event: Döngüyü iptal eden olay
            sleep: Bekleme fonksiyonu (verilmezse iptal olayı üzerinde beklenir)
            rand: Jitter için rastgele sayı fonksiyonu
            on_backoff: Beklemeye geçerken çağrılır (gecikme, hata)
            on_resume: Bekleme bitince çağrılır
        """
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.budget = RetryBudget(config.max_retries_per_cycle)
        self._sleep = sleep
        self._rand = rand
        self._on_backoff = on_backoff
        self._on_resume = on_resume

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self):
        """Döngüyü iptal et"""
        self.cancel_event.set()

    def check_cancelled(self):
        """İptal edildiyse CycleCancelledError fırlat"""
        if self.cancel_event.is_set():
            raise CycleCancelledError("Senkronizasyon döngüsü iptal edildi")

    def _pause(self, delay: float) -> bool:
        """Bekle; bekleme sırasında iptal edildiyse True."""
        if self._sleep is not None:
            self._sleep(delay)
            return self.cancel_event.is_set()
        return self.cancel_event.wait(delay)

    def call(self, fn: Callable[..., Any], *args, **kwargs) -> Any:
        """
        fn'i çağır; TransportError'da bütçe yettiği sürece geri çekilip tekrar dene.

        Diğer hatalar (yetki, doğrulama, depolama) olduğu gibi yükselir.
        """
        attempt = 0
        while True:
            self.check_cancelled()
            try:
                return fn(*args, **kwargs)
            except TransportError as e:
                if not self.budget.consume():
                    logger.warning(f"Tekrar hakkı bitti: {e}")
                    raise

                delay = backoff_delay(
                    attempt,
                    self.config.base_retry_delay_ms,
                    self.config.max_retry_delay_ms,
                    self._rand
                )
                attempt += 1
                logger.warning(
                    f"Geçici hata, {delay:.1f} sn sonra tekrar denenecek "
                    f"({self.budget.used}/{self.budget.max_retries}): {e}"
                )

                if self._on_backoff:
                    self._on_backoff(delay, e)
                if self._pause(delay):
                    raise CycleCancelledError("Bekleme sırasında iptal edildi") from e
                if self._on_resume:
                    self._on_resume()
