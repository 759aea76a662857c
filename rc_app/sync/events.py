# -*- coding: utf-8 -*-
"""
Senkronizasyon olayları

Motor yaşam döngüsü olaylarını host uygulamaya iletir. Dinleyici
hataları loglanır, motoru durdurmaz.
"""

import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

STATE_CHANGED = 'stateChanged'
CYCLE_START = 'cycleStart'
CYCLE_DONE = 'cycleDone'
CYCLE_FAILED = 'cycleFailed'
CONFLICT = 'conflict'
ROW_QUARANTINED = 'rowQuarantined'
AUTH_EXPIRED = 'authExpired'

EVENT_NAMES = (
    STATE_CHANGED,
    CYCLE_START,
    CYCLE_DONE,
    CYCLE_FAILED,
    CONFLICT,
    ROW_QUARANTINED,
    AUTH_EXPIRED,
)

Listener = Callable[[Dict[str, Any]], None]


class EventHub:
    """Basit olay dağıtıcı."""

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, event: str, callback: Listener) -> Listener:
        """Dinleyici ekle."""
        if event not in EVENT_NAMES:
            raise ValueError(f"Bilinmeyen olay: {event}")
        with self._lock:
            self._listeners[event].append(callback)
        return callback

    def off(self, event: str, callback: Listener):
        """Dinleyiciyi kaldır."""
        with self._lock:
            if callback in self._listeners.get(event, []):
                self._listeners[event].remove(callback)

    def emit(self, event: str, payload: Dict[str, Any] = None):
        """Olayı tüm dinleyicilere gönder."""
        with self._lock:
            listeners = list(self._listeners.get(event, []))

        data = dict(payload or {})
        data.setdefault('event', event)
        for callback in listeners:
            try:
                callback(data)
            except Exception as e:
                logger.error(f"Olay callback hatası ({event}): {e}")
