# -*- coding: utf-8 -*-
"""
Conflict Handler

Aynı satırın hem yerelde hem sunucuda değiştiği durumlarda kazananı seçer.
Varsayılan strateji: server-wins (satır bazında).

Çözücü yan etkisizdir; kararı uygulamak ve günlüğe yazmak
LocalRecordStore'un işidir.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from .models import DomainRow, ServerRow, SyncOperation

logger = logging.getLogger(__name__)

SERVER_WINS = 'server-wins'
LAST_WRITE_WINS = 'last-write-wins'
CLIENT_WINS = 'client-wins'

CONFLICT_POLICIES = (SERVER_WINS, LAST_WRITE_WINS, CLIENT_WINS)


class Resolution(Enum):
    """Çakışma kararı"""
    TAKE_SERVER = "take_server"     # Sunucu sürümü yerele yazılır, CLEAN
    REMOVE_LOCAL = "remove_local"   # Yerel satır fiziksel olarak silinir
    KEEP_LOCAL = "keep_local"       # Yerel değişiklik sunucu sürümü üzerine yeniden gönderilir


@dataclass(frozen=True)
class ConflictDecision:
    resolution: Resolution
    reason: str
    strategy: str


class ConflictResolver:
    """
    Çakışma çözücü.

    Stratejiler:
    - server-wins: Sunucu her zaman kazanır (varsayılan)
    - last-write-wins: Yerel değişiklik sunucu sürümünden yeniyse yerel kazanır;
      tombstone her durumda kazanır
    - client-wins: Yerel değişiklik kazanır; sunucudaki silme yine uygulanır
    """

    def __init__(self, strategy: str = SERVER_WINS):
        if strategy not in CONFLICT_POLICIES:
            raise ValueError(f"Bilinmeyen çakışma stratejisi: {strategy}")
        self.strategy = strategy

    def resolve(self, local: DomainRow, server: ServerRow) -> ConflictDecision:
        """
        Çakışmayı çöz.

        Args:
            local: Bekleyen değişikliği olan yerel satır
            server: Sunucudaki güncel satır

        Returns:
            ConflictDecision
        """
        if server.is_tombstone:
            if local.pending_operation == SyncOperation.DELETE:
                return self._decide(Resolution.REMOVE_LOCAL, "iki tarafta da silindi")
            return self._decide(Resolution.REMOVE_LOCAL, "sunucuda silinmiş")

        if self.strategy == CLIENT_WINS:
            return self._decide(Resolution.KEEP_LOCAL, "yerel değişiklik tercih edildi")

        if self.strategy == LAST_WRITE_WINS and local.updated_at > server.updated_at:
            return self._decide(Resolution.KEEP_LOCAL, "yerel değişiklik daha yeni")

        if local.pending_operation == SyncOperation.DELETE:
            return self._decide(Resolution.TAKE_SERVER, "sunucuda daha yeni güncelleme var, yerel silme düşürüldü")
        return self._decide(Resolution.TAKE_SERVER, "sunucu sürümü kazandı")

    def _decide(self, resolution: Resolution, reason: str) -> ConflictDecision:
        logger.debug(f"Çakışma kararı ({self.strategy}): {resolution.value} - {reason}")
        return ConflictDecision(resolution=resolution, reason=reason, strategy=self.strategy)
