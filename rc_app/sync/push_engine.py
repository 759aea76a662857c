# -*- coding: utf-8 -*-
"""
Push Engine

Bekleyen yerel değişiklikleri batch'ler halinde sunucuya gönderir.
Gönderilen satırlar IN_FLIGHT olur; yanıt gelmezse önceki bekleyen
durumlarına geri alınır.
"""

import logging
from typing import Dict, List

from . import events
from .local_store import LocalRecordStore
from .models import DomainRow, PushOutcome, PushResponse, SyncOperation
from .retry import CycleContext
from .sync_client import SyncClient

logger = logging.getLogger(__name__)


class PushEngine:
    """
    Outbox işleyici.

    Aynı döngüde işlenmiş satırlar tekrar seçilmez; uçuştayken değişen
    satırlar bir sonraki döngüde gönderilir.
    """

    def __init__(self, store: LocalRecordStore, client: SyncClient,
                 event_hub: events.EventHub, batch_size: int = 50,
                 max_row_failures: int = 5):
        """
        Args:
            store: LocalRecordStore instance
            client: SyncClient instance
            event_hub: Olay dağıtıcı
            batch_size: Tek istekte gönderilecek en fazla satır
            max_row_failures: Karantina eşiği
        """
        self.store = store
        self.client = client
        self.events = event_hub
        self.batch_size = batch_size
        self.max_row_failures = max_row_failures

    def push_table(self, table: str, ctx: CycleContext) -> Dict[str, int]:
        """
        Tek bir tablonun bekleyen satırlarını gönder.

        Returns:
            {accepted, conflicts, rejected, quarantined, batches}
        """
        stats = {'accepted': 0, 'conflicts': 0, 'rejected': 0, 'quarantined': 0, 'batches': 0}
        seen = set()

        while True:
            ctx.check_cancelled()
            pending = self.store.select_pending(table, self.batch_size, exclude=seen)
            if not pending:
                break

            local_ids = [row.local_id for row in pending]
            seen.update(local_ids)
            batch = self.store.mark_in_flight(table, local_ids)
            if not batch:
                continue

            sent_ids = [row.local_id for row in batch]
            try:
                response = ctx.call(
                    self.client.push_changes, table, [row.to_push_item() for row in batch]
                )
                self._apply_outcomes(table, batch, response, stats)
            except Exception:
                # Yanıtı işlenmemiş satırlar bekleyen duruma döner
                self.store.revert_in_flight(table, sent_ids)
                raise
            stats['batches'] += 1

        if stats['batches']:
            logger.info(
                f"Push {table}: {stats['accepted']} kabul, {stats['conflicts']} çakışma, "
                f"{stats['rejected']} red ({stats['batches']} batch)"
            )
        return stats

    def _apply_outcomes(self, table: str, batch: List[DomainRow],
                        response: PushResponse, stats: Dict[str, int]):
        outcomes = {outcome.local_id: outcome for outcome in response.results}

        for row in batch:
            outcome = outcomes.get(row.local_id)
            if outcome is None:
                logger.warning(f"Push yanıtında satır yok, tekrar gönderilecek: {table}/{row.local_id}")
                self.store.revert_in_flight(table, [row.local_id])
                continue

            if outcome.status == PushOutcome.ACCEPTED:
                self._accept(table, row, outcome)
                stats['accepted'] += 1
            elif outcome.status == PushOutcome.CONFLICT:
                self._conflict(table, row, outcome)
                stats['conflicts'] += 1
            else:
                stats['rejected'] += 1
                if self._reject(table, row, outcome):
                    stats['quarantined'] += 1

    def _accept(self, table: str, row: DomainRow, outcome: PushOutcome):
        op = row.pending_operation or SyncOperation.UPSERT
        if op == SyncOperation.UPSERT and not outcome.server_id:
            logger.warning(f"Kabul yanıtında serverId yok: {table}/{row.local_id}")
            self.store.revert_in_flight(table, [row.local_id])
            return

        self.store.acknowledge(
            table,
            row.local_id,
            server_id=outcome.server_id,
            server_updated_at=outcome.server_updated_at,
            sent_updated_at=row.inflight_updated_at,
            op=op,
        )

    def _conflict(self, table: str, row: DomainRow, outcome: PushOutcome):
        if outcome.server_row is None:
            logger.warning(f"Çakışma yanıtında sunucu satırı yok: {table}/{row.local_id}")
            self.store.revert_in_flight(table, [row.local_id])
            return

        decision = self.store.resolve_conflict(table, row.local_id, outcome.server_row)
        if decision is None:
            return
        self.events.emit(events.CONFLICT, {
            'table': table,
            'localId': row.local_id,
            'serverId': outcome.server_row.server_id,
            'resolution': decision.resolution.value,
            'reason': decision.reason,
            'source': 'push',
        })

    def _reject(self, table: str, row: DomainRow, outcome: PushOutcome) -> bool:
        reason = outcome.reason or 'VALIDATION_ERROR'
        quarantined = self.store.record_rejection(
            table, row.local_id, reason, self.max_row_failures
        )
        if quarantined:
            self.events.emit(events.ROW_QUARANTINED, {
                'table': table,
                'localId': row.local_id,
                'reason': reason,
            })
        return quarantined
