# -*- coding: utf-8 -*-
"""
Pull Engine

Sunucudaki değişiklikleri tablo bazında çeker ve yerel depoya uygular.
Watermark yalnızca bir sayfanın tüm satırları uygulandıktan sonra,
sunucunun döndürdüğü newWatermark değerine ilerletilir.
"""

import logging
from typing import Dict

from . import events
from .local_store import LocalRecordStore
from .models import ApplyAction, SchemaMismatchError, ServerRow
from .retry import CycleContext
from .sync_client import SyncClient
from .watermarks import WatermarkStore

logger = logging.getLogger(__name__)


class PullEngine:
    """
    Inbox işleyici.

    Sayfalı pull: hasMore false olana kadar sayfa sayfa ilerler.
    """

    def __init__(self, store: LocalRecordStore, watermarks: WatermarkStore,
                 client: SyncClient, event_hub: events.EventHub, page_size: int = 100):
        """
        Args:
            store: LocalRecordStore instance
            watermarks: WatermarkStore instance
            client: SyncClient instance
            event_hub: Olay dağıtıcı
            page_size: Sayfa başına istenen satır sayısı
        """
        self.store = store
        self.watermarks = watermarks
        self.client = client
        self.events = event_hub
        self.page_size = page_size

    def pull_table(self, table: str, ctx: CycleContext) -> Dict[str, int]:
        """
        Tek bir tabloyu çek.

        Returns:
            {applied, skipped, conflicts, pages}
        """
        stats = {'applied': 0, 'skipped': 0, 'conflicts': 0, 'pages': 0}

        while True:
            ctx.check_cancelled()
            since = self.watermarks.get(table)
            page = ctx.call(self.client.pull_changes, table, since, self.page_size)
            stats['pages'] += 1

            for raw in page.rows:
                ctx.check_cancelled()
                try:
                    server_row = ServerRow.from_dict(raw)
                    result = self.store.apply_server_row(table, server_row)
                except SchemaMismatchError as e:
                    # Satır hiçbir zaman uygulanamaz; watermark sunucu değerinde kalır
                    stats['skipped'] += 1
                    logger.warning(f"SCHEMA_MISMATCH, satır atlandı ({table}): {e}")
                    continue

                if result.action == ApplyAction.RESOLVED:
                    stats['conflicts'] += 1
                    self.events.emit(events.CONFLICT, {
                        'table': table,
                        'localId': result.local_id,
                        'serverId': server_row.server_id,
                        'resolution': result.decision.resolution.value,
                        'reason': result.decision.reason,
                        'source': 'pull',
                    })
                elif result.action != ApplyAction.IGNORED:
                    stats['applied'] += 1

            if page.new_watermark < since:
                logger.warning(
                    f"Sunucu geriye giden watermark döndürdü ({table}): "
                    f"{since} -> {page.new_watermark}"
                )
                break

            self.watermarks.advance(table, page.new_watermark)

            if not page.has_more:
                break
            if page.new_watermark == since:
                logger.warning(f"hasMore var ama watermark ilerlemedi ({table}), duruluyor")
                break

        if stats['applied'] or stats['conflicts'] or stats['skipped']:
            logger.info(
                f"Pull {table}: {stats['applied']} uygulandı, "
                f"{stats['conflicts']} çakışma, {stats['skipped']} atlandı"
            )
        return stats
