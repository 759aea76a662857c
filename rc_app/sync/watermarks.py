# -*- coding: utf-8 -*-
"""
Watermark Store

(device_id, tablo) başına son başarıyla işlenen sunucu zaman damgası.
Değer yalnızca sunucunun bir pull yanıtında döndürdüğü değere ilerletilir.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from ..db import get_connection, transaction

logger = logging.getLogger(__name__)


class WatermarkStore:
    """Tablo bazında pull watermark'ları."""

    def __init__(self, db_path: Optional[str], device_id: str):
        self.db_path = db_path
        self.device_id = device_id

    def get(self, table: str) -> int:
        """Tablonun watermark'ı (hiç pull yapılmadıysa 0)."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT last_pulled_at FROM sync_watermarks
                WHERE device_id = ? AND table_name = ?
            """, (self.device_id, table)).fetchone()
            return int(row[0]) if row else 0
        finally:
            conn.close()

    def get_all(self) -> Dict[str, int]:
        """Tüm tabloların watermark'ları."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT table_name, last_pulled_at FROM sync_watermarks
                WHERE device_id = ?
            """, (self.device_id,)).fetchall()
            return {row['table_name']: int(row['last_pulled_at']) for row in rows}
        finally:
            conn.close()

    def advance(self, table: str, value: int) -> int:
        """
        Watermark'ı sunucunun döndürdüğü değere ilerlet.

        Geriye gitmez; daha küçük bir değer gelirse mevcut değer korunur.

        Returns:
            Kaydedilen watermark
        """
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"Geçersiz watermark: {value!r}")

        with transaction(self.db_path) as conn:
            row = conn.execute("""
                SELECT last_pulled_at FROM sync_watermarks
                WHERE device_id = ? AND table_name = ?
            """, (self.device_id, table)).fetchone()
            current = int(row[0]) if row else 0

            if row is not None and value <= current:
                if value < current:
                    logger.warning(
                        f"Watermark geri alınmadı ({table}): {current} -> {value}"
                    )
                return current

            conn.execute("""
                INSERT OR REPLACE INTO sync_watermarks
                (device_id, table_name, last_pulled_at, updated_at)
                VALUES (?, ?, ?, ?)
            """, (self.device_id, table, value, datetime.now().isoformat()))

        if value != current:
            logger.debug(f"Watermark ilerledi ({table}): {current} -> {value}")
        return value

    def reset(self, table: Optional[str] = None):
        """Watermark'ı sıfırla (tam yeniden indirme için)."""
        with transaction(self.db_path) as conn:
            if table:
                conn.execute("""
                    DELETE FROM sync_watermarks
                    WHERE device_id = ? AND table_name = ?
                """, (self.device_id, table))
            else:
                conn.execute(
                    "DELETE FROM sync_watermarks WHERE device_id = ?",
                    (self.device_id,)
                )
        logger.info(f"Watermark sıfırlandı: {table or 'tüm tablolar'}")
