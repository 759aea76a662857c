# -*- coding: utf-8 -*-
"""
Sync Yapılandırması

Cihaz kimliği, sunucu adresi, zamanlama ve karantina ayarları;
değerler sync_config tablosunda JSON olarak tutulur.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field, fields
from typing import Optional, Dict, Any, List

from ..db import get_connection
from .conflict_handler import CONFLICT_POLICIES, SERVER_WINS
from .models import SYNCED_TABLES

logger = logging.getLogger(__name__)

# Dış arayüzdeki camelCase isimler
_CAMEL_KEYS = {
    'apiUrl': 'api_url',
    'deviceId': 'device_id',
    'authToken': 'auth_token',
    'pullPageSize': 'pull_page_size',
    'pushBatchSize': 'push_batch_size',
    'cycleIntervalMs': 'cycle_interval_ms',
    'baseRetryDelayMs': 'base_retry_delay_ms',
    'maxRetryDelayMs': 'max_retry_delay_ms',
    'maxRetriesPerCycle': 'max_retries_per_cycle',
    'requestTimeoutMs': 'request_timeout_ms',
    'conflictPolicy': 'conflict_policy',
    'maxRowFailures': 'max_row_failures',
    'verifySsl': 'verify_ssl',
}


@dataclass
class SyncConfig:
    """Motorun tüm ayarları (alan adları snake_case)."""

    # Sunucu bilgileri
    api_url: str = ""

    # Kimlik bilgileri
    device_id: str = ""
    auth_token: str = ""

    # Tablolar (sıralı)
    tables: List[str] = field(default_factory=lambda: list(SYNCED_TABLES))

    # Sayfa / batch boyutları
    pull_page_size: int = 100
    push_batch_size: int = 50

    # Zamanlama (ms)
    cycle_interval_ms: int = 60000
    base_retry_delay_ms: int = 5000
    max_retry_delay_ms: int = 300000
    max_retries_per_cycle: int = 5
    request_timeout_ms: int = 30000

    # Çakışma ve karantina
    conflict_policy: str = SERVER_WINS
    max_row_failures: int = 5

    verify_ssl: bool = True

    @property
    def is_configured(self) -> bool:
        """Sunucu adresi ve cihaz kimliği tanımlı mı?"""
        return bool(self.api_url and self.device_id and self.auth_token)

    def validate(self):
        """Geçersiz değerlerde ValueError fırlatır."""
        if not self.tables:
            raise ValueError("En az bir tablo tanımlanmalı")
        if len(set(self.tables)) != len(self.tables):
            raise ValueError(f"Tablo listesinde tekrar var: {self.tables}")
        for name in ('pull_page_size', 'push_batch_size', 'cycle_interval_ms',
                     'base_retry_delay_ms', 'max_retry_delay_ms',
                     'request_timeout_ms', 'max_row_failures'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
                raise ValueError(f"{name} pozitif tam sayı olmalı: {value!r}")
        if self.max_retries_per_cycle < 0:
            raise ValueError("max_retries_per_cycle negatif olamaz")
        if self.max_retry_delay_ms < self.base_retry_delay_ms:
            raise ValueError("max_retry_delay_ms, base_retry_delay_ms'den küçük olamaz")
        if self.conflict_policy not in CONFLICT_POLICIES:
            raise ValueError(f"Bilinmeyen çakışma stratejisi: {self.conflict_policy}")

    def to_dict(self) -> Dict[str, Any]:
        """Saklanacak alanlar"""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'SyncConfig':
        """Dict'ten config oluştur (snake_case veya camelCase)."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            name = _CAMEL_KEYS.get(key, key)
            if name in known:
                values[name] = value
        if 'tables' in values:
            values['tables'] = list(values['tables'])
        return cls(**values)


def ensure_config_table(db_path: Optional[str] = None):
    """Ayar tablosu yoksa oluştur."""
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_config (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        conn.commit()
    finally:
        conn.close()


def _decode(value: Optional[str]) -> Any:
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return value


def get_sync_config(db_path: Optional[str] = None) -> SyncConfig:
    """Kayıtlı ayarları oku; ilk çalıştırmada cihaz kimliği üretir."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        rows = conn.execute("SELECT key, value FROM sync_config").fetchall()
        data = {row['key']: _decode(row['value']) for row in rows}
    finally:
        conn.close()

    # İlk çalıştırma: kalıcı cihaz kimliği
    if not data.get('device_id'):
        data['device_id'] = str(uuid.uuid4())
        save_config_value('device_id', data['device_id'], db_path)
        logger.info(f"Yeni cihaz kimliği oluşturuldu: {data['device_id']}")

    return SyncConfig.from_dict(data)


def save_sync_config(config: SyncConfig, db_path: Optional[str] = None):
    """Tüm alanları tabloya yaz."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        for key, value in config.to_dict().items():
            conn.execute("""
                INSERT OR REPLACE INTO sync_config (key, value)
                VALUES (?, ?)
            """, (key, json.dumps(value)))
        conn.commit()
    finally:
        conn.close()


def save_config_value(key: str, value: Any, db_path: Optional[str] = None):
    """Tek anahtarı JSON olarak yaz."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        conn.execute("""
            INSERT OR REPLACE INTO sync_config (key, value)
            VALUES (?, ?)
        """, (key, json.dumps(value)))
        conn.commit()
    finally:
        conn.close()


def get_config_value(key: str, default: Any = None, db_path: Optional[str] = None) -> Any:
    """Tek anahtarı oku; yoksa default."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        row = conn.execute(
            "SELECT value FROM sync_config WHERE key = ?", (key,)
        ).fetchone()
        if row:
            return _decode(row[0])
        return default
    finally:
        conn.close()


def clear_sync_config(db_path: Optional[str] = None):
    """Oturum kapanışında ayarları sil."""
    ensure_config_table(db_path)

    conn = get_connection(db_path)
    try:
        # device_id kalır, sunucudaki kayıtlar ona bağlı
        conn.execute("DELETE FROM sync_config WHERE key != 'device_id'")
        conn.commit()
    finally:
        conn.close()
