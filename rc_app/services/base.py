# -*- coding: utf-8 -*-
"""
Ortak servis altyapısı ve yardımcı fonksiyonlar.

Alan servisleri kayıtları doğrudan SQL ile değil, senkronizasyon
metadatasını damgalayan LocalRecordStore üzerinden yazar.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, List, Optional, Tuple

from ..sync.local_store import LocalRecordStore, RowNotFoundError
from ..sync.models import SyncOperation

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    """Alan verisi geçersiz"""
    pass


def normalize_str(value: Any) -> Optional[str]:
    """Boşlukları kırp, boş metni None yap."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_amount(value: Any) -> Optional[str]:
    """Tutarı iki ondalıklı metne çevir ("1.234,50" ve "1234.5" kabul edilir)."""
    if value is None or value == "":
        return None
    try:
        if isinstance(value, str):
            text = value.replace(" ", "").replace("R$", "")
            if "," in text:
                text = text.replace(".", "").replace(",", ".")
            value = text
        dec = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Geçersiz tutar: {value!r}")
    if dec < 0:
        raise ValidationError(f"Tutar negatif olamaz: {value!r}")
    return str(dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


class RecordService:
    """
    Tek bir senkronize tablo için ince CRUD katmanı.

    Alt sınıflar TABLE, REQUIRED_FIELDS ve gerekirse normalize() tanımlar.
    """

    TABLE: str = ""
    REQUIRED_FIELDS: Tuple[str, ...] = ()

    def __init__(self, store: LocalRecordStore):
        self.store = store

    def normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Alan bazında temizlik ve kontrol."""
        return payload

    def _validate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = {k: v for k, v in payload.items() if v is not None}
        data = self.normalize(data)
        missing = [f for f in self.REQUIRED_FIELDS if data.get(f) in (None, "")]
        if missing:
            raise ValidationError(f"{self.TABLE}: zorunlu alan eksik: {', '.join(missing)}")
        return data

    def create(self, payload: Dict[str, Any], local_id: Optional[str] = None) -> Dict[str, Any]:
        """Yeni kayıt oluştur."""
        row = self.store.put(self.TABLE, self._validate(dict(payload)), local_id=local_id)
        logger.info(f"{self.TABLE} kaydı oluşturuldu: {row.local_id}")
        return self._to_record(row)

    def update(self, local_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Kaydı güncelle (verilen alanlar eskilerin üzerine yazılır)."""
        current = self.store.get(self.TABLE, local_id)
        if current is None:
            raise RowNotFoundError(f"{self.TABLE} kaydı bulunamadı: {local_id}")
        merged = dict(current.payload)
        merged.update(changes)
        row = self.store.put(self.TABLE, self._validate(merged), local_id=local_id)
        return self._to_record(row)

    def remove(self, local_id: str) -> bool:
        """Kaydı sil."""
        return self.store.delete(self.TABLE, local_id)

    def get(self, local_id: str) -> Optional[Dict[str, Any]]:
        """Kaydı al (silinmeyi bekleyenler görünmez)."""
        row = self.store.get(self.TABLE, local_id)
        if row is None or row.pending_operation == SyncOperation.DELETE:
            return None
        return self._to_record(row)

    def list(self) -> List[Dict[str, Any]]:
        return [self._to_record(r) for r in self.store.list_rows(self.TABLE)]

    @staticmethod
    def _to_record(row) -> Dict[str, Any]:
        record = dict(row.payload)
        record['id'] = row.local_id
        record['serverId'] = row.server_id
        record['syncStatus'] = row.sync_status.value
        record['needsAttention'] = row.quarantined
        return record
