# -*- coding: utf-8 -*-
"""
Sunucu saati

Tablo içinde kesin artan zaman damgası üretir: max(şimdi, son + 1).
Saat geri gitse ya da aynı milisaniyede iki yazma olsa da sıralama korunur.
"""

import time
from typing import Callable

from sqlalchemy.orm import Session

from .models import TableClock


def now_ms() -> int:
    """Milisaniye cinsinden duvar saati."""
    return int(time.time() * 1000)


def next_timestamp(db: Session, table_name: str, clock: Callable[[], int] = now_ms) -> int:
    """Tablo için sonraki zaman damgasını al ve kaydet."""
    row = db.query(TableClock).filter(
        TableClock.table_name == table_name
    ).with_for_update().first()

    if row is None:
        row = TableClock(table_name=table_name, last_timestamp=0)
        db.add(row)

    timestamp = max(clock(), (row.last_timestamp or 0) + 1)
    row.last_timestamp = timestamp
    db.flush()
    return timestamp

