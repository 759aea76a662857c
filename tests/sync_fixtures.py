# -*- coding: utf-8 -*-
"""Testler için ortak yardımcılar: sahte saat, bellek içi sunucu, istemci kurulumu."""

import itertools
import os
import shutil
import sys
import tempfile
from pathlib import Path

import requests
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from rc_app.db import initialize_database  # noqa: E402
from rc_app.sync.config import SyncConfig  # noqa: E402
from rc_app.sync.sync_manager import SyncManager  # noqa: E402
from sync_server.auth import create_access_token  # noqa: E402
from sync_server.database import get_db  # noqa: E402
from sync_server.main import app, get_sync_handler  # noqa: E402
from sync_server.models import Base  # noqa: E402
from sync_server.sync_handler import SyncHandler  # noqa: E402

T0 = 1700000000000

DEVICE_A = "00000000-0000-4000-8000-00000000000a"
DEVICE_B = "00000000-0000-4000-8000-00000000000b"

TABLES = ['clients', 'budgets', 'contracts', 'financial']


class FakeClock:
    """Elle ilerletilen milisaniye saati."""

    def __init__(self, now: int = T0):
        self.now = now

    def __call__(self) -> int:
        return self.now


class TempDatabase:
    """Geçici dizinde SQLite dosyası."""

    def __init__(self, name: str = "data.db"):
        self.directory = tempfile.mkdtemp(prefix="rc_sync_test_")
        self.path = os.path.join(self.directory, name)
        initialize_database(self.path)

    def cleanup(self):
        shutil.rmtree(self.directory, ignore_errors=True)


class ServerHarness:
    """
    Bellek içi SQLite üzerinde çalışan sync server.

    Saat ve serverId üreteci testten kontrol edilir; serverId'ler
    S1, S2, ... sırasıyla verilir.
    """

    def __init__(self, clock: FakeClock = None, user_id: str = "user-1"):
        self.clock = clock or FakeClock()
        self._ids = itertools.count(1)
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(bind=self.engine)
        self.Session = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self.handler = SyncHandler(clock=self.clock, id_factory=self.next_id)
        self.user_id = user_id
        self.token = create_access_token(user_id)

        app.dependency_overrides[get_db] = self._get_db
        app.dependency_overrides[get_sync_handler] = lambda: self.handler

    def next_id(self) -> str:
        return f"S{next(self._ids)}"

    def _get_db(self):
        db = self.Session()
        try:
            yield db
        finally:
            db.close()

    def http(self) -> TestClient:
        """Yeni bir HTTP istemcisi (sunucu hatalarını 500 olarak döndürür)."""
        return TestClient(app, raise_server_exceptions=False)

    def auth_headers(self, token: str = None) -> dict:
        return {"Authorization": f"Bearer {token or self.token}"}

    def close(self):
        app.dependency_overrides.clear()
        self.engine.dispose()


class FlakySession:
    """
    HTTP oturumu sarmalayıcısı.

    drop_push_responses > 0 iken push isteği sunucuya ulaşır ve işlenir,
    ama yanıt yerine bağlantı hatası döner. expired_tables içindeki
    tablolar için pull geçersiz token ile gönderilir.
    """

    def __init__(self, inner):
        self.inner = inner
        self.drop_push_responses = 0
        self.expired_tables = set()
        self.push_count = 0
        self.pull_count = 0

    @property
    def headers(self):
        return self.inner.headers

    def get(self, url, **kwargs):
        return self.inner.get(url, **kwargs)

    def request(self, method, url, **kwargs):
        if method == 'GET' and url.endswith('/sync/pull'):
            self.pull_count += 1
            table = (kwargs.get('params') or {}).get('table')
            if table in self.expired_tables:
                kwargs['headers'] = {'Authorization': 'Bearer expired-token'}
        response = self.inner.request(method, url, **kwargs)
        if method == 'POST' and url.endswith('/sync/push'):
            self.push_count += 1
            if self.drop_push_responses > 0:
                self.drop_push_responses -= 1
                raise requests.ConnectionError("Bağlantı sıfırlandı")
        return response


def make_manager(db: TempDatabase, device_id: str, session, token: str,
                 clock: FakeClock, **overrides) -> SyncManager:
    """Test sunucusuna bağlı, beklemesiz bir SyncManager kur."""
    values = dict(
        api_url="http://testserver",
        device_id=device_id,
        auth_token=token,
        tables=list(TABLES),
        max_retries_per_cycle=3,
        base_retry_delay_ms=10,
        max_retry_delay_ms=100,
    )
    online = overrides.pop('online', True)
    values.update(overrides)

    manager = SyncManager(
        db.path,
        clock=clock,
        session=session,
        sleep=lambda seconds: None,
        rand=lambda: 0.0,
    )
    manager.initialize(SyncConfig(**values), online=online)
    return manager
