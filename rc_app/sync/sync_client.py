# -*- coding: utf-8 -*-
"""
Sync HTTP Client

Sync server ile iletişim kurar: GET /sync/pull ve POST /sync/push.
HTTP hataları motorun hata sınıflarına çevrilir:

    401 / 403            -> AuthExpiredError
    5xx, zaman aşımı,
    bağlantı hatası      -> TransportError
    diğer 4xx            -> RequestRejectedError
"""

import logging
from typing import Dict, Any, Optional, List
from urllib.parse import urljoin

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import SyncConfig
from .models import (
    ErrorCode,
    PullPage,
    PushOutcome,
    PushResponse,
    SchemaMismatchError,
    SyncError,
)

logger = logging.getLogger(__name__)


class AuthExpiredError(SyncError):
    """Oturum süresi doldu veya yetki yok"""
    code = ErrorCode.AUTH_EXPIRED


class TransportError(SyncError):
    """Ağ / sunucu hatası (tekrar denenebilir)"""
    code = ErrorCode.TRANSPORT_ERROR


class RequestRejectedError(SyncError):
    """Sunucu isteği geçersiz buldu"""
    code = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _error_detail(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    detail = body.get('detail') if isinstance(body, dict) else body
    if isinstance(detail, dict):
        return f"{detail.get('code', '')}: {detail.get('message', '')}".strip(': ')
    return str(detail)


class SyncClient:
    """
    Sync Server HTTP Client.

    Özellikler:
    - Bearer token ile kimlik doğrulama
    - İstek başına zaman aşımı (request_timeout_ms)
    - Bağlantı kurulumu için düşük seviye retry; istek tekrarları
      motorun geri çekilme politikasına bırakılır
    """

    def __init__(self, config: SyncConfig, session=None):
        """
        Args:
            config: SyncConfig instance
            session: Hazır HTTP oturumu (verilmezse requests.Session oluşturulur)
        """
        self.config = config
        self._session = session if session is not None else self._create_session()
        self._session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
            'X-Device-ID': self.config.device_id,
        })

    def _create_session(self) -> requests.Session:
        """Bağlantı retry'lı session oluştur"""
        session = requests.Session()

        # Sadece bağlantı kurulamadığında tekrar dene
        retry_strategy = Retry(
            total=2,
            connect=2,
            read=0,
            status=0,
            other=0,
            backoff_factor=0.5,
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)
        session.verify = self.config.verify_ssl
        return session

    @property
    def timeout(self) -> float:
        return self.config.request_timeout_ms / 1000.0

    def _get_url(self, endpoint: str) -> str:
        """Tam URL oluştur"""
        return urljoin(self.config.api_url.rstrip('/') + '/', endpoint.lstrip('/'))

    def set_auth_token(self, token: str):
        """Yeni token'ı kullan"""
        self.config.auth_token = token or ""
        if token:
            self._session.headers['Authorization'] = f'Bearer {token}'

    def _ensure_authenticated(self):
        """Token olduğundan emin ol"""
        if not self.config.auth_token:
            raise AuthExpiredError("Access token yok, önce giriş yapın")
        self._session.headers['Authorization'] = f'Bearer {self.config.auth_token}'

    def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        self._ensure_authenticated()
        url = self._get_url(endpoint)

        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.Timeout as e:
            raise TransportError(f"Zaman aşımı: {url}") from e
        except requests.RequestException as e:
            raise TransportError(f"Bağlantı hatası: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise AuthExpiredError(f"Yetki reddedildi ({status}): {_error_detail(response)}")
        if status >= 500:
            raise TransportError(f"Sunucu hatası ({status}): {_error_detail(response)}")
        if status >= 400:
            raise RequestRejectedError(
                f"İstek reddedildi ({status}): {_error_detail(response)}",
                status_code=status
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError(f"Geçersiz JSON yanıtı: {url}") from e
        if not isinstance(body, dict):
            raise TransportError(f"Beklenmeyen yanıt: {url}")
        return body

    def check_connection(self) -> bool:
        """
        Sunucu bağlantısını kontrol et.

        Returns:
            Bağlantı başarılıysa True
        """
        try:
            response = self._session.get(self._get_url('/api/health'), timeout=5)
            return response.status_code == 200
        except requests.RequestException as e:
            logger.warning(f"Bağlantı kontrolü başarısız: {e}")
            return False

    # ============================================================
    # SYNC ENDPOINTS
    # ============================================================

    def pull_changes(self, table: str, last_sync: int,
                     limit: Optional[int] = None) -> PullPage:
        """
        Watermark'tan sonraki değişiklikleri çek.

        Satırlar ham dict olarak döner; her biri uygulanırken ayrıştırılır.
        """
        params = {
            'table': table,
            'lastSync': last_sync,
            'deviceId': self.config.device_id,
        }
        if limit:
            params['limit'] = limit

        body = self._request('GET', '/sync/pull', params=params)

        rows = body.get('rows')
        new_watermark = body.get('newWatermark')
        if not isinstance(rows, list) or isinstance(new_watermark, bool) \
                or not isinstance(new_watermark, int):
            raise TransportError(f"Geçersiz pull yanıtı ({table})")

        logger.debug(f"Pull {table}: {len(rows)} satır, watermark={new_watermark}")
        return PullPage(
            rows=rows,
            new_watermark=new_watermark,
            has_more=bool(body.get('hasMore', False)),
        )

    def push_changes(self, table: str, items: List[Dict[str, Any]]) -> PushResponse:
        """Bekleyen değişiklikleri gönder."""
        body = self._request('POST', '/sync/push', json={
            'table': table,
            'deviceId': self.config.device_id,
            'data': items,
        })

        raw_results = body.get('results')
        if not isinstance(raw_results, list):
            raise TransportError(f"Geçersiz push yanıtı ({table})")
        try:
            results = [PushOutcome.from_dict(r) for r in raw_results]
        except (ValueError, TypeError, AttributeError, SchemaMismatchError) as e:
            raise TransportError(f"Geçersiz push sonucu ({table}): {e}") from e

        logger.debug(f"Push {table}: {len(items)} gönderildi, {len(results)} sonuç")
        return PushResponse(results=results, server_time=body.get('serverTime'))

    def get_server_status(self) -> Dict[str, Any]:
        """Tablo bazında sunucu zaman damgaları."""
        return self._request('GET', '/sync/status')
