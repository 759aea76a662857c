# -*- coding: utf-8 -*-
"""
RC Obra Sync Server

Tablo bazlı, watermark ile çalışan iki yönlü senkronizasyon sunucusu.
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import __version__
from .auth import get_current_identity
from .config import settings
from .database import engine, get_db
from .models import Base
from .schemas import PullResponse, PushRequest, PushResponse
from .sync_handler import SyncHandler, SyncRequestError

# Logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="RC Obra Sync Server",
    version=__version__,
    description="Offline-first istemciler için iki yönlü senkronizasyon"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

sync_handler = SyncHandler()


def get_sync_handler() -> SyncHandler:
    return sync_handler


@app.on_event("startup")
def startup():
    """Tabloları oluştur"""
    Base.metadata.create_all(bind=engine)
    logger.info("Sync Server başlatıldı")


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """İstek doğrulama hataları 400 VALIDATION_ERROR olarak döner"""
    errors = []
    for err in exc.errors():
        location = '.'.join(str(p) for p in err.get('loc', ()))
        errors.append(f"{location}: {err.get('msg')}")
    return JSONResponse(
        status_code=400,
        content={"detail": {
            "code": "VALIDATION_ERROR",
            "message": "Geçersiz istek",
            "errors": errors,
        }}
    )


def _request_error(e: SyncRequestError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail={"code": e.code, "message": str(e)})


def _storage_error(db: Session, e: SQLAlchemyError) -> HTTPException:
    db.rollback()
    logger.error(f"Veritabanı hatası: {e}")
    return HTTPException(
        status_code=500,
        detail={"code": "TRANSPORT", "message": "Sunucu veritabanı hatası"}
    )


# ============================================================
# HEALTH
# ============================================================

@app.get("/api/health")
def health_check():
    return {"status": "ok", "version": __version__}


# ============================================================
# SYNC
# ============================================================

@app.get("/sync/pull", response_model=PullResponse, response_model_by_alias=True)
def pull_changes(
    table: str,
    last_sync: int = Query(0, alias="lastSync", ge=0),
    device_id: str = Query(..., alias="deviceId"),
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_identity),
    handler: SyncHandler = Depends(get_sync_handler),
    db: Session = Depends(get_db)
):
    """Watermark'tan sonraki değişiklikleri döndür"""
    try:
        return handler.pull(db, user_id, table, device_id, last_sync, limit)
    except SyncRequestError as e:
        db.rollback()
        raise _request_error(e)
    except SQLAlchemyError as e:
        raise _storage_error(db, e)


@app.post("/sync/push", response_model=PushResponse, response_model_by_alias=True)
def push_changes(
    request: PushRequest,
    user_id: str = Depends(get_current_identity),
    handler: SyncHandler = Depends(get_sync_handler),
    db: Session = Depends(get_db)
):
    """Yerel değişiklikleri al; her satır için sonuç döndür"""
    try:
        return handler.push(db, user_id, request)
    except SyncRequestError as e:
        db.rollback()
        raise _request_error(e)
    except SQLAlchemyError as e:
        raise _storage_error(db, e)


@app.get("/sync/status")
def sync_status(
    user_id: str = Depends(get_current_identity),
    handler: SyncHandler = Depends(get_sync_handler),
    db: Session = Depends(get_db)
):
    """Sunucu saati ve tablo bazında son değişiklik zamanı"""
    return handler.status(db)


@app.post("/sync/maintenance/compact")
def compact_tombstones(
    retention_days: Optional[int] = Query(None, alias="retentionDays", ge=0),
    user_id: str = Depends(get_current_identity),
    handler: SyncHandler = Depends(get_sync_handler),
    db: Session = Depends(get_db)
):
    """Tüm cihazların gördüğü eski tombstone'ları temizle"""
    try:
        purged = handler.compact(db, retention_days)
    except SQLAlchemyError as e:
        raise _storage_error(db, e)
    logger.info(f"Tombstone temizliği tamamlandı: {purged} kayıt (isteyen={user_id})")
    return {"purged": purged}


# ============================================================
# MAIN
# ============================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)
