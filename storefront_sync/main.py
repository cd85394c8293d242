import logging

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from storefront_sync.api.endpoints import functions, sync_status
from storefront_sync.db import get_session
from storefront_sync.exceptions import SyncError

logger = logging.getLogger(__name__)

app = FastAPI(title="storefront-sync")

app.include_router(functions.router, prefix="/functions", tags=["MoySklad"])
app.include_router(sync_status.router, prefix="/api/sync-status", tags=["Sync Status"])


@app.exception_handler(SyncError)
async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    # 동기화 실패는 sync_status에 이미 기록됨. 호출자에게는 메시지만 전달
    logger.error(f"[API] {request.method} {request.url.path} failed: {exc.error_code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content={"error": exc.message})


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.get("/db/ping")
def db_ping(session: Session = Depends(get_session)) -> dict:
    value = session.execute(text("SELECT 1")).scalar_one()
    return {"ok": value == 1}
