"""System router providing health and readiness endpoints."""
from fastapi import APIRouter
from fastapi.responses import JSONResponse
import time

from invoice_desk.config.database import async_database_health_check
from invoice_desk.utils.api_shapes import success

router = APIRouter()

_start_time = time.time()


@router.get("/health", tags=["System"])  # liveness
async def health():
    return success({"ok": True})


@router.get("/readiness", tags=["System"])  # readiness: db connectivity
async def readiness():
    db_health = await async_database_health_check()
    body = success({"database": db_health, "uptime_s": int(time.time() - _start_time)})
    if db_health.get("status") != "healthy":
        return JSONResponse(status_code=503, content=body)
    return body
