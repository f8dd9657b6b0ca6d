"""
Health and readiness checks for the calibration record service
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health")
async def health_check(request: Request):
    """Report record store status and row count"""
    store = getattr(request.app.state, "record_store", None)
    checks = {
        "status": "ok",
        "service": "caltrack",
        "storage_mode": store.mode if store is not None else None,
        "records": None,
    }

    if store is None or not store.is_open:
        checks["status"] = "unavailable"
        return JSONResponse(status_code=503, content=checks)

    try:
        checks["records"] = await store.count()
    except Exception as e:
        logger.error(f"Health check could not read record store: {e}")
        checks["status"] = "degraded"
        return JSONResponse(status_code=503, content=checks)

    broadcaster = getattr(request.app.state, "broadcaster", None)
    if broadcaster is not None:
        checks["viewers"] = broadcaster.subscriber_count
    return checks
