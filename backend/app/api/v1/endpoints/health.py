"""
Health Check Endpoints

Endpoints:
- /health       - Overall status with database and session cache checks
- /health/live  - Basic liveness (app is running)
- /health/ready - Readiness check (database reachable, tables created)

The session cache is optional: when it is down the service keeps serving
with every cache read treated as a miss, so it degrades the status instead
of failing readiness.
"""

from fastapi import APIRouter, HTTPException, Request, status
from datetime import datetime
from typing import Dict, Any
import asyncio
import time

from sqlalchemy import text

from app.core.config import settings
from app.core.logging_config import logger


router = APIRouter(prefix="/health", tags=["Health Checks"])


async def check_database(request: Request) -> Dict[str, Any]:
    """Check database connectivity and that the schema exists"""
    start = time.time()
    try:
        session_factory = request.app.state.session_factory
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
            try:
                await session.execute(text("SELECT COUNT(*) FROM projects"))
                tables_ok = True
            except Exception:
                tables_ok = False

        return {
            "status": "healthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
            "tables_ready": tables_ok,
        }
    except Exception as e:
        logger.error(f"[HealthCheck] Database check failed: {e}")
        return {
            "status": "unhealthy",
            "latency_ms": round((time.time() - start) * 1000, 2),
            "tables_ready": False,
            "error": str(e),
        }


async def check_cache(request: Request) -> Dict[str, Any]:
    """Check the Redis session cache"""
    start = time.time()
    cache = request.app.state.session_cache
    connected = await cache.is_connected()
    stats = await cache.get_stats() if connected else {"connected": False}
    return {
        "status": "healthy" if connected else "degraded",
        "latency_ms": round((time.time() - start) * 1000, 2),
        **stats,
        "message": "Session cache connected" if connected else "Session cache unavailable, running without cache",
    }


@router.get("")
async def health_check(request: Request):
    """Overall health: database and session cache"""
    db_check, cache_check = await asyncio.gather(check_database(request), check_cache(request))

    if db_check["status"] != "healthy":
        overall = "unhealthy"
    elif cache_check["status"] != "healthy":
        overall = "degraded"
    else:
        overall = "healthy"

    return {
        "status": overall,
        "app_name": settings.APP_NAME,
        "environment": settings.ENVIRONMENT,
        "timestamp": datetime.utcnow().isoformat(),
        "active_runs": request.app.state.orchestrator.active_runs,
        "checks": {
            "database": db_check,
            "cache": cache_check,
        },
    }


@router.get("/live")
async def liveness_check():
    """Liveness check - returns 200 while the process is alive"""
    return {
        "status": "alive",
        "timestamp": datetime.utcnow().isoformat(),
        "app": settings.APP_NAME,
    }


@router.get("/ready")
async def readiness_check(request: Request):
    """
    Readiness check - 200 only when the database is usable.

    Load balancers should use this endpoint rather than /health.
    """
    db_check = await check_database(request)
    is_ready = db_check.get("status") == "healthy" and db_check.get("tables_ready", False)

    response = {
        "status": "ready" if is_ready else "not_ready",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": {"database": db_check},
    }

    if not is_ready:
        logger.warning(f"[HealthCheck] Readiness check failed: {response}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=response
        )

    return response
