"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.observability.logging import log_health_check
from app.services.redis_client import cache_store

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Always 200 while the process is serving."""
    return {"status": "ok", "service": "contact-intelligence"}


@router.get("/readyz")
async def readyz():
    """
    Redis and database pool checks. Returns 503 when either is unhealthy
    so load balancers stop routing to this instance.
    """
    checks = {}

    t0 = time.time()
    redis_ok = await cache_store.ping()
    latency_ms = round((time.time() - t0) * 1000, 1)
    checks["redis"] = {"ok": redis_ok, "latency_ms": latency_ms}
    log_health_check("redis", redis_ok, latency_ms)

    t0 = time.time()
    try:
        db_health = await db_health_check()
    except Exception as e:
        db_health = {"healthy": False, "error": f"{type(e).__name__}: {e}"}
    latency_ms = round((time.time() - t0) * 1000, 1)

    database_ok = bool(db_health.get("healthy", False))
    checks["database"] = {"ok": database_ok, "latency_ms": latency_ms}
    if "pool_stats" in db_health:
        checks["database"]["pool_stats"] = db_health["pool_stats"]
    if "warnings" in db_health:
        checks["database"]["warnings"] = db_health["warnings"]
    if not database_ok:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")
    log_health_check("database", database_ok, latency_ms, error=checks["database"].get("error"))

    overall_ok = redis_ok and database_ok
    body = {
        "overall_ok": overall_ok,
        "checks": checks,
        "environment": settings.environment,
        "timestamp": time.time(),
    }
    return JSONResponse(status_code=200 if overall_ok else 503, content=body)
