"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from leadflow.config import settings
from leadflow.db.pool import db_health_check
from leadflow.infrastructure.observability.logging import log_health_check
from leadflow.jobs.lead_assignment_job import lead_assignment_job_health
from leadflow.services.infrastructure.encryption_service import validate_encryption_config
from leadflow.services.infrastructure.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "leadflow"}


@router.get("/readyz")
async def readyz():
    """Readiness across Postgres, Redis and the assignment scheduler."""
    checks = {}
    overall_ok = True

    t0 = time.time()
    try:
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and redis_ok
    except Exception as e:
        checks["redis"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False
    log_health_check(
        "redis", checks["redis"]["ok"], checks["redis"].get("latency_ms", 0.0), checks["redis"].get("error")
    )

    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {"ok": is_healthy, "latency_ms": round((time.time() - t0) * 1000, 1)}
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False
    log_health_check(
        "database", checks["database"]["ok"], checks["database"].get("latency_ms", 0.0), checks["database"].get("error")
    )

    scheduler = lead_assignment_job_health()
    checks["scheduler"] = {"ok": scheduler["healthy"], **scheduler}
    overall_ok = overall_ok and scheduler["healthy"]

    config_issues = []
    if not settings.JWT_SECRET:
        config_issues.append("JWT_SECRET not set")
    if not validate_encryption_config():
        config_issues.append("ENCRYPTION_KEY missing or invalid")
    checks["configuration"] = {
        "ok": not config_issues,
        "issues": config_issues or None,
        "environment": settings.environment,
    }
    overall_ok = overall_ok and not config_issues

    body = {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
    return JSONResponse(body, status_code=200 if overall_ok else 503)


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
