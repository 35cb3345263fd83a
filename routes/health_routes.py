"""
Health check endpoint.

GET /health — checks MongoDB, Redis and the webhook retry sweeper.
Rules:
- MongoDB failure → "unhealthy" (503) — credentials cannot be checked without it.
- Redis failure or absence → "degraded" (200) — rate limits go unenforced.
- Sweeper enabled but not running → "degraded" (200) — retries stall.
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from schemas.dto.responses.common import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request) -> JSONResponse:
    checks: dict[str, str] = {}
    overall = "healthy"

    try:
        db = request.app.state.db
        await db.client.admin.command("ping")
        checks["mongodb"] = "ok"
    except Exception:
        checks["mongodb"] = "error"
        overall = "unhealthy"

    redis = request.app.state.redis
    if redis is None:
        checks["redis"] = "not_configured"
        if overall == "healthy":
            overall = "degraded"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "error"
            if overall == "healthy":
                overall = "degraded"

    sweeper = getattr(request.app.state, "sweeper", None)
    if sweeper is None:
        checks["retry_sweeper"] = "disabled"
    elif sweeper.running:
        checks["retry_sweeper"] = "ok"
    else:
        checks["retry_sweeper"] = "stopped"
        if overall == "healthy":
            overall = "degraded"

    status_code = 503 if overall == "unhealthy" else 200
    return JSONResponse(
        status_code=status_code,
        content=HealthResponse(status=overall, checks=checks).model_dump(),
    )
