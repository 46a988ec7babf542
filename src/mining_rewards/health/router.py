"""Health, readiness, and version endpoints."""

from fastapi import APIRouter

from mining_rewards.config import get_settings
from mining_rewards.database import ping_db
from mining_rewards.errors import ConfigurationError
from mining_rewards.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness() -> dict[str, object]:
    """Readiness: database, Redis, and a usable session duration.

    Without a valid duration the schedulers refuse every session, so the
    service reports degraded rather than accepting work it cannot finish.
    """
    checks: dict[str, str] = {}

    try:
        await ping_db()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as exc:
        checks["redis"] = f"error: {exc}"

    try:
        minutes = get_settings().session_duration()
        checks["session_duration"] = "ok"
    except ConfigurationError as exc:
        minutes = None
        checks["session_duration"] = f"error: {exc}"

    status = "ready" if all(v == "ok" for v in checks.values()) else "degraded"
    return {"status": status, "checks": checks, "session_duration_minutes": minutes}


@router.get("/version")
async def version() -> dict[str, str]:
    settings = get_settings()
    return {"version": settings.app_version, "environment": settings.environment}
