"""Health, readiness, and version endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from runcoin.config import get_settings
from runcoin.database import get_session
from runcoin.redis_client import redis_status
from runcoin.rewards.economy_service import get_economy_config

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe — returns 200 if the process is alive."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),  # noqa: B008
) -> dict[str, object]:
    """Readiness probe — checks the database, the economy record and Redis."""
    checks: dict[str, object] = {}

    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        checks["database"] = "ok"
    except Exception as exc:
        checks["database"] = f"error: {exc}"

    if checks["database"] == "ok":
        try:
            config = await get_economy_config(db)
            checks["economy"] = "ok" if config is not None else "not_configured"
        except Exception as exc:
            checks["economy"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    # Reward writes do not need Redis, so it never fails readiness
    checks["redis"] = await redis_status()
    return {"status": "ready" if all_ok else "degraded", "checks": checks}


@router.get("/version")
async def version() -> dict[str, str]:
    """Return API version and environment."""
    settings = get_settings()
    return {
        "version": settings.app_version,
        "environment": settings.environment,
    }
