"""Health check endpoint.

Learn: Verifies the server is running, that Postgres and Redis are
reachable, and reports which realtime emission source is active plus how
many live dashboard sessions this process holds.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from techflow import __version__
from techflow.config import settings
from techflow.db.engine import engine
from techflow.db.redis_client import get_redis

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["postgres"] = "ok"
    except Exception as e:
        checks["postgres"] = f"error: {e}"

    try:
        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    registry = request.app.state.registry
    return {
        "status": status,
        **checks,
        "realtime": {
            "mode": settings.realtime_mode,
            "sessions": registry.session_count,
            "rooms": registry.room_count,
        },
    }
