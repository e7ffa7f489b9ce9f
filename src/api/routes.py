"""Service-level routes."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request

router = APIRouter()


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Report database reachability and the background maintenance state.

    Returns:
        Overall status, ISO8601 timestamp, database and maintenance states,
        and how many user sessions are cached
    """
    state = request.app.state
    maintenance = getattr(state, "maintenance_service", None)

    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "maintenance": "running" if maintenance is not None and maintenance.is_running else "disabled",
        "active_sessions": len(getattr(state, "suggestion_sessions", {})),
    }

    try:
        from src.database import health_check as db_health_check

        db_healthy = await db_health_check()
        health_status["database"] = "healthy" if db_healthy else "unhealthy"
    except Exception:
        health_status["database"] = "unavailable"

    return health_status
