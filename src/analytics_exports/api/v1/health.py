"""Health and readiness endpoints."""

from fastapi import APIRouter, Request

health_router = APIRouter(tags=["health"])


@health_router.get("/health", status_code=200)
async def health_check(request: Request) -> dict:
    """Liveness check, with the state of the in-process export workers."""
    pool = getattr(request.app.state, "worker_pool", None)
    return {"status": "healthy", "workers_running": bool(pool is not None and pool.running)}
