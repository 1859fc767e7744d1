"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no DB check).

    Returns 200 OK if the service is running.
    """
    return {
        "status": "ok",
        "service": "KopiTrace",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Readiness check — 200 only if the database answers."""
    checks = {"service": "ok", "database": "unknown"}
    healthy = True

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {str(e)[:100]}"
        healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if healthy else "unhealthy",
            "service": "KopiTrace",
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
