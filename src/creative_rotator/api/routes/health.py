"""Health check endpoints."""

from fastapi import APIRouter, status
from pydantic import BaseModel
from sqlalchemy import text

from creative_rotator import __version__
from creative_rotator.config import settings
from creative_rotator.db.session import engine
from creative_rotator.logging import get_logger
from creative_rotator.services.alerting import get_alerting_service

router = APIRouter(tags=["Health"])
logger = get_logger(__name__)


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    components: dict[str, bool] | None = None


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    database: bool
    broker: bool


@router.get(
    "/health",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Health check",
    description="Basic health check endpoint that verifies the API is running.",
)
async def health_check() -> HealthResponse:
    """Basic health check - is the API up?

    Components report whether a real marketplace and any alert channel are configured.
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        components={
            "marketplace": settings.marketplace_provider != "stub",
            "alerts": get_alerting_service().enabled,
        },
    )


@router.get(
    "/health/ready",
    response_model=ReadinessResponse,
    summary="Readiness check",
    description="Verifies the database and the Celery broker are reachable.",
)
async def readiness_check() -> ReadinessResponse:
    """Readiness check including dependencies."""
    database_ok = False
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            database_ok = True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))

    broker_ok = False
    try:
        import redis

        redis.from_url(settings.celery_broker_url).ping()
        broker_ok = True
    except Exception as e:
        logger.error("broker_health_check_failed", error=str(e))

    return ReadinessResponse(
        ready=database_ok and broker_ok,
        database=database_ok,
        broker=broker_ok,
    )


@router.get(
    "/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Simple liveness probe for Kubernetes.",
)
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe - is the process alive?"""
    return {"status": "alive"}
