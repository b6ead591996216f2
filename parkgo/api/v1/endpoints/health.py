"""
Health check endpoints
"""

from typing import Any
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
import logging
from redis.exceptions import RedisError

from parkgo.core.database import get_session, db_manager
from parkgo.core.redis import get_redis
from parkgo.config import settings

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/live")
async def liveness() -> Any:
    """
    Kubernetes liveness probe
    """
    return {"status": "alive", "service": "parkgo-api"}


@router.get("/ready")
async def readiness(
    db: AsyncSession = Depends(get_session),
    redis_client=Depends(get_redis)
) -> Any:
    """
    Kubernetes readiness probe. Only the database gates readiness; Redis is
    reported but optional.
    """
    checks = {"database": False, "redis": False}

    try:
        async with db_manager.transaction(db):
            result = await db.execute(text("SELECT 1"))
            checks["database"] = result.scalar() == 1
    except SQLAlchemyError as e:
        logger.error(f"Database readiness check failed: {e}")

    if redis_client is not None:
        try:
            checks["redis"] = bool(await redis_client.ping())
        except (RedisError, OSError) as e:
            logger.warning(f"Redis readiness check failed: {e}")

    ready = checks["database"]
    return JSONResponse(
        status_code=200 if ready else 503,
        content={
            "status": "ready" if ready else "not ready",
            "checks": checks,
            "version": settings.APP_VERSION
        }
    )
