"""Health check endpoints."""

import asyncio
import logging
from datetime import UTC, datetime

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from adapters.ai import story_ai_service
from adapters.storage import storage_adapter
from infrastructure.config import get_settings
from infrastructure.database import get_db

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()


async def _database_ok(db: AsyncSession, timeout: float = 5.0) -> bool:
    try:
        await asyncio.wait_for(db.execute(text("SELECT 1")), timeout=timeout)
        return True
    except TimeoutError:
        logger.error("Health check DB timeout")
        return False
    except Exception as e:
        logger.error("Health check DB error: %s", str(e))
        return False


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {
        "status": "healthy",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/db")
async def health_check_db(db: AsyncSession = Depends(get_db)):
    """Health check with database connectivity."""
    connected = await _database_ok(db)
    return {
        "status": "healthy" if connected else "degraded",
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if connected else "error: database check failed",
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health/redis")
async def health_redis():
    """Check Redis connectivity."""
    if not settings.redis_url:
        raise HTTPException(status_code=503, detail="Redis not configured")
    try:
        r = aioredis.from_url(settings.redis_url)
        await asyncio.wait_for(r.ping(), timeout=3.0)
        await r.aclose()
        return {"status": "healthy", "service": "redis"}
    except TimeoutError:
        raise HTTPException(status_code=503, detail="Redis timeout")
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Redis unavailable: {str(e)}")


@router.get("/health/ready")
async def readiness_check(db: AsyncSession = Depends(get_db)):
    """Kubernetes-style readiness probe."""
    db_ok = await _database_ok(db)

    redis_ok = False
    if settings.redis_url:
        try:
            r = aioredis.from_url(settings.redis_url)
            await asyncio.wait_for(r.ping(), timeout=2.0)
            await r.aclose()
            redis_ok = True
        except Exception as e:
            logger.warning("Readiness Redis check failed: %s", e)

    # Redis is optional: rate limits fall back to per-process counters
    return {
        "ready": db_ok,
        "database": "ok" if db_ok else "unavailable",
        "redis": "ok" if redis_ok else "degraded",
    }


@router.get("/health/live")
async def liveness_check():
    """Kubernetes-style liveness probe."""
    return {"alive": True}


@router.get("/health/generation")
async def story_generation_check(db: AsyncSession = Depends(get_db)):
    """Readiness of every component the story generation pipeline needs."""
    if settings.story_text_provider == "anthropic":
        text_provider_ready = bool(settings.anthropic_api_key)
    else:
        text_provider_ready = bool(settings.replicate_api_token)

    try:
        storage_ok = await storage_adapter.is_available()
    except Exception as e:
        logger.error("Storage health check failed: %s", e)
        storage_ok = False

    components = {
        "environment": text_provider_ready and bool(settings.replicate_api_token),
        "database": await _database_ok(db),
        "replicate": story_ai_service.is_configured,
        "storage": storage_ok,
    }
    is_healthy = all(components.values())

    return {
        "is_healthy": is_healthy,
        "message": (
            "All story generation components are healthy"
            if is_healthy
            else "Some story generation components are not working"
        ),
        "components": components,
        "timestamp": datetime.now(UTC).isoformat(),
    }
