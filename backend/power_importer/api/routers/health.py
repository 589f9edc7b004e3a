"""Liveness and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from power_importer.core.config import get_settings
from power_importer.db import session as db_session
from power_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "power-importer-api"


@router.get("/live", summary="Liveness probe")
async def live() -> dict[str, str]:
    """Indicates the API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


def _check_database() -> dict[str, str]:
    try:
        with db_session.engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {e}"}
    return {"status": "healthy", "message": "Database connection successful"}


def _check_broker() -> dict[str, str]:
    try:
        client = create_redis_client(
            get_settings().broker_url, decode_responses=True, socket_connect_timeout=2
        )
        try:
            client.ping()
        finally:
            client.close()
    except RedisError as e:
        logger.error(f"Broker health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Broker connection failed: {e}"}
    return {"status": "healthy", "message": "Broker connection successful"}


@router.get("/ready", summary="Readiness probe")
def ready() -> dict[str, Any]:
    """Check the database and the Celery broker.

    Background mode cannot be dispatched without the broker, so both are
    required for the instance to take traffic.
    """
    checks = {"database": _check_database(), "celery_broker": _check_broker()}
    payload: dict[str, Any] = {"status": "ok", "service": SERVICE_NAME, "checks": checks}

    if any(check["status"] != "healthy" for check in checks.values()):
        payload["status"] = "unhealthy"
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=payload)
    return payload
