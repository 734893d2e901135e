"""
Health check endpoints.

Reports store connectivity, the heartbeat scheduler and the number of
execution units this process knows about.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.database import get_db, utcnow
from app.config import get_settings
from app.core.execution_registry import get_execution_registry

logger = logging.getLogger(__name__)

router = APIRouter()
settings = get_settings()

# Sweeps older than this many intervals mean the loop is wedged
STALE_SWEEP_INTERVALS = 3


def check_database(db: Session) -> Optional[str]:
    """Run a trivial query. Returns None when the store answers, else the error."""
    try:
        db.execute(text("SELECT 1"))
        return None
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {str(e)}")
        return str(e)


def heartbeat_status(request: Request) -> Dict[str, Any]:
    """
    Describe the background heartbeat scheduler.

    Returns:
        dict: ``state`` is one of ``disabled``, ``stopped``, ``starting``,
        ``running`` or ``stale``, plus the last sweep's time and outcome
    """
    if not settings.heartbeat.ENABLED:
        return {"state": "disabled"}

    scheduler = getattr(request.app.state, "heartbeat_scheduler", None)
    if scheduler is None or not scheduler.running:
        return {"state": "stopped"}

    status: Dict[str, Any] = {"state": "running", "last_sweep_at": None}
    if scheduler.last_sweep_at is None:
        status["state"] = "starting"
        return status

    status["last_sweep_at"] = scheduler.last_sweep_at.isoformat() + "Z"
    if scheduler.last_error:
        status["last_error"] = scheduler.last_error
    elif scheduler.last_result is not None:
        status["bots_updated"] = scheduler.last_result.bots_updated
        status["bots_failed"] = scheduler.last_result.failed

    age = (utcnow() - scheduler.last_sweep_at).total_seconds()
    if age > scheduler.interval * STALE_SWEEP_INTERVALS:
        status["state"] = "stale"
    return status


@router.get("/health")
async def health_check(request: Request, db: Session = Depends(get_db)) -> dict:
    """
    Basic health check endpoint.

    Example response:
        {
            "status": "healthy",
            "version": "0.1.0",
            "timestamp": "2025-12-25T15:00:00Z",
            "database": "connected",
            "heartbeat": {"state": "running", "last_sweep_at": "...", "bots_updated": 2, "bots_failed": 0},
            "execution_units": 2
        }
    """
    db_error = check_database(db)

    return {
        "status": "healthy" if db_error is None else "degraded",
        "app_name": settings.APP_NAME,
        "version": settings.VERSION,
        "timestamp": utcnow().isoformat() + "Z",
        "database": "connected" if db_error is None else f"error: {db_error}",
        "heartbeat": heartbeat_status(request),
        "execution_units": len(get_execution_registry()),
    }


@router.get("/health/ready")
async def readiness_check(request: Request, db: Session = Depends(get_db)) -> dict:
    """
    Ready when the store answers and, if enabled, the heartbeat scheduler
    is sweeping on schedule.
    """
    db_error = check_database(db)
    heartbeat = heartbeat_status(request)

    return {
        "ready": db_error is None and heartbeat["state"] in ("disabled", "starting", "running"),
        "checks": {
            "database": "ok" if db_error is None else f"failed: {db_error}",
            "heartbeat": heartbeat["state"],
        },
    }
