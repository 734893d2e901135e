"""
Configuration API endpoints.

Provides access to the resource policy for clients.
"""

from fastapi import APIRouter
from typing import Dict, Any

from app.config import get_settings

router = APIRouter(prefix="/config", tags=["config"])


@router.get("/limits")
async def get_limits() -> Dict[str, Any]:
    """
    Get per-user and per-bot limits.

    Returns the quota and resource ceilings so the dashboard can render
    usage bars without hardcoding them.

    Returns:
        dict: Limits configuration
    """
    settings = get_settings()
    limits = settings.limits

    return {
        "MAX_BOTS_PER_USER": limits.MAX_BOTS_PER_USER,
        "MAX_CPU_PERCENT": limits.MAX_CPU_PERCENT,
        "MAX_MEMORY_MB": limits.MAX_MEMORY_MB,
        "MAX_SCRIPT_SIZE_KB": limits.MAX_SCRIPT_SIZE_KB,
        "HEARTBEAT_INTERVAL_SECONDS": settings.heartbeat.INTERVAL_SECONDS,
    }
