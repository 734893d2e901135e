"""
Heartbeat trigger endpoint for an external scheduler (cron, uptime pinger).
"""

import asyncio

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, sessionmaker

from app.database import get_db
from app.services.heartbeat_service import HeartbeatReconciler

router = APIRouter(tags=["heartbeat"])


@router.post("/bot-heartbeat")
async def bot_heartbeat(db: Session = Depends(get_db)) -> dict:
    """
    Run one heartbeat sweep over all online bots.

    Returns:
        dict: ``botsUpdated``, ``botsFailed``, ``botsSkipped`` and the per-bot ``updates``
    """
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=db.get_bind())
    reconciler = HeartbeatReconciler(session_factory=session_factory)
    result = await asyncio.to_thread(reconciler.run_sweep)
    return result.to_dict()
