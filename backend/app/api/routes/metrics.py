"""
Resource metrics endpoint for the dashboard charts.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import action_response, get_current_user
from app.core.bot_manager import BotManager
from app.database import get_db
from app.models.user import User

router = APIRouter(tags=["metrics"])


@router.get("/resource-metrics")
async def resource_metrics(
    bot_id: Optional[str] = Query(default=None, alias="botId", description="Restrict to one bot"),
    hours: int = Query(default=24, description="Lookback window in hours"),
    caller: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Hourly CPU/memory averages plus current totals.

    Returns:
        dict: ``chartData`` points ({time, cpu, memory}), ``stats`` and ``bots``
    """
    return action_response(BotManager(db, caller).get_metrics(bot_id=bot_id, hours=hours))
