"""
Log viewer endpoint.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import action_response, get_current_user
from app.core.bot_manager import BotManager
from app.database import get_db
from app.models.user import User

router = APIRouter(tags=["logs"])


@router.get("/bot-logs")
async def bot_logs(
    bot_id: Optional[str] = Query(default=None, alias="botId", description="Only this bot's logs"),
    limit: int = Query(default=50, description="Maximum entries (1-500)"),
    level: Optional[str] = Query(default=None, description="debug, info, warn or error"),
    caller: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Recent log entries, newest first, each annotated with ``bot_name``.
    """
    return action_response(BotManager(db, caller).get_logs(bot_id=bot_id, limit=limit, level=level))
