"""
Bot API endpoints.

``POST /bot-manager`` is the single action endpoint used by the dashboard
(deploy, start, stop, restart, delete, status and env var actions);
``GET /bots`` lists the caller's bots.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.api.deps import action_response, get_current_user
from app.core.bot_manager import BotManager
from app.database import get_db
from app.models.user import User


router = APIRouter(tags=["bots"])


# Request models
class BotActionRequest(BaseModel):
    """Request model for a lifecycle action."""
    action: str = Field(..., description="deploy | start | stop | restart | delete | status | envVars | setEnvVars | deleteEnvVar")
    botId: Optional[str] = Field(None, description="Target bot (all actions except deploy)")
    name: Optional[str] = Field(None, description="Bot display name (deploy)")
    platform: Optional[str] = Field(None, description="telegram | discord (deploy)")
    runtime: Optional[str] = Field(None, description="python | nodejs | php (deploy)")
    scriptContent: Optional[str] = Field(None, description="Bot source script (deploy)")
    envVars: Optional[List[Dict[str, Any]]] = Field(None, description="List of {key, value} pairs")
    key: Optional[str] = Field(None, description="Env var key (deleteEnvVar)")


@router.post("/bot-manager")
async def bot_manager(
    request: BotActionRequest,
    caller: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Run a lifecycle action for the caller.

    Returns:
        ``{"success": true, ...}`` on success, otherwise
        ``{"success": false, "error": <kind>, "message": <text>}`` with
        the error's status code
    """
    payload = request.model_dump(exclude={"action"})
    result = BotManager(db, caller).handle(request.action, payload)
    return action_response(result)


@router.get("/bots")
async def list_bots(
    caller: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    List the caller's bots, most recently updated first.
    """
    return action_response(BotManager(db, caller).list_bots())


@router.get("/bots/{bot_id}")
async def get_bot(
    bot_id: str,
    caller: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """
    Get one bot (same as the ``status`` action: online bots are resampled).
    """
    return action_response(BotManager(db, caller).handle("status", {"botId": bot_id}))
