"""
Shared API dependencies.
"""

from typing import Optional

from fastapi import Depends, Header
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.bot_manager import ActionResult
from app.database import get_db
from app.models.user import User
from app.services import user_service


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the caller from the bearer token.

    Raises:
        Unauthenticated: Rendered as a 401 by the application error handler
    """
    return user_service.authenticate(db, authorization)


def action_response(result: ActionResult) -> JSONResponse:
    """Render an ActionResult with its status code."""
    return JSONResponse(status_code=result.status_code, content=result.to_dict())
