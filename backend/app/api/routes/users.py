"""
User API endpoints.

Stand-in for the identity provider: registration hands out a bearer
token, and the verify endpoint confirms the caller's email.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from pydantic import BaseModel, Field

from app.api.deps import get_current_user
from app.database import get_db
from app.models.user import User
from app.schemas import RegisteredUserResponse, UserResponse, user_to_response
from app.services import user_service


router = APIRouter(prefix="/users", tags=["users"])


# Request/Response models
class RegisterUserRequest(BaseModel):
    """Request model for user registration."""
    username: str = Field(..., min_length=3, max_length=50, description="Username (3-50 characters)")
    email: Optional[str] = Field(None, max_length=255, description="Email address to verify")


@router.post("/register", response_model=RegisteredUserResponse, status_code=201)
async def register_user(
    request: RegisterUserRequest,
    db: Session = Depends(get_db)
):
    """
    Register or retrieve user by username (idempotent operation).

    Args:
        request: User registration request
        db: Database session

    Returns:
        User object including the API token

    Raises:
        400: Invalid username or email
    """
    user = user_service.register_user(db, request.username, request.email)
    return user_to_response(user, include_token=True)


@router.get("/me", response_model=UserResponse)
async def get_me(caller: User = Depends(get_current_user)):
    """
    Get the authenticated user.
    """
    return user_to_response(caller)


@router.post("/me/verify", response_model=UserResponse)
async def verify_me(
    caller: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Confirm the caller's email address.

    Verification is required for every mutating bot operation.
    """
    user = user_service.verify_email(db, caller)
    return user_to_response(user)
