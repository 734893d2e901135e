"""
Response models shared by the action dispatcher and the API routes.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class BotResponse(BaseModel):
    """Response model for bot data."""
    id: str
    user_id: int
    name: str
    platform: str
    runtime: str
    status: str
    container_id: Optional[str] = None
    script_content: Optional[str] = None
    cpu_usage: float
    memory_usage: float
    uptime_seconds: int
    last_started_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class EnvVarResponse(BaseModel):
    key: str
    value: str

    class Config:
        from_attributes = True


class LogResponse(BaseModel):
    """Log entry annotated with its bot's name."""
    id: int
    bot_id: str
    level: str
    message: str
    created_at: datetime
    bot_name: Optional[str] = None

    class Config:
        from_attributes = True


class UserResponse(BaseModel):
    """Response model for user data."""
    id: int
    username: str
    email: Optional[str] = None
    verified: bool
    bot_count: int
    created_at: datetime


class RegisteredUserResponse(UserResponse):
    api_token: str


def bot_to_dict(bot) -> dict:
    """Serialise a Bot row to JSON-safe primitives."""
    return BotResponse.model_validate(bot).model_dump(mode="json")


def env_var_to_dict(env_var) -> dict:
    return EnvVarResponse.model_validate(env_var).model_dump()


def log_to_dict(log, bot_name: Optional[str] = None) -> dict:
    data = LogResponse.model_validate(log).model_dump(mode="json")
    data["bot_name"] = bot_name
    return data


def user_to_response(user, include_token: bool = False) -> UserResponse:
    fields = dict(
        id=user.id,
        username=user.username,
        email=user.email,
        verified=user.is_verified,
        bot_count=user.bot_count,
        created_at=user.created_at,
    )
    if include_token:
        return RegisteredUserResponse(api_token=user.api_token, **fields)
    return UserResponse(**fields)
