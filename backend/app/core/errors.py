"""
Error taxonomy for the bot lifecycle core.

Every error carries a machine-readable kind plus a human-readable
message suitable for direct display in the dashboard.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    UNAUTHENTICATED = "unauthenticated"
    NOT_VERIFIED = "not_verified"
    ACCESS_DENIED = "access_denied"
    VALIDATION_ERROR = "validation_error"
    QUOTA_EXCEEDED = "quota_exceeded"
    STORAGE_FAILURE = "storage_failure"


class BotNexusError(Exception):
    """Base class for errors surfaced to callers of the lifecycle core."""
    kind: ErrorKind = ErrorKind.STORAGE_FAILURE
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind.value, "message": self.message}


class Unauthenticated(BotNexusError):
    """No or invalid caller credential."""
    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401
    default_message = "Missing or invalid authorization token"


class NotVerified(BotNexusError):
    """Caller's email is not confirmed (mutating operations only)."""
    kind = ErrorKind.NOT_VERIFIED
    status_code = 403
    default_message = "Please verify your email before deploying or managing bots."


class AccessDenied(BotNexusError):
    """Caller does not own the bot, or the bot does not exist."""
    kind = ErrorKind.ACCESS_DENIED
    status_code = 403
    default_message = "Bot not found or access denied"


class ValidationError(BotNexusError):
    """Missing or malformed required fields."""
    kind = ErrorKind.VALIDATION_ERROR
    status_code = 400
    default_message = "Invalid request"


class QuotaExceeded(BotNexusError):
    """Deploy would exceed the per-user bot limit."""
    kind = ErrorKind.QUOTA_EXCEEDED
    status_code = 400
    default_message = "Bot limit reached. Maximum 3 bots allowed per user."


class StorageFailure(BotNexusError):
    """Underlying persistence operation failed."""
    kind = ErrorKind.STORAGE_FAILURE
    status_code = 500
    default_message = "Storage operation failed"
