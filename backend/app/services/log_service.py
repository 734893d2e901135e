"""
Log service for the dashboard log viewer.

Reads BotLog entries newest-first for one bot or for all of a user's bots.
"""

from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.errors import ValidationError
from app.models.bot import Bot, BotLog, LogLevel
from app.models.user import User
from app.services.bot_service import get_owned_bot

DEFAULT_LOG_LIMIT = 50
MAX_LOG_LIMIT = 500


def get_logs(
    db: Session,
    caller: User,
    bot_id: Optional[str] = None,
    limit: int = DEFAULT_LOG_LIMIT,
    level: Optional[str] = None,
) -> List[Tuple[BotLog, str]]:
    """
    Get recent log entries with their bot names.

    Args:
        db: Database session
        caller: Requesting user
        bot_id: Only this bot's logs (must be owned by the caller)
        limit: Maximum entries (1-500)
        level: Optional level filter (debug, info, warn, error)

    Returns:
        List of (BotLog, bot_name), newest first

    Raises:
        ValidationError: Bad limit or level
        AccessDenied: bot_id is not one of the caller's bots
    """
    if not isinstance(limit, int) or limit < 1 or limit > MAX_LOG_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_LOG_LIMIT}")

    if level is not None:
        try:
            level = LogLevel(level.strip().lower()).value
        except ValueError:
            choices = ", ".join(member.value for member in LogLevel)
            raise ValidationError(f"Invalid level: {level}. Must be one of: {choices}")

    query = db.query(BotLog, Bot.name).join(Bot, BotLog.bot_id == Bot.id).filter(Bot.user_id == caller.id)

    if bot_id:
        bot = get_owned_bot(db, caller, bot_id)
        query = query.filter(BotLog.bot_id == bot.id)

    if level:
        query = query.filter(BotLog.level == level)

    rows = query.order_by(BotLog.created_at.desc(), BotLog.id.desc()).limit(limit).all()
    return [(log, name) for log, name in rows]
