"""
Bot service layer: the bot lifecycle controller.

Handles deploy/start/stop/restart/delete/status, ownership and quota
checks, env vars, lifecycle log entries and resource samples. The Bot
row is authoritative; the execution unit registry is only a cache.
"""

import logging
from typing import Iterable, List, Optional, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.config import get_settings
from app.core.errors import AccessDenied, NotVerified, QuotaExceeded, StorageFailure, ValidationError
from app.core.execution_registry import (
    ExecutionUnitRegistry, generate_execution_unit_id, get_execution_registry,
)
from app.core.simulator import ResourceSimulator, UsageSample, get_simulator
from app.database import utcnow
from app.models.bot import (
    Bot, BotEnvVar, BotLog, BotPlatform, BotRuntime, BotStatus, LogLevel, ResourceSample,
)
from app.models.user import User

logger = logging.getLogger(__name__)

# Source states each operation expects; anything else still succeeds but is logged
EXPECTED_SOURCE_STATES = {
    "start": {BotStatus.OFFLINE.value, BotStatus.STOPPED.value, BotStatus.ERROR.value},
    "stop": {BotStatus.ONLINE.value, BotStatus.ERROR.value},
    "restart": {status.value for status in BotStatus},
}


# ===== Validation =====

def validate_bot_name(name: str) -> Tuple[bool, Optional[str]]:
    """
    Validate bot name format.

    Args:
        name: Bot name to validate

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not name or not name.strip():
        return False, "Bot name is required"

    max_length = get_settings().limits.MAX_NAME_LENGTH
    if len(name.strip()) > max_length:
        return False, f"Bot name must not exceed {max_length} characters"

    return True, None


def validate_script_content(script: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Validate optional script text. The controller never executes it,
    only bounds its size.
    """
    if script is None:
        return True, None

    if not isinstance(script, str):
        return False, "Script content must be text"

    max_size = get_settings().limits.MAX_SCRIPT_SIZE_KB * 1024
    if len(script.encode("utf-8")) > max_size:
        return False, f"Script size exceeds maximum of {max_size} bytes"

    return True, None


def _parse_choice(enum_cls, value: str, field_name: str) -> str:
    try:
        return enum_cls(str(value).strip().lower()).value
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid {field_name}: {value}. Must be one of: {choices}")


def normalize_env_vars(env_vars: Optional[Iterable]) -> List[Tuple[str, str]]:
    """
    Keep well-formed pairs (non-empty key and value).

    Accepts dicts with ``key``/``value`` or objects with those attributes.
    Duplicate keys resolve last-write-wins.
    """
    pairs = {}
    for item in env_vars or []:
        if isinstance(item, dict):
            key, value = item.get("key"), item.get("value")
        else:
            key, value = getattr(item, "key", None), getattr(item, "value", None)
        if not isinstance(key, str) or not isinstance(value, str):
            continue
        key = key.strip()
        if key and value:
            pairs[key] = value
    return list(pairs.items())


# ===== Primitives shared with the heartbeat reconciler =====

def require_verified(caller: User) -> None:
    """Mutating operations require a confirmed email."""
    if not caller.is_verified:
        raise NotVerified()


def add_log(db: Session, bot_id: str, level: LogLevel, message: str) -> BotLog:
    """Append a log entry for a bot (flushed with the surrounding commit)."""
    entry = BotLog(bot_id=bot_id, level=level.value, message=message, created_at=utcnow())
    db.add(entry)
    return entry


def apply_usage(db: Session, bot: Bot, sample: UsageSample) -> ResourceSample:
    """
    Write a usage sample onto the bot (clamped by the model) and append
    one resource history point with the stored values.
    """
    bot.cpu_usage = sample.cpu
    bot.memory_usage = sample.memory
    point = ResourceSample(
        bot_id=bot.id,
        cpu_usage=bot.cpu_usage,
        memory_usage=bot.memory_usage,
        recorded_at=utcnow(),
    )
    db.add(point)
    return point


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {action} bot: {str(e)}")
        raise StorageFailure(f"Failed to {action} bot") from e


def _note_transition(bot: Bot, operation: str) -> None:
    if bot.status not in EXPECTED_SOURCE_STATES[operation]:
        logger.warning(f"{operation} requested for bot {bot.id} in status '{bot.status}'")


# ===== Queries =====

def get_owned_bot(db: Session, caller: User, bot_id: str) -> Bot:
    """
    Get a bot owned by the caller.

    Raises:
        AccessDenied: If the bot does not exist or belongs to someone else
    """
    if not bot_id:
        raise ValidationError("Missing botId")

    bot = db.query(Bot).filter(Bot.id == str(bot_id), Bot.user_id == caller.id).first()
    if not bot:
        raise AccessDenied()
    return bot


def count_user_bots(db: Session, user_id: int) -> int:
    return db.query(func.count(Bot.id)).filter(Bot.user_id == user_id).scalar() or 0


def get_bots_by_user(db: Session, user_id: int) -> List[Bot]:
    """
    Get all bots for a user, ordered by most recently updated.

    Args:
        db: Database session
        user_id: User ID

    Returns:
        List of Bot objects
    """
    return db.query(Bot).filter(
        Bot.user_id == user_id
    ).order_by(Bot.updated_at.desc()).all()


# ===== Quota =====

def _reserve_quota_slot(db: Session, user_id: int, limit: int) -> bool:
    """
    Atomically take one slot of the user's bot quota.

    The conditional UPDATE is evaluated by the store under its row lock,
    so concurrent deploys cannot both pass the ``bot_count < limit`` guard.
    """
    result = db.execute(
        update(User)
        .where(User.id == user_id, User.bot_count < limit)
        .values(bot_count=User.bot_count + 1)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _release_quota_slot(db: Session, user_id: int) -> None:
    db.execute(
        update(User)
        .where(User.id == user_id, User.bot_count > 0)
        .values(bot_count=User.bot_count - 1)
        .execution_options(synchronize_session=False)
    )


# ===== Lifecycle operations =====

def deploy_bot(
    db: Session,
    caller: User,
    name: Optional[str],
    platform: Optional[str],
    runtime: Optional[str],
    script_content: Optional[str] = None,
    env_vars: Optional[Iterable] = None,
) -> Bot:
    """
    Create a new bot in the ``offline`` state.

    Args:
        db: Database session
        caller: Owner user
        name: Bot display name
        platform: telegram | discord
        runtime: python | nodejs | php
        script_content: Optional source script
        env_vars: Optional list of {key, value} pairs

    Returns:
        Created Bot object

    Raises:
        NotVerified: Caller's email is not confirmed
        ValidationError: Missing or malformed fields
        QuotaExceeded: Caller already owns the maximum number of bots
        StorageFailure: The insert failed
    """
    require_verified(caller)

    if not all(isinstance(v, str) and v.strip() for v in (name, platform, runtime)):
        raise ValidationError("Missing required fields: name, platform, runtime")

    is_valid, error_message = validate_bot_name(name)
    if not is_valid:
        raise ValidationError(error_message)
    name = name.strip()

    platform = _parse_choice(BotPlatform, platform, "platform")
    runtime = _parse_choice(BotRuntime, runtime, "runtime")

    is_valid, error_message = validate_script_content(script_content)
    if not is_valid:
        raise ValidationError(error_message)

    pairs = normalize_env_vars(env_vars)

    # Fast path only; the conditional counter update below is authoritative
    max_bots = get_settings().limits.MAX_BOTS_PER_USER
    quota_message = f"Bot limit reached. Maximum {max_bots} bots allowed per user."
    if count_user_bots(db, caller.id) >= max_bots:
        raise QuotaExceeded(quota_message)

    unit_id = generate_execution_unit_id()
    try:
        if not _reserve_quota_slot(db, caller.id, max_bots):
            db.rollback()
            raise QuotaExceeded(quota_message)

        bot = Bot(
            user_id=caller.id,
            name=name,
            platform=platform,
            runtime=runtime,
            script_content=script_content,
            status=BotStatus.OFFLINE.value,
            container_id=unit_id,
            cpu_usage=0.0,
            memory_usage=0.0,
        )
        db.add(bot)
        db.flush()

        for key, value in pairs:
            db.add(BotEnvVar(bot_id=bot.id, key=key, value=value))

        add_log(db, bot.id, LogLevel.INFO, f'Bot "{name}" created with container {unit_id}')
        add_log(db, bot.id, LogLevel.INFO, f"Runtime: {runtime}, Platform: {platform}")
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error creating bot for user {caller.id}: {str(e)}")
        raise StorageFailure("Failed to deploy bot") from e

    db.refresh(bot)
    logger.info(f"Deployed bot {bot.id} ('{name}') for user {caller.id}")
    return bot


def _launch(
    db: Session,
    bot: Bot,
    simulator: Optional[ResourceSimulator],
    registry: Optional[ExecutionUnitRegistry],
    restarted: bool = False,
) -> Bot:
    """Bring a bot online on a fresh execution unit."""
    simulator = simulator or get_simulator()
    registry = registry or get_execution_registry()

    sample = simulator.sample()
    unit_id = generate_execution_unit_id()

    bot.status = BotStatus.ONLINE.value
    bot.container_id = unit_id
    bot.last_started_at = utcnow()
    bot.uptime_seconds = 0
    apply_usage(db, bot, sample)

    if restarted:
        add_log(db, bot.id, LogLevel.INFO, "Bot restarted successfully")
        add_log(db, bot.id, LogLevel.INFO, f"New container {unit_id} is running")
    else:
        add_log(db, bot.id, LogLevel.INFO, "Bot started successfully")
        add_log(db, bot.id, LogLevel.INFO, f"Container {unit_id} is running")
    add_log(
        db, bot.id, LogLevel.DEBUG,
        f"Resources allocated: {bot.cpu_usage}% CPU, {bot.memory_usage}MB RAM",
    )
    _commit(db, "restart" if restarted else "start")

    registry.register(bot.id, unit_id, bot.cpu_usage, bot.memory_usage)
    db.refresh(bot)
    return bot


def start_bot(
    db: Session,
    caller: User,
    bot_id: str,
    simulator: Optional[ResourceSimulator] = None,
    registry: Optional[ExecutionUnitRegistry] = None,
) -> Bot:
    """
    Start a bot on a new execution unit.

    Returns:
        The updated Bot (status online, sampled usage)
    """
    require_verified(caller)
    bot = get_owned_bot(db, caller, bot_id)
    _note_transition(bot, "start")

    bot = _launch(db, bot, simulator, registry)
    logger.info(f"Started bot {bot.id} on {bot.container_id}")
    return bot


def stop_bot(
    db: Session,
    caller: User,
    bot_id: str,
    registry: Optional[ExecutionUnitRegistry] = None,
) -> Bot:
    """
    Stop a bot: drop its unit and zero its usage. Stopping an already
    stopped bot succeeds and rewrites the same fields.
    """
    require_verified(caller)
    bot = get_owned_bot(db, caller, bot_id)
    _note_transition(bot, "stop")
    registry = registry or get_execution_registry()

    bot.status = BotStatus.STOPPED.value
    bot.cpu_usage = 0.0
    bot.memory_usage = 0.0
    add_log(db, bot.id, LogLevel.INFO, "Bot stopped")
    add_log(db, bot.id, LogLevel.INFO, "Container terminated gracefully")
    _commit(db, "stop")

    registry.remove(bot.id)
    db.refresh(bot)
    logger.info(f"Stopped bot {bot.id}")
    return bot


def restart_bot(
    db: Session,
    caller: User,
    bot_id: str,
    simulator: Optional[ResourceSimulator] = None,
    registry: Optional[ExecutionUnitRegistry] = None,
) -> Bot:
    """
    Restart a bot from any state: passes through ``deploying`` and comes
    back ``online`` on a freshly generated execution unit.

    Raises:
        StorageFailure: If the relaunch could not be stored; the bot is put
            back in the state it was restarted from
    """
    require_verified(caller)
    bot = get_owned_bot(db, caller, bot_id)
    _note_transition(bot, "restart")
    registry = registry or get_execution_registry()
    previous_status = bot.status

    bot.status = BotStatus.DEPLOYING.value
    add_log(db, bot.id, LogLevel.INFO, "Restarting bot...")
    _commit(db, "restart")
    registry.remove(bot.id)

    try:
        bot = _launch(db, bot, simulator, registry, restarted=True)
    except StorageFailure:
        _abort_restart(db, bot, previous_status, registry)
        raise
    logger.info(f"Restarted bot {bot.id} on {bot.container_id}")
    return bot


def _abort_restart(db: Session, bot: Bot, previous_status: str, registry: ExecutionUnitRegistry) -> None:
    """Put a bot whose relaunch failed back in the state it was restarted from."""
    bot.status = previous_status
    add_log(db, bot.id, LogLevel.ERROR, "Restart failed, previous state restored")
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Could not restore bot {bot.id} after failed restart: {str(e)}")
        return

    if previous_status == BotStatus.ONLINE.value:
        registry.register(bot.id, bot.container_id, bot.cpu_usage, bot.memory_usage)
    logger.warning(f"Restart of bot {bot.id} failed, restored to '{previous_status}'")


def delete_bot(
    db: Session,
    caller: User,
    bot_id: str,
    registry: Optional[ExecutionUnitRegistry] = None,
) -> None:
    """
    Delete a bot. Env vars, logs and resource history go with it
    (ON DELETE CASCADE), and the owner's quota slot is released.
    """
    require_verified(caller)
    bot = get_owned_bot(db, caller, bot_id)
    registry = registry or get_execution_registry()
    bot_id, owner_id = bot.id, bot.user_id

    try:
        db.delete(bot)
        _release_quota_slot(db, owner_id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to delete bot {bot_id}: {str(e)}")
        raise StorageFailure("Failed to delete bot") from e

    registry.remove(bot_id)
    logger.info(f"Deleted bot {bot_id}")


def get_bot_status(
    db: Session,
    caller: User,
    bot_id: str,
    simulator: Optional[ResourceSimulator] = None,
    registry: Optional[ExecutionUnitRegistry] = None,
) -> Bot:
    """
    Get a bot's current state. An online bot is resampled first and
    gets one new resource history point; other bots are returned as-is.
    """
    bot = get_owned_bot(db, caller, bot_id)
    if bot.status != BotStatus.ONLINE.value:
        return bot

    simulator = simulator or get_simulator()
    registry = registry or get_execution_registry()

    apply_usage(db, bot, simulator.sample())
    _commit(db, "refresh")

    registry.update_usage(bot.id, bot.cpu_usage, bot.memory_usage)
    db.refresh(bot)
    return bot


def list_bots(db: Session, caller: User) -> List[Bot]:
    return get_bots_by_user(db, caller.id)


# ===== Env vars =====

def list_env_vars(db: Session, caller: User, bot_id: str) -> List[BotEnvVar]:
    bot = get_owned_bot(db, caller, bot_id)
    return db.query(BotEnvVar).filter(BotEnvVar.bot_id == bot.id).order_by(BotEnvVar.key).all()


def set_env_vars(db: Session, caller: User, bot_id: str, env_vars: Optional[Iterable]) -> List[BotEnvVar]:
    """
    Upsert env vars for a bot. Malformed pairs are skipped.

    Raises:
        ValidationError: If no well-formed pair was supplied
    """
    require_verified(caller)
    bot = get_owned_bot(db, caller, bot_id)

    pairs = normalize_env_vars(env_vars)
    if not pairs:
        raise ValidationError("No valid environment variables provided")

    existing = {
        env.key: env
        for env in db.query(BotEnvVar).filter(BotEnvVar.bot_id == bot.id).all()
    }
    for key, value in pairs:
        if key in existing:
            existing[key].value = value
        else:
            db.add(BotEnvVar(bot_id=bot.id, key=key, value=value))
    _commit(db, "update env vars for")

    return list_env_vars(db, caller, bot.id)


def delete_env_var(db: Session, caller: User, bot_id: str, key: Optional[str]) -> bool:
    """
    Remove one env var.

    Returns:
        True if deleted, False if the key was not set
    """
    require_verified(caller)
    bot = get_owned_bot(db, caller, bot_id)
    if not key or not key.strip():
        raise ValidationError("Missing key")

    env = db.query(BotEnvVar).filter(BotEnvVar.bot_id == bot.id, BotEnvVar.key == key.strip()).first()
    if not env:
        return False

    db.delete(env)
    _commit(db, "delete env var for")
    return True
