"""
Bot models: the deployable unit plus its env vars, logs and resource history.

Each bot belongs to a user. Env vars, logs and resource samples are
removed by cascade when the bot is deleted.
"""

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column, Integer, Float, String, Text, DateTime, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from app.config import get_settings
from app.database import Base, utcnow


class BotStatus(str, Enum):
    """Bot lifecycle states."""
    OFFLINE = "offline"      # Deployed, never started
    DEPLOYING = "deploying"  # Restart in progress
    ONLINE = "online"        # Execution unit running
    STOPPED = "stopped"      # Stopped by owner
    ERROR = "error"          # Execution unit failed


class BotPlatform(str, Enum):
    TELEGRAM = "telegram"
    DISCORD = "discord"


class BotRuntime(str, Enum):
    PYTHON = "python"
    NODEJS = "nodejs"
    PHP = "php"


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


def clamp(value, ceiling: float) -> float:
    """Clamp a usage value into [0, ceiling]; None counts as 0."""
    if value is None:
        return 0.0
    return max(0.0, min(float(value), ceiling))


class Bot(Base):
    """
    Bot model for persisting user-deployed chat bots.

    Attributes:
        id: Opaque identifier (UUID string)
        user_id: Foreign key to owner user
        name: Display name (1-100 chars)
        platform: telegram | discord
        runtime: python | nodejs | php
        status: Lifecycle state (see BotStatus)
        container_id: Current execution-unit id
        script_content: Optional source script (never executed here)
        cpu_usage: Current CPU percent, clamped to [0, 10]
        memory_usage: Current memory MB, clamped to [0, 50]
        uptime_seconds: Seconds since last start, refreshed by heartbeat
        last_started_at: When the execution unit was last started
    """
    __tablename__ = "bots"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    platform = Column(String(20), nullable=False)
    runtime = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=BotStatus.OFFLINE.value, index=True)
    container_id = Column(String(64), nullable=True)
    script_content = Column(Text, nullable=True)
    cpu_usage = Column(Float, nullable=False, default=0.0)
    memory_usage = Column(Float, nullable=False, default=0.0)
    uptime_seconds = Column(Integer, nullable=False, default=0)
    last_started_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    owner = relationship("User", back_populates="bots")
    env_vars = relationship("BotEnvVar", back_populates="bot", cascade="all, delete-orphan", passive_deletes=True)
    logs = relationship("BotLog", back_populates="bot", cascade="all, delete-orphan", passive_deletes=True)
    resource_history = relationship(
        "ResourceSample", back_populates="bot", cascade="all, delete-orphan", passive_deletes=True
    )

    @validates("cpu_usage")
    def _clamp_cpu(self, key, value):
        return clamp(value, get_settings().limits.MAX_CPU_PERCENT)

    @validates("memory_usage")
    def _clamp_memory(self, key, value):
        return clamp(value, get_settings().limits.MAX_MEMORY_MB)

    def __repr__(self):
        return f"<Bot(id={self.id}, name='{self.name}', status='{self.status}')>"


class BotEnvVar(Base):
    """Environment variable scoped to one bot. Keys are unique per bot."""
    __tablename__ = "bot_env_vars"
    __table_args__ = (
        UniqueConstraint("bot_id", "key", name="uq_bot_env_vars_bot_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    bot_id = Column(String(36), ForeignKey("bots.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String(255), nullable=False)
    value = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    bot = relationship("Bot", back_populates="env_vars")


class BotLog(Base):
    """Append-only log entry for a bot."""
    __tablename__ = "bot_logs"

    id = Column(Integer, primary_key=True, index=True)
    bot_id = Column(String(36), ForeignKey("bots.id", ondelete="CASCADE"), nullable=False, index=True)
    level = Column(String(10), nullable=False, default=LogLevel.INFO.value)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    bot = relationship("Bot", back_populates="logs")


class ResourceSample(Base):
    """One timestamped (cpu, memory) observation for a bot."""
    __tablename__ = "resource_history"

    id = Column(Integer, primary_key=True, index=True)
    bot_id = Column(String(36), ForeignKey("bots.id", ondelete="CASCADE"), nullable=False, index=True)
    cpu_usage = Column(Float, nullable=False, default=0.0)
    memory_usage = Column(Float, nullable=False, default=0.0)
    recorded_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    bot = relationship("Bot", back_populates="resource_history")
