"""
BotNexus Server Configuration

This file contains all server-side configurable settings.
Modify these values (or the BOTNEXUS_* environment variables) to tune
the lifecycle controller and heartbeat behaviour.
"""

from dataclasses import dataclass
import os


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """Server networking configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = os.getenv("BOTNEXUS_LOG_LEVEL", "INFO")
    CORS_ORIGINS: tuple = (
        "http://localhost:5173",  # Vite default port
        "http://localhost:8080",
        "http://127.0.0.1:5173",
        "http://127.0.0.1:8080",
    )


@dataclass
class LimitsConfig:
    """Per-user and per-bot resource policy."""
    MAX_BOTS_PER_USER: int = 3
    MAX_CPU_PERCENT: float = 10.0  # 0.1 vCPU
    MAX_MEMORY_MB: float = 50.0
    MAX_SCRIPT_SIZE_KB: int = 100
    MAX_NAME_LENGTH: int = 100


@dataclass
class SimulatorConfig:
    """Bounds for simulated resource telemetry (one decimal place)."""
    CPU_MIN: float = 1.0
    CPU_MAX: float = 9.0
    MEMORY_MIN: float = 5.0
    MEMORY_MAX: float = 40.0


@dataclass
class HeartbeatConfig:
    """Heartbeat reconciler settings."""
    ENABLED: bool = _env_bool("BOTNEXUS_HEARTBEAT_ENABLED", True)
    INTERVAL_SECONDS: float = float(os.getenv("BOTNEXUS_HEARTBEAT_INTERVAL", "30"))
    SYNTHETIC_LOGS_ENABLED: bool = _env_bool("BOTNEXUS_SYNTHETIC_LOGS", True)
    SYNTHETIC_LOG_PROBABILITY: float = 0.3
    MAX_WORKERS: int = 1  # >1 reconciles bots in a thread pool


@dataclass
class DatabaseConfig:
    """Database configuration."""
    DATABASE_URL: str = os.getenv("BOTNEXUS_DATABASE_URL", "")  # empty = data/botnexus.db
    ECHO_SQL: bool = False  # Log SQL queries


@dataclass
class Settings:
    """Main settings container."""
    server: ServerConfig = None
    limits: LimitsConfig = None
    simulator: SimulatorConfig = None
    heartbeat: HeartbeatConfig = None
    database: DatabaseConfig = None

    # Application info
    APP_NAME: str = "BotNexus"
    VERSION: str = "0.1.0"
    DEBUG: bool = _env_bool("BOTNEXUS_DEBUG", False)

    def __post_init__(self):
        self.server = self.server or ServerConfig()
        self.limits = self.limits or LimitsConfig()
        self.simulator = self.simulator or SimulatorConfig()
        self.heartbeat = self.heartbeat or HeartbeatConfig()
        self.database = self.database or DatabaseConfig()


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the global settings instance."""
    return settings
