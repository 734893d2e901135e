"""
Execution unit registry.

Process-local, in-memory cache of the simulated execution units backing
running bots. It is lost on restart and not shared between instances,
so the Bot row's ``status``/``container_id`` is always the source of
truth: a registry miss means "unknown", never "not running".
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional
from uuid import uuid4

from app.database import utcnow

logger = logging.getLogger(__name__)

EXECUTION_UNIT_PREFIX = "nexus-"


def generate_execution_unit_id() -> str:
    """
    Generate an opaque execution-unit id.

    Format: nexus-<12 hex chars>
    Example: nexus-3f9a1c0b7d2e
    """
    return f"{EXECUTION_UNIT_PREFIX}{uuid4().hex[:12]}"


@dataclass
class ExecutionUnit:
    """Shadow record of a running bot's execution unit."""
    bot_id: str
    unit_id: str
    status: str = "running"
    started_at: datetime = field(default_factory=utcnow)
    cpu_usage: float = 0.0
    memory_usage: float = 0.0


class ExecutionUnitRegistry:
    """
    Maps bot id -> ExecutionUnit for this process.
    Safe to use from request handlers and heartbeat worker threads.
    """

    def __init__(self):
        """Initialize registry."""
        self._units: Dict[str, ExecutionUnit] = {}
        self._lock = threading.Lock()

    def register(self, bot_id: str, unit_id: str, cpu: float = 0.0, memory: float = 0.0) -> ExecutionUnit:
        """
        Record a freshly started unit, replacing any previous one for the bot.

        Args:
            bot_id: Owning bot
            unit_id: Execution-unit id
            cpu: Initial CPU usage
            memory: Initial memory usage

        Returns:
            The new ExecutionUnit
        """
        unit = ExecutionUnit(bot_id=bot_id, unit_id=unit_id, cpu_usage=cpu, memory_usage=memory)
        with self._lock:
            previous = self._units.get(bot_id)
            self._units[bot_id] = unit
        if previous and previous.unit_id != unit_id:
            logger.debug(f"Replaced unit {previous.unit_id} with {unit_id} for bot {bot_id}")
        return unit

    def get(self, bot_id: str) -> Optional[ExecutionUnit]:
        """Get the cached unit for a bot, or None if unknown to this process."""
        with self._lock:
            return self._units.get(bot_id)

    def update_usage(self, bot_id: str, cpu: float, memory: float) -> bool:
        """
        Refresh last-known usage for a cached unit.

        Returns:
            True if the bot was cached, False on a miss
        """
        with self._lock:
            unit = self._units.get(bot_id)
            if unit is None:
                return False
            unit.cpu_usage = cpu
            unit.memory_usage = memory
            return True

    def remove(self, bot_id: str) -> bool:
        """Drop a bot's unit. Returns True if one was cached."""
        with self._lock:
            return self._units.pop(bot_id, None) is not None

    def list_units(self) -> List[ExecutionUnit]:
        with self._lock:
            return list(self._units.values())

    def clear(self) -> None:
        with self._lock:
            self._units.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._units)


# Global registry instance
_registry = ExecutionUnitRegistry()


def get_execution_registry() -> ExecutionUnitRegistry:
    """Get global execution unit registry instance."""
    return _registry
