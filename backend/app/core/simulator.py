"""
Resource simulator.

Produces bounded pseudo-random CPU/memory samples standing in for real
container telemetry. Anything that replaces it (a cgroup reader, a
Docker stats client) only needs to provide ``sample()`` with the same
units: CPU percent and memory MB, one decimal place.
"""

import random
from dataclasses import dataclass
from typing import Optional

from app.config import get_settings, SimulatorConfig


@dataclass(frozen=True)
class UsageSample:
    """One (cpu, memory) reading."""
    cpu: float     # percent
    memory: float  # MB


class ResourceSimulator:
    """Draws usage uniformly from the configured ranges."""

    def __init__(self, config: Optional[SimulatorConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or get_settings().simulator
        self._rng = rng or random.Random()

    def sample(self) -> UsageSample:
        cfg = self.config
        cpu = round(self._rng.uniform(cfg.CPU_MIN, cfg.CPU_MAX), 1)
        memory = round(self._rng.uniform(cfg.MEMORY_MIN, cfg.MEMORY_MAX), 1)
        return UsageSample(cpu=cpu, memory=memory)


# Global simulator instance
_simulator = ResourceSimulator()


def get_simulator() -> ResourceSimulator:
    """Get global resource simulator instance."""
    return _simulator
