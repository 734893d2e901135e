"""
Metrics service: folds resource history into hourly chart points.

Only reads persisted ResourceSample rows and current Bot rows; it never
mutates lifecycle state.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.errors import AccessDenied, ValidationError
from app.database import utcnow
from app.models.bot import Bot, BotStatus, ResourceSample
from app.models.user import User
from app.services.bot_service import get_bots_by_user

MAX_LOOKBACK_HOURS = 24 * 30


@dataclass
class ChartPoint:
    """Hourly average for the resource chart."""
    time: str  # HH:MM, 24-hour, UTC
    cpu: float
    memory: float

    def to_dict(self) -> dict:
        return {"time": self.time, "cpu": self.cpu, "memory": self.memory}


@dataclass
class MetricsStats:
    """Current totals plus the fixed policy limits."""
    total_bots: int = 0
    running_bots: int = 0
    total_cpu: float = 0.0
    total_memory: float = 0.0
    max_bots: int = 0
    max_cpu_per_bot: float = 0.0
    max_memory_per_bot: float = 0.0

    def to_dict(self) -> dict:
        return {
            "totalBots": self.total_bots,
            "runningBots": self.running_bots,
            "totalCpu": self.total_cpu,
            "totalMemory": self.total_memory,
            "maxBots": self.max_bots,
            "maxCpuPerBot": self.max_cpu_per_bot,
            "maxMemoryPerBot": self.max_memory_per_bot,
        }


@dataclass
class MetricsReport:
    chart_data: List[ChartPoint] = field(default_factory=list)
    stats: MetricsStats = field(default_factory=MetricsStats)
    bots: List[Bot] = field(default_factory=list)


def _hour_bucket(recorded_at: datetime) -> datetime:
    return recorded_at.replace(minute=0, second=0, microsecond=0)


def aggregate_hourly(samples: Iterable[ResourceSample]) -> List[ChartPoint]:
    """
    Group samples by their UTC hour and average cpu/memory per bucket.

    Args:
        samples: Resource samples (any order)

    Returns:
        One ChartPoint per non-empty hour, oldest first
    """
    buckets = OrderedDict()
    for sample in sorted(samples, key=lambda s: s.recorded_at):
        bucket = buckets.setdefault(_hour_bucket(sample.recorded_at), ([], []))
        bucket[0].append(sample.cpu_usage)
        bucket[1].append(sample.memory_usage)

    return [
        ChartPoint(
            time=hour.strftime("%H:%M"),
            cpu=round(sum(cpu) / len(cpu), 1),
            memory=round(sum(memory) / len(memory), 1),
        )
        for hour, (cpu, memory) in buckets.items()
    ]


def compute_stats(bots: List[Bot]) -> MetricsStats:
    """Totals over the current bot rows plus the configured limits."""
    limits = get_settings().limits
    return MetricsStats(
        total_bots=len(bots),
        running_bots=sum(1 for b in bots if b.status == BotStatus.ONLINE.value),
        total_cpu=round(sum(b.cpu_usage or 0.0 for b in bots), 1),
        total_memory=round(sum(b.memory_usage or 0.0 for b in bots), 1),
        max_bots=limits.MAX_BOTS_PER_USER,
        max_cpu_per_bot=limits.MAX_CPU_PERCENT,
        max_memory_per_bot=limits.MAX_MEMORY_MB,
    )


def get_metrics(
    db: Session,
    caller: User,
    bot_id: Optional[str] = None,
    hours: int = 24,
    now: Optional[datetime] = None,
) -> MetricsReport:
    """
    Build chart data and stats for the caller's bots.

    Args:
        db: Database session
        caller: Requesting user
        bot_id: Restrict to one owned bot (default: all the caller's bots)
        hours: Lookback window
        now: Reference time (naive UTC), defaults to the current time

    Returns:
        MetricsReport; empty chart and all-zero stats for a caller with no bots

    Raises:
        ValidationError: If hours is out of range
        AccessDenied: If bot_id is not one of the caller's bots
    """
    if not isinstance(hours, int) or hours < 1 or hours > MAX_LOOKBACK_HOURS:
        raise ValidationError(f"hours must be between 1 and {MAX_LOOKBACK_HOURS}")

    user_bots = get_bots_by_user(db, caller.id)
    if bot_id:
        selected = [b for b in user_bots if b.id == bot_id]
        if not selected:
            raise AccessDenied()
    else:
        selected = user_bots

    if not selected:
        return MetricsReport()

    cutoff = (now or utcnow()) - timedelta(hours=hours)
    history = db.query(ResourceSample).filter(
        ResourceSample.bot_id.in_([b.id for b in selected]),
        ResourceSample.recorded_at >= cutoff,
    ).order_by(ResourceSample.recorded_at.asc()).all()

    return MetricsReport(
        chart_data=aggregate_hourly(history),
        stats=compute_stats(selected),
        bots=selected,
    )
