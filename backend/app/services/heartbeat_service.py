"""
Heartbeat reconciler.

Periodically sweeps every online bot: draws a fresh usage sample,
refreshes uptime, appends a resource history point and now and then a
synthetic runtime log line. Each bot is reconciled in its own session,
so one bot's failure is counted and the sweep carries on.
"""

import asyncio
import logging
import random
from concurrent.futures import ThreadPoolExecutor
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.config import get_settings, HeartbeatConfig
from app.core.execution_registry import ExecutionUnitRegistry, get_execution_registry
from app.core.simulator import ResourceSimulator, get_simulator
from app.database import SessionLocal, utcnow
from app.models.bot import Bot, BotStatus, LogLevel
from app.services.bot_service import add_log, apply_usage

logger = logging.getLogger(__name__)

# Plausible runtime chatter that keeps the log viewer populated
SYNTHETIC_LOG_MESSAGES = (
    (LogLevel.INFO, "Processing incoming message..."),
    (LogLevel.DEBUG, "Heartbeat check passed"),
    (LogLevel.INFO, "Webhook delivered successfully"),
    (LogLevel.INFO, "User command processed"),
    (LogLevel.DEBUG, "Memory usage: {memory}MB"),
)


@dataclass
class BotHeartbeat:
    """Result of reconciling one bot."""
    bot_id: str
    bot_name: str
    cpu: float
    memory: float
    uptime: int

    def to_dict(self) -> dict:
        return {
            "botId": self.bot_id,
            "botName": self.bot_name,
            "cpu": self.cpu,
            "memory": self.memory,
            "uptime": self.uptime,
        }


@dataclass
class SweepResult:
    """Outcome of one heartbeat sweep."""
    updates: List[BotHeartbeat] = field(default_factory=list)
    failed: int = 0
    skipped: int = 0

    @property
    def bots_updated(self) -> int:
        return len(self.updates)

    def to_dict(self) -> dict:
        return {
            "success": True,
            "botsUpdated": self.bots_updated,
            "botsFailed": self.failed,
            "botsSkipped": self.skipped,
            "updates": [u.to_dict() for u in self.updates],
        }


def compute_uptime(last_started_at: Optional[datetime], now: datetime) -> int:
    """Whole seconds since the last start; 0 when never started."""
    if last_started_at is None:
        return 0
    return max(0, int((now - last_started_at).total_seconds()))


class HeartbeatReconciler:
    """Reconciles simulated usage for every online bot."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        simulator: Optional[ResourceSimulator] = None,
        registry: Optional[ExecutionUnitRegistry] = None,
        config: Optional[HeartbeatConfig] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session_factory = session_factory
        self.simulator = simulator or get_simulator()
        self.registry = registry or get_execution_registry()
        self.config = config or get_settings().heartbeat
        self._rng = rng or random.Random()

    def run_sweep(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Reconcile all bots currently online.

        Args:
            now: Reference time (naive UTC) for uptime

        Returns:
            SweepResult with per-bot updates and the failure count
        """
        now = now or utcnow()
        with self.session_factory() as db:
            bot_ids = [row[0] for row in db.query(Bot.id).filter(Bot.status == BotStatus.ONLINE.value).all()]

        logger.info(f"Heartbeat check for {len(bot_ids)} running bots")

        workers = max(1, int(self.config.MAX_WORKERS))
        if workers > 1 and len(bot_ids) > 1:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                outcomes = list(pool.map(lambda bot_id: self._safe_reconcile(bot_id, now), bot_ids))
        else:
            outcomes = [self._safe_reconcile(bot_id, now) for bot_id in bot_ids]

        result = SweepResult()
        for heartbeat, failed in outcomes:
            if failed:
                result.failed += 1
            elif heartbeat is None:
                result.skipped += 1
            else:
                result.updates.append(heartbeat)

        if result.failed:
            logger.warning(f"Heartbeat sweep: {result.bots_updated} updated, {result.failed} failed")
        return result

    def _safe_reconcile(self, bot_id: str, now: datetime) -> Tuple[Optional[BotHeartbeat], bool]:
        try:
            return self.reconcile_bot(bot_id, now), False
        except Exception as e:
            logger.error(f"Heartbeat update failed for bot {bot_id}: {str(e)}")
            return None, True

    def reconcile_bot(self, bot_id: str, now: datetime) -> Optional[BotHeartbeat]:
        """
        Refresh one bot in its own session.

        Returns:
            BotHeartbeat, or None if the bot is gone or no longer online
        """
        with self.session_factory() as db:
            bot = db.get(Bot, bot_id)
            if bot is None or bot.status != BotStatus.ONLINE.value:
                return None

            sample = self.simulator.sample()
            bot.uptime_seconds = compute_uptime(bot.last_started_at, now)
            apply_usage(db, bot, sample)

            synthetic = self._pick_synthetic_log()
            if synthetic:
                level, template = synthetic
                add_log(db, bot.id, level, template.format(memory=bot.memory_usage))

            db.commit()

            heartbeat = BotHeartbeat(
                bot_id=bot.id,
                bot_name=bot.name,
                cpu=bot.cpu_usage,
                memory=bot.memory_usage,
                uptime=bot.uptime_seconds,
            )

        self.registry.update_usage(heartbeat.bot_id, heartbeat.cpu, heartbeat.memory)
        return heartbeat

    def _pick_synthetic_log(self) -> Optional[Tuple[LogLevel, str]]:
        if not self.config.SYNTHETIC_LOGS_ENABLED:
            return None
        if self._rng.random() >= self.config.SYNTHETIC_LOG_PROBABILITY:
            return None
        return self._rng.choice(SYNTHETIC_LOG_MESSAGES)


class HeartbeatScheduler:
    """Runs the reconciler on a fixed interval in the background."""

    def __init__(self, reconciler: Optional[HeartbeatReconciler] = None, interval: Optional[float] = None):
        self.reconciler = reconciler or HeartbeatReconciler()
        self.interval = interval if interval is not None else get_settings().heartbeat.INTERVAL_SECONDS
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.last_sweep_at: Optional[datetime] = None
        self.last_result: Optional[SweepResult] = None
        self.last_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the heartbeat loop in the background."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Heartbeat scheduler started (every {self.interval}s)")

    async def stop(self) -> None:
        """Stop the heartbeat loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None

    async def _loop(self) -> None:
        while self._running:
            try:
                result = await asyncio.to_thread(self.reconciler.run_sweep)
                self.last_result, self.last_error = result, None
                logger.debug(f"Heartbeat sweep updated {result.bots_updated} bots")
            except Exception as e:
                # Store unreachable for the whole sweep; try again next tick
                self.last_error = str(e)
                logger.error(f"Heartbeat sweep failed: {str(e)}")
            self.last_sweep_at = utcnow()
            await asyncio.sleep(self.interval)
