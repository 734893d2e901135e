"""
Tests for the heartbeat reconciler and its background scheduler.
"""

import asyncio
import random
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.config import HeartbeatConfig
from app.database import Base, utcnow
from app.core.execution_registry import ExecutionUnitRegistry
from app.core.simulator import ResourceSimulator
from app.models.bot import Bot, BotLog, ResourceSample
from app.models.user import User
from app.services import bot_service, heartbeat_service
from app.services.heartbeat_service import (
    HeartbeatReconciler, HeartbeatScheduler, SweepResult, SYNTHETIC_LOG_MESSAGES, compute_uptime,
)


@pytest.fixture
def session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'heartbeat.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def registry():
    return ExecutionUnitRegistry()


@pytest.fixture
def simulator():
    return ResourceSimulator(rng=random.Random(42))


@pytest.fixture
def fleet(session_factory, registry, simulator):
    """Two online bots and one offline bot. Returns (online_ids, offline_id)."""
    with session_factory() as db:
        user = User(username="alice", email="alice@example.com", email_confirmed_at=utcnow())
        db.add(user)
        db.commit()

        online = []
        for name in ("Echo", "Relay"):
            bot = bot_service.deploy_bot(db, user, name, "telegram", "python")
            bot_service.start_bot(db, user, bot.id, simulator=simulator, registry=registry)
            online.append(bot.id)
        offline = bot_service.deploy_bot(db, user, "Idle", "discord", "nodejs").id

    return online, offline


def make_reconciler(session_factory, simulator, registry, **config):
    return HeartbeatReconciler(
        session_factory=session_factory,
        simulator=simulator,
        registry=registry,
        config=HeartbeatConfig(**config),
        rng=random.Random(7),
    )


def sample_count(session_factory, bot_id):
    with session_factory() as db:
        return db.query(ResourceSample).filter(ResourceSample.bot_id == bot_id).count()


def log_count(session_factory, bot_id):
    with session_factory() as db:
        return db.query(BotLog).filter(BotLog.bot_id == bot_id).count()


class TestSweep:
    """Test one reconciler sweep."""

    def test_updates_online_bots_only(self, session_factory, simulator, registry, fleet):
        """Only online bots are resampled, each gaining one history point."""
        online, offline = fleet
        reconciler = make_reconciler(session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        result = reconciler.run_sweep()

        assert result.bots_updated == 2
        assert result.failed == 0
        assert sorted(u.bot_id for u in result.updates) == sorted(online)
        for bot_id in online:
            assert sample_count(session_factory, bot_id) == 2
        assert sample_count(session_factory, offline) == 0

    def test_usage_within_bounds(self, session_factory, simulator, registry, fleet):
        reconciler = make_reconciler(session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        for update in reconciler.run_sweep().updates:
            assert 1.0 <= update.cpu <= 9.0
            assert 5.0 <= update.memory <= 40.0

    def test_refreshes_uptime(self, session_factory, simulator, registry, fleet):
        """Uptime is the time since the last start."""
        online, _ = fleet
        reconciler = make_reconciler(session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        result = reconciler.run_sweep(now=utcnow() + timedelta(seconds=120))

        for update in result.updates:
            assert update.uptime >= 120
        with session_factory() as db:
            for bot_id in online:
                assert db.get(Bot, bot_id).uptime_seconds >= 120

    def test_mirrors_usage_into_registry(self, session_factory, simulator, registry, fleet):
        reconciler = make_reconciler(session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        for update in reconciler.run_sweep().updates:
            unit = registry.get(update.bot_id)
            assert unit.cpu_usage == update.cpu
            assert unit.memory_usage == update.memory

    def test_no_synthetic_logs_when_disabled(self, session_factory, simulator, registry, fleet):
        online, _ = fleet
        before = [log_count(session_factory, bot_id) for bot_id in online]
        reconciler = make_reconciler(session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        reconciler.run_sweep()

        assert [log_count(session_factory, bot_id) for bot_id in online] == before

    def test_synthetic_log_appended(self, session_factory, simulator, registry, fleet):
        """With probability 1 every online bot gets one runtime log line."""
        online, _ = fleet
        before = {bot_id: log_count(session_factory, bot_id) for bot_id in online}
        reconciler = make_reconciler(
            session_factory, simulator, registry,
            SYNTHETIC_LOGS_ENABLED=True, SYNTHETIC_LOG_PROBABILITY=1.0,
        )

        reconciler.run_sweep()

        known_prefixes = {template.split("{")[0] for _, template in SYNTHETIC_LOG_MESSAGES}
        with session_factory() as db:
            for bot_id in online:
                assert log_count(session_factory, bot_id) == before[bot_id] + 1
                latest = db.query(BotLog).filter(BotLog.bot_id == bot_id).order_by(BotLog.id.desc()).first()
                assert any(latest.message.startswith(prefix) for prefix in known_prefixes)

    def test_partial_failure_is_counted(self, session_factory, simulator, registry, fleet, monkeypatch):
        """One bot failing does not stop the others."""
        online, _ = fleet
        broken_id = online[0]
        real_apply_usage = heartbeat_service.apply_usage

        def flaky_apply_usage(db, bot, sample):
            if bot.id == broken_id:
                raise SQLAlchemyError("disk I/O error")
            return real_apply_usage(db, bot, sample)

        monkeypatch.setattr(heartbeat_service, "apply_usage", flaky_apply_usage)
        reconciler = make_reconciler(session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        result = reconciler.run_sweep()

        assert result.bots_updated == 1
        assert result.failed == 1
        assert result.updates[0].bot_id == online[1]
        assert sample_count(session_factory, broken_id) == 1
        assert sample_count(session_factory, online[1]) == 2

    def test_bot_leaving_online_mid_sweep_is_skipped(self, session_factory, simulator, registry, fleet):
        """A bot stopped after the sweep listed it is skipped, not failed."""
        online, _ = fleet
        calls = []

        def stopping_factory():
            calls.append(1)
            if len(calls) == 2:
                with session_factory() as db:
                    db.get(Bot, online[0]).status = "stopped"
                    db.commit()
            return session_factory()

        reconciler = make_reconciler(stopping_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        result = reconciler.run_sweep()

        assert result.bots_updated == 1
        assert result.skipped == 1
        assert result.failed == 0
        assert result.to_dict()["botsSkipped"] == 1
        assert sample_count(session_factory, online[0]) == 1

    def test_thread_pool_sweep(self, session_factory, simulator, registry, fleet):
        """Several workers give the same outcome as a sequential sweep."""
        reconciler = make_reconciler(
            session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False, MAX_WORKERS=4,
        )

        result = reconciler.run_sweep()
        assert result.bots_updated == 2
        assert result.failed == 0

    def test_empty_sweep(self, session_factory, simulator, registry):
        reconciler = make_reconciler(session_factory, simulator, registry)

        result = reconciler.run_sweep()

        assert result.to_dict() == {"success": True, "botsUpdated": 0, "botsFailed": 0, "botsSkipped": 0, "updates": []}

    def test_reconcile_skips_bot_no_longer_online(self, session_factory, simulator, registry, fleet):
        _, offline = fleet
        reconciler = make_reconciler(session_factory, simulator, registry)

        assert reconciler.reconcile_bot(offline, utcnow()) is None
        assert reconciler.reconcile_bot("missing", utcnow()) is None

    def test_update_dict_shape(self, session_factory, simulator, registry, fleet):
        reconciler = make_reconciler(session_factory, simulator, registry, SYNTHETIC_LOGS_ENABLED=False)

        payload = reconciler.run_sweep().to_dict()

        assert payload["botsUpdated"] == 2
        assert set(payload["updates"][0].keys()) == {"botId", "botName", "cpu", "memory", "uptime"}
        assert {u["botName"] for u in payload["updates"]} == {"Echo", "Relay"}


class TestComputeUptime:
    def test_never_started(self):
        assert compute_uptime(None, utcnow()) == 0

    def test_whole_seconds(self):
        now = utcnow()
        assert compute_uptime(now - timedelta(seconds=90, milliseconds=500), now) == 90

    def test_clock_skew_is_zero(self):
        now = utcnow()
        assert compute_uptime(now + timedelta(seconds=5), now) == 0


class CountingReconciler:
    """Reconciler stub that counts sweeps and optionally fails."""

    def __init__(self, fail=False):
        self.calls = 0
        self.fail = fail

    def run_sweep(self):
        self.calls += 1
        if self.fail:
            raise SQLAlchemyError("database is locked")
        return SweepResult()


class TestScheduler:
    """Test the background loop."""

    def test_runs_until_stopped(self):
        reconciler = CountingReconciler()
        scheduler = HeartbeatScheduler(reconciler=reconciler, interval=0.01)

        async def scenario():
            await scheduler.start()
            assert scheduler.running
            await asyncio.sleep(0.1)
            await scheduler.stop()

        asyncio.run(scenario())

        assert reconciler.calls >= 1
        assert not scheduler.running
        assert scheduler.last_sweep_at is not None
        assert scheduler.last_result is not None
        assert scheduler.last_error is None

    def test_keeps_running_after_failed_sweep(self):
        reconciler = CountingReconciler(fail=True)
        scheduler = HeartbeatScheduler(reconciler=reconciler, interval=0.01)

        async def scenario():
            await scheduler.start()
            await asyncio.sleep(0.2)
            await scheduler.stop()

        asyncio.run(scenario())

        assert reconciler.calls >= 2
        assert scheduler.last_result is None
        assert scheduler.last_error == "database is locked"

    def test_start_twice_is_noop(self):
        scheduler = HeartbeatScheduler(reconciler=CountingReconciler(), interval=0.01)

        async def scenario():
            await scheduler.start()
            task = scheduler._task
            await scheduler.start()
            assert scheduler._task is task
            await scheduler.stop()

        asyncio.run(scenario())
