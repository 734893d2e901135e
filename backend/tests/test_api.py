"""
API tests for the bot manager, metrics, logs, heartbeat and user endpoints.
"""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from app.database import get_db, Base


@pytest.fixture
def client(tmp_path):
    """Test client backed by a fresh file database."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'api.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def register(client, username, verify=True):
    """Register a user and return auth headers."""
    response = client.post("/users/register", json={"username": username, "email": f"{username}@example.com"})
    assert response.status_code == 201
    headers = {"Authorization": f"Bearer {response.json()['api_token']}"}
    if verify:
        assert client.post("/users/me/verify", headers=headers).status_code == 200
    return headers


def act(client, headers, action, **payload):
    return client.post("/bot-manager", json={"action": action, **payload}, headers=headers)


def deploy(client, headers, name="Echo", **extra):
    response = act(client, headers, "deploy", name=name, platform="telegram", runtime="python", **extra)
    assert response.status_code == 200, response.json()
    return response.json()["bot"]


class TestUsers:
    """Test registration and verification."""

    def test_register_returns_token(self, client):
        response = client.post("/users/register", json={"username": "alice", "email": "alice@example.com"})

        assert response.status_code == 201
        data = response.json()
        assert data["username"] == "alice"
        assert data["verified"] is False
        assert data["bot_count"] == 0
        assert len(data["api_token"]) == 48

    def test_register_is_idempotent(self, client):
        first = client.post("/users/register", json={"username": "alice"}).json()
        second = client.post("/users/register", json={"username": "alice"}).json()
        assert first["id"] == second["id"]
        assert first["api_token"] == second["api_token"]

    def test_register_invalid_username(self, client):
        response = client.post("/users/register", json={"username": "a"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_register_invalid_email(self, client):
        response = client.post("/users/register", json={"username": "alice", "email": "not-an-email"})
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_me_and_verify(self, client):
        headers = register(client, "alice", verify=False)
        assert client.get("/users/me", headers=headers).json()["verified"] is False

        response = client.post("/users/me/verify", headers=headers)
        assert response.status_code == 200
        assert response.json()["verified"] is True
        assert "api_token" not in response.json()


class TestAuthentication:
    """Test caller resolution."""

    def test_missing_token(self, client):
        response = act(client, {}, "status", botId="x")
        assert response.status_code == 401
        assert response.json() == {
            "success": False,
            "error": "unauthenticated",
            "message": "Missing authorization header",
        }

    def test_unknown_token(self, client):
        response = client.get("/bots", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401
        assert response.json()["error"] == "unauthenticated"

    def test_wrong_scheme(self, client):
        response = client.get("/bots", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_unverified_cannot_deploy(self, client):
        headers = register(client, "bob", verify=False)
        response = act(client, headers, "deploy", name="Echo", platform="telegram", runtime="python")

        assert response.status_code == 403
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "not_verified"


class TestBotManager:
    """Test the action endpoint end to end."""

    def test_deploy(self, client):
        headers = register(client, "alice")
        response = act(client, headers, "deploy", name="Echo", platform="telegram", runtime="python")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == 'Bot "Echo" deployed successfully'
        assert body["bot"]["status"] == "offline"
        assert body["bot"]["cpu_usage"] == 0
        assert body["bot"]["container_id"].startswith("nexus-")

    def test_deploy_missing_fields(self, client):
        headers = register(client, "alice")
        response = act(client, headers, "deploy", name="Echo")

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert "Missing required fields" in response.json()["message"]

    def test_invalid_action(self, client):
        headers = register(client, "alice")
        response = act(client, headers, "explode")

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "validation_error", "message": "Invalid action"}

    def test_missing_action_field(self, client):
        headers = register(client, "alice")
        response = client.post("/bot-manager", json={"botId": "x"}, headers=headers)

        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_lifecycle(self, client):
        """deploy -> start -> status -> stop -> restart -> delete."""
        headers = register(client, "alice")
        bot = deploy(client, headers)

        started = act(client, headers, "start", botId=bot["id"]).json()
        assert started["success"] is True
        assert started["status"] == "online"
        assert started["executionUnitId"] != bot["container_id"]
        assert 1.0 <= started["resources"]["cpu"] <= 9.0
        assert 5.0 <= started["resources"]["memory"] <= 40.0

        status = act(client, headers, "status", botId=bot["id"]).json()
        assert status["bot"]["status"] == "online"

        stopped = act(client, headers, "stop", botId=bot["id"]).json()
        assert stopped == {"success": True, "status": "stopped"}

        status = act(client, headers, "status", botId=bot["id"]).json()
        assert status["bot"]["cpu_usage"] == 0
        assert status["bot"]["memory_usage"] == 0

        restarted = act(client, headers, "restart", botId=bot["id"]).json()
        assert restarted["status"] == "online"
        assert restarted["executionUnitId"] != started["executionUnitId"]

        deleted = act(client, headers, "delete", botId=bot["id"]).json()
        assert deleted == {"success": True, "message": "Bot deleted successfully"}

        response = act(client, headers, "status", botId=bot["id"])
        assert response.status_code == 403
        assert response.json()["error"] == "access_denied"

    def test_list_and_get_bots(self, client):
        headers = register(client, "alice")
        bot = deploy(client, headers)

        listed = client.get("/bots", headers=headers).json()
        assert [b["id"] for b in listed["bots"]] == [bot["id"]]

        fetched = client.get(f"/bots/{bot['id']}", headers=headers).json()
        assert fetched["bot"]["name"] == "Echo"

    def test_access_denied_for_other_user(self, client):
        owner = register(client, "alice")
        intruder = register(client, "mallory")
        bot = deploy(client, owner)

        for action in ("start", "stop", "restart", "delete", "status", "envVars"):
            response = act(client, intruder, action, botId=bot["id"])
            assert response.status_code == 403, action
            assert response.json()["message"] == "Bot not found or access denied"

        missing = act(client, intruder, "start", botId="no-such-bot")
        assert missing.json()["message"] == "Bot not found or access denied"

    def test_quota(self, client):
        headers = register(client, "alice")
        for i in range(3):
            deploy(client, headers, name=f"Bot {i}")

        response = act(client, headers, "deploy", name="Bot 3", platform="discord", runtime="php")
        assert response.status_code == 400
        assert response.json()["error"] == "quota_exceeded"
        assert len(client.get("/bots", headers=headers).json()["bots"]) == 3
        assert client.get("/users/me", headers=headers).json()["bot_count"] == 3

    def test_env_var_actions(self, client):
        headers = register(client, "alice")
        bot = deploy(client, headers, envVars=[{"key": "TOKEN", "value": "abc"}, {"key": "", "value": "x"}])

        listed = act(client, headers, "envVars", botId=bot["id"]).json()
        assert listed["envVars"] == [{"key": "TOKEN", "value": "abc"}]

        updated = act(client, headers, "setEnvVars", botId=bot["id"], envVars=[{"key": "MODE", "value": "polling"}]).json()
        assert updated["envVars"] == [{"key": "MODE", "value": "polling"}, {"key": "TOKEN", "value": "abc"}]

        deleted = act(client, headers, "deleteEnvVar", botId=bot["id"], key="TOKEN").json()
        assert deleted == {"success": True, "deleted": True}


class TestMetricsAndLogs:
    def test_metrics_without_bots(self, client):
        headers = register(client, "alice")
        body = client.get("/resource-metrics", headers=headers).json()

        assert body["success"] is True
        assert body["chartData"] == []
        assert body["bots"] == []
        assert all(value == 0 for value in body["stats"].values())

    def test_metrics_after_start(self, client):
        headers = register(client, "alice")
        bot = deploy(client, headers)
        act(client, headers, "start", botId=bot["id"])

        body = client.get("/resource-metrics", params={"botId": bot["id"], "hours": 1}, headers=headers).json()

        assert len(body["chartData"]) == 1
        assert set(body["chartData"][0].keys()) == {"time", "cpu", "memory"}
        assert body["stats"]["runningBots"] == 1

    def test_metrics_bad_hours(self, client):
        headers = register(client, "alice")
        response = client.get("/resource-metrics", params={"hours": 0}, headers=headers)
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_logs(self, client):
        headers = register(client, "alice")
        bot = deploy(client, headers)
        act(client, headers, "start", botId=bot["id"])

        body = client.get("/bot-logs", params={"botId": bot["id"]}, headers=headers).json()

        assert body["success"] is True
        assert len(body["logs"]) == 5
        assert all(log["bot_name"] == "Echo" for log in body["logs"])

        debug_only = client.get("/bot-logs", params={"level": "debug"}, headers=headers).json()
        assert [log["message"].split(":")[0] for log in debug_only["logs"]] == ["Resources allocated"]

    def test_logs_bad_limit(self, client):
        headers = register(client, "alice")
        response = client.get("/bot-logs", params={"limit": 0}, headers=headers)
        assert response.status_code == 400


class TestHeartbeatAndConfig:
    def test_heartbeat_updates_online_bots(self, client):
        headers = register(client, "alice")
        echo = deploy(client, headers, name="Echo")
        deploy(client, headers, name="Idle")
        act(client, headers, "start", botId=echo["id"])

        body = client.post("/bot-heartbeat").json()

        assert body["success"] is True
        assert body["botsUpdated"] == 1
        assert body["botsFailed"] == 0
        assert body["botsSkipped"] == 0
        assert body["updates"][0]["botId"] == echo["id"]
        assert body["updates"][0]["botName"] == "Echo"

    def test_limits(self, client):
        body = client.get("/config/limits").json()
        assert body["MAX_BOTS_PER_USER"] == 3
        assert body["MAX_CPU_PERCENT"] == 10.0
        assert body["MAX_MEMORY_MB"] == 50.0
