"""
Bot manager: action dispatcher in front of the lifecycle controller.

Translates ``{action, ...}`` payloads into service calls and turns every
outcome into an ActionResult. Errors never cross this boundary as
exceptions; they come back as ``{"success": false, "error", "message"}``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import BotNexusError, ErrorKind, StorageFailure, ValidationError
from app.core.execution_registry import ExecutionUnitRegistry
from app.core.simulator import ResourceSimulator
from app.models.user import User
from app.schemas import bot_to_dict, env_var_to_dict, log_to_dict
from app.services import bot_service, log_service, metrics_service

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Structured outcome of a boundary operation."""
    success: bool
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[ErrorKind] = None
    message: Optional[str] = None
    status_code: int = 200

    @classmethod
    def ok(cls, **data) -> "ActionResult":
        return cls(success=True, data=data)

    @classmethod
    def failure(cls, error: BotNexusError) -> "ActionResult":
        return cls(
            success=False,
            error=error.kind,
            message=error.message,
            status_code=error.status_code,
        )

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, **self.data}
        return {"success": False, "error": self.error.value, "message": self.message}


class BotManager:
    """
    Dispatches lifecycle actions for one caller.

    Supported actions: deploy, start, stop, restart, delete, status,
    envVars, setEnvVars, deleteEnvVar.
    """

    def __init__(
        self,
        db: Session,
        caller: User,
        simulator: Optional[ResourceSimulator] = None,
        registry: Optional[ExecutionUnitRegistry] = None,
    ):
        self.db = db
        self.caller = caller
        self.caller_id = caller.id
        self.simulator = simulator
        self.registry = registry
        self._handlers: Dict[str, Callable[[Dict[str, Any]], ActionResult]] = {
            "deploy": self._deploy,
            "start": self._start,
            "stop": self._stop,
            "restart": self._restart,
            "delete": self._delete,
            "status": self._status,
            "envVars": self._env_vars,
            "setEnvVars": self._set_env_vars,
            "deleteEnvVar": self._delete_env_var,
        }

    def handle(self, action: Optional[str], payload: Optional[Dict[str, Any]] = None) -> ActionResult:
        """
        Run one action.

        Args:
            action: Action name
            payload: Action arguments (botId, name, platform, ...)

        Returns:
            ActionResult (never raises for domain or storage errors)
        """
        handler = self._handlers.get(action or "")
        if handler is None:
            return ActionResult.failure(ValidationError("Invalid action"))
        return self._guard(action, lambda: handler(payload or {}))

    def get_metrics(self, bot_id: Optional[str] = None, hours: int = 24) -> ActionResult:
        def run():
            report = metrics_service.get_metrics(self.db, self.caller, bot_id=bot_id, hours=hours)
            return ActionResult.ok(
                chartData=[point.to_dict() for point in report.chart_data],
                stats=report.stats.to_dict(),
                bots=[bot_to_dict(bot) for bot in report.bots],
            )
        return self._guard("getMetrics", run)

    def get_logs(self, bot_id: Optional[str] = None, limit: int = 50, level: Optional[str] = None) -> ActionResult:
        def run():
            rows = log_service.get_logs(self.db, self.caller, bot_id=bot_id, limit=limit, level=level)
            return ActionResult.ok(logs=[log_to_dict(log, name) for log, name in rows])
        return self._guard("getLogs", run)

    def list_bots(self) -> ActionResult:
        return self._guard(
            "listBots",
            lambda: ActionResult.ok(bots=[bot_to_dict(bot) for bot in bot_service.list_bots(self.db, self.caller)]),
        )

    def _guard(self, action: str, run: Callable[[], ActionResult]) -> ActionResult:
        try:
            return run()
        except BotNexusError as e:
            logger.info(f"Action '{action}' rejected for user {self.caller_id}: {e.kind.value}")
            return ActionResult.failure(e)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Storage error in action '{action}': {str(e)}")
            return ActionResult.failure(StorageFailure())

    # ===== Handlers =====

    def _deploy(self, payload: Dict[str, Any]) -> ActionResult:
        bot = bot_service.deploy_bot(
            self.db,
            self.caller,
            name=payload.get("name"),
            platform=payload.get("platform"),
            runtime=payload.get("runtime"),
            script_content=payload.get("scriptContent"),
            env_vars=payload.get("envVars"),
        )
        return ActionResult.ok(bot=bot_to_dict(bot), message=f'Bot "{bot.name}" deployed successfully')

    def _running_result(self, bot) -> ActionResult:
        return ActionResult.ok(
            status=bot.status,
            executionUnitId=bot.container_id,
            resources={"cpu": bot.cpu_usage, "memory": bot.memory_usage},
        )

    def _start(self, payload: Dict[str, Any]) -> ActionResult:
        bot = bot_service.start_bot(
            self.db, self.caller, payload.get("botId"), simulator=self.simulator, registry=self.registry
        )
        return self._running_result(bot)

    def _restart(self, payload: Dict[str, Any]) -> ActionResult:
        bot = bot_service.restart_bot(
            self.db, self.caller, payload.get("botId"), simulator=self.simulator, registry=self.registry
        )
        return self._running_result(bot)

    def _stop(self, payload: Dict[str, Any]) -> ActionResult:
        bot = bot_service.stop_bot(self.db, self.caller, payload.get("botId"), registry=self.registry)
        return ActionResult.ok(status=bot.status)

    def _delete(self, payload: Dict[str, Any]) -> ActionResult:
        bot_service.delete_bot(self.db, self.caller, payload.get("botId"), registry=self.registry)
        return ActionResult.ok(message="Bot deleted successfully")

    def _status(self, payload: Dict[str, Any]) -> ActionResult:
        bot = bot_service.get_bot_status(
            self.db, self.caller, payload.get("botId"), simulator=self.simulator, registry=self.registry
        )
        return ActionResult.ok(bot=bot_to_dict(bot))

    def _env_vars(self, payload: Dict[str, Any]) -> ActionResult:
        env_vars = bot_service.list_env_vars(self.db, self.caller, payload.get("botId"))
        return ActionResult.ok(envVars=[env_var_to_dict(e) for e in env_vars])

    def _set_env_vars(self, payload: Dict[str, Any]) -> ActionResult:
        env_vars = bot_service.set_env_vars(self.db, self.caller, payload.get("botId"), payload.get("envVars"))
        return ActionResult.ok(envVars=[env_var_to_dict(e) for e in env_vars])

    def _delete_env_var(self, payload: Dict[str, Any]) -> ActionResult:
        deleted = bot_service.delete_env_var(self.db, self.caller, payload.get("botId"), payload.get("key"))
        return ActionResult.ok(deleted=deleted)
