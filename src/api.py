"""
Operator-facing command surface.

Every command maps to exactly one core operation and reports one of the
stable result codes in ``errors.ResultCode``.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from clients import ManagementApiClient
from config import ManagerConfig
from dispatcher import RemoteCommandDispatcher, SshTransport
from errors import PreconditionFailed, ResultCode, UpgradeError
from orchestrator import UpgradeOrchestrator
from repositories import RepositoryChecker
from restarts import RestartManager
from state import ConfigItemStateStore, UpgradeStateStore
from stores import PolicyStore, RestNodeDirectory, RestPolicyStore

logger = logging.getLogger(__name__)


def _parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if str(value).lower() in ("true", "1", "yes"):
        return True
    if str(value).lower() in ("false", "0", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value}")


@dataclass
class CommandResponse:
    """Outcome of one operator command."""

    code: ResultCode
    data: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.code == ResultCode.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        response: Dict[str, Any] = {"code": self.code.value}
        if self.data is not None:
            response["data"] = self.data
        if self.error is not None:
            response["error"] = self.error
        return response


class OperatorApi:
    """Dispatches operator commands to the orchestrator and tracker."""

    def __init__(
        self,
        orchestrator: UpgradeOrchestrator,
        restarts: RestartManager,
        restart_management_enabled: bool = True,
    ):
        self.orchestrator = orchestrator
        self.restarts = restarts
        self.restart_management_enabled = restart_management_enabled
        self.commands: Dict[str, Callable[..., Any]] = {
            "get-status": self._get_status,
            "run-prechecks": self._run_prechecks,
            "prepare": self._prepare,
            "stop-services": self._stop_services,
            "upgrade-nodes": self._upgrade_nodes,
            "finish": self._finish,
            "cancel": self._cancel,
            "check-admin-repos": self._check_admin_repos,
            "check-node-repos": self._check_node_repos,
            "list-restarts": self._list_restarts,
            "clear-restarts": self._clear_restarts,
            "get-restart-policy": self._get_restart_policy,
            "set-restart-policy": self._set_restart_policy,
        }

    def execute(self, command: str, params: Optional[Dict[str, Any]] = None) -> CommandResponse:
        """
        Run one operator command.

        Args:
            command: Command name, e.g. "stop-services"
            params: Command parameters

        Returns:
            CommandResponse with a stable result code
        """
        handler = self.commands.get(command)
        if handler is None:
            return CommandResponse(
                ResultCode.NOT_FOUND,
                error={
                    "code": ResultCode.NOT_FOUND.value,
                    "message": f"Unknown command: {command}",
                    "details": {"command": command},
                },
            )

        params = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            inspect.signature(handler).bind(**params)
        except TypeError as e:
            return self._invalid(command, e)

        try:
            data = handler(**params)
        except UpgradeError as e:
            logger.error(f"{command} failed ({e.code.value}): {e.message}")
            return CommandResponse(e.code, error=e.to_dict())
        except ValueError as e:
            return self._invalid(command, e)
        except Exception as e:
            logger.exception(f"Internal error while running {command}: {e}")
            return CommandResponse(
                ResultCode.INTERNAL_ERROR,
                error={
                    "code": ResultCode.INTERNAL_ERROR.value,
                    "message": str(e),
                    "details": {"command": command},
                },
            )
        return CommandResponse(ResultCode.SUCCESS, data=data)

    def _invalid(self, command: str, error: Exception) -> CommandResponse:
        logger.error(f"{command} rejected: {error}")
        return CommandResponse(
            ResultCode.PRECONDITION_FAILED,
            error={
                "code": ResultCode.PRECONDITION_FAILED.value,
                "message": f"Invalid parameters: {error}",
                "details": {"command": command},
            },
        )

    def _require_restart_management(self) -> None:
        if not self.restart_management_enabled:
            raise PreconditionFailed(
                "restart management is disabled",
                details={"option": "restart_management_enabled"},
            )

    def _get_status(self):
        return self.orchestrator.status()

    def _run_prechecks(self):
        return self.orchestrator.check()

    def _prepare(self):
        return self.orchestrator.prepare()

    def _stop_services(self):
        return self.orchestrator.stop_services()

    def _upgrade_nodes(self):
        return self.orchestrator.upgrade_nodes()

    def _finish(self):
        return self.orchestrator.finish()

    def _cancel(self):
        return self.orchestrator.cancel()

    def _check_admin_repos(self):
        return self.orchestrator.adminrepocheck()

    def _check_node_repos(self):
        return self.orchestrator.noderepocheck()

    def _list_restarts(self):
        self._require_restart_management()
        return self.restarts.list_restarts()

    def _clear_restarts(self, node: str, cookbook: Optional[str] = None, service: Optional[str] = None):
        self._require_restart_management()
        if not node:
            raise ValueError("node is required")
        cleared = self.restarts.clear_restarts(node, cookbook=cookbook, service=service)
        return {"node": node, "cleared": cleared}

    def _get_restart_policy(self):
        self._require_restart_management()
        return self.restarts.get_policy()

    def _set_restart_policy(self, cookbook: str, disallow: Any):
        self._require_restart_management()
        disallow = _parse_bool(disallow)
        self.restarts.set_policy(cookbook, disallow)
        return {"cookbook": cookbook, "disallow": disallow}


def build_state_store(config: ManagerConfig, policy_store: PolicyStore) -> UpgradeStateStore:
    """Pick the upgrade state backend named by the configuration."""
    if config.state_store == "management-api":
        return ConfigItemStateStore(policy_store)
    return UpgradeStateStore(config.state_file)


def build_operator_api(config: ManagerConfig) -> OperatorApi:
    """Wire the production components for a configuration."""
    client = ManagementApiClient(base_url=config.api_url)
    directory = RestNodeDirectory(client)
    policy_store = RestPolicyStore(client)
    restarts = RestartManager(directory, policy_store)
    dispatcher = RemoteCommandDispatcher(
        SshTransport(user=config.ssh_user, key_file=config.ssh_key, port=config.ssh_port),
        max_parallel=config.max_parallel,
    )
    orchestrator = UpgradeOrchestrator(
        config=config,
        directory=directory,
        dispatcher=dispatcher,
        repo_checker=RepositoryChecker(config.repo_root, policy_store),
        restarts=restarts,
        health=client,
        state_store=build_state_store(config, policy_store),
    )
    return OperatorApi(
        orchestrator=orchestrator,
        restarts=restarts,
        restart_management_enabled=config.restart_management_enabled,
    )
