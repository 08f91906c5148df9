"""
Cluster upgrade orchestration.

The upgrade moves through ordered phases:

    idle -> sanity_ok -> prepared -> services_stopped -> nodes_upgraded -> done

Every phase-changing operation holds the state store's transition lock, so
only one runs at a time cluster-wide. A failed operation records the error
and leaves the phase at the last step that completed. Work already done on
nodes that succeeded is not rolled back.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Set, Tuple

from config import ManagerConfig
from dispatcher import (
    RemoteCommandDispatcher,
    clear_upgrade_action,
    mark_upgrade_action,
    stop_services_action,
    upgrade_os_action,
)
from errors import InternalError, PreconditionFailed, RemoteExecutionFailed, UpgradeError
from features import (
    Feature,
    PRIMARY_FEATURE,
    deployed_addons,
    features_for_roles,
    services_for_roles,
)
from models import Node, NodeOutcome, UpgradePhase, UpgradeState
from prechecks import PrecheckReport, run_prechecks
from repositories import RepositoryChecker
from restarts import RestartManager
from state import UpgradeStateStore
from stores import NodeDirectory

logger = logging.getLogger(__name__)

RESTART_WITHHELD_REASON = "upgrade"


class UpgradeOrchestrator:
    """Sequences the cluster-wide upgrade."""

    def __init__(
        self,
        config: ManagerConfig,
        directory: NodeDirectory,
        dispatcher: RemoteCommandDispatcher,
        repo_checker: RepositoryChecker,
        restarts: RestartManager,
        health,
        state_store: UpgradeStateStore,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Manager configuration
            directory: Node Directory
            dispatcher: Remote command dispatcher
            repo_checker: Repository availability checker
            restarts: Restart-suppression tracker
            health: Health checks (sanity, network, HA presence, maintenance)
            state_store: Persisted upgrade state
        """
        self.config = config
        self.directory = directory
        self.dispatcher = dispatcher
        self.repo_checker = repo_checker
        self.restarts = restarts
        self.health = health
        self.state_store = state_store

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _nodes(self) -> List[Node]:
        try:
            return self.directory.find()
        except Exception as e:
            raise InternalError(f"Failed to list nodes: {e}") from e

    def _managed(self, nodes: List[Node]) -> List[Node]:
        return [n for n in nodes if self.config.core_role in n.roles]

    def _addons(self, nodes: List[Node]) -> List[str]:
        return deployed_addons(n.roles for n in nodes)

    def _features_in_use(self, addons: List[str]) -> List[Feature]:
        return [Feature.OS, PRIMARY_FEATURE] + [Feature(a) for a in addons]

    def _require_phase(
        self, state: UpgradeState, operation: str, allowed: Iterable[UpgradePhase]
    ) -> None:
        allowed = list(allowed)
        if state.phase not in allowed:
            raise PreconditionFailed(
                f"Cannot {operation} while the upgrade is in phase '{state.phase.value}'",
                details={
                    "operation": operation,
                    "phase": state.phase.value,
                    "allowed_phases": [p.value for p in allowed],
                },
            )

    def _settle(
        self, state: UpgradeState, operation: str, outcomes: List[NodeOutcome]
    ) -> None:
        """Record per-node outcomes and fail the operation if any node failed."""
        for outcome in outcomes:
            state.record_node(outcome.node, operation, outcome.status)

        failures = [o for o in outcomes if not o.ok]
        if failures:
            error = RemoteExecutionFailed(operation, failures)
            state.last_error = error.to_dict()
            logger.error(
                f"{operation} failed on {len(failures)}/{len(outcomes)} node(s): "
                f"{', '.join(f.node for f in failures)}"
            )
            raise error
        state.last_error = None

    def _summary(self, state: UpgradeState, outcomes: List[NodeOutcome]) -> Dict[str, Any]:
        return {
            "phase": state.phase.value,
            "nodes": {o.node: o.to_dict() for o in outcomes},
        }

    def _query(self, check) -> Any:
        try:
            return check()
        except Exception as e:
            logger.warning(f"Health check {getattr(check, '__name__', check)} failed: {e}")
            return {"error": str(e)}

    # ------------------------------------------------------------------
    # Read-only operations
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Return the current phase, addons and health summaries."""
        state = self.state_store.snapshot()
        addons = self._addons(self._nodes())
        return {
            "phase": state.phase.value,
            "addons": addons,
            "last_error": state.last_error,
            "nodes": state.nodes,
            "updated_at": state.updated_at,
            "ha_presence": (
                self._query(self.health.ha_presence_check) if "ha" in addons else {}
            ),
            "maintenance_updates": self._query(self.health.maintenance_updates_status),
            "network_checks": self._query(self.health.network_checks),
        }

    def prechecks(self) -> PrecheckReport:
        addons = self._addons(self._nodes())
        return run_prechecks(self.health, addons)

    def check(self) -> Dict[str, Any]:
        """Run every pre-check and report each result."""
        return self.prechecks().to_dict()

    def adminrepocheck(self) -> Dict[str, Dict[str, Any]]:
        """Check repositories of every feature in use for the admin node."""
        addons = self._addons(self._nodes())
        arch = self.config.admin_architecture
        targets = {f: {arch} for f in self._features_in_use(addons)}
        return self._repocheck(targets)

    def noderepocheck(self) -> Dict[str, Dict[str, Any]]:
        """
        Check repositories of every feature in use for the managed nodes.

        OS and primary-feature repositories are needed by every managed node;
        addon repositories only by nodes carrying the addon's roles.
        """
        nodes = self._nodes()
        managed = self._managed(nodes)
        addons = self._addons(nodes)

        all_archs = {n.architecture for n in managed}
        targets: Dict[Feature, Set[str]] = {}
        for feature in self._features_in_use(addons):
            if feature in (Feature.OS, PRIMARY_FEATURE):
                archs = set(all_archs)
            else:
                archs = {
                    n.architecture
                    for n in managed
                    if feature in features_for_roles(n.roles)
                }
            if archs:
                targets[feature] = archs
        return self._repocheck(targets)

    def _repocheck(self, targets: Dict[Feature, Set[str]]) -> Dict[str, Dict[str, Any]]:
        platform = self.config.target_platform
        pairs: List[Tuple[Feature, str]] = [
            (feature, arch) for feature, archs in targets.items() for arch in sorted(archs)
        ]
        if not pairs:
            return {}

        workers = max(1, min(self.config.max_parallel, len(pairs)))
        try:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = {
                    pair: pool.submit(self.repo_checker.check, pair[0], platform, pair[1])
                    for pair in pairs
                }
                checked = {pair: future.result() for pair, future in futures.items()}
        except Exception as e:
            raise InternalError(f"Repository check failed: {e}") from e

        report: Dict[str, Dict[str, Any]] = {}
        for feature, archs in targets.items():
            per_arch = {arch: checked[(feature, arch)] for arch in sorted(archs)}
            repos: Dict[str, Dict[str, List[str]]] = {}
            for _, details in per_arch.values():
                for repo, problems in details.items():
                    for kind, problem_archs in problems.items():
                        repos.setdefault(repo, {}).setdefault(kind, []).extend(
                            problem_archs
                        )
            entry: Dict[str, Any] = {
                "available": all(available for available, _ in per_arch.values()),
                "repos": repos,
            }
            if len(per_arch) > 1:
                logger.warning(
                    f"Feature {feature.value} spans architectures {', '.join(per_arch)}; "
                    f"reporting per-architecture results"
                )
                entry["architectures"] = {
                    arch: {"available": available, "repos": details}
                    for arch, (available, details) in per_arch.items()
                }
            report[feature.value] = entry
        return report

    # ------------------------------------------------------------------
    # Phase transitions
    # ------------------------------------------------------------------

    def prepare(self) -> Dict[str, Any]:
        """Run pre-checks and mark every managed node for upgrade."""
        with self.state_store.transition("prepare") as state:
            self._require_phase(
                state, "prepare", (UpgradePhase.IDLE, UpgradePhase.SANITY_OK)
            )
            nodes = self._nodes()
            addons = self._addons(nodes)

            report = run_prechecks(self.health, addons)
            if not report.passed:
                error = PreconditionFailed(
                    "Upgrade pre-checks failed",
                    details={
                        "failed_checks": report.failed_checks(),
                        "checks": report.to_dict()["checks"],
                    },
                )
                state.last_error = error.to_dict()
                raise error

            state.phase = UpgradePhase.SANITY_OK
            state.addons = addons
            logger.info("=" * 70)
            logger.info(f"Preparing cluster upgrade to {self.config.target_platform}")
            logger.info(f"Addons: {', '.join(addons) or 'none'}")
            logger.info("=" * 70)

            outcomes = self.dispatcher.broadcast(
                self._managed(nodes), mark_upgrade_action()
            )
            self._settle(state, "prepare", outcomes)
            state.phase = UpgradePhase.PREPARED
            return self._summary(state, outcomes)

    def _stop_node_services(self, node: Node, policy: Dict[str, bool]) -> NodeOutcome:
        to_stop: List[str] = []
        for cookbook, services in services_for_roles(node.roles).items():
            if self.config.restart_management_enabled and RestartManager.restart_disallowed(
                policy, cookbook
            ):
                self.restarts.flag_restart(
                    node.name, cookbook, services, reason=RESTART_WITHHELD_REASON
                )
            to_stop.extend(services)

        if not to_stop:
            logger.info(f"[{node.name}] no services to stop")
            return NodeOutcome(node=node.name, ok=True, exit_code=0)
        return self.dispatcher.execute(node, stop_services_action(to_stop))

    def stop_services(self) -> Dict[str, Any]:
        """
        Stop upgrade-affected services on every managed node.

        Services of cookbooks whose restart policy disallows automatic
        restarts are stopped as well, and flagged so that an operator
        restarts them by hand after the upgrade.
        """
        with self.state_store.transition("stop_services") as state:
            self._require_phase(state, "stop services", (UpgradePhase.PREPARED,))
            policy = (
                self.restarts.get_policy()
                if self.config.restart_management_enabled
                else {}
            )
            nodes = self._managed(self._nodes())

            outcomes = self.dispatcher.fan_out(
                nodes, lambda node: self._stop_node_services(node, policy)
            )
            self._settle(state, "stop_services", outcomes)
            state.phase = UpgradePhase.SERVICES_STOPPED
            return self._summary(state, outcomes)

    def upgrade_nodes(self) -> Dict[str, Any]:
        """Run the OS/package upgrade on every managed node."""
        with self.state_store.transition("upgrade_nodes") as state:
            self._require_phase(
                state,
                "upgrade nodes",
                (UpgradePhase.SERVICES_STOPPED, UpgradePhase.NODES_UPGRADED),
            )
            nodes = self._managed(self._nodes())
            logger.info(f"Upgrading {len(nodes)} node(s): {self.config.upgrade_command}")

            outcomes = self.dispatcher.broadcast(
                nodes, upgrade_os_action(self.config.upgrade_command)
            )
            self._settle(state, "upgrade_nodes", outcomes)
            state.phase = UpgradePhase.NODES_UPGRADED
            return self._summary(state, outcomes)

    def finish(self) -> Dict[str, Any]:
        """Remove the upgrade markers and complete the upgrade."""
        with self.state_store.transition("finish") as state:
            self._require_phase(state, "finish", (UpgradePhase.NODES_UPGRADED,))
            outcomes = self.dispatcher.broadcast(
                self._managed(self._nodes()), clear_upgrade_action()
            )
            self._settle(state, "finish", outcomes)
            state.phase = UpgradePhase.DONE
            logger.info("Cluster upgrade completed")
            return self._summary(state, outcomes)

    def cancel(self) -> Dict[str, Any]:
        """
        Revert every managed node and reset the upgrade to idle.

        Only valid once an upgrade has started; from idle it fails with
        PreconditionFailed. If reverting fails the phase is left unchanged
        and the underlying error message is reported as is.
        """
        with self.state_store.transition("cancel") as state:
            self._require_phase(
                state, "cancel", [p for p in UpgradePhase if p != UpgradePhase.IDLE]
            )
            previous = state.phase
            try:
                outcomes = self.dispatcher.broadcast(
                    self._managed(self._nodes()), clear_upgrade_action()
                )
            except UpgradeError as e:
                state.last_error = e.to_dict()
                raise
            except Exception as e:
                error = InternalError(str(e), details={"operation": "cancel"})
                state.last_error = error.to_dict()
                raise error from e

            self._settle(state, "cancel", outcomes)

            state.phase = UpgradePhase.IDLE
            state.addons = []
            state.nodes = {}
            state.last_error = None
            logger.warning(f"Upgrade cancelled (was in phase '{previous.value}')")
            return {"phase": state.phase.value, "message": ""}
