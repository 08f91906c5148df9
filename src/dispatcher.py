"""
Remote command execution across managed nodes.
"""

import logging
import shlex
import subprocess
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional

from models import CommandResult, Node, NodeOutcome

logger = logging.getLogger(__name__)

UPGRADE_MARKER = "/var/lib/cluster-upgrade/upgrading"


class TransportError(RuntimeError):
    """The command could not be delivered to the node."""


@dataclass(frozen=True)
class RemoteAction:
    """A named shell command to run on a node."""

    name: str
    command: str


def mark_upgrade_action() -> RemoteAction:
    marker_dir = UPGRADE_MARKER.rsplit("/", 1)[0]
    return RemoteAction(
        "mark_upgrade",
        f"mkdir -p {shlex.quote(marker_dir)} && touch {shlex.quote(UPGRADE_MARKER)}",
    )


def clear_upgrade_action() -> RemoteAction:
    return RemoteAction("clear_upgrade", f"rm -f {shlex.quote(UPGRADE_MARKER)}")


def stop_services_action(services: List[str]) -> RemoteAction:
    # systemctl stop succeeds for services that are already stopped
    quoted = " ".join(shlex.quote(s) for s in services)
    return RemoteAction("stop_services", f"systemctl stop {quoted}")


def upgrade_os_action(command: str) -> RemoteAction:
    return RemoteAction("upgrade_os", command)


class SshTransport:
    """Runs commands on nodes through the ssh client."""

    def __init__(
        self,
        user: str = "root",
        key_file: Optional[str] = None,
        port: int = 22,
    ):
        self.user = user
        self.key_file = key_file
        self.port = port

    def _ssh_command(self, host: str, command: str) -> List[str]:
        cmd = [
            "ssh",
            "-o", "BatchMode=yes",
            "-o", "StrictHostKeyChecking=no",
            "-o", "LogLevel=ERROR",
            "-p", str(self.port),
        ]
        if self.key_file:
            cmd += ["-i", self.key_file]
        cmd += [f"{self.user}@{host}", command]
        return cmd

    def run(self, host: str, command: str) -> CommandResult:
        """
        Run a command on a host and wait for it to finish.

        Raises:
            TransportError: If the ssh client cannot be started
        """
        try:
            proc = subprocess.run(
                self._ssh_command(host, command),
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise TransportError(f"Cannot run ssh to {host}: {e}") from e
        return CommandResult(
            exit_code=proc.returncode, stdout=proc.stdout, stderr=proc.stderr
        )


class RemoteCommandDispatcher:
    """Executes actions on one node or fans them out to many."""

    def __init__(self, transport: SshTransport, max_parallel: int = 10):
        self.transport = transport
        self.max_parallel = max_parallel

    def run(self, node: Node, action: RemoteAction) -> CommandResult:
        logger.debug(f"[{node.name}] {action.name}: {action.command}")
        return self.transport.run(node.name, action.command)

    def execute(self, node: Node, action: RemoteAction) -> NodeOutcome:
        """Run an action and convert the result into a NodeOutcome."""
        try:
            result = self.run(node, action)
        except TransportError as e:
            logger.error(f"[{node.name}] {action.name} failed: {e}")
            return NodeOutcome(node=node.name, ok=False, error=str(e))

        if not result.ok:
            logger.error(
                f"[{node.name}] {action.name} exited with {result.exit_code}: {result.stderr.strip()}"
            )
        else:
            logger.info(f"[{node.name}] {action.name} completed")
        return NodeOutcome(
            node=node.name,
            ok=result.ok,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    def fan_out(
        self, nodes: List[Node], task: Callable[[Node], NodeOutcome]
    ) -> List[NodeOutcome]:
        """
        Run a task for every node concurrently and wait for all of them.

        A task that raises produces a failed outcome for its node. Outcomes
        are returned in the order of ``nodes``.
        """
        if not nodes:
            return []

        workers = max(1, min(self.max_parallel, len(nodes)))
        logger.info(f"Dispatching to {len(nodes)} node(s) with {workers} worker(s)")

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [(node, pool.submit(task, node)) for node in nodes]
            outcomes: List[NodeOutcome] = []
            for node, future in futures:
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.error(f"[{node.name}] task failed: {e}")
                    outcomes.append(NodeOutcome(node=node.name, ok=False, error=str(e)))
        return outcomes

    def broadcast(self, nodes: List[Node], action: RemoteAction) -> List[NodeOutcome]:
        """Run the same action on every node."""
        return self.fan_out(nodes, lambda node: self.execute(node, action))
