"""
Data models for the Cluster Upgrade Manager.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

# Location of the restart flags inside a node's attribute document
RESTART_FLAGS_PATH = "node_state.requires_restart"


class UpgradePhase(Enum):
    """Ordered phases of the cluster upgrade."""

    IDLE = "idle"
    SANITY_OK = "sanity_ok"
    PREPARED = "prepared"
    SERVICES_STOPPED = "services_stopped"
    NODES_UPGRADED = "nodes_upgraded"
    DONE = "done"


@dataclass
class Node:
    """A managed node and its persisted attribute document."""

    name: str
    alias: Optional[str] = None
    architecture: str = "x86_64"
    roles: List[str] = field(default_factory=list)
    attributes: Dict[str, Any] = field(default_factory=dict)
    revision: Optional[str] = None  # opaque token from the Node Directory

    def get_attribute(self, path: str, default: Any = None) -> Any:
        """Read a nested attribute by dotted path."""
        current: Any = self.attributes
        for key in path.split("."):
            if not isinstance(current, dict) or key not in current:
                return default
            current = current[key]
        return current

    def set_attribute(self, path: str, value: Any) -> None:
        """Write a nested attribute by dotted path, creating parents."""
        keys = path.split(".")
        current = self.attributes
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def delete_attribute(self, path: str) -> bool:
        """Delete a nested attribute; returns True if something was removed."""
        keys = path.split(".")
        current: Any = self.attributes
        for key in keys[:-1]:
            if not isinstance(current, dict) or key not in current:
                return False
            current = current[key]
        if not isinstance(current, dict) or keys[-1] not in current:
            return False
        del current[keys[-1]]
        return True

    def to_document(self) -> Dict[str, Any]:
        """Serialize to the Node Directory document format."""
        return {
            "name": self.name,
            "alias": self.alias,
            "architecture": self.architecture,
            "roles": list(self.roles),
            "attributes": copy.deepcopy(self.attributes),
            "revision": self.revision,
        }

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Node":
        """Build a Node from a Node Directory document."""
        return cls(
            name=data["name"],
            alias=data.get("alias"),
            architecture=data.get("architecture") or "x86_64",
            roles=list(data.get("roles") or []),
            attributes=copy.deepcopy(data.get("attributes") or {}),
            revision=data.get("revision"),
        )


class RestartFlagSet:
    """
    Per-node restart flags: cookbook -> service -> marker.

    A marker is ``True`` or a reason string. Cookbooks with no flagged
    services are never kept.
    """

    def __init__(self, flags: Optional[Dict[str, Dict[str, Any]]] = None):
        self._flags: Dict[str, Dict[str, Any]] = {}
        for cookbook, services in (flags or {}).items():
            if isinstance(services, dict) and services:
                self._flags[cookbook] = dict(services)

    @classmethod
    def from_node(cls, node: Node) -> "RestartFlagSet":
        raw = node.get_attribute(RESTART_FLAGS_PATH)
        return cls(raw if isinstance(raw, dict) else None)

    def apply_to(self, node: Node) -> None:
        """Write the flags back to the node document, pruning empties."""
        if self.is_empty():
            node.delete_attribute(RESTART_FLAGS_PATH)
        else:
            node.set_attribute(RESTART_FLAGS_PATH, self.to_dict())

    def is_empty(self) -> bool:
        return not self._flags

    def cookbooks(self) -> List[str]:
        return list(self._flags)

    def has_cookbook(self, cookbook: str) -> bool:
        return cookbook in self._flags

    def services(self, cookbook: str) -> Dict[str, Any]:
        return dict(self._flags.get(cookbook, {}))

    def flag(self, cookbook: str, service: str, marker: Any = True) -> bool:
        """Mark a service as needing restart; returns True if this changed anything."""
        services = self._flags.setdefault(cookbook, {})
        if services.get(service) == marker:
            return False
        services[service] = marker
        return True

    def clear_cookbook(self, cookbook: str) -> bool:
        return self._flags.pop(cookbook, None) is not None

    def clear_service(self, cookbook: str, service: str) -> bool:
        services = self._flags.get(cookbook)
        if not services or service not in services:
            return False
        del services[service]
        if not services:
            del self._flags[cookbook]
        return True

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {cookbook: dict(services) for cookbook, services in self._flags.items()}


@dataclass
class CommandResult:
    """Captured result of a remote command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class NodeOutcome:
    """Per-node result of a fan-out operation."""

    node: str
    ok: bool
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None

    @property
    def status(self) -> str:
        return "ok" if self.ok else "failed"

    @property
    def error_text(self) -> str:
        """Best human-readable explanation of a failure."""
        if self.error:
            return self.error
        if self.stderr.strip():
            return self.stderr.strip()
        return f"exit code {self.exit_code}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "node": self.node,
            "ok": self.ok,
            "status": self.status,
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "error": self.error,
        }


@dataclass
class UpgradeState:
    """Cluster-wide upgrade state record."""

    phase: UpgradePhase = UpgradePhase.IDLE
    addons: List[str] = field(default_factory=list)
    last_error: Optional[Dict[str, Any]] = None
    nodes: Dict[str, Dict[str, str]] = field(default_factory=dict)
    updated_at: Optional[str] = None

    def record_node(self, node: str, operation: str, status: str) -> None:
        self.nodes.setdefault(node, {})[operation] = status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.value,
            "addons": list(self.addons),
            "last_error": copy.deepcopy(self.last_error),
            "nodes": copy.deepcopy(self.nodes),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UpgradeState":
        return cls(
            phase=UpgradePhase(data.get("phase", UpgradePhase.IDLE.value)),
            addons=list(data.get("addons") or []),
            last_error=data.get("last_error"),
            nodes=copy.deepcopy(data.get("nodes") or {}),
            updated_at=data.get("updated_at"),
        )
