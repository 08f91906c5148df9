"""
Restart-suppression tracking.

When the restart policy disallows automatic restarts for a cookbook, the
services it manages are flagged on the node instead of restarted. Operators
list the flags, restart services by hand, and then clear the flags.
"""

import logging
from typing import Any, Dict, List, Optional

from clients import ConflictError
from errors import InternalError, NotFound
from features import managed_cookbooks
from models import RESTART_FLAGS_PATH, Node, RestartFlagSet
from stores import NodeDirectory, PolicyStore

logger = logging.getLogger(__name__)

POLICY_CONFIG = ("upgrade-config", "disallow_restart")
RESTART_FLAGS_QUERY = "node_state.requires_restart:*"
POLICY_WRITE_ATTEMPTS = 3


class RestartManager:
    """Reads and clears per-node restart flags and the restart policy."""

    def __init__(self, directory: NodeDirectory, policy_store: PolicyStore):
        self.directory = directory
        self.policy_store = policy_store

    def _get_node_or_raise(self, name: str) -> Node:
        node = self.directory.find_by_name_or_alias(name)
        if node is None:
            raise NotFound(f"Node {name} not found", details={"node": name})
        return node

    def _require_managed(self, cookbook: str) -> None:
        if cookbook not in managed_cookbooks():
            raise NotFound(
                f"Cookbook {cookbook} is not managed",
                details={"cookbook": cookbook},
            )

    def _save(self, node: Node) -> None:
        try:
            self.directory.save(node)
        except Exception as e:
            raise InternalError(
                f"Failed to save node {node.name}: {e}", details={"node": node.name}
            ) from e

    def list_restarts(self) -> Dict[str, Dict[str, Any]]:
        """
        List services awaiting a manual restart.

        Returns:
            Mapping of node name -> {"alias": alias, cookbook: {service: marker}}
            restricted to managed cookbooks
        """
        managed = managed_cookbooks()
        result: Dict[str, Dict[str, Any]] = {}
        for node in self.directory.find(RESTART_FLAGS_QUERY):
            flags = RestartFlagSet.from_node(node)
            entry: Dict[str, Any] = {"alias": node.alias}
            for cookbook in sorted(flags.cookbooks()):
                if cookbook in managed:
                    entry[cookbook] = flags.services(cookbook)
            result[node.name] = entry
        return result

    def clear_restarts(
        self,
        node_name: str,
        cookbook: Optional[str] = None,
        service: Optional[str] = None,
    ) -> bool:
        """
        Clear restart flags on a node.

        Without a cookbook every flag on the node is removed; with a cookbook
        only its flags; with a service only that service's flag.

        Returns:
            True if anything was removed (and the node saved)

        Raises:
            NotFound: Unknown node, unmanaged cookbook, or a service-level
                clear for a cookbook with no flags on the node
        """
        if service is not None and cookbook is None:
            logger.warning(
                f"restart_management: service {service} given without cookbook, clearing node {node_name}"
            )
        if cookbook is not None:
            self._require_managed(cookbook)

        name = self._get_node_or_raise(node_name).name
        with self.directory.lock(name):
            node = self._get_node_or_raise(name)
            raw = node.get_attribute(RESTART_FLAGS_PATH)
            flags = RestartFlagSet.from_node(node)

            if cookbook is None:
                # Empty or malformed leftovers still match the restart query
                dirty = raw is not None
                flags = RestartFlagSet()
                scope = "all flags"
            elif service is None:
                flags.clear_cookbook(cookbook)
                dirty = isinstance(raw, dict) and cookbook in raw
                scope = f"cookbook {cookbook}"
            else:
                if not flags.has_cookbook(cookbook):
                    raise NotFound(
                        f"Cookbook {cookbook} not found on node {node_name}",
                        details={"node": node_name, "cookbook": cookbook},
                    )
                dirty = flags.clear_service(cookbook, service)
                scope = f"service {service} of cookbook {cookbook}"

            if not dirty:
                logger.debug(f"restart_management: nothing to clean on {node_name} ({scope})")
                return False

            flags.apply_to(node)
            self._save(node)
            logger.info(f"restart_management: {scope} cleaned on node {node_name}")
            return True

    def flag_restart(
        self, node_name: str, cookbook: str, services: List[str], reason: Any = True
    ) -> bool:
        """Mark services on a node as needing a manual restart."""
        name = self._get_node_or_raise(node_name).name
        with self.directory.lock(name):
            node = self._get_node_or_raise(name)
            flags = RestartFlagSet.from_node(node)
            changed = False
            for service in services:
                changed = flags.flag(cookbook, service, reason) or changed
            if changed:
                flags.apply_to(node)
                self._save(node)
                logger.info(
                    f"restart_management: restart of {', '.join(services)} withheld on {node_name}"
                )
            return changed

    def get_policy(self) -> Dict[str, bool]:
        """Return the disallow-restart flag per cookbook."""
        namespace, key = POLICY_CONFIG
        try:
            data = self.policy_store.get_or_create(namespace, key).raw_data()
        except Exception as e:
            raise InternalError(f"Failed to read restart policy: {e}") from e
        data.pop("id", None)
        return data

    def set_policy(self, cookbook: str, disallow: bool) -> None:
        """
        Set the disallow-restart flag for one cookbook.

        Writers in this process are serialized on the store's item lock;
        writers elsewhere are detected by the revision check and the update
        is reapplied to a fresh read.
        """
        self._require_managed(cookbook)
        namespace, key = POLICY_CONFIG
        with self.policy_store.lock(namespace, key):
            for attempt in range(1, POLICY_WRITE_ATTEMPTS + 1):
                try:
                    item = self.policy_store.get_or_create(namespace, key)
                    item.update({cookbook: bool(disallow)})
                    item.save()
                    break
                except ConflictError:
                    logger.warning(
                        f"restart_management: policy changed concurrently, "
                        f"attempt {attempt}/{POLICY_WRITE_ATTEMPTS}"
                    )
                except Exception as e:
                    raise InternalError(f"Failed to save restart policy: {e}") from e
            else:
                raise InternalError(
                    "Failed to save restart policy: it kept changing concurrently",
                    details={"cookbook": cookbook},
                )
        logger.info(f"restart_management: disallow_restart={bool(disallow)} for {cookbook}")

    @staticmethod
    def restart_disallowed(policy: Dict[str, bool], cookbook: str) -> bool:
        return bool(policy.get(cookbook, False))
