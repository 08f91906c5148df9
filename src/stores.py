"""
Node Directory and Policy Store access.

Both stores are owned by the management API. The in-memory variants back
tests and local dry runs; the REST variants talk to ManagementApiClient.
"""

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Tuple

from clients import ConflictError, ManagementApiClient
from models import Node

logger = logging.getLogger(__name__)

MATCH_ALL = "*"


class NodeDirectory:
    """Base Node Directory: lookup, save and per-node write locking."""

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        """Serialize read-modify-write cycles on one node's document."""
        with self._locks_guard:
            node_lock = self._locks.setdefault(name, threading.Lock())
        with node_lock:
            yield

    def find(self, query: str = MATCH_ALL) -> List[Node]:
        raise NotImplementedError

    def find_by_name_or_alias(self, name: str) -> Optional[Node]:
        raise NotImplementedError

    def save(self, node: Node) -> None:
        raise NotImplementedError


def _matches(node: Node, query: str) -> bool:
    """
    Evaluate a directory query against a node.

    Supported forms: "*" (every node) and "<dotted.path>:*" (nodes with a
    non-empty value at that attribute path).
    """
    if query == MATCH_ALL:
        return True
    path, _, value = query.partition(":")
    if value != "*":
        raise ValueError(f"Unsupported directory query: {query}")
    return bool(node.get_attribute(path))


class InMemoryNodeDirectory(NodeDirectory):
    """Node Directory held in process memory with revision checking."""

    def __init__(self, nodes: Optional[List[Node]] = None):
        super().__init__()
        self._nodes: Dict[str, Node] = {}
        self._guard = threading.Lock()
        for node in nodes or []:
            self.add(node)

    def add(self, node: Node) -> None:
        stored = copy.deepcopy(node)
        stored.revision = uuid.uuid4().hex
        with self._guard:
            self._nodes[node.name] = stored

    def find(self, query: str = MATCH_ALL) -> List[Node]:
        with self._guard:
            return [
                copy.deepcopy(node)
                for node in self._nodes.values()
                if _matches(node, query)
            ]

    def find_by_name_or_alias(self, name: str) -> Optional[Node]:
        with self._guard:
            node = self._nodes.get(name)
            if node is None:
                node = next((n for n in self._nodes.values() if n.alias == name), None)
            return copy.deepcopy(node) if node else None

    def save(self, node: Node) -> None:
        with self._guard:
            current = self._nodes.get(node.name)
            if current is None:
                raise RuntimeError(f"Node {node.name} does not exist")
            if node.revision != current.revision:
                raise ConflictError(f"Node {node.name} was modified concurrently")
            stored = copy.deepcopy(node)
            stored.revision = uuid.uuid4().hex
            self._nodes[node.name] = stored
            node.revision = stored.revision


class RestNodeDirectory(NodeDirectory):
    """Node Directory backed by the management API."""

    def __init__(self, client: ManagementApiClient):
        super().__init__()
        self.client = client

    def find(self, query: str = MATCH_ALL) -> List[Node]:
        return [Node.from_document(doc) for doc in self.client.list_nodes(query)]

    def find_by_name_or_alias(self, name: str) -> Optional[Node]:
        doc = self.client.get_node(name)
        return Node.from_document(doc) if doc else None

    def save(self, node: Node) -> None:
        node.revision = self.client.save_node(
            node.name, node.to_document(), node.revision
        )


class PolicyDocument:
    """A configuration item supporting partial update and revision-checked save."""

    def __init__(
        self,
        store: "PolicyStore",
        namespace: str,
        key: str,
        data: Dict,
        revision: Optional[str] = None,
    ):
        self._store = store
        self.namespace = namespace
        self.key = key
        self.revision = revision
        self._data = data
        self._data.setdefault("id", key)

    def raw_data(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)

    def update(self, values: Dict[str, Any]) -> None:
        self._data.update(values)

    def save(self) -> None:
        """
        Write the document back.

        Raises:
            ConflictError: If the item changed since it was read
        """
        self.revision = self._store.write(
            self.namespace, self.key, copy.deepcopy(self._data), revision=self.revision
        )


class PolicyStore:
    """
    Base Policy Store keyed by (namespace, key).

    Writes given a revision only succeed if the stored item still has that
    revision; ``create_only`` writes only succeed if the item is absent.
    Both raise ConflictError otherwise.
    """

    def __init__(self):
        self._locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock(self, namespace: str, key: str) -> Iterator[None]:
        """Serialize read-modify-write cycles on one item."""
        with self._locks_guard:
            item_lock = self._locks.setdefault((namespace, key), threading.Lock())
        with item_lock:
            yield

    def get_or_create(self, namespace: str, key: str) -> PolicyDocument:
        data, revision = self.read_item(namespace, key)
        if data is None:
            logger.info(f"Creating configuration item {namespace}/{key}")
            data = {"id": key}
            try:
                revision = self.write(namespace, key, data, create_only=True)
            except ConflictError:
                # Created by someone else in the meantime
                data, revision = self.read_item(namespace, key)
                if data is None:
                    raise
        return PolicyDocument(self, namespace, key, data, revision)

    def read(self, namespace: str, key: str) -> Optional[Dict]:
        return self.read_item(namespace, key)[0]

    def read_item(self, namespace: str, key: str) -> Tuple[Optional[Dict], Optional[str]]:
        """Return the item and its revision, or (None, None) if absent."""
        raise NotImplementedError

    def write(
        self,
        namespace: str,
        key: str,
        data: Dict,
        revision: Optional[str] = None,
        create_only: bool = False,
    ) -> Optional[str]:
        """Store the item; returns its new revision."""
        raise NotImplementedError


class InMemoryPolicyStore(PolicyStore):
    def __init__(self, items: Optional[Dict[str, Dict[str, Dict]]] = None):
        super().__init__()
        self._items: Dict[str, Dict[str, Dict]] = copy.deepcopy(items or {})
        self._revisions: Dict[Tuple[str, str], str] = {
            (namespace, key): uuid.uuid4().hex
            for namespace, entries in self._items.items()
            for key in entries
        }
        self._guard = threading.Lock()

    def read_item(self, namespace: str, key: str) -> Tuple[Optional[Dict], Optional[str]]:
        with self._guard:
            data = self._items.get(namespace, {}).get(key)
            if data is None:
                return None, None
            return copy.deepcopy(data), self._revisions[(namespace, key)]

    def write(
        self,
        namespace: str,
        key: str,
        data: Dict,
        revision: Optional[str] = None,
        create_only: bool = False,
    ) -> Optional[str]:
        with self._guard:
            exists = key in self._items.get(namespace, {})
            if create_only and exists:
                raise ConflictError(f"Configuration item {namespace}/{key} already exists")
            if revision is not None and (
                not exists or self._revisions[(namespace, key)] != revision
            ):
                raise ConflictError(
                    f"Configuration item {namespace}/{key} was modified concurrently"
                )
            self._items.setdefault(namespace, {})[key] = copy.deepcopy(data)
            new_revision = uuid.uuid4().hex
            self._revisions[(namespace, key)] = new_revision
            return new_revision


class RestPolicyStore(PolicyStore):
    def __init__(self, client: ManagementApiClient):
        super().__init__()
        self.client = client

    def read_item(self, namespace: str, key: str) -> Tuple[Optional[Dict], Optional[str]]:
        return self.client.get_config_item(namespace, key)

    def write(
        self,
        namespace: str,
        key: str,
        data: Dict,
        revision: Optional[str] = None,
        create_only: bool = False,
    ) -> Optional[str]:
        return self.client.put_config_item(
            namespace, key, data, revision=revision, create_only=create_only
        )
