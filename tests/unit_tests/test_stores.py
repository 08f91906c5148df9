"""
Unit tests for the Node Directory and Policy Store.
"""

import threading
import unittest
from unittest.mock import MagicMock, patch
from clients import ConflictError
from models import Node
from stores import (
    InMemoryNodeDirectory,
    InMemoryPolicyStore,
    RestNodeDirectory,
    RestPolicyStore,
)


class TestInMemoryNodeDirectory(unittest.TestCase):
    """Test the in-memory Node Directory."""

    def setUp(self):
        self.directory = InMemoryNodeDirectory(
            [
                Node(name="n1", alias="controller1"),
                Node(
                    name="n2",
                    attributes={"node_state": {"requires_restart": {"nova": {"api": True}}}},
                ),
                Node(name="n3", attributes={"node_state": {"requires_restart": {}}}),
            ]
        )

    def test_find_all(self):
        self.assertEqual(sorted(n.name for n in self.directory.find()), ["n1", "n2", "n3"])

    def test_find_by_attribute_query(self):
        """Test only nodes with a non-empty attribute match."""
        nodes = self.directory.find("node_state.requires_restart:*")
        self.assertEqual([n.name for n in nodes], ["n2"])

    def test_unsupported_query(self):
        with self.assertRaises(ValueError):
            self.directory.find("roles:nova")

    def test_find_by_name_or_alias(self):
        self.assertEqual(self.directory.find_by_name_or_alias("n1").name, "n1")
        self.assertEqual(self.directory.find_by_name_or_alias("controller1").name, "n1")
        self.assertIsNone(self.directory.find_by_name_or_alias("n9"))

    def test_returned_nodes_are_copies(self):
        """Test mutating a returned node does not change the directory."""
        node = self.directory.find_by_name_or_alias("n1")
        node.set_attribute("x", 1)
        self.assertIsNone(self.directory.find_by_name_or_alias("n1").get_attribute("x"))

    def test_save_updates_revision(self):
        node = self.directory.find_by_name_or_alias("n1")
        old_revision = node.revision
        node.set_attribute("x", 1)
        self.directory.save(node)
        self.assertNotEqual(node.revision, old_revision)
        self.assertEqual(self.directory.find_by_name_or_alias("n1").get_attribute("x"), 1)

    def test_save_stale_revision_conflicts(self):
        """Test a save based on an outdated read is rejected."""
        first = self.directory.find_by_name_or_alias("n1")
        second = self.directory.find_by_name_or_alias("n1")
        self.directory.save(first)
        with self.assertRaises(ConflictError):
            self.directory.save(second)

    def test_lock_serializes_writers(self):
        """Test the per-node lock excludes a second holder."""
        acquired = []
        with self.directory.lock("n1"):
            worker = threading.Thread(
                target=lambda: acquired.append(self._try_lock("n1"))
            )
            worker.start()
            worker.join()
        self.assertEqual(acquired, [False])

    def _try_lock(self, name):
        node_lock = self.directory._locks[name]
        got = node_lock.acquire(blocking=False)
        if got:
            node_lock.release()
        return got


class TestRestNodeDirectory(unittest.TestCase):
    """Test the REST-backed Node Directory."""

    def test_find_and_save(self):
        client = MagicMock()
        client.list_nodes.return_value = [{"name": "n1", "revision": "r1"}]
        client.save_node.return_value = "r2"
        directory = RestNodeDirectory(client)

        nodes = directory.find("*")
        self.assertEqual(nodes[0].name, "n1")

        document = nodes[0].to_document()
        directory.save(nodes[0])
        client.save_node.assert_called_once_with("n1", document, "r1")
        self.assertEqual(nodes[0].revision, "r2")

    def test_find_by_name_missing(self):
        client = MagicMock()
        client.get_node.return_value = None
        self.assertIsNone(RestNodeDirectory(client).find_by_name_or_alias("n9"))


class TestPolicyStore(unittest.TestCase):
    """Test Policy Store documents."""

    def test_get_or_create_creates_missing_item(self):
        """Test a missing item is created with its id."""
        store = InMemoryPolicyStore()
        item = store.get_or_create("upgrade-config", "disallow_restart")
        self.assertEqual(item.raw_data(), {"id": "disallow_restart"})
        self.assertEqual(
            store.read("upgrade-config", "disallow_restart"), {"id": "disallow_restart"}
        )
        self.assertIsNotNone(item.revision)

    def test_update_and_save(self):
        store = InMemoryPolicyStore(
            {"upgrade-config": {"disallow_restart": {"id": "disallow_restart", "nova": True}}}
        )
        item = store.get_or_create("upgrade-config", "disallow_restart")
        self.assertTrue(item.raw_data()["nova"])
        item.update({"glance": True})
        self.assertIsNone(store.read("upgrade-config", "disallow_restart").get("glance"))
        item.save()
        self.assertTrue(store.read("upgrade-config", "disallow_restart")["glance"])

    def test_save_stale_document_conflicts(self):
        """Test a save based on an outdated read is rejected."""
        store = InMemoryPolicyStore()
        first = store.get_or_create("upgrade-config", "disallow_restart")
        second = store.get_or_create("upgrade-config", "disallow_restart")
        first.update({"nova": True})
        first.save()

        second.update({"glance": True})
        with self.assertRaises(ConflictError):
            second.save()
        self.assertEqual(
            store.read("upgrade-config", "disallow_restart"),
            {"id": "disallow_restart", "nova": True},
        )

    def test_create_only_write(self):
        store = InMemoryPolicyStore()
        store.write("upgrade-config", "upgrade_state", {"phase": "idle"}, create_only=True)
        with self.assertRaises(ConflictError):
            store.write("upgrade-config", "upgrade_state", {}, create_only=True)

    def test_get_or_create_after_concurrent_create(self):
        """Test losing the create race returns the item the winner created."""
        store = InMemoryPolicyStore()
        winner = {"id": "disallow_restart", "nova": True}
        real_read_item = store.read_item

        def read_item(namespace, key):
            data, revision = real_read_item(namespace, key)
            if data is None:
                store.write(namespace, key, winner)
            return data, revision

        with patch.object(store, "read_item", side_effect=read_item):
            item = store.get_or_create("upgrade-config", "disallow_restart")

        self.assertEqual(item.raw_data(), winner)

    def test_lock_serializes_writers(self):
        store = InMemoryPolicyStore()
        acquired = []
        with store.lock("upgrade-config", "disallow_restart"):
            item_lock = store._locks[("upgrade-config", "disallow_restart")]
            worker = threading.Thread(
                target=lambda: acquired.append(item_lock.acquire(blocking=False))
            )
            worker.start()
            worker.join()
        self.assertEqual(acquired, [False])

    def test_rest_policy_store(self):
        """Test saves carry the revision the item was read with."""
        client = MagicMock()
        client.get_config_item.return_value = ({"id": "disallow_restart"}, "etag-1")
        client.put_config_item.return_value = "etag-2"
        store = RestPolicyStore(client)
        item = store.get_or_create("upgrade-config", "disallow_restart")
        item.update({"nova": False})
        item.save()
        client.put_config_item.assert_called_once_with(
            "upgrade-config",
            "disallow_restart",
            {"id": "disallow_restart", "nova": False},
            revision="etag-1",
            create_only=False,
        )
        self.assertEqual(item.revision, "etag-2")

    def test_rest_policy_store_creates_missing_item(self):
        client = MagicMock()
        client.get_config_item.return_value = (None, None)
        client.put_config_item.return_value = "etag-1"
        item = RestPolicyStore(client).get_or_create("upgrade-config", "disallow_restart")
        client.put_config_item.assert_called_once_with(
            "upgrade-config",
            "disallow_restart",
            {"id": "disallow_restart"},
            revision=None,
            create_only=True,
        )
        self.assertEqual(item.revision, "etag-1")


if __name__ == "__main__":
    unittest.main()
