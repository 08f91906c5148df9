"""
Unit tests for configuration.
"""

import unittest
from argparse import Namespace
from config import ManagerConfig


class TestManagerConfig(unittest.TestCase):
    """Test ManagerConfig data model."""

    def test_config_defaults(self):
        """Test default configuration values."""
        config = ManagerConfig(api_url="https://admin:3000/api")
        self.assertEqual(config.api_url, "https://admin:3000/api")
        self.assertEqual(config.state_store, "file")
        self.assertEqual(config.state_file, "/var/lib/cluster-upgrade/state.json")
        self.assertEqual(config.target_platform, "suse-12.3")
        self.assertEqual(config.admin_architecture, "x86_64")
        self.assertEqual(config.core_role, "managed-node")
        self.assertEqual(config.ssh_user, "root")
        self.assertIsNone(config.ssh_key)
        self.assertEqual(config.ssh_port, 22)
        self.assertEqual(config.max_parallel, 10)
        self.assertTrue(config.restart_management_enabled)
        self.assertFalse(config.verbose)

    def test_unknown_platform_rejected(self):
        """Test the catalog is validated at construction."""
        with self.assertRaises(ValueError):
            ManagerConfig(api_url="https://admin", target_platform="suse-15")

    def test_max_parallel_must_be_positive(self):
        with self.assertRaises(ValueError):
            ManagerConfig(api_url="https://admin", max_parallel=0)

    def test_config_from_args(self):
        """Test creating config from command-line arguments."""
        args = Namespace(
            api_url="https://admin:3000/api",
            state_store="management-api",
            state_file="/tmp/state.json",
            target_platform="suse-12.2",
            admin_architecture="aarch64",
            core_role="cloud-node",
            repo_root="/srv/repos",
            ssh_user="admin",
            ssh_key="/root/.ssh/id_ed25519",
            ssh_port=2222,
            max_parallel=4,
            disable_restart_management=True,
            verbose=True,
        )
        config = ManagerConfig.from_args(args)

        self.assertEqual(config.state_store, "management-api")
        self.assertEqual(config.state_file, "/tmp/state.json")
        self.assertEqual(config.target_platform, "suse-12.2")
        self.assertEqual(config.admin_architecture, "aarch64")
        self.assertEqual(config.core_role, "cloud-node")
        self.assertEqual(config.repo_root, "/srv/repos")
        self.assertEqual(config.ssh_user, "admin")
        self.assertEqual(config.ssh_key, "/root/.ssh/id_ed25519")
        self.assertEqual(config.ssh_port, 2222)
        self.assertEqual(config.max_parallel, 4)
        self.assertFalse(config.restart_management_enabled)
        self.assertTrue(config.verbose)

    def test_config_from_env(self):
        """Test creating config from environment variables."""
        config = ManagerConfig.from_env(
            {
                "MANAGEMENT_API_URL": "https://admin:3000/api",
                "MAX_PARALLEL": "3",
                "SSH_PORT": "2200",
                "RESTART_MANAGEMENT_ENABLED": "false",
                "VERBOSE": "yes",
            }
        )
        self.assertEqual(config.api_url, "https://admin:3000/api")
        self.assertEqual(config.max_parallel, 3)
        self.assertEqual(config.ssh_port, 2200)
        self.assertFalse(config.restart_management_enabled)
        self.assertTrue(config.verbose)
        self.assertEqual(config.target_platform, "suse-12.3")
        self.assertEqual(config.state_store, "management-api")

    def test_config_from_env_state_store_override(self):
        config = ManagerConfig.from_env(
            {"MANAGEMENT_API_URL": "https://admin", "STATE_STORE": "file"}
        )
        self.assertEqual(config.state_store, "file")

    def test_unknown_state_store_rejected(self):
        with self.assertRaises(ValueError):
            ManagerConfig(api_url="https://admin", state_store="etcd")

    def test_config_from_env_requires_api_url(self):
        with self.assertRaises(ValueError):
            ManagerConfig.from_env({})

    def test_config_from_env_rejects_bad_boolean(self):
        with self.assertRaises(ValueError):
            ManagerConfig.from_env(
                {"MANAGEMENT_API_URL": "https://admin", "VERBOSE": "maybe"}
            )


if __name__ == "__main__":
    unittest.main()
