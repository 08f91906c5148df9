"""
Unit tests for the operator command surface.
"""

import unittest
from unittest.mock import MagicMock, patch
from api import CommandResponse, OperatorApi, build_operator_api, build_state_store
from config import ManagerConfig
from errors import AlreadyInProgress, NotFound, ResultCode
from state import ConfigItemStateStore, UpgradeStateStore
from stores import InMemoryPolicyStore


class TestOperatorApi(unittest.TestCase):
    """Test command dispatch and result codes."""

    def setUp(self):
        self.orchestrator = MagicMock()
        self.restarts = MagicMock()
        self.api = OperatorApi(self.orchestrator, self.restarts)

    def test_success(self):
        self.orchestrator.status.return_value = {"phase": "idle"}
        response = self.api.execute("get-status")
        self.assertTrue(response.ok)
        self.assertEqual(response.to_dict(), {"code": "success", "data": {"phase": "idle"}})

    def test_every_command_maps_to_one_operation(self):
        """Test each parameterless command reaches its core operation."""
        expected = {
            "get-status": self.orchestrator.status,
            "run-prechecks": self.orchestrator.check,
            "prepare": self.orchestrator.prepare,
            "stop-services": self.orchestrator.stop_services,
            "upgrade-nodes": self.orchestrator.upgrade_nodes,
            "finish": self.orchestrator.finish,
            "cancel": self.orchestrator.cancel,
            "check-admin-repos": self.orchestrator.adminrepocheck,
            "check-node-repos": self.orchestrator.noderepocheck,
            "list-restarts": self.restarts.list_restarts,
            "get-restart-policy": self.restarts.get_policy,
        }
        for command, operation in expected.items():
            self.assertEqual(self.api.execute(command).code, ResultCode.SUCCESS, command)
            operation.assert_called_once_with()

    def test_unknown_command(self):
        response = self.api.execute("reboot-cluster")
        self.assertEqual(response.code, ResultCode.NOT_FOUND)

    def test_upgrade_error_code(self):
        self.orchestrator.prepare.side_effect = AlreadyInProgress(
            "stop_services is in progress", details={"active": "stop_services"}
        )
        response = self.api.execute("prepare")
        self.assertEqual(response.code, ResultCode.ALREADY_IN_PROGRESS)
        self.assertEqual(response.error["details"], {"active": "stop_services"})

    def test_unexpected_error_is_internal(self):
        self.orchestrator.status.side_effect = KeyError("phase")
        response = self.api.execute("get-status")
        self.assertEqual(response.code, ResultCode.INTERNAL_ERROR)

    def test_clear_restarts(self):
        self.restarts.clear_restarts.return_value = True
        response = self.api.execute(
            "clear-restarts", {"node": "n1", "cookbook": "nova", "service": None}
        )
        self.assertEqual(response.data, {"node": "n1", "cleared": True})
        self.restarts.clear_restarts.assert_called_once_with(
            "n1", cookbook="nova", service=None
        )

    def test_clear_restarts_requires_node(self):
        """Test a missing node is rejected before reaching the tracker."""
        response = self.api.execute("clear-restarts", {"cookbook": "nova"})
        self.assertEqual(response.code, ResultCode.PRECONDITION_FAILED)
        self.restarts.clear_restarts.assert_not_called()

    def test_unexpected_parameter(self):
        response = self.api.execute("prepare", {"force": True})
        self.assertEqual(response.code, ResultCode.PRECONDITION_FAILED)
        self.orchestrator.prepare.assert_not_called()

    def test_clear_restarts_not_found(self):
        self.restarts.clear_restarts.side_effect = NotFound("Node n9 not found")
        response = self.api.execute("clear-restarts", {"node": "n9"})
        self.assertEqual(response.code, ResultCode.NOT_FOUND)
        self.assertEqual(response.error["message"], "Node n9 not found")

    def test_set_restart_policy_parses_boolean(self):
        response = self.api.execute(
            "set-restart-policy", {"cookbook": "nova", "disallow": "true"}
        )
        self.assertTrue(response.ok)
        self.restarts.set_policy.assert_called_once_with("nova", True)

    def test_set_restart_policy_invalid_boolean(self):
        response = self.api.execute(
            "set-restart-policy", {"cookbook": "nova", "disallow": "sometimes"}
        )
        self.assertEqual(response.code, ResultCode.PRECONDITION_FAILED)
        self.restarts.set_policy.assert_not_called()

    def test_restart_commands_disabled(self):
        """Test restart management commands are refused when disabled."""
        api = OperatorApi(self.orchestrator, self.restarts, restart_management_enabled=False)
        for command, params in (
            ("list-restarts", {}),
            ("clear-restarts", {"node": "n1"}),
            ("get-restart-policy", {}),
            ("set-restart-policy", {"cookbook": "nova", "disallow": True}),
        ):
            self.assertEqual(
                api.execute(command, params).code, ResultCode.PRECONDITION_FAILED, command
            )
        self.restarts.list_restarts.assert_not_called()
        self.assertTrue(api.execute("get-status").ok)

    def test_response_without_data(self):
        self.assertEqual(CommandResponse(ResultCode.SUCCESS).to_dict(), {"code": "success"})


class TestBuildOperatorApi(unittest.TestCase):
    """Test production wiring."""

    @patch("api.ManagementApiClient")
    def test_build_operator_api(self, mock_client_class):
        config = ManagerConfig(
            api_url="https://admin:3000/api",
            state_file=None,
            ssh_user="admin",
            max_parallel=4,
            restart_management_enabled=False,
        )

        api = build_operator_api(config)

        mock_client_class.assert_called_once_with(base_url="https://admin:3000/api")
        self.assertFalse(api.restart_management_enabled)
        dispatcher = api.orchestrator.dispatcher
        self.assertEqual(dispatcher.max_parallel, 4)
        self.assertEqual(dispatcher.transport.user, "admin")
        self.assertIs(api.orchestrator.health, mock_client_class.return_value)
        self.assertNotIsInstance(api.orchestrator.state_store, ConfigItemStateStore)

    def test_build_state_store(self):
        """Test the state backend follows the configuration."""
        policy_store = InMemoryPolicyStore()

        shared = build_state_store(
            ManagerConfig(api_url="https://admin", state_store="management-api"),
            policy_store,
        )
        self.assertIsInstance(shared, ConfigItemStateStore)
        self.assertIs(shared.store, policy_store)

        local = build_state_store(
            ManagerConfig(api_url="https://admin", state_file="/tmp/state.json"),
            policy_store,
        )
        self.assertIs(type(local), UpgradeStateStore)
        self.assertEqual(local.path, "/tmp/state.json")


if __name__ == "__main__":
    unittest.main()
