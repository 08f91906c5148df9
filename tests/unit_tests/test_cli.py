"""
Unit tests for CLI module.
"""

import io
import json
import unittest
from contextlib import redirect_stdout
from unittest.mock import MagicMock, patch
from api import CommandResponse
from cli import build_parser, command_params, main
from errors import ResultCode


class TestCLI(unittest.TestCase):
    """Test CLI argument parsing and entry point."""

    def test_build_parser_creates_parser(self):
        """Test parser is created with expected defaults."""
        parser = build_parser()

        args = parser.parse_args(["--api-url", "https://admin:3000/api", "get-status"])

        self.assertEqual(args.api_url, "https://admin:3000/api")
        self.assertEqual(args.command, "get-status")
        self.assertEqual(args.max_parallel, 10)
        self.assertEqual(args.state_store, "file")
        self.assertEqual(args.target_platform, "suse-12.3")
        self.assertFalse(args.disable_restart_management)

    def test_parser_with_all_options(self):
        """Test parser handles all command-line options."""
        parser = build_parser()

        args = parser.parse_args(
            [
                "--api-url",
                "https://admin:3000/api",
                "--state-store",
                "management-api",
                "--state-file",
                "/tmp/state.json",
                "--target-platform",
                "suse-12.2",
                "--admin-architecture",
                "aarch64",
                "--core-role",
                "cloud-node",
                "--repo-root",
                "/srv/repos",
                "--ssh-user",
                "admin",
                "--ssh-key",
                "/root/.ssh/id_ed25519",
                "--ssh-port",
                "2222",
                "--max-parallel",
                "4",
                "--disable-restart-management",
                "--verbose",
                "--log-file",
                "/tmp/upgrade.log",
                "clear-restarts",
                "--node",
                "n1",
                "--cookbook",
                "nova",
                "--service",
                "openstack-nova-api",
            ]
        )

        self.assertEqual(args.state_store, "management-api")
        self.assertEqual(args.state_file, "/tmp/state.json")
        self.assertEqual(args.target_platform, "suse-12.2")
        self.assertEqual(args.admin_architecture, "aarch64")
        self.assertEqual(args.core_role, "cloud-node")
        self.assertEqual(args.repo_root, "/srv/repos")
        self.assertEqual(args.ssh_user, "admin")
        self.assertEqual(args.ssh_key, "/root/.ssh/id_ed25519")
        self.assertEqual(args.ssh_port, 2222)
        self.assertEqual(args.max_parallel, 4)
        self.assertTrue(args.disable_restart_management)
        self.assertTrue(args.verbose)
        self.assertEqual(args.log_file, "/tmp/upgrade.log")
        self.assertEqual(
            command_params(args),
            {"node": "n1", "cookbook": "nova", "service": "openstack-nova-api"},
        )

    def test_parser_requires_api_url(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["get-status"])

    def test_parser_requires_command(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(["--api-url", "https://admin"])

    def test_clear_restarts_requires_node(self):
        with self.assertRaises(SystemExit):
            build_parser().parse_args(
                ["--api-url", "https://admin", "clear-restarts", "--cookbook", "nova"]
            )

    def test_set_restart_policy_params(self):
        args = build_parser().parse_args(
            [
                "--api-url",
                "https://admin",
                "set-restart-policy",
                "--cookbook",
                "nova",
                "--disallow",
                "true",
            ]
        )
        self.assertEqual(command_params(args), {"cookbook": "nova", "disallow": "true"})

    @patch("cli.build_operator_api")
    @patch("cli.setup_logging")
    def test_main_success(self, mock_setup_logging, mock_build):
        """Test main prints the response and exits 0."""
        api = MagicMock()
        api.execute.return_value = CommandResponse(ResultCode.SUCCESS, data={"phase": "idle"})
        mock_build.return_value = api

        out = io.StringIO()
        with redirect_stdout(out):
            result = main(["--api-url", "https://admin", "--state-file", "/tmp/s.json", "get-status"])

        self.assertEqual(result, 0)
        self.assertEqual(json.loads(out.getvalue()), {"code": "success", "data": {"phase": "idle"}})
        api.execute.assert_called_once_with("get-status", {})
        config = mock_build.call_args[0][0]
        self.assertEqual(config.state_file, "/tmp/s.json")
        mock_setup_logging.assert_called_once_with(verbose=False, log_file="cluster-upgrade.log")

    @patch("cli.build_operator_api")
    @patch("cli.setup_logging")
    def test_main_exit_codes(self, mock_setup_logging, mock_build):
        """Test every result code maps to a distinct exit code."""
        api = MagicMock()
        mock_build.return_value = api
        seen = set()

        for code in ResultCode:
            api.execute.return_value = CommandResponse(
                code, error=None if code == ResultCode.SUCCESS else {"code": code.value}
            )
            with redirect_stdout(io.StringIO()):
                seen.add(main(["--api-url", "https://admin", "prepare"]))

        self.assertEqual(len(seen), len(ResultCode))

    @patch("cli.setup_logging")
    def test_main_rejects_unknown_platform(self, mock_setup_logging):
        with self.assertRaises(SystemExit):
            main(["--api-url", "https://admin", "--target-platform", "suse-15", "get-status"])


if __name__ == "__main__":
    unittest.main()
