"""Console entry point for the Cluster Upgrade Manager CLI."""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List

from api import build_operator_api
from config import STATE_STORES, ManagerConfig
from errors import ResultCode
from log_utils import setup_logging

EXIT_CODES = {
    ResultCode.SUCCESS: 0,
    ResultCode.INTERNAL_ERROR: 1,
    ResultCode.NOT_FOUND: 3,
    ResultCode.PRECONDITION_FAILED: 4,
    ResultCode.ALREADY_IN_PROGRESS: 5,
    ResultCode.REMOTE_EXECUTION_FAILED: 6,
}

# Subcommands without parameters
SIMPLE_COMMANDS = {
    "get-status": "Show the upgrade phase and per-node progress",
    "run-prechecks": "Run the upgrade prechecks",
    "prepare": "Run prechecks and mark all nodes as upgrading",
    "stop-services": "Stop managed services on all nodes",
    "upgrade-nodes": "Run the OS upgrade on all nodes",
    "finish": "Clear the upgrade markers and finish the upgrade",
    "cancel": "Cancel the upgrade and return to idle",
    "check-admin-repos": "Check repositories for the admin server",
    "check-node-repos": "Check repositories for the managed nodes",
    "list-restarts": "List services flagged for restart",
    "get-restart-policy": "Show cookbooks whose restarts are disallowed",
}


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    defaults = ManagerConfig.__dataclass_fields__

    parser = argparse.ArgumentParser(
        description="Cluster Upgrade Manager CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Check what would block an upgrade\n"
            "  cluster-upgrade --api-url https://admin:3000/api run-prechecks\n\n"
            "  # Walk the upgrade phases\n"
            "  cluster-upgrade --api-url https://admin:3000/api prepare\n"
            "  cluster-upgrade --api-url https://admin:3000/api stop-services\n"
            "  cluster-upgrade --api-url https://admin:3000/api upgrade-nodes\n\n"
            "  # Clear pending restarts for one cookbook on a node\n"
            "  cluster-upgrade --api-url https://admin:3000/api clear-restarts "
            "--node n1 --cookbook nova"
        ),
    )

    required = parser.add_argument_group("required arguments")
    required.add_argument(
        "--api-url",
        required=True,
        metavar="URL",
        help="Base URL of the cluster management API",
    )

    cluster = parser.add_argument_group("cluster")
    cluster.add_argument(
        "--state-store",
        choices=STATE_STORES,
        default=defaults["state_store"].default,
        help=(
            "Keep the upgrade state in a local file or in the management API "
            "(default: %(default)s)"
        ),
    )
    cluster.add_argument(
        "--state-file",
        default=defaults["state_file"].default,
        metavar="PATH",
        help="Where the upgrade state record is persisted",
    )
    cluster.add_argument(
        "--target-platform",
        default=defaults["target_platform"].default,
        help="Platform the cluster is upgraded to (default: %(default)s)",
    )
    cluster.add_argument(
        "--admin-architecture",
        default=defaults["admin_architecture"].default,
        help="Architecture of the admin server (default: %(default)s)",
    )
    cluster.add_argument(
        "--core-role",
        default=defaults["core_role"].default,
        help="Role carried by every managed node (default: %(default)s)",
    )
    cluster.add_argument(
        "--repo-root",
        default=defaults["repo_root"].default,
        metavar="PATH",
        help="Root directory of the locally provided repositories",
    )
    cluster.add_argument(
        "--disable-restart-management",
        action="store_true",
        help="Reject restart listing, clearing and policy commands",
    )

    remote = parser.add_argument_group("remote execution")
    remote.add_argument("--ssh-user", default=defaults["ssh_user"].default)
    remote.add_argument("--ssh-key", metavar="PATH")
    remote.add_argument("--ssh-port", type=int, default=defaults["ssh_port"].default)
    remote.add_argument(
        "--max-parallel",
        type=int,
        default=defaults["max_parallel"].default,
        metavar="N",
        help="Maximum number of nodes handled concurrently (default: %(default)s)",
    )

    logging_group = parser.add_argument_group("logging and output")
    logging_group.add_argument("--verbose", action="store_true")
    logging_group.add_argument(
        "--log-file",
        default="cluster-upgrade.log",
        metavar="PATH",
        help="Log file in addition to stderr (default: %(default)s)",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True
    for name, help_text in SIMPLE_COMMANDS.items():
        subparsers.add_parser(name, help=help_text)

    clear = subparsers.add_parser(
        "clear-restarts", help="Clear restart flags on a node"
    )
    clear.add_argument("--node", required=True, help="Node name or alias")
    clear.add_argument("--cookbook", help="Only clear flags of this cookbook")
    clear.add_argument("--service", help="Only clear this service of the cookbook")

    policy = subparsers.add_parser(
        "set-restart-policy", help="Allow or disallow restarts for a cookbook"
    )
    policy.add_argument("--cookbook", required=True)
    policy.add_argument(
        "--disallow",
        required=True,
        choices=["true", "false"],
        help="Whether restarts of the cookbook's services are disallowed",
    )
    return parser


def command_params(args: argparse.Namespace) -> Dict[str, Any]:
    """Extract the operator command parameters from parsed arguments."""
    if args.command == "clear-restarts":
        return {"node": args.node, "cookbook": args.cookbook, "service": args.service}
    if args.command == "set-restart-policy":
        return {"cookbook": args.cookbook, "disallow": args.disallow}
    return {}


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file=args.log_file)

    try:
        config = ManagerConfig.from_args(args)
    except ValueError as e:
        parser.error(str(e))
    api = build_operator_api(config)

    response = api.execute(args.command, command_params(args))
    print(json.dumps(response.to_dict(), indent=2, sort_keys=True), file=sys.stdout)
    return EXIT_CODES[response.code]
