"""
Configuration management for the Cluster Upgrade Manager.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from features import validate_catalog

# Backends for the persisted upgrade state
STATE_STORES = ("file", "management-api")


def _env_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value == "":
        return default
    value = value.lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    raise ValueError(f"Invalid boolean value: {value}")


@dataclass
class ManagerConfig:
    """Configuration for upgrade and restart-management operations."""

    api_url: str
    state_store: str = "file"
    state_file: Optional[str] = "/var/lib/cluster-upgrade/state.json"
    target_platform: str = "suse-12.3"
    admin_architecture: str = "x86_64"
    core_role: str = "managed-node"
    repo_root: str = "/srv/tftpboot"
    upgrade_command: str = (
        "zypper --non-interactive dist-upgrade --auto-agree-with-licenses"
    )
    ssh_user: str = "root"
    ssh_key: Optional[str] = None
    ssh_port: int = 22
    max_parallel: int = 10
    restart_management_enabled: bool = True
    verbose: bool = False

    def __post_init__(self):
        validate_catalog(self.target_platform)
        if self.state_store not in STATE_STORES:
            raise ValueError(
                f"Unknown state store '{self.state_store}' (supported: {', '.join(STATE_STORES)})"
            )
        if self.max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")

    @classmethod
    def from_args(cls, args) -> "ManagerConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            ManagerConfig instance
        """
        return cls(
            api_url=args.api_url,
            state_store=args.state_store,
            state_file=args.state_file,
            target_platform=args.target_platform,
            admin_architecture=args.admin_architecture,
            core_role=args.core_role,
            repo_root=args.repo_root,
            ssh_user=args.ssh_user,
            ssh_key=args.ssh_key,
            ssh_port=args.ssh_port,
            max_parallel=args.max_parallel,
            restart_management_enabled=not args.disable_restart_management,
            verbose=args.verbose,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] = os.environ) -> "ManagerConfig":
        """
        Create configuration from environment variables.

        Raises:
            ValueError: If MANAGEMENT_API_URL is missing or a value is invalid
        """
        api_url = environ.get("MANAGEMENT_API_URL", "")
        if not api_url:
            raise ValueError("MANAGEMENT_API_URL is required")

        defaults = cls.__dataclass_fields__
        return cls(
            api_url=api_url,
            # Function instances share no disk, so the state lives in the API
            state_store=environ.get("STATE_STORE", "management-api"),
            state_file=environ.get("STATE_FILE", defaults["state_file"].default),
            target_platform=environ.get(
                "TARGET_PLATFORM", defaults["target_platform"].default
            ),
            admin_architecture=environ.get(
                "ADMIN_ARCHITECTURE", defaults["admin_architecture"].default
            ),
            core_role=environ.get("CORE_ROLE", defaults["core_role"].default),
            repo_root=environ.get("REPO_ROOT", defaults["repo_root"].default),
            upgrade_command=environ.get(
                "UPGRADE_COMMAND", defaults["upgrade_command"].default
            ),
            ssh_user=environ.get("SSH_USER", defaults["ssh_user"].default),
            ssh_key=environ.get("SSH_KEY") or None,
            ssh_port=int(environ.get("SSH_PORT", defaults["ssh_port"].default)),
            max_parallel=int(
                environ.get("MAX_PARALLEL", defaults["max_parallel"].default)
            ),
            restart_management_enabled=_env_bool(
                environ.get("RESTART_MANAGEMENT_ENABLED"), True
            ),
            verbose=_env_bool(environ.get("VERBOSE"), False),
        )
