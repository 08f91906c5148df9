"""
Cluster Upgrade Manager.
"""

from api import CommandResponse, OperatorApi, build_operator_api
from clients import ManagementApiClient
from config import ManagerConfig
from errors import ResultCode, UpgradeError
from log_utils import setup_logging
from models import Node, UpgradePhase, UpgradeState
from orchestrator import UpgradeOrchestrator
from restarts import RestartManager

__all__ = [
    "CommandResponse",
    "OperatorApi",
    "build_operator_api",
    "ManagementApiClient",
    "ManagerConfig",
    "ResultCode",
    "UpgradeError",
    "setup_logging",
    "Node",
    "UpgradePhase",
    "UpgradeState",
    "UpgradeOrchestrator",
    "RestartManager",
]
