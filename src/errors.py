"""
Error kinds and result codes for the Cluster Upgrade Manager.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from models import NodeOutcome


class ResultCode(Enum):
    """Stable result codes reported to operators."""

    SUCCESS = "success"
    PRECONDITION_FAILED = "precondition_failed"
    ALREADY_IN_PROGRESS = "already_in_progress"
    NOT_FOUND = "not_found"
    REMOTE_EXECUTION_FAILED = "remote_execution_failed"
    INTERNAL_ERROR = "internal_error"


class UpgradeError(Exception):
    """Base class for every failure the core reports."""

    code = ResultCode.INTERNAL_ERROR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class NotFound(UpgradeError):
    code = ResultCode.NOT_FOUND


class PreconditionFailed(UpgradeError):
    code = ResultCode.PRECONDITION_FAILED


class AlreadyInProgress(UpgradeError):
    code = ResultCode.ALREADY_IN_PROGRESS


class InternalError(UpgradeError):
    code = ResultCode.INTERNAL_ERROR


class RemoteExecutionFailed(UpgradeError):
    """One or more nodes failed a fan-out operation."""

    code = ResultCode.REMOTE_EXECUTION_FAILED

    def __init__(self, operation: str, failures: List[NodeOutcome]):
        self.operation = operation
        self.failures = failures
        if len(failures) == 1:
            message = failures[0].error_text
        else:
            message = "; ".join(f"{f.node}: {f.error_text}" for f in failures)
        super().__init__(
            message,
            details={
                "operation": operation,
                "failed_nodes": [f.node for f in failures],
                "nodes": {f.node: f.to_dict() for f in failures},
            },
        )
