"""
Google Cloud Function entry point for the Cluster Upgrade Manager.

This module provides HTTP endpoints for:
- /upgrade: Upgrade status and phase transitions
- /upgrade/adminrepocheck, /upgrade/noderepocheck: Repository checks
- /restart_management: Pending restarts and the restart policy
- /health: Health check endpoint

All configuration is done via environment variables. The upgrade state is
kept in the management API (STATE_STORE=management-api) so that every
function instance sees the same phase and transitions stay serialized.
"""

import logging
import os
import sys
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Dict, Optional, Tuple

import functions_framework
from flask import Request

# Add src to path for local imports
sys.path.insert(
    0, os.path.join(os.path.dirname(os.path.abspath(__file__)), "..", "src")
)

from api import OperatorApi, build_operator_api  # noqa: E402
from config import ManagerConfig  # noqa: E402
from errors import ResultCode  # noqa: E402

# Configure logging for Cloud Functions (JSON structured logging)
logging.basicConfig(
    level=logging.INFO,
    format='{"severity": "%(levelname)s", "message": "%(message)s", "timestamp": "%(asctime)s"}',
)
logger = logging.getLogger(__name__)

HTTP_STATUS = {
    ResultCode.SUCCESS: 200,
    ResultCode.NOT_FOUND: 404,
    ResultCode.PRECONDITION_FAILED: 422,
    ResultCode.ALREADY_IN_PROGRESS: 409,
    ResultCode.REMOTE_EXECUTION_FAILED: 422,
    ResultCode.INTERNAL_ERROR: 500,
}

# (method, path) -> operator command
ROUTES = {
    ("GET", "/upgrade"): "get-status",
    ("GET", "/upgrade/prechecks"): "run-prechecks",
    ("POST", "/upgrade/prepare"): "prepare",
    ("POST", "/upgrade/services"): "stop-services",
    ("POST", "/upgrade/nodes"): "upgrade-nodes",
    ("POST", "/upgrade/finish"): "finish",
    ("POST", "/upgrade/cancel"): "cancel",
    ("GET", "/upgrade/adminrepocheck"): "check-admin-repos",
    ("GET", "/upgrade/noderepocheck"): "check-node-repos",
    ("GET", "/restart_management/restarts"): "list-restarts",
    ("POST", "/restart_management/restarts"): "clear-restarts",
    ("GET", "/restart_management/configuration"): "get-restart-policy",
    ("POST", "/restart_management/configuration"): "set-restart-policy",
}

_api: Optional[OperatorApi] = None


# =============================================================================
# Security and Validation
# =============================================================================


def validate_request(func: Callable) -> Callable:
    """Reject POST requests that do not carry a JSON body."""

    @wraps(func)
    def wrapper(request: Request, *args, **kwargs) -> Tuple[Dict[str, Any], int]:
        if request.method == "POST":
            content_type = request.headers.get("Content-Type", "")
            if "application/json" not in content_type:
                return create_response(
                    success=False,
                    error="Invalid content type",
                    message="Content-Type must be application/json",
                    status_code=415,
                )

        return func(request, *args, **kwargs)

    return wrapper


def sanitize_input(value: Any, max_length: int = 256) -> Any:
    """Sanitize string input to prevent injection attacks."""
    if not isinstance(value, str):
        return value
    # Remove null bytes and control characters
    sanitized = "".join(c for c in value if c.isprintable())
    return sanitized[:max_length]


def get_operator_api() -> OperatorApi:
    """Build the operator API once per function instance."""
    global _api
    if _api is None:
        _api = build_operator_api(ManagerConfig.from_env())
    return _api


# =============================================================================
# Response Helpers
# =============================================================================


def create_response(
    success: bool,
    data: Optional[Any] = None,
    error: Optional[Any] = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> Tuple[Dict[str, Any], int]:
    """Create a standardized API response."""
    response = {
        "success": success,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if data is not None:
        response["data"] = data
    if error:
        response["error"] = error
    if message:
        response["message"] = message

    return response, status_code


# =============================================================================
# HTTP Endpoint Handlers
# =============================================================================


@functions_framework.http
def main(request: Request) -> Tuple[Dict[str, Any], int]:
    """
    Main entry point for Cloud Function.

    Routes requests based on method and path to an operator command;
    see ROUTES. GET /health and GET / are served without configuration.
    """
    path = request.path.rstrip("/")

    if path == "":
        return handle_info(request)
    if path == "/health":
        return handle_health(request)

    command = ROUTES.get((request.method, path))
    if command is None:
        if any(route_path == path for _, route_path in ROUTES):
            return create_response(
                success=False,
                error="Method Not Allowed",
                message=f"{request.method} is not supported for {path}",
                status_code=405,
            )
        return create_response(
            success=False,
            error="Not Found",
            message=f"Unknown endpoint: {path}",
            status_code=404,
        )

    try:
        return handle_command(request, command)
    except ValueError as e:
        logger.error(f"Validation error: {e}")
        return create_response(
            success=False,
            error="Validation Error",
            message=str(e),
            status_code=400,
        )
    except Exception as e:
        logger.exception(f"Internal error: {e}")
        return create_response(
            success=False,
            error="Internal Server Error",
            message="An unexpected error occurred. Check Cloud Function logs for details.",
            status_code=500,
        )


@validate_request
def handle_command(request: Request, command: str) -> Tuple[Dict[str, Any], int]:
    """Run the operator command bound to the request's route."""
    params = {}
    if request.method == "POST":
        body = request.get_json(silent=True) or {}
        if not isinstance(body, dict):
            raise ValueError("Request body must be a JSON object")
        params = {key: sanitize_input(value) for key, value in body.items()}

    logger.info(f"Running {command}")
    response = get_operator_api().execute(command, params)
    return create_response(
        success=response.ok,
        data=response.data,
        error=response.error,
        status_code=HTTP_STATUS[response.code],
    )


def handle_info(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle API info request."""
    return create_response(
        success=True,
        data={
            "service": "Cluster Upgrade Manager",
            "version": os.environ.get("APP_VERSION", "1.0.0"),
            "endpoints": {
                f"{method} {path}": command for (method, path), command in ROUTES.items()
            },
        },
    )


def handle_health(request: Request) -> Tuple[Dict[str, Any], int]:
    """Handle health check request."""
    # Basic health check - verify we can import dependencies
    try:
        import google.auth  # noqa: F401

        return create_response(
            success=True,
            data={"status": "healthy"},
        )
    except ImportError as e:
        return create_response(
            success=False,
            error="Unhealthy",
            message=str(e),
            status_code=503,
        )
