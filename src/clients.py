"""
REST client for the cluster management API.

The management API fronts the node inventory, the configuration item store
and the admin server's health checks.
"""

import logging
import time
from typing import Any, Dict, List, Optional, Tuple

import google.auth
from google.auth.transport.requests import AuthorizedSession

logger = logging.getLogger(__name__)


class ConflictError(RuntimeError):
    """The document was modified by someone else since it was read."""


class ManagementApiClient:
    """REST client for the cluster management API (v2)."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 2.0,
    ):
        """
        Initialize the management API client.

        Args:
            base_url: Base URL of the management API (e.g. https://admin:3000/api)
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay

        creds, _ = google.auth.default(
            scopes=["https://www.googleapis.com/auth/cloud-platform"]
        )
        self.session = AuthorizedSession(creds)
        self.session.headers.update({"Accept": "application/json"})

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_with_retry(
        self, method: str, url: str, retry: bool = True, **kwargs
    ) -> dict:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Args:
            method: HTTP method (GET, POST, PUT)
            url: Request URL
            retry: Whether transient errors are retried. Conditional writes
                are sent once: a retry after a lost response would carry a
                stale revision.
            **kwargs: Additional request parameters

        Returns:
            Dictionary with 'response' and 'status_code' keys

        Raises:
            RuntimeError: If max retries exceeded
        """
        last_error = None
        attempts = self.max_retries + 1 if retry else 1

        for attempt in range(attempts):
            try:
                if method.upper() == "GET":
                    resp = self.session.get(url, timeout=self.timeout_s, **kwargs)
                elif method.upper() == "POST":
                    resp = self.session.post(url, timeout=self.timeout_s, **kwargs)
                elif method.upper() == "PUT":
                    resp = self.session.put(url, timeout=self.timeout_s, **kwargs)
                else:
                    raise ValueError(f"Unsupported method: {method}")
            except ValueError:
                raise
            except Exception as e:
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{attempts}, waiting {delay:.1f}s..."
                )
                last_error = str(e)
                time.sleep(delay)
                continue

            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                delay = self._calculate_delay(attempt, resp)
                error_info = ""
                try:
                    error_info = resp.json().get("error", "")
                except ValueError:
                    pass
                logger.warning(
                    f"Retryable error {resp.status_code} ({error_info}), attempt {attempt + 1}/{attempts}, waiting {delay:.1f}s..."
                )
                last_error = f"HTTP {resp.status_code}: {error_info or resp.text[:200]}"
                time.sleep(delay)
                continue

            return {"response": resp, "status_code": resp.status_code}

        raise RuntimeError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 120.0)

    def _get_json(self, path: str, **kwargs) -> Any:
        result = self._request_with_retry("GET", self._url(path), **kwargs)
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(f"GET {path} failed ({resp.status_code}): {resp.text}")
        return resp.json()

    def list_nodes(self, query: str = "*") -> List[Dict]:
        """
        List node documents matching a directory query.

        Args:
            query: Directory query, e.g. "*" or "node_state.requires_restart:*"

        Returns:
            List of node documents
        """
        nodes: List[Dict] = []
        page_token: Optional[str] = None

        while True:
            params = {"q": query}
            if page_token:
                params["pageToken"] = page_token

            data = self._get_json("nodes", params=params)
            nodes.extend(data.get("nodes", []))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return nodes

    def get_node(self, name: str) -> Optional[Dict]:
        """
        Get a node document by name or alias.

        Returns:
            Node document, or None if no such node exists
        """
        result = self._request_with_retry("GET", self._url(f"nodes/{name}"))
        resp = result["response"]
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise RuntimeError(f"Get node failed ({resp.status_code}): {resp.text}")
        return resp.json()

    def save_node(self, name: str, document: Dict, revision: Optional[str]) -> str:
        """
        Save a node document guarded by its revision.

        Returns:
            The new revision token

        Raises:
            ConflictError: If the node changed since it was read
            RuntimeError: If the API call fails
        """
        headers = {"If-Match": revision} if revision else {}
        result = self._request_with_retry(
            "PUT",
            self._url(f"nodes/{name}"),
            retry=not headers,
            json=document,
            headers=headers,
        )
        resp = result["response"]
        if resp.status_code in (409, 412):
            raise ConflictError(f"Node {name} was modified concurrently")
        if resp.status_code not in (200, 204):
            raise RuntimeError(f"Save node failed ({resp.status_code}): {resp.text}")
        return resp.headers.get("ETag", revision or "")

    def get_config_item(
        self, namespace: str, key: str
    ) -> Tuple[Optional[Dict], Optional[str]]:
        """
        Get a configuration item and its revision.

        Returns:
            (document, ETag), or (None, None) if the item does not exist yet
        """
        result = self._request_with_retry("GET", self._url(f"config/{namespace}/{key}"))
        resp = result["response"]
        if resp.status_code == 404:
            return None, None
        if resp.status_code != 200:
            raise RuntimeError(
                f"Get config item failed ({resp.status_code}): {resp.text}"
            )
        return resp.json(), resp.headers.get("ETag")

    def put_config_item(
        self,
        namespace: str,
        key: str,
        document: Dict,
        revision: Optional[str] = None,
        create_only: bool = False,
    ) -> Optional[str]:
        """
        Create or replace a configuration item.

        Args:
            revision: Only replace the item if it still has this revision
            create_only: Only create the item if it does not exist

        Returns:
            The new revision token

        Raises:
            ConflictError: If a revision or create-only precondition failed
            RuntimeError: If the API call fails
        """
        headers = {}
        if revision:
            headers["If-Match"] = revision
        if create_only:
            headers["If-None-Match"] = "*"
        result = self._request_with_retry(
            "PUT",
            self._url(f"config/{namespace}/{key}"),
            retry=not headers,
            json=document,
            headers=headers,
        )
        resp = result["response"]
        if resp.status_code in (409, 412):
            raise ConflictError(
                f"Configuration item {namespace}/{key} was modified concurrently"
            )
        if resp.status_code not in (200, 201, 204):
            raise RuntimeError(
                f"Save config item failed ({resp.status_code}): {resp.text}"
            )
        return resp.headers.get("ETag", revision)

    def sanity_checks(self) -> List[str]:
        """Run the admin server sanity checks; returns a list of problems."""
        return self._get_json("sanity").get("errors", [])

    def network_checks(self) -> List[str]:
        """Run network checks across the cluster; returns a list of problems."""
        return self._get_json("network/checks").get("errors", [])

    def ha_presence_check(self) -> Dict:
        """Check that every controller is clustered; returns problems by name."""
        return self._get_json("pacemaker/presence").get("errors", {})

    def maintenance_updates_status(self) -> Dict:
        """Return pending maintenance updates keyed by node."""
        return self._get_json("maintenance").get("pending", {})
