"""
Persisted cluster-wide upgrade state.

Phase-changing operations run inside ``transition()``, which admits one
writer at a time across threads and, depending on the backend, across
processes (JSON file guarded by ``flock``) or across every instance that
shares the management API (configuration item guarded by a lease).
Readers get deep-copied snapshots of the last committed record.
"""

import copy
import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterator, Optional, Tuple

from clients import ConflictError
from errors import AlreadyInProgress, InternalError, UpgradeError
from models import UpgradeState
from stores import PolicyStore

logger = logging.getLogger(__name__)

STATE_CONFIG = ("upgrade-config", "upgrade_state")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UpgradeStateStore:
    """Holds the UpgradeState record, optionally persisted to a JSON file."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._state: Optional[UpgradeState] = None
        self._data_lock = threading.RLock()
        self._transition_lock = threading.Lock()
        self._active_operation: Optional[str] = None

    def _load(self) -> UpgradeState:
        if self.path is None:
            if self._state is None:
                self._state = UpgradeState()
            return self._state

        if not os.path.exists(self.path):
            return UpgradeState()
        with open(self.path) as f:
            return UpgradeState.from_dict(json.load(f))

    def snapshot(self) -> UpgradeState:
        """Return a consistent copy of the current state."""
        with self._data_lock:
            return copy.deepcopy(self._load())

    def _state_dir(self) -> str:
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise InternalError(
                f"Cannot create state directory {directory}: {e}",
                details={"path": self.path},
            ) from e
        return directory

    def _commit(self, state: UpgradeState) -> None:
        state.updated_at = _now().isoformat()
        with self._data_lock:
            if self.path is None:
                self._state = copy.deepcopy(state)
                return

            directory = self._state_dir()
            try:
                fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".upgrade-state-")
            except OSError as e:
                raise InternalError(
                    f"Cannot write state file {self.path}: {e}",
                    details={"path": self.path},
                ) from e
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(state.to_dict(), f, indent=2)
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise

    def _acquire(self, operation: str) -> Any:
        """Take the cross-process lock; returns a handle for ``_release``."""
        if self.path is None:
            return None
        self._state_dir()
        try:
            handle = open(f"{self.path}.lock", "a")
        except OSError as e:
            raise InternalError(
                f"Cannot open state lock {self.path}.lock: {e}",
                details={"path": self.path},
            ) from e
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            raise AlreadyInProgress(
                f"Cannot start {operation}: another process is changing the upgrade state",
                details={"operation": operation},
            )
        return handle

    def _release(self, handle: Any) -> None:
        if handle is None:
            return
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        handle.close()

    @contextmanager
    def transition(self, operation: str) -> Iterator[UpgradeState]:
        """
        Run a phase-changing operation against a draft of the state.

        The draft is committed when the block finishes or raises an
        UpgradeError (so recorded errors and node status persist); any
        other exception discards it.

        Raises:
            AlreadyInProgress: If another transition holds the lock
            InternalError: If the state cannot be locked or persisted
        """
        if not self._transition_lock.acquire(blocking=False):
            raise AlreadyInProgress(
                f"Cannot start {operation}: {self._active_operation} is in progress",
                details={"operation": operation, "active": self._active_operation},
            )
        handle = None
        try:
            handle = self._acquire(operation)
            self._active_operation = operation
            logger.debug(f"Transition lock acquired for {operation}")

            draft = self.snapshot()
            try:
                yield draft
            except UpgradeError:
                self._commit(draft)
                raise
            self._commit(draft)
        finally:
            self._active_operation = None
            self._release(handle)
            self._transition_lock.release()


class ConfigItemStateStore(UpgradeStateStore):
    """
    UpgradeState kept as a configuration item of the management API.

    Every process and function instance talking to the same management API
    shares the record. A transition claims a lease on the item with a
    revision-checked write; losing that race, or finding an unexpired lease,
    raises AlreadyInProgress. Committing writes the new record and drops the
    lease in a single revision-checked write.
    """

    def __init__(
        self,
        store: PolicyStore,
        namespace: str = STATE_CONFIG[0],
        key: str = STATE_CONFIG[1],
        lease_timeout_s: int = 3600,
    ):
        super().__init__(path=None)
        self.store = store
        self.namespace = namespace
        self.key = key
        self.lease_timeout_s = lease_timeout_s
        self._lease_revision: Optional[str] = None
        self._lease_held = False
        self._base_record: Dict[str, Any] = {}

    def _read(self) -> Tuple[Dict[str, Any], Optional[str]]:
        try:
            data, revision = self.store.read_item(self.namespace, self.key)
        except Exception as e:
            raise InternalError(f"Failed to read upgrade state: {e}") from e
        return data or {}, revision

    def _load(self) -> UpgradeState:
        data, _ = self._read()
        return UpgradeState.from_dict(data)

    def _lease_expired(self, lease: Dict[str, Any]) -> bool:
        try:
            acquired_at = datetime.fromisoformat(lease["acquired_at"])
        except (KeyError, TypeError, ValueError):
            return True
        return _now() - acquired_at > timedelta(seconds=self.lease_timeout_s)

    def _write_record(self, record: Dict[str, Any]) -> None:
        try:
            self.store.write(
                self.namespace, self.key, record, revision=self._lease_revision
            )
        except ConflictError as e:
            raise InternalError(
                "Upgrade state was modified while the transition lease was held"
            ) from e
        except Exception as e:
            raise InternalError(f"Failed to save upgrade state: {e}") from e
        self._lease_revision = None
        self._lease_held = False

    def _acquire(self, operation: str) -> Any:
        data, revision = self._read()
        lease = data.get("lease")
        if lease:
            if not self._lease_expired(lease):
                raise AlreadyInProgress(
                    f"Cannot start {operation}: {lease.get('operation')} is in progress",
                    details={"operation": operation, "active": lease.get("operation")},
                )
            logger.warning(
                f"Taking over expired upgrade state lease of {lease.get('operation')} "
                f"(acquired {lease.get('acquired_at')})"
            )

        self._base_record = {k: v for k, v in data.items() if k != "lease"}
        claimed = dict(self._base_record)
        claimed["lease"] = {"operation": operation, "acquired_at": _now().isoformat()}
        try:
            self._lease_revision = self.store.write(
                self.namespace,
                self.key,
                claimed,
                revision=revision,
                create_only=not data and revision is None,
            )
        except ConflictError as e:
            raise AlreadyInProgress(
                f"Cannot start {operation}: another instance is changing the upgrade state",
                details={"operation": operation},
            ) from e
        except Exception as e:
            raise InternalError(f"Failed to lock upgrade state: {e}") from e
        self._lease_held = True
        return operation

    def _commit(self, state: UpgradeState) -> None:
        state.updated_at = _now().isoformat()
        with self._data_lock:
            self._write_record(state.to_dict())

    def _release(self, handle: Any) -> None:
        if handle is None or not self._lease_held:
            return
        # Discarded draft: put the previous record back without the lease
        try:
            self._write_record(self._base_record)
        except InternalError as e:
            logger.error(f"Failed to release upgrade state lease of {handle}: {e.message}")
