"""Filesystem job lock.

One marker file per job name under the lock directory. The marker is
created with ``O_CREAT | O_EXCL`` so exactly one contender wins, and its
contents record the owner's pid, host, token and acquisition time.

Markers are only ever removed by renaming them to a unique tombstone
first. The tombstone is then checked against the marker that was judged,
so a contender never deletes a marker written after its own check.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
import time
from uuid import uuid4

from core.constants import LOCK_FILE_SUFFIX
from core.errors import AlreadyLockedError, JobLockError, LockNotHeldError
from core.logging_config import get_logger
from core.naming import encode_path_segment
from core.types import LockHandle, LockOwner
from locks.job_lock import new_lock_owner
from locks.liveness import StaleLockPolicy, is_stale

_LOGGER = get_logger(__name__)


class FileJobLock:
    """Marker-file implementation of ``JobLock``."""

    def __init__(
        self,
        lock_dir: Path,
        stale_policy: StaleLockPolicy = "never",
        max_age_seconds: float | None = None,
    ) -> None:
        if stale_policy == "max_age" and max_age_seconds is None:
            raise ValueError("The max_age stale lock policy requires max_age_seconds.")
        self._lock_dir = lock_dir.expanduser().resolve()
        self._stale_policy = stale_policy
        self._max_age_seconds = max_age_seconds
        try:
            self._lock_dir.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise JobLockError(
                f"Failed to create lock directory {self._lock_dir}: {error}."
            ) from error

    def acquire(self, job_name: str) -> LockHandle:
        """Create the job's marker file or fail without waiting.

        Raises:
            AlreadyLockedError: If a live marker exists.
            JobLockError: If the marker cannot be written.
        """
        lock_path = self.lock_path(job_name)
        owner = new_lock_owner(job_name)
        if not self._create_marker(lock_path, owner):
            existing_owner, marker_stat = self._inspect_marker(lock_path)
            if marker_stat is not None:
                if not self._reclaimable(existing_owner, marker_stat):
                    raise AlreadyLockedError(job_name, existing_owner)
                self._reclaim_marker(job_name, lock_path, existing_owner, marker_stat)
            if not self._create_marker(lock_path, owner):
                raise AlreadyLockedError(job_name, self._read_marker(lock_path))
        _LOGGER.info("job_lock_acquired", job_name=job_name, lock_path=str(lock_path))
        return LockHandle(job_name=job_name, owner=owner, resource=str(lock_path))

    def release(self, handle: LockHandle) -> None:
        """Remove the marker if it still belongs to ``handle``.

        Raises:
            LockNotHeldError: If another owner holds the marker.
        """
        lock_path = Path(handle.resource)
        tombstone = self._tombstone_path(lock_path)
        if not self._move_marker(lock_path, tombstone):
            _LOGGER.warning(
                "job_lock_already_released", job_name=handle.job_name, lock_path=str(lock_path)
            )
            return
        try:
            moved_owner = self._read_marker(tombstone)
            if moved_owner is None or moved_owner.owner_token != handle.owner.owner_token:
                self._restore_marker(handle.job_name, tombstone, lock_path)
                raise LockNotHeldError(
                    f"Job lock {lock_path} for '{handle.job_name}' is held by another owner; "
                    "refusing to release it."
                )
        finally:
            tombstone.unlink(missing_ok=True)
        _LOGGER.info("job_lock_released", job_name=handle.job_name, lock_path=str(lock_path))

    def is_locked(self, job_name: str) -> bool:
        return self.lock_path(job_name).exists()

    def read_owner(self, job_name: str) -> LockOwner | None:
        return self._read_marker(self.lock_path(job_name))

    def force_release(self, job_name: str) -> bool:
        lock_path = self.lock_path(job_name)
        owner = self._read_marker(lock_path)
        try:
            lock_path.unlink()
        except FileNotFoundError:
            return False
        _LOGGER.warning(
            "job_lock_force_released",
            job_name=job_name,
            lock_path=str(lock_path),
            owner_pid=owner.pid if owner else None,
        )
        return True

    def lock_path(self, job_name: str) -> Path:
        return self._lock_dir / f"{encode_path_segment(job_name)}{LOCK_FILE_SUFFIX}"

    def _reclaimable(self, owner: LockOwner | None, marker_stat: os.stat_result) -> bool:
        """Apply the stale policy; unreadable markers age by their mtime."""
        if owner is not None:
            return is_stale(owner, self._stale_policy, self._max_age_seconds)
        if self._stale_policy != "max_age" or self._max_age_seconds is None:
            return False
        return time.time() - marker_stat.st_mtime > self._max_age_seconds

    def _reclaim_marker(
        self,
        job_name: str,
        lock_path: Path,
        judged_owner: LockOwner | None,
        judged_stat: os.stat_result,
    ) -> None:
        """Remove a stale marker only if it is still the one that was judged.

        Raises:
            AlreadyLockedError: If a newer marker replaced the judged one.
        """
        tombstone = self._tombstone_path(lock_path)
        if not self._move_marker(lock_path, tombstone):
            return
        try:
            moved_owner, moved_stat = self._inspect_marker(tombstone)
            if not _same_marker(judged_owner, judged_stat, moved_owner, moved_stat):
                self._restore_marker(job_name, tombstone, lock_path)
                raise AlreadyLockedError(job_name, moved_owner)
        finally:
            tombstone.unlink(missing_ok=True)
        _LOGGER.warning(
            "stale_job_lock_reclaimed",
            job_name=job_name,
            lock_path=str(lock_path),
            stale_pid=judged_owner.pid if judged_owner else None,
            stale_hostname=judged_owner.hostname if judged_owner else None,
            policy=self._stale_policy,
        )

    def _tombstone_path(self, lock_path: Path) -> Path:
        return lock_path.with_name(f".{lock_path.name}.{uuid4().hex}")

    def _move_marker(self, lock_path: Path, tombstone: Path) -> bool:
        """Atomically take the marker out of place; False if it is gone."""
        try:
            os.rename(lock_path, tombstone)
        except FileNotFoundError:
            return False
        except OSError as error:
            raise JobLockError(f"Failed to move lock marker {lock_path}: {error}.") from error
        return True

    def _restore_marker(self, job_name: str, tombstone: Path, lock_path: Path) -> None:
        # link instead of rename so a marker created meanwhile is never replaced
        try:
            os.link(tombstone, lock_path)
        except FileExistsError:
            _LOGGER.error(
                "job_lock_restore_conflict",
                job_name=job_name,
                lock_path=str(lock_path),
            )
        except OSError as error:
            raise JobLockError(f"Failed to restore lock marker {lock_path}: {error}.") from error

    def _create_marker(self, lock_path: Path, owner: LockOwner) -> bool:
        """Atomically create the marker; False if it already exists.

        Raises:
            JobLockError: For filesystem failures other than contention.
        """
        try:
            file_descriptor = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            return False
        except OSError as error:
            raise JobLockError(f"Failed to create lock marker {lock_path}: {error}.") from error
        try:
            with os.fdopen(file_descriptor, "w", encoding="utf-8") as marker_file:
                marker_file.write(json.dumps(owner.to_dict(), sort_keys=True) + "\n")
                marker_file.flush()
                os.fsync(marker_file.fileno())
        except OSError as error:
            lock_path.unlink(missing_ok=True)
            raise JobLockError(f"Failed to write lock marker {lock_path}: {error}.") from error
        return True

    def _inspect_marker(
        self, lock_path: Path
    ) -> tuple[LockOwner | None, os.stat_result | None]:
        """Return the marker's owner and file status; (None, None) if absent."""
        try:
            marker_stat = lock_path.stat()
        except FileNotFoundError:
            return None, None
        except OSError as error:
            raise JobLockError(f"Failed to stat lock marker {lock_path}: {error}.") from error
        return self._read_marker(lock_path), marker_stat

    def _read_marker(self, lock_path: Path) -> LockOwner | None:
        """Read the owner from a marker; None if absent or not yet written."""
        try:
            payload = json.loads(lock_path.read_text(encoding="utf-8"))
            return LockOwner.from_dict(payload)
        except FileNotFoundError:
            return None
        except (KeyError, TypeError, ValueError):
            return None
        except OSError as error:
            raise JobLockError(f"Failed to read lock marker {lock_path}: {error}.") from error


def _same_marker(
    judged_owner: LockOwner | None,
    judged_stat: os.stat_result,
    moved_owner: LockOwner | None,
    moved_stat: os.stat_result | None,
) -> bool:
    if moved_stat is None:
        return False
    judged_identity = (judged_stat.st_ino, judged_stat.st_mtime_ns)
    if judged_identity != (moved_stat.st_ino, moved_stat.st_mtime_ns):
        return False
    judged_token = judged_owner.owner_token if judged_owner else None
    moved_token = moved_owner.owner_token if moved_owner else None
    return judged_token == moved_token
