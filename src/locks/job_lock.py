"""Job lock contract and helpers shared by lock backends."""

from __future__ import annotations

import atexit
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Protocol
from uuid import uuid4

from core.errors import JobLockError
from core.logging_config import get_logger
from core.types import LockHandle, LockOwner
from locks.liveness import current_hostname, current_pid

_LOGGER = get_logger(__name__)


class JobLock(Protocol):
    """Non-blocking, per-job-name mutual exclusion."""

    def acquire(self, job_name: str) -> LockHandle:
        """Take the lock or fail immediately.

        Raises:
            AlreadyLockedError: If another owner holds the lock.
        """
        ...

    def release(self, handle: LockHandle) -> None:
        """Release a held lock; a no-op if the marker is already gone.

        Raises:
            LockNotHeldError: If the marker belongs to another owner.
        """
        ...

    def is_locked(self, job_name: str) -> bool:
        ...

    def read_owner(self, job_name: str) -> LockOwner | None:
        ...

    def force_release(self, job_name: str) -> bool:
        """Remove the marker regardless of owner; returns whether one existed."""
        ...


def new_lock_owner(job_name: str) -> LockOwner:
    """Describe the calling process as a new lock owner."""
    return LockOwner(
        job_name=job_name,
        owner_token=uuid4().hex,
        pid=current_pid(),
        hostname=current_hostname(),
        acquired_at=datetime.now(timezone.utc),
    )


@contextmanager
def exclusive(lock: JobLock, job_name: str, release_on_exit: bool = True) -> Iterator[LockHandle]:
    """Hold a job lock for the duration of a ``with`` block.

    The lock is released when the block finishes or raises. With
    ``release_on_exit`` an interpreter-exit hook also releases it while held.
    A release failure while the block is raising is logged, and the block's
    exception propagates.

    Raises:
        AlreadyLockedError: If another owner holds the lock.
    """
    handle = lock.acquire(job_name)

    def _release_at_exit() -> None:
        lock.release(handle)

    if release_on_exit:
        atexit.register(_release_at_exit)
    body_failed = False
    try:
        yield handle
    except BaseException:
        body_failed = True
        raise
    finally:
        if release_on_exit:
            atexit.unregister(_release_at_exit)
        try:
            lock.release(handle)
        except JobLockError as release_error:
            if not body_failed:
                raise
            _LOGGER.error(
                "job_lock_release_failed", job_name=job_name, error=str(release_error)
            )
