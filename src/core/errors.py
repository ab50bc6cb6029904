"""runstate exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Store failures, missing state and lock contention are distinct types
so the orchestration layer can pick its own retry policy.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.types import LockOwner


class RunStateError(Exception):
    """Base exception for all runstate failures."""


class RunStateConfigError(RunStateError):
    """Raised for invalid runtime configuration."""


class RunStateDependencyError(RunStateError):
    """Raised when an optional runtime dependency is missing."""


class StoreError(RunStateError):
    """Raised for blob store and dataset state failures."""


class StoreWriteError(StoreError):
    """Raised when the backing medium rejects a write."""


class StoreReadError(StoreError):
    """Raised when the backing medium fails during a read."""


class StateDecodeError(StoreReadError):
    """Raised when a stored payload cannot be decoded into a state record."""


class NotFoundError(StoreError):
    """Raised when a requested version or alias does not exist."""


class JobLockError(RunStateError):
    """Raised for job lock failures."""


class AlreadyLockedError(JobLockError):
    """Raised when a job lock is held by another owner."""

    def __init__(self, job_name: str, owner: LockOwner | None = None) -> None:
        self.job_name = job_name
        self.owner = owner
        if owner is None:
            detail = "owner unknown"
        else:
            detail = (
                f"held by pid {owner.pid} on {owner.hostname} "
                f"since {owner.acquired_at.isoformat()}"
            )
        super().__init__(
            f"Job lock for '{job_name}' is already held ({detail}). "
            "Skip this run or clear a stale lock with 'runstate unlock'."
        )


class LockNotHeldError(JobLockError):
    """Raised when releasing a lock that belongs to another owner."""
