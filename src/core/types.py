"""Shared typed models.

This module defines immutable data models used by the store, lock,
SDK and CLI layers to keep interfaces explicit and stable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from core.constants import DEFAULT_DATASET_URN


@dataclass(frozen=True)
class StateRecord:
    """Snapshot of one dataset's processing state for one job run.

    Attributes:
        job_name: Logical job name; also the store namespace.
        job_id: Unique identifier of the run that produced the state.
        dataset_urn: Dataset identifier within the job; empty for the
            single default dataset.
        payload: Opaque JSON-serializable state.
        timestamp: UTC time the state was produced.
    """

    job_name: str
    job_id: str
    dataset_urn: str
    payload: Any
    timestamp: datetime

    @classmethod
    def create(
        cls,
        job_name: str,
        job_id: str,
        payload: Any,
        dataset_urn: str = DEFAULT_DATASET_URN,
    ) -> "StateRecord":
        """Build a record stamped with the current UTC time."""
        return cls(
            job_name=job_name,
            job_id=job_id,
            dataset_urn=dataset_urn,
            payload=payload,
            timestamp=datetime.now(timezone.utc),
        )


@dataclass(frozen=True)
class LockOwner:
    """Identity of the process holding a job lock.

    Attributes:
        job_name: Locked job name.
        owner_token: Random token unique to one acquisition.
        pid: Process id of the holder.
        hostname: Host the holder runs on.
        acquired_at: UTC acquisition time.
    """

    job_name: str
    owner_token: str
    pid: int
    hostname: str
    acquired_at: datetime

    def to_dict(self) -> dict[str, object]:
        return {
            "job_name": self.job_name,
            "owner_token": self.owner_token,
            "pid": self.pid,
            "hostname": self.hostname,
            "acquired_at": self.acquired_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "LockOwner":
        return cls(
            job_name=str(payload["job_name"]),
            owner_token=str(payload["owner_token"]),
            pid=int(payload["pid"]),
            hostname=str(payload["hostname"]),
            acquired_at=datetime.fromisoformat(str(payload["acquired_at"])),
        )


@dataclass(frozen=True)
class LockHandle:
    """Held ownership of a job lock, returned by ``acquire``.

    Attributes:
        job_name: Locked job name.
        owner: Owner identity written into the lock marker.
        resource: Backing marker identity, such as the lock file path.
    """

    job_name: str
    owner: LockOwner
    resource: str
