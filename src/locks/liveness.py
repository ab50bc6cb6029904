"""Stale lock marker detection.

A marker left behind by a crashed run looks the same as one held by a
running job. The policy decides whether such a marker may be reclaimed:

- ``never``: markers are only removed by their owner or an operator.
- ``dead_pid``: reclaim when the owner ran on this host and its process
  is gone, or the pid now belongs to a process started after acquisition.
- ``max_age``: reclaim when the marker is older than a fixed age.
"""

from __future__ import annotations

from datetime import datetime, timezone
import os
import socket
from typing import Literal

import psutil

from core.types import LockOwner

StaleLockPolicy = Literal["never", "dead_pid", "max_age"]


def current_hostname() -> str:
    return socket.gethostname()


def current_pid() -> int:
    return os.getpid()


def is_stale(
    owner: LockOwner,
    policy: StaleLockPolicy,
    max_age_seconds: float | None = None,
    now: datetime | None = None,
) -> bool:
    """Return whether a lock owner may be treated as abandoned.

    Args:
        owner: Owner recorded in the marker.
        policy: Stale lock policy name.
        max_age_seconds: Age limit for the ``max_age`` policy.
        now: Reference time, defaults to the current UTC time.

    Returns:
        True when the policy allows reclaiming the marker.
    """
    if policy == "never":
        return False
    if policy == "max_age":
        if max_age_seconds is None:
            raise ValueError("The max_age stale lock policy requires max_age_seconds.")
        reference = now or datetime.now(timezone.utc)
        return (reference - owner.acquired_at).total_seconds() > max_age_seconds
    if policy == "dead_pid":
        return _owner_process_gone(owner)
    raise ValueError(f"Unsupported stale lock policy {policy!r}.")


def _owner_process_gone(owner: LockOwner) -> bool:
    # pids of other hosts cannot be checked from here
    if owner.hostname != current_hostname():
        return False
    if not psutil.pid_exists(owner.pid):
        return True
    try:
        started_at = psutil.Process(owner.pid).create_time()
    except psutil.NoSuchProcess:
        return True
    except psutil.AccessDenied:
        return False
    return started_at > owner.acquired_at.timestamp()
