"""Unit tests for the marker-file job lock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
import os
from pathlib import Path
import time

import psutil
import pytest

from core.errors import AlreadyLockedError, LockNotHeldError
from core.types import LockOwner
from locks import liveness
from locks.file_job_lock import FileJobLock


class _StartedLongAgo:
    def create_time(self) -> float:
        return 0.0


def _write_marker(lock: FileJobLock, job_name: str, **overrides: object) -> LockOwner:
    owner = LockOwner(
        job_name=job_name,
        owner_token="other-token",
        pid=999_999,
        hostname="other-host",
        acquired_at=datetime.now(timezone.utc),
    )
    payload = {**owner.to_dict(), **overrides}
    lock.lock_path(job_name).write_text(json.dumps(payload), encoding="utf-8")
    return LockOwner.from_dict(payload)


def test_acquire_creates_marker_with_owner(tmp_path: Path) -> None:
    """The marker should record who holds the lock."""
    lock = FileJobLock(tmp_path / "locks")

    handle = lock.acquire("ingest1")
    owner = lock.read_owner("ingest1")

    assert lock.lock_path("ingest1").exists()
    assert owner == handle.owner and handle.resource == str(lock.lock_path("ingest1"))


def test_second_acquire_fails_fast(tmp_path: Path) -> None:
    """A held lock rejects new owners without waiting."""
    lock = FileJobLock(tmp_path / "locks")
    handle = lock.acquire("ingest1")

    with pytest.raises(AlreadyLockedError) as error_info:
        lock.acquire("ingest1")

    assert error_info.value.job_name == "ingest1"
    assert error_info.value.owner == handle.owner


def test_release_allows_reacquire(tmp_path: Path) -> None:
    """Released locks can be taken again."""
    lock = FileJobLock(tmp_path / "locks")
    lock.release(lock.acquire("ingest1"))

    handle = lock.acquire("ingest1")

    assert lock.is_locked("ingest1") and handle.job_name == "ingest1"


def test_jobs_lock_independently(tmp_path: Path) -> None:
    """Different job names never contend."""
    lock = FileJobLock(tmp_path / "locks")
    lock.acquire("ingest1")

    lock.acquire("ingest2")

    assert lock.is_locked("ingest1") and lock.is_locked("ingest2")


def test_double_release_is_noop(tmp_path: Path) -> None:
    """Releasing an already released lock should not raise."""
    lock = FileJobLock(tmp_path / "locks")
    handle = lock.acquire("ingest1")
    lock.release(handle)

    lock.release(handle)

    assert lock.is_locked("ingest1") is False


def test_release_refuses_foreign_marker(tmp_path: Path) -> None:
    """A stale handle must not remove a lock taken by another owner."""
    lock = FileJobLock(tmp_path / "locks")
    handle = lock.acquire("ingest1")
    lock.force_release("ingest1")
    lock.acquire("ingest1")

    with pytest.raises(LockNotHeldError):
        lock.release(handle)

    assert lock.is_locked("ingest1")


def test_never_policy_keeps_dead_owner_marker(tmp_path: Path) -> None:
    """Under the default policy a leftover marker blocks the job."""
    lock = FileJobLock(tmp_path / "locks")
    _write_marker(lock, "ingest1")

    with pytest.raises(AlreadyLockedError):
        lock.acquire("ingest1")


def test_max_age_policy_reclaims_old_marker(tmp_path: Path) -> None:
    """Markers older than the age limit are reclaimed."""
    lock = FileJobLock(tmp_path / "locks", stale_policy="max_age", max_age_seconds=60)
    old_time = datetime.now(timezone.utc) - timedelta(hours=1)
    _write_marker(lock, "ingest1", acquired_at=old_time.isoformat())

    handle = lock.acquire("ingest1")

    assert lock.read_owner("ingest1") == handle.owner


def test_max_age_policy_keeps_fresh_marker(tmp_path: Path) -> None:
    """Markers younger than the age limit still block."""
    lock = FileJobLock(tmp_path / "locks", stale_policy="max_age", max_age_seconds=3600)
    _write_marker(lock, "ingest1")

    with pytest.raises(AlreadyLockedError):
        lock.acquire("ingest1")


def test_max_age_policy_requires_age(tmp_path: Path) -> None:
    """The max_age policy needs an explicit limit."""
    with pytest.raises(ValueError):
        FileJobLock(tmp_path / "locks", stale_policy="max_age")


def test_unreadable_marker_counts_as_held(tmp_path: Path) -> None:
    """A fresh marker with unreadable contents still blocks acquisition."""
    lock = FileJobLock(tmp_path / "locks", stale_policy="max_age", max_age_seconds=3600)
    lock.lock_path("ingest1").write_text("", encoding="utf-8")

    with pytest.raises(AlreadyLockedError) as error_info:
        lock.acquire("ingest1")

    assert error_info.value.owner is None


def test_names_differing_in_unsafe_characters_lock_independently(tmp_path: Path) -> None:
    """Job names that only differ in unsafe characters never contend."""
    lock = FileJobLock(tmp_path / "locks")

    handles = [lock.acquire(job_name) for job_name in ("ingest:1", "ingest 1", "ingest_1")]

    assert len({handle.resource for handle in handles}) == 3
    assert lock.lock_path("team/ingest").name == "team%2Fingest.lock"


def test_empty_marker_is_reclaimed_by_age(tmp_path: Path) -> None:
    """A marker left empty by a crash mid-write ages out by its mtime."""
    lock = FileJobLock(tmp_path / "locks", stale_policy="max_age", max_age_seconds=60)
    marker = lock.lock_path("ingest1")
    marker.write_text("", encoding="utf-8")
    old_time = time.time() - 3600
    os.utime(marker, (old_time, old_time))

    handle = lock.acquire("ingest1")

    assert lock.read_owner("ingest1") == handle.owner


def test_dead_pid_policy_reclaims_marker_of_exited_process(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A marker whose owner process is gone is reclaimed on acquire."""
    monkeypatch.setattr(liveness, "current_hostname", lambda: "other-host")
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: False)
    lock = FileJobLock(tmp_path / "locks", stale_policy="dead_pid")
    _write_marker(lock, "ingest1")

    handle = lock.acquire("ingest1")

    assert lock.read_owner("ingest1") == handle.owner


def test_dead_pid_policy_keeps_marker_of_running_process(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A marker whose owner process is still running keeps blocking."""
    monkeypatch.setattr(liveness, "current_hostname", lambda: "other-host")
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: True)
    monkeypatch.setattr(psutil, "Process", lambda pid: _StartedLongAgo())
    lock = FileJobLock(tmp_path / "locks", stale_policy="dead_pid")
    existing_owner = _write_marker(lock, "ingest1")

    with pytest.raises(AlreadyLockedError) as error_info:
        lock.acquire("ingest1")

    assert error_info.value.owner == existing_owner


def test_concurrent_reclaim_leaves_single_holder(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Two contenders judging the same stale marker cannot both hold the lock."""
    lock_dir = tmp_path / "locks"
    first = FileJobLock(lock_dir, stale_policy="max_age", max_age_seconds=60)
    second = FileJobLock(lock_dir, stale_policy="max_age", max_age_seconds=60)
    old_time = datetime.now(timezone.utc) - timedelta(hours=1)
    _write_marker(first, "ingest1", acquired_at=old_time.isoformat())
    judge_stale = second._reclaimable
    handles = []

    def _first_reclaims_meanwhile(owner: object, marker_stat: os.stat_result) -> bool:
        handles.append(first.acquire("ingest1"))
        return judge_stale(owner, marker_stat)

    monkeypatch.setattr(second, "_reclaimable", _first_reclaims_meanwhile)

    with pytest.raises(AlreadyLockedError):
        second.acquire("ingest1")

    assert len(handles) == 1 and first.read_owner("ingest1") == handles[0].owner
    assert sorted(path.name for path in lock_dir.iterdir()) == ["ingest1.lock"]


def test_release_keeps_marker_of_new_owner(tmp_path: Path) -> None:
    """Releasing after a reclaim leaves the new owner's marker in place."""
    lock = FileJobLock(tmp_path / "locks", stale_policy="max_age", max_age_seconds=60)
    handle = lock.acquire("ingest1")
    lock.force_release("ingest1")
    new_handle = lock.acquire("ingest1")

    with pytest.raises(LockNotHeldError):
        lock.release(handle)

    assert lock.read_owner("ingest1") == new_handle.owner
    assert sorted(path.name for path in (tmp_path / "locks").iterdir()) == ["ingest1.lock"]
