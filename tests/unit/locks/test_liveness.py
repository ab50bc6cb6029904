"""Unit tests for stale lock detection."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import psutil
import pytest

from core.types import LockOwner
from locks import liveness
from locks.liveness import is_stale

_ACQUIRED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _owner(hostname: str = "worker-1", pid: int = 4242) -> LockOwner:
    return LockOwner(
        job_name="ingest1",
        owner_token="token",
        pid=pid,
        hostname=hostname,
        acquired_at=_ACQUIRED_AT,
    )


class _FakeProcess:
    def __init__(self, started_at: float) -> None:
        self._started_at = started_at

    def create_time(self) -> float:
        return self._started_at


@pytest.fixture(autouse=True)
def _fixed_hostname(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(liveness, "current_hostname", lambda: "worker-1")


def test_never_policy_is_never_stale() -> None:
    """The never policy keeps every marker."""
    assert is_stale(_owner(), "never") is False


def test_max_age_compares_marker_age() -> None:
    """Markers past the age limit are stale, younger ones are not."""
    owner = _owner()

    assert is_stale(owner, "max_age", 60, now=_ACQUIRED_AT + timedelta(minutes=5)) is True
    assert is_stale(owner, "max_age", 600, now=_ACQUIRED_AT + timedelta(minutes=5)) is False


def test_max_age_requires_limit() -> None:
    """The max_age policy cannot run without a limit."""
    with pytest.raises(ValueError):
        is_stale(_owner(), "max_age")


def test_dead_pid_detects_missing_process(monkeypatch: pytest.MonkeyPatch) -> None:
    """A marker whose process is gone is stale."""
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: False)

    assert is_stale(_owner(), "dead_pid") is True


def test_dead_pid_keeps_live_process(monkeypatch: pytest.MonkeyPatch) -> None:
    """A marker whose process started before acquisition is live."""
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: True)
    monkeypatch.setattr(
        psutil, "Process", lambda pid: _FakeProcess(_ACQUIRED_AT.timestamp() - 30)
    )

    assert is_stale(_owner(), "dead_pid") is False


def test_dead_pid_detects_reused_pid(monkeypatch: pytest.MonkeyPatch) -> None:
    """A pid reused by a newer process means the owner is gone."""
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: True)
    monkeypatch.setattr(
        psutil, "Process", lambda pid: _FakeProcess(_ACQUIRED_AT.timestamp() + 30)
    )

    assert is_stale(_owner(), "dead_pid") is True


def test_dead_pid_trusts_other_hosts(monkeypatch: pytest.MonkeyPatch) -> None:
    """Owners on other hosts cannot be checked and are kept."""
    monkeypatch.setattr(psutil, "pid_exists", lambda pid: False)

    assert is_stale(_owner(hostname="worker-2"), "dead_pid") is False


def test_dead_pid_keeps_inaccessible_process(monkeypatch: pytest.MonkeyPatch) -> None:
    """Processes we may not inspect are assumed alive."""

    def _denied(pid: int) -> _FakeProcess:
        raise psutil.AccessDenied(pid)

    monkeypatch.setattr(psutil, "pid_exists", lambda pid: True)
    monkeypatch.setattr(psutil, "Process", _denied)

    assert is_stale(_owner(), "dead_pid") is False
