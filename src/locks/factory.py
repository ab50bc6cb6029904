"""Job lock backend selection."""

from __future__ import annotations

from typing import Callable, cast

from core.config import RunStateConfig
from core.errors import RunStateConfigError
from locks.file_job_lock import FileJobLock
from locks.job_lock import JobLock
from locks.liveness import StaleLockPolicy
from locks.sqlite_job_lock import SqliteJobLock


def _create_file_lock(config: RunStateConfig) -> JobLock:
    return FileJobLock(
        config.job_lock_dir,
        stale_policy=cast(StaleLockPolicy, config.stale_lock_policy),
        max_age_seconds=config.stale_lock_max_age_seconds,
    )


def _create_sqlite_lock(config: RunStateConfig) -> JobLock:
    return SqliteJobLock(
        config.state_store_db_path,
        stale_policy=cast(StaleLockPolicy, config.stale_lock_policy),
        max_age_seconds=config.stale_lock_max_age_seconds,
    )


_JOB_LOCK_FACTORIES: dict[str, Callable[[RunStateConfig], JobLock]] = {
    "file": _create_file_lock,
    "sqlite": _create_sqlite_lock,
}


def create_job_lock(config: RunStateConfig) -> JobLock:
    """Build the lock backend named by ``config.job_lock_type``.

    Raises:
        RunStateConfigError: If the type is not registered.
    """
    factory = _JOB_LOCK_FACTORIES.get(config.job_lock_type)
    if factory is None:
        raise RunStateConfigError(
            f"Unsupported job lock type '{config.job_lock_type}'. "
            f"Use one of: {', '.join(sorted(_JOB_LOCK_FACTORIES))}."
        )
    return factory(config)
