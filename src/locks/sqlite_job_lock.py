"""SQLite job lock.

One row per locked job name. The primary key makes the insert the
create-if-absent primitive; conflicting inserts mean the job is held.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import closing, contextmanager
from datetime import datetime
from pathlib import Path
import sqlite3

from core.constants import JOB_LOCK_TABLE, SQLITE_BUSY_TIMEOUT_MS, SQLITE_TIMEOUT_SECONDS
from core.errors import AlreadyLockedError, JobLockError, LockNotHeldError
from core.logging_config import get_logger
from core.types import LockHandle, LockOwner
from locks.job_lock import new_lock_owner
from locks.liveness import StaleLockPolicy, is_stale

_LOGGER = get_logger(__name__)

JOB_LOCKS_TABLE_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS {JOB_LOCK_TABLE} (
    job_name    TEXT PRIMARY KEY,
    owner_token TEXT NOT NULL,
    pid         INTEGER NOT NULL,
    hostname    TEXT NOT NULL,
    acquired_at TEXT NOT NULL
);
"""


class SqliteJobLock:
    """Row-per-job implementation of ``JobLock``."""

    def __init__(
        self,
        db_path: Path,
        stale_policy: StaleLockPolicy = "never",
        max_age_seconds: float | None = None,
    ) -> None:
        if stale_policy == "max_age" and max_age_seconds is None:
            raise ValueError("The max_age stale lock policy requires max_age_seconds.")
        self._db_path = db_path.expanduser().resolve()
        self._stale_policy = stale_policy
        self._max_age_seconds = max_age_seconds
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise JobLockError(
                f"Failed to create lock database directory {self._db_path.parent}: {error}."
            ) from error
        with self._transaction("initialize lock table") as conn:
            conn.execute(JOB_LOCKS_TABLE_SCHEMA)

    def acquire(self, job_name: str) -> LockHandle:
        """Insert the job's lock row or fail without waiting.

        Raises:
            AlreadyLockedError: If a live row exists.
        """
        owner = new_lock_owner(job_name)
        existing_owner: LockOwner | None = None
        with self._transaction(f"acquire lock for '{job_name}'") as conn:
            existing_owner = _select_owner(conn, job_name)
            if existing_owner is not None:
                if not is_stale(existing_owner, self._stale_policy, self._max_age_seconds):
                    raise AlreadyLockedError(job_name, existing_owner)
                _LOGGER.warning(
                    "stale_job_lock_reclaimed",
                    job_name=job_name,
                    db_path=str(self._db_path),
                    stale_pid=existing_owner.pid,
                    stale_hostname=existing_owner.hostname,
                    policy=self._stale_policy,
                )
                conn.execute(
                    f"DELETE FROM {JOB_LOCK_TABLE} WHERE job_name = ? AND owner_token = ?",
                    (job_name, existing_owner.owner_token),
                )
            conn.execute(
                f"""
                INSERT INTO {JOB_LOCK_TABLE} (job_name, owner_token, pid, hostname, acquired_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    job_name,
                    owner.owner_token,
                    owner.pid,
                    owner.hostname,
                    owner.acquired_at.isoformat(),
                ),
            )
        _LOGGER.info("job_lock_acquired", job_name=job_name, db_path=str(self._db_path))
        return LockHandle(
            job_name=job_name,
            owner=owner,
            resource=f"sqlite://{self._db_path}#{job_name}",
        )

    def release(self, handle: LockHandle) -> None:
        """Delete the job's row if it still belongs to ``handle``.

        Raises:
            LockNotHeldError: If another owner holds the lock.
        """
        with self._transaction(f"release lock for '{handle.job_name}'") as conn:
            deleted = conn.execute(
                f"DELETE FROM {JOB_LOCK_TABLE} WHERE job_name = ? AND owner_token = ?",
                (handle.job_name, handle.owner.owner_token),
            ).rowcount
            current_owner = None if deleted else _select_owner(conn, handle.job_name)
        if deleted:
            _LOGGER.info("job_lock_released", job_name=handle.job_name, db_path=str(self._db_path))
            return
        if current_owner is not None:
            raise LockNotHeldError(
                f"Job lock for '{handle.job_name}' in {self._db_path} is held by pid "
                f"{current_owner.pid} on {current_owner.hostname}; refusing to release it."
            )
        _LOGGER.warning(
            "job_lock_already_released", job_name=handle.job_name, db_path=str(self._db_path)
        )

    def is_locked(self, job_name: str) -> bool:
        return self.read_owner(job_name) is not None

    def read_owner(self, job_name: str) -> LockOwner | None:
        try:
            with closing(self._connect()) as conn:
                return _select_owner(conn, job_name)
        except sqlite3.Error as error:
            raise JobLockError(
                f"Failed to read lock for '{job_name}' from {self._db_path}: {error}."
            ) from error

    def force_release(self, job_name: str) -> bool:
        with self._transaction(f"force-release lock for '{job_name}'") as conn:
            owner = _select_owner(conn, job_name)
            conn.execute(f"DELETE FROM {JOB_LOCK_TABLE} WHERE job_name = ?", (job_name,))
        if owner is None:
            return False
        _LOGGER.warning(
            "job_lock_force_released",
            job_name=job_name,
            db_path=str(self._db_path),
            owner_pid=owner.pid,
        )
        return True

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=SQLITE_TIMEOUT_SECONDS, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=FULL;")
        conn.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")
        return conn

    @contextmanager
    def _transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run statements in one immediate transaction.

        Raises:
            JobLockError: If SQLite fails; the transaction is rolled back.
        """
        try:
            conn = self._connect()
        except sqlite3.Error as error:
            raise JobLockError(
                f"Failed to open lock database {self._db_path} to {action}: {error}."
            ) from error
        try:
            conn.execute("BEGIN IMMEDIATE;")
            yield conn
            conn.execute("COMMIT;")
        except sqlite3.IntegrityError as error:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise JobLockError(f"Lock row conflict while trying to {action}: {error}.") from error
        except sqlite3.Error as error:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise JobLockError(f"Failed to {action} in {self._db_path}: {error}.") from error
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise
        finally:
            conn.close()


def _select_owner(conn: sqlite3.Connection, job_name: str) -> LockOwner | None:
    row = conn.execute(
        f"""
        SELECT job_name, owner_token, pid, hostname, acquired_at
        FROM {JOB_LOCK_TABLE} WHERE job_name = ?
        """,
        (job_name,),
    ).fetchone()
    if row is None:
        return None
    name, owner_token, pid, hostname, acquired_at = row
    return LockOwner(
        job_name=str(name),
        owner_token=str(owner_token),
        pid=int(pid),
        hostname=str(hostname),
        acquired_at=datetime.fromisoformat(str(acquired_at)),
    )
