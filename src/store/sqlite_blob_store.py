"""SQLite blob store.

Entries are rows keyed by (namespace, name). An alias is a row whose
``alias_of`` column names another row in the same namespace; repointing
it is a single upsert inside an immediate transaction.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import closing, contextmanager
from pathlib import Path
import re
import sqlite3

from core.constants import (
    DEFAULT_STATE_STORE_TABLE,
    SQLITE_BUSY_TIMEOUT_MS,
    SQLITE_TIMEOUT_SECONDS,
)
from core.errors import NotFoundError, StoreReadError, StoreWriteError
from core.logging_config import get_logger
from store.blob_store import validate_name

_LOGGER = get_logger(__name__)
_TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class SqliteBlobStore:
    """Relational-table implementation of ``VersionedBlobStore``."""

    def __init__(self, db_path: Path, table_name: str = DEFAULT_STATE_STORE_TABLE) -> None:
        if not _TABLE_NAME_PATTERN.match(table_name):
            raise ValueError(f"Invalid state store table name {table_name!r}.")
        self._db_path = db_path.expanduser().resolve()
        self._table = table_name
        self._init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def put(self, namespace: str, name: str, payload: bytes) -> None:
        validate_name(namespace, kind="namespace")
        validate_name(name)
        with self._write_transaction(f"write '{namespace}/{name}'") as conn:
            conn.execute(
                f"""
                INSERT INTO {self._table} (namespace, name, payload, alias_of, modified_at)
                VALUES (?, ?, ?, NULL, CURRENT_TIMESTAMP)
                ON CONFLICT (namespace, name) DO UPDATE SET
                    payload = excluded.payload,
                    alias_of = NULL,
                    modified_at = excluded.modified_at
                """,
                (namespace, name, sqlite3.Binary(payload)),
            )

    def get(self, namespace: str, name: str) -> bytes:
        validate_name(namespace, kind="namespace")
        validate_name(name)
        try:
            with closing(self._connect()) as conn:
                payload = _resolve_payload(conn, self._table, namespace, name)
        except sqlite3.Error as error:
            raise StoreReadError(
                f"Failed to read '{namespace}/{name}' from {self._db_path}: {error}."
            ) from error
        if payload is None:
            raise NotFoundError(
                f"No state entry '{name}' in namespace '{namespace}' at {self._db_path}."
            )
        return payload

    def get_all(
        self,
        namespace: str,
        glob_pattern: str,
        alias_resolution: bool = True,
    ) -> list[bytes]:
        validate_name(namespace, kind="namespace")
        payloads: list[bytes] = []
        try:
            with closing(self._connect()) as conn:
                rows = conn.execute(
                    f"""
                    SELECT name, payload, alias_of FROM {self._table}
                    WHERE namespace = ? AND name GLOB ?
                    ORDER BY name
                    """,
                    (namespace, glob_pattern),
                ).fetchall()
                for name, payload, alias_of in rows:
                    if alias_of is None:
                        payloads.append(bytes(payload))
                        continue
                    if not alias_resolution:
                        continue
                    target_payload = _read_blob(conn, self._table, namespace, alias_of)
                    if target_payload is None:
                        _LOGGER.warning(
                            "dangling_alias_skipped",
                            namespace=namespace,
                            alias_name=name,
                            target=alias_of,
                        )
                        continue
                    payloads.append(target_payload)
        except sqlite3.Error as error:
            raise StoreReadError(
                f"Failed to scan namespace '{namespace}' in {self._db_path}: {error}."
            ) from error
        return payloads

    def exists(self, namespace: str, name: str) -> bool:
        try:
            self.get(namespace, name)
        except NotFoundError:
            return False
        return True

    def create_alias(self, namespace: str, existing_name: str, alias_name: str) -> None:
        validate_name(namespace, kind="namespace")
        validate_name(existing_name)
        validate_name(alias_name)
        with self._write_transaction(f"alias '{namespace}/{alias_name}'") as conn:
            row = conn.execute(
                f"SELECT alias_of FROM {self._table} WHERE namespace = ? AND name = ?",
                (namespace, existing_name),
            ).fetchone()
            target_name = existing_name if row is None or row[0] is None else row[0]
            if row is None or _read_blob(conn, self._table, namespace, target_name) is None:
                raise NotFoundError(
                    f"Cannot alias '{alias_name}' to missing entry '{existing_name}' "
                    f"in namespace '{namespace}'."
                )
            conn.execute(
                f"""
                INSERT INTO {self._table} (namespace, name, payload, alias_of, modified_at)
                VALUES (?, ?, NULL, ?, CURRENT_TIMESTAMP)
                ON CONFLICT (namespace, name) DO UPDATE SET
                    payload = NULL,
                    alias_of = excluded.alias_of,
                    modified_at = excluded.modified_at
                """,
                (namespace, alias_name, target_name),
            )

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=SQLITE_TIMEOUT_SECONDS, isolation_level=None)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=FULL;")
        conn.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")
        return conn

    @contextmanager
    def _write_transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """Run statements in one immediate transaction.

        Raises:
            StoreWriteError: If SQLite fails; the transaction is rolled back.
        """
        try:
            conn = self._connect()
        except sqlite3.Error as error:
            raise StoreWriteError(
                f"Failed to open state store {self._db_path} to {action}: {error}."
            ) from error
        try:
            conn.execute("BEGIN IMMEDIATE;")
            yield conn
            conn.execute("COMMIT;")
        except sqlite3.Error as error:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise StoreWriteError(
                f"Failed to {action} in {self._db_path}: {error}. Retry the job."
            ) from error
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK;")
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StoreWriteError(
                f"Failed to create state store directory {self._db_path.parent}: {error}."
            ) from error
        with self._write_transaction("initialize schema") as conn:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    namespace   TEXT NOT NULL,
                    name        TEXT NOT NULL,
                    payload     BLOB,
                    alias_of    TEXT,
                    modified_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (namespace, name)
                )
                """
            )


def _read_blob(
    conn: sqlite3.Connection, table: str, namespace: str, name: str
) -> bytes | None:
    """Read a concrete (non-alias) row payload."""
    row = conn.execute(
        f"SELECT payload FROM {table} WHERE namespace = ? AND name = ? AND alias_of IS NULL",
        (namespace, name),
    ).fetchone()
    return None if row is None else bytes(row[0])


def _resolve_payload(
    conn: sqlite3.Connection, table: str, namespace: str, name: str
) -> bytes | None:
    """Read a row payload, following one alias level."""
    row = conn.execute(
        f"SELECT payload, alias_of FROM {table} WHERE namespace = ? AND name = ?",
        (namespace, name),
    ).fetchone()
    if row is None:
        return None
    payload, alias_of = row
    if alias_of is None:
        return bytes(payload)
    return _read_blob(conn, table, namespace, alias_of)
