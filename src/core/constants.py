"""Core constants used across runstate modules.

This module centralizes naming suffixes and default locations.
Keeping values here avoids magic literals in store and lock logic.
"""

from __future__ import annotations

from pathlib import Path

DEFAULT_DATA_ROOT = Path(".runstate")
DEFAULT_DATASET_URN = ""
DATASET_STATE_SUFFIX = ".dstate"
CURRENT_DATASET_STATE_NAME = "current" + DATASET_STATE_SUFFIX
STATES_DIR_NAME = "states"
LOCKS_DIR_NAME = "locks"
LOCK_FILE_SUFFIX = ".lock"
DEFAULT_STATE_STORE_DB_NAME = "state_store.db"
DEFAULT_STATE_STORE_TABLE = "state_blobs"
JOB_LOCK_TABLE = "job_locks"
S3_BLOBS_DIR_NAME = "blobs"
S3_ALIASES_DIR_NAME = "aliases"
SQLITE_TIMEOUT_SECONDS = 30.0
SQLITE_BUSY_TIMEOUT_MS = 5000
GZIP_MAGIC = b"\x1f\x8b"
SUPPORTED_STATE_STORE_TYPES = ("fs", "sqlite", "s3")
SUPPORTED_JOB_LOCK_TYPES = ("file", "sqlite")
SUPPORTED_STALE_LOCK_POLICIES = ("never", "dead_pid", "max_age")
