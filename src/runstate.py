"""Public SDK surface for runstate.

This module provides a stable import path for job drivers.
It re-exports the client, typed models and error types.
"""

from __future__ import annotations

from core.config import RunStateConfig
from core.errors import (
    AlreadyLockedError,
    JobLockError,
    LockNotHeldError,
    NotFoundError,
    RunStateError,
    StoreReadError,
    StoreWriteError,
)
from core.types import LockHandle, LockOwner, StateRecord
from locks.file_job_lock import FileJobLock
from locks.job_lock import exclusive
from locks.sqlite_job_lock import SqliteJobLock
from store.dataset_state_store import DatasetStateStore
from store.fs_blob_store import FsBlobStore
from store.s3_blob_store import S3BlobStore
from store.sqlite_blob_store import SqliteBlobStore
from store.state_codec import JsonStateCodec
from store.state_sdk import RunStateClient

__all__ = [
    "AlreadyLockedError",
    "DatasetStateStore",
    "FileJobLock",
    "FsBlobStore",
    "JobLockError",
    "JsonStateCodec",
    "LockHandle",
    "LockNotHeldError",
    "LockOwner",
    "NotFoundError",
    "RunStateClient",
    "RunStateConfig",
    "RunStateError",
    "S3BlobStore",
    "SqliteBlobStore",
    "SqliteJobLock",
    "StateRecord",
    "StoreReadError",
    "StoreWriteError",
    "exclusive",
]
