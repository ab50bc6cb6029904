"""Blob store backend selection.

Backends register under a short alias so configuration can name them,
the same way job configs name a state store type.
"""

from __future__ import annotations

from typing import Callable

from core.config import RunStateConfig
from core.constants import STATES_DIR_NAME
from core.errors import RunStateConfigError
from store.blob_store import VersionedBlobStore
from store.dataset_state_store import DatasetStateStore
from store.fs_blob_store import FsBlobStore
from store.s3_blob_store import S3BlobStore
from store.sqlite_blob_store import SqliteBlobStore
from store.state_codec import JsonStateCodec


def _create_fs_store(config: RunStateConfig) -> VersionedBlobStore:
    return FsBlobStore(config.data_root / STATES_DIR_NAME)


def _create_sqlite_store(config: RunStateConfig) -> VersionedBlobStore:
    return SqliteBlobStore(config.state_store_db_path, config.state_store_table)


def _create_s3_store(config: RunStateConfig) -> VersionedBlobStore:
    if not config.state_store_uri:
        raise RunStateConfigError(
            "The s3 state store requires state_store_uri. "
            "Set RUNSTATE_STATE_STORE_URI=s3://bucket/prefix."
        )
    return S3BlobStore(
        config.state_store_uri,
        region=config.s3_region,
        profile=config.s3_profile,
    )


_BLOB_STORE_FACTORIES: dict[str, Callable[[RunStateConfig], VersionedBlobStore]] = {
    "fs": _create_fs_store,
    "sqlite": _create_sqlite_store,
    "s3": _create_s3_store,
}


def supported_state_store_types() -> tuple[str, ...]:
    """Return registered blob store aliases."""
    return tuple(sorted(_BLOB_STORE_FACTORIES))


def create_blob_store(config: RunStateConfig) -> VersionedBlobStore:
    """Build the blob store named by ``config.state_store_type``.

    Raises:
        RunStateConfigError: If the type is not registered.
    """
    factory = _BLOB_STORE_FACTORIES.get(config.state_store_type)
    if factory is None:
        raise RunStateConfigError(
            f"Unsupported state store type '{config.state_store_type}'. "
            f"Use one of: {', '.join(supported_state_store_types())}."
        )
    return factory(config)


def create_dataset_state_store(config: RunStateConfig) -> DatasetStateStore:
    """Build a dataset state store over the configured backend."""
    codec = JsonStateCodec(compressed=config.compressed_values)
    return DatasetStateStore(create_blob_store(config), codec)
