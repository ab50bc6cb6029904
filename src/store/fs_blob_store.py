"""Filesystem blob store.

Each namespace is a directory under the store root and each entry a file.
Aliases are relative symlinks swapped into place with ``os.replace`` so a
reader sees either the previous or the new target, never neither.
"""

from __future__ import annotations

import fnmatch
import os
from pathlib import Path
import tempfile

from core.errors import NotFoundError, StoreReadError, StoreWriteError
from core.logging_config import get_logger
from core.naming import encode_path_segment
from store.blob_store import validate_name

_LOGGER = get_logger(__name__)


class FsBlobStore:
    """Filesystem-rooted implementation of ``VersionedBlobStore``."""

    def __init__(self, root: Path) -> None:
        self._root = root.expanduser().resolve()
        try:
            self._root.mkdir(parents=True, exist_ok=True)
        except OSError as error:
            raise StoreWriteError(
                f"Failed to create state store root {self._root}: {error}. "
                "Check directory permissions."
            ) from error

    @property
    def root(self) -> Path:
        return self._root

    def put(self, namespace: str, name: str, payload: bytes) -> None:
        """Write a payload with a write-fsync-replace sequence.

        Raises:
            StoreWriteError: If any filesystem step fails.
        """
        target = self._entry_path(namespace, name)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            file_descriptor, temp_name = tempfile.mkstemp(
                dir=target.parent, prefix=f".{name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(file_descriptor, "wb") as temp_file:
                    temp_file.write(payload)
                    temp_file.flush()
                    os.fsync(temp_file.fileno())
                os.replace(temp_name, target)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
            _fsync_directory(target.parent)
        except OSError as error:
            raise StoreWriteError(
                f"Failed to write state entry {target}: {error}. "
                "Check disk space and permissions, then retry the job."
            ) from error

    def get(self, namespace: str, name: str) -> bytes:
        """Read one entry, following an alias symlink."""
        path = self._entry_path(namespace, name)
        try:
            return path.read_bytes()
        except FileNotFoundError as error:
            raise NotFoundError(
                f"No state entry '{name}' in namespace '{namespace}' at {path}."
            ) from error
        except OSError as error:
            raise StoreReadError(f"Failed to read state entry {path}: {error}.") from error

    def get_all(
        self,
        namespace: str,
        glob_pattern: str,
        alias_resolution: bool = True,
    ) -> list[bytes]:
        """Read all matching entries in name order."""
        namespace_dir = self._namespace_dir(namespace)
        if not namespace_dir.is_dir():
            return []
        payloads: list[bytes] = []
        try:
            names = sorted(entry.name for entry in namespace_dir.iterdir())
        except OSError as error:
            raise StoreReadError(f"Failed to list namespace {namespace_dir}: {error}.") from error
        for name in names:
            if name.startswith(".") or not fnmatch.fnmatchcase(name, glob_pattern):
                continue
            path = namespace_dir / name
            if path.is_symlink():
                if not alias_resolution:
                    continue
                if not path.exists():
                    _LOGGER.warning(
                        "dangling_alias_skipped",
                        namespace=namespace,
                        alias_name=name,
                        target=os.readlink(path),
                    )
                    continue
            try:
                payloads.append(path.read_bytes())
            except OSError as error:
                raise StoreReadError(f"Failed to read state entry {path}: {error}.") from error
        return payloads

    def exists(self, namespace: str, name: str) -> bool:
        return self._entry_path(namespace, name).exists()

    def create_alias(self, namespace: str, existing_name: str, alias_name: str) -> None:
        """Repoint an alias symlink atomically.

        Raises:
            NotFoundError: If the target entry does not exist.
            StoreWriteError: If the symlink cannot be created or swapped.
        """
        existing_path = self._entry_path(namespace, existing_name)
        alias_path = self._entry_path(namespace, alias_name)
        if not existing_path.exists():
            raise NotFoundError(
                f"Cannot alias '{alias_name}' to missing entry '{existing_name}' "
                f"in namespace '{namespace}'."
            )
        target_name = existing_name
        if existing_path.is_symlink():
            target_name = os.readlink(existing_path)
        temp_link = alias_path.with_name(f".{alias_name}.{os.getpid()}.link")
        try:
            temp_link.unlink(missing_ok=True)
            os.symlink(target_name, temp_link)
            os.replace(temp_link, alias_path)
            _fsync_directory(alias_path.parent)
        except OSError as error:
            temp_link.unlink(missing_ok=True)
            raise StoreWriteError(
                f"Failed to point alias {alias_path} at '{target_name}': {error}."
            ) from error

    def _namespace_dir(self, namespace: str) -> Path:
        validate_name(namespace, kind="namespace")
        return self._root / encode_path_segment(namespace)

    def _entry_path(self, namespace: str, name: str) -> Path:
        return self._namespace_dir(namespace) / validate_name(name)


def _fsync_directory(directory: Path) -> None:
    """Flush directory metadata so renames survive a crash."""
    directory_fd = os.open(directory, os.O_RDONLY)
    try:
        os.fsync(directory_fd)
    finally:
        os.close(directory_fd)
