"""Versioned blob store contract.

Backends store opaque byte payloads under a (namespace, name) key and
support alias names that point at another name in the same namespace.
Higher layers depend only on this protocol.
"""

from __future__ import annotations

from typing import Protocol


class VersionedBlobStore(Protocol):
    """Namespaced blob storage with glob listing and atomic aliases."""

    def put(self, namespace: str, name: str, payload: bytes) -> None:
        """Write ``payload`` under ``name``, replacing any existing entry.

        Raises:
            StoreWriteError: If the medium rejects the write.
        """
        ...

    def get(self, namespace: str, name: str) -> bytes:
        """Read a payload, following one alias level.

        Raises:
            NotFoundError: If the name or its alias target is missing.
            StoreReadError: If the medium fails.
        """
        ...

    def get_all(
        self,
        namespace: str,
        glob_pattern: str,
        alias_resolution: bool = True,
    ) -> list[bytes]:
        """Read every payload whose name matches ``glob_pattern``.

        With ``alias_resolution`` matched aliases are dereferenced to their
        target payloads; without it alias entries are skipped.
        """
        ...

    def exists(self, namespace: str, name: str) -> bool:
        """Return whether a readable entry exists under ``name``."""
        ...

    def create_alias(self, namespace: str, existing_name: str, alias_name: str) -> None:
        """Atomically point ``alias_name`` at ``existing_name``.

        Raises:
            NotFoundError: If ``existing_name`` does not exist.
            StoreWriteError: If the medium rejects the write.
        """
        ...


def validate_name(name: str, kind: str = "name") -> str:
    """Validate a namespace or entry name shared by all backends.

    Args:
        name: Candidate name.
        kind: Label used in the error message.

    Returns:
        The unchanged name.

    Raises:
        ValueError: If the name is empty, contains a path separator or NUL,
            or starts with ``.``, which is reserved for temporary entries.
    """
    if not name:
        raise ValueError(f"Blob store {kind} must be a non-empty string.")
    if "/" in name or "\x00" in name:
        raise ValueError(f"Blob store {kind} {name!r} must not contain '/' or NUL.")
    if name.startswith("."):
        raise ValueError(f"Blob store {kind} {name!r} must not start with '.'.")
    return name
