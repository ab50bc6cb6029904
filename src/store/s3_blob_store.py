"""S3 blob store.

Blobs live under ``<prefix>/<namespace>/blobs/<name>`` and aliases under
``<prefix>/<namespace>/aliases/<name>`` as small JSON pointer objects.
A single-object PUT is atomic, so repointing an alias never exposes a
partially written pointer.
"""

from __future__ import annotations

import fnmatch
import json
from typing import Any

from core.constants import S3_ALIASES_DIR_NAME, S3_BLOBS_DIR_NAME
from core.errors import (
    NotFoundError,
    RunStateDependencyError,
    StoreReadError,
    StoreWriteError,
)
from core.logging_config import get_logger
from core.s3_uri import parse_s3_uri
from store.blob_store import validate_name

_LOGGER = get_logger(__name__)
_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class S3BlobStore:
    """S3-backed implementation of ``VersionedBlobStore``."""

    def __init__(
        self,
        uri: str,
        client: Any | None = None,
        region: str | None = None,
        profile: str | None = None,
    ) -> None:
        self._location = parse_s3_uri(uri)
        self._bucket = self._location.bucket
        self._client = client if client is not None else _create_s3_client(region, profile)

    def put(self, namespace: str, name: str, payload: bytes) -> None:
        blob_key = self._key(namespace, S3_BLOBS_DIR_NAME, name)
        self._put_object(blob_key, payload)
        # a name written as a blob stops being an alias
        self._delete_object(self._key(namespace, S3_ALIASES_DIR_NAME, name))

    def get(self, namespace: str, name: str) -> bytes:
        alias_target = self._read_alias(namespace, name)
        target_name = alias_target if alias_target is not None else name
        payload = self._get_object(self._key(namespace, S3_BLOBS_DIR_NAME, target_name))
        if payload is None:
            raise NotFoundError(
                f"No state entry '{name}' in namespace '{namespace}' "
                f"at {self._location.uri()}."
            )
        return payload

    def get_all(
        self,
        namespace: str,
        glob_pattern: str,
        alias_resolution: bool = True,
    ) -> list[bytes]:
        entries: dict[str, bytes | None] = {}
        for name in self._list_names(namespace, S3_BLOBS_DIR_NAME):
            if fnmatch.fnmatchcase(name, glob_pattern):
                entries[name] = self._get_object(self._key(namespace, S3_BLOBS_DIR_NAME, name))
        if alias_resolution:
            for name in self._list_names(namespace, S3_ALIASES_DIR_NAME):
                if not fnmatch.fnmatchcase(name, glob_pattern):
                    continue
                target_name = self._read_alias(namespace, name)
                target_payload = None
                if target_name is not None:
                    target_payload = self._get_object(
                        self._key(namespace, S3_BLOBS_DIR_NAME, target_name)
                    )
                if target_payload is None:
                    _LOGGER.warning(
                        "dangling_alias_skipped",
                        namespace=namespace,
                        alias_name=name,
                        target=target_name,
                    )
                    continue
                entries[name] = target_payload
        return [payload for _, payload in sorted(entries.items()) if payload is not None]

    def exists(self, namespace: str, name: str) -> bool:
        try:
            self.get(namespace, name)
        except NotFoundError:
            return False
        return True

    def create_alias(self, namespace: str, existing_name: str, alias_name: str) -> None:
        if not self.exists(namespace, existing_name):
            raise NotFoundError(
                f"Cannot alias '{alias_name}' to missing entry '{existing_name}' "
                f"in namespace '{namespace}'."
            )
        target_name = self._read_alias(namespace, existing_name) or existing_name
        pointer = json.dumps({"alias_of": target_name}, sort_keys=True).encode("utf-8")
        self._put_object(self._key(namespace, S3_ALIASES_DIR_NAME, alias_name), pointer)

    def _key(self, namespace: str, kind: str, name: str) -> str:
        validate_name(namespace, kind="namespace")
        validate_name(name)
        return self._location.join(namespace, kind, name)

    def _read_alias(self, namespace: str, name: str) -> str | None:
        """Return an alias target name, or None when ``name`` is not an alias."""
        alias_key = self._key(namespace, S3_ALIASES_DIR_NAME, name)
        pointer = self._get_object(alias_key)
        if pointer is None:
            return None
        try:
            return str(json.loads(pointer.decode("utf-8"))["alias_of"])
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as error:
            raise StoreReadError(
                f"Invalid alias pointer at {self._location.uri(alias_key)}: {error}. "
                "Re-run the last job to rewrite the alias."
            ) from error

    def _list_names(self, namespace: str, kind: str) -> list[str]:
        validate_name(namespace, kind="namespace")
        key_prefix = self._location.join(namespace, kind, "")
        names: list[str] = []
        request: dict[str, Any] = {"Bucket": self._bucket, "Prefix": key_prefix}
        while True:
            try:
                response = self._client.list_objects_v2(**request)
            except Exception as error:
                raise StoreReadError(
                    f"Failed to list {self._location.uri(key_prefix)}: {error}. "
                    "Check AWS credentials and retry."
                ) from error
            for item in response.get("Contents", []):
                name = str(item["Key"])[len(key_prefix):]
                if name and "/" not in name:
                    names.append(name)
            if not response.get("IsTruncated"):
                return names
            request["ContinuationToken"] = response["NextContinuationToken"]

    def _get_object(self, key: str) -> bytes | None:
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return bytes(response["Body"].read())
        except Exception as error:
            if _is_missing_key(error):
                return None
            raise StoreReadError(
                f"Failed to read {self._location.uri(key)}: {error}. "
                "Check AWS credentials and retry."
            ) from error

    def _put_object(self, key: str, payload: bytes) -> None:
        try:
            self._client.put_object(Bucket=self._bucket, Key=key, Body=payload)
        except Exception as error:
            raise StoreWriteError(
                f"Failed to write {self._location.uri(key)}: {error}. "
                "Check AWS credentials and retry the job."
            ) from error

    def _delete_object(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except Exception as error:
            if _is_missing_key(error):
                return
            raise StoreWriteError(
                f"Failed to delete {self._location.uri(key)}: {error}."
            ) from error


def _is_missing_key(error: Exception) -> bool:
    """Return whether a boto3 client error reports a missing key."""
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return False
    code = str(response.get("Error", {}).get("Code", ""))
    return code in _MISSING_KEY_CODES


def _create_s3_client(region: str | None, profile: str | None) -> Any:
    """Create boto3 S3 client for the store.

    Args:
        region: Optional AWS region.
        profile: Optional AWS profile.

    Returns:
        Boto3 S3 client.

    Raises:
        RunStateDependencyError: If boto3 is missing.
    """
    try:
        import boto3
    except ImportError as error:
        raise RunStateDependencyError(
            "The s3 state store requires boto3, but it is not installed. "
            "Install boto3 to keep job state in s3:// locations."
        ) from error
    session_kwargs: dict[str, str] = {}
    if profile:
        session_kwargs["profile_name"] = profile
    if region:
        session_kwargs["region_name"] = region
    session = boto3.session.Session(**session_kwargs)
    return session.client("s3")
