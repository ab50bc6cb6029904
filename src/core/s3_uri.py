"""S3 location helpers for the s3 state store.

A state store root is written as ``s3://bucket/prefix``; every object
key the store touches is built from that prefix.
"""

from __future__ import annotations

from dataclasses import dataclass

from core.errors import RunStateConfigError

_S3_SCHEME = "s3://"


@dataclass(frozen=True)
class S3Location:
    """Bucket and key prefix of an s3 state store root."""

    bucket: str
    prefix: str

    def join(self, *parts: str) -> str:
        """Return the object key for ``parts`` below the prefix."""
        return "/".join((self.prefix, *parts))

    def uri(self, key: str | None = None) -> str:
        """Render a key, or the root itself, as an ``s3://`` URI."""
        return f"{_S3_SCHEME}{self.bucket}/{key if key is not None else self.prefix}"


def parse_s3_uri(uri: str) -> S3Location:
    """Parse a state store root URI.

    Args:
        uri: URI in format ``s3://bucket/prefix``.

    Returns:
        Parsed bucket and prefix pair; the prefix has no surrounding ``/``.

    Raises:
        RunStateConfigError: If the URI lacks the scheme, bucket or prefix.
    """
    bucket, _, prefix = uri.removeprefix(_S3_SCHEME).partition("/")
    prefix = prefix.strip("/")
    if not uri.startswith(_S3_SCHEME) or not bucket or not prefix:
        raise RunStateConfigError(
            f"Invalid S3 state store URI '{uri}'. "
            "Expected s3://bucket/prefix, for example s3://etl-state/runstate."
        )
    return S3Location(bucket=bucket, prefix=prefix)
