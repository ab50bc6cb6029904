"""Unit tests for S3 URI parsing."""

from __future__ import annotations

import pytest

from core.errors import RunStateConfigError
from core.s3_uri import parse_s3_uri


def test_parse_s3_uri_splits_bucket_and_prefix() -> None:
    """Bucket and prefix should be separated with trailing slashes removed."""
    location = parse_s3_uri("s3://jobs-bucket/state/root/")

    assert location.bucket == "jobs-bucket" and location.prefix == "state/root"


@pytest.mark.parametrize("uri", ["s3://bucket", "s3://bucket/", "file:///tmp/state"])
def test_parse_s3_uri_rejects_incomplete_uris(uri: str) -> None:
    """URIs without scheme, bucket or prefix should be rejected."""
    with pytest.raises(RunStateConfigError):
        parse_s3_uri(uri)


def test_location_builds_keys_below_prefix() -> None:
    """Object keys and URIs should be rooted at the store prefix."""
    location = parse_s3_uri("s3://jobs-bucket/state")

    key = location.join("ingest1", "blobs", "job_001.dstate")

    assert key == "state/ingest1/blobs/job_001.dstate"
    assert location.uri(key) == "s3://jobs-bucket/state/ingest1/blobs/job_001.dstate"
    assert location.uri() == "s3://jobs-bucket/state"
