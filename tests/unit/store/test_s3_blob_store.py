"""Unit tests for the S3 blob store key layout and error mapping."""

from __future__ import annotations

import json

import pytest

from core.errors import StoreWriteError
from store.s3_blob_store import S3BlobStore
from tests.fake_s3_client import FakeS3Client


def test_blobs_and_aliases_use_separate_prefixes() -> None:
    """Blobs and alias pointers should live under distinct key prefixes."""
    client = FakeS3Client()
    store = S3BlobStore("s3://bucket/root", client=client)
    store.put("ingest1", "job_001.dstate", b"state")

    store.create_alias("ingest1", "job_001.dstate", "current.dstate")
    pointer = client.objects[("bucket", "root/ingest1/aliases/current.dstate")]

    assert ("bucket", "root/ingest1/blobs/job_001.dstate") in client.objects
    assert json.loads(pointer) == {"alias_of": "job_001.dstate"}


def test_listing_follows_pagination() -> None:
    """Listing should keep requesting pages until the result is complete."""
    client = FakeS3Client(page_size=2)
    store = S3BlobStore("s3://bucket/root", client=client)
    for index in range(5):
        store.put("ingest1", f"job_{index}.dstate", str(index).encode("utf-8"))

    payloads = store.get_all("ingest1", "*.dstate")

    assert payloads == [b"0", b"1", b"2", b"3", b"4"]


def test_put_failure_raises_store_write_error() -> None:
    """Client failures during writes should surface as StoreWriteError."""
    client = FakeS3Client()
    client.fail_puts = True
    store = S3BlobStore("s3://bucket/root", client=client)

    with pytest.raises(StoreWriteError):
        store.put("ingest1", "job_001.dstate", b"state")
