"""State record encoding at the blob store boundary.

The store layer only moves bytes; codecs turn ``StateRecord`` values into
payload bytes and back. Payload contents are never inspected.
"""

from __future__ import annotations

from datetime import datetime
import gzip
import json
from typing import Protocol

from core.constants import GZIP_MAGIC
from core.errors import StateDecodeError
from core.types import StateRecord


class StateCodec(Protocol):
    """Pluggable encode/decode step for stored state."""

    def encode(self, record: StateRecord) -> bytes:
        ...

    def decode(self, payload: bytes) -> StateRecord:
        ...


class JsonStateCodec:
    """UTF-8 JSON codec with optional gzip compression.

    Decoding detects gzip by its magic bytes, so records written before
    and after toggling ``compressed`` stay readable.
    """

    def __init__(self, compressed: bool = False) -> None:
        self._compressed = compressed

    def encode(self, record: StateRecord) -> bytes:
        """Serialize one record.

        Raises:
            TypeError: If the payload is not JSON-serializable.
        """
        document = {
            "job_name": record.job_name,
            "job_id": record.job_id,
            "dataset_urn": record.dataset_urn,
            "timestamp": record.timestamp.isoformat(),
            "payload": record.payload,
        }
        encoded = json.dumps(document, sort_keys=True).encode("utf-8")
        if self._compressed:
            return gzip.compress(encoded)
        return encoded

    def decode(self, payload: bytes) -> StateRecord:
        """Deserialize one record.

        Raises:
            StateDecodeError: If the payload is corrupt or incomplete.
        """
        try:
            if payload.startswith(GZIP_MAGIC):
                payload = gzip.decompress(payload)
            document = json.loads(payload.decode("utf-8"))
            return StateRecord(
                job_name=str(document["job_name"]),
                job_id=str(document["job_id"]),
                dataset_urn=str(document.get("dataset_urn") or ""),
                payload=document.get("payload"),
                timestamp=datetime.fromisoformat(str(document["timestamp"])),
            )
        except (OSError, EOFError, UnicodeDecodeError, ValueError, KeyError, TypeError) as error:
            raise StateDecodeError(
                f"Failed to decode stored dataset state: {error}. "
                "The entry may be corrupt; re-run the job to write a fresh state."
            ) from error
