"""Dataset state store.

This module persists per-dataset job state as immutable versions and keeps
one alias per dataset pointing at the latest version. It also reads the
legacy single ``current.dstate`` alias that predates per-dataset tracking.
"""

from __future__ import annotations

import glob

from core.constants import CURRENT_DATASET_STATE_NAME, DATASET_STATE_SUFFIX, DEFAULT_DATASET_URN
from core.errors import NotFoundError
from core.logging_config import get_logger
from core.naming import alias_name, sanitize_dataset_urn, version_name
from core.types import StateRecord
from store.blob_store import VersionedBlobStore
from store.state_codec import JsonStateCodec, StateCodec

_LOGGER = get_logger(__name__)


class DatasetStateStore:
    """Alias-indirection layer over a ``VersionedBlobStore``.

    Each persisted state is written under its own version name before the
    dataset alias is repointed at it. A crash between the two steps leaves
    the alias on the previous version, and re-running the persist for the
    same job id overwrites the same version name.
    """

    def __init__(self, blob_store: VersionedBlobStore, codec: StateCodec | None = None) -> None:
        self._blob_store = blob_store
        self._codec = codec or JsonStateCodec()

    @property
    def blob_store(self) -> VersionedBlobStore:
        return self._blob_store

    def persist_dataset_state(self, dataset_urn: str, state: StateRecord) -> str:
        """Persist a dataset state and make it the current one.

        Args:
            dataset_urn: Dataset URN; must match ``state.dataset_urn``.
            state: State record to persist.

        Returns:
            Version name the state was stored under.

        Raises:
            ValueError: If ``dataset_urn`` disagrees with the record.
            StoreWriteError: If either write fails.
        """
        if dataset_urn != state.dataset_urn:
            raise ValueError(
                f"Dataset URN mismatch: persisting state for {state.dataset_urn!r} "
                f"under {dataset_urn!r}."
            )
        table_name = version_name(dataset_urn, state.job_id)
        current_alias = alias_name(dataset_urn)
        self._blob_store.put(state.job_name, table_name, self._codec.encode(state))
        self._blob_store.create_alias(state.job_name, table_name, current_alias)
        _LOGGER.info(
            "dataset_state_persisted",
            job_name=state.job_name,
            job_id=state.job_id,
            dataset_urn=dataset_urn,
            version_name=table_name,
            alias_name=current_alias,
        )
        return table_name

    def get_latest_dataset_state(self, job_name: str, dataset_urn: str) -> StateRecord:
        """Return the state the dataset alias currently points at.

        Args:
            job_name: Job name (store namespace).
            dataset_urn: Dataset URN, empty for the default dataset.

        Returns:
            Latest persisted state.

        Raises:
            NotFoundError: If no state was persisted for the dataset.
        """
        current_alias = alias_name(dataset_urn)
        record = self._codec.decode(self._blob_store.get(job_name, current_alias))
        if record.dataset_urn != dataset_urn:
            raise NotFoundError(
                f"Alias '{current_alias}' of job '{job_name}' belongs to dataset "
                f"{record.dataset_urn!r}, not {dataset_urn!r}; URNs differing only by "
                "':' and '.' share one alias."
            )
        return record

    def get_latest_dataset_states_by_urns(self, job_name: str) -> dict[str, StateRecord]:
        """Return the latest state of every dataset of a job.

        Results are keyed by each record's own dataset URN. The legacy
        default-dataset entry is dropped once any dataset-scoped entry exists.

        Args:
            job_name: Job name (store namespace).

        Returns:
            Mapping from dataset URN to latest state; empty for a new job.
        """
        payloads = self._blob_store.get_all(
            job_name, f"*-{CURRENT_DATASET_STATE_NAME}", alias_resolution=True
        )
        payloads += self._blob_store.get_all(
            job_name, CURRENT_DATASET_STATE_NAME, alias_resolution=True
        )
        states_by_urns: dict[str, StateRecord] = {}
        for payload in payloads:
            record = self._codec.decode(payload)
            states_by_urns[record.dataset_urn] = record
        return drop_legacy_default_state(job_name, states_by_urns)

    def get_dataset_state(self, job_name: str, dataset_urn: str, job_id: str) -> StateRecord:
        """Return one historical state version by job id.

        Raises:
            NotFoundError: If that run stored no state for the dataset.
        """
        payload = self._blob_store.get(job_name, version_name(dataset_urn, job_id))
        return self._codec.decode(payload)

    def list_dataset_states(self, job_name: str, dataset_urn: str) -> list[StateRecord]:
        """Return every stored version of a dataset's state, oldest first."""
        sanitized = sanitize_dataset_urn(dataset_urn)
        pattern = f"*{DATASET_STATE_SUFFIX}"
        if sanitized:
            pattern = f"{glob.escape(sanitized)}-{pattern}"
        payloads = self._blob_store.get_all(job_name, pattern, alias_resolution=False)
        records = [self._codec.decode(payload) for payload in payloads]
        matching = [record for record in records if record.dataset_urn == dataset_urn]
        return sorted(matching, key=lambda record: (record.timestamp, record.job_id))


def drop_legacy_default_state(
    job_name: str, states_by_urns: dict[str, StateRecord]
) -> dict[str, StateRecord]:
    """Remove the legacy default-dataset entry when dataset entries exist.

    Jobs that moved from the single ``current.dstate`` alias to per-dataset
    aliases keep the old alias around. Any dataset-scoped entry means the
    default entry is stale, so it is dropped. A job that really uses the
    empty URN next to other datasets loses that entry too.
    """
    if len(states_by_urns) <= 1 or DEFAULT_DATASET_URN not in states_by_urns:
        return states_by_urns
    legacy_state = states_by_urns[DEFAULT_DATASET_URN]
    _LOGGER.warning(
        "legacy_dataset_state_ignored",
        job_name=job_name,
        legacy_job_id=legacy_state.job_id,
        dataset_count=len(states_by_urns) - 1,
    )
    return {urn: state for urn, state in states_by_urns.items() if urn != DEFAULT_DATASET_URN}
