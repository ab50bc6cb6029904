"""Python SDK for job state and job locks.

This module exposes the high-level client a job driver uses: take the
job lock, read the previous dataset states, persist new ones, release.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from core.config import RunStateConfig
from core.logging_config import job_log_context
from core.types import LockHandle, LockOwner, StateRecord
from locks.factory import create_job_lock
from locks.job_lock import JobLock, exclusive
from store.dataset_state_store import DatasetStateStore
from store.factory import create_dataset_state_store


class RunStateClient:
    """Primary SDK entry point for job state tracking."""

    def __init__(
        self,
        config: RunStateConfig | None = None,
        state_store: DatasetStateStore | None = None,
        job_lock: JobLock | None = None,
    ) -> None:
        """Create SDK client.

        Args:
            config: Optional runtime configuration; read from env when omitted.
            state_store: Optional prebuilt dataset state store.
            job_lock: Optional prebuilt job lock backend.
        """
        self._config = config or RunStateConfig.from_env()
        self._state_store = state_store or create_dataset_state_store(self._config)
        self._job_lock = job_lock or create_job_lock(self._config)

    @property
    def config(self) -> RunStateConfig:
        return self._config

    @property
    def state_store(self) -> DatasetStateStore:
        return self._state_store

    @property
    def job_lock(self) -> JobLock:
        return self._job_lock

    def persist_dataset_state(self, state: StateRecord) -> str:
        """Persist a state record as the latest state of its dataset.

        Returns:
            Version name the state was stored under.
        """
        return self._state_store.persist_dataset_state(state.dataset_urn, state)

    def latest_dataset_state(self, job_name: str, dataset_urn: str = "") -> StateRecord:
        """Return the latest state of one dataset.

        Raises:
            NotFoundError: If the dataset has no persisted state.
        """
        return self._state_store.get_latest_dataset_state(job_name, dataset_urn)

    def latest_dataset_states(self, job_name: str) -> dict[str, StateRecord]:
        """Return the latest state of every dataset of a job."""
        return self._state_store.get_latest_dataset_states_by_urns(job_name)

    def dataset_state_history(self, job_name: str, dataset_urn: str = "") -> list[StateRecord]:
        """Return all stored states of one dataset, oldest first."""
        return self._state_store.list_dataset_states(job_name, dataset_urn)

    def acquire_lock(self, job_name: str) -> LockHandle:
        """Take the job lock without waiting.

        Raises:
            AlreadyLockedError: If another run holds it.
        """
        return self._job_lock.acquire(job_name)

    def release_lock(self, handle: LockHandle) -> None:
        self._job_lock.release(handle)

    def is_locked(self, job_name: str) -> bool:
        return self._job_lock.is_locked(job_name)

    def lock_owner(self, job_name: str) -> LockOwner | None:
        return self._job_lock.read_owner(job_name)

    def force_release_lock(self, job_name: str) -> bool:
        """Clear a job lock left behind by a crashed run."""
        return self._job_lock.force_release(job_name)

    @contextmanager
    def exclusive_run(self, job_name: str) -> Iterator[LockHandle]:
        """Hold the job lock for one run of ``job_name``.

        Raises:
            AlreadyLockedError: If another run holds it.
        """
        with job_log_context(run_job_name=job_name):
            with exclusive(self._job_lock, job_name) as handle:
                with job_log_context(owner_token=handle.owner.owner_token):
                    yield handle
