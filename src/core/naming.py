"""Naming rules for dataset state versions, aliases and lock markers."""

from __future__ import annotations

from urllib.parse import quote

from core.constants import CURRENT_DATASET_STATE_NAME, DATASET_STATE_SUFFIX


def sanitize_dataset_urn(dataset_urn: str) -> str:
    """Replace colons, which some backends treat as key separators.

    URNs that differ only by ``:`` versus ``.`` sanitize to the same value.
    """
    return dataset_urn.replace(":", ".")


def version_name(dataset_urn: str, job_id: str) -> str:
    """Return the store name of one dataset state version.

    Args:
        dataset_urn: Dataset URN, empty for the default dataset.
        job_id: Run identifier.

    Returns:
        ``{urn}-{job_id}.dstate`` or ``{job_id}.dstate``.

    Raises:
        ValueError: If the job id is empty or the name would read as an alias.
    """
    if not job_id:
        raise ValueError("job_id must be a non-empty string.")
    sanitized = sanitize_dataset_urn(dataset_urn)
    if not sanitized:
        name = f"{job_id}{DATASET_STATE_SUFFIX}"
    else:
        name = f"{sanitized}-{job_id}{DATASET_STATE_SUFFIX}"
    if is_alias_name(name):
        raise ValueError(
            f"job_id {job_id!r} yields version name '{name}', which is reserved for "
            f"'{CURRENT_DATASET_STATE_NAME}' aliases. Use a job id other than 'current' "
            "that does not end with '-current'."
        )
    return name


def alias_name(dataset_urn: str) -> str:
    """Return the alias name tracking the current state of a dataset."""
    sanitized = sanitize_dataset_urn(dataset_urn)
    if not sanitized:
        return CURRENT_DATASET_STATE_NAME
    return f"{sanitized}-{CURRENT_DATASET_STATE_NAME}"


def is_alias_name(name: str) -> bool:
    """Return whether ``name`` is matched by the alias scans."""
    return name == CURRENT_DATASET_STATE_NAME or name.endswith(
        f"-{CURRENT_DATASET_STATE_NAME}"
    )


def encode_path_segment(value: str) -> str:
    """Map an arbitrary name onto a single path segment, one-to-one.

    Characters outside ``A-Z a-z 0-9 _ . - ~`` are percent-encoded, so
    ``ingest:1`` and ``ingest_1`` stay distinct segments.

    Args:
        value: Job name or namespace.

    Returns:
        Percent-encoded segment.

    Raises:
        ValueError: If the value is empty or would be a relative path token.
    """
    if not value:
        raise ValueError("Path segment must be a non-empty string.")
    segment = quote(value, safe="")
    if segment in {".", ".."}:
        raise ValueError(f"Invalid path segment {value!r}.")
    return segment
