"""Runtime configuration model for runstate.

This module owns all environment variable and config file parsing.
Other modules consume a typed config object instead of raw env reads.
"""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any, Mapping, cast

from core.constants import (
    DEFAULT_DATA_ROOT,
    DEFAULT_STATE_STORE_DB_NAME,
    DEFAULT_STATE_STORE_TABLE,
    LOCKS_DIR_NAME,
    SUPPORTED_JOB_LOCK_TYPES,
    SUPPORTED_STALE_LOCK_POLICIES,
    SUPPORTED_STATE_STORE_TYPES,
)
from core.errors import RunStateConfigError, RunStateDependencyError

_ENV_KEYS = {
    "data_root": "RUNSTATE_DATA_ROOT",
    "state_store_type": "RUNSTATE_STATE_STORE_TYPE",
    "state_store_db_path": "RUNSTATE_STATE_STORE_DB",
    "state_store_table": "RUNSTATE_STATE_STORE_TABLE",
    "state_store_uri": "RUNSTATE_STATE_STORE_URI",
    "compressed_values": "RUNSTATE_COMPRESSED_VALUES",
    "s3_region": "RUNSTATE_S3_REGION",
    "s3_profile": "RUNSTATE_S3_PROFILE",
    "job_lock_type": "RUNSTATE_JOB_LOCK_TYPE",
    "job_lock_dir": "RUNSTATE_JOB_LOCK_DIR",
    "stale_lock_policy": "RUNSTATE_STALE_LOCK_POLICY",
    "stale_lock_max_age_seconds": "RUNSTATE_STALE_LOCK_MAX_AGE_SECONDS",
}
_TRUE_VALUES = ("1", "true", "yes", "on")
_FALSE_VALUES = ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class RunStateConfig:
    """Validated runtime configuration.

    Attributes:
        data_root: Local root directory for state files, databases and locks.
        state_store_type: Blob store backend name: fs, sqlite or s3.
        state_store_db_path: SQLite database file for the sqlite backends.
        state_store_table: Table holding state blobs in the sqlite backend.
        state_store_uri: ``s3://bucket/prefix`` root for the s3 backend.
        compressed_values: Whether state payloads are gzip-compressed.
        s3_region: Optional AWS region for boto3 session initialization.
        s3_profile: Optional AWS profile for boto3 session initialization.
        job_lock_type: Lock backend name: file or sqlite.
        job_lock_dir: Directory holding lock marker files.
        stale_lock_policy: never, dead_pid or max_age.
        stale_lock_max_age_seconds: Marker age limit for the max_age policy.
    """

    data_root: Path
    state_store_type: str
    state_store_db_path: Path
    state_store_table: str
    state_store_uri: str | None
    compressed_values: bool
    s3_region: str | None
    s3_profile: str | None
    job_lock_type: str
    job_lock_dir: Path
    stale_lock_policy: str
    stale_lock_max_age_seconds: float | None

    @classmethod
    def from_env(cls) -> "RunStateConfig":
        """Build config from process environment variables.

        Returns:
            A validated config object.

        Raises:
            RunStateConfigError: If environment values are invalid.
        """
        values: dict[str, object] = {}
        for field_name, env_key in _ENV_KEYS.items():
            raw_value = os.getenv(env_key)
            if raw_value is not None:
                values[field_name] = raw_value
        return cls.from_mapping(values, source="environment")

    @classmethod
    def from_file(cls, config_path: str | Path) -> "RunStateConfig":
        """Build config from a YAML mapping file.

        Args:
            config_path: Path to a YAML file with config field names as keys.

        Returns:
            A validated config object.

        Raises:
            RunStateConfigError: If the file is missing or invalid.
            RunStateDependencyError: If PyYAML is not installed.
        """
        payload = _load_yaml_mapping(Path(config_path))
        return cls.from_mapping(payload, source=str(config_path))

    @classmethod
    def from_mapping(cls, values: Mapping[str, object], source: str) -> "RunStateConfig":
        """Build config from raw field values, applying defaults.

        Args:
            values: Raw values keyed by config field name.
            source: Human-readable origin used in error messages.

        Returns:
            A validated config object.

        Raises:
            RunStateConfigError: If a value is invalid or unknown.
        """
        unknown_keys = sorted(set(values) - set(_ENV_KEYS))
        if unknown_keys:
            raise RunStateConfigError(
                f"Unknown config keys in {source}: {', '.join(unknown_keys)}. "
                f"Allowed keys: {', '.join(_ENV_KEYS)}."
            )
        data_root = _parse_path(values.get("data_root"), DEFAULT_DATA_ROOT)
        stale_lock_policy = _parse_choice(
            values, "stale_lock_policy", "never", SUPPORTED_STALE_LOCK_POLICIES, source
        )
        max_age = _parse_optional_float(values, "stale_lock_max_age_seconds", source)
        if stale_lock_policy == "max_age" and max_age is None:
            raise RunStateConfigError(
                f"Invalid config in {source}: stale_lock_policy 'max_age' requires "
                "stale_lock_max_age_seconds. Set RUNSTATE_STALE_LOCK_MAX_AGE_SECONDS."
            )
        state_store_type = _parse_choice(
            values, "state_store_type", "fs", SUPPORTED_STATE_STORE_TYPES, source
        )
        state_store_uri = _optional_string(values.get("state_store_uri"))
        if state_store_type == "s3" and not state_store_uri:
            raise RunStateConfigError(
                f"Invalid config in {source}: state_store_type 's3' requires "
                "state_store_uri. Set RUNSTATE_STATE_STORE_URI=s3://bucket/prefix."
            )
        return cls(
            data_root=data_root,
            state_store_type=state_store_type,
            state_store_db_path=_parse_path(
                values.get("state_store_db_path"),
                data_root / DEFAULT_STATE_STORE_DB_NAME,
            ),
            state_store_table=str(values.get("state_store_table") or DEFAULT_STATE_STORE_TABLE),
            state_store_uri=state_store_uri,
            compressed_values=_parse_bool(values, "compressed_values", source),
            s3_region=_optional_string(values.get("s3_region")),
            s3_profile=_optional_string(values.get("s3_profile")),
            job_lock_type=_parse_choice(
                values, "job_lock_type", "file", SUPPORTED_JOB_LOCK_TYPES, source
            ),
            job_lock_dir=_parse_path(values.get("job_lock_dir"), data_root / LOCKS_DIR_NAME),
            stale_lock_policy=stale_lock_policy,
            stale_lock_max_age_seconds=max_age,
        )


def _load_yaml_mapping(config_path: Path) -> dict[str, object]:
    """Read a YAML config file into a mapping.

    Args:
        config_path: YAML file path.

    Returns:
        Parsed top-level mapping.

    Raises:
        RunStateConfigError: If the file is missing or not a mapping.
        RunStateDependencyError: If PyYAML is not installed.
    """
    try:
        import yaml  # type: ignore[import-untyped]
    except ImportError as error:
        raise RunStateDependencyError(
            "YAML config support requires PyYAML. Install with 'pip install pyyaml'."
        ) from error
    if not config_path.exists():
        raise RunStateConfigError(f"Config file not found: {config_path}.")
    try:
        payload = cast(object, yaml.safe_load(config_path.read_text(encoding="utf-8")))
    except yaml.YAMLError as error:
        raise RunStateConfigError(
            f"Failed to parse config file {config_path}: {error}."
        ) from error
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise RunStateConfigError(
            f"Invalid config file {config_path}: expected a mapping at top level."
        )
    return {str(key): value for key, value in payload.items()}


def _parse_path(raw_value: object, default: Path) -> Path:
    value = str(raw_value) if raw_value not in (None, "") else str(default)
    return Path(value).expanduser().resolve()


def _parse_choice(
    values: Mapping[str, object],
    field_name: str,
    default: str,
    choices: tuple[str, ...],
    source: str,
) -> str:
    """Parse a value restricted to a fixed set of names.

    Raises:
        RunStateConfigError: If the value is not one of ``choices``.
    """
    raw_value = values.get(field_name)
    value = str(raw_value).strip().lower() if raw_value not in (None, "") else default
    if value not in choices:
        raise RunStateConfigError(
            f"Invalid {field_name} in {source}: expected one of "
            f"{', '.join(choices)}, got '{raw_value}'."
        )
    return value


def _parse_bool(values: Mapping[str, object], field_name: str, source: str) -> bool:
    raw_value = values.get(field_name)
    if isinstance(raw_value, bool):
        return raw_value
    normalized = "" if raw_value is None else str(raw_value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise RunStateConfigError(
        f"Invalid {field_name} in {source}: expected true or false, got '{raw_value}'."
    )


def _parse_optional_float(
    values: Mapping[str, object], field_name: str, source: str
) -> float | None:
    """Parse an optional positive float.

    Raises:
        RunStateConfigError: If the value is not a positive number.
    """
    raw_value = values.get(field_name)
    if raw_value in (None, ""):
        return None
    try:
        parsed = float(cast(Any, raw_value))
    except (TypeError, ValueError) as error:
        raise RunStateConfigError(
            f"Invalid {field_name} in {source}: expected a number, got '{raw_value}'."
        ) from error
    if parsed <= 0:
        raise RunStateConfigError(
            f"Invalid {field_name} in {source}: expected a positive number, got '{raw_value}'."
        )
    return parsed


def _optional_string(raw_value: object) -> str | None:
    if raw_value in (None, ""):
        return None
    return str(raw_value)
