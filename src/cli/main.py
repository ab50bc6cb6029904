"""runstate CLI entry points.
This module exposes operator commands for inspecting job state and locks.
It maps argparse commands onto SDK calls.
"""

from __future__ import annotations

import argparse
from dataclasses import replace
import json
from pathlib import Path
from typing import Any, Sequence

from core.config import RunStateConfig
from core.constants import DEFAULT_STATE_STORE_DB_NAME, LOCKS_DIR_NAME
from core.errors import NotFoundError
from core.types import StateRecord
from store.state_sdk import RunStateClient


def build_parser() -> argparse.ArgumentParser:
    """Build the top-level CLI parser.

    Returns:
        Configured argument parser.
    """
    parser = argparse.ArgumentParser(prog="runstate", description="Job state and lock CLI")
    parser.add_argument(
        "--data-root",
        help="Override RUNSTATE_DATA_ROOT and the default database and lock paths under it",
    )
    parser.add_argument("--config", help="YAML config file used instead of environment variables")
    subparsers = parser.add_subparsers(dest="command", required=True)
    _add_latest_command(subparsers)
    _add_states_command(subparsers)
    _add_history_command(subparsers)
    _add_lock_status_command(subparsers)
    _add_unlock_command(subparsers)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the runstate CLI.

    Args:
        argv: Optional argument vector.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    client = _build_client(args.data_root, args.config)
    try:
        if args.command == "latest":
            return _run_latest_command(client, args)
        if args.command == "states":
            return _run_states_command(client, args)
        if args.command == "history":
            return _run_history_command(client, args)
        if args.command == "lock-status":
            return _run_lock_status_command(client, args)
        if args.command == "unlock":
            return _run_unlock_command(client, args)
    except NotFoundError as error:
        print(f"not_found={error}")
        return 1
    parser.error(f"Unsupported command: {args.command}")
    return 2


def _build_client(data_root: str | None, config_path: str | None) -> RunStateClient:
    """Build SDK client with optional data-root override.

    Args:
        data_root: Optional override path.
        config_path: Optional YAML config file.

    Returns:
        Configured SDK client.
    """
    if config_path:
        config = RunStateConfig.from_file(config_path)
    else:
        config = RunStateConfig.from_env()
    if data_root:
        config = _with_data_root(config, Path(data_root).expanduser().resolve())
    return RunStateClient(config)


def _with_data_root(config: RunStateConfig, root: Path) -> RunStateConfig:
    """Move the data root; paths set explicitly in the config stay put."""
    state_store_db_path = config.state_store_db_path
    if state_store_db_path == config.data_root / DEFAULT_STATE_STORE_DB_NAME:
        state_store_db_path = root / DEFAULT_STATE_STORE_DB_NAME
    job_lock_dir = config.job_lock_dir
    if job_lock_dir == config.data_root / LOCKS_DIR_NAME:
        job_lock_dir = root / LOCKS_DIR_NAME
    return replace(
        config,
        data_root=root,
        state_store_db_path=state_store_db_path,
        job_lock_dir=job_lock_dir,
    )


def _run_latest_command(client: RunStateClient, args: argparse.Namespace) -> int:
    """Handle latest command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    record = client.latest_dataset_state(args.job, args.dataset)
    print(json.dumps(_record_to_dict(record), indent=2, sort_keys=True))
    return 0


def _run_states_command(client: RunStateClient, args: argparse.Namespace) -> int:
    """Handle states command.

    Args:
        client: SDK client.
        args: Parsed CLI args.

    Returns:
        Exit code.
    """
    states = client.latest_dataset_states(args.job)
    for dataset_urn in sorted(states):
        record = states[dataset_urn]
        print(f"{dataset_urn or '-'}\t{record.job_id}\t{record.timestamp.isoformat()}")
    return 0


def _run_history_command(client: RunStateClient, args: argparse.Namespace) -> int:
    """Handle history command."""
    for record in client.dataset_state_history(args.job, args.dataset):
        print(f"{record.job_id}\t{record.timestamp.isoformat()}")
    return 0


def _run_lock_status_command(client: RunStateClient, args: argparse.Namespace) -> int:
    """Handle lock-status command."""
    if not client.is_locked(args.job):
        print("unlocked")
        return 0
    owner = client.lock_owner(args.job)
    if owner is None:
        print("locked\towner=unknown")
        return 0
    print(
        f"locked\tpid={owner.pid}\thostname={owner.hostname}\t"
        f"acquired_at={owner.acquired_at.isoformat()}"
    )
    return 0


def _run_unlock_command(client: RunStateClient, args: argparse.Namespace) -> int:
    """Handle unlock command."""
    released = client.force_release_lock(args.job)
    print("released" if released else "not_locked")
    return 0


def _record_to_dict(record: StateRecord) -> dict[str, Any]:
    return {
        "job_name": record.job_name,
        "job_id": record.job_id,
        "dataset_urn": record.dataset_urn,
        "timestamp": record.timestamp.isoformat(),
        "payload": record.payload,
    }


def _add_latest_command(subparsers: Any) -> None:
    """Register latest subcommand."""
    parser = subparsers.add_parser("latest", help="Print the latest state of one dataset")
    parser.add_argument("--job", required=True, help="Job name")
    parser.add_argument("--dataset", default="", help="Dataset URN; default dataset when omitted")


def _add_states_command(subparsers: Any) -> None:
    """Register states subcommand."""
    parser = subparsers.add_parser("states", help="List the latest state of every dataset")
    parser.add_argument("--job", required=True, help="Job name")


def _add_history_command(subparsers: Any) -> None:
    """Register history subcommand."""
    parser = subparsers.add_parser("history", help="List every stored state of one dataset")
    parser.add_argument("--job", required=True, help="Job name")
    parser.add_argument("--dataset", default="", help="Dataset URN; default dataset when omitted")


def _add_lock_status_command(subparsers: Any) -> None:
    """Register lock-status subcommand."""
    parser = subparsers.add_parser("lock-status", help="Show whether a job is locked")
    parser.add_argument("--job", required=True, help="Job name")


def _add_unlock_command(subparsers: Any) -> None:
    """Register unlock subcommand."""
    parser = subparsers.add_parser("unlock", help="Remove a job lock left by a crashed run")
    parser.add_argument("--job", required=True, help="Job name")
