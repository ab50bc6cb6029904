"""Unit tests for runstate CLI command wiring."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from cli.main import build_parser, main
from core.config import RunStateConfig
from core.types import StateRecord
from store.state_sdk import RunStateClient


def _seed_client(data_root: Path) -> RunStateClient:
    config = RunStateConfig.from_mapping({"data_root": str(data_root)}, source="test")
    return RunStateClient(config)


def test_cli_requires_command() -> None:
    """Parser should reject calls without a subcommand."""
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_cli_latest_prints_state_json(tmp_path: Path, capsys) -> None:
    """latest should print the dataset's latest state as JSON."""
    client = _seed_client(tmp_path)
    client.persist_dataset_state(
        StateRecord.create("ingest1", "job_001", {"offset": 3}, dataset_urn="urn:li:dataset:A")
    )

    args = ["latest", "--job", "ingest1", "--dataset", "urn:li:dataset:A"]
    exit_code = main(["--data-root", str(tmp_path), *args])
    printed = json.loads(capsys.readouterr().out)

    assert (
        exit_code == 0
        and printed["job_id"] == "job_001"
        and printed["payload"] == {"offset": 3}
    )


def test_cli_latest_missing_state_exits_non_zero(tmp_path: Path, capsys) -> None:
    """latest for an unknown job should report not_found."""
    exit_code = main(["--data-root", str(tmp_path), "latest", "--job", "ingest1"])

    assert exit_code == 1 and capsys.readouterr().out.startswith("not_found=")


def test_cli_states_lists_each_dataset(tmp_path: Path, capsys) -> None:
    """states should print one line per dataset."""
    client = _seed_client(tmp_path)
    for urn in ("urn:b", "urn:a"):
        client.persist_dataset_state(StateRecord.create("ingest1", "job_001", {}, dataset_urn=urn))

    exit_code = main(["--data-root", str(tmp_path), "states", "--job", "ingest1"])
    lines = capsys.readouterr().out.splitlines()

    assert exit_code == 0 and [line.split("\t")[0] for line in lines] == ["urn:a", "urn:b"]


def test_cli_history_lists_runs(tmp_path: Path, capsys) -> None:
    """history should print every run of the default dataset."""
    client = _seed_client(tmp_path)
    for job_id in ("job_001", "job_002"):
        client.persist_dataset_state(StateRecord.create("ingest1", job_id, {}))

    exit_code = main(["--data-root", str(tmp_path), "history", "--job", "ingest1"])
    job_ids = [line.split("\t")[0] for line in capsys.readouterr().out.splitlines()]

    assert exit_code == 0 and sorted(job_ids) == ["job_001", "job_002"]


def test_cli_lock_status_and_unlock(tmp_path: Path, capsys) -> None:
    """Operators should see a held lock and be able to clear it."""
    _seed_client(tmp_path).acquire_lock("ingest1")

    main(["--data-root", str(tmp_path), "lock-status", "--job", "ingest1"])
    status_output = capsys.readouterr().out
    main(["--data-root", str(tmp_path), "unlock", "--job", "ingest1"])
    unlock_output = capsys.readouterr().out
    main(["--data-root", str(tmp_path), "lock-status", "--job", "ingest1"])
    final_output = capsys.readouterr().out

    assert status_output.startswith("locked\tpid=")
    assert unlock_output.strip() == "released" and final_output.strip() == "unlocked"


def test_cli_reads_yaml_config(tmp_path: Path, capsys) -> None:
    """--config should select the backend from a YAML file."""
    config_path = tmp_path / "runstate.yaml"
    config_path.write_text(
        f"data_root: {tmp_path / 'data'}\nstate_store_type: sqlite\n", encoding="utf-8"
    )

    exit_code = main(["--config", str(config_path), "states", "--job", "ingest1"])

    assert exit_code == 0 and (tmp_path / "data" / "state_store.db").exists()
    assert capsys.readouterr().out == ""


def test_cli_data_root_keeps_explicit_lock_dir(tmp_path: Path, capsys) -> None:
    """--data-root should not move a lock directory the config sets explicitly."""
    lock_dir = tmp_path / "shared-locks"
    config_path = tmp_path / "runstate.yaml"
    config_path.write_text(
        f"data_root: {tmp_path / 'data'}\njob_lock_dir: {lock_dir}\n", encoding="utf-8"
    )
    RunStateClient(RunStateConfig.from_file(config_path)).acquire_lock("ingest1")

    exit_code = main(
        [
            "--config",
            str(config_path),
            "--data-root",
            str(tmp_path / "other"),
            "lock-status",
            "--job",
            "ingest1",
        ]
    )

    assert exit_code == 0 and capsys.readouterr().out.startswith("locked\t")
    assert not (tmp_path / "other" / "locks").exists()
