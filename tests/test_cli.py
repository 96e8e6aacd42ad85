"""Tests for the sealed task CLI — proves commands dispatch and persist."""

import json
from typing import Iterator

import pytest
from structlog.testing import capture_logs

from sealedtask import cli
from sealedtask.cli import build_parser, main


@pytest.fixture
def cli_logs() -> Iterator[list[dict]]:
    """Capture structlog entries so nothing reaches the JSON on stdout."""
    with capture_logs() as entries:
        yield entries


@pytest.fixture
def ledger_env(monkeypatch, kms, tmp_path, cli_logs) -> list[str]:
    """Point the CLI at a temporary data directory and the test signers."""
    # configure_logging would replace the capture with a stderr logger
    # bound to this test's capture stream.
    monkeypatch.setattr(cli, "configure_logging", lambda environment: None)
    monkeypatch.setenv("SEALEDTASK_KMS_SIGNERS", ",".join(kms.kms_addresses))
    monkeypatch.setenv("SEALEDTASK_KMS_THRESHOLD", "2")
    monkeypatch.setenv("SEALEDTASK_INPUT_VERIFIERS", ",".join(kms.input_verifier_addresses))
    return ["--data-dir", str(tmp_path / "data"), "--env-file", str(tmp_path / "absent.env")]


def _run_json(capsys, argv: list[str]) -> dict:
    capsys.readouterr()
    assert main(argv) == 0
    return json.loads(capsys.readouterr().out)


class TestCLIParsing:
    def test_status_command(self) -> None:
        args = build_parser().parse_args(["status"])
        assert args.command == "status"

    def test_create_task_command(self) -> None:
        args = build_parser().parse_args([
            "create-task", "--key", "t1", "--title", "Label images",
            "--ciphertext", "0xdead", "--input-proof", "beef",
            "--reward", "100", "--deadline-in", "3600", "--creator", "client-1",
        ])
        assert args.command == "create-task"
        assert args.ciphertext == b"\xde\xad"
        assert args.input_proof == b"\xbe\xef"
        assert args.deadline is None
        assert args.deadline_in == 3600

    def test_deadline_options_exclusive(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([
                "create-task", "--key", "t1", "--title", "T",
                "--ciphertext", "00", "--input-proof", "00", "--reward", "1",
                "--creator", "c", "--deadline-in", "5",
                "--deadline", "2030-01-01T00:00:00+00:00",
            ])

    def test_naive_deadline_read_as_utc(self) -> None:
        args = build_parser().parse_args([
            "create-task", "--key", "t1", "--title", "T",
            "--ciphertext", "00", "--input-proof", "00", "--reward", "1",
            "--creator", "c", "--deadline", "2030-01-01T00:00:00",
        ])
        assert args.deadline.tzinfo is not None

    def test_bad_hex_rejected(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([
                "submit-result", "--key", "t1", "--worker", "w1",
                "--proof", "0xnothex", "--value", "1",
            ])


class TestCLIExecution:
    def test_no_command_shows_help(self, capsys) -> None:
        assert main([]) == 0

    def test_status_runs(self, ledger_env, capsys) -> None:
        status = _run_json(capsys, ledger_env + ["status"])
        assert status["tasks"]["total"] == 0
        assert status["available"] is True

    def test_startup_fails_without_signers(self, monkeypatch, tmp_path) -> None:
        monkeypatch.setattr(cli, "configure_logging", lambda environment: None)
        for name in ("SEALEDTASK_KMS_SIGNERS", "SEALEDTASK_INPUT_VERIFIERS"):
            monkeypatch.delenv(name, raising=False)
        exit_code = main([
            "--data-dir", str(tmp_path), "--env-file", str(tmp_path / "absent.env"), "status",
        ])
        assert exit_code == 2

    def test_full_lifecycle_e2e(self, ledger_env, kms, capsys, cli_logs) -> None:
        request = kms.seal(31337)
        created = _run_json(capsys, ledger_env + [
            "create-task", "--key", "t1", "--title", "Label images",
            "--ciphertext", request.ciphertext.hex(),
            "--input-proof", request.input_proof.hex(),
            "--reward", "100", "--deadline-in", "3600", "--creator", "client-1",
        ])
        handle = created["ciphertext_handle"]

        _run_json(capsys, ledger_env + ["register-worker", "--id", "w1"])
        _run_json(capsys, ledger_env + ["assign-task", "--key", "t1", "--worker", "w1"])

        _, proof = kms.open([handle])
        completed = _run_json(capsys, ledger_env + [
            "submit-result", "--key", "t1", "--worker", "w1",
            "--value", "31337", "--proof", "0x" + proof.hex(),
        ])
        assert completed["is_completed"] is True
        assert completed["disclosed_value"] == 31337
        assert completed["worker"]["completed_tasks"] == 1

        task = _run_json(capsys, ledger_env + ["get-task", "--key", "t1"])
        assert task["phase"] == "completed"
        listed = _run_json(capsys, ledger_env + ["list-tasks", "--phase", "completed"])
        assert [t["key"] for t in listed["tasks"]] == ["t1"]
        assert main(ledger_env + ["check-invariants"]) == 0
        events = [entry["event"] for entry in cli_logs]
        assert events.count("task_completed") == 1
        assert all(31337 not in entry.values() for entry in cli_logs)

    def test_stale_snapshot_exits_with_startup_error(self, ledger_env, kms, tmp_path, capsys) -> None:
        request = kms.seal(5)
        _run_json(capsys, ledger_env + [
            "create-task", "--key", "t1", "--title", "T",
            "--ciphertext", request.ciphertext.hex(),
            "--input-proof", request.input_proof.hex(),
            "--reward", "1", "--deadline-in", "3600", "--creator", "c",
        ])
        (tmp_path / "data" / "state.json").unlink()
        assert main(ledger_env + ["status"]) == 2
        assert "unknown task t1" in capsys.readouterr().err

    def test_rejection_exit_code(self, ledger_env, capsys) -> None:
        exit_code = main(ledger_env + ["assign-task", "--key", "missing", "--worker", "w1"])
        assert exit_code == 1
        assert "not_found" in capsys.readouterr().err

    def test_out_of_range_value(self, ledger_env, capsys) -> None:
        exit_code = main(ledger_env + [
            "submit-result", "--key", "t1", "--worker", "w1",
            "--value", str(2**32), "--proof", "00",
        ])
        assert exit_code == 1
        assert "invalid_argument" in capsys.readouterr().err
