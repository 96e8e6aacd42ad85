"""Sealed task CLI — command-line interface for the encrypted-task ledger.

Usage:
    python -m sealedtask.cli status
    python -m sealedtask.cli register-worker --id 0xWorker...
    python -m sealedtask.cli create-task --key t1 --title "Label images" \\
        --ciphertext 0x... --input-proof 0x... --reward 100 --deadline-in 3600 --creator 0xClient...
    python -m sealedtask.cli assign-task --key t1 --worker 0xWorker...
    python -m sealedtask.cli submit-result --key t1 --worker 0xWorker... --value 42 --proof 0x...
    python -m sealedtask.cli get-task --key t1
    python -m sealedtask.cli check-invariants

Signer addresses and the data directory come from --config, a .env
file, or SEALEDTASK_* environment variables.
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from sealedtask.config import LedgerConfig, load_config
from sealedtask.crypto.codec import encode_cleartexts
from sealedtask.crypto.signer_service import ThresholdSignerCryptoService
from sealedtask.errors import LedgerStartupError, StateCorruptionError
from sealedtask.models.ciphertext import CiphertextIngestRequest
from sealedtask.models.task import TaskPhase
from sealedtask.observability import configure_logging
from sealedtask.persistence.event_log import EventLog
from sealedtask.persistence.state_store import StateStore
from sealedtask.service import ServiceResult, TaskLedgerService


def _hex_bytes(value: str) -> bytes:
    raw = value[2:] if value.lower().startswith("0x") else value
    try:
        return bytes.fromhex(raw)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a hex string: {value!r}") from e


def _iso_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not an ISO-8601 datetime: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _load_cli_config(args: argparse.Namespace) -> LedgerConfig:
    config = load_config(args.config, args.env_file)
    if args.data_dir is not None:
        config = dataclasses.replace(config, data_dir=args.data_dir)
    return config


def _make_service(config: LedgerConfig) -> TaskLedgerService:
    """Create a TaskLedgerService with durable persistence."""
    config.data_dir.mkdir(parents=True, exist_ok=True)
    crypto = ThresholdSignerCryptoService(
        kms_signers=config.kms_signers,
        threshold=config.kms_threshold,
        input_verifiers=config.input_verifiers,
    )
    return TaskLedgerService(
        crypto,
        event_log=EventLog(storage_path=config.event_log_path),
        state_store=StateStore(config.state_path),
        reputation_delta=config.reputation_delta,
        crypto_timeout_seconds=config.crypto_timeout_seconds,
    )


def _emit(result: ServiceResult) -> int:
    if result.success:
        print(json.dumps(result.data, indent=2, default=str))
        return 0
    kind = result.error_kind.value if result.error_kind else "error"
    print(f"Failed [{kind}]: {'; '.join(result.errors)}", file=sys.stderr)
    return 1


def cmd_status(service: TaskLedgerService, args: argparse.Namespace) -> int:
    print(json.dumps(service.status(), indent=2))
    return 0


def cmd_register_worker(service: TaskLedgerService, args: argparse.Namespace) -> int:
    return _emit(service.register_worker(args.id))


def cmd_create_task(service: TaskLedgerService, args: argparse.Namespace) -> int:
    if args.deadline is not None:
        deadline = args.deadline
    else:
        deadline = datetime.now(timezone.utc) + timedelta(seconds=args.deadline_in)
    return _emit(service.create_task(
        key=args.key,
        title=args.title,
        ingest_request=CiphertextIngestRequest(
            ciphertext=args.ciphertext, input_proof=args.input_proof,
        ),
        reward_amount=args.reward,
        deadline=deadline,
        creator_id=args.creator,
        description=args.description,
    ))


def cmd_assign_task(service: TaskLedgerService, args: argparse.Namespace) -> int:
    return _emit(service.assign_task(args.key, args.worker))


def cmd_submit_result(service: TaskLedgerService, args: argparse.Namespace) -> int:
    if args.cleartexts is not None:
        cleartexts = args.cleartexts
    else:
        try:
            cleartexts = encode_cleartexts([args.value])
        except ValueError as e:
            print(f"Failed [invalid_argument]: {e}", file=sys.stderr)
            return 1
    return _emit(service.submit_result(args.key, args.worker, cleartexts, args.proof))


def cmd_get_task(service: TaskLedgerService, args: argparse.Namespace) -> int:
    return _emit(service.get_task(args.key))


def cmd_list_tasks(service: TaskLedgerService, args: argparse.Namespace) -> int:
    if args.requester:
        return _emit(service.list_tasks_by_requester(args.requester))
    if args.phase or args.text:
        phase = TaskPhase(args.phase) if args.phase else None
        return _emit(service.search_tasks(phase=phase, text=args.text))
    return _emit(service.list_task_keys())


def cmd_get_worker(service: TaskLedgerService, args: argparse.Namespace) -> int:
    return _emit(service.get_worker(args.id))


def cmd_list_workers(service: TaskLedgerService, args: argparse.Namespace) -> int:
    return _emit(service.list_worker_identities())


def cmd_check_invariants(service: TaskLedgerService, args: argparse.Namespace) -> int:
    result = service.check_invariants()
    if result.success:
        print(f"All invariants hold ({result.data['tasks_checked']} tasks checked)")
        return 0
    for violation in result.errors:
        print(f"VIOLATION: {violation}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sealedtask",
        description="Encrypted-task ledger CLI",
    )
    parser.add_argument("--config", type=Path, default=None, help="JSON config file")
    parser.add_argument("--env-file", type=Path, default=None, help=".env file to load")
    parser.add_argument("--data-dir", type=Path, default=None, help="Override data directory")
    sub = parser.add_subparsers(dest="command")

    # status
    sub.add_parser("status", help="Show ledger status")

    # register-worker
    p_reg = sub.add_parser("register-worker", help="Register a worker")
    p_reg.add_argument("--id", required=True, help="Worker identity (address)")

    # create-task
    p_create = sub.add_parser("create-task", help="Create an encrypted task")
    p_create.add_argument("--key", required=True, help="Unique task key")
    p_create.add_argument("--title", required=True, help="Task title")
    p_create.add_argument("--description", default="", help="Task description")
    p_create.add_argument("--ciphertext", required=True, type=_hex_bytes, help="Ciphertext (hex)")
    p_create.add_argument("--input-proof", required=True, type=_hex_bytes, help="Input proof (hex)")
    p_create.add_argument("--reward", required=True, type=int, help="Reward amount")
    p_create.add_argument("--creator", required=True, help="Requester identity")
    deadline = p_create.add_mutually_exclusive_group(required=True)
    deadline.add_argument("--deadline", type=_iso_datetime, help="Absolute deadline (ISO-8601)")
    deadline.add_argument("--deadline-in", type=int, help="Deadline in seconds from now")

    # assign-task
    p_assign = sub.add_parser("assign-task", help="Assign a task to a worker")
    p_assign.add_argument("--key", required=True, help="Task key")
    p_assign.add_argument("--worker", required=True, help="Worker identity")

    # submit-result
    p_submit = sub.add_parser("submit-result", help="Submit a verified opening")
    p_submit.add_argument("--key", required=True, help="Task key")
    p_submit.add_argument("--worker", required=True, help="Claimant identity")
    p_submit.add_argument("--proof", required=True, type=_hex_bytes, help="Opening proof (hex)")
    value = p_submit.add_mutually_exclusive_group(required=True)
    value.add_argument("--value", type=int, help="Claimed cleartext value")
    value.add_argument("--cleartexts", type=_hex_bytes, help="ABI-encoded cleartexts (hex)")

    # get-task
    p_get = sub.add_parser("get-task", help="Show one task")
    p_get.add_argument("--key", required=True, help="Task key")

    # list-tasks
    p_list = sub.add_parser("list-tasks", help="List or search tasks")
    p_list.add_argument("--phase", choices=[p.value for p in TaskPhase], help="Filter by phase")
    p_list.add_argument("--text", help="Filter by title/description text")
    p_list.add_argument("--requester", help="Only tasks created by this identity")

    # get-worker / list-workers
    p_worker = sub.add_parser("get-worker", help="Show one worker")
    p_worker.add_argument("--id", required=True, help="Worker identity")
    sub.add_parser("list-workers", help="List worker identities")

    # check-invariants
    sub.add_parser("check-invariants", help="Audit ledger invariants")

    return parser


COMMANDS: dict[str, Any] = {
    "status": cmd_status,
    "register-worker": cmd_register_worker,
    "create-task": cmd_create_task,
    "assign-task": cmd_assign_task,
    "submit-result": cmd_submit_result,
    "get-task": cmd_get_task,
    "list-tasks": cmd_list_tasks,
    "get-worker": cmd_get_worker,
    "list-workers": cmd_list_workers,
    "check-invariants": cmd_check_invariants,
}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    handler = COMMANDS.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        config = _load_cli_config(args)
        configure_logging(config.log_environment)
        service = _make_service(config)
    except (LedgerStartupError, StateCorruptionError, ValueError, OSError) as e:
        print(f"Startup failed: {e}", file=sys.stderr)
        return 2

    try:
        return handler(service, args)
    finally:
        service.close()


if __name__ == "__main__":
    raise SystemExit(main())
