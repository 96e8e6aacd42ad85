"""Task ledger service — unified facade for the encrypted-task marketplace.

This is the primary interface for programmatic access to the ledger.
It orchestrates all subsystems:
- Task lifecycle (create, assign, submit a verified result)
- Worker registry (registration, reputation, completion counters)
- Ciphertext handle registry (ownership and disclosure capability)
- Decryption authorization (proof-gated disclosure of cleartexts)
- Persistence (event log, state store)
- Read projections for the presentation layer

All operations return a ServiceResult; expected failures carry a
LedgerErrorKind and never raise. Every successful task creation,
assignment, and completion appends exactly one event to the event
log, and that append is the commit point: if it fails, the in-memory
mutation is rolled back.

Concurrency: mutations of the same task key are serialised, and the
slow cryptographic calls (ingest, opening verification) run outside
the store lock so unrelated keys are not blocked behind them. Reads
take the store lock and therefore never observe a half-applied
mutation.
"""

from __future__ import annotations

import concurrent.futures
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import structlog

from sealedtask.crypto.executor import BoundedExecutor
from sealedtask.crypto.service import CryptoService
from sealedtask.disclosure.authorizer import DecryptionAuthorizer
from sealedtask.errors import (
    IngestError,
    LedgerErrorKind,
    LedgerStartupError,
    StateCorruptionError,
    VerificationErrorKind,
)
from sealedtask.ledger.locks import KeyedLockTable
from sealedtask.ledger.state_machine import TaskStateMachine
from sealedtask.models.ciphertext import CiphertextIngestRequest, normalize_handle
from sealedtask.models.task import EncryptedTask, TaskPhase
from sealedtask.persistence.event_log import EventKind, EventLog, EventRecord, EventSubscriber
from sealedtask.persistence.state_store import LedgerSnapshot, StateStore
from sealedtask.registry.handles import CiphertextHandleRegistry
from sealedtask.registry.workers import WorkerRegistry, normalize_identity

log = structlog.get_logger(__name__)

DEFAULT_REPUTATION_DELTA = 10

_BYTES_TYPES = (bytes, bytearray, memoryview)


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)
    error_kind: Optional[LedgerErrorKind] = None


class TaskLedgerService:
    """Encrypted-task ledger facade.

    Usage:
        crypto = ThresholdSignerCryptoService(signers, 2, verifiers)
        service = TaskLedgerService(crypto)

        service.register_worker("0xWorker...")
        service.create_task("t1", "Label images", request, 100, deadline, "0xClient...")
        service.assign_task("t1", "0xWorker...")
        result = service.submit_result("t1", "0xWorker...", cleartexts, proof)

        service.subscribe(lambda event: print(event.event_kind))

    Persistence (optional):
        service = TaskLedgerService(crypto, event_log=log, state_store=store)
        # State is persisted on each mutation and loaded on construction.
    """

    def __init__(
        self,
        crypto_service: CryptoService,
        event_log: Optional[EventLog] = None,
        state_store: Optional[StateStore] = None,
        reputation_delta: int = DEFAULT_REPUTATION_DELTA,
        crypto_timeout_seconds: float = 10.0,
    ) -> None:
        if crypto_service is None or not isinstance(crypto_service, CryptoService):
            raise LedgerStartupError("A cryptographic service capability is required")
        try:
            healthy = crypto_service.health_check()
        except Exception as e:
            raise LedgerStartupError(f"Cryptographic service health check failed: {e}") from e
        if not healthy:
            raise LedgerStartupError("Cryptographic service reports unhealthy at startup")
        if reputation_delta < 0:
            raise ValueError(f"Reputation delta must be non-negative, got {reputation_delta}")

        self._crypto = crypto_service
        self._reputation_delta = reputation_delta
        self._event_log = event_log if event_log is not None else EventLog()
        self._state_store = state_store

        # Store lock guards every record below; per-key locks serialise
        # multi-step operations on one task key.
        self._lock = threading.RLock()
        self._task_locks = KeyedLockTable()

        snapshot = state_store.load() if state_store is not None else None
        if snapshot is not None:
            self._restore(snapshot)
        else:
            self._tasks: dict[str, EncryptedTask] = {}
            self._assignments: dict[str, str] = {}
            self._workers = WorkerRegistry()
            self._handles = CiphertextHandleRegistry()

        # The event log is authoritative: a snapshot that misses a
        # committed event is stale and must not be served.
        violations = self._audit_event_log()
        if violations:
            raise StateCorruptionError(
                f"State snapshot disagrees with the event log: {'; '.join(violations)}"
            )

        self._crypto_calls = BoundedExecutor(crypto_timeout_seconds)
        self._authorizer = DecryptionAuthorizer(
            crypto_service,
            self._handle_is_disclosable,
            executor=self._crypto_calls,
        )
        # Initialize counter from persisted log to avoid ID collision on restart
        self._event_counter = self._event_log.count

        # Set when a state store write fails after the audit event was
        # committed: in-memory state is correct, the snapshot is stale.
        self._persistence_degraded: bool = False

    # ------------------------------------------------------------------
    # Worker registry
    # ------------------------------------------------------------------

    def register_worker(
        self,
        identity: str,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Register a new worker. Duplicate registration is rejected."""
        canonical = normalize_identity(identity) if isinstance(identity, str) else ""
        if not canonical:
            return self._reject(
                "register_worker", LedgerErrorKind.INVALID_ARGUMENT,
                "Worker identity must be a non-blank string",
            )

        with self._lock:
            if self._workers.is_registered(canonical):
                return self._reject(
                    "register_worker", LedgerErrorKind.ALREADY_REGISTERED,
                    f"Worker already registered: {canonical}", worker=canonical,
                )
            record = self._workers.register(canonical, now=now)

            def _rollback() -> None:
                self._workers.rollback_registration(canonical)

            err = self._safe_persist(on_rollback=_rollback)
            if err:
                return self._reject(
                    "register_worker", LedgerErrorKind.PERSISTENCE_FAILURE, err,
                    worker=canonical,
                )

        log.info("worker_registered", worker=canonical)
        return ServiceResult(success=True, data=record.to_dict())

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------

    def create_task(
        self,
        key: str,
        title: str,
        ingest_request: CiphertextIngestRequest,
        reward_amount: int,
        deadline: datetime,
        creator_id: str,
        description: str = "",
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Create a new task in ACTIVE phase around an ingested ciphertext.

        The ciphertext is validated by the cryptographic service, its
        handle is bound to this task, and the handle is granted the
        public-disclosure capability.
        """
        if not isinstance(key, str) or not key.strip():
            return self._reject(
                "create_task", LedgerErrorKind.INVALID_ARGUMENT,
                "Task key must be a non-blank string",
            )
        if not isinstance(title, str) or not title.strip():
            return self._reject(
                "create_task", LedgerErrorKind.INVALID_ARGUMENT,
                "Task title must be a non-blank string", task_key=key,
            )
        if isinstance(reward_amount, bool) or not isinstance(reward_amount, int) or reward_amount < 0:
            return self._reject(
                "create_task", LedgerErrorKind.INVALID_ARGUMENT,
                f"Reward must be a non-negative integer, got {reward_amount!r}", task_key=key,
            )
        if not _is_aware(deadline):
            return self._reject(
                "create_task", LedgerErrorKind.INVALID_ARGUMENT,
                "Deadline must be a timezone-aware datetime", task_key=key,
            )
        requester = normalize_identity(creator_id) if isinstance(creator_id, str) else ""
        if not requester:
            return self._reject(
                "create_task", LedgerErrorKind.INVALID_ARGUMENT,
                "Creator identity must be a non-blank string", task_key=key,
            )
        if not isinstance(ingest_request, CiphertextIngestRequest):
            return self._reject(
                "create_task", LedgerErrorKind.INVALID_CIPHERTEXT,
                "Missing ciphertext ingest request", task_key=key,
            )
        if not isinstance(ingest_request.ciphertext, _BYTES_TYPES) or not isinstance(
            ingest_request.input_proof, _BYTES_TYPES,
        ):
            return self._reject(
                "create_task", LedgerErrorKind.INVALID_CIPHERTEXT,
                "Ciphertext and input proof must be raw bytes", task_key=key,
            )

        with self._lock:
            if key in self._tasks:
                return self._reject(
                    "create_task", LedgerErrorKind.DUPLICATE_KEY,
                    f"Task already exists: {key}", task_key=key,
                )

        with self._task_locks.hold(key):
            with self._lock:
                if key in self._tasks:
                    return self._reject(
                        "create_task", LedgerErrorKind.DUPLICATE_KEY,
                        f"Task already exists: {key}", task_key=key,
                    )

            # Ingest outside the store lock: the key lock already keeps
            # a concurrent create of the same key out.
            try:
                raw_handle = self._crypto_calls.run(
                    self._crypto.ingest,
                    bytes(ingest_request.ciphertext),
                    bytes(ingest_request.input_proof),
                )
            except IngestError as e:
                return self._reject(
                    "create_task", LedgerErrorKind.INVALID_CIPHERTEXT,
                    f"Ciphertext rejected: {e}", task_key=key,
                )
            except concurrent.futures.TimeoutError:
                log.warning("ingest_timeout", task_key=key,
                            timeout_seconds=self._crypto_calls.timeout_seconds)
                return self._reject(
                    "create_task", LedgerErrorKind.CRYPTO_UNAVAILABLE,
                    f"Cryptographic service did not answer within "
                    f"{self._crypto_calls.timeout_seconds}s", task_key=key,
                )
            except Exception as e:
                log.error("ingest_failed", task_key=key, error=str(e),
                          error_type=type(e).__name__)
                return self._reject(
                    "create_task", LedgerErrorKind.CRYPTO_UNAVAILABLE,
                    f"Cryptographic service failure: {e}", task_key=key,
                )
            handle = normalize_handle(raw_handle) if isinstance(raw_handle, str) else None
            if handle is None:
                return self._reject(
                    "create_task", LedgerErrorKind.INVALID_CIPHERTEXT,
                    f"Cryptographic service returned a malformed handle: {raw_handle!r}",
                    task_key=key,
                )

            with self._lock:
                if self._handles.contains(handle):
                    return self._reject(
                        "create_task", LedgerErrorKind.INVALID_CIPHERTEXT,
                        f"Ciphertext handle already bound to another task: {handle}",
                        task_key=key,
                    )

                task = EncryptedTask(
                    key=key,
                    title=title.strip(),
                    description=description,
                    ciphertext_handle=handle,
                    reward_amount=reward_amount,
                    deadline=deadline,
                    requester=requester,
                    phase=TaskPhase.ACTIVE,
                    created_utc=now or datetime.now(timezone.utc),
                )
                self._tasks[key] = task
                self._handles.register(handle, key)
                self._handles.mark_publicly_disclosable(handle)

                err = self._record_event(
                    EventKind.TASK_CREATED,
                    actor_id=requester,
                    payload={
                        "task_key": key,
                        "requester": requester,
                        "ciphertext_handle": handle,
                        "reward_amount": reward_amount,
                        "deadline": deadline.isoformat(),
                    },
                )
                if err:
                    del self._tasks[key]
                    self._handles.rollback_registration(handle)
                    return self._reject(
                        "create_task", LedgerErrorKind.PERSISTENCE_FAILURE, err, task_key=key,
                    )

                # Audit event committed, so in-memory state is kept
                warning = self._safe_persist_post_audit()
                data = task.to_dict(assignee=None)

        if warning:
            data["warning"] = warning
        log.info("task_created", task_key=key, requester=requester, handle=handle)
        return ServiceResult(success=True, data=data)

    def assign_task(self, key: str, worker_identity: str) -> ServiceResult:
        """Assign a registered worker to an ACTIVE, unassigned task.

        Preconditions are checked in order and the first failure wins:
        task exists, task is ACTIVE, task is unassigned, worker is
        registered. An assignment is permanent.
        """
        worker = normalize_identity(worker_identity) if isinstance(worker_identity, str) else ""

        with self._lock:
            task = self._tasks.get(key)
            if task is None:
                return self._reject(
                    "assign_task", LedgerErrorKind.NOT_FOUND,
                    f"Task not found: {key}", task_key=key,
                )
            if not task.is_active:
                return self._reject(
                    "assign_task", LedgerErrorKind.NOT_ACTIVE,
                    f"Task is not active: {key} ({task.phase.value})", task_key=key,
                )
            if key in self._assignments:
                return self._reject(
                    "assign_task", LedgerErrorKind.ALREADY_ASSIGNED,
                    f"Task already assigned: {key}", task_key=key,
                )
            if not worker or not self._workers.is_registered(worker):
                return self._reject(
                    "assign_task", LedgerErrorKind.WORKER_NOT_REGISTERED,
                    f"Worker not registered: {worker_identity}", task_key=key,
                )

            self._assignments[key] = worker
            err = self._record_event(
                EventKind.TASK_ASSIGNED,
                actor_id=worker,
                payload={"task_key": key, "worker": worker},
            )
            if err:
                del self._assignments[key]
                return self._reject(
                    "assign_task", LedgerErrorKind.PERSISTENCE_FAILURE, err, task_key=key,
                )

            warning = self._safe_persist_post_audit()

        log.info("task_assigned", task_key=key, worker=worker)
        data: dict[str, Any] = {"task_key": key, "worker": worker}
        if warning:
            data["warning"] = warning
        return ServiceResult(success=True, data=data)

    def submit_result(
        self,
        key: str,
        claimant_identity: str,
        cleartext_encoding: bytes,
        proof: bytes,
        now: Optional[datetime] = None,
    ) -> ServiceResult:
        """Complete a task with a verified opening of its ciphertext.

        Preconditions, in order: task exists, claimant is the assignee,
        task is not completed, `now` is not past the deadline. The
        opening is then verified by the decryption authorizer. Only a
        verified opening completes the task, stores the disclosed value,
        and credits the worker; any failure leaves the ledger unchanged.
        """
        now = now or datetime.now(timezone.utc)
        if not _is_aware(now):
            return self._reject(
                "submit_result", LedgerErrorKind.INVALID_ARGUMENT,
                "Current time must be a timezone-aware datetime", task_key=key,
            )
        claimant = normalize_identity(claimant_identity) if isinstance(claimant_identity, str) else ""

        with self._lock:
            if key not in self._tasks:
                return self._reject(
                    "submit_result", LedgerErrorKind.NOT_FOUND,
                    f"Task not found: {key}", task_key=key,
                )

        with self._task_locks.hold(key):
            with self._lock:
                task = self._tasks.get(key)
                if task is None:
                    return self._reject(
                        "submit_result", LedgerErrorKind.NOT_FOUND,
                        f"Task not found: {key}", task_key=key,
                    )
                assignee = self._assignments.get(key)
                if assignee is None or claimant != assignee:
                    return self._reject(
                        "submit_result", LedgerErrorKind.NOT_ASSIGNED_WORKER,
                        f"{claimant_identity!r} is not the assigned worker for {key}",
                        task_key=key,
                    )
                if task.is_completed:
                    return self._reject(
                        "submit_result", LedgerErrorKind.ALREADY_COMPLETED,
                        f"Task already completed: {key}", task_key=key,
                    )
                if now > task.deadline:
                    return self._reject(
                        "submit_result", LedgerErrorKind.DEADLINE_EXCEEDED,
                        f"Deadline {task.deadline.isoformat()} has passed", task_key=key,
                    )
                handle = task.ciphertext_handle

            # Verification runs outside the store lock. The key lock
            # keeps any competing submission for this task waiting.
            outcome = self._authorizer.authorize([handle], cleartext_encoding, proof)
            if not outcome.success:
                if outcome.service_failure or outcome.error_kind == VerificationErrorKind.TIMEOUT:
                    kind = LedgerErrorKind.CRYPTO_UNAVAILABLE
                else:
                    kind = LedgerErrorKind.INVALID_PROOF
                detail = outcome.error_kind.value if outcome.error_kind else "service_failure"
                log.info(
                    "operation_rejected", operation="submit_result",
                    error_kind=kind.value, verification_error=detail, task_key=key,
                )
                return ServiceResult(
                    success=False,
                    errors=list(outcome.errors),
                    data={"verification_error": detail},
                    error_kind=kind,
                )

            with self._lock:
                worker = self._workers.get(assignee)
                if worker is None:
                    raise StateCorruptionError(
                        f"Assignee {assignee} of task {key} is not in the worker registry"
                    )
                prior_phase = task.phase
                prior_completed_utc = task.completed_utc
                prior_reputation = worker.reputation
                prior_completed_tasks = worker.completed_tasks

                errors = TaskStateMachine.apply_transition(task, TaskPhase.COMPLETED)
                if errors:
                    return self._reject(
                        "submit_result", LedgerErrorKind.ALREADY_COMPLETED,
                        "; ".join(errors), task_key=key,
                    )
                task.disclosed_value = outcome.values[0]
                task.completed_utc = now
                self._workers.credit_completion(assignee, self._reputation_delta)

                err = self._record_event(
                    EventKind.TASK_COMPLETED,
                    actor_id=assignee,
                    payload={
                        "task_key": key,
                        "worker": assignee,
                        "ciphertext_handle": handle,
                    },
                )
                if err:
                    task.phase = prior_phase
                    task.disclosed_value = None
                    task.completed_utc = prior_completed_utc
                    worker.reputation = prior_reputation
                    worker.completed_tasks = prior_completed_tasks
                    return self._reject(
                        "submit_result", LedgerErrorKind.PERSISTENCE_FAILURE, err, task_key=key,
                    )

                warning = self._safe_persist_post_audit()
                data = task.to_dict(assignee=assignee)
                data["worker"] = worker.to_dict()

        if warning:
            data["warning"] = warning
        log.info("task_completed", task_key=key, worker=assignee)
        return ServiceResult(success=True, data=data)

    # ------------------------------------------------------------------
    # Query façade
    # ------------------------------------------------------------------

    def get_task(self, key: str) -> ServiceResult:
        with self._lock:
            task = self._tasks.get(key)
            if task is None:
                return ServiceResult(
                    success=False,
                    errors=[f"Task not found: {key}"],
                    error_kind=LedgerErrorKind.NOT_FOUND,
                )
            return ServiceResult(
                success=True, data=task.to_dict(assignee=self._assignments.get(key)),
            )

    def get_worker(self, identity: str) -> ServiceResult:
        with self._lock:
            worker = self._workers.get(identity) if isinstance(identity, str) else None
            if worker is None:
                return ServiceResult(
                    success=False,
                    errors=[f"Worker not found: {identity}"],
                    error_kind=LedgerErrorKind.NOT_FOUND,
                )
            return ServiceResult(success=True, data=worker.to_dict())

    def list_task_keys(self) -> ServiceResult:
        """Task keys in creation order."""
        with self._lock:
            return ServiceResult(success=True, data={"task_keys": list(self._tasks)})

    def list_worker_identities(self) -> ServiceResult:
        """Worker identities in registration order."""
        with self._lock:
            return ServiceResult(
                success=True, data={"worker_identities": self._workers.identities()},
            )

    def list_tasks_by_requester(self, identity: str) -> ServiceResult:
        """All tasks created by one requester, in creation order."""
        requester = normalize_identity(identity) if isinstance(identity, str) else ""
        with self._lock:
            tasks = [
                t.to_dict(assignee=self._assignments.get(t.key))
                for t in self._tasks.values()
                if t.requester == requester
            ]
        return ServiceResult(success=True, data={"tasks": tasks})

    def search_tasks(
        self,
        phase: Optional[TaskPhase] = None,
        text: Optional[str] = None,
    ) -> ServiceResult:
        """Filter tasks by phase and by case-insensitive title/description text."""
        needle = text.strip().lower() if text else ""
        with self._lock:
            tasks = []
            for task in self._tasks.values():
                if phase is not None and task.phase != phase:
                    continue
                if needle and needle not in task.title.lower() and needle not in task.description.lower():
                    continue
                tasks.append(task.to_dict(assignee=self._assignments.get(task.key)))
        return ServiceResult(success=True, data={"tasks": tasks})

    def subscribe(self, callback: EventSubscriber) -> Callable[[], None]:
        """Receive TASK_CREATED / TASK_ASSIGNED / TASK_COMPLETED events in commit order."""
        return self._event_log.subscribe(callback)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        with self._lock:
            return self._event_log.events(kind)

    def is_available(self) -> bool:
        """Liveness check: the ledger is usable while its crypto capability is healthy."""
        try:
            return bool(self._crypto.health_check())
        except Exception as e:
            log.warning("crypto_health_check_failed", error=str(e))
            return False

    def status(self) -> dict[str, Any]:
        """Return system-wide status summary."""
        with self._lock:
            completed = sum(1 for t in self._tasks.values() if t.is_completed)
            summary: dict[str, Any] = {
                "version": "0.1.0",
                "tasks": {
                    "total": len(self._tasks),
                    "active": len(self._tasks) - completed,
                    "completed": completed,
                    "assigned": len(self._assignments),
                    "total_reward": sum(t.reward_amount for t in self._tasks.values()),
                },
                "requesters": len({t.requester for t in self._tasks.values()}),
                "workers": {"total": self._workers.count},
                "events": self._event_log.count,
                "persistence_degraded": self._persistence_degraded,
            }
        # The health check may be slow; never hold the store lock across it
        summary["available"] = self.is_available()
        return summary

    def check_invariants(self) -> ServiceResult:
        """Audit the in-memory state against the ledger invariants."""
        violations: list[str] = []
        with self._lock:
            credited: dict[str, int] = {}
            for key, task in self._tasks.items():
                if task.is_active == task.is_completed:
                    violations.append(f"{key}: phase flags not mutually exclusive")
                record = self._handles.get(task.ciphertext_handle)
                if record is None or record.owner_key != key:
                    violations.append(f"{key}: ciphertext handle not bound to this task")
                elif not record.publicly_disclosable:
                    violations.append(f"{key}: handle missing disclosure capability")
                if task.is_completed:
                    assignee = self._assignments.get(key)
                    if assignee is None:
                        violations.append(f"{key}: completed without an assignee")
                    else:
                        credited[assignee] = credited.get(assignee, 0) + 1
                    if task.disclosed_value is None:
                        violations.append(f"{key}: completed without a disclosed value")
                elif task.disclosed_value is not None:
                    violations.append(f"{key}: active task has a disclosed value")

            for key, worker_id in self._assignments.items():
                if key not in self._tasks:
                    violations.append(f"assignment for unknown task {key}")
                if not self._workers.is_registered(worker_id):
                    violations.append(f"{key}: assignee {worker_id} not registered")

            for worker in self._workers.all_workers():
                expected = credited.get(worker.identity, 0)
                if worker.completed_tasks != expected:
                    violations.append(
                        f"worker {worker.identity}: completed_tasks={worker.completed_tasks}, "
                        f"completed assignments={expected}"
                    )

            violations.extend(self._audit_event_log())

        return ServiceResult(
            success=not violations,
            errors=violations,
            data={"tasks_checked": len(self._tasks), "violations": len(violations)},
        )

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    def close(self) -> None:
        """Release the crypto worker threads."""
        self._authorizer.close()
        self._crypto_calls.close()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _handle_is_disclosable(self, handle: str) -> bool:
        with self._lock:
            return self._handles.is_publicly_disclosable(handle)

    def _reject(
        self,
        operation: str,
        kind: LedgerErrorKind,
        message: str,
        **context: Any,
    ) -> ServiceResult:
        log.info("operation_rejected", operation=operation, error_kind=kind.value, **context)
        return ServiceResult(success=False, errors=[message], error_kind=kind)

    def _restore(self, snapshot: LedgerSnapshot) -> None:
        """Rebuild in-memory state from a snapshot, verifying its consistency."""
        try:
            self._workers = WorkerRegistry(snapshot.workers)
            self._handles = CiphertextHandleRegistry(snapshot.handles)
        except ValueError as e:
            raise StateCorruptionError(f"Inconsistent state snapshot: {e}") from e

        self._tasks = {}
        for task in snapshot.tasks:
            if task.key in self._tasks:
                raise StateCorruptionError(f"Duplicate task key in snapshot: {task.key}")
            record = self._handles.get(task.ciphertext_handle)
            if record is None or record.owner_key != task.key:
                raise StateCorruptionError(
                    f"Task {task.key} references an unbound handle {task.ciphertext_handle}"
                )
            self._tasks[task.key] = task

        self._assignments = {}
        for key, worker_id in snapshot.assignments.items():
            if key not in self._tasks or not self._workers.is_registered(worker_id):
                raise StateCorruptionError(f"Dangling assignment in snapshot: {key} → {worker_id}")
            self._assignments[key] = worker_id

    def _audit_event_log(self) -> list[str]:
        """Compare in-memory state with every committed event.

        Each TASK_CREATED, TASK_ASSIGNED and TASK_COMPLETED must be
        reflected in the task records, and every completed task must
        have exactly one TASK_COMPLETED event. Returns violations.
        """
        violations: list[str] = []
        completions: dict[str, int] = {}
        for event in self._event_log.events():
            key = event.task_key
            task = self._tasks.get(key) if isinstance(key, str) else None
            if task is None:
                violations.append(
                    f"event {event.event_id} ({event.event_kind.value}) "
                    f"references unknown task {key}"
                )
                continue
            if event.event_kind == EventKind.TASK_CREATED:
                if event.payload.get("ciphertext_handle") != task.ciphertext_handle:
                    violations.append(f"{key}: handle differs from event {event.event_id}")
            elif event.event_kind == EventKind.TASK_ASSIGNED:
                if self._assignments.get(key) != event.payload.get("worker"):
                    violations.append(f"{key}: assignee differs from event {event.event_id}")
            elif event.event_kind == EventKind.TASK_COMPLETED:
                completions[key] = completions.get(key, 0) + 1
                if not task.is_completed:
                    violations.append(
                        f"{key}: event {event.event_id} completed the task "
                        f"but it is {task.phase.value}"
                    )

        for key, count in completions.items():
            if count > 1:
                violations.append(f"{key}: completed {count} times in the event log")
        for key, task in self._tasks.items():
            if task.is_completed and key not in completions:
                violations.append(f"{key}: completed without a TASK_COMPLETED event")
        return violations

    def _snapshot(self) -> LedgerSnapshot:
        return LedgerSnapshot(
            tasks=list(self._tasks.values()),
            assignments=dict(self._assignments),
            workers=self._workers.all_workers(),
            handles=self._handles.all_records(),
        )

    def _next_event_id(self) -> str:
        """Generate a monotonically increasing unique event ID."""
        self._event_counter += 1
        return f"EVT-{self._event_counter:08d}"

    def _record_event(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
    ) -> Optional[str]:
        """Append one audit event. Returns an error string or None.

        The append is the commit point of the calling mutation.
        """
        try:
            event = EventRecord.create(
                event_id=self._next_event_id(),
                event_kind=kind,
                actor_id=actor_id,
                payload=payload,
            )
            self._event_log.append(event)
        except (ValueError, OSError) as e:
            self._event_counter -= 1
            return f"Event log failure: {e}"
        return None

    def _persist_state(self) -> None:
        """Persist current state to the state store (if wired).

        NOTE: This method can raise OSError. Mutators use _safe_persist()
        or _safe_persist_post_audit() instead.
        """
        if self._state_store is None:
            return
        self._state_store.save(self._snapshot())

    def _safe_persist(
        self,
        on_rollback: Optional[Callable[[], None]] = None,
    ) -> Optional[str]:
        """Persist state with fail-closed error handling (no audit event).

        On failure, runs the rollback callback and returns an error string.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            if on_rollback is not None:
                on_rollback()
            return f"Persistence failure: {e}"

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist state after the audit event has been committed.

        MUST NOT rollback in-memory state — the audit trail is already
        durable. Sets the degraded flag and returns a warning instead.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            log.error("state_persist_degraded", error=str(e))
            return f"Persistence degraded: {e}; state committed in audit trail but StateStore is stale"


def _is_aware(value: Any) -> bool:
    return isinstance(value, datetime) and value.tzinfo is not None and value.utcoffset() is not None
