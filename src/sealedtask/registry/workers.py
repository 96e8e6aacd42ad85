"""Worker registry — identities, reputation, and completion counters.

Registration is rejecting, not idempotent: registering an identity a
second time fails. Records are never removed, and iteration follows
registration order.

Thread-safety: this class is not thread-safe. The service layer
serialises access.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from web3 import Web3

from sealedtask.models.worker import WorkerRecord


def normalize_identity(identity: str) -> str:
    """Canonical form of a worker or requester identity.

    Ethereum addresses are checksummed so that differently-cased
    spellings of one address compare equal. Anything else is only
    stripped of surrounding whitespace.
    """
    canonical = identity.strip()
    if Web3.is_address(canonical):
        return Web3.to_checksum_address(canonical)
    return canonical


class WorkerRegistry:
    """Append-only store of worker records."""

    def __init__(self, records: Optional[list[WorkerRecord]] = None) -> None:
        self._workers: dict[str, WorkerRecord] = {}
        for record in records or []:
            if record.identity in self._workers:
                raise ValueError(f"Duplicate worker in snapshot: {record.identity}")
            self._workers[record.identity] = record

    def register(
        self,
        identity: str,
        now: Optional[datetime] = None,
    ) -> WorkerRecord:
        """Register a new worker.

        Raises ValueError if the identity is blank or already registered.
        """
        canonical = normalize_identity(identity)
        if not canonical:
            raise ValueError("Cannot register worker with blank identity")
        if canonical in self._workers:
            raise ValueError(f"Worker already registered: {canonical}")
        record = WorkerRecord(
            identity=canonical,
            registered_utc=now or datetime.now(timezone.utc),
        )
        self._workers[canonical] = record
        return record

    def rollback_registration(self, identity: str) -> None:
        """Undo a registration whose enclosing mutation failed to commit."""
        self._workers.pop(normalize_identity(identity), None)

    def get(self, identity: str) -> Optional[WorkerRecord]:
        return self._workers.get(normalize_identity(identity))

    def is_registered(self, identity: str) -> bool:
        return self.get(identity) is not None

    def credit_completion(self, identity: str, reputation_delta: int) -> WorkerRecord:
        """Count one completed task and raise reputation by a fixed delta."""
        if reputation_delta < 0:
            raise ValueError("Reputation delta must be non-negative")
        record = self.get(identity)
        if record is None:
            raise ValueError(f"Worker not registered: {identity}")
        record.completed_tasks += 1
        record.reputation += reputation_delta
        return record

    def identities(self) -> list[str]:
        """Registered identities in registration order."""
        return list(self._workers)

    def all_workers(self) -> list[WorkerRecord]:
        return list(self._workers.values())

    @property
    def count(self) -> int:
        return len(self._workers)
