"""Ciphertext handle registry — authorization flags for opaque handles.

The registry owns the mapping from handle to authorization state.
Tasks reference handles; they do not own this state. Membership is
append-only: a handle, once bound to a task, stays bound for the
lifetime of the ledger and is never bound to a second task.

Thread-safety: this class is not thread-safe. The service layer
serialises access.
"""

from __future__ import annotations

from typing import Optional

from sealedtask.models.ciphertext import HandleRecord, normalize_handle


class CiphertextHandleRegistry:
    """Append-only store of handle authorization records."""

    def __init__(self, records: Optional[list[HandleRecord]] = None) -> None:
        self._records: dict[str, HandleRecord] = {}
        for record in records or []:
            self.register(record.handle, record.owner_key)
            if record.publicly_disclosable:
                self.mark_publicly_disclosable(record.handle)

    def register(self, handle: str, owner_key: str) -> HandleRecord:
        """Bind a handle to the task that owns it.

        Raises ValueError if the handle is malformed or already bound.
        """
        canonical = normalize_handle(handle)
        if canonical is None:
            raise ValueError(f"Malformed ciphertext handle: {handle!r}")
        if canonical in self._records:
            raise ValueError(
                f"Ciphertext handle already bound to task "
                f"{self._records[canonical].owner_key}: {canonical}"
            )
        record = HandleRecord(handle=canonical, owner_key=owner_key)
        self._records[canonical] = record
        return record

    def rollback_registration(self, handle: str) -> None:
        """Undo a registration whose enclosing mutation failed to commit."""
        canonical = normalize_handle(handle)
        if canonical is not None:
            self._records.pop(canonical, None)

    def mark_publicly_disclosable(self, handle: str) -> None:
        """Grant the one-time capability to publish a verified opening.

        Raises ValueError for an unknown handle.
        """
        record = self.get(handle)
        if record is None:
            raise ValueError(f"Unknown ciphertext handle: {handle}")
        record.publicly_disclosable = True

    def is_publicly_disclosable(self, handle: str) -> bool:
        record = self.get(handle)
        return record is not None and record.publicly_disclosable

    def contains(self, handle: str) -> bool:
        return self.get(handle) is not None

    def get(self, handle: str) -> Optional[HandleRecord]:
        canonical = normalize_handle(handle)
        if canonical is None:
            return None
        return self._records.get(canonical)

    def all_records(self) -> list[HandleRecord]:
        return list(self._records.values())

    @property
    def count(self) -> int:
        return len(self._records)
