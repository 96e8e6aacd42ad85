"""Append-only event log — the canonical record of ledger mutations.

Every successful task creation, assignment, and completion produces
exactly one event record, appended to this log. Events are immutable
once written. The log serves as:
1. The commit point of each mutation (if the append fails, the
   mutation does not happen).
2. The audit trail for third-party verification.
3. The event stream delivered to subscribers, in commit order.
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

import structlog

from sealedtask.errors import StateCorruptionError

log = structlog.get_logger(__name__)

EventSubscriber = Callable[["EventRecord"], None]


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    TASK_CREATED = "task_created"
    TASK_ASSIGNED = "task_assigned"
    TASK_COMPLETED = "task_completed"


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the ledger log.

    The event_hash is computed at creation time over the canonical JSON
    of all other fields, and re-checked when the log is loaded.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str

    @property
    def task_key(self) -> Optional[str]:
        return self.payload.get("task_key")

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=_canonical_hash(event_id, event_kind.value, ts_str, actor_id, payload),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "event_hash": self.event_hash,
        }


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted. The log can
    be persisted to a JSONL file (one JSON object per line) and loaded
    back for recovery.

    Subscribers registered with subscribe() receive each event after it
    has been appended, synchronously and in append order.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()
        self._subscribers: list[EventSubscriber] = []

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log and notify subscribers.

        Raises ValueError if event_id is a duplicate (replay protection)
        and OSError if the file write fails. In both cases the event is
        not recorded and no subscriber is notified.
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        if self._storage_path:
            self._append_to_file(event)

        self._events.append(event)
        self._event_ids.add(event.event_id)
        self._notify(event)

    def subscribe(self, callback: EventSubscriber) -> Callable[[], None]:
        """Register a subscriber. Returns a callable that unsubscribes it."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    @property
    def count(self) -> int:
        return len(self._events)

    def _notify(self, event: EventRecord) -> None:
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                # The event is already committed; one failing observer
                # must not block the others.
                log.error(
                    "event_subscriber_failed",
                    event_id=event.event_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: unparseable lines, tampered records (hash mismatch)
        and duplicate event IDs raise StateCorruptionError.
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                    event_id = data["event_id"]
                    stored_hash = data["event_hash"]
                    kind = EventKind(data["event_kind"])
                    expected_hash = _canonical_hash(
                        event_id,
                        data["event_kind"],
                        data["timestamp_utc"],
                        data["actor_id"],
                        data["payload"],
                    )
                except (ValueError, KeyError, TypeError) as e:
                    raise StateCorruptionError(
                        f"Unreadable event record (line {line_num}): {e}"
                    ) from e

                if event_id in self._event_ids:
                    raise StateCorruptionError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )
                if stored_hash != expected_hash:
                    raise StateCorruptionError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {stored_hash} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=event_id,
                    event_kind=kind,
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=stored_hash,
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)
