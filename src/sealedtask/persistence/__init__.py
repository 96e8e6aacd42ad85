"""Durable storage — append-only event log and state snapshots."""

from sealedtask.persistence.event_log import EventKind, EventLog, EventRecord
from sealedtask.persistence.state_store import LedgerSnapshot, StateStore

__all__ = ["EventKind", "EventLog", "EventRecord", "LedgerSnapshot", "StateStore"]
