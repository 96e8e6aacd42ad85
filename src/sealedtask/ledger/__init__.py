"""Task ledger primitives — phase transitions and per-key serialisation."""

from sealedtask.ledger.locks import KeyedLockTable
from sealedtask.ledger.state_machine import TaskStateMachine

__all__ = ["KeyedLockTable", "TaskStateMachine"]
