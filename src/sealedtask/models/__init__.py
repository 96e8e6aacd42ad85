"""Core data models for the encrypted-task ledger."""

from sealedtask.models.ciphertext import (
    CiphertextIngestRequest,
    HandleRecord,
    normalize_handle,
)
from sealedtask.models.task import EncryptedTask, TaskPhase
from sealedtask.models.worker import WorkerRecord

__all__ = [
    "CiphertextIngestRequest",
    "EncryptedTask",
    "HandleRecord",
    "TaskPhase",
    "WorkerRecord",
    "normalize_handle",
]
