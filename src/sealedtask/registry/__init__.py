"""Keyed registries owned by the ledger: ciphertext handles and workers."""

from sealedtask.registry.handles import CiphertextHandleRegistry
from sealedtask.registry.workers import WorkerRegistry, normalize_identity

__all__ = ["CiphertextHandleRegistry", "WorkerRegistry", "normalize_identity"]
