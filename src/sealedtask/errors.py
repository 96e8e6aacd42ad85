"""Error taxonomy for the encrypted-task ledger.

Expected conditions never raise out of the service layer: they are
reported through ServiceResult.error_kind using LedgerErrorKind.
Exceptions in this module are used at two seams only:

1. The cryptographic service adapter raises IngestError and
   VerificationError; the ledger and the decryption authorizer
   convert them into typed results.
2. Fatal-class conditions (missing crypto capability, corrupt
   persisted state) raise at construction time so the ledger never
   starts in a degraded state.
"""

from __future__ import annotations

import enum


class LedgerErrorKind(str, enum.Enum):
    """Why a ledger operation was rejected."""
    DUPLICATE_KEY = "duplicate_key"
    ALREADY_REGISTERED = "already_registered"
    NOT_FOUND = "not_found"
    NOT_ACTIVE = "not_active"
    ALREADY_ASSIGNED = "already_assigned"
    WORKER_NOT_REGISTERED = "worker_not_registered"
    NOT_ASSIGNED_WORKER = "not_assigned_worker"
    ALREADY_COMPLETED = "already_completed"
    DEADLINE_EXCEEDED = "deadline_exceeded"
    INVALID_CIPHERTEXT = "invalid_ciphertext"
    INVALID_PROOF = "invalid_proof"
    INVALID_ARGUMENT = "invalid_argument"
    CRYPTO_UNAVAILABLE = "crypto_unavailable"
    PERSISTENCE_FAILURE = "persistence_failure"


class VerificationErrorKind(str, enum.Enum):
    """Why a disclosure proof was rejected."""
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    HANDLE_MISMATCH = "handle_mismatch"
    NOT_DISCLOSABLE = "not_disclosable"
    TIMEOUT = "timeout"


class IngestError(Exception):
    """The cryptographic service refused a ciphertext ingest request."""


class VerificationError(Exception):
    """The cryptographic service refused an opening proof."""

    def __init__(self, kind: VerificationErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class LedgerStartupError(RuntimeError):
    """The ledger cannot start: a required capability is missing."""


class StateCorruptionError(RuntimeError):
    """Persisted ledger state failed to parse or failed an integrity check."""
