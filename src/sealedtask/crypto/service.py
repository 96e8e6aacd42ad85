"""Cryptographic service contract — the boundary to the encryption scheme.

The ledger never encrypts, adds, or decrypts anything itself. It
consumes a cryptographic service through this Protocol:

- ingest() validates freshly submitted ciphertext material and
  returns the opaque handle the ledger will store.
- verify_opening() checks that claimed cleartexts are the correct
  openings of the given handles, in order, and returns them keyed by
  handle.

Adding a new backend = implement this Protocol. Zero changes to the
ledger or the decryption authorizer.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable


@runtime_checkable
class CryptoService(Protocol):
    """Abstract contract for the homomorphic-encryption backend."""

    def ingest(self, ciphertext: bytes, input_proof: bytes) -> str:
        """Validate and register a ciphertext; return its handle.

        Raises IngestError for malformed or unauthenticated material.
        """
        ...

    def verify_opening(
        self,
        handles: Sequence[str],
        cleartext_encoding: bytes,
        proof: bytes,
    ) -> dict[str, int]:
        """Verify an opening proof; return {handle: cleartext}.

        Raises VerificationError. Must be free of side effects: the same
        accepted triple verifies again on every call.
        """
        ...

    def health_check(self) -> bool:
        """Returns True if the service is currently operational."""
        ...
