"""Decryption authorization protocol — proof-gated disclosure.

Binds a disclosure claim to exactly the ciphertext handles that were
committed when the task was created:

1. Every handle must carry the public-disclosure capability granted at
   task creation (NOT_DISCLOSABLE otherwise).
2. The claimed cleartext encoding and the proof must be raw bytes, and
   the encoding must parse into one uint32 per handle, slot i binding
   to handle i (MALFORMED otherwise).
3. The cryptographic service verifies the proof against its trusted key
   material (SIGNATURE_INVALID / HANDLE_MISMATCH / MALFORMED).
4. The values the service vouches for must be exactly the claimed
   values for exactly the given handles (HANDLE_MISMATCH otherwise).

The authorizer holds no per-call state and consumes no nonces: an
accepted (handles, cleartexts, proof) triple is accepted again on every
call. One-shot completion is the ledger's concern.

The service call is bounded by a timeout. A timed-out or crashed call
yields a failed outcome; nothing is committed by this module.
"""

from __future__ import annotations

import concurrent.futures
from dataclasses import dataclass, field
from typing import Callable, Optional, Sequence

import structlog

from sealedtask.crypto.codec import decode_cleartexts
from sealedtask.crypto.executor import BoundedExecutor
from sealedtask.crypto.service import CryptoService
from sealedtask.errors import (
    LedgerStartupError,
    VerificationError,
    VerificationErrorKind,
)
from sealedtask.models.ciphertext import normalize_handle

log = structlog.get_logger(__name__)

_BYTES_TYPES = (bytes, bytearray, memoryview)


@dataclass(frozen=True)
class DisclosureOutcome:
    """Result of one authorization attempt."""
    success: bool
    values: tuple[int, ...] = ()
    error_kind: Optional[VerificationErrorKind] = None
    errors: list[str] = field(default_factory=list)
    service_failure: bool = False

    @staticmethod
    def rejected(kind: VerificationErrorKind, message: str) -> DisclosureOutcome:
        return DisclosureOutcome(success=False, error_kind=kind, errors=[message])


class DecryptionAuthorizer:
    """Verifies opening proofs before any cleartext reaches the ledger.

    Usage:
        authorizer = DecryptionAuthorizer(crypto, registry.is_publicly_disclosable)
        outcome = authorizer.authorize([task.ciphertext_handle], cleartexts, proof)
        if outcome.success:
            value = outcome.values[0]
    """

    def __init__(
        self,
        crypto_service: CryptoService,
        is_disclosable: Callable[[str], bool],
        timeout_seconds: float = 10.0,
        executor: Optional[BoundedExecutor] = None,
    ) -> None:
        if crypto_service is None or not isinstance(crypto_service, CryptoService):
            raise LedgerStartupError("A cryptographic service capability is required")
        self._crypto = crypto_service
        self._is_disclosable = is_disclosable
        # A shared executor belongs to the caller and is closed by it
        self._owns_executor = executor is None
        self._executor = executor if executor is not None else BoundedExecutor(timeout_seconds)

    @property
    def timeout_seconds(self) -> float:
        return self._executor.timeout_seconds

    def authorize(
        self,
        handles: Sequence[str],
        cleartext_encoding: bytes,
        proof: bytes,
    ) -> DisclosureOutcome:
        """Verify that `cleartext_encoding` opens `handles` under `proof`."""
        if not isinstance(cleartext_encoding, _BYTES_TYPES) or not isinstance(proof, _BYTES_TYPES):
            return DisclosureOutcome.rejected(
                VerificationErrorKind.MALFORMED,
                "Cleartext encoding and proof must be raw bytes, "
                f"got {type(cleartext_encoding).__name__} and {type(proof).__name__}",
            )
        if not handles:
            return DisclosureOutcome.rejected(
                VerificationErrorKind.MALFORMED, "No handles to open",
            )

        expected: list[str] = []
        for handle in handles:
            canonical = normalize_handle(handle) if isinstance(handle, str) else None
            if canonical is None:
                return DisclosureOutcome.rejected(
                    VerificationErrorKind.MALFORMED, f"Malformed handle: {handle!r}",
                )
            if not self._is_disclosable(canonical):
                return DisclosureOutcome.rejected(
                    VerificationErrorKind.NOT_DISCLOSABLE,
                    f"Handle is not publicly disclosable: {canonical}",
                )
            expected.append(canonical)

        cleartext_encoding = bytes(cleartext_encoding)
        try:
            claimed = decode_cleartexts(cleartext_encoding, len(expected))
        except VerificationError as e:
            return DisclosureOutcome.rejected(e.kind, str(e))

        try:
            opened = self._executor.run(
                self._crypto.verify_opening, list(expected), cleartext_encoding, bytes(proof),
            )
        except concurrent.futures.TimeoutError:
            log.warning("opening_verification_timeout", timeout_seconds=self.timeout_seconds)
            return DisclosureOutcome.rejected(
                VerificationErrorKind.TIMEOUT,
                f"Cryptographic service did not answer within {self.timeout_seconds}s",
            )
        except VerificationError as e:
            return DisclosureOutcome.rejected(e.kind, str(e))
        except Exception as e:
            log.error("opening_verification_failed", error=str(e), error_type=type(e).__name__)
            return _service_failure(f"Cryptographic service failure: {e}")

        if not isinstance(opened, dict):
            log.error("opening_verification_failed", error_type=type(opened).__name__)
            return _service_failure(
                f"Cryptographic service returned {type(opened).__name__}, expected a mapping",
            )
        opened_canonical = {
            normalize_handle(h) if isinstance(h, str) else None: v for h, v in opened.items()
        }
        if set(opened_canonical) != set(expected):
            return DisclosureOutcome.rejected(
                VerificationErrorKind.HANDLE_MISMATCH,
                "Verified openings do not cover exactly the committed handles",
            )
        values = tuple(opened_canonical[h] for h in expected)
        if list(values) != claimed:
            return DisclosureOutcome.rejected(
                VerificationErrorKind.HANDLE_MISMATCH,
                "Verified openings differ from the claimed cleartexts",
            )
        return DisclosureOutcome(success=True, values=values)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.close()


def _service_failure(message: str) -> DisclosureOutcome:
    return DisclosureOutcome(success=False, errors=[message], service_failure=True)
