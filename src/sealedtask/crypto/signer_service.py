"""Threshold-signer cryptographic service adapter.

Verifies the two kinds of evidence the encryption backend produces:

1. Input proofs: an input verifier's secp256k1 signature over the
   keccak256 digest of a freshly encrypted ciphertext. A valid input
   proof means the ciphertext was produced by a well-formed client
   encryption, and the handle is derived from the ciphertext itself.
2. Opening proofs: signatures from the key-management signers over
   the ABI binding of (handles, cleartexts). An opening is accepted
   when at least `threshold` distinct trusted signers signed it.

The trusted addresses are the verification key material. They are
supplied at construction and never generated here. Verification is a
pure function of its inputs: nothing is consumed, so an accepted
triple verifies again on every call.
"""

from __future__ import annotations

from typing import Sequence

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from web3 import Web3

from sealedtask.crypto.codec import (
    decode_cleartexts,
    decode_opening_proof,
    derive_handle,
    ingest_digest,
    opening_digest,
)
from sealedtask.errors import IngestError, VerificationError, VerificationErrorKind
from sealedtask.models.ciphertext import normalize_handle

SIGNATURE_LENGTH = 65


def _checksum_all(addresses: Sequence[str], label: str) -> frozenset[str]:
    result = set()
    for address in addresses:
        if not Web3.is_address(address):
            raise ValueError(f"Invalid {label} address: {address!r}")
        result.add(Web3.to_checksum_address(address))
    return frozenset(result)


def recover_signer(digest: bytes, signature: bytes) -> str | None:
    """Recover the address that signed `digest`, or None if unrecoverable."""
    if len(signature) != SIGNATURE_LENGTH:
        return None
    try:
        return Account.recover_message(encode_defunct(primitive=digest), signature=signature)
    except (BadSignature, KeyValidationError, ValueError, TypeError):
        return None


class ThresholdSignerCryptoService:
    """CryptoService backed by trusted signer addresses.

    Usage:
        service = ThresholdSignerCryptoService(
            kms_signers=["0xAbc...", "0xDef..."],
            threshold=2,
            input_verifiers=["0x123..."],
        )
        handle = service.ingest(ciphertext, input_proof)
        values = service.verify_opening([handle], cleartexts, proof)
    """

    def __init__(
        self,
        kms_signers: Sequence[str],
        threshold: int,
        input_verifiers: Sequence[str],
    ) -> None:
        self._kms_signers = _checksum_all(kms_signers, "KMS signer")
        self._input_verifiers = _checksum_all(input_verifiers, "input verifier")
        if not self._kms_signers:
            raise ValueError("At least one KMS signer address is required")
        if not self._input_verifiers:
            raise ValueError("At least one input verifier address is required")
        if not 1 <= threshold <= len(self._kms_signers):
            raise ValueError(
                f"Signer threshold must be in [1, {len(self._kms_signers)}], got {threshold}"
            )
        self._threshold = threshold

    @property
    def threshold(self) -> int:
        return self._threshold

    @property
    def kms_signers(self) -> frozenset[str]:
        return self._kms_signers

    def ingest(self, ciphertext: bytes, input_proof: bytes) -> str:
        if not ciphertext:
            raise IngestError("Empty ciphertext")
        signer = recover_signer(ingest_digest(ciphertext), bytes(input_proof))
        if signer is None:
            raise IngestError("Input proof is not a valid signature")
        if signer not in self._input_verifiers:
            raise IngestError(f"Input proof signed by untrusted address {signer}")
        return derive_handle(ciphertext)

    def verify_opening(
        self,
        handles: Sequence[str],
        cleartext_encoding: bytes,
        proof: bytes,
    ) -> dict[str, int]:
        expected: list[str] = []
        for handle in handles:
            canonical = normalize_handle(handle)
            if canonical is None:
                raise VerificationError(
                    VerificationErrorKind.MALFORMED, f"Malformed handle: {handle!r}",
                )
            expected.append(canonical)

        proof_handles, signatures = decode_opening_proof(bytes(proof))
        if proof_handles != expected:
            raise VerificationError(
                VerificationErrorKind.HANDLE_MISMATCH,
                f"Proof is bound to handles {proof_handles}, expected {expected}",
            )

        values = decode_cleartexts(bytes(cleartext_encoding), len(expected))
        digest = opening_digest(expected, bytes(cleartext_encoding))

        approvals: set[str] = set()
        for signature in signatures:
            signer = recover_signer(digest, signature)
            if signer is not None and signer in self._kms_signers:
                approvals.add(signer)
        if len(approvals) < self._threshold:
            raise VerificationError(
                VerificationErrorKind.SIGNATURE_INVALID,
                f"Opening approved by {len(approvals)} trusted signer(s), "
                f"threshold is {self._threshold}",
            )
        return dict(zip(expected, values))

    def health_check(self) -> bool:
        return bool(self._kms_signers) and bool(self._input_verifiers)
