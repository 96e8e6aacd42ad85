"""ABI codec for handles, cleartexts, and opening proofs.

All byte-level bindings use Solidity ABI encoding so that proofs
produced by on-chain tooling verify here unchanged:

- A handle is a bytes32.
- A cleartext encoding is the ABI encoding of one uint256 word per
  handle, in handle order.
- An opening proof is abi.encode(bytes32[] handles, bytes[] signatures).
- Signers sign keccak256(abi.encode(bytes32[] handles, bytes cleartexts))
  as an EIP-191 personal message.
"""

from __future__ import annotations

from typing import Sequence

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError, EncodingError
from web3 import Web3

from sealedtask.errors import VerificationError, VerificationErrorKind
from sealedtask.models.ciphertext import normalize_handle

UINT32_MAX = 2**32 - 1
HANDLE_DOMAIN = b"sealedtask:handle:"


def handle_to_bytes(handle: str) -> bytes:
    canonical = normalize_handle(handle)
    if canonical is None:
        raise ValueError(f"Malformed ciphertext handle: {handle!r}")
    return bytes.fromhex(canonical[2:])


def bytes_to_handle(raw: bytes) -> str:
    return "0x" + bytes(raw).hex()


def derive_handle(ciphertext: bytes) -> str:
    """Deterministic handle for a ciphertext blob."""
    return bytes_to_handle(Web3.keccak(HANDLE_DOMAIN + ciphertext))


def ingest_digest(ciphertext: bytes) -> bytes:
    """Digest an input verifier signs to vouch for a ciphertext."""
    return bytes(Web3.keccak(ciphertext))


def encode_cleartexts(values: Sequence[int]) -> bytes:
    for value in values:
        if not 0 <= value <= UINT32_MAX:
            raise ValueError(f"Cleartext out of uint32 range: {value}")
    return encode(["uint256"] * len(values), list(values))


def decode_cleartexts(data: bytes, count: int) -> list[int]:
    """Parse one uint32 cleartext per handle.

    Raises VerificationError(MALFORMED) on any length, padding, or
    range violation.
    """
    if count <= 0:
        raise VerificationError(VerificationErrorKind.MALFORMED, "No handles to open")
    if len(data) != 32 * count:
        raise VerificationError(
            VerificationErrorKind.MALFORMED,
            f"Cleartext encoding is {len(data)} bytes, expected {32 * count}",
        )
    try:
        values = list(decode(["uint256"] * count, data))
    except DecodingError as e:
        raise VerificationError(VerificationErrorKind.MALFORMED, f"Bad cleartext encoding: {e}") from e
    for value in values:
        if value > UINT32_MAX:
            raise VerificationError(
                VerificationErrorKind.MALFORMED,
                f"Cleartext out of uint32 range: {value}",
            )
    return values


def opening_digest(handles: Sequence[str], cleartext_encoding: bytes) -> bytes:
    """The message KMS signers sign for an opening, bound to handle order."""
    payload = encode(
        ["bytes32[]", "bytes"],
        [[handle_to_bytes(h) for h in handles], cleartext_encoding],
    )
    return bytes(Web3.keccak(payload))


def encode_opening_proof(handles: Sequence[str], signatures: Sequence[bytes]) -> bytes:
    return encode(
        ["bytes32[]", "bytes[]"],
        [[handle_to_bytes(h) for h in handles], [bytes(s) for s in signatures]],
    )


def decode_opening_proof(proof: bytes) -> tuple[list[str], list[bytes]]:
    """Split an opening proof into its handles and signatures.

    Raises VerificationError(MALFORMED) if the proof does not parse.
    """
    try:
        raw_handles, signatures = decode(["bytes32[]", "bytes[]"], proof)
    except (DecodingError, EncodingError, ValueError) as e:
        raise VerificationError(VerificationErrorKind.MALFORMED, f"Bad opening proof: {e}") from e
    if not raw_handles or not signatures:
        raise VerificationError(
            VerificationErrorKind.MALFORMED,
            "Opening proof carries no handles or no signatures",
        )
    return [bytes_to_handle(h) for h in raw_handles], [bytes(s) for s in signatures]
