"""Tests for the threshold-signer crypto service and its ABI codec."""

import pytest
from eth_abi import encode
from eth_account import Account

from conftest import KMS_KEYS, OUTSIDER_KEY, sign_digest
from sealedtask.crypto.codec import (
    UINT32_MAX,
    decode_cleartexts,
    decode_opening_proof,
    derive_handle,
    encode_cleartexts,
    encode_opening_proof,
    ingest_digest,
    opening_digest,
)
from sealedtask.crypto.service import CryptoService
from sealedtask.crypto.signer_service import ThresholdSignerCryptoService, recover_signer
from sealedtask.errors import IngestError, VerificationError, VerificationErrorKind


class TestConstruction:
    def test_satisfies_protocol(self, crypto) -> None:
        assert isinstance(crypto, CryptoService)
        assert crypto.health_check()

    def test_requires_signers(self, kms) -> None:
        with pytest.raises(ValueError):
            ThresholdSignerCryptoService([], 1, kms.input_verifier_addresses)

    def test_requires_input_verifiers(self, kms) -> None:
        with pytest.raises(ValueError):
            ThresholdSignerCryptoService(kms.kms_addresses, 1, [])

    def test_rejects_invalid_address(self, kms) -> None:
        with pytest.raises(ValueError):
            ThresholdSignerCryptoService(["not-an-address"], 1, kms.input_verifier_addresses)

    def test_threshold_bounds(self, kms) -> None:
        with pytest.raises(ValueError):
            ThresholdSignerCryptoService(kms.kms_addresses, 0, kms.input_verifier_addresses)
        with pytest.raises(ValueError):
            ThresholdSignerCryptoService(kms.kms_addresses, 4, kms.input_verifier_addresses)

    def test_lowercase_addresses_accepted(self, kms) -> None:
        service = ThresholdSignerCryptoService(
            [a.lower() for a in kms.kms_addresses], 2, kms.input_verifier_addresses,
        )
        assert service.kms_signers == frozenset(kms.kms_addresses)


class TestIngest:
    def test_returns_derived_handle(self, crypto, kms) -> None:
        request = kms.seal(10)
        handle = crypto.ingest(request.ciphertext, request.input_proof)
        assert handle == derive_handle(request.ciphertext)
        assert handle.startswith("0x") and len(handle) == 66

    def test_untrusted_verifier(self, crypto, kms) -> None:
        request = kms.seal(10, signer_key=OUTSIDER_KEY)
        with pytest.raises(IngestError):
            crypto.ingest(request.ciphertext, request.input_proof)

    def test_proof_for_other_ciphertext(self, crypto, kms) -> None:
        request = kms.seal(10)
        with pytest.raises(IngestError):
            crypto.ingest(request.ciphertext + b"\x00", request.input_proof)

    def test_short_signature(self, crypto) -> None:
        with pytest.raises(IngestError):
            crypto.ingest(b"ciphertext", b"\x01" * 10)

    def test_empty_ciphertext(self, crypto) -> None:
        with pytest.raises(IngestError):
            crypto.ingest(b"", b"\x00" * 65)


class TestVerifyOpening:
    def _handle(self, crypto, kms, value: int) -> str:
        request = kms.seal(value)
        return crypto.ingest(request.ciphertext, request.input_proof)

    def test_threshold_met(self, crypto, kms) -> None:
        handle = self._handle(crypto, kms, 7)
        cleartexts, proof = kms.open([handle])
        assert crypto.verify_opening([handle], cleartexts, proof) == {handle: 7}

    def test_duplicate_signer_counts_once(self, crypto, kms) -> None:
        handle = self._handle(crypto, kms, 7)
        cleartexts, proof = kms.open([handle], signer_keys=[KMS_KEYS[0], KMS_KEYS[0]])
        with pytest.raises(VerificationError) as exc:
            crypto.verify_opening([handle], cleartexts, proof)
        assert exc.value.kind == VerificationErrorKind.SIGNATURE_INVALID

    def test_all_three_signers(self, crypto, kms) -> None:
        handle = self._handle(crypto, kms, 0)
        cleartexts, proof = kms.open([handle], signer_keys=KMS_KEYS)
        assert crypto.verify_opening([handle], cleartexts, proof) == {handle: 0}

    def test_max_uint32_value(self, crypto, kms) -> None:
        handle = self._handle(crypto, kms, UINT32_MAX)
        cleartexts, proof = kms.open([handle])
        assert crypto.verify_opening([handle], cleartexts, proof) == {handle: UINT32_MAX}

    def test_handle_mismatch(self, crypto, kms) -> None:
        a = self._handle(crypto, kms, 1)
        b = self._handle(crypto, kms, 1)
        cleartexts, proof = kms.open([b])
        with pytest.raises(VerificationError) as exc:
            crypto.verify_opening([a], cleartexts, proof)
        assert exc.value.kind == VerificationErrorKind.HANDLE_MISMATCH

    def test_uppercase_handle_is_canonicalised(self, crypto, kms) -> None:
        handle = self._handle(crypto, kms, 4)
        cleartexts, proof = kms.open([handle])
        upper = "0x" + handle[2:].upper()
        assert crypto.verify_opening([upper], cleartexts, proof) == {handle: 4}

    def test_malformed_handle(self, crypto) -> None:
        with pytest.raises(VerificationError) as exc:
            crypto.verify_opening(["zz"], b"", b"")
        assert exc.value.kind == VerificationErrorKind.MALFORMED

    def test_garbage_signature_ignored(self, crypto, kms) -> None:
        handle = self._handle(crypto, kms, 1)
        cleartexts, _ = kms.open([handle])
        outsider = sign_digest(opening_digest([handle], cleartexts), OUTSIDER_KEY)
        proof = encode_opening_proof([handle], [outsider, b"\xff" * 3])
        with pytest.raises(VerificationError) as exc:
            crypto.verify_opening([handle], cleartexts, proof)
        assert exc.value.kind == VerificationErrorKind.SIGNATURE_INVALID


class TestCodec:
    def test_encode_rejects_out_of_range(self) -> None:
        with pytest.raises(ValueError):
            encode_cleartexts([UINT32_MAX + 1])
        with pytest.raises(ValueError):
            encode_cleartexts([-1])

    def test_decode_wrong_length(self) -> None:
        with pytest.raises(VerificationError) as exc:
            decode_cleartexts(encode(["uint256"], [1]), 2)
        assert exc.value.kind == VerificationErrorKind.MALFORMED

    def test_decode_out_of_range(self) -> None:
        with pytest.raises(VerificationError):
            decode_cleartexts(encode(["uint256"], [UINT32_MAX + 1]), 1)

    def test_decode_zero_count(self) -> None:
        with pytest.raises(VerificationError):
            decode_cleartexts(b"", 0)

    def test_empty_proof_lists_rejected(self) -> None:
        proof = encode(["bytes32[]", "bytes[]"], [[], []])
        with pytest.raises(VerificationError) as exc:
            decode_opening_proof(proof)
        assert exc.value.kind == VerificationErrorKind.MALFORMED

    def test_derive_handle_is_deterministic(self) -> None:
        assert derive_handle(b"abc") == derive_handle(b"abc")
        assert derive_handle(b"abc") != derive_handle(b"abd")

    def test_recover_signer(self) -> None:
        digest = ingest_digest(b"payload")
        signature = sign_digest(digest, KMS_KEYS[1])
        assert recover_signer(digest, signature) == Account.from_key(KMS_KEYS[1]).address
        assert recover_signer(digest, b"\x00" * 64) is None
