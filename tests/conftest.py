"""Shared fixtures — a signer-backed stand-in for the encryption backend.

FakeKms plays both sides the ledger never implements: the client that
encrypts a value (producing ciphertext plus an input proof) and the
key-management signers that vouch for an opening. The ledger under
test only ever sees the real ThresholdSignerCryptoService.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Iterator, Optional, Sequence

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from sealedtask.crypto.codec import (
    derive_handle,
    encode_cleartexts,
    encode_opening_proof,
    ingest_digest,
    opening_digest,
)
from sealedtask.crypto.signer_service import ThresholdSignerCryptoService
from sealedtask.models.ciphertext import CiphertextIngestRequest
from sealedtask.service import TaskLedgerService

KMS_KEYS = ["0x" + "11" * 32, "0x" + "22" * 32, "0x" + "33" * 32]
INPUT_VERIFIER_KEY = "0x" + "44" * 32
OUTSIDER_KEY = "0x" + "55" * 32


def sign_digest(digest: bytes, private_key: str) -> bytes:
    signed = Account.sign_message(encode_defunct(primitive=digest), private_key=private_key)
    return bytes(signed.signature)


class FakeKms:
    """Encrypts values and signs openings with fixed test keys."""

    def __init__(self) -> None:
        self.kms_keys = list(KMS_KEYS)
        self.input_key = INPUT_VERIFIER_KEY
        self._cleartexts: dict[str, int] = {}

    @property
    def kms_addresses(self) -> list[str]:
        return [Account.from_key(k).address for k in self.kms_keys]

    @property
    def input_verifier_addresses(self) -> list[str]:
        return [Account.from_key(self.input_key).address]

    def seal(self, value: int, signer_key: Optional[str] = None) -> CiphertextIngestRequest:
        ciphertext = secrets.token_bytes(48)
        self._cleartexts[derive_handle(ciphertext)] = value
        proof = sign_digest(ingest_digest(ciphertext), signer_key or self.input_key)
        return CiphertextIngestRequest(ciphertext=ciphertext, input_proof=proof)

    def value_of(self, handle: str) -> int:
        return self._cleartexts[handle]

    def open(
        self,
        handles: Sequence[str],
        values: Optional[Sequence[int]] = None,
        signer_keys: Optional[Sequence[str]] = None,
    ) -> tuple[bytes, bytes]:
        """Return (cleartext_encoding, proof) for the given handles.

        Defaults to the true values signed by the first two KMS keys.
        """
        if values is None:
            values = [self._cleartexts[h] for h in handles]
        encoding = encode_cleartexts(values)
        digest = opening_digest(handles, encoding)
        keys = signer_keys if signer_keys is not None else self.kms_keys[:2]
        signatures = [sign_digest(digest, k) for k in keys]
        return encoding, encode_opening_proof(handles, signatures)


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def kms() -> FakeKms:
    return FakeKms()


@pytest.fixture
def crypto(kms: FakeKms) -> ThresholdSignerCryptoService:
    return ThresholdSignerCryptoService(
        kms_signers=kms.kms_addresses,
        threshold=2,
        input_verifiers=kms.input_verifier_addresses,
    )


@pytest.fixture
def service(crypto: ThresholdSignerCryptoService) -> Iterator[TaskLedgerService]:
    svc = TaskLedgerService(crypto)
    yield svc
    svc.close()
