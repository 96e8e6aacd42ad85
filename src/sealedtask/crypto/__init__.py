"""Cryptographic boundary — service contract, ABI codec, signer-backed adapter."""

from sealedtask.crypto.executor import BoundedExecutor
from sealedtask.crypto.service import CryptoService
from sealedtask.crypto.signer_service import ThresholdSignerCryptoService

__all__ = ["BoundedExecutor", "CryptoService", "ThresholdSignerCryptoService"]
