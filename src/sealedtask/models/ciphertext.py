"""Ciphertext handle models.

A handle is an opaque 32-byte reference (0x-prefixed hex) to an
encrypted value held by the external cryptographic service. The
ledger stores, compares, and forwards handles; it never looks inside
the ciphertext they reference.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class CiphertextIngestRequest:
    """Raw ciphertext material plus the proof that it was well formed."""
    ciphertext: bytes
    input_proof: bytes


@dataclass
class HandleRecord:
    """Authorization state of one ciphertext handle.

    publicly_disclosable is a capability grant: it permits a later
    verified opening to be published. It does not hold the cleartext.
    """
    handle: str
    owner_key: str
    publicly_disclosable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "handle": self.handle,
            "owner_key": self.owner_key,
            "publicly_disclosable": self.publicly_disclosable,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> HandleRecord:
        return HandleRecord(
            handle=data["handle"],
            owner_key=data["owner_key"],
            publicly_disclosable=bool(data["publicly_disclosable"]),
        )


def normalize_handle(handle: str) -> Optional[str]:
    """Return the canonical lowercase 0x form, or None if not a 32-byte hex string."""
    value = handle.strip().lower()
    if value.startswith("0x"):
        value = value[2:]
    if len(value) != 64:
        return None
    try:
        bytes.fromhex(value)
    except ValueError:
        return None
    return "0x" + value
