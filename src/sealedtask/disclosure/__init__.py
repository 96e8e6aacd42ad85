"""Decryption authorization — proof-gated disclosure of ciphertext openings."""

from sealedtask.disclosure.authorizer import DecryptionAuthorizer, DisclosureOutcome

__all__ = ["DecryptionAuthorizer", "DisclosureOutcome"]
