"""Sealed task — an encrypted-task ledger with proof-gated disclosure.

Clients publish tasks whose payload is a homomorphic ciphertext,
workers are assigned to them, and a task resolves only when a
cryptographically verified opening accompanies the revealed value.
"""

__version__ = "0.1.0"
