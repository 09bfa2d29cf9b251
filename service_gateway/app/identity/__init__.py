"""
Wallet identity checks for the gateway.

Identities are Solana wallet addresses: base58 strings that decode to a
32-byte Ed25519 public key. Callers claim an identity through the
``X-Wallet`` header and may prove it with a detached signature.
"""

from .verifier import is_valid_identity, verify_signature

__all__ = [
    "is_valid_identity",
    "verify_signature",
]
