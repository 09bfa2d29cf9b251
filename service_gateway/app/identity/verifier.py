"""
Wallet address validation and detached Ed25519 signature checks.
"""

from typing import Any

import base58
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from solders.pubkey import Pubkey

from shared.logging import get_logger


SIGNATURE_LENGTH = 64

logger = get_logger("gateway.identity")


def parse_identity(address: Any) -> Pubkey:
    """Parse a wallet address, raising ``ValueError`` when it is malformed."""
    if not isinstance(address, str) or not address:
        raise ValueError("wallet address must be a non-empty string")
    return Pubkey.from_string(address)


def is_valid_identity(address: Any) -> bool:
    """Return True when ``address`` is a base58 string decoding to a 32-byte key.

    This is the same check the ledger applies to account addresses. It never
    raises.
    """
    try:
        parse_identity(address)
    except (ValueError, TypeError):
        return False
    return True


def verify_signature(message: Any, signature: Any, claimed_identity: Any) -> bool:
    """Check a base58 detached Ed25519 ``signature`` over the UTF-8 bytes of ``message``.

    Any decoding error, wrong signature length or verification mismatch
    yields False.
    """
    if not isinstance(message, str) or not isinstance(signature, str):
        return False

    try:
        public_key = bytes(parse_identity(claimed_identity))
        signature_bytes = base58.b58decode(signature)
        if len(signature_bytes) != SIGNATURE_LENGTH:
            return False
        Ed25519PublicKey.from_public_bytes(public_key).verify(signature_bytes, message.encode("utf-8"))
    except InvalidSignature:
        logger.info("Signature mismatch", wallet=claimed_identity)
        return False
    except (ValueError, TypeError) as e:
        logger.info("Signature could not be decoded", wallet=claimed_identity, error=str(e))
        return False
    return True
