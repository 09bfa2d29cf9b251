"""
Unit tests for wallet identity and signature checks.
"""

import pytest

from service_gateway.app.identity import is_valid_identity, verify_signature
from shared.test_helpers import WalletFactory, flip_bit


class TestIsValidIdentity:
    """Test cases for is_valid_identity."""

    def test_generated_wallet_is_valid(self):
        wallet = WalletFactory.create_wallet()
        assert is_valid_identity(wallet.address) is True

    def test_system_program_address_is_valid(self):
        assert is_valid_identity("11111111111111111111111111111111") is True

    @pytest.mark.parametrize("address", [
        "",
        "not-a-wallet",
        "0OIl0OIl0OIl0OIl0OIl0OIl0OIl0OIl",  # characters outside the base58 alphabet
        "1111111111111111111111111111111",  # decodes to 31 bytes
        "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T4Nd1mBQ",
        None,
        12345,
        b"11111111111111111111111111111111",
    ])
    def test_malformed_identities_are_rejected(self, address):
        assert is_valid_identity(address) is False


class TestVerifySignature:
    """Test cases for verify_signature."""

    @pytest.fixture
    def wallet(self):
        return WalletFactory.create_wallet()

    def test_valid_signature(self, wallet):
        message = "access:api:1700000000"
        assert verify_signature(message, wallet.sign(message), wallet.address) is True

    def test_unicode_message(self, wallet):
        message = "zugriff für api ✓"
        assert verify_signature(message, wallet.sign(message), wallet.address) is True

    def test_mutated_message_fails(self, wallet):
        message = "access:api:1700000000"
        signature = wallet.sign(message)
        assert verify_signature("access:api:1700000001", signature, wallet.address) is False

    @pytest.mark.parametrize("index", [0, 31, 63])
    def test_mutated_signature_fails(self, wallet, index):
        message = "hello"
        signature = flip_bit(wallet.sign(message), index)
        assert verify_signature(message, signature, wallet.address) is False

    def test_other_identity_fails(self, wallet):
        other = WalletFactory.create_wallet()
        message = "hello"
        assert verify_signature(message, wallet.sign(message), other.address) is False

    def test_mutated_identity_fails(self, wallet):
        message = "hello"
        mutated = flip_bit(wallet.address, 5)
        assert verify_signature(message, wallet.sign(message), mutated) is False

    def test_wrong_signature_length_fails(self, wallet):
        assert verify_signature("hello", wallet.address, wallet.address) is False

    @pytest.mark.parametrize("message,signature,identity", [
        (None, "sig", "11111111111111111111111111111111"),
        ("hello", None, "11111111111111111111111111111111"),
        ("hello", "0OIl", "11111111111111111111111111111111"),
        ("hello", "3" * 88, "not-a-wallet"),
        ("hello", "", ""),
    ])
    def test_garbage_inputs_return_false(self, message, signature, identity):
        assert verify_signature(message, signature, identity) is False
