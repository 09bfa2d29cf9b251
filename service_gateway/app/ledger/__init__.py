"""
Access ledger records, addresses and backends.

The ledger is the authority on which APIs exist, who owns them and which
wallets hold access keys. ``InMemoryLedger`` applies the program rules in
process; the Solana backend lives in ``app.adapters``.
"""

from .addresses import AddressDeriver
from .backend import LedgerBackend
from .memory import InMemoryLedger
from .models import GrantRecord, GrantState, GrantStatus, ResourceRecord, UsageLogRecord, WithdrawalReceipt

__all__ = [
    "AddressDeriver",
    "GrantRecord",
    "GrantState",
    "GrantStatus",
    "InMemoryLedger",
    "LedgerBackend",
    "ResourceRecord",
    "UsageLogRecord",
    "WithdrawalReceipt",
]
