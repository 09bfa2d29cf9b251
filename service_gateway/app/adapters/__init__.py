"""
Adapters package for the Gateway Service.

Clients for external dependencies. Adapters encapsulate:

- Endpoints and request shapes
- Retry policies and circuit breakers
- Error handling that maps to shared errors
"""

from .solana_ledger import LedgerRpcError, SolanaLedger

__all__ = [
    "LedgerRpcError",
    "SolanaLedger",
]
