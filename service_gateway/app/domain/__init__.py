"""
Domain layer for the Gateway Service.

Access decisions for proxied calls and the components they lean on: the
ledger read client and the usage recorder.
"""

from .gate import AccessGate, GateOutcome, GateRequest, GateResult
from .oracle import AccessOracleClient
from .usage import UsageRecord, UsageRecorder

__all__ = [
    "AccessGate",
    "AccessOracleClient",
    "GateOutcome",
    "GateRequest",
    "GateResult",
    "UsageRecord",
    "UsageRecorder",
]
