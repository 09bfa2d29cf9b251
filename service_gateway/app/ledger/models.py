"""
Ledger record types as seen by the gateway.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


@dataclass
class ResourceRecord:
    """A registered API (the on-chain ``ApiRegistry`` account)."""
    resource_id: str
    owner: str
    name: str
    backend_url: str
    rate_limit: int
    price_per_call: int
    total_calls: int = 0
    total_earnings: int = 0
    paused: bool = False
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiId": self.resource_id,
            "name": self.name,
            "backendUrl": self.backend_url,
            "owner": self.owner,
            "rateLimit": self.rate_limit,
            "pricePerCall": self.price_per_call,
            "totalCalls": self.total_calls,
            "totalEarnings": self.total_earnings,
            "paused": self.paused,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


@dataclass
class GrantRecord:
    """Proof that ``holder`` may call ``resource_id`` (the ``AccessKey`` account).

    ``calls_remaining`` of None means the grant carries no finite budget.
    """
    grant_id: str
    resource_id: str
    holder: str
    active: bool = True
    calls_remaining: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class UsageLogRecord:
    """Cumulative usage of one resource by one holder."""
    resource_id: str
    holder: str
    total_calls: int = 0
    total_cost: int = 0


class GrantStatus(str, Enum):
    """Normalized grant lookup outcome."""
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    ACTIVE = "active"


@dataclass(frozen=True)
class GrantState:
    """Result of resolving a (resource, holder) grant."""
    status: GrantStatus
    calls_remaining: Optional[int] = None
    grant_id: Optional[str] = None

    @classmethod
    def not_found(cls, grant_id: Optional[str] = None) -> "GrantState":
        return cls(GrantStatus.NOT_FOUND, grant_id=grant_id)

    @classmethod
    def inactive(cls, grant_id: Optional[str] = None) -> "GrantState":
        return cls(GrantStatus.INACTIVE, grant_id=grant_id)

    @classmethod
    def active(cls, calls_remaining: Optional[int], grant_id: Optional[str] = None) -> "GrantState":
        return cls(GrantStatus.ACTIVE, calls_remaining=calls_remaining, grant_id=grant_id)

    @property
    def usable(self) -> bool:
        """Active and, where a budget is tracked, not exhausted."""
        if self.status != GrantStatus.ACTIVE:
            return False
        return self.calls_remaining is None or self.calls_remaining > 0


@dataclass
class WithdrawalReceipt:
    """Outcome of an owner withdrawal request."""
    resource_id: str
    owner: str
    amount: int
    status: str
    tx_id: Optional[str] = None
    remaining_earnings: Optional[int] = None
