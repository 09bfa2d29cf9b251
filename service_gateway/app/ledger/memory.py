"""
In-process ledger that applies the program's rules to plain dictionaries.

Used when the gateway runs without a chain (``ledger_backend=memory``) and
as the oracle fake in tests. State lives only as long as the process.
"""

import secrets
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

import base58

from shared.errors import ConflictError
from shared.logging import get_logger

from .addresses import AddressDeriver
from .backend import LedgerBackend
from .models import GrantRecord, ResourceRecord, UsageLogRecord, WithdrawalReceipt


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryLedger(LedgerBackend):
    """Dictionary-backed ledger keyed by derived addresses."""

    def __init__(self, program_id: str, now: Callable[[], datetime] = _utcnow):
        self.addresses = AddressDeriver(program_id)
        self._now = now
        self.logger = get_logger("gateway.ledger.memory")
        self.resources: Dict[str, ResourceRecord] = {}
        self.grants: Dict[str, GrantRecord] = {}
        self.usage_logs: Dict[Tuple[str, str], UsageLogRecord] = {}

    async def fetch_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        return self.resources.get(resource_id)

    async def fetch_grant(self, resource_id: str, holder: str) -> Optional[GrantRecord]:
        return self.grants.get(self.addresses.grant_address(resource_id, holder))

    async def count_active_grants(self, resource_id: str) -> int:
        return sum(1 for grant in self.grants.values() if grant.resource_id == resource_id and grant.active)

    def usage_log(self, resource_id: str, holder: str) -> Optional[UsageLogRecord]:
        return self.usage_logs.get((resource_id, holder))

    async def register_resource(self, owner: str, name: str, backend_url: str,
                                rate_limit: int, price_per_call: int) -> ResourceRecord:
        self.validate_registration(name, rate_limit)
        resource_id = self.addresses.registry_address(owner, name)
        if resource_id in self.resources:
            raise ConflictError("API already registered", details={"apiId": resource_id})

        record = ResourceRecord(
            resource_id=resource_id,
            owner=owner,
            name=name,
            backend_url=backend_url,
            rate_limit=rate_limit,
            price_per_call=price_per_call,
            created_at=self._now(),
        )
        self.resources[resource_id] = record
        self.logger.info("API registered", api_id=resource_id, owner=owner, name=name)
        return record

    async def purchase_grant(self, resource_id: str, holder: str) -> GrantRecord:
        resource = self.require_resource(self.resources.get(resource_id), resource_id)
        grant_id = self.addresses.grant_address(resource_id, holder)
        self.check_purchase(resource, self.grants.get(grant_id))

        grant = GrantRecord(
            grant_id=grant_id,
            resource_id=resource_id,
            holder=holder,
            active=True,
            calls_remaining=self.initial_calls(resource),
            created_at=self._now(),
        )
        self.grants[grant_id] = grant
        resource.total_earnings += resource.price_per_call
        self.logger.info("Access purchased", api_id=resource_id, holder=holder, access_key=grant_id)
        return grant

    async def revoke_grant(self, resource_id: str, owner: str, holder: str) -> GrantRecord:
        resource = self.require_resource(self.resources.get(resource_id), resource_id)
        self.require_owner(resource, owner)
        grant = self.grants.get(self.addresses.grant_address(resource_id, holder))
        if grant is None:
            raise ConflictError("Access key does not exist", details={"holder": holder})
        if not grant.active:
            raise ConflictError("Already revoked", details={"accessKey": grant.grant_id})
        grant.active = False
        self.logger.info("Access revoked", api_id=resource_id, holder=holder)
        return grant

    async def set_paused(self, resource_id: str, owner: str, paused: bool) -> ResourceRecord:
        resource = self.require_resource(self.resources.get(resource_id), resource_id)
        self.require_owner(resource, owner)
        self.check_pause_transition(resource, paused)
        resource.paused = paused
        self.logger.info("API pause state changed", api_id=resource_id, paused=paused)
        return resource

    async def log_usage(self, resource_id: str, holder: str, calls: int) -> None:
        resource = self.require_resource(self.resources.get(resource_id), resource_id)
        grant = self.grants.get(self.addresses.grant_address(resource_id, holder))
        if grant is None or not grant.active:
            raise ConflictError("Access key is inactive", details={"apiId": resource_id, "holder": holder})

        if grant.calls_remaining is not None:
            grant.calls_remaining = max(0, grant.calls_remaining - calls)

        cost = resource.price_per_call * calls
        resource.total_calls += calls
        resource.total_earnings += cost

        usage = self.usage_logs.setdefault((resource_id, holder), UsageLogRecord(resource_id, holder))
        usage.total_calls += calls
        usage.total_cost += cost

    async def withdraw(self, resource_id: str, owner: str, amount: int) -> WithdrawalReceipt:
        resource = self.require_resource(self.resources.get(resource_id), resource_id)
        self.require_owner(resource, owner)
        self.check_withdrawal(resource, amount)

        resource.total_earnings -= amount
        tx_id = base58.b58encode(secrets.token_bytes(64)).decode("ascii")
        self.logger.info("Earnings withdrawn", api_id=resource_id, amount=amount, tx_id=tx_id)
        return WithdrawalReceipt(
            resource_id=resource_id,
            owner=owner,
            amount=amount,
            status="success",
            tx_id=tx_id,
            remaining_earnings=resource.total_earnings,
        )
