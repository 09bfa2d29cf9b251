"""
Ledger backend interface.

A backend is the gateway's only route to authoritative registry and
access-key state. Reads return None for records that do not exist and
raise for everything else; the oracle layer above decides what a failure
means for a request.
"""

import abc
from typing import Optional

from shared.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError

from .models import GrantRecord, ResourceRecord, WithdrawalReceipt


MAX_NAME_LENGTH = 64
MAX_BACKEND_URL_BYTES = 252
CALLS_PER_RATE_UNIT = 60


class LedgerBackend(abc.ABC):
    """Read and write operations against the access ledger."""

    #: "confirmed" when writes take effect immediately, "pending-signature"
    #: when the caller still has to sign and submit the transaction.
    write_status = "confirmed"

    # --- reads ---

    @abc.abstractmethod
    async def fetch_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        """Return the registry record at ``resource_id`` or None."""

    @abc.abstractmethod
    async def fetch_grant(self, resource_id: str, holder: str) -> Optional[GrantRecord]:
        """Return the access key of ``holder`` for ``resource_id`` or None."""

    @abc.abstractmethod
    async def count_active_grants(self, resource_id: str) -> int:
        """Number of active access keys issued for ``resource_id``."""

    async def check_health(self) -> str:
        return "ok"

    async def close(self) -> None:
        return None

    # --- writes ---

    @abc.abstractmethod
    async def register_resource(self, owner: str, name: str, backend_url: str,
                                rate_limit: int, price_per_call: int) -> ResourceRecord:
        """Create a registry record owned by ``owner``."""

    @abc.abstractmethod
    async def purchase_grant(self, resource_id: str, holder: str) -> GrantRecord:
        """Issue an access key to ``holder``, paying ``price_per_call`` to the owner."""

    @abc.abstractmethod
    async def revoke_grant(self, resource_id: str, owner: str, holder: str) -> GrantRecord:
        """Deactivate ``holder``'s access key."""

    @abc.abstractmethod
    async def set_paused(self, resource_id: str, owner: str, paused: bool) -> ResourceRecord:
        """Pause or unpause a resource."""

    @abc.abstractmethod
    async def log_usage(self, resource_id: str, holder: str, calls: int) -> None:
        """Charge ``calls`` units of usage against the holder's access key."""

    @abc.abstractmethod
    async def withdraw(self, resource_id: str, owner: str, amount: int) -> WithdrawalReceipt:
        """Move ``amount`` of accrued earnings to the owner."""

    # --- program rules shared by backends ---

    @staticmethod
    def validate_registration(name: str, rate_limit: int) -> None:
        if not name or len(name) > MAX_NAME_LENGTH:
            raise ValidationError(f"Invalid name (1-{MAX_NAME_LENGTH} characters)")
        if rate_limit <= 0:
            raise ValidationError("Invalid rate limit")

    @staticmethod
    def initial_calls(resource: ResourceRecord) -> int:
        return resource.rate_limit * CALLS_PER_RATE_UNIT

    @staticmethod
    def require_resource(resource: Optional[ResourceRecord], resource_id: str) -> ResourceRecord:
        if resource is None:
            raise NotFoundError("API not found", details={"apiId": resource_id}, code="RESOURCE_NOT_FOUND")
        return resource

    @staticmethod
    def require_owner(resource: ResourceRecord, wallet: str) -> None:
        if resource.owner != wallet:
            raise AuthorizationError("Not authorized", details={"apiId": resource.resource_id},
                                     code="NOT_OWNER")

    @staticmethod
    def check_purchase(resource: ResourceRecord, existing: Optional[GrantRecord]) -> None:
        if resource.paused:
            raise AuthorizationError("API is paused", details={"apiId": resource.resource_id},
                                     code="RESOURCE_PAUSED")
        if existing is not None:
            raise ConflictError("Access key already exists", details={"accessKey": existing.grant_id})

    @staticmethod
    def check_pause_transition(resource: ResourceRecord, paused: bool) -> None:
        if paused and resource.paused:
            raise ConflictError("Already paused")
        if not paused and not resource.paused:
            raise ConflictError("Not paused")

    @staticmethod
    def check_withdrawal(resource: ResourceRecord, amount: int) -> None:
        if amount <= 0:
            raise ValidationError("Amount must be positive number")
        if resource.total_earnings < amount:
            raise ValidationError(
                "Insufficient balance",
                details={"available": resource.total_earnings, "requested": amount}
            )
