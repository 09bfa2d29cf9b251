"""
Gate controller for proxied API calls.

Every inbound call runs the same ordered checks and stops at the first
failure:

1. the caller's wallet identity is present and well formed
2. the API id is well formed and registered
3. a supplied message/signature pair verifies against the wallet
4. the API is not paused
5. the wallet holds an active access key with calls left
6. the wallet is inside the API's per-minute ceiling

A call that passes all six is allowed and one unit of usage is queued for
recording. The response never waits on that write.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from shared.errors import (
    AuthenticationError,
    AuthorizationError,
    GatewayError,
    NotFoundError,
    OracleUnavailableError,
    RateLimitError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..identity import is_valid_identity, verify_signature
from ..ledger.models import GrantState, ResourceRecord
from ..ratelimit import FixedWindowRateLimiter
from .oracle import AccessOracleClient
from .usage import UsageRecorder


class GateOutcome(str, Enum):
    """Terminal gate decisions, in evaluation order."""
    UNAUTHENTICATED = "UNAUTHENTICATED"
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    SIGNATURE_INVALID = "SIGNATURE_INVALID"
    RESOURCE_PAUSED = "RESOURCE_PAUSED"
    NO_ACCESS = "NO_ACCESS"
    RATE_LIMITED = "RATE_LIMITED"
    ORACLE_UNAVAILABLE = "ORACLE_UNAVAILABLE"
    ALLOWED = "ALLOWED"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    GateOutcome.UNAUTHENTICATED: 401,
    GateOutcome.RESOURCE_NOT_FOUND: 404,
    GateOutcome.SIGNATURE_INVALID: 401,
    GateOutcome.RESOURCE_PAUSED: 403,
    GateOutcome.NO_ACCESS: 403,
    GateOutcome.RATE_LIMITED: 429,
    GateOutcome.ORACLE_UNAVAILABLE: 500,
    GateOutcome.ALLOWED: 200,
}


@dataclass(frozen=True)
class GateRequest:
    """What the gate needs to know about one inbound call."""
    holder_id: Optional[str]
    resource_id: str
    message: Optional[str] = None
    signature: Optional[str] = None

    @property
    def signed(self) -> bool:
        """A message without a signature, or the reverse, counts as unsigned."""
        return bool(self.message) and bool(self.signature)


@dataclass
class GateResult:
    outcome: GateOutcome
    message: str
    resource: Optional[ResourceRecord] = None
    grant: Optional[GrantState] = None
    rate: Dict[str, Any] = field(default_factory=dict)
    usage_queued: bool = False

    @property
    def allowed(self) -> bool:
        return self.outcome == GateOutcome.ALLOWED

    @property
    def status_code(self) -> int:
        return self.outcome.status_code

    def to_error(self) -> GatewayError:
        """Build the exception the HTTP layer raises for a rejected call."""
        if self.allowed:
            raise ValueError("an allowed call has no error")

        details: Dict[str, Any] = {}
        if self.resource is not None:
            details["apiId"] = self.resource.resource_id
        code = self.outcome.value

        if self.outcome in (GateOutcome.UNAUTHENTICATED, GateOutcome.SIGNATURE_INVALID):
            return AuthenticationError(self.message, details, code=code)
        if self.outcome == GateOutcome.RESOURCE_NOT_FOUND:
            return NotFoundError(self.message, details, code=code)
        if self.outcome in (GateOutcome.RESOURCE_PAUSED, GateOutcome.NO_ACCESS):
            return AuthorizationError(self.message, details, code=code)
        if self.outcome == GateOutcome.RATE_LIMITED:
            details.update({
                "limit": self.rate.get("limit"),
                "current_count": self.rate.get("current_count"),
                "retry_after": self.rate.get("reset_in_seconds"),
            })
            error = RateLimitError(self.message, details, code=code)
            error.headers = {"Retry-After": str(self.rate.get("reset_in_seconds", 60))}
            return error
        return OracleUnavailableError(self.message, details)


class AccessGate:
    """Runs the ordered access checks for proxied calls."""

    def __init__(self, oracle: AccessOracleClient, rate_limiter: FixedWindowRateLimiter,
                 usage_recorder: Optional[UsageRecorder] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.oracle = oracle
        self.rate_limiter = rate_limiter
        self.usage_recorder = usage_recorder
        self.metrics = metrics
        self.logger = get_logger("gateway.gate")

    async def evaluate(self, request: GateRequest) -> GateResult:
        """Decide one call. Never raises for ledger failures."""
        try:
            result = await self._evaluate(request)
        except OracleUnavailableError as e:
            result = GateResult(GateOutcome.ORACLE_UNAVAILABLE, e.message)

        if self.metrics:
            self.metrics.increment_counter("gate_decisions_total", outcome=result.outcome.value)
        log = self.logger.info if result.allowed else self.logger.warning
        log(
            "Gate decision",
            outcome=result.outcome.value,
            holder=request.holder_id,
            api_id=request.resource_id
        )
        return result

    async def _evaluate(self, request: GateRequest) -> GateResult:
        if not is_valid_identity(request.holder_id):
            return GateResult(GateOutcome.UNAUTHENTICATED, "Missing or invalid X-Wallet header")

        if not is_valid_identity(request.resource_id):
            return GateResult(GateOutcome.RESOURCE_NOT_FOUND, "API not found")
        try:
            resource = await self.oracle.resolve_resource(request.resource_id)
        except NotFoundError:
            return GateResult(GateOutcome.RESOURCE_NOT_FOUND, "API not found")

        if request.signed and not verify_signature(request.message, request.signature, request.holder_id):
            return GateResult(GateOutcome.SIGNATURE_INVALID, "Invalid signature", resource=resource)

        if resource.paused:
            return GateResult(GateOutcome.RESOURCE_PAUSED, "API is paused", resource=resource)

        grant = await self.oracle.resolve_grant(resource.resource_id, request.holder_id)
        if not grant.usable:
            return GateResult(GateOutcome.NO_ACCESS, "No valid access key", resource=resource, grant=grant)

        rate = await self.rate_limiter.check_rate_limit(
            request.holder_id, resource.rate_limit, resource.resource_id
        )
        if not rate["allowed"]:
            return GateResult(GateOutcome.RATE_LIMITED, "Rate limit exceeded",
                              resource=resource, grant=grant, rate=rate)

        queued = False
        if self.usage_recorder is not None:
            queued = self.usage_recorder.enqueue(resource.resource_id, request.holder_id)
        return GateResult(GateOutcome.ALLOWED, "Access granted", resource=resource,
                          grant=grant, rate=rate, usage_queued=queued)
