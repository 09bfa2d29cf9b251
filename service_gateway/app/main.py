"""
API Gateway service for TokenGate.
"""

import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import httpx
from fastapi import Depends, Request, Response

from shared.base_service import BaseService
from shared.circuit_breaker import CircuitBreaker
from shared.config import GatewayConfig, get_config
from shared.errors import AuthenticationError, ValidationError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError

from .adapters.solana_ledger import LedgerRpcError, SolanaLedger
from .domain.gate import AccessGate, GateRequest
from .domain.oracle import AccessOracleClient
from .domain.usage import UsageRecorder
from .identity import is_valid_identity, verify_signature
from .ledger.backend import LedgerBackend
from .ledger.memory import InMemoryLedger
from .ratelimit import FixedWindowRateLimiter, InMemoryWindowStore, RedisWindowStore
from .schemas import ApiIdRequest, PurchaseRequest, RegisterRequest, RevokeRequest, WithdrawRequest

LAMPORTS_PER_SOL = 1_000_000_000
PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _utc_iso(value: Optional[datetime] = None) -> str:
    value = value or datetime.now(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GatewayService(BaseService):
    """API Gateway service implementation."""

    def __init__(self, config: Optional[GatewayConfig] = None,
                 ledger: Optional[LedgerBackend] = None,
                 rate_limiter: Optional[FixedWindowRateLimiter] = None,
                 metrics: Optional[MetricsCollector] = None,
                 clock: Callable[[], float] = time.monotonic):
        config = config or get_config()
        super().__init__(config.service_name, config=config, metrics=metrics)

        self.ledger = ledger or self._build_ledger()
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            self._build_window_store(clock),
            window_seconds=self.config.rate_limit_window_seconds,
            scope=self.config.rate_limit_scope,
            metrics=self.metrics,
        )
        self.oracle = AccessOracleClient(
            self.ledger,
            timeout=self.config.oracle_timeout_seconds,
            metrics=self.metrics,
        )
        self.usage_recorder = UsageRecorder(
            self.ledger,
            queue_size=self.config.usage_queue_size,
            max_attempts=self.config.usage_max_attempts,
            base_delay=self.config.usage_retry_base_delay,
            metrics=self.metrics,
        )
        self.gate = AccessGate(self.oracle, self.rate_limiter, self.usage_recorder, metrics=self.metrics)

        @self.app.on_event("startup")
        async def _startup():
            await self.usage_recorder.start()
            self.logger.info(
                "Gateway started",
                ledger_backend=self.config.ledger_backend,
                rate_limit_backend=self.config.rate_limit_backend,
                program_id=self.config.program_id,
            )

        @self.app.on_event("shutdown")
        async def _shutdown():
            await self.usage_recorder.stop()
            await self.ledger.close()
            await self.rate_limiter.store.close()

        self._setup_gateway_routes()

    def _build_ledger(self) -> LedgerBackend:
        if self.config.ledger_backend == "solana":
            return SolanaLedger(
                self.config.solana_rpc_url,
                self.config.program_id,
                commitment=self.config.commitment,
                timeout=self.config.oracle_timeout_seconds,
                retry_config=RetryConfig(max_attempts=self.config.rpc_max_attempts, base_delay=0.2, max_delay=2.0),
                circuit_breaker=CircuitBreaker(
                    failure_threshold=self.config.rpc_failure_threshold,
                    recovery_timeout=self.config.rpc_recovery_timeout,
                    expected_exceptions=(httpx.HTTPError, LedgerRpcError, RetryError),
                    name="solana_rpc",
                ),
            )
        return InMemoryLedger(self.config.program_id)

    def _build_window_store(self, clock: Callable[[], float]):
        if self.config.rate_limit_backend == "redis":
            return RedisWindowStore(self.config.redis_url)
        return InMemoryWindowStore(clock=clock)

    async def _check_dependencies(self) -> Dict[str, Any]:
        return {
            "ledger": await self.ledger.check_health(),
            "rate_limiter": await self.rate_limiter.store.check_health(),
            "usage_queue": self.usage_recorder.pending,
        }

    async def _require_wallet(self, request: Request) -> str:
        """Resolve the caller's wallet, checking the optional signature headers."""
        wallet = request.headers.get("X-Wallet")
        if not is_valid_identity(wallet):
            raise AuthenticationError("Valid wallet required (X-Wallet header)", code="UNAUTHENTICATED")

        message = request.headers.get("X-Message")
        signature = request.headers.get("X-Signature")
        if message and signature and not verify_signature(message, signature, wallet):
            raise AuthenticationError("Invalid signature", code="SIGNATURE_INVALID")
        return wallet

    def _parse_api_id(self, api_id: str) -> str:
        if not is_valid_identity(api_id):
            raise ValidationError("Invalid API ID", details={"apiId": api_id})
        return api_id

    def _rate_limit_headers(self, rate_result: Dict[str, Any]) -> Dict[str, str]:
        headers = {}
        for header, key in (("X-RateLimit-Limit", "limit"),
                            ("X-RateLimit-Remaining", "remaining"),
                            ("X-RateLimit-Reset", "reset_in_seconds")):
            value = rate_result.get(key)
            if value is not None:
                headers[header] = str(value)
        return headers

    def _set_rate_limit_headers(self, response: Response, rate_result: Dict[str, Any]) -> None:
        """Propagate rate limiting metadata via standard headers."""
        response.headers.update(self._rate_limit_headers(rate_result))

    async def _owned_resource(self, api_id: str, wallet: str):
        resource = await self.oracle.resolve_resource(api_id)
        self.ledger.require_owner(resource, wallet)
        return resource

    def _setup_gateway_routes(self):
        """Set up gateway-specific routes.

        Fixed ``/api/...`` paths are registered before the proxy catch-all.
        """
        require_wallet = self._require_wallet

        @self.app.post("/api/register", status_code=201)
        async def register_api(body: RegisterRequest, wallet: str = Depends(require_wallet)):
            """Register a backend API owned by the calling wallet."""
            resource = await self.ledger.register_resource(
                owner=wallet,
                name=body.name,
                backend_url=body.backend_url,
                rate_limit=body.rate_limit,
                price_per_call=body.price_per_call,
            )
            return {
                "apiId": resource.resource_id,
                "name": resource.name,
                "backendUrl": resource.backend_url,
                "rateLimit": resource.rate_limit,
                "pricePerCall": resource.price_per_call,
                "owner": resource.owner,
                "status": self.ledger.write_status,
                "createdAt": _utc_iso(resource.created_at),
            }

        @self.app.post("/api/purchase", status_code=201)
        async def purchase_access(body: PurchaseRequest, wallet: str = Depends(require_wallet)):
            """Buy an access key for an API."""
            grant = await self.ledger.purchase_grant(body.api_id, wallet)
            return {
                "apiId": grant.resource_id,
                "wallet": wallet,
                "accessKey": grant.grant_id,
                "active": grant.active,
                "callsRemaining": grant.calls_remaining,
                "status": self.ledger.write_status,
                "createdAt": _utc_iso(grant.created_at),
            }

        @self.app.get("/api/access/{api_id}")
        async def access_summary(api_id: str, wallet: str = Depends(require_wallet)):
            """Report whether the caller can use an API right now."""
            api_id = self._parse_api_id(api_id)
            resource = await self.oracle.resolve_resource(api_id)
            grant = await self.oracle.resolve_grant(api_id, wallet)
            rate = await self.rate_limiter.get_rate_limit_status(wallet, resource.rate_limit, api_id)
            return {
                "apiId": api_id,
                "wallet": wallet,
                "hasAccess": grant.usable and not resource.paused,
                "grantStatus": grant.status.value,
                "callsRemaining": grant.calls_remaining,
                "paused": resource.paused,
                "rateLimit": resource.rate_limit,
                "rateLimitRemaining": rate["remaining"],
                "timestamp": _utc_iso(),
            }

        @self.app.post("/api/withdraw")
        async def withdraw_earnings(body: WithdrawRequest, wallet: str = Depends(require_wallet)):
            """Withdraw accrued earnings to the owner's wallet."""
            receipt = await self.ledger.withdraw(body.api_id, wallet, body.amount)
            self.logger.info("Withdrawal requested", api_id=body.api_id, amount=body.amount,
                             status=receipt.status)
            return {
                "apiId": receipt.resource_id,
                "amount": receipt.amount,
                "amountInSOL": f"{receipt.amount / LAMPORTS_PER_SOL:.8f}",
                "wallet": wallet,
                "txId": receipt.tx_id,
                "status": receipt.status,
                "remainingEarnings": receipt.remaining_earnings,
                "timestamp": _utc_iso(),
            }

        @self.app.get("/api/stats/{api_id}")
        async def api_stats(api_id: str, wallet: str = Depends(require_wallet)):
            """Owner-only usage and earnings summary."""
            api_id = self._parse_api_id(api_id)
            resource = await self._owned_resource(api_id, wallet)
            active_keys = await self.oracle.count_active_grants(api_id)
            stats = resource.to_dict()
            stats.update({
                "activeKeys": active_keys,
                "timestamp": _utc_iso(),
            })
            return stats

        @self.app.post("/api/pause")
        async def pause_api(body: ApiIdRequest, wallet: str = Depends(require_wallet)):
            resource = await self.ledger.set_paused(body.api_id, wallet, True)
            return {"apiId": resource.resource_id, "paused": resource.paused, "status": self.ledger.write_status}

        @self.app.post("/api/unpause")
        async def unpause_api(body: ApiIdRequest, wallet: str = Depends(require_wallet)):
            resource = await self.ledger.set_paused(body.api_id, wallet, False)
            return {"apiId": resource.resource_id, "paused": resource.paused, "status": self.ledger.write_status}

        @self.app.post("/api/revoke")
        async def revoke_access(body: RevokeRequest, wallet: str = Depends(require_wallet)):
            """Deactivate a holder's access key."""
            grant = await self.ledger.revoke_grant(body.api_id, wallet, body.holder)
            return {
                "apiId": grant.resource_id,
                "holder": grant.holder,
                "accessKey": grant.grant_id,
                "active": grant.active,
                "status": self.ledger.write_status,
            }

        async def proxy(request: Request, response: Response, api_id: str, path: str = ""):
            result = await self.gate.evaluate(GateRequest(
                holder_id=request.headers.get("X-Wallet"),
                resource_id=api_id,
                message=request.headers.get("X-Message"),
                signature=request.headers.get("X-Signature"),
            ))
            if not result.allowed:
                error = result.to_error()
                if result.rate:
                    error.headers = {**getattr(error, "headers", {}), **self._rate_limit_headers(result.rate)}
                raise error

            self._set_rate_limit_headers(response, result.rate)
            return {
                "status": "ok",
                "apiId": api_id,
                "wallet": request.headers.get("X-Wallet"),
                "path": f"/{path}",
                "method": request.method,
                "callsRemaining": result.grant.calls_remaining if result.grant else None,
                "message": "Request proxied successfully",
                "timestamp": _utc_iso(),
            }

        @self.app.api_route("/api/{api_id}", methods=PROXY_METHODS)
        async def proxy_root(request: Request, response: Response, api_id: str):
            """Gated call to the API's root path."""
            return await proxy(request, response, api_id)

        @self.app.api_route("/api/{api_id}/{path:path}", methods=PROXY_METHODS)
        async def proxy_path(request: Request, response: Response, api_id: str, path: str):
            """Gated call to a path under the API."""
            return await proxy(request, response, api_id, path)


def create_app(**kwargs):
    """Create FastAPI application."""
    service = GatewayService(**kwargs)
    return service.app


def main():
    """Run the gateway with settings from the environment."""
    GatewayService().run()


if __name__ == "__main__":
    main()
