"""
Solana JSON-RPC ledger backend.

Reads registry and access-key accounts straight from the cluster. The
gateway holds no signing key, so write operations validate against chain
state and hand back the record the client's transaction will create.
"""

import base64
import itertools
from typing import Any, Dict, List, Optional, Tuple

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ConflictError, OracleUnavailableError
from shared.logging import get_logger
from shared.retry import RetryConfig, RetryError, call_with_retry

from ..ledger.addresses import AddressDeriver
from ..ledger.backend import LedgerBackend
from ..ledger.layouts import (
    ACCESS_KEY_API_ID_OFFSET,
    ACCESS_KEY_SIZE,
    LayoutError,
    decode_access_key,
    decode_api_registry,
)
from ..ledger.models import GrantRecord, ResourceRecord, WithdrawalReceipt


class LedgerRpcError(Exception):
    """The RPC node answered with a JSON-RPC error object."""

    def __init__(self, method: str, error: Dict[str, Any]):
        self.method = method
        self.code = error.get("code")
        super().__init__(f"{method}: {error.get('message', 'unknown error')} (code {self.code})")


class SolanaLedger(LedgerBackend):
    """Ledger backend reading program accounts over JSON-RPC."""

    write_status = "pending-signature"

    def __init__(self, rpc_url: str, program_id: str, commitment: str = "confirmed",
                 timeout: float = 5.0,
                 retry_config: Optional[RetryConfig] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.rpc_url = rpc_url
        self.program_id = program_id
        self.commitment = commitment
        self.timeout = timeout
        self.addresses = AddressDeriver(program_id)
        self.logger = get_logger("gateway.ledger.solana")
        self.retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.2, max_delay=2.0)
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=30.0,
            expected_exceptions=(httpx.HTTPError, LedgerRpcError, RetryError),
            name="solana_rpc",
        )
        self._transport = transport
        self._ids = itertools.count(1)

    async def _post(self, method: str, params: List[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()

        if body.get("error"):
            raise LedgerRpcError(method, body["error"])
        return body.get("result")

    async def _rpc(self, method: str, params: List[Any]) -> Any:
        """Issue one JSON-RPC call with retry and circuit breaking.

        Every failure mode surfaces as OracleUnavailableError.
        """
        try:
            return await self.circuit_breaker.call(
                call_with_retry,
                self._post,
                method,
                params,
                exceptions=(httpx.TransportError, httpx.HTTPStatusError),
                config=self.retry_config,
            )
        except CircuitBreakerOpenException as e:
            raise OracleUnavailableError("Ledger circuit open", details={"method": method}) from e
        except RetryError as e:
            self.logger.error("Ledger RPC failed", method=method, error=str(e.last_exception))
            raise OracleUnavailableError("Ledger unreachable", details={"method": method}) from e
        except (LedgerRpcError, httpx.HTTPError, ValueError) as e:
            self.logger.error("Ledger RPC error", method=method, error=str(e))
            raise OracleUnavailableError("Ledger RPC error", details={"method": method}) from e

    async def get_account_info(self, address: str) -> Optional[Tuple[str, bytes]]:
        """Return ``(owner_program, data)`` for ``address`` or None if absent."""
        result = await self._rpc("getAccountInfo", [address, {"encoding": "base64", "commitment": self.commitment}])
        value = (result or {}).get("value")
        if value is None:
            return None
        try:
            return value["owner"], base64.b64decode(value["data"][0])
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise OracleUnavailableError("Malformed account payload", details={"address": address}) from e

    async def fetch_resource(self, resource_id: str) -> Optional[ResourceRecord]:
        account = await self.get_account_info(resource_id)
        if account is None or account[0] != self.program_id:
            return None
        try:
            return decode_api_registry(resource_id, account[1])
        except LayoutError as e:
            raise OracleUnavailableError("Undecodable registry account", details={"apiId": resource_id}) from e

    async def fetch_grant(self, resource_id: str, holder: str) -> Optional[GrantRecord]:
        grant_id = self.addresses.grant_address(resource_id, holder)
        account = await self.get_account_info(grant_id)
        if account is None or account[0] != self.program_id:
            return None
        try:
            return decode_access_key(grant_id, account[1], resource_id=resource_id)
        except LayoutError as e:
            raise OracleUnavailableError("Undecodable access key account", details={"accessKey": grant_id}) from e

    async def count_active_grants(self, resource_id: str) -> int:
        config = {
            "encoding": "base64",
            "commitment": self.commitment,
            "filters": [
                {"dataSize": ACCESS_KEY_SIZE},
                {"memcmp": {"offset": ACCESS_KEY_API_ID_OFFSET, "bytes": resource_id}},
            ],
        }
        accounts = await self._rpc("getProgramAccounts", [self.program_id, config]) or []
        active = 0
        for entry in accounts:
            try:
                grant = decode_access_key(entry["pubkey"], base64.b64decode(entry["account"]["data"][0]))
            except (KeyError, IndexError, TypeError, ValueError) as e:
                raise OracleUnavailableError("Undecodable access key account", details={"apiId": resource_id}) from e
            if grant.active:
                active += 1
        return active

    async def check_health(self) -> str:
        try:
            result = await self._rpc("getHealth", [])
        except OracleUnavailableError:
            return "unavailable"
        return "ok" if result == "ok" else str(result)

    # --- writes: validated here, signed and submitted by the client ---

    async def register_resource(self, owner: str, name: str, backend_url: str,
                                rate_limit: int, price_per_call: int) -> ResourceRecord:
        self.validate_registration(name, rate_limit)
        resource_id = self.addresses.registry_address(owner, name)
        if await self.fetch_resource(resource_id) is not None:
            raise ConflictError("API already registered", details={"apiId": resource_id})
        return ResourceRecord(
            resource_id=resource_id,
            owner=owner,
            name=name,
            backend_url=backend_url,
            rate_limit=rate_limit,
            price_per_call=price_per_call,
        )

    async def purchase_grant(self, resource_id: str, holder: str) -> GrantRecord:
        resource = self.require_resource(await self.fetch_resource(resource_id), resource_id)
        self.check_purchase(resource, await self.fetch_grant(resource_id, holder))
        return GrantRecord(
            grant_id=self.addresses.grant_address(resource_id, holder),
            resource_id=resource_id,
            holder=holder,
            active=True,
            calls_remaining=self.initial_calls(resource),
        )

    async def revoke_grant(self, resource_id: str, owner: str, holder: str) -> GrantRecord:
        resource = self.require_resource(await self.fetch_resource(resource_id), resource_id)
        self.require_owner(resource, owner)
        grant = await self.fetch_grant(resource_id, holder)
        if grant is None:
            raise ConflictError("Access key does not exist", details={"holder": holder})
        if not grant.active:
            raise ConflictError("Already revoked", details={"accessKey": grant.grant_id})
        grant.active = False
        return grant

    async def set_paused(self, resource_id: str, owner: str, paused: bool) -> ResourceRecord:
        resource = self.require_resource(await self.fetch_resource(resource_id), resource_id)
        self.require_owner(resource, owner)
        self.check_pause_transition(resource, paused)
        resource.paused = paused
        return resource

    async def log_usage(self, resource_id: str, holder: str, calls: int) -> None:
        self.logger.info(
            "Usage pending settlement",
            api_id=resource_id,
            holder=holder,
            calls=calls,
            access_key=self.addresses.grant_address(resource_id, holder),
            usage_log=self.addresses.usage_log_address(resource_id, holder),
        )

    async def withdraw(self, resource_id: str, owner: str, amount: int) -> WithdrawalReceipt:
        resource = self.require_resource(await self.fetch_resource(resource_id), resource_id)
        self.require_owner(resource, owner)
        self.check_withdrawal(resource, amount)
        return WithdrawalReceipt(
            resource_id=resource_id,
            owner=owner,
            amount=amount,
            status=self.write_status,
            remaining_earnings=resource.total_earnings - amount,
        )
