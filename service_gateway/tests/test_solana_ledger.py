"""
Unit tests for the Solana JSON-RPC ledger backend.
"""

import httpx
import pytest

from service_gateway.app.adapters.solana_ledger import SolanaLedger
from service_gateway.app.ledger.addresses import AddressDeriver
from shared.circuit_breaker import CircuitBreaker
from shared.config import DEFAULT_PROGRAM_ID
from shared.errors import ConflictError, OracleUnavailableError
from shared.retry import RetryConfig
from shared.test_helpers import WalletFactory

from .ledger_fixtures import FakeCluster, account_value, encode_access_key, encode_api_registry

RPC_URL = "http://solana.test"


class TestSolanaLedger:
    """Test cases for SolanaLedger."""

    @pytest.fixture
    def cluster(self):
        return FakeCluster()

    @pytest.fixture
    def ledger(self, cluster):
        return SolanaLedger(
            RPC_URL,
            DEFAULT_PROGRAM_ID,
            retry_config=RetryConfig(max_attempts=2, base_delay=0, jitter=False),
            circuit_breaker=CircuitBreaker(failure_threshold=2, recovery_timeout=60, name="test_rpc"),
            transport=httpx.MockTransport(cluster.handler),
        )

    @pytest.fixture
    def owner(self):
        return WalletFactory.create_wallet().address

    @pytest.fixture
    def holder(self):
        return WalletFactory.create_wallet().address

    @pytest.fixture
    def resource_id(self, cluster, owner):
        resource_id = AddressDeriver(DEFAULT_PROGRAM_ID).registry_address(owner, "weather")
        cluster.accounts[resource_id] = account_value(
            DEFAULT_PROGRAM_ID,
            encode_api_registry(owner, "weather", "https://weather.example.com", 10, 1000, total_earnings=5000),
        )
        return resource_id

    def add_grant(self, cluster, resource_id, holder, calls=600, active=True):
        grant_id = AddressDeriver(DEFAULT_PROGRAM_ID).grant_address(resource_id, holder)
        cluster.accounts[grant_id] = account_value(DEFAULT_PROGRAM_ID,
                                                   encode_access_key(resource_id, holder, calls, active))
        return grant_id

    @pytest.mark.asyncio
    async def test_fetch_resource(self, ledger, cluster, owner, resource_id):
        resource = await ledger.fetch_resource(resource_id)

        assert resource.owner == owner
        assert resource.rate_limit == 10
        assert cluster.requests[0]["params"][1] == {"encoding": "base64", "commitment": "confirmed"}

    @pytest.mark.asyncio
    async def test_fetch_missing_resource_returns_none(self, ledger, owner):
        assert await ledger.fetch_resource(owner) is None

    @pytest.mark.asyncio
    async def test_account_owned_by_other_program_is_ignored(self, ledger, cluster, owner, resource_id):
        cluster.accounts[resource_id]["owner"] = "11111111111111111111111111111111"
        assert await ledger.fetch_resource(resource_id) is None

    @pytest.mark.asyncio
    async def test_fetch_grant(self, ledger, cluster, resource_id, holder):
        grant_id = self.add_grant(cluster, resource_id, holder, calls=7)
        grant = await ledger.fetch_grant(resource_id, holder)

        assert grant.grant_id == grant_id
        assert grant.calls_remaining == 7
        assert grant.active is True

    @pytest.mark.asyncio
    async def test_undecodable_account_is_unavailable_not_missing(self, ledger, cluster, resource_id):
        cluster.accounts[resource_id] = account_value(DEFAULT_PROGRAM_ID, b"\x00" * 16)
        with pytest.raises(OracleUnavailableError):
            await ledger.fetch_resource(resource_id)

    @pytest.mark.asyncio
    async def test_count_active_grants(self, ledger, cluster, resource_id, holder):
        self.add_grant(cluster, resource_id, holder)
        self.add_grant(cluster, resource_id, WalletFactory.create_wallet().address, active=False)
        cluster.accounts.pop(resource_id)

        assert await ledger.count_active_grants(resource_id) == 1
        filters = cluster.requests[-1]["params"][1]["filters"]
        assert filters[0] == {"dataSize": 78}
        assert filters[1] == {"memcmp": {"offset": 8, "bytes": resource_id}}

    @pytest.mark.asyncio
    async def test_rpc_error_is_unavailable(self, ledger, cluster, resource_id):
        cluster.fail_with = lambda body: httpx.Response(
            200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32005, "message": "Node is behind"}}
        )
        with pytest.raises(OracleUnavailableError):
            await ledger.fetch_resource(resource_id)

    @pytest.mark.asyncio
    async def test_http_errors_are_retried_then_unavailable(self, ledger, cluster, resource_id):
        cluster.fail_with = lambda body: httpx.Response(503, json={})
        with pytest.raises(OracleUnavailableError):
            await ledger.fetch_resource(resource_id)
        assert len(cluster.requests) == 2

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, ledger, cluster, resource_id):
        cluster.fail_with = lambda body: httpx.Response(503, json={})
        for _ in range(2):
            with pytest.raises(OracleUnavailableError):
                await ledger.fetch_resource(resource_id)
        attempts = len(cluster.requests)

        with pytest.raises(OracleUnavailableError) as exc_info:
            await ledger.fetch_resource(resource_id)
        assert exc_info.value.message == "Ledger circuit open"
        assert len(cluster.requests) == attempts

    @pytest.mark.asyncio
    async def test_check_health(self, ledger, cluster):
        assert await ledger.check_health() == "ok"
        cluster.fail_with = lambda body: httpx.Response(500, json={})
        assert await ledger.check_health() == "unavailable"

    @pytest.mark.asyncio
    async def test_purchase_returns_pending_grant(self, ledger, resource_id, holder):
        grant = await ledger.purchase_grant(resource_id, holder)

        assert ledger.write_status == "pending-signature"
        assert grant.calls_remaining == 600
        assert grant.grant_id == AddressDeriver(DEFAULT_PROGRAM_ID).grant_address(resource_id, holder)

    @pytest.mark.asyncio
    async def test_register_existing_conflicts(self, ledger, owner, resource_id):
        with pytest.raises(ConflictError):
            await ledger.register_resource(owner, "weather", "https://weather.example.com", 10, 1000)

    @pytest.mark.asyncio
    async def test_withdraw_validates_against_chain(self, ledger, owner, resource_id):
        receipt = await ledger.withdraw(resource_id, owner, 2000)
        assert receipt.status == "pending-signature"
        assert receipt.remaining_earnings == 3000
        assert receipt.tx_id is None
