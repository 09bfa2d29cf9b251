"""
End-to-end tests for the register, purchase and gated-call flow.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from service_gateway.app.adapters.solana_ledger import SolanaLedger
from service_gateway.app.ledger.addresses import AddressDeriver
from service_gateway.app.main import GatewayService
from service_gateway.tests.ledger_fixtures import FakeCluster, account_value, encode_access_key, encode_api_registry
from shared.circuit_breaker import CircuitBreaker
from shared.config import DEFAULT_PROGRAM_ID, GatewayConfig
from shared.retry import RetryConfig
from shared.test_helpers import WalletFactory


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def config():
    return GatewayConfig(env="test", log_level="warning", ledger_backend="memory",
                         rate_limit_backend="memory", enable_tracing=False)


class TestEndToEndFlow:
    """Full flow against the in-memory ledger."""

    def test_register_purchase_and_call_until_rate_limited(self, config):
        clock = FakeClock()
        service = GatewayService(config=config, clock=clock)
        owner = WalletFactory.create_wallet()
        holder = WalletFactory.create_wallet()

        with TestClient(service.app) as client:
            response = client.post("/api/register", headers=owner.headers(), json={
                "name": "weather",
                "backendUrl": "https://weather.example.com",
                "rateLimit": 2,
                "pricePerCall": 1000,
            })
            assert response.status_code == 201
            api_id = response.json()["apiId"]

            response = client.post("/api/purchase", headers=holder.headers("purchase weather"),
                                   json={"apiId": api_id})
            assert response.status_code == 201
            assert response.json()["callsRemaining"] == 120

            statuses = [client.get(f"/api/{api_id}/forecast", headers=holder.headers()).status_code
                        for _ in range(3)]
            assert statuses == [200, 200, 429]

            clock.advance(61)
            response = client.get(f"/api/{api_id}/forecast", headers=holder.headers())
            assert response.status_code == 200
            assert response.headers["X-RateLimit-Remaining"] == "1"

        # Shutdown flushes the usage queue.
        resource = service.ledger.resources[api_id]
        grant = service.ledger.grants[service.ledger.addresses.grant_address(api_id, holder.address)]
        assert resource.total_calls == 3
        assert resource.total_earnings == 1000 + 3 * 1000
        assert grant.calls_remaining == 117
        assert service.usage_recorder.failed_total == 0

    def test_owner_lifecycle(self, config):
        service = GatewayService(config=config)
        owner = WalletFactory.create_wallet()
        holders = WalletFactory.create_wallets(2)

        with TestClient(service.app) as client:
            api_id = client.post("/api/register", headers=owner.headers(), json={
                "name": "prices", "backendUrl": "https://prices.example.com", "rateLimit": 10, "pricePerCall": 250,
            }).json()["apiId"]
            for holder in holders:
                assert client.post("/api/purchase", headers=holder.headers(),
                                   json={"apiId": api_id}).status_code == 201

            response = client.post("/api/revoke", headers=owner.headers(),
                                   json={"apiId": api_id, "holder": holders[0].address})
            assert response.status_code == 200

            stats = client.get(f"/api/stats/{api_id}", headers=owner.headers()).json()
            assert stats["activeKeys"] == 1
            assert stats["totalEarnings"] == 500

            response = client.post("/api/withdraw", headers=owner.headers(), json={"apiId": api_id, "amount": 500})
            assert response.status_code == 200
            assert response.json()["remainingEarnings"] == 0

            assert client.get(f"/api/{api_id}", headers=holders[0].headers()).status_code == 403
            assert client.get(f"/api/{api_id}", headers=holders[1].headers()).status_code == 200


class TestSolanaBackedGateway:
    """Gated calls against accounts served over JSON-RPC."""

    @pytest.fixture
    def cluster(self):
        return FakeCluster()

    @pytest.fixture
    def ledger(self, cluster):
        return SolanaLedger(
            "http://solana.test",
            DEFAULT_PROGRAM_ID,
            retry_config=RetryConfig(max_attempts=1),
            circuit_breaker=CircuitBreaker(failure_threshold=100, name="test_rpc"),
            transport=httpx.MockTransport(cluster.handler),
        )

    def test_gated_call_reads_chain_state(self, config, cluster, ledger):
        owner = WalletFactory.create_wallet()
        holder = WalletFactory.create_wallet()
        addresses = AddressDeriver(DEFAULT_PROGRAM_ID)
        api_id = addresses.registry_address(owner.address, "weather")
        cluster.accounts[api_id] = account_value(
            DEFAULT_PROGRAM_ID, encode_api_registry(owner.address, "weather", "https://weather.example.com", 5, 100)
        )
        cluster.accounts[addresses.grant_address(api_id, holder.address)] = account_value(
            DEFAULT_PROGRAM_ID, encode_access_key(api_id, holder.address, 42)
        )
        client = TestClient(GatewayService(config=config, ledger=ledger).app)

        response = client.get(f"/api/{api_id}", headers=holder.headers("hello"))
        assert response.status_code == 200
        assert response.json()["callsRemaining"] == 42

        response = client.post("/api/purchase", headers=WalletFactory.create_wallet().headers(),
                               json={"apiId": api_id})
        assert response.status_code == 201
        assert response.json()["status"] == "pending-signature"

    def test_ledger_outage_is_reported_not_denied(self, config, cluster, ledger):
        holder = WalletFactory.create_wallet()
        cluster.fail_with = lambda body: httpx.Response(502, json={})
        client = TestClient(GatewayService(config=config, ledger=ledger).app)

        response = client.get(f"/api/{WalletFactory.create_wallet().address}", headers=holder.headers())
        assert response.status_code == 500
        assert response.json()["code"] == "ORACLE_UNAVAILABLE"

        health = client.get("/health").json()
        assert health["dependencies"]["ledger"] == "unavailable"
