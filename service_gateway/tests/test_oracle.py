"""
Unit tests for the access oracle client.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from service_gateway.app.domain.oracle import AccessOracleClient
from service_gateway.app.ledger.memory import InMemoryLedger
from service_gateway.app.ledger.models import GrantStatus
from shared.config import DEFAULT_PROGRAM_ID
from shared.errors import NotFoundError, OracleUnavailableError
from shared.metrics import MetricsCollector
from shared.test_helpers import WalletFactory


class TestAccessOracleClient:
    """Test cases for AccessOracleClient."""

    @pytest.fixture
    def ledger(self):
        return InMemoryLedger(DEFAULT_PROGRAM_ID)

    @pytest.fixture
    def metrics(self):
        return MetricsCollector("gateway")

    @pytest.fixture
    def oracle(self, ledger, metrics):
        return AccessOracleClient(ledger, timeout=0.5, metrics=metrics)

    @pytest.fixture
    def holder(self):
        return WalletFactory.create_wallet().address

    @pytest.fixture
    async def resource(self, ledger):
        owner = WalletFactory.create_wallet().address
        return await ledger.register_resource(owner, "weather", "https://weather.example.com", 10, 0)

    @pytest.mark.asyncio
    async def test_resolve_resource(self, oracle, resource):
        assert await oracle.resolve_resource(resource.resource_id) is resource

    @pytest.mark.asyncio
    async def test_resolve_missing_resource(self, oracle, holder, metrics):
        with pytest.raises(NotFoundError) as exc_info:
            await oracle.resolve_resource(holder)
        assert exc_info.value.code == "RESOURCE_NOT_FOUND"
        assert metrics.get_sample_value(
            "oracle_requests_total", {"operation": "resolve_resource", "status": "ok"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_grant_not_found(self, oracle, resource, holder):
        state = await oracle.resolve_grant(resource.resource_id, holder)
        assert state.status == GrantStatus.NOT_FOUND
        assert state.usable is False

    @pytest.mark.asyncio
    async def test_grant_active(self, oracle, ledger, resource, holder):
        grant = await ledger.purchase_grant(resource.resource_id, holder)
        state = await oracle.resolve_grant(resource.resource_id, holder)

        assert state.status == GrantStatus.ACTIVE
        assert state.calls_remaining == 600
        assert state.grant_id == grant.grant_id
        assert state.usable is True

    @pytest.mark.asyncio
    async def test_grant_inactive(self, oracle, ledger, resource, holder):
        await ledger.purchase_grant(resource.resource_id, holder)
        await ledger.revoke_grant(resource.resource_id, resource.owner, holder)

        state = await oracle.resolve_grant(resource.resource_id, holder)
        assert state.status == GrantStatus.INACTIVE
        assert state.usable is False

    @pytest.mark.asyncio
    async def test_exhausted_grant_is_not_usable(self, oracle, ledger, resource, holder):
        grant = await ledger.purchase_grant(resource.resource_id, holder)
        grant.calls_remaining = 0

        state = await oracle.resolve_grant(resource.resource_id, holder)
        assert state.status == GrantStatus.ACTIVE
        assert state.usable is False

    @pytest.mark.asyncio
    async def test_resolve_grant_is_idempotent(self, oracle, ledger, resource, holder):
        await ledger.purchase_grant(resource.resource_id, holder)
        first = await oracle.resolve_grant(resource.resource_id, holder)
        second = await oracle.resolve_grant(resource.resource_id, holder)
        assert first == second

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, ledger, metrics, holder):
        async def slow_fetch(*args):
            await asyncio.sleep(1)

        ledger.fetch_grant = slow_fetch
        oracle = AccessOracleClient(ledger, timeout=0.01, metrics=metrics)

        with pytest.raises(OracleUnavailableError):
            await oracle.resolve_grant(holder, holder)
        assert metrics.get_sample_value(
            "oracle_requests_total", {"operation": "resolve_grant", "status": "timeout"}
        ) == 1.0

    @pytest.mark.asyncio
    async def test_backend_error_is_unavailable(self, ledger, holder):
        ledger.fetch_resource = AsyncMock(side_effect=ConnectionError("connection reset"))
        oracle = AccessOracleClient(ledger)

        with pytest.raises(OracleUnavailableError):
            await oracle.resolve_resource(holder)

    @pytest.mark.asyncio
    async def test_count_active_grants(self, oracle, ledger, resource, holder):
        await ledger.purchase_grant(resource.resource_id, holder)
        assert await oracle.count_active_grants(resource.resource_id) == 1
