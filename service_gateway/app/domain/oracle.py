"""
Access oracle client.

Normalizes ledger reads into the three grant states the gate reasons about
and keeps transient ledger failures distinct from "no such record".
"""

import asyncio
import time
from typing import Awaitable, Optional, TypeVar

from shared.errors import GatewayError, NotFoundError, OracleUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..ledger.backend import LedgerBackend
from ..ledger.models import GrantState, ResourceRecord

T = TypeVar("T")


class AccessOracleClient:
    """Read-only view of the ledger with timeouts and failure normalization."""

    def __init__(self, backend: LedgerBackend, timeout: float = 5.0,
                 metrics: Optional[MetricsCollector] = None):
        self.backend = backend
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.oracle")

    async def _read(self, operation: str, call: Awaitable[T]) -> T:
        start = time.perf_counter()
        status = "error"
        try:
            result = await asyncio.wait_for(call, timeout=self.timeout)
            status = "ok"
            return result
        except asyncio.TimeoutError as e:
            status = "timeout"
            self.logger.warning("Ledger read timed out", operation=operation, timeout=self.timeout)
            raise OracleUnavailableError("Ledger read timed out", details={"operation": operation}) from e
        except OracleUnavailableError:
            raise
        except GatewayError:
            status = "rejected"
            raise
        except Exception as e:
            self.logger.error("Ledger read failed", operation=operation, error=str(e))
            raise OracleUnavailableError("Ledger read failed", details={"operation": operation}) from e
        finally:
            if self.metrics:
                self.metrics.observe_histogram("oracle_request_duration_seconds",
                                               time.perf_counter() - start, operation=operation)
                self.metrics.increment_counter("oracle_requests_total", operation=operation, status=status)

    async def resolve_resource(self, resource_id: str) -> ResourceRecord:
        """Fetch the registry record, raising NotFoundError if it does not exist."""
        resource = await self._read("resolve_resource", self.backend.fetch_resource(resource_id))
        if resource is None:
            raise NotFoundError("API not found", details={"apiId": resource_id}, code="RESOURCE_NOT_FOUND")
        return resource

    async def resolve_grant(self, resource_id: str, holder_id: str) -> GrantState:
        """Resolve the holder's access key into NotFound, Inactive or Active."""
        grant = await self._read("resolve_grant", self.backend.fetch_grant(resource_id, holder_id))
        if grant is None:
            return GrantState.not_found()
        if not grant.active:
            return GrantState.inactive(grant.grant_id)
        return GrantState.active(grant.calls_remaining, grant.grant_id)

    async def count_active_grants(self, resource_id: str) -> int:
        return await self._read("count_active_grants", self.backend.count_active_grants(resource_id))
