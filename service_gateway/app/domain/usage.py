"""
Usage recorder.

Allowed calls are charged against the caller's access key through a bounded
queue drained by one background worker. Recording is best effort: a full
queue drops the record, and a write that still fails after the configured
retries is counted and logged, never surfaced to the caller.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from shared.errors import GatewayError, OracleUnavailableError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryError, call_with_retry

from ..ledger.backend import LedgerBackend

RETRYABLE_ERRORS = (OracleUnavailableError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True)
class UsageRecord:
    resource_id: str
    holder_id: str
    calls: int = 1


class UsageRecorder:
    """Queue plus worker that feeds ``LedgerBackend.log_usage``."""

    def __init__(self, ledger: LedgerBackend, queue_size: int = 10000, max_attempts: int = 3,
                 base_delay: float = 0.5, metrics: Optional[MetricsCollector] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.ledger = ledger
        self.queue_size = queue_size
        self.retry_config = RetryConfig(max_attempts=max_attempts, base_delay=base_delay)
        self.metrics = metrics
        self._sleep = sleep
        self.logger = get_logger("gateway.usage")

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker_task: Optional[asyncio.Task] = None
        self._running = False

        self.recorded_total = 0
        self.failed_total = 0
        self.dropped_total = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, resource_id: str, holder_id: str, calls: int = 1) -> bool:
        """Queue one usage record without blocking. Returns False if dropped."""
        try:
            self._queue.put_nowait(UsageRecord(resource_id, holder_id, calls))
        except asyncio.QueueFull:
            self.dropped_total += 1
            self._count("dropped")
            self.logger.warning("Usage queue full, record dropped",
                                api_id=resource_id, holder=holder_id, queue_size=self.queue_size)
            return False
        self._update_depth()
        return True

    async def start(self) -> None:
        """Start the background worker."""
        if self._running:
            return
        if self._queue.empty():
            # Bind a fresh queue to the running loop.
            self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._running = True
        self._worker_task = asyncio.create_task(self._worker())
        self.logger.info("Usage recorder started", queue_size=self.queue_size)

    async def stop(self, timeout: float = 5.0) -> None:
        """Flush what can be flushed within ``timeout`` and stop the worker."""
        if not self._running:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Usage recorder stopped with pending records", pending=self.pending)

        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            try:
                await self._worker_task
            except asyncio.CancelledError:
                pass
            self._worker_task = None
        self.logger.info("Usage recorder stopped",
                         recorded=self.recorded_total, failed=self.failed_total, dropped=self.dropped_total)

    async def drain(self) -> None:
        """Wait until every queued record has been processed.

        Without a running worker the queue is processed inline.
        """
        if self._running:
            await self._queue.join()
            return
        while not self._queue.empty():
            record = self._queue.get_nowait()
            try:
                await self._record(record)
            finally:
                self._queue.task_done()
                self._update_depth()

    async def _worker(self) -> None:
        while self._running:
            record = await self._queue.get()
            try:
                await self._record(record)
            finally:
                self._queue.task_done()
                self._update_depth()

    async def _record(self, record: UsageRecord) -> None:
        try:
            await call_with_retry(
                self.ledger.log_usage,
                record.resource_id,
                record.holder_id,
                record.calls,
                exceptions=RETRYABLE_ERRORS,
                config=self.retry_config,
                sleep=self._sleep,
            )
        except RetryError as e:
            self._fail(record, str(e.last_exception), attempts=e.attempts)
        except GatewayError as e:
            # Ledger state rejected the charge (revoked key, unknown API).
            self._fail(record, e.message, attempts=1)
        except Exception as e:
            self.logger.error("Unexpected usage recording error", exc_info=True)
            self._fail(record, str(e), attempts=1)
        else:
            self.recorded_total += 1
            self._count("recorded")

    def _fail(self, record: UsageRecord, error: str, attempts: int) -> None:
        self.failed_total += 1
        self._count("failed")
        self.logger.error(
            "Usage recording failed",
            api_id=record.resource_id,
            holder=record.holder_id,
            calls=record.calls,
            attempts=attempts,
            error=error
        )

    def _count(self, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("usage_records_total", status=status)

    def _update_depth(self) -> None:
        if self.metrics:
            self.metrics.set_gauge("usage_queue_depth", self._queue.qsize())
