"""In-process background worker for tax remittance sync.

Committed periods are pushed onto the queue as they commit. The queue and
the retry timers live in memory, so the worker also sweeps the database on
start and every tax_sync_sweep_interval_seconds for committed periods that
are still pending or failed, which picks up work lost to a restart.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import UUID

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from territorial_payroll.config import Settings, get_settings
from territorial_payroll.errors import (
    ConfigurationError,
    NotFoundError,
    TaxSyncError,
    ValidationError,
)
from territorial_payroll.events import EventEmitter
from territorial_payroll.models import PayPeriod
from territorial_payroll.services.state_machine import (
    PayPeriodStateMachine,
    PayPeriodStatus,
    TaxSyncStatus,
)
from territorial_payroll.services.tax_sync_service import TaxSyncService

logger = logging.getLogger(__name__)

# Added to the request timeout before a period stuck in syncing is released
STALE_SYNC_GRACE = timedelta(minutes=1)


class JobOutcome(str, Enum):
    SYNCED = "synced"
    SKIPPED = "skipped"
    RETRY = "retry"
    EXHAUSTED = "exhausted"
    DISCARDED = "discarded"


def retry_delay(attempt: int) -> float:
    """Seconds to wait after the given failed attempt: 3, 18, 83, 258, 627."""
    return float(attempt**4 + 2)


class TaxSyncJob:
    """One sync attempt for one pay period, in its own session.

    TaxSyncService commits the sync state itself, so a failed attempt
    stays recorded on the period.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        emitter: EventEmitter | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.transport = transport
        self.emitter = emitter

    async def perform(self, pay_period_id: UUID) -> bool:
        """Returns False when the period was skipped, True when it synced.

        Raises TaxSyncError on a retryable failure.
        """
        async with self.session_factory() as session:
            period = await session.get(PayPeriod, pay_period_id)
            if period is None or period.status != PayPeriodStatus.COMMITTED:
                return False
            if not PayPeriodStateMachine.can_retry_sync(period.status, period.tax_sync_status):
                return False

            service = TaxSyncService(session, self.settings, self.transport)
            try:
                await service.sync(pay_period_id)
            finally:
                self._publish(service)
            return True

    async def due_periods(self, max_attempts: int) -> list[tuple[UUID, int]]:
        """Committed periods still waiting on a sync, with their next attempt number.

        A period left in syncing for longer than the request timeout lost
        its worker mid-request; it is marked failed first so it can be sent
        again under the same idempotency key.
        """
        stale_before = (
            datetime.now(timezone.utc)
            - timedelta(seconds=self.settings.tax_sync_timeout_seconds)
            - STALE_SYNC_GRACE
        )
        async with self.session_factory() as session:
            released = await session.execute(
                update(PayPeriod)
                .where(
                    PayPeriod.status == PayPeriodStatus.COMMITTED.value,
                    PayPeriod.tax_sync_status == TaxSyncStatus.SYNCING.value,
                    PayPeriod.updated_at < stale_before,
                )
                .values(
                    tax_sync_status=TaxSyncStatus.FAILED.value,
                    tax_sync_last_error="Sync interrupted before a response was recorded",
                )
                .execution_options(synchronize_session=False)
            )
            if released.rowcount:
                logger.warning("Released %d stale tax syncs", released.rowcount)

            result = await session.execute(
                select(PayPeriod.pay_period_id, PayPeriod.tax_sync_attempts)
                .where(
                    PayPeriod.status == PayPeriodStatus.COMMITTED.value,
                    PayPeriod.tax_sync_status.in_(
                        [s.value for s in PayPeriodStateMachine.SYNC_RETRIABLE]
                    ),
                    PayPeriod.tax_sync_attempts < max_attempts,
                )
                .order_by(PayPeriod.committed_at)
            )
            due = [(row.pay_period_id, row.tax_sync_attempts + 1) for row in result]
            await session.commit()
        return due

    def _publish(self, service: TaxSyncService) -> None:
        if self.emitter is not None:
            self.emitter.emit_all(service.events)


class TaxSyncWorker:
    """Consumes pay period ids from a queue and syncs them.

    Retryable failures are re-enqueued after retry_delay(attempt) until
    max_attempts is reached; the period then stays failed for a manual
    retry. Configuration and validation errors discard the job.

    A period is held by at most one job at a time: enqueueing a period
    that is already queued or waiting on a retry does nothing.
    """

    def __init__(
        self,
        job: TaxSyncJob,
        max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        sweep_interval: float | None = None,
    ):
        self.job = job
        self.max_attempts = max_attempts or job.settings.tax_sync_max_attempts
        if sweep_interval is None:
            sweep_interval = job.settings.tax_sync_sweep_interval_seconds
        self.sweep_interval = sweep_interval
        self._sleep = sleep
        self._queue: asyncio.Queue[tuple[UUID, int]] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._sweeper: asyncio.Task[None] | None = None
        self._retries: set[asyncio.Task[None]] = set()
        self._held: set[UUID] = set()  # queued, running or waiting on a retry

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="tax-sync-worker")
        if self.sweep_interval > 0:
            self._sweeper = asyncio.create_task(self._sweep_loop(), name="tax-sync-sweeper")
        logger.info(
            "Tax sync worker started",
            extra={"max_attempts": self.max_attempts, "sweep_interval": self.sweep_interval},
        )

    async def stop(self) -> None:
        tasks = [*self._retries]
        for task in (self._task, self._sweeper):
            if task is not None:
                tasks.append(task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._retries.clear()
        self._held.clear()
        self._task = None
        self._sweeper = None
        logger.info("Tax sync worker stopped")

    def enqueue(self, pay_period_id: UUID, attempt: int = 1) -> bool:
        """Queue a sync. Returns False when the period already has a job."""
        if pay_period_id in self._held:
            return False
        self._held.add(pay_period_id)
        self._queue.put_nowait((pay_period_id, attempt))
        return True

    async def sweep(self) -> int:
        """Queue every committed period still waiting on a sync. Returns how many."""
        queued = 0
        for pay_period_id, attempt in await self.job.due_periods(self.max_attempts):
            if self.enqueue(pay_period_id, attempt):
                queued += 1
        if queued:
            logger.info("Tax sync sweep queued %d pay periods", queued)
        return queued

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def run_once(self, pay_period_id: UUID, attempt: int = 1) -> JobOutcome:
        """Perform one attempt and decide what happens next."""
        extra = {"pay_period_id": str(pay_period_id), "attempt": attempt}
        try:
            synced = await self.job.perform(pay_period_id)
        except (ConfigurationError, ValidationError, NotFoundError) as e:
            logger.warning("Discarding tax sync job: %s", e, extra=extra)
            return JobOutcome.DISCARDED
        except TaxSyncError as e:
            if attempt >= self.max_attempts:
                logger.warning(
                    "Tax sync gave up after %d attempts: %s", attempt, e, extra=extra
                )
                return JobOutcome.EXHAUSTED
            delay = retry_delay(attempt)
            logger.warning("Tax sync retry in %.0fs: %s", delay, e, extra=extra)
            self._schedule_retry(pay_period_id, attempt + 1, delay)
            return JobOutcome.RETRY

        return JobOutcome.SYNCED if synced else JobOutcome.SKIPPED

    def _schedule_retry(self, pay_period_id: UUID, attempt: int, delay: float) -> None:
        async def retry_later() -> None:
            await self._sleep(delay)
            # Still held from the failed attempt
            self._queue.put_nowait((pay_period_id, attempt))

        task = asyncio.create_task(retry_later())
        self._retries.add(task)
        task.add_done_callback(self._retries.discard)

    async def _run(self) -> None:
        while True:
            pay_period_id, attempt = await self._queue.get()
            outcome = None
            try:
                outcome = await self.run_once(pay_period_id, attempt)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "Tax sync job crashed",
                    extra={"pay_period_id": str(pay_period_id), "attempt": attempt},
                )
            finally:
                if outcome is not JobOutcome.RETRY:
                    self._held.discard(pay_period_id)
                self._queue.task_done()

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await self.sweep()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Tax sync sweep failed")
            await asyncio.sleep(self.sweep_interval)
