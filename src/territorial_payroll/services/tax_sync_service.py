"""Tax remittance sync: POST a committed pay period to the ingest endpoint.

Sync state lives on the pay period:
    pending -> syncing -> synced | failed
Both pending and failed may be sent again. Every attempt bumps
tax_sync_attempts, whatever its outcome.

sync() commits twice: once to claim the period as syncing, and once to
record the outcome. The HTTP request runs between the two, outside any
database transaction, so other sessions see syncing while it is in flight.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

import httpx
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from territorial_payroll.config import Settings, get_settings
from territorial_payroll.errors import (
    ConfigurationError,
    NotFoundError,
    TaxSyncError,
    ValidationError,
)
from territorial_payroll.events import DomainEvent, EventMetadata, TaxSyncCompleted, TaxSyncFailed
from territorial_payroll.models import PayPeriod, PayrollItem
from territorial_payroll.services.state_machine import (
    PayPeriodStateMachine,
    PayPeriodStatus,
    TaxSyncStatus,
)
from territorial_payroll.services.tax_sync_payload import build_payload

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1000
MAX_BODY_LENGTH = 500
SUCCESS_CODES = range(200, 300)
DUPLICATE_CODE = 409


class TaxSyncConfigurationError(ConfigurationError):
    """Ingest endpoint is not configured. Never retried."""


class TaxSyncValidationError(ValidationError):
    """Period cannot be synced in its current state. Never retried."""


def truncate(text: str, length: int) -> str:
    """Cut text to at most length characters, ending with '...' when cut."""
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def idempotency_key_for(period: PayPeriod) -> str:
    """Stable key from the period id and its commit time."""
    committed_at = period.committed_at or datetime.now(timezone.utc)
    if committed_at.tzinfo is None:
        committed_at = committed_at.replace(tzinfo=timezone.utc)
    return f"tps-{period.pay_period_id}-{int(committed_at.timestamp())}"


class TaxSyncService:
    """Sends one committed pay period to the tax remittance endpoint."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.transport = transport
        self.events: list[DomainEvent] = []

    async def sync(self, pay_period_id: UUID) -> PayPeriod:
        """Run one sync attempt.

        Raises:
            TaxSyncConfigurationError: endpoint unset; nothing changed
            TaxSyncValidationError: period not committed, empty, already synced
                or being synced by another caller; nothing changed
            TaxSyncError: the attempt failed and the period is marked failed
        """
        if not self.settings.tax_sync_configured:
            raise TaxSyncConfigurationError("TAX_SYNC_INGEST_URL is not configured")

        period = await self._load(pay_period_id)
        if period.status != PayPeriodStatus.COMMITTED:
            raise TaxSyncValidationError("Pay period is not committed")
        if not period.payroll_items:
            raise TaxSyncValidationError("Pay period has no payroll items")
        if not PayPeriodStateMachine.can_retry_sync(period.status, period.tax_sync_status):
            raise TaxSyncValidationError(
                f"Tax sync is {period.tax_sync_status}; only pending or failed periods are sent"
            )

        await self._mark_syncing(period)
        await self.session.commit()

        try:
            response = await self._post(period)
            self._handle_response(period, response)
        except TaxSyncError as e:
            self._mark_failed(period, str(e), e.status_code)
            await self.session.commit()
            raise
        except httpx.HTTPError as e:
            message = f"Network error: {e}"
            self._mark_failed(period, message, None)
            await self.session.commit()
            raise TaxSyncError(message) from e
        except Exception as e:
            message = f"Unexpected error: {e}"
            self._mark_failed(period, message, None)
            await self.session.commit()
            raise TaxSyncError(message) from e

        await self.session.commit()
        return period

    async def _load(self, pay_period_id: UUID) -> PayPeriod:
        result = await self.session.execute(
            select(PayPeriod)
            .where(PayPeriod.pay_period_id == pay_period_id)
            .options(
                selectinload(PayPeriod.company),
                selectinload(PayPeriod.payroll_items).selectinload(PayrollItem.employee),
            )
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundError("PayPeriod", pay_period_id)
        return period

    async def _post(self, period: PayPeriod) -> httpx.Response:
        payload = build_payload(period, self.settings.tax_sync_source)
        async with httpx.AsyncClient(
            timeout=self.settings.tax_sync_timeout_seconds,
            transport=self.transport,
        ) as client:
            return await client.post(
                self.settings.tax_sync_ingest_url,
                json=payload,
                headers=self._headers(period.tax_sync_idempotency_key),
            )

    def _headers(self, idempotency_key: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Idempotency-Key": idempotency_key,
            "X-Source": self.settings.tax_sync_source,
        }
        if self.settings.tax_sync_api_token:
            headers["Authorization"] = f"Bearer {self.settings.tax_sync_api_token}"
        if self.settings.tax_sync_shared_secret:
            headers["X-Shared-Secret"] = self.settings.tax_sync_shared_secret
        return headers

    def _handle_response(self, period: PayPeriod, response: httpx.Response) -> None:
        code = response.status_code
        if code in SUCCESS_CODES or code == DUPLICATE_CODE:
            self._mark_synced(period, duplicate=code == DUPLICATE_CODE)
            return

        body = truncate(response.text or "", MAX_BODY_LENGTH)
        if 400 <= code < 500:
            raise TaxSyncError(f"Ingest endpoint rejected payload ({code}): {body}", code)
        if 500 <= code < 600:
            raise TaxSyncError(f"Ingest endpoint server error ({code}): {body}", code)
        raise TaxSyncError(f"Unexpected response from ingest endpoint ({code})", code)

    async def _mark_syncing(self, period: PayPeriod) -> None:
        """pending or failed -> syncing, counting the attempt.

        Conditional on the stored sync status, so only one caller can
        claim an attempt.
        """
        # Generated once; every later attempt reuses it
        key = period.tax_sync_idempotency_key or idempotency_key_for(period)
        result = await self.session.execute(
            update(PayPeriod)
            .where(
                PayPeriod.pay_period_id == period.pay_period_id,
                PayPeriod.status == PayPeriodStatus.COMMITTED.value,
                PayPeriod.tax_sync_status.in_(
                    [s.value for s in PayPeriodStateMachine.SYNC_RETRIABLE]
                ),
            )
            .values(
                tax_sync_status=TaxSyncStatus.SYNCING.value,
                tax_sync_attempts=PayPeriod.tax_sync_attempts + 1,
                tax_sync_idempotency_key=key,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise TaxSyncValidationError("Tax sync for this pay period is already in progress")
        await self.session.refresh(
            period, ["tax_sync_status", "tax_sync_attempts", "tax_sync_idempotency_key"]
        )

    def _mark_synced(self, period: PayPeriod, duplicate: bool) -> None:
        period.tax_sync_status = TaxSyncStatus.SYNCED.value
        period.tax_synced_at = datetime.now(timezone.utc)
        period.tax_sync_last_error = None

        logger.info(
            "Tax sync succeeded for pay period %s",
            period.pay_period_id,
            extra={"attempt": period.tax_sync_attempts, "duplicate": duplicate},
        )
        self.events.append(
            TaxSyncCompleted(
                metadata=self._metadata(period),
                pay_period_id=period.pay_period_id,
                idempotency_key=period.tax_sync_idempotency_key,
                attempts=period.tax_sync_attempts,
                duplicate=duplicate,
            )
        )

    def _mark_failed(self, period: PayPeriod, error: str, status_code: int | None) -> None:
        period.tax_sync_status = TaxSyncStatus.FAILED.value
        period.tax_sync_last_error = truncate(error, MAX_ERROR_LENGTH)

        logger.warning(
            "Tax sync failed for pay period %s: %s",
            period.pay_period_id,
            error,
            extra={"attempt": period.tax_sync_attempts, "status_code": status_code},
        )
        self.events.append(
            TaxSyncFailed(
                metadata=self._metadata(period),
                pay_period_id=period.pay_period_id,
                attempts=period.tax_sync_attempts,
                error=period.tax_sync_last_error,
                status_code=status_code,
            )
        )

    @staticmethod
    def _metadata(period: PayPeriod) -> EventMetadata:
        return EventMetadata.create(company_id=period.company_id, actor_type="worker")
