"""Pay period API endpoints."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, Request, status

from territorial_payroll.api.dependencies import (
    AppSettings,
    Context,
    DbSession,
    Emitter,
    commit_and_publish,
)
from territorial_payroll.api.schemas import (
    ErrorResponse,
    PayPeriodCreate,
    PayPeriodDetailResponse,
    PayPeriodListResponse,
    PayPeriodResponse,
    PayPeriodUpdate,
    RunPayrollRequest,
    RunPayrollResponse,
    TaxSyncResponse,
)
from territorial_payroll.models import PayPeriod
from territorial_payroll.services.pay_period_service import PayPeriodService
from territorial_payroll.services.state_machine import PayPeriodStateMachine
from territorial_payroll.services.tax_sync_service import TaxSyncService, TaxSyncValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pay-periods", tags=["pay-periods"])

PayPeriodId = Annotated[UUID, Path()]


# ============================================================================
# Pay Period CRUD
# ============================================================================


@router.post(
    "",
    response_model=PayPeriodDetailResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_pay_period(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    payload: PayPeriodCreate,
) -> PayPeriodDetailResponse:
    """Create a new pay period in draft status."""
    service = PayPeriodService(db, ctx)
    period = await service.create_period(
        payload.start_date, payload.end_date, payload.pay_date, payload.notes
    )
    await commit_and_publish(db, emitter, service.events)
    return PayPeriodDetailResponse.model_validate(period)


@router.get("", response_model=PayPeriodListResponse)
async def list_pay_periods(
    db: DbSession,
    ctx: Context,
    year: Annotated[int | None, Query(ge=2000, le=2100)] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> PayPeriodListResponse:
    """List the company's pay periods, newest first."""
    periods = await PayPeriodService(db, ctx).list_periods(year=year, status=status_filter)
    return PayPeriodListResponse(
        items=[PayPeriodResponse.model_validate(p) for p in periods],
        total=len(periods),
    )


@router.get(
    "/{pay_period_id}",
    response_model=PayPeriodDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_pay_period(
    db: DbSession, ctx: Context, pay_period_id: PayPeriodId
) -> PayPeriodDetailResponse:
    period = await PayPeriodService(db, ctx).get_period(pay_period_id)
    return PayPeriodDetailResponse.model_validate(period)


@router.patch(
    "/{pay_period_id}",
    response_model=PayPeriodDetailResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_pay_period(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    pay_period_id: PayPeriodId,
    payload: PayPeriodUpdate,
) -> PayPeriodDetailResponse:
    """Change dates or notes while the period is draft or calculated."""
    service = PayPeriodService(db, ctx)
    period = await service.update_period(pay_period_id, payload.model_dump(exclude_unset=True))
    await commit_and_publish(db, emitter, service.events)
    return PayPeriodDetailResponse.model_validate(period)


@router.delete(
    "/{pay_period_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def delete_pay_period(
    db: DbSession, ctx: Context, emitter: Emitter, pay_period_id: PayPeriodId
) -> None:
    """Delete a pay period and its items. Committed periods cannot be deleted."""
    service = PayPeriodService(db, ctx)
    await service.delete_period(pay_period_id)
    await commit_and_publish(db, emitter, service.events)


# ============================================================================
# Pay Period State Transitions
# ============================================================================


@router.post(
    "/{pay_period_id}/run-payroll",
    response_model=RunPayrollResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def run_payroll(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    pay_period_id: PayPeriodId,
    payload: RunPayrollRequest | None = None,
) -> RunPayrollResponse:
    """Calculate every selected employee; the period becomes calculated when none fail."""
    payload = payload or RunPayrollRequest()
    hours = (
        {
            employee_id: override.model_dump(exclude_none=True)
            for employee_id, override in payload.hours.items()
        }
        if payload.hours
        else None
    )

    service = PayPeriodService(db, ctx)
    result = await service.run_payroll(pay_period_id, payload.employee_ids, hours)
    await commit_and_publish(db, emitter, service.events)
    return RunPayrollResponse(
        pay_period=PayPeriodResponse.model_validate(result.pay_period),
        calculated=len(result.calculated),
        errors=result.errors,
    )


@router.post(
    "/{pay_period_id}/approve",
    response_model=PayPeriodDetailResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def approve_pay_period(
    db: DbSession, ctx: Context, emitter: Emitter, pay_period_id: PayPeriodId
) -> PayPeriodDetailResponse:
    """Approve a calculated pay period, recording the approving user."""
    service = PayPeriodService(db, ctx)
    period = await service.approve(pay_period_id)
    await commit_and_publish(db, emitter, service.events)
    return PayPeriodDetailResponse.model_validate(period)


@router.post(
    "/{pay_period_id}/commit",
    response_model=PayPeriodDetailResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def commit_pay_period(
    db: DbSession, ctx: Context, emitter: Emitter, pay_period_id: PayPeriodId
) -> PayPeriodDetailResponse:
    """Commit an approved pay period and fold it into YTD totals.

    Tax sync is queued once the commit has been persisted.
    """
    service = PayPeriodService(db, ctx)
    period = await service.commit(pay_period_id)
    await commit_and_publish(db, emitter, service.events)
    return PayPeriodDetailResponse.model_validate(period)


@router.post(
    "/{pay_period_id}/tax-sync",
    response_model=TaxSyncResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def retry_tax_sync(
    request: Request,
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    settings: AppSettings,
    pay_period_id: PayPeriodId,
) -> TaxSyncResponse:
    """Send a committed period's taxes again.

    Queued on the background worker when it runs, otherwise sent inline.
    A period the worker already holds is not queued a second time.
    """
    period = await PayPeriodService(db, ctx).get_period(pay_period_id)
    if not PayPeriodStateMachine.can_retry_sync(period.status, period.tax_sync_status):
        raise TaxSyncValidationError(
            f"Tax sync cannot be retried (status {period.status}, "
            f"sync status {period.tax_sync_status})"
        )

    worker = request.app.state.tax_sync_worker
    if worker is not None and worker.running:
        if not worker.enqueue(period.pay_period_id, period.tax_sync_attempts + 1):
            logger.info("Tax sync for pay period %s is already queued", pay_period_id)
        return _sync_response(period, queued=True)

    # sync() commits its own state changes
    sync = TaxSyncService(db, settings, request.app.state.tax_sync_transport)
    try:
        period = await sync.sync(pay_period_id)
    finally:
        emitter.emit_all(sync.events)
    return _sync_response(period, queued=False)


def _sync_response(period: PayPeriod, queued: bool) -> TaxSyncResponse:
    return TaxSyncResponse(
        pay_period_id=period.pay_period_id,
        queued=queued,
        tax_sync_status=period.tax_sync_status,
        tax_sync_attempts=period.tax_sync_attempts,
        tax_sync_last_error=period.tax_sync_last_error,
        tax_synced_at=period.tax_synced_at,
    )
