"""Payroll item API endpoints, nested under a pay period."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Request, Response, status

from territorial_payroll.api.dependencies import Context, DbSession, Emitter, commit_and_publish
from territorial_payroll.api.schemas import (
    ErrorResponse,
    PayrollItemCreate,
    PayrollItemInputs,
    PayrollItemListResponse,
    PayrollItemResponse,
)
from territorial_payroll.errors import ConfigurationError
from territorial_payroll.services.pay_period_service import PayPeriodService
from territorial_payroll.services.pay_stub_service import PayStubService

router = APIRouter(prefix="/pay-periods/{pay_period_id}/items", tags=["payroll-items"])

PayPeriodId = Annotated[UUID, Path()]
PayrollItemId = Annotated[UUID, Path()]

NOT_FOUND_OR_LOCKED = {404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}}


@router.get("", response_model=PayrollItemListResponse, responses={404: {"model": ErrorResponse}})
async def list_payroll_items(
    db: DbSession, ctx: Context, pay_period_id: PayPeriodId
) -> PayrollItemListResponse:
    period = await PayPeriodService(db, ctx).get_period(pay_period_id)
    items = [PayrollItemResponse.model_validate(i) for i in period.payroll_items]
    return PayrollItemListResponse(items=items, total=len(items))


@router.post(
    "",
    response_model=PayrollItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses=NOT_FOUND_OR_LOCKED,
)
async def add_payroll_item(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    pay_period_id: PayPeriodId,
    payload: PayrollItemCreate,
) -> PayrollItemResponse:
    """Add an employee to the period and calculate their pay."""
    inputs = payload.model_dump(exclude_none=True, exclude={"employee_id"})
    service = PayPeriodService(db, ctx)
    item = await service.add_item(pay_period_id, payload.employee_id, inputs)
    await commit_and_publish(db, emitter, service.events)
    return PayrollItemResponse.model_validate(item)


@router.get(
    "/{payroll_item_id}",
    response_model=PayrollItemResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_item(
    db: DbSession, ctx: Context, pay_period_id: PayPeriodId, payroll_item_id: PayrollItemId
) -> PayrollItemResponse:
    item = await PayPeriodService(db, ctx).get_item(pay_period_id, payroll_item_id)
    return PayrollItemResponse.model_validate(item)


@router.patch(
    "/{payroll_item_id}",
    response_model=PayrollItemResponse,
    responses=NOT_FOUND_OR_LOCKED,
)
async def update_payroll_item(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    pay_period_id: PayPeriodId,
    payroll_item_id: PayrollItemId,
    payload: PayrollItemInputs,
) -> PayrollItemResponse:
    """Change hours or supplemental pay and recalculate."""
    service = PayPeriodService(db, ctx)
    item = await service.update_item(
        pay_period_id, payroll_item_id, payload.model_dump(exclude_none=True)
    )
    await commit_and_publish(db, emitter, service.events)
    return PayrollItemResponse.model_validate(item)


@router.delete(
    "/{payroll_item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=NOT_FOUND_OR_LOCKED,
)
async def remove_payroll_item(
    db: DbSession,
    ctx: Context,
    emitter: Emitter,
    pay_period_id: PayPeriodId,
    payroll_item_id: PayrollItemId,
) -> None:
    service = PayPeriodService(db, ctx)
    await service.remove_item(pay_period_id, payroll_item_id)
    await commit_and_publish(db, emitter, service.events)


@router.post(
    "/{payroll_item_id}/recalculate",
    response_model=PayrollItemResponse,
    responses=NOT_FOUND_OR_LOCKED,
)
async def recalculate_payroll_item(
    db: DbSession,
    ctx: Context,
    pay_period_id: PayPeriodId,
    payroll_item_id: PayrollItemId,
) -> PayrollItemResponse:
    item = await PayPeriodService(db, ctx).recalculate_item(pay_period_id, payroll_item_id)
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.get(
    "/{payroll_item_id}/pay-stub",
    response_class=Response,
    responses={
        200: {"content": {"application/pdf": {}}},
        404: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
    },
)
async def get_pay_stub(
    request: Request,
    db: DbSession,
    ctx: Context,
    pay_period_id: PayPeriodId,
    payroll_item_id: PayrollItemId,
) -> Response:
    """Stored pay stub, rendered on first request."""
    generator = request.app.state.document_generator
    store = request.app.state.object_store
    if generator is None or store is None:
        raise ConfigurationError("Pay stub generation is not configured")

    service = PayStubService(db, ctx, generator, store)
    document = await service.fetch(pay_period_id, payroll_item_id)
    return Response(
        content=document,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="pay-stub-{payroll_item_id}.pdf"'},
    )
