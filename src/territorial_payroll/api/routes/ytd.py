"""Year-to-date totals endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path
from sqlalchemy.ext.asyncio import AsyncSession

from territorial_payroll.api.dependencies import Context, DbSession, Emitter, commit_and_publish
from territorial_payroll.api.schemas import (
    ErrorResponse,
    YtdResetRequest,
    YtdScopeName,
    YtdTotalResponse,
)
from territorial_payroll.context import RequestContext
from territorial_payroll.errors import NotFoundError
from territorial_payroll.models import Department, Employee, YtdTotalMixin
from territorial_payroll.services.ytd_aggregator import YtdAggregator, YtdScope

router = APIRouter(prefix="/ytd", tags=["ytd"])


async def _ensure_owned(
    db: AsyncSession, ctx: RequestContext, scope: str, entity_id: UUID
) -> None:
    """YTD rows are only visible to the company they belong to."""
    if scope == YtdScope.COMPANY:
        owner = entity_id
    elif scope == YtdScope.DEPARTMENT:
        department = await db.get(Department, entity_id)
        owner = department.company_id if department else None
    else:
        employee = await db.get(Employee, entity_id)
        owner = employee.company_id if employee else None
    if owner != ctx.company_id:
        raise NotFoundError(scope.capitalize(), entity_id)


def _response(scope: str, entity_id: UUID, year: int, row: YtdTotalMixin) -> YtdTotalResponse:
    return YtdTotalResponse(
        scope=scope,
        entity_id=entity_id,
        year=year,
        totals={name: getattr(row, name) for name in row.AMOUNT_FIELDS},
    )


@router.get(
    "/{scope}/{entity_id}/{year}",
    response_model=YtdTotalResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_ytd_totals(
    db: DbSession,
    ctx: Context,
    scope: Annotated[YtdScopeName, Path()],
    entity_id: Annotated[UUID, Path()],
    year: Annotated[int, Path(ge=2000, le=2100)],
) -> YtdTotalResponse:
    await _ensure_owned(db, ctx, scope, entity_id)
    row = await YtdAggregator(db).get(YtdScope(scope), entity_id, year)
    if row is None:
        raise NotFoundError(f"{scope} YTD totals", f"{entity_id}/{year}")
    return _response(scope, entity_id, year, row)


@router.post(
    "/reset",
    response_model=YtdTotalResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def reset_ytd_totals(
    db: DbSession, ctx: Context, emitter: Emitter, payload: YtdResetRequest
) -> YtdTotalResponse:
    """Zero a YTD row. Destructive: requires confirm=true."""
    await _ensure_owned(db, ctx, payload.scope, payload.entity_id)
    aggregator = YtdAggregator(db)
    row = await aggregator.reset(
        ctx, YtdScope(payload.scope), payload.entity_id, payload.year, confirm=payload.confirm
    )
    if row is None:
        raise NotFoundError(f"{payload.scope} YTD totals", f"{payload.entity_id}/{payload.year}")
    await commit_and_publish(db, emitter, aggregator.events)
    return _response(payload.scope, payload.entity_id, payload.year, row)
