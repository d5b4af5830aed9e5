"""Annual tax configuration endpoints.

Every change is written to the configuration's audit log.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, status

from territorial_payroll.api.dependencies import Context, DbSession
from territorial_payroll.api.schemas import (
    BracketsReplace,
    ErrorResponse,
    TaxBracketSchema,
    TaxConfigAuditLogResponse,
    TaxConfigCopyRequest,
    TaxConfigCreate,
    TaxConfigResponse,
    TaxConfigUpdate,
)
from territorial_payroll.calculators.rate_repository import TaxRateRepository
from territorial_payroll.calculators.types import ProgressiveBracket

router = APIRouter(prefix="/tax-configs", tags=["tax-configs"])

ConfigId = Annotated[UUID, Path()]


def _brackets(brackets: list[TaxBracketSchema]) -> list[ProgressiveBracket]:
    return [ProgressiveBracket(b.min_income, b.max_income, b.rate) for b in brackets]


@router.get("", response_model=list[TaxConfigResponse])
async def list_tax_configs(db: DbSession, ctx: Context) -> list[TaxConfigResponse]:
    configs = await TaxRateRepository(db).list_configs()
    return [TaxConfigResponse.model_validate(c) for c in configs]


@router.get(
    "/{config_id}",
    response_model=TaxConfigResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_tax_config(db: DbSession, ctx: Context, config_id: ConfigId) -> TaxConfigResponse:
    config = await TaxRateRepository(db).get_config(config_id)
    return TaxConfigResponse.model_validate(config)


@router.post(
    "",
    response_model=TaxConfigResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_tax_config(
    db: DbSession, ctx: Context, payload: TaxConfigCreate
) -> TaxConfigResponse:
    """Create a year's configuration. New configurations start inactive."""
    config = await TaxRateRepository(db).create_config(
        ctx,
        tax_year=payload.tax_year,
        ss_wage_base=payload.ss_wage_base,
        filing_statuses={
            status_name: (fs.standard_deduction, _brackets(fs.brackets))
            for status_name, fs in payload.filing_statuses.items()
        },
        ss_rate=payload.ss_rate,
        medicare_rate=payload.medicare_rate,
        additional_medicare_rate=payload.additional_medicare_rate,
        additional_medicare_threshold=payload.additional_medicare_threshold,
    )
    await db.commit()
    return TaxConfigResponse.model_validate(config)


@router.post(
    "/{config_id}/copy",
    response_model=TaxConfigResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def copy_tax_config(
    db: DbSession, ctx: Context, config_id: ConfigId, payload: TaxConfigCopyRequest
) -> TaxConfigResponse:
    """Start a new year from an existing configuration."""
    config = await TaxRateRepository(db).create_from_previous(ctx, config_id, payload.tax_year)
    await db.commit()
    return TaxConfigResponse.model_validate(config)


@router.patch(
    "/{config_id}",
    response_model=TaxConfigResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def update_tax_config(
    db: DbSession, ctx: Context, config_id: ConfigId, payload: TaxConfigUpdate
) -> TaxConfigResponse:
    repository = TaxRateRepository(db)
    changes = payload.model_dump(exclude_none=True, exclude={"standard_deductions"})
    if changes:
        await repository.update_config(ctx, config_id, changes)
    for filing_status, amount in (payload.standard_deductions or {}).items():
        await repository.update_standard_deduction(ctx, config_id, filing_status, amount)

    config = await repository.get_config(config_id)
    await db.commit()
    return TaxConfigResponse.model_validate(config)


@router.put(
    "/{config_id}/filing-statuses/{filing_status}/brackets",
    response_model=TaxConfigResponse,
    responses={404: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def replace_tax_brackets(
    db: DbSession,
    ctx: Context,
    config_id: ConfigId,
    filing_status: Annotated[str, Path()],
    payload: BracketsReplace,
) -> TaxConfigResponse:
    """Replace a filing status's bracket ladder as a whole."""
    repository = TaxRateRepository(db)
    await repository.replace_brackets(ctx, config_id, filing_status, _brackets(payload.brackets))
    config = await repository.get_config(config_id)
    await db.commit()
    return TaxConfigResponse.model_validate(config)


@router.post(
    "/{config_id}/activate",
    response_model=TaxConfigResponse,
    responses={404: {"model": ErrorResponse}},
)
async def activate_tax_config(
    db: DbSession, ctx: Context, config_id: ConfigId
) -> TaxConfigResponse:
    """Make this the active configuration, deactivating any other."""
    repository = TaxRateRepository(db)
    await repository.activate(ctx, config_id)
    config = await repository.get_config(config_id)
    await db.commit()
    return TaxConfigResponse.model_validate(config)


@router.get(
    "/{config_id}/audit-logs",
    response_model=list[TaxConfigAuditLogResponse],
    responses={404: {"model": ErrorResponse}},
)
async def list_tax_config_audit_logs(
    db: DbSession, ctx: Context, config_id: ConfigId
) -> list[TaxConfigAuditLogResponse]:
    repository = TaxRateRepository(db)
    await repository.get_config(config_id)
    logs = await repository.audit_logs(config_id)
    return [TaxConfigAuditLogResponse.model_validate(log) for log in logs]
