"""Year-to-date accumulation into employee, department and company totals."""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from territorial_payroll.calculators.pay_calculator import OVERTIME_MULTIPLIER
from territorial_payroll.calculators.types import ZERO, EmploymentType, as_decimal, round_to_cents
from territorial_payroll.context import RequestContext
from territorial_payroll.database import insert_ignore
from territorial_payroll.errors import ValidationError
from territorial_payroll.events import DomainEvent, EventMetadata, YtdTotalsReset
from territorial_payroll.models import (
    CompanyYtdTotal,
    DepartmentYtdTotal,
    EmployeeYtdTotal,
    YtdTotalMixin,
)

if TYPE_CHECKING:
    from territorial_payroll.models import Employee, PayrollItem

logger = logging.getLogger(__name__)


class YtdScope(str, Enum):
    EMPLOYEE = "employee"
    DEPARTMENT = "department"
    COMPANY = "company"


YTD_MODELS: dict[YtdScope, type[YtdTotalMixin]] = {
    YtdScope.EMPLOYEE: EmployeeYtdTotal,
    YtdScope.DEPARTMENT: DepartmentYtdTotal,
    YtdScope.COMPANY: CompanyYtdTotal,
}


class ResetNotConfirmedError(ValidationError):
    """YTD reset was requested without explicit confirmation."""


def overtime_pay(item: PayrollItem) -> Decimal:
    """Overtime hours at time-and-a-half; only hourly items earn overtime."""
    if item.employment_type != EmploymentType.HOURLY:
        return ZERO
    return round_to_cents(
        as_decimal(item.overtime_hours) * as_decimal(item.pay_rate) * OVERTIME_MULTIPLIER
    )


def item_amounts(item: PayrollItem) -> dict[YtdScope, dict[str, Decimal]]:
    """Per-scope amounts one payroll item contributes to YTD totals."""
    shared = {
        "gross_pay": as_decimal(item.gross_pay),
        "net_pay": as_decimal(item.net_pay),
        "withholding_tax": as_decimal(item.withholding_tax),
        "social_security_tax": as_decimal(item.social_security_tax),
        "medicare_tax": as_decimal(item.medicare_tax),
    }
    return {
        YtdScope.EMPLOYEE: {
            **shared,
            "retirement": as_decimal(item.retirement_payment),
            "roth_retirement": as_decimal(item.roth_retirement_payment),
            "insurance": as_decimal(item.insurance_payment),
            "loans": as_decimal(item.loan_payment),
            "tips": as_decimal(item.reported_tips),
            "bonus": as_decimal(item.bonus),
            "overtime_pay": overtime_pay(item),
        },
        YtdScope.DEPARTMENT: dict(shared),
        YtdScope.COMPANY: {
            **shared,
            "employer_social_security": as_decimal(item.employer_social_security_tax),
            "employer_medicare": as_decimal(item.employer_medicare_tax),
        },
    }


class YtdAggregator:
    """Sole writer of YTD rows.

    Every change is a locked read-modify-write (SELECT ... FOR UPDATE)
    inside the caller's transaction, so concurrent commits for the same
    (entity, year) serialize on the row lock.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.events: list[DomainEvent] = []

    async def get(self, scope: YtdScope, entity_id: UUID, year: int) -> YtdTotalMixin | None:
        """Read a YTD row without creating it."""
        model = YTD_MODELS[YtdScope(scope)]
        entity_column = getattr(model, model.ENTITY_COLUMN)
        result = await self.session.execute(
            select(model).where(entity_column == entity_id, model.year == year)
        )
        return result.scalar_one_or_none()

    async def fold_in(
        self,
        scope: YtdScope,
        entity_id: UUID,
        year: int,
        amounts: dict[str, Decimal],
    ) -> YtdTotalMixin:
        """Add amounts into the (entity, year) row, creating it on first use."""
        row = await self._lock_row(YtdScope(scope), entity_id, year)
        for field_name, amount in amounts.items():
            setattr(row, field_name, as_decimal(getattr(row, field_name)) + amount)
        await self.session.flush()
        return row

    async def fold_in_item(
        self, item: PayrollItem, employee: Employee, year: int
    ) -> None:
        """Fold one payroll item into its employee, department and company totals."""
        amounts = item_amounts(item)
        await self.fold_in(YtdScope.EMPLOYEE, item.employee_id, year, amounts[YtdScope.EMPLOYEE])
        if employee.department_id is not None:
            await self.fold_in(
                YtdScope.DEPARTMENT, employee.department_id, year, amounts[YtdScope.DEPARTMENT]
            )
        await self.fold_in(
            YtdScope.COMPANY, employee.company_id, year, amounts[YtdScope.COMPANY]
        )

    async def fold_in_items(
        self, items: list[tuple[PayrollItem, Employee]], year: int
    ) -> None:
        """Fold many items; rows are locked in a stable order."""
        for item, employee in sorted(items, key=lambda pair: str(pair[0].employee_id)):
            await self.fold_in_item(item, employee, year)

    async def reset(
        self,
        ctx: RequestContext,
        scope: YtdScope,
        entity_id: UUID,
        year: int,
        confirm: bool = False,
    ) -> YtdTotalMixin | None:
        """Zero every total on a row. Requires confirm=True.

        Returns None when no row exists for (entity, year).
        """
        if not confirm:
            raise ResetNotConfirmedError("YTD reset must be explicitly confirmed")

        scope = YtdScope(scope)
        if await self.get(scope, entity_id, year) is None:
            return None

        row = await self._lock_row(scope, entity_id, year)
        for field_name in row.AMOUNT_FIELDS:
            setattr(row, field_name, ZERO)
        await self.session.flush()

        logger.warning(
            "YTD totals reset",
            extra={"scope": scope.value, "entity_id": str(entity_id), "year": year},
        )
        self.events.append(
            YtdTotalsReset(
                metadata=EventMetadata.from_context(ctx),
                scope=scope.value,
                entity_id=entity_id,
                year=year,
            )
        )
        return row

    async def _lock_row(self, scope: YtdScope, entity_id: UUID, year: int) -> YtdTotalMixin:
        model = YTD_MODELS[scope]
        entity_column_name = model.ENTITY_COLUMN
        await insert_ignore(
            self.session,
            model,
            {entity_column_name: entity_id, "year": year},
            index_elements=[entity_column_name, "year"],
        )
        result = await self.session.execute(
            select(model)
            .where(getattr(model, entity_column_name) == entity_id, model.year == year)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
