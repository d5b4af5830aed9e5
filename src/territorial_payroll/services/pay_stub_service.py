"""Pay stub projection, rendering and storage."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from territorial_payroll.calculators.types import as_decimal, periods_per_year
from territorial_payroll.context import RequestContext
from territorial_payroll.errors import NotFoundError, ValidationError
from territorial_payroll.interfaces import DocumentGenerator, ObjectStore
from territorial_payroll.models import PayPeriod, PayrollItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayStubView:
    """Read-only view of everything a pay stub shows."""

    company_id: UUID
    company_name: str
    company_ein: str | None
    pay_period_id: UUID
    start_date: date
    end_date: date
    pay_date: date
    period_status: str
    payroll_item_id: UUID
    employee_id: UUID
    employee_name: str
    employment_type: str
    pay_rate: Decimal
    periods_per_year: int
    hours_worked: Decimal
    overtime_hours: Decimal
    holiday_hours: Decimal
    pto_hours: Decimal
    reported_tips: Decimal
    bonus: Decimal
    gross_pay: Decimal
    withholding_tax: Decimal
    social_security_tax: Decimal
    medicare_tax: Decimal
    additional_withholding: Decimal
    retirement_payment: Decimal
    roth_retirement_payment: Decimal
    loan_payment: Decimal
    insurance_payment: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    ytd_gross: Decimal
    ytd_net: Decimal
    ytd_withholding_tax: Decimal
    ytd_social_security_tax: Decimal
    ytd_medicare_tax: Decimal
    ytd_retirement: Decimal
    ytd_roth_retirement: Decimal

    @classmethod
    def from_item(cls, item: PayrollItem) -> PayStubView:
        """Build from an item with its period, company and employee loaded."""
        period = item.pay_period
        company = period.company
        employee = item.employee
        money = {
            name: as_decimal(getattr(item, name))
            for name in (
                "pay_rate",
                "hours_worked",
                "overtime_hours",
                "holiday_hours",
                "pto_hours",
                "reported_tips",
                "bonus",
                "gross_pay",
                "withholding_tax",
                "social_security_tax",
                "medicare_tax",
                "additional_withholding",
                "retirement_payment",
                "roth_retirement_payment",
                "loan_payment",
                "insurance_payment",
                "total_deductions",
                "net_pay",
                "ytd_gross",
                "ytd_net",
                "ytd_withholding_tax",
                "ytd_social_security_tax",
                "ytd_medicare_tax",
                "ytd_retirement",
                "ytd_roth_retirement",
            )
        }
        return cls(
            company_id=company.company_id,
            company_name=company.name,
            company_ein=company.ein,
            pay_period_id=period.pay_period_id,
            start_date=period.start_date,
            end_date=period.end_date,
            pay_date=period.pay_date,
            period_status=period.status,
            payroll_item_id=item.payroll_item_id,
            employee_id=employee.employee_id,
            employee_name=employee.full_name,
            employment_type=item.employment_type,
            periods_per_year=periods_per_year(employee.pay_frequency),
            **money,
        )


def pay_stub_key(company_id: UUID, pay_period_id: UUID, payroll_item_id: UUID) -> str:
    return f"pay_stubs/{company_id}/{pay_period_id}/{payroll_item_id}.pdf"


class PayStubService:
    """Renders pay stubs through a DocumentGenerator and keeps them in an ObjectStore."""

    def __init__(
        self,
        session: AsyncSession,
        ctx: RequestContext,
        generator: DocumentGenerator,
        store: ObjectStore,
    ):
        self.session = session
        self.ctx = ctx
        self.generator = generator
        self.store = store

    async def view(self, pay_period_id: UUID, payroll_item_id: UUID) -> PayStubView:
        item = await self._load_item(pay_period_id, payroll_item_id)
        if item.calculated_at is None:
            raise ValidationError(f"Payroll item {payroll_item_id} has not been calculated")
        return PayStubView.from_item(item)

    async def generate(self, pay_period_id: UUID, payroll_item_id: UUID) -> bytes:
        """Render a fresh stub and store it, replacing any earlier copy."""
        view = await self.view(pay_period_id, payroll_item_id)
        document = self.generator.render(view)
        key = pay_stub_key(view.company_id, view.pay_period_id, view.payroll_item_id)
        await self.store.put(key, document)
        logger.info("Generated pay stub %s", key)
        return document

    async def fetch(self, pay_period_id: UUID, payroll_item_id: UUID) -> bytes:
        """Stored stub, generating it on first request."""
        key = pay_stub_key(self.ctx.company_id, pay_period_id, payroll_item_id)
        if await self.store.exists(key):
            document = await self.store.get(key)
            if document is not None:
                return document
        return await self.generate(pay_period_id, payroll_item_id)

    async def _load_item(self, pay_period_id: UUID, payroll_item_id: UUID) -> PayrollItem:
        result = await self.session.execute(
            select(PayrollItem)
            .join(PayPeriod, PayPeriod.pay_period_id == PayrollItem.pay_period_id)
            .where(
                PayrollItem.payroll_item_id == payroll_item_id,
                PayrollItem.pay_period_id == pay_period_id,
                PayPeriod.company_id == self.ctx.company_id,
            )
            .options(
                selectinload(PayrollItem.pay_period).selectinload(PayPeriod.company),
                selectinload(PayrollItem.employee),
            )
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise NotFoundError("PayrollItem", payroll_item_id)
        return item
