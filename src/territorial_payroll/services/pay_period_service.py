"""Pay period service - orchestrates payroll items and the period lifecycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from territorial_payroll.calculators.pay_calculator import PayInputs, PayrollItemCalculator
from territorial_payroll.calculators.rate_repository import TaxRateRepository
from territorial_payroll.calculators.types import ZERO, EmploymentType, YtdSnapshot, as_decimal
from territorial_payroll.context import RequestContext
from territorial_payroll.errors import ConfigurationError, NotFoundError, ValidationError
from territorial_payroll.events import (
    DomainEvent,
    EventMetadata,
    PayPeriodApproved,
    PayPeriodCommitted,
    PayPeriodCreated,
    PayPeriodDeleted,
    PayPeriodUpdated,
    PayrollCalculated,
    PayrollItemCreated,
    PayrollItemRemoved,
    PayrollItemUpdated,
)
from territorial_payroll.models import Employee, EmployeeYtdTotal, PayPeriod, PayrollItem
from territorial_payroll.services.state_machine import (
    InvalidTransitionError,
    PayPeriodStateMachine,
    PayPeriodStatus,
    PeriodLockedError,
    TaxSyncStatus,
)
from territorial_payroll.services.ytd_aggregator import YtdAggregator

logger = logging.getLogger(__name__)

# Regular hours given to a new hourly item when none are supplied
DEFAULT_HOURLY_HOURS = Decimal("80")

# Item inputs an administrator may set
ITEM_INPUT_FIELDS = (
    "hours_worked",
    "overtime_hours",
    "holiday_hours",
    "pto_hours",
    "reported_tips",
    "bonus",
    "loan_payment",
    "insurance_payment",
)

# Keys accepted in run_payroll hour overrides, mapped to item columns
HOURS_OVERRIDE_FIELDS = {
    "regular": "hours_worked",
    "overtime": "overtime_hours",
    "holiday": "holiday_hours",
    "pto": "pto_hours",
}

PERIOD_FIELDS = ("start_date", "end_date", "pay_date", "notes")


class DuplicatePayrollItemError(ValidationError):
    """Employee already has an item in this pay period."""

    def __init__(self, employee_id: UUID, pay_period_id: UUID):
        self.employee_id = employee_id
        self.pay_period_id = pay_period_id
        super().__init__(
            f"Employee {employee_id} already has an item in pay period {pay_period_id}"
        )


@dataclass
class RunPayrollResult:
    """Outcome of running payroll over a period."""

    pay_period: PayPeriod
    calculated: list[PayrollItem] = field(default_factory=list)
    errors: dict[UUID, list[str]] = field(default_factory=dict)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


def validate_period_dates(start_date: date, end_date: date, pay_date: date) -> None:
    if end_date <= start_date:
        raise ValidationError("End date must be after start date")
    if pay_date < end_date:
        raise ValidationError("Pay date must be on or after end date")


def _validate_inputs(values: dict[str, Any]) -> dict[str, Decimal]:
    unknown = set(values) - set(ITEM_INPUT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown payroll item fields: {', '.join(sorted(unknown))}")
    cleaned: dict[str, Decimal] = {}
    for name, value in values.items():
        amount = as_decimal(value)
        if amount < 0:
            raise ValidationError(f"{name} must not be negative")
        cleaned[name] = amount
    return cleaned


class PayPeriodService:
    """Service for managing the pay period lifecycle.

    Operations:
    - create/update/delete periods
    - add/update/remove/recalculate payroll items while editable
    - run_payroll: calculate every selected employee (draft/calculated -> calculated)
    - approve: calculated -> approved
    - commit: approved -> committed, folding every item into YTD totals

    Events are collected in self.events; publish them after the
    transaction commits.
    """

    def __init__(
        self,
        session: AsyncSession,
        ctx: RequestContext,
        rate_repository: TaxRateRepository | None = None,
        calculator: PayrollItemCalculator | None = None,
    ):
        self.session = session
        self.ctx = ctx
        self.rates = rate_repository or TaxRateRepository(session)
        self.calculator = calculator or PayrollItemCalculator()
        self.events: list[DomainEvent] = []

    # ------------------------------------------------------------------
    # Periods
    # ------------------------------------------------------------------

    async def get_period(self, pay_period_id: UUID) -> PayPeriod:
        """Load a period with its items, scoped to the current company."""
        result = await self.session.execute(
            select(PayPeriod)
            .where(
                PayPeriod.pay_period_id == pay_period_id,
                PayPeriod.company_id == self.ctx.company_id,
            )
            .options(selectinload(PayPeriod.payroll_items))
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundError("PayPeriod", pay_period_id)
        return period

    async def list_periods(
        self, year: int | None = None, status: str | None = None
    ) -> list[PayPeriod]:
        query = select(PayPeriod).where(PayPeriod.company_id == self.ctx.company_id)
        if year is not None:
            query = query.where(
                PayPeriod.pay_date >= date(year, 1, 1), PayPeriod.pay_date <= date(year, 12, 31)
            )
        if status is not None:
            query = query.where(PayPeriod.status == status)
        result = await self.session.execute(query.order_by(PayPeriod.start_date.desc()))
        return list(result.scalars().all())

    async def create_period(
        self,
        start_date: date,
        end_date: date,
        pay_date: date,
        notes: str | None = None,
    ) -> PayPeriod:
        validate_period_dates(start_date, end_date, pay_date)
        period = PayPeriod(
            company_id=self.ctx.company_id,
            start_date=start_date,
            end_date=end_date,
            pay_date=pay_date,
            notes=notes,
            status=PayPeriodStatus.DRAFT.value,
            tax_sync_status=TaxSyncStatus.PENDING.value,
            tax_sync_attempts=0,
            created_by_id=self.ctx.actor_id,
        )
        self.session.add(period)
        await self.session.flush()

        self._record(
            PayPeriodCreated,
            pay_period_id=period.pay_period_id,
            start_date=start_date,
            end_date=end_date,
            pay_date=pay_date,
        )
        return await self.get_period(period.pay_period_id)

    async def update_period(self, pay_period_id: UUID, changes: dict[str, Any]) -> PayPeriod:
        """Change dates or notes while the period is still editable."""
        period = await self.get_period(pay_period_id)
        PayPeriodStateMachine.require_editable(period.status, "update the pay period")

        unknown = set(changes) - set(PERIOD_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown pay period fields: {', '.join(sorted(unknown))}")

        validate_period_dates(
            changes.get("start_date", period.start_date),
            changes.get("end_date", period.end_date),
            changes.get("pay_date", period.pay_date),
        )

        applied: dict[str, Any] = {}
        for name, value in changes.items():
            if getattr(period, name) != value:
                setattr(period, name, value)
                applied[name] = value
        await self.session.flush()

        if applied:
            self._record(PayPeriodUpdated, pay_period_id=period.pay_period_id, changes=applied)
        return period

    async def delete_period(self, pay_period_id: UUID) -> None:
        """Delete a period and its items. Forbidden once committed."""
        period = await self.get_period(pay_period_id)
        if not PayPeriodStateMachine.can_delete(period.status):
            raise PeriodLockedError(period.status, "delete the pay period")

        status = period.status
        await self.session.delete(period)
        await self.session.flush()
        self._record(PayPeriodDeleted, pay_period_id=pay_period_id, status=status)
        logger.info("Deleted pay period %s", pay_period_id)

    # ------------------------------------------------------------------
    # Payroll items
    # ------------------------------------------------------------------

    async def get_item(self, pay_period_id: UUID, payroll_item_id: UUID) -> PayrollItem:
        period = await self.get_period(pay_period_id)
        return self._find_item(period, payroll_item_id)

    async def add_item(
        self,
        pay_period_id: UUID,
        employee_id: UUID,
        inputs: dict[str, Any] | None = None,
    ) -> PayrollItem:
        """Add an employee to the period and calculate their pay."""
        period = await self.get_period(pay_period_id)
        PayPeriodStateMachine.require_editable(period.status, "add payroll items")
        values = _validate_inputs(inputs or {})

        employee = await self._get_employee(employee_id)
        if any(i.employee_id == employee_id for i in period.payroll_items):
            raise DuplicatePayrollItemError(employee_id, pay_period_id)

        item = self._new_item(period, employee)
        for name, value in values.items():
            setattr(item, name, value)
        await self._calculate(period, item, employee)
        self.session.add(item)
        await self.session.flush()

        self._record(
            PayrollItemCreated,
            payroll_item_id=item.payroll_item_id,
            pay_period_id=period.pay_period_id,
            employee_id=employee_id,
        )
        return item

    async def update_item(
        self, pay_period_id: UUID, payroll_item_id: UUID, changes: dict[str, Any]
    ) -> PayrollItem:
        """Change item inputs and recalculate."""
        period = await self.get_period(pay_period_id)
        PayPeriodStateMachine.require_editable(period.status, "edit payroll items")
        values = _validate_inputs(changes)
        item = self._find_item(period, payroll_item_id)

        applied = {
            name: value
            for name, value in values.items()
            if as_decimal(getattr(item, name)) != value
        }
        for name, value in applied.items():
            setattr(item, name, value)

        employee = await self._get_employee(item.employee_id)
        await self._calculate(period, item, employee)
        await self.session.flush()

        self._record(
            PayrollItemUpdated,
            payroll_item_id=item.payroll_item_id,
            pay_period_id=period.pay_period_id,
            employee_id=item.employee_id,
            changes=applied,
        )
        return item

    async def remove_item(self, pay_period_id: UUID, payroll_item_id: UUID) -> None:
        period = await self.get_period(pay_period_id)
        PayPeriodStateMachine.require_editable(period.status, "remove payroll items")
        item = self._find_item(period, payroll_item_id)

        period.payroll_items.remove(item)
        await self.session.delete(item)
        await self.session.flush()

        self._record(
            PayrollItemRemoved,
            payroll_item_id=payroll_item_id,
            pay_period_id=pay_period_id,
            employee_id=item.employee_id,
        )

    async def recalculate_item(self, pay_period_id: UUID, payroll_item_id: UUID) -> PayrollItem:
        """Recompute every derived field from the item's current inputs."""
        period = await self.get_period(pay_period_id)
        PayPeriodStateMachine.require_editable(period.status, "recalculate payroll items")
        item = self._find_item(period, payroll_item_id)

        employee = await self._get_employee(item.employee_id)
        await self._calculate(period, item, employee)
        await self.session.flush()
        return item

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run_payroll(
        self,
        pay_period_id: UUID,
        employee_ids: list[UUID] | None = None,
        hours: dict[UUID, dict[str, Any]] | None = None,
    ) -> RunPayrollResult:
        """Calculate payroll for every selected active employee.

        Each employee gets one item (found or created). Failures are
        collected per employee; the period only becomes calculated when
        every employee succeeded.
        """
        period = await self.get_period(pay_period_id)
        if not PayPeriodStateMachine.can_calculate(period.status):
            raise InvalidTransitionError(
                period.status,
                PayPeriodStatus.CALCULATED.value,
                "Can only run payroll on draft or calculated pay periods",
            )

        query = select(Employee).where(
            Employee.company_id == self.ctx.company_id,
            Employee.status == "active",
        )
        if employee_ids is not None:
            query = query.where(Employee.employee_id.in_(employee_ids))
        result = await self.session.execute(
            query.order_by(Employee.last_name, Employee.first_name)
        )
        employees = list(result.scalars().all())
        if not employees:
            raise ValidationError("No active employees selected for payroll")

        outcome = RunPayrollResult(pay_period=period)
        existing = {item.employee_id: item for item in period.payroll_items}

        for employee in employees:
            item = existing.get(employee.employee_id)
            is_new = item is None
            if item is None:
                item = self._new_item(period, employee)

            try:
                overrides = (hours or {}).get(employee.employee_id) or {}
                for key, value in overrides.items():
                    if key not in HOURS_OVERRIDE_FIELDS:
                        raise ValidationError(f"Unknown hours field: {key}")
                    amount = as_decimal(value)
                    if amount < 0:
                        raise ValidationError(f"{key} hours must not be negative")
                    setattr(item, HOURS_OVERRIDE_FIELDS[key], amount)

                await self._calculate(period, item, employee)
            except (ValidationError, ConfigurationError) as e:
                logger.warning(
                    "Payroll calculation failed for employee %s: %s",
                    employee.employee_id,
                    e,
                    extra={"pay_period_id": str(period.pay_period_id)},
                )
                outcome.errors.setdefault(employee.employee_id, []).append(str(e))
                if is_new:
                    period.payroll_items.remove(item)
                continue

            if is_new:
                self.session.add(item)
            outcome.calculated.append(item)

        if not outcome.has_errors:
            PayPeriodStateMachine.validate_transition(period.status, PayPeriodStatus.CALCULATED)
            period.status = PayPeriodStatus.CALCULATED.value
        await self.session.flush()

        self._record(
            PayrollCalculated,
            pay_period_id=period.pay_period_id,
            item_count=len(outcome.calculated),
            error_count=len(outcome.errors),
            status=period.status,
        )
        logger.info(
            "Ran payroll for pay period %s: %d calculated, %d failed",
            period.pay_period_id,
            len(outcome.calculated),
            len(outcome.errors),
        )
        return outcome

    async def approve(self, pay_period_id: UUID) -> PayPeriod:
        """calculated -> approved, recording who approved."""
        period = await self.get_period(pay_period_id)
        if period.status != PayPeriodStatus.CALCULATED:
            raise InvalidTransitionError(
                period.status,
                PayPeriodStatus.APPROVED.value,
                "Can only approve a calculated pay period",
            )
        PayPeriodStateMachine.validate_transition(period.status, PayPeriodStatus.APPROVED)

        await self._move_status(
            period,
            PayPeriodStatus.CALCULATED,
            PayPeriodStatus.APPROVED,
            approved_by_id=self.ctx.actor_id,
            approved_at=datetime.now(timezone.utc),
        )

        self._record(
            PayPeriodApproved,
            pay_period_id=period.pay_period_id,
            approved_by_id=self.ctx.actor_id,
        )
        logger.info("Approved pay period %s", period.pay_period_id)
        return period

    async def commit(self, pay_period_id: UUID) -> PayPeriod:
        """approved -> committed.

        Stamps committed_at and folds every item into YTD totals in the
        caller's transaction: both happen or neither does.
        """
        period = await self.get_period(pay_period_id)
        if period.status != PayPeriodStatus.APPROVED:
            raise InvalidTransitionError(
                period.status,
                PayPeriodStatus.COMMITTED.value,
                f"Pay period must be approved to commit (current: {period.status})",
            )
        PayPeriodStateMachine.validate_transition(period.status, PayPeriodStatus.COMMITTED)

        # Claim the period first so a duplicate commit cannot fold in twice
        committed_at = datetime.now(timezone.utc)
        await self._move_status(
            period,
            PayPeriodStatus.APPROVED,
            PayPeriodStatus.COMMITTED,
            committed_at=committed_at,
            tax_sync_status=TaxSyncStatus.PENDING.value,
        )

        employees = await self._employees_for(period.payroll_items)
        aggregator = YtdAggregator(self.session)
        await aggregator.fold_in_items(
            [(item, employees[item.employee_id]) for item in period.payroll_items],
            period.pay_date.year,
        )

        await self.session.flush()

        self._record(
            PayPeriodCommitted,
            pay_period_id=period.pay_period_id,
            committed_at=committed_at,
            item_count=len(period.payroll_items),
            total_gross=sum((as_decimal(i.gross_pay) for i in period.payroll_items), ZERO),
        )
        logger.info(
            "Committed pay period %s with %d items",
            period.pay_period_id,
            len(period.payroll_items),
        )
        return period

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _move_status(
        self,
        period: PayPeriod,
        from_status: PayPeriodStatus,
        to_status: PayPeriodStatus,
        **values: Any,
    ) -> None:
        """Conditional UPDATE from one status to the next.

        Raises InvalidTransitionError when another transaction moved the
        period first. The row stays locked until the caller commits.
        """
        result = await self.session.execute(
            update(PayPeriod)
            .where(
                PayPeriod.pay_period_id == period.pay_period_id,
                PayPeriod.status == from_status.value,
            )
            .values(status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                from_status, to_status, "pay period was changed by another request"
            )
        await self.session.refresh(period, ["status", *values])

    async def _calculate(self, period: PayPeriod, item: PayrollItem, employee: Employee) -> None:
        year = period.pay_date.year
        schedule = await self.rates.resolve(year, employee.filing_status, employee.pay_frequency)
        ytd_gross_before = await self._ytd_gross_before(employee.employee_id, period)
        prior_ytd = await self._prior_ytd(employee.employee_id, year)

        calculation = self.calculator.calculate(
            PayInputs.from_item(item, employee),
            schedule,
            ytd_gross_before=ytd_gross_before,
            prior_ytd=prior_ytd,
        )
        calculation.apply_to(item)

    async def _ytd_gross_before(self, employee_id: UUID, period: PayPeriod) -> Decimal:
        """Gross already paid this calendar year by committed periods."""
        year = period.pay_date.year
        total = await self.session.scalar(
            select(func.coalesce(func.sum(PayrollItem.gross_pay), 0))
            .join(PayPeriod, PayPeriod.pay_period_id == PayrollItem.pay_period_id)
            .where(
                PayrollItem.employee_id == employee_id,
                PayPeriod.status == PayPeriodStatus.COMMITTED.value,
                PayPeriod.pay_date >= date(year, 1, 1),
                PayPeriod.pay_date <= date(year, 12, 31),
                PayPeriod.pay_period_id != period.pay_period_id,
            )
        )
        return as_decimal(total)

    async def _prior_ytd(self, employee_id: UUID, year: int) -> YtdSnapshot:
        result = await self.session.execute(
            select(EmployeeYtdTotal).where(
                EmployeeYtdTotal.employee_id == employee_id,
                EmployeeYtdTotal.year == year,
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            return YtdSnapshot()
        return YtdSnapshot(
            gross=as_decimal(row.gross_pay),
            net=as_decimal(row.net_pay),
            withholding_tax=as_decimal(row.withholding_tax),
            social_security_tax=as_decimal(row.social_security_tax),
            medicare_tax=as_decimal(row.medicare_tax),
            retirement=as_decimal(row.retirement),
            roth_retirement=as_decimal(row.roth_retirement),
        )

    async def _get_employee(self, employee_id: UUID) -> Employee:
        employee = await self.session.get(Employee, employee_id)
        if employee is None or employee.company_id != self.ctx.company_id:
            raise NotFoundError("Employee", employee_id)
        return employee

    async def _employees_for(self, items: list[PayrollItem]) -> dict[UUID, Employee]:
        ids = {item.employee_id for item in items}
        if not ids:
            return {}
        result = await self.session.execute(select(Employee).where(Employee.employee_id.in_(ids)))
        return {e.employee_id: e for e in result.scalars().all()}

    @staticmethod
    def _new_item(period: PayPeriod, employee: Employee) -> PayrollItem:
        """New item snapshotting the employee's employment type and rate."""
        item = PayrollItem(
            pay_period_id=period.pay_period_id,
            employee_id=employee.employee_id,
            employment_type=employee.employment_type,
            pay_rate=employee.pay_rate,
            hours_worked=(
                DEFAULT_HOURLY_HOURS
                if employee.employment_type == EmploymentType.HOURLY
                else ZERO
            ),
        )
        for name in ITEM_INPUT_FIELDS:
            if name != "hours_worked":
                setattr(item, name, ZERO)
        item.additional_withholding = ZERO
        period.payroll_items.append(item)
        return item

    @staticmethod
    def _find_item(period: PayPeriod, payroll_item_id: UUID) -> PayrollItem:
        item = next(
            (i for i in period.payroll_items if i.payroll_item_id == payroll_item_id), None
        )
        if item is None:
            raise NotFoundError("PayrollItem", payroll_item_id)
        return item

    def _record(self, event_type: type[DomainEvent], **fields: Any) -> None:
        self.events.append(event_type(metadata=EventMetadata.from_context(self.ctx), **fields))
