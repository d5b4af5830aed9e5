"""Per-employee gross-to-net calculation."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Protocol

from territorial_payroll.calculators.tax_calculator import PayrollTaxCalculator
from territorial_payroll.calculators.types import (
    ZERO,
    EmploymentType,
    TaxResult,
    TaxSchedule,
    YtdSnapshot,
    as_decimal,
    periods_per_year,
    round_to_cents,
)
from territorial_payroll.errors import ValidationError

if TYPE_CHECKING:
    from territorial_payroll.models import Employee, PayrollItem

OVERTIME_MULTIPLIER = Decimal("1.5")


class UnsupportedEmploymentTypeError(ValidationError):
    """Raised when no gross pay strategy exists for an employment type."""

    def __init__(self, employment_type: str):
        self.employment_type = employment_type
        super().__init__(f"Unknown employment type: {employment_type}")


@dataclass(frozen=True)
class PayInputs:
    """Everything the calculator reads for one employee in one period."""

    employment_type: str
    pay_rate: Decimal
    pay_frequency: str
    filing_status: str = "single"
    allowances: int = 0
    hours_worked: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    holiday_hours: Decimal = ZERO
    pto_hours: Decimal = ZERO
    reported_tips: Decimal = ZERO
    bonus: Decimal = ZERO
    retirement_rate: Decimal = ZERO
    roth_retirement_rate: Decimal = ZERO
    loan_payment: Decimal = ZERO
    insurance_payment: Decimal = ZERO
    additional_withholding: Decimal = ZERO

    @classmethod
    def from_item(cls, item: PayrollItem, employee: Employee) -> PayInputs:
        """Item supplies the snapshot and period inputs; employee the tax profile."""
        return cls(
            employment_type=item.employment_type,
            pay_rate=as_decimal(item.pay_rate),
            pay_frequency=employee.pay_frequency,
            filing_status=employee.filing_status,
            allowances=employee.allowances or 0,
            hours_worked=as_decimal(item.hours_worked),
            overtime_hours=as_decimal(item.overtime_hours),
            holiday_hours=as_decimal(item.holiday_hours),
            pto_hours=as_decimal(item.pto_hours),
            reported_tips=as_decimal(item.reported_tips),
            bonus=as_decimal(item.bonus),
            retirement_rate=as_decimal(employee.retirement_rate),
            roth_retirement_rate=as_decimal(employee.roth_retirement_rate),
            loan_payment=as_decimal(item.loan_payment),
            insurance_payment=as_decimal(item.insurance_payment),
            additional_withholding=as_decimal(employee.additional_withholding),
        )

    @property
    def supplemental_pay(self) -> Decimal:
        return self.reported_tips + self.bonus


class GrossPayStrategy(Protocol):
    def gross_pay(self, inputs: PayInputs) -> Decimal:
        ...

    def overtime_pay(self, inputs: PayInputs) -> Decimal:
        ...


class HourlyPay:
    """Hours × rate, overtime at time-and-a-half, plus tips and bonus."""

    def gross_pay(self, inputs: PayInputs) -> Decimal:
        rate = inputs.pay_rate
        hours_pay = (inputs.hours_worked + inputs.holiday_hours + inputs.pto_hours) * rate
        return round_to_cents(hours_pay + self._overtime(inputs) + inputs.supplemental_pay)

    def overtime_pay(self, inputs: PayInputs) -> Decimal:
        return round_to_cents(self._overtime(inputs))

    @staticmethod
    def _overtime(inputs: PayInputs) -> Decimal:
        return inputs.overtime_hours * inputs.pay_rate * OVERTIME_MULTIPLIER


class SalaryPay:
    """Annual salary spread evenly over the year's pay periods, plus tips and bonus."""

    def gross_pay(self, inputs: PayInputs) -> Decimal:
        per_period = inputs.pay_rate / Decimal(periods_per_year(inputs.pay_frequency))
        return round_to_cents(per_period + inputs.supplemental_pay)

    def overtime_pay(self, inputs: PayInputs) -> Decimal:
        return ZERO


GROSS_PAY_STRATEGIES: dict[EmploymentType, GrossPayStrategy] = {
    EmploymentType.HOURLY: HourlyPay(),
    EmploymentType.SALARY: SalaryPay(),
}


def gross_pay_strategy(employment_type: str) -> GrossPayStrategy:
    """Select the gross pay strategy for an employment type."""
    try:
        return GROSS_PAY_STRATEGIES[EmploymentType(employment_type)]
    except ValueError:
        raise UnsupportedEmploymentTypeError(employment_type) from None


@dataclass(frozen=True)
class PayrollCalculation:
    """Computed fields for one payroll item."""

    gross_pay: Decimal
    retirement_payment: Decimal
    roth_retirement_payment: Decimal
    withholding_tax: Decimal
    social_security_tax: Decimal
    medicare_tax: Decimal
    employer_social_security_tax: Decimal
    employer_medicare_tax: Decimal
    additional_withholding: Decimal
    loan_payment: Decimal
    insurance_payment: Decimal
    total_additions: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    overtime_pay: Decimal
    ytd: YtdSnapshot

    @property
    def current(self) -> YtdSnapshot:
        """This item's own contribution to YTD."""
        return YtdSnapshot(
            gross=self.gross_pay,
            net=self.net_pay,
            withholding_tax=self.withholding_tax,
            social_security_tax=self.social_security_tax,
            medicare_tax=self.medicare_tax,
            retirement=self.retirement_payment,
            roth_retirement=self.roth_retirement_payment,
        )

    def apply_to(self, item: PayrollItem, calculated_at: datetime | None = None) -> None:
        """Overwrite every computed column on the item."""
        for f in fields(self):
            if f.name in ("ytd", "overtime_pay", "loan_payment", "insurance_payment"):
                continue
            setattr(item, f.name, getattr(self, f.name))

        item.ytd_gross = self.ytd.gross
        item.ytd_net = self.ytd.net
        item.ytd_withholding_tax = self.ytd.withholding_tax
        item.ytd_social_security_tax = self.ytd.social_security_tax
        item.ytd_medicare_tax = self.ytd.medicare_tax
        item.ytd_retirement = self.ytd.retirement
        item.ytd_roth_retirement = self.ytd.roth_retirement
        item.calculated_at = calculated_at or datetime.now(timezone.utc)


class PayrollItemCalculator:
    """Gross pay -> retirement -> taxes -> deductions -> net -> YTD snapshot."""

    def __init__(self, tax_calculator: PayrollTaxCalculator | None = None):
        self.tax_calculator = tax_calculator or PayrollTaxCalculator()

    def calculate(
        self,
        inputs: PayInputs,
        schedule: TaxSchedule,
        ytd_gross_before: Decimal = ZERO,
        prior_ytd: YtdSnapshot | None = None,
    ) -> PayrollCalculation:
        strategy = gross_pay_strategy(inputs.employment_type)
        gross = strategy.gross_pay(inputs)

        # Both contributions come off gross independently
        retirement = round_to_cents(gross * inputs.retirement_rate)
        roth = round_to_cents(gross * inputs.roth_retirement_rate)

        # Pre-tax retirement lowers income tax only; SS and medicare use full gross
        taxes: TaxResult = self.tax_calculator.compute(
            gross,
            ytd_gross_before,
            schedule,
            allowances=inputs.allowances,
            withholding_base=max(gross - retirement, ZERO),
        )

        total_deductions = (
            taxes.withholding
            + taxes.social_security
            + taxes.medicare
            + inputs.additional_withholding
            + retirement
            + roth
            + inputs.loan_payment
            + inputs.insurance_payment
        )
        net = gross - total_deductions

        calculation = PayrollCalculation(
            gross_pay=gross,
            retirement_payment=retirement,
            roth_retirement_payment=roth,
            withholding_tax=taxes.withholding,
            social_security_tax=taxes.social_security,
            medicare_tax=taxes.medicare,
            employer_social_security_tax=taxes.employer_social_security,
            employer_medicare_tax=taxes.employer_medicare,
            additional_withholding=inputs.additional_withholding,
            loan_payment=inputs.loan_payment,
            insurance_payment=inputs.insurance_payment,
            total_additions=round_to_cents(inputs.supplemental_pay),
            total_deductions=total_deductions,
            net_pay=net,
            overtime_pay=strategy.overtime_pay(inputs),
            ytd=YtdSnapshot(),
        )
        ytd = (prior_ytd or YtdSnapshot()).plus(calculation.current)
        return replace(calculation, ytd=ytd)
