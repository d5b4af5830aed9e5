"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

CENTS = Decimal("0.01")
ZERO = Decimal("0")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round to cents using ROUND_HALF_UP."""
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def as_decimal(value: Decimal | int | float | str | None) -> Decimal:
    """Coerce a possibly-null column value to Decimal (None -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class PayFrequency(str, Enum):
    """Pay cadence."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    SEMIMONTHLY = "semimonthly"
    MONTHLY = "monthly"

    @property
    def periods_per_year(self) -> int:
        return PERIODS_PER_YEAR[self]


# Single source of truth for annualizing and de-annualizing
PERIODS_PER_YEAR: dict[PayFrequency, int] = {
    PayFrequency.WEEKLY: 52,
    PayFrequency.BIWEEKLY: 26,
    PayFrequency.SEMIMONTHLY: 24,
    PayFrequency.MONTHLY: 12,
}


def periods_per_year(frequency: str | PayFrequency) -> int:
    """Periods per year for a frequency value. Raises ValueError when unknown."""
    return PayFrequency(frequency).periods_per_year


class FilingStatus(str, Enum):
    """Employee filing status."""

    SINGLE = "single"
    MARRIED = "married"
    MARRIED_SEPARATE = "married_separate"
    HEAD_OF_HOUSEHOLD = "head_of_household"


# Filing statuses that carry their own annual configuration
CONFIGURED_FILING_STATUSES = (
    FilingStatus.SINGLE,
    FilingStatus.MARRIED,
    FilingStatus.HEAD_OF_HOUSEHOLD,
)


class EmploymentType(str, Enum):
    HOURLY = "hourly"
    SALARY = "salary"


@dataclass(frozen=True)
class ProgressiveBracket:
    """Annual bracket used by the annualized-deduction method."""

    min_income: Decimal
    max_income: Decimal | None  # None = unbounded
    rate: Decimal


@dataclass(frozen=True)
class WithholdingBracket:
    """Per-period bracket used by the legacy table method."""

    min_income: Decimal
    max_income: Decimal | None
    base_tax: Decimal
    rate: Decimal
    threshold: Decimal

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_income:
            return False
        return self.max_income is None or amount <= self.max_income


@dataclass(frozen=True)
class PayrollTaxRates:
    """Social security and medicare parameters for a tax year."""

    ss_wage_base: Decimal
    ss_rate: Decimal
    medicare_rate: Decimal
    additional_medicare_rate: Decimal
    additional_medicare_threshold: Decimal


@dataclass(frozen=True)
class TaxSchedule:
    """Everything needed to compute one employee's payroll taxes for a period.

    Exactly one of the two withholding shapes is populated: annual brackets
    with a standard deduction, or legacy per-period brackets with an
    allowance amount.
    """

    tax_year: int
    filing_status: str
    pay_frequency: PayFrequency
    rates: PayrollTaxRates
    source: str  # "annual_config" or "tax_table"
    standard_deduction: Decimal = ZERO
    annual_brackets: tuple[ProgressiveBracket, ...] = ()
    allowance_amount: Decimal = ZERO
    withholding_brackets: tuple[WithholdingBracket, ...] = ()

    @property
    def periods_per_year(self) -> int:
        return self.pay_frequency.periods_per_year

    @property
    def uses_annualized_method(self) -> bool:
        return self.source == "annual_config"


@dataclass(frozen=True)
class TaxResult:
    """Employee and employer payroll taxes for one period."""

    withholding: Decimal
    social_security: Decimal
    medicare: Decimal
    employer_social_security: Decimal
    employer_medicare: Decimal

    @property
    def employee_total(self) -> Decimal:
        return self.withholding + self.social_security + self.medicare


@dataclass
class YtdSnapshot:
    """YTD figures as of and including one payroll item."""

    gross: Decimal = ZERO
    net: Decimal = ZERO
    withholding_tax: Decimal = ZERO
    social_security_tax: Decimal = ZERO
    medicare_tax: Decimal = ZERO
    retirement: Decimal = ZERO
    roth_retirement: Decimal = ZERO

    def plus(self, other: YtdSnapshot) -> YtdSnapshot:
        return YtdSnapshot(
            gross=self.gross + other.gross,
            net=self.net + other.net,
            withholding_tax=self.withholding_tax + other.withholding_tax,
            social_security_tax=self.social_security_tax + other.social_security_tax,
            medicare_tax=self.medicare_tax + other.medicare_tax,
            retirement=self.retirement + other.retirement,
            roth_retirement=self.roth_retirement + other.roth_retirement,
        )

