"""Payroll calculators: tax rates, payroll taxes and gross-to-net."""

from territorial_payroll.calculators.pay_calculator import (
    PayInputs,
    PayrollCalculation,
    PayrollItemCalculator,
    UnsupportedEmploymentTypeError,
)
from territorial_payroll.calculators.rate_repository import (
    InvalidBracketsError,
    TaxConfigNotFoundError,
    TaxRateRepository,
)
from territorial_payroll.calculators.tax_calculator import PayrollTaxCalculator
from territorial_payroll.calculators.types import (
    PERIODS_PER_YEAR,
    PayFrequency,
    TaxResult,
    TaxSchedule,
    YtdSnapshot,
    round_to_cents,
)

__all__ = [
    "PayInputs",
    "PayrollCalculation",
    "PayrollItemCalculator",
    "UnsupportedEmploymentTypeError",
    "InvalidBracketsError",
    "TaxConfigNotFoundError",
    "TaxRateRepository",
    "PayrollTaxCalculator",
    "PERIODS_PER_YEAR",
    "PayFrequency",
    "TaxResult",
    "TaxSchedule",
    "YtdSnapshot",
    "round_to_cents",
]
