"""Payroll tax calculation: income tax withholding, social security and medicare."""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from territorial_payroll.calculators.types import (
    ZERO,
    ProgressiveBracket,
    TaxResult,
    TaxSchedule,
    WithholdingBracket,
    round_to_cents,
)


class WithholdingMethod(Protocol):
    """Strategy for income tax withholding on one period's taxable pay."""

    def withholding(self, amount: Decimal, schedule: TaxSchedule, allowances: int = 0) -> Decimal:
        ...


class LegacyBracketMethod:
    """Per-period withholding table.

    Gross is reduced by allowances, then the bracket containing the
    result supplies base tax plus a marginal rate above its threshold.
    """

    def withholding(self, amount: Decimal, schedule: TaxSchedule, allowances: int = 0) -> Decimal:
        taxable = max(amount - schedule.allowance_amount * allowances, ZERO)
        bracket = self._find_bracket(taxable, schedule.withholding_brackets)
        if bracket is None:
            return ZERO

        excess = max(taxable - bracket.threshold, ZERO)
        tax = bracket.base_tax + excess * bracket.rate
        return round_to_cents(max(tax, ZERO))

    @staticmethod
    def _find_bracket(
        amount: Decimal, brackets: tuple[WithholdingBracket, ...]
    ) -> WithholdingBracket | None:
        return next((b for b in brackets if b.contains(amount)), None)


class AnnualizedDeductionMethod:
    """Annualize, apply the standard deduction and progressive brackets, de-annualize.

    Nothing is rounded until the final per-period withholding.
    """

    def withholding(self, amount: Decimal, schedule: TaxSchedule, allowances: int = 0) -> Decimal:
        periods = Decimal(schedule.periods_per_year)
        per_period_deduction = schedule.standard_deduction / periods
        taxable = max(amount - per_period_deduction, ZERO)
        if taxable == 0:
            return ZERO

        annual_income = taxable * periods
        annual_tax = calculate_progressive_tax(annual_income, schedule.annual_brackets)
        return round_to_cents(annual_tax / periods)


def calculate_progressive_tax(
    income: Decimal, brackets: tuple[ProgressiveBracket, ...] | list[ProgressiveBracket]
) -> Decimal:
    """Sum of rate × (portion of income inside each bracket). Unrounded."""
    if income <= 0:
        return ZERO

    total_tax = ZERO
    for bracket in sorted(brackets, key=lambda b: b.min_income):
        if income <= bracket.min_income:
            break
        upper = income if bracket.max_income is None else min(income, bracket.max_income)
        total_tax += (upper - bracket.min_income) * bracket.rate

    return total_tax


def calculate_wage_base_tax(
    wages: Decimal, rate: Decimal, wage_base: Decimal, ytd_wages: Decimal = ZERO
) -> Decimal:
    """Tax on the part of this period's wages still under the annual wage base."""
    if wages <= 0:
        return ZERO

    remaining_base = max(wage_base - ytd_wages, ZERO)
    taxable = min(wages, remaining_base)
    return round_to_cents(taxable * rate)


def additional_medicare_wages(
    wages: Decimal, threshold: Decimal, ytd_wages: Decimal = ZERO
) -> Decimal:
    """Portion of this period's wages above the additional medicare threshold."""
    if wages <= 0:
        return ZERO
    if ytd_wages >= threshold:
        return wages
    if ytd_wages + wages <= threshold:
        return ZERO
    return ytd_wages + wages - threshold


class PayrollTaxCalculator:
    """Computes withholding, social security and medicare for one period.

    The withholding strategy follows the schedule's source: annual configs
    use the annualized-deduction method, legacy tables the bracket method.
    """

    def __init__(
        self,
        legacy_method: WithholdingMethod | None = None,
        annualized_method: WithholdingMethod | None = None,
    ):
        self.legacy_method = legacy_method or LegacyBracketMethod()
        self.annualized_method = annualized_method or AnnualizedDeductionMethod()

    def method_for(self, schedule: TaxSchedule) -> WithholdingMethod:
        if schedule.uses_annualized_method:
            return self.annualized_method
        return self.legacy_method

    def compute(
        self,
        gross_pay: Decimal,
        ytd_gross_before: Decimal,
        schedule: TaxSchedule,
        allowances: int = 0,
        withholding_base: Decimal | None = None,
    ) -> TaxResult:
        """Compute employee and employer taxes.

        Args:
            gross_pay: Full gross pay for the period; basis for social security and medicare
            ytd_gross_before: Gross pay already paid this calendar year, excluding this period
            schedule: Rates and brackets for the employee's year, filing status and frequency
            allowances: Allowance count (legacy method only)
            withholding_base: Income tax base when it differs from gross
                (e.g. after pre-tax retirement). Defaults to gross_pay.
        """
        gross = max(gross_pay, ZERO)
        ytd = max(ytd_gross_before, ZERO)
        base = gross if withholding_base is None else max(withholding_base, ZERO)
        rates = schedule.rates

        withholding = self.method_for(schedule).withholding(base, schedule, allowances)

        social_security = calculate_wage_base_tax(gross, rates.ss_rate, rates.ss_wage_base, ytd)

        base_medicare = round_to_cents(gross * rates.medicare_rate)
        extra_wages = additional_medicare_wages(gross, rates.additional_medicare_threshold, ytd)
        additional_medicare = round_to_cents(extra_wages * rates.additional_medicare_rate)

        return TaxResult(
            withholding=withholding,
            social_security=social_security,
            medicare=base_medicare + additional_medicare,
            # Employer matches social security and base medicare only
            employer_social_security=social_security,
            employer_medicare=base_medicare,
        )
