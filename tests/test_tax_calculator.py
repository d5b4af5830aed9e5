"""Tests for payroll tax calculation."""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from territorial_payroll.calculators.tax_calculator import (
    AnnualizedDeductionMethod,
    LegacyBracketMethod,
    PayrollTaxCalculator,
    additional_medicare_wages,
    calculate_progressive_tax,
    calculate_wage_base_tax,
)
from territorial_payroll.calculators.types import (
    PayFrequency,
    PayrollTaxRates,
    ProgressiveBracket,
    TaxSchedule,
    WithholdingBracket,
)

RATES_2024 = PayrollTaxRates(
    ss_wage_base=Decimal("168600"),
    ss_rate=Decimal("0.062"),
    medicare_rate=Decimal("0.0145"),
    additional_medicare_rate=Decimal("0.009"),
    additional_medicare_threshold=Decimal("200000"),
)

LEGACY_BRACKETS = (
    WithholdingBracket(Decimal("0"), Decimal("561.99"), Decimal("0"), Decimal("0"), Decimal("0")),
    WithholdingBracket(
        Decimal("562"), Decimal("1007.99"), Decimal("0"), Decimal("0.10"), Decimal("562")
    ),
    WithholdingBracket(
        Decimal("1008"), Decimal("2374.99"), Decimal("44.60"), Decimal("0.12"), Decimal("1008")
    ),
    WithholdingBracket(Decimal("2375"), None, Decimal("208.64"), Decimal("0.22"), Decimal("2375")),
)

ANNUAL_BRACKETS = (
    ProgressiveBracket(Decimal("0"), Decimal("12400"), Decimal("0.10")),
    ProgressiveBracket(Decimal("12400"), Decimal("50400"), Decimal("0.12")),
    ProgressiveBracket(Decimal("50400"), Decimal("105700"), Decimal("0.22")),
    ProgressiveBracket(Decimal("105700"), None, Decimal("0.24")),
)


def legacy_schedule(allowance_amount: Decimal = Decimal("0")) -> TaxSchedule:
    return TaxSchedule(
        tax_year=2024,
        filing_status="single",
        pay_frequency=PayFrequency.BIWEEKLY,
        rates=RATES_2024,
        source="tax_table",
        allowance_amount=allowance_amount,
        withholding_brackets=LEGACY_BRACKETS,
    )


def annual_schedule(frequency: PayFrequency = PayFrequency.BIWEEKLY) -> TaxSchedule:
    return TaxSchedule(
        tax_year=2026,
        filing_status="single",
        pay_frequency=frequency,
        rates=RATES_2024,
        source="annual_config",
        standard_deduction=Decimal("16100"),
        annual_brackets=ANNUAL_BRACKETS,
    )


money = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("50000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestLegacyBracketMethod:
    """Per-period withholding table."""

    def test_below_first_taxed_bracket(self):
        method = LegacyBracketMethod()
        assert method.withholding(Decimal("500.00"), legacy_schedule()) == Decimal("0.00")

    def test_ten_percent_bracket(self):
        """(800 - 562) * 0.10 = 23.80"""
        method = LegacyBracketMethod()
        assert method.withholding(Decimal("800.00"), legacy_schedule()) == Decimal("23.80")

    def test_base_tax_plus_marginal_rate(self):
        """44.60 + (1500 - 1008) * 0.12 = 103.64"""
        method = LegacyBracketMethod()
        assert method.withholding(Decimal("1500.00"), legacy_schedule()) == Decimal("103.64")

    def test_allowances_reduce_taxable_pay(self):
        schedule = legacy_schedule(allowance_amount=Decimal("100"))
        method = LegacyBracketMethod()

        assert method.withholding(Decimal("800.00"), schedule, allowances=0) == Decimal("23.80")
        # 800 - 3 * 100 = 500, below the first taxed bracket
        assert method.withholding(Decimal("800.00"), schedule, allowances=3) == Decimal("0.00")

    def test_threshold_above_bracket_floor_keeps_base_tax(self):
        bracket = WithholdingBracket(
            Decimal("1000"), None, Decimal("50.00"), Decimal("0.10"), Decimal("1200")
        )
        schedule = TaxSchedule(
            tax_year=2024,
            filing_status="single",
            pay_frequency=PayFrequency.BIWEEKLY,
            rates=RATES_2024,
            source="tax_table",
            withholding_brackets=(bracket,),
        )
        method = LegacyBracketMethod()

        assert method.withholding(Decimal("1100.00"), schedule) == Decimal("50.00")
        assert method.withholding(Decimal("1300.00"), schedule) == Decimal("60.00")

    def test_no_matching_bracket_withholds_nothing(self):
        schedule = TaxSchedule(
            tax_year=2024,
            filing_status="single",
            pay_frequency=PayFrequency.BIWEEKLY,
            rates=RATES_2024,
            source="tax_table",
        )
        assert LegacyBracketMethod().withholding(Decimal("900"), schedule) == Decimal("0")


class TestAnnualizedDeductionMethod:
    """Annualize, deduct, apply progressive brackets, de-annualize."""

    def test_gross_within_first_bracket(self):
        """(700 * 26 - 16100) * 0.10 / 26 = 8.0769 -> 8.08"""
        method = AnnualizedDeductionMethod()
        assert method.withholding(Decimal("700.00"), annual_schedule()) == Decimal("8.08")

    def test_gross_below_standard_deduction(self):
        method = AnnualizedDeductionMethod()
        assert method.withholding(Decimal("600.00"), annual_schedule()) == Decimal("0")

    def test_gross_across_two_brackets(self):
        """52,000 salary: (12400 * .10 + 23500 * .12) / 26 = 156.15"""
        method = AnnualizedDeductionMethod()
        assert method.withholding(Decimal("2000.00"), annual_schedule()) == Decimal("156.15")

    def test_monthly_frequency_uses_twelve_periods(self):
        """(3000 * 12 - 16100) = 19900 -> 1240 + 7500 * .12 = 2140 / 12 = 178.33"""
        method = AnnualizedDeductionMethod()
        schedule = annual_schedule(PayFrequency.MONTHLY)
        assert method.withholding(Decimal("3000.00"), schedule) == Decimal("178.33")


class TestProgressiveTax:
    def test_zero_income(self):
        assert calculate_progressive_tax(Decimal("0"), ANNUAL_BRACKETS) == Decimal("0")

    def test_income_in_top_bracket(self):
        expected = (
            Decimal("12400") * Decimal("0.10")
            + Decimal("38000") * Decimal("0.12")
            + Decimal("55300") * Decimal("0.22")
            + Decimal("14300") * Decimal("0.24")
        )
        assert calculate_progressive_tax(Decimal("120000"), ANNUAL_BRACKETS) == expected

    def test_bracket_order_does_not_matter(self):
        shuffled = tuple(reversed(ANNUAL_BRACKETS))
        assert calculate_progressive_tax(Decimal("60000"), shuffled) == calculate_progressive_tax(
            Decimal("60000"), ANNUAL_BRACKETS
        )


class TestSocialSecurity:
    def test_full_wages_below_base(self):
        assert calculate_wage_base_tax(
            Decimal("522.44"), Decimal("0.062"), Decimal("168600")
        ) == Decimal("32.39")

    def test_capped_at_remaining_wage_base(self):
        """Only 168,600 - 167,000 = 1,600 of the 3,000 is taxed."""
        tax = calculate_wage_base_tax(
            Decimal("3000"), Decimal("0.062"), Decimal("168600"), ytd_wages=Decimal("167000")
        )
        assert tax == Decimal("99.20")

    def test_nothing_once_wage_base_reached(self):
        tax = calculate_wage_base_tax(
            Decimal("3000"), Decimal("0.062"), Decimal("168600"), ytd_wages=Decimal("170000")
        )
        assert tax == Decimal("0.00")

    def test_zero_wages(self):
        assert calculate_wage_base_tax(Decimal("0"), Decimal("0.062"), Decimal("168600")) == 0


class TestMedicare:
    def test_additional_wages_crossing_threshold(self):
        assert additional_medicare_wages(
            Decimal("3000"), Decimal("200000"), ytd_wages=Decimal("199000")
        ) == Decimal("2000")

    def test_additional_wages_below_threshold(self):
        assert additional_medicare_wages(
            Decimal("3000"), Decimal("200000"), ytd_wages=Decimal("100000")
        ) == Decimal("0")

    def test_additional_wages_above_threshold(self):
        assert additional_medicare_wages(
            Decimal("3000"), Decimal("200000"), ytd_wages=Decimal("250000")
        ) == Decimal("3000")

    def test_additional_medicare_added_to_employee_only(self):
        """43.50 base + 2,000 * 0.009 = 61.50; employer matches the base only."""
        result = PayrollTaxCalculator().compute(
            Decimal("3000"), Decimal("199000"), annual_schedule()
        )
        assert result.medicare == Decimal("61.50")
        assert result.employer_medicare == Decimal("43.50")


class TestPayrollTaxCalculator:
    def test_low_income_hourly_case(self):
        """56.48 h at $9.25 = 522.44 gross."""
        result = PayrollTaxCalculator().compute(Decimal("522.44"), Decimal("0"), legacy_schedule())

        assert result.withholding == Decimal("0.00")
        assert result.social_security == Decimal("32.39")
        assert result.medicare == Decimal("7.58")
        assert result.employer_social_security == Decimal("32.39")
        assert result.employer_medicare == Decimal("7.58")
        assert result.employee_total == Decimal("39.97")

    def test_social_security_cap_applied(self):
        result = PayrollTaxCalculator().compute(
            Decimal("3000"), Decimal("167000"), legacy_schedule()
        )
        assert result.social_security == Decimal("99.20")
        assert result.employer_social_security == Decimal("99.20")

    def test_method_follows_schedule_source(self):
        calculator = PayrollTaxCalculator()
        assert isinstance(calculator.method_for(legacy_schedule()), LegacyBracketMethod)
        assert isinstance(calculator.method_for(annual_schedule()), AnnualizedDeductionMethod)

    def test_withholding_base_lowers_income_tax_only(self):
        calculator = PayrollTaxCalculator()
        full = calculator.compute(Decimal("2000"), Decimal("0"), annual_schedule())
        reduced = calculator.compute(
            Decimal("2000"), Decimal("0"), annual_schedule(), withholding_base=Decimal("1900")
        )

        assert reduced.withholding == Decimal("144.15")
        assert reduced.withholding < full.withholding
        assert reduced.social_security == full.social_security == Decimal("124.00")
        assert reduced.medicare == full.medicare == Decimal("29.00")

    def test_negative_gross_treated_as_zero(self):
        result = PayrollTaxCalculator().compute(Decimal("-10"), Decimal("0"), annual_schedule())
        assert result.employee_total == Decimal("0")


class TestTaxProperties:
    """Invariants over arbitrary wages."""

    @given(a=money, b=money)
    @settings(max_examples=200)
    def test_withholding_never_decreases_with_pay(self, a, b):
        low, high = sorted((a, b))
        calculator = PayrollTaxCalculator()
        schedule = annual_schedule()
        assert (
            calculator.compute(low, Decimal("0"), schedule).withholding
            <= calculator.compute(high, Decimal("0"), schedule).withholding
        )

    @given(gross=money, ytd=st.decimals(min_value=0, max_value=400000, places=2))
    @settings(max_examples=200)
    def test_social_security_respects_wage_base(self, gross, ytd):
        result = PayrollTaxCalculator().compute(gross, ytd, legacy_schedule())
        remaining = max(RATES_2024.ss_wage_base - ytd, Decimal("0"))

        assert result.social_security >= 0
        assert result.social_security <= (min(gross, remaining) * RATES_2024.ss_rate).quantize(
            Decimal("0.01")
        ) + Decimal("0.01")
        if ytd >= RATES_2024.ss_wage_base:
            assert result.social_security == 0

    @given(gross=money)
    @settings(max_examples=200)
    def test_employee_taxes_never_exceed_gross(self, gross):
        result = PayrollTaxCalculator().compute(gross, Decimal("0"), annual_schedule())
        assert result.employee_total <= gross


@pytest.mark.parametrize(
    ("frequency", "periods"),
    [
        (PayFrequency.WEEKLY, 52),
        (PayFrequency.BIWEEKLY, 26),
        (PayFrequency.SEMIMONTHLY, 24),
        (PayFrequency.MONTHLY, 12),
    ],
)
def test_periods_per_year(frequency, periods):
    assert annual_schedule(frequency).periods_per_year == periods
