"""Tests for per-employee gross-to-net calculation."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from territorial_payroll.calculators.pay_calculator import (
    PayInputs,
    PayrollItemCalculator,
    UnsupportedEmploymentTypeError,
)
from territorial_payroll.calculators.types import (
    PayFrequency,
    PayrollTaxRates,
    ProgressiveBracket,
    TaxSchedule,
    WithholdingBracket,
    YtdSnapshot,
)
from territorial_payroll.models import PayrollItem

RATES = PayrollTaxRates(
    ss_wage_base=Decimal("168600"),
    ss_rate=Decimal("0.062"),
    medicare_rate=Decimal("0.0145"),
    additional_medicare_rate=Decimal("0.009"),
    additional_medicare_threshold=Decimal("200000"),
)

LEGACY = TaxSchedule(
    tax_year=2024,
    filing_status="single",
    pay_frequency=PayFrequency.BIWEEKLY,
    rates=RATES,
    source="tax_table",
    withholding_brackets=(
        WithholdingBracket(
            Decimal("0"), Decimal("561.99"), Decimal("0"), Decimal("0"), Decimal("0")
        ),
        WithholdingBracket(Decimal("562"), None, Decimal("0"), Decimal("0.10"), Decimal("562")),
    ),
)

ANNUAL = TaxSchedule(
    tax_year=2026,
    filing_status="single",
    pay_frequency=PayFrequency.BIWEEKLY,
    rates=RATES,
    source="annual_config",
    standard_deduction=Decimal("16100"),
    annual_brackets=(
        ProgressiveBracket(Decimal("0"), Decimal("12400"), Decimal("0.10")),
        ProgressiveBracket(Decimal("12400"), Decimal("50400"), Decimal("0.12")),
        ProgressiveBracket(Decimal("50400"), None, Decimal("0.22")),
    ),
)


def hourly(**overrides) -> PayInputs:
    values = {
        "employment_type": "hourly",
        "pay_rate": Decimal("9.25"),
        "pay_frequency": "biweekly",
    }
    values.update(overrides)
    return PayInputs(**values)


def salaried(**overrides) -> PayInputs:
    values = {
        "employment_type": "salary",
        "pay_rate": Decimal("52000"),
        "pay_frequency": "biweekly",
    }
    values.update(overrides)
    return PayInputs(**values)


@pytest.fixture
def calculator() -> PayrollItemCalculator:
    return PayrollItemCalculator()


class TestGrossPay:
    """Gross pay by employment type."""

    def test_hourly_regular_hours(self, calculator):
        result = calculator.calculate(hourly(hours_worked=Decimal("56.48")), LEGACY)
        assert result.gross_pay == Decimal("522.44")

    def test_hourly_overtime_at_time_and_a_half(self, calculator):
        """40 h at $15 plus 10 h overtime at $22.50 = 825.00"""
        inputs = hourly(
            pay_rate=Decimal("15"),
            hours_worked=Decimal("40"),
            overtime_hours=Decimal("10"),
        )
        result = calculator.calculate(inputs, ANNUAL)

        assert result.gross_pay == Decimal("825.00")
        assert result.overtime_pay == Decimal("225.00")

    def test_hourly_holiday_and_pto_paid_at_base_rate(self, calculator):
        inputs = hourly(
            pay_rate=Decimal("20"),
            hours_worked=Decimal("64"),
            holiday_hours=Decimal("8"),
            pto_hours=Decimal("8"),
        )
        assert calculator.calculate(inputs, ANNUAL).gross_pay == Decimal("1600.00")

    def test_tips_and_bonus_are_additions(self, calculator):
        inputs = hourly(
            hours_worked=Decimal("40"),
            reported_tips=Decimal("55.25"),
            bonus=Decimal("100"),
        )
        result = calculator.calculate(inputs, ANNUAL)

        assert result.gross_pay == Decimal("525.25")
        assert result.total_additions == Decimal("155.25")

    def test_salary_spread_over_periods(self, calculator):
        assert calculator.calculate(salaried(), ANNUAL).gross_pay == Decimal("2000.00")
        assert calculator.calculate(
            salaried(pay_frequency="weekly"), ANNUAL
        ).gross_pay == Decimal("1000.00")
        assert calculator.calculate(
            salaried(pay_rate=Decimal("60000"), pay_frequency="monthly"), ANNUAL
        ).gross_pay == Decimal("5000.00")

    def test_salary_ignores_hours_and_overtime(self, calculator):
        result = calculator.calculate(
            salaried(hours_worked=Decimal("80"), overtime_hours=Decimal("10")), ANNUAL
        )
        assert result.gross_pay == Decimal("2000.00")
        assert result.overtime_pay == Decimal("0")

    def test_unknown_employment_type(self, calculator):
        with pytest.raises(UnsupportedEmploymentTypeError) as exc_info:
            calculator.calculate(hourly(employment_type="contractor"), ANNUAL)

        assert exc_info.value.employment_type == "contractor"


class TestNetPay:
    """Deductions and net pay."""

    def test_low_income_hourly_case(self, calculator):
        result = calculator.calculate(hourly(hours_worked=Decimal("56.48")), LEGACY)

        assert result.withholding_tax == Decimal("0.00")
        assert result.social_security_tax == Decimal("32.39")
        assert result.medicare_tax == Decimal("7.58")
        assert result.total_deductions == Decimal("39.97")
        assert result.net_pay == Decimal("482.47")

    def test_salaried_net(self, calculator):
        result = calculator.calculate(salaried(), ANNUAL)

        assert result.withholding_tax == Decimal("156.15")
        assert result.social_security_tax == Decimal("124.00")
        assert result.medicare_tax == Decimal("29.00")
        assert result.net_pay == Decimal("1690.85")

    def test_retirement_reduces_withholding_but_not_fica(self, calculator):
        result = calculator.calculate(salaried(retirement_rate=Decimal("0.05")), ANNUAL)

        assert result.retirement_payment == Decimal("100.00")
        assert result.withholding_tax == Decimal("144.15")
        assert result.social_security_tax == Decimal("124.00")
        assert result.medicare_tax == Decimal("29.00")
        assert result.net_pay == Decimal("1602.85")

    def test_roth_is_after_tax(self, calculator):
        plain = calculator.calculate(salaried(), ANNUAL)
        roth = calculator.calculate(salaried(roth_retirement_rate=Decimal("0.04")), ANNUAL)

        assert roth.roth_retirement_payment == Decimal("80.00")
        assert roth.withholding_tax == plain.withholding_tax
        assert roth.net_pay == plain.net_pay - Decimal("80.00")

    def test_other_deductions(self, calculator):
        inputs = salaried(
            loan_payment=Decimal("50"),
            insurance_payment=Decimal("35.50"),
            additional_withholding=Decimal("20"),
        )
        plain = calculator.calculate(salaried(), ANNUAL)
        result = calculator.calculate(inputs, ANNUAL)

        assert result.net_pay == plain.net_pay - Decimal("105.50")
        assert result.additional_withholding == Decimal("20")

    def test_net_is_gross_minus_deductions(self, calculator):
        inputs = hourly(
            hours_worked=Decimal("72.5"),
            overtime_hours=Decimal("3.25"),
            bonus=Decimal("40"),
            retirement_rate=Decimal("0.03"),
            roth_retirement_rate=Decimal("0.02"),
            insurance_payment=Decimal("12.34"),
        )
        result = calculator.calculate(inputs, ANNUAL)
        assert result.net_pay == result.gross_pay - result.total_deductions


class TestYtdSnapshot:
    def test_first_item_of_year(self, calculator):
        result = calculator.calculate(salaried(), ANNUAL)

        assert result.ytd.gross == Decimal("2000.00")
        assert result.ytd.net == result.net_pay
        assert result.ytd.social_security_tax == Decimal("124.00")

    def test_prior_totals_carried_forward(self, calculator):
        prior = YtdSnapshot(
            gross=Decimal("4000.00"),
            net=Decimal("3381.70"),
            withholding_tax=Decimal("312.30"),
            social_security_tax=Decimal("248.00"),
            medicare_tax=Decimal("58.00"),
        )
        result = calculator.calculate(
            salaried(), ANNUAL, ytd_gross_before=Decimal("4000"), prior_ytd=prior
        )

        assert result.ytd.gross == Decimal("6000.00")
        assert result.ytd.net == Decimal("3381.70") + result.net_pay
        assert result.ytd.withholding_tax == Decimal("468.45")
        assert result.ytd.social_security_tax == Decimal("372.00")


class TestApplyTo:
    def test_writes_computed_columns(self, calculator):
        item = PayrollItem(
            employment_type="salary",
            pay_rate=Decimal("52000"),
            loan_payment=Decimal("0"),
            insurance_payment=Decimal("0"),
        )
        stamp = datetime(2026, 1, 23, 12, 0, tzinfo=timezone.utc)

        calculator.calculate(salaried(), ANNUAL).apply_to(item, calculated_at=stamp)

        assert item.gross_pay == Decimal("2000.00")
        assert item.net_pay == Decimal("1690.85")
        assert item.employer_social_security_tax == Decimal("124.00")
        assert item.employer_medicare_tax == Decimal("29.00")
        assert item.ytd_gross == Decimal("2000.00")
        assert item.calculated_at == stamp
