"""JSON payload sent to the tax remittance ingest endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from territorial_payroll.calculators.types import ZERO, as_decimal
from territorial_payroll.models import PayPeriod, PayrollItem

PAYLOAD_VERSION = "1.0"

LINE_ITEM_AMOUNTS = (
    "gross_pay",
    "net_pay",
    "withholding_tax",
    "social_security_tax",
    "medicare_tax",
    "additional_withholding",
    "employer_social_security_tax",
    "employer_medicare_tax",
    "retirement_payment",
    "roth_retirement_payment",
    "ytd_gross",
    "ytd_social_security_tax",
    "ytd_medicare_tax",
    "ytd_withholding_tax",
)

TOTAL_AMOUNTS = (
    "gross_pay",
    "net_pay",
    "withholding_tax",
    "social_security_tax",
    "medicare_tax",
    "employer_social_security_tax",
    "employer_medicare_tax",
)

# Employee and employer taxes owed to the authority
LIABILITY_AMOUNTS = (
    "withholding_tax",
    "social_security_tax",
    "medicare_tax",
    "employer_social_security_tax",
    "employer_medicare_tax",
)


def _number(amount: Decimal | None) -> float:
    return float(as_decimal(amount))


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def line_item(item: PayrollItem) -> dict[str, Any]:
    data: dict[str, Any] = {
        "payroll_item_id": str(item.payroll_item_id),
        "employee_id": str(item.employee_id),
        "employee_name": item.employee.full_name,
        "employment_type": item.employment_type,
    }
    for name in LINE_ITEM_AMOUNTS:
        data[name] = _number(getattr(item, name))
    return data


def totals(items: list[PayrollItem]) -> dict[str, Any]:
    sums = {
        name: sum((as_decimal(getattr(item, name)) for item in items), ZERO)
        for name in TOTAL_AMOUNTS
    }
    liability = sum((sums[name] for name in LIABILITY_AMOUNTS), ZERO)

    data: dict[str, Any] = {"employee_count": len(items)}
    data.update({name: float(amount) for name, amount in sums.items()})
    data["total_tax_liability"] = float(liability)
    return data


def build_payload(
    period: PayPeriod,
    source: str,
    submitted_at: datetime | None = None,
) -> dict[str, Any]:
    """Build the sync payload for a committed period.

    Expects the period's company, items and each item's employee to be loaded.
    """
    items = sorted(period.payroll_items, key=lambda i: str(i.employee_id))
    company = period.company
    return {
        "idempotency_key": period.tax_sync_idempotency_key,
        "source": source,
        "version": PAYLOAD_VERSION,
        "submitted_at": _iso(submitted_at or datetime.now(timezone.utc)),
        "pay_period": {
            "id": str(period.pay_period_id),
            "start_date": period.start_date.isoformat(),
            "end_date": period.end_date.isoformat(),
            "pay_date": period.pay_date.isoformat(),
            "committed_at": _iso(period.committed_at),
        },
        "company": {
            "id": str(company.company_id),
            "name": company.name,
            "ein": company.ein,
        },
        "line_items": [line_item(item) for item in items],
        "totals": totals(items),
    }
