"""Year-to-date accumulation rows, one per (entity, calendar year)."""

from __future__ import annotations

from decimal import Decimal
from typing import ClassVar
from uuid import UUID

from sqlalchemy import ForeignKey, Integer, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from territorial_payroll.models.base import Base, TimestampMixin, uuid_pk


def total() -> Mapped[Decimal]:
    return mapped_column(Numeric(14, 2), nullable=False, default=Decimal("0"))


class YtdTotalMixin(TimestampMixin):
    """Shared shape for YTD rows.

    AMOUNT_FIELDS lists the columns folded in from payroll items and
    zeroed by reset.
    """

    AMOUNT_FIELDS: ClassVar[tuple[str, ...]] = (
        "gross_pay",
        "net_pay",
        "withholding_tax",
        "social_security_tax",
        "medicare_tax",
    )
    ENTITY_COLUMN: ClassVar[str]

    year: Mapped[int] = mapped_column(Integer, nullable=False)
    gross_pay: Mapped[Decimal] = total()
    net_pay: Mapped[Decimal] = total()
    withholding_tax: Mapped[Decimal] = total()
    social_security_tax: Mapped[Decimal] = total()
    medicare_tax: Mapped[Decimal] = total()


class EmployeeYtdTotal(YtdTotalMixin, Base):
    __tablename__ = "employee_ytd_total"

    AMOUNT_FIELDS = YtdTotalMixin.AMOUNT_FIELDS + (
        "retirement",
        "roth_retirement",
        "insurance",
        "loans",
        "tips",
        "bonus",
        "overtime_pay",
    )
    ENTITY_COLUMN = "employee_id"

    employee_ytd_total_id: Mapped[UUID] = uuid_pk()
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"), nullable=False
    )
    retirement: Mapped[Decimal] = total()
    roth_retirement: Mapped[Decimal] = total()
    insurance: Mapped[Decimal] = total()
    loans: Mapped[Decimal] = total()
    tips: Mapped[Decimal] = total()
    bonus: Mapped[Decimal] = total()
    overtime_pay: Mapped[Decimal] = total()

    __table_args__ = (
        UniqueConstraint("employee_id", "year", name="employee_ytd_total_employee_year"),
    )


class DepartmentYtdTotal(YtdTotalMixin, Base):
    __tablename__ = "department_ytd_total"

    ENTITY_COLUMN = "department_id"

    department_ytd_total_id: Mapped[UUID] = uuid_pk()
    department_id: Mapped[UUID] = mapped_column(
        ForeignKey("department.department_id", ondelete="CASCADE"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("department_id", "year", name="department_ytd_total_department_year"),
    )


class CompanyYtdTotal(YtdTotalMixin, Base):
    __tablename__ = "company_ytd_total"

    AMOUNT_FIELDS = YtdTotalMixin.AMOUNT_FIELDS + (
        "employer_social_security",
        "employer_medicare",
    )
    ENTITY_COLUMN = "company_id"

    company_ytd_total_id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"), nullable=False
    )
    employer_social_security: Mapped[Decimal] = total()
    employer_medicare: Mapped[Decimal] = total()

    __table_args__ = (
        UniqueConstraint("company_id", "year", name="company_ytd_total_company_year"),
    )
