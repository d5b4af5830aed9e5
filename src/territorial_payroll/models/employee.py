"""Employee compensation profile."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from territorial_payroll.models.base import Base, TimestampMixin, money, uuid_pk

if TYPE_CHECKING:
    from territorial_payroll.models.company import Company, Department


class Employee(Base, TimestampMixin):
    """Employee identity and compensation profile.

    pay_rate is the hourly rate for hourly employees and the annual
    salary for salaried employees.
    """

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    middle_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    termination_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    employment_type: Mapped[str] = mapped_column(String, nullable=False, default="hourly")
    pay_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    pay_frequency: Mapped[str] = mapped_column(String, nullable=False, default="biweekly")
    filing_status: Mapped[str] = mapped_column(String, nullable=False, default="single")
    allowances: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    retirement_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4), nullable=False, default=Decimal("0")
    )
    roth_retirement_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 4), nullable=False, default=Decimal("0")
    )
    additional_withholding: Mapped[Decimal] = money()
    status: Mapped[str] = mapped_column(String, nullable=False, default="active", index=True)

    __table_args__ = (
        CheckConstraint(
            "employment_type IN ('hourly', 'salary')", name="employee_employment_type_check"
        ),
        CheckConstraint(
            "pay_frequency IN ('weekly', 'biweekly', 'semimonthly', 'monthly')",
            name="employee_pay_frequency_check",
        ),
        CheckConstraint(
            "filing_status IN ('single', 'married', 'married_separate', 'head_of_household')",
            name="employee_filing_status_check",
        ),
        CheckConstraint(
            "status IN ('active', 'inactive', 'terminated')", name="employee_status_check"
        ),
        CheckConstraint(
            "retirement_rate >= 0 AND roth_retirement_rate >= 0 "
            "AND retirement_rate + roth_retirement_rate <= 1",
            name="employee_retirement_rates_check",
        ),
        CheckConstraint("pay_rate >= 0", name="employee_pay_rate_check"),
    )

    company: Mapped[Company] = relationship()
    department: Mapped[Department | None] = relationship()

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.middle_name, self.last_name) if p)
