"""Company and department models."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from territorial_payroll.models.base import Base, TimestampMixin, uuid_pk


class Company(Base, TimestampMixin):
    """Employer."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String, nullable=False)
    ein: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    pay_frequency: Mapped[str] = mapped_column(String, nullable=False, default="biweekly")
    address_line1: Mapped[str | None] = mapped_column(String, nullable=True)
    city: Mapped[str | None] = mapped_column(String, nullable=True)
    state: Mapped[str | None] = mapped_column(String, nullable=True)
    zip: Mapped[str | None] = mapped_column(String, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class Department(Base, TimestampMixin):
    """Department within a company."""

    __tablename__ = "department"

    department_id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="department_company_name_unique"),
    )
