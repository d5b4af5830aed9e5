"""Tax configuration models: annual configs, filing statuses, brackets, legacy tables."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from territorial_payroll.errors import ValidationError
from territorial_payroll.models.base import Base, TimestampMixin, utcnow, uuid_pk

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class AnnualTaxConfig(Base, TimestampMixin):
    """Year-scoped payroll tax rates. At most one row is active."""

    __tablename__ = "annual_tax_config"

    annual_tax_config_id: Mapped[UUID] = uuid_pk()
    tax_year: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    ss_wage_base: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    ss_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 5), nullable=False, default=Decimal("0.062")
    )
    medicare_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 5), nullable=False, default=Decimal("0.0145")
    )
    additional_medicare_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 5), nullable=False, default=Decimal("0.009")
    )
    additional_medicare_threshold: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("200000")
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index(
            "annual_tax_config_single_active",
            "is_active",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    filing_status_configs: Mapped[list[FilingStatusConfig]] = relationship(
        back_populates="annual_tax_config",
        cascade="all, delete-orphan",
        order_by="FilingStatusConfig.filing_status",
    )


class FilingStatusConfig(Base, TimestampMixin):
    """Standard deduction and bracket ladder for one filing status in one year."""

    __tablename__ = "filing_status_config"

    filing_status_config_id: Mapped[UUID] = uuid_pk()
    annual_tax_config_id: Mapped[UUID] = mapped_column(
        ForeignKey("annual_tax_config.annual_tax_config_id", ondelete="CASCADE"),
        nullable=False,
    )
    filing_status: Mapped[str] = mapped_column(String, nullable=False)
    standard_deduction: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "annual_tax_config_id", "filing_status", name="filing_status_config_unique"
        ),
        CheckConstraint(
            "filing_status IN ('single', 'married', 'head_of_household')",
            name="filing_status_config_status_check",
        ),
    )

    annual_tax_config: Mapped[AnnualTaxConfig] = relationship(
        back_populates="filing_status_configs"
    )
    tax_brackets: Mapped[list[TaxBracket]] = relationship(
        back_populates="filing_status_config",
        cascade="all, delete-orphan",
        order_by="TaxBracket.bracket_order",
    )


class TaxBracket(Base, TimestampMixin):
    """One rung of a progressive bracket ladder. max_income None = unbounded."""

    __tablename__ = "tax_bracket"

    tax_bracket_id: Mapped[UUID] = uuid_pk()
    filing_status_config_id: Mapped[UUID] = mapped_column(
        ForeignKey("filing_status_config.filing_status_config_id", ondelete="CASCADE"),
        nullable=False,
    )
    bracket_order: Mapped[int] = mapped_column(Integer, nullable=False)
    min_income: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    max_income: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 4), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "filing_status_config_id", "bracket_order", name="tax_bracket_order_unique"
        ),
        CheckConstraint("rate >= 0 AND rate <= 1", name="tax_bracket_rate_check"),
    )

    filing_status_config: Mapped[FilingStatusConfig] = relationship(
        back_populates="tax_brackets"
    )


class TaxConfigAuditLog(Base):
    """Write-once record of a change to tax configuration."""

    __tablename__ = "tax_config_audit_log"

    tax_config_audit_log_id: Mapped[UUID] = uuid_pk()
    annual_tax_config_id: Mapped[UUID] = mapped_column(
        ForeignKey("annual_tax_config.annual_tax_config_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(String, nullable=False)
    field_name: Mapped[str | None] = mapped_column(String, nullable=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "action IN ('created', 'updated', 'activated', 'deactivated')",
            name="tax_config_audit_log_action_check",
        ),
    )


class TaxTable(Base, TimestampMixin):
    """Legacy per-period withholding table.

    bracket_data is a list of {min_income, max_income, base_tax, rate, threshold}.
    """

    __tablename__ = "tax_table"

    tax_table_id: Mapped[UUID] = uuid_pk()
    tax_year: Mapped[int] = mapped_column(Integer, nullable=False)
    filing_status: Mapped[str] = mapped_column(String, nullable=False)
    pay_frequency: Mapped[str] = mapped_column(String, nullable=False)
    ss_wage_base: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    ss_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 5), nullable=False, default=Decimal("0.062")
    )
    medicare_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 5), nullable=False, default=Decimal("0.0145")
    )
    additional_medicare_rate: Mapped[Decimal] = mapped_column(
        Numeric(6, 5), nullable=False, default=Decimal("0.009")
    )
    additional_medicare_threshold: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("200000")
    )
    allowance_amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    bracket_data: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONVariant, nullable=False, default=list
    )

    __table_args__ = (
        UniqueConstraint(
            "tax_year", "filing_status", "pay_frequency", name="tax_table_year_status_frequency"
        ),
    )


@event.listens_for(Session, "before_flush")
def _protect_audit_log(session: Session, flush_context: Any, instances: Any) -> None:
    """Audit log rows are write-once."""
    for obj in session.deleted:
        if isinstance(obj, TaxConfigAuditLog):
            raise ValidationError("Tax config audit log records are read-only")
    for obj in session.dirty:
        if isinstance(obj, TaxConfigAuditLog) and session.is_modified(obj):
            raise ValidationError("Tax config audit log records are read-only")
