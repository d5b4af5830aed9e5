"""Pay period and payroll item models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, Session, mapped_column, relationship

from territorial_payroll.errors import ValidationError
from territorial_payroll.models.base import Base, TimestampMixin, money, uuid_pk

if TYPE_CHECKING:
    from territorial_payroll.models.company import Company
    from territorial_payroll.models.employee import Employee


MAX_SYNC_ATTEMPTS = 5


def hours() -> Mapped[Decimal]:
    return mapped_column(Numeric(8, 2), nullable=False, default=Decimal("0"))


class PayPeriod(Base, TimestampMixin):
    """Pay period with approval lifecycle and tax-sync state."""

    __tablename__ = "pay_period"

    pay_period_id: Mapped[UUID] = uuid_pk()
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft", index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    committed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Tax remittance sync
    tax_sync_status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    tax_sync_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tax_sync_last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    tax_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)
    tax_sync_idempotency_key: Mapped[str | None] = mapped_column(
        String, nullable=True, unique=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'calculated', 'approved', 'committed')",
            name="pay_period_status_check",
        ),
        CheckConstraint(
            "tax_sync_status IN ('pending', 'syncing', 'synced', 'failed')",
            name="pay_period_tax_sync_status_check",
        ),
        CheckConstraint("end_date > start_date", name="pay_period_dates_check"),
        CheckConstraint("pay_date >= end_date", name="pay_period_pay_date_check"),
    )

    company: Mapped[Company] = relationship()
    payroll_items: Mapped[list[PayrollItem]] = relationship(
        back_populates="pay_period",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_committed(self) -> bool:
        return self.status == "committed"

    @property
    def can_retry_sync(self) -> bool:
        """Committed periods that are pending or failed may be sent again."""
        return self.is_committed and self.tax_sync_status in ("pending", "failed")


class PayrollItem(Base, TimestampMixin):
    """One employee's pay for one period.

    employment_type and pay_rate are snapshotted from the employee when
    the item is created so later profile edits do not rewrite history.
    """

    __tablename__ = "payroll_item"

    payroll_item_id: Mapped[UUID] = uuid_pk()
    pay_period_id: Mapped[UUID] = mapped_column(
        ForeignKey("pay_period.pay_period_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    employment_type: Mapped[str] = mapped_column(String, nullable=False)
    pay_rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Inputs
    hours_worked: Mapped[Decimal] = hours()
    overtime_hours: Mapped[Decimal] = hours()
    holiday_hours: Mapped[Decimal] = hours()
    pto_hours: Mapped[Decimal] = hours()
    reported_tips: Mapped[Decimal] = money()
    bonus: Mapped[Decimal] = money()
    loan_payment: Mapped[Decimal] = money()
    insurance_payment: Mapped[Decimal] = money()
    additional_withholding: Mapped[Decimal] = money()

    # Computed
    gross_pay: Mapped[Decimal] = money()
    withholding_tax: Mapped[Decimal] = money()
    social_security_tax: Mapped[Decimal] = money()
    medicare_tax: Mapped[Decimal] = money()
    employer_social_security_tax: Mapped[Decimal] = money()
    employer_medicare_tax: Mapped[Decimal] = money()
    retirement_payment: Mapped[Decimal] = money()
    roth_retirement_payment: Mapped[Decimal] = money()
    total_additions: Mapped[Decimal] = money()
    total_deductions: Mapped[Decimal] = money()
    net_pay: Mapped[Decimal] = money()
    calculated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # YTD snapshot, as of and including this item
    ytd_gross: Mapped[Decimal] = money()
    ytd_net: Mapped[Decimal] = money()
    ytd_withholding_tax: Mapped[Decimal] = money()
    ytd_social_security_tax: Mapped[Decimal] = money()
    ytd_medicare_tax: Mapped[Decimal] = money()
    ytd_retirement: Mapped[Decimal] = money()
    ytd_roth_retirement: Mapped[Decimal] = money()

    __table_args__ = (
        UniqueConstraint("pay_period_id", "employee_id", name="payroll_item_period_employee"),
    )

    pay_period: Mapped[PayPeriod] = relationship(back_populates="payroll_items")
    employee: Mapped[Employee] = relationship()


# Columns that may still change on a committed period
_SYNC_COLUMNS = frozenset(
    {
        "tax_sync_status",
        "tax_sync_attempts",
        "tax_sync_last_error",
        "tax_synced_at",
        "tax_sync_idempotency_key",
        "updated_at",
    }
)


def _persisted_status(period: PayPeriod) -> str:
    """Status as loaded from the database, ignoring pending changes."""
    history = inspect(period).attrs.status.history
    if history.deleted:
        return history.deleted[0]
    return period.status


@event.listens_for(Session, "before_flush")
def _protect_committed_payroll(session: Session, flush_context: Any, instances: Any) -> None:
    """Committed periods and their items are read-only, apart from sync state."""
    for obj in session.dirty:
        if isinstance(obj, PayPeriod) and _persisted_status(obj) == "committed":
            state = inspect(obj)
            changed = {
                attr.key
                for attr in state.attrs
                if attr.key not in _SYNC_COLUMNS and attr.history.has_changes()
                and attr.key != "payroll_items"
            }
            if changed:
                raise ValidationError(
                    f"Pay period {obj.pay_period_id} is committed; cannot change "
                    f"{', '.join(sorted(changed))}"
                )
        elif isinstance(obj, PayrollItem) and session.is_modified(obj):
            _check_item_period(session, obj)

    for obj in session.deleted:
        if isinstance(obj, PayPeriod) and _persisted_status(obj) == "committed":
            raise ValidationError(f"Pay period {obj.pay_period_id} is committed")
        if isinstance(obj, PayrollItem):
            _check_item_period(session, obj)


def _check_item_period(session: Session, item: PayrollItem) -> None:
    period = session.get(PayPeriod, item.pay_period_id)
    if period is not None and _persisted_status(period) == "committed":
        raise ValidationError(
            f"Payroll item {item.payroll_item_id} belongs to a committed pay period"
        )
