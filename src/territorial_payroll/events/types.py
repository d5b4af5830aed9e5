"""Domain events raised by the payroll services.

Events are frozen dataclasses. Each class declares its category, audit
record type and action name; instances carry the changed record's id and
whatever fields the audit trail needs.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar
from uuid import UUID, uuid4

from territorial_payroll.context import RequestContext


class EventCategory(str, Enum):
    PAY_PERIOD = "pay_period"
    PAYROLL_ITEM = "payroll_item"
    TAX_SYNC = "tax_sync"
    YTD = "ytd"


@dataclass(frozen=True)
class EventMetadata:
    """Who caused an event, for which company, and when."""

    event_id: UUID
    timestamp: datetime
    company_id: UUID | None
    actor_id: UUID | None
    actor_type: str  # user, system or worker
    correlation_id: UUID

    @classmethod
    def create(
        cls,
        company_id: UUID | None,
        actor_id: UUID | None = None,
        actor_type: str = "system",
        correlation_id: UUID | None = None,
    ) -> EventMetadata:
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            company_id=company_id,
            actor_id=actor_id,
            actor_type=actor_type,
            correlation_id=correlation_id or uuid4(),
        )

    @classmethod
    def from_context(cls, ctx: RequestContext) -> EventMetadata:
        """Metadata for an event raised while serving a request."""
        return cls.create(
            company_id=ctx.company_id,
            actor_id=ctx.actor_id,
            actor_type="user" if ctx.actor_id else "system",
        )


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


@dataclass(frozen=True)
class DomainEvent:
    category: ClassVar[EventCategory]
    record_type: ClassVar[str]
    action: ClassVar[str]  # e.g. 'pay_period.committed'

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    def record_id(self) -> UUID:
        raise NotImplementedError

    def payload(self) -> dict[str, Any]:
        """Event fields without metadata, as JSON-ready values."""
        data = asdict(self)
        data.pop("metadata")
        return _jsonable(data)


# Pay periods


@dataclass(frozen=True)
class _PayPeriodEvent(DomainEvent):
    category = EventCategory.PAY_PERIOD
    record_type = "PayPeriod"

    pay_period_id: UUID

    @property
    def record_id(self) -> UUID:
        return self.pay_period_id


@dataclass(frozen=True)
class PayPeriodCreated(_PayPeriodEvent):
    action = "pay_period.created"

    start_date: date
    end_date: date
    pay_date: date


@dataclass(frozen=True)
class PayPeriodUpdated(_PayPeriodEvent):
    action = "pay_period.updated"

    changes: dict[str, Any]


@dataclass(frozen=True)
class PayrollCalculated(_PayPeriodEvent):
    """Payroll was run; status says whether the period reached calculated."""

    action = "pay_period.calculated"

    item_count: int
    error_count: int
    status: str


@dataclass(frozen=True)
class PayPeriodApproved(_PayPeriodEvent):
    action = "pay_period.approved"

    approved_by_id: UUID | None


@dataclass(frozen=True)
class PayPeriodCommitted(_PayPeriodEvent):
    """Period is final and folded into YTD totals. Tax sync follows."""

    action = "pay_period.committed"

    committed_at: datetime
    item_count: int
    total_gross: Decimal


@dataclass(frozen=True)
class PayPeriodDeleted(_PayPeriodEvent):
    action = "pay_period.deleted"

    status: str


# Payroll items


@dataclass(frozen=True)
class _PayrollItemEvent(DomainEvent):
    category = EventCategory.PAYROLL_ITEM
    record_type = "PayrollItem"

    payroll_item_id: UUID
    pay_period_id: UUID
    employee_id: UUID

    @property
    def record_id(self) -> UUID:
        return self.payroll_item_id


@dataclass(frozen=True)
class PayrollItemCreated(_PayrollItemEvent):
    action = "payroll_item.created"


@dataclass(frozen=True)
class PayrollItemUpdated(_PayrollItemEvent):
    action = "payroll_item.updated"

    changes: dict[str, Any]


@dataclass(frozen=True)
class PayrollItemRemoved(_PayrollItemEvent):
    action = "payroll_item.removed"


# Tax sync


@dataclass(frozen=True)
class TaxSyncCompleted(_PayPeriodEvent):
    category = EventCategory.TAX_SYNC
    action = "tax_sync.completed"

    idempotency_key: str
    attempts: int
    duplicate: bool  # endpoint answered 409


@dataclass(frozen=True)
class TaxSyncFailed(_PayPeriodEvent):
    category = EventCategory.TAX_SYNC
    action = "tax_sync.failed"

    attempts: int
    error: str
    status_code: int | None


# YTD


@dataclass(frozen=True)
class YtdTotalsReset(DomainEvent):
    category = EventCategory.YTD
    action = "ytd_totals.reset"

    scope: str  # employee, department or company
    entity_id: UUID
    year: int

    @property
    def record_type(self) -> str:  # type: ignore[override]
        return f"{self.scope.capitalize()}YtdTotal"

    @property
    def record_id(self) -> UUID:
        return self.entity_id
