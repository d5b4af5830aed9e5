"""Domain events and the emitter that publishes them."""

from territorial_payroll.events.emitter import EventEmitter, EventHandler, Subscription
from territorial_payroll.events.types import (
    DomainEvent,
    EventCategory,
    EventMetadata,
    PayPeriodApproved,
    PayPeriodCommitted,
    PayPeriodCreated,
    PayPeriodDeleted,
    PayPeriodUpdated,
    PayrollCalculated,
    PayrollItemCreated,
    PayrollItemRemoved,
    PayrollItemUpdated,
    TaxSyncCompleted,
    TaxSyncFailed,
    YtdTotalsReset,
)

__all__ = [
    "EventEmitter",
    "EventHandler",
    "Subscription",
    "DomainEvent",
    "EventCategory",
    "EventMetadata",
    "PayPeriodApproved",
    "PayPeriodCommitted",
    "PayPeriodCreated",
    "PayPeriodDeleted",
    "PayPeriodUpdated",
    "PayrollCalculated",
    "PayrollItemCreated",
    "PayrollItemRemoved",
    "PayrollItemUpdated",
    "TaxSyncCompleted",
    "TaxSyncFailed",
    "YtdTotalsReset",
]
