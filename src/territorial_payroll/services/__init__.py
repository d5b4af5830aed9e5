"""Territorial payroll services."""

from territorial_payroll.services.pay_period_service import (
    DuplicatePayrollItemError,
    PayPeriodService,
    RunPayrollResult,
)
from territorial_payroll.services.pay_stub_service import PayStubService, PayStubView
from territorial_payroll.services.state_machine import (
    InvalidTransitionError,
    PayPeriodStateMachine,
    PayPeriodStatus,
    PeriodLockedError,
    TaxSyncStatus,
)
from territorial_payroll.services.tax_sync_service import (
    TaxSyncConfigurationError,
    TaxSyncService,
    TaxSyncValidationError,
)
from territorial_payroll.services.tax_sync_worker import TaxSyncJob, TaxSyncWorker, retry_delay
from territorial_payroll.services.ytd_aggregator import YtdAggregator, YtdScope

__all__ = [
    "DuplicatePayrollItemError",
    "PayPeriodService",
    "RunPayrollResult",
    "PayStubService",
    "PayStubView",
    "InvalidTransitionError",
    "PayPeriodStateMachine",
    "PayPeriodStatus",
    "PeriodLockedError",
    "TaxSyncStatus",
    "TaxSyncConfigurationError",
    "TaxSyncService",
    "TaxSyncValidationError",
    "TaxSyncJob",
    "TaxSyncWorker",
    "retry_delay",
    "YtdAggregator",
    "YtdScope",
]
