"""Exception hierarchy shared across calculators, services and the API."""

from __future__ import annotations


class PayrollError(Exception):
    """Base class for all payroll errors."""


class ValidationError(PayrollError):
    """Request is invalid for the current state. Never retried."""


class ConfigurationError(PayrollError):
    """Required configuration (tax rates, endpoints) is missing."""


class NotFoundError(PayrollError):
    """Requested record does not exist."""

    def __init__(self, record_type: str, record_id: object):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} {record_id} not found")


class TaxSyncError(PayrollError):
    """Transient tax sync failure; the attempt may be retried."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
