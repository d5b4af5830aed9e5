"""ORM models."""

from territorial_payroll.models.base import Base, TimestampMixin
from territorial_payroll.models.company import Company, Department
from territorial_payroll.models.employee import Employee
from territorial_payroll.models.payroll import MAX_SYNC_ATTEMPTS, PayPeriod, PayrollItem
from territorial_payroll.models.tax_config import (
    AnnualTaxConfig,
    FilingStatusConfig,
    TaxBracket,
    TaxConfigAuditLog,
    TaxTable,
)
from territorial_payroll.models.ytd import (
    CompanyYtdTotal,
    DepartmentYtdTotal,
    EmployeeYtdTotal,
    YtdTotalMixin,
)

__all__ = [
    "Base",
    "TimestampMixin",
    "Company",
    "Department",
    "Employee",
    "MAX_SYNC_ATTEMPTS",
    "PayPeriod",
    "PayrollItem",
    "AnnualTaxConfig",
    "FilingStatusConfig",
    "TaxBracket",
    "TaxConfigAuditLog",
    "TaxTable",
    "CompanyYtdTotal",
    "DepartmentYtdTotal",
    "EmployeeYtdTotal",
    "YtdTotalMixin",
]
