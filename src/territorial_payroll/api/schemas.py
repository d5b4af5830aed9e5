"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Pay Period schemas
# ============================================================================


class PayPeriodCreate(BaseModel):
    """Schema for creating a new pay period in draft status."""

    start_date: date
    end_date: date
    pay_date: date
    notes: str | None = None


class PayPeriodUpdate(BaseModel):
    """Schema for changing dates or notes. Only fields sent are applied."""

    start_date: date | None = None
    end_date: date | None = None
    pay_date: date | None = None
    notes: str | None = None


class PayrollItemResponse(BaseModel):
    """Schema for payroll item response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_item_id: UUID
    pay_period_id: UUID
    employee_id: UUID
    employment_type: str
    pay_rate: Decimal
    hours_worked: Decimal
    overtime_hours: Decimal
    holiday_hours: Decimal
    pto_hours: Decimal
    reported_tips: Decimal
    bonus: Decimal
    loan_payment: Decimal
    insurance_payment: Decimal
    additional_withholding: Decimal
    gross_pay: Decimal
    withholding_tax: Decimal
    social_security_tax: Decimal
    medicare_tax: Decimal
    employer_social_security_tax: Decimal
    employer_medicare_tax: Decimal
    retirement_payment: Decimal
    roth_retirement_payment: Decimal
    total_additions: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    ytd_gross: Decimal
    ytd_net: Decimal
    ytd_withholding_tax: Decimal
    ytd_social_security_tax: Decimal
    ytd_medicare_tax: Decimal
    ytd_retirement: Decimal
    ytd_roth_retirement: Decimal
    calculated_at: datetime | None = None


class PayPeriodResponse(BaseModel):
    """Schema for pay period response."""

    model_config = ConfigDict(from_attributes=True)

    pay_period_id: UUID
    company_id: UUID
    start_date: date
    end_date: date
    pay_date: date
    status: str
    notes: str | None = None
    created_by_id: UUID | None = None
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None
    committed_at: datetime | None = None
    tax_sync_status: str
    tax_sync_attempts: int
    tax_sync_last_error: str | None = None
    tax_synced_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PayPeriodDetailResponse(PayPeriodResponse):
    """Pay period with its payroll items."""

    payroll_items: list[PayrollItemResponse] = []


class PayPeriodListResponse(BaseModel):
    """Schema for listing pay periods."""

    items: list[PayPeriodResponse]
    total: int


# ============================================================================
# Payroll run schemas
# ============================================================================


class HoursOverride(BaseModel):
    """Per-employee hours applied before calculation."""

    regular: Decimal | None = Field(default=None, ge=0)
    overtime: Decimal | None = Field(default=None, ge=0)
    holiday: Decimal | None = Field(default=None, ge=0)
    pto: Decimal | None = Field(default=None, ge=0)


class RunPayrollRequest(BaseModel):
    """Employees to include (default: every active employee) and hour overrides."""

    employee_ids: list[UUID] | None = None
    hours: dict[UUID, HoursOverride] | None = None


class RunPayrollResponse(BaseModel):
    pay_period: PayPeriodResponse
    calculated: int
    errors: dict[UUID, list[str]]


# ============================================================================
# Payroll item schemas
# ============================================================================


class PayrollItemInputs(BaseModel):
    """Editable item inputs. Only fields sent are applied."""

    hours_worked: Decimal | None = Field(default=None, ge=0)
    overtime_hours: Decimal | None = Field(default=None, ge=0)
    holiday_hours: Decimal | None = Field(default=None, ge=0)
    pto_hours: Decimal | None = Field(default=None, ge=0)
    reported_tips: Decimal | None = Field(default=None, ge=0)
    bonus: Decimal | None = Field(default=None, ge=0)
    loan_payment: Decimal | None = Field(default=None, ge=0)
    insurance_payment: Decimal | None = Field(default=None, ge=0)


class PayrollItemCreate(PayrollItemInputs):
    employee_id: UUID


class PayrollItemListResponse(BaseModel):
    items: list[PayrollItemResponse]
    total: int


# ============================================================================
# Tax sync schemas
# ============================================================================


class TaxSyncResponse(BaseModel):
    """Result of a manual sync request."""

    pay_period_id: UUID
    queued: bool
    tax_sync_status: str
    tax_sync_attempts: int
    tax_sync_last_error: str | None = None
    tax_synced_at: datetime | None = None


# ============================================================================
# Tax configuration schemas
# ============================================================================


class TaxBracketSchema(BaseModel):
    """Annual income bracket; max_income None means unbounded."""

    model_config = ConfigDict(from_attributes=True)

    min_income: Decimal = Field(ge=0)
    max_income: Decimal | None = None
    rate: Decimal = Field(ge=0, le=1)


class FilingStatusConfigSchema(BaseModel):
    standard_deduction: Decimal = Field(ge=0)
    brackets: list[TaxBracketSchema]


class FilingStatusConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    filing_status_config_id: UUID
    filing_status: str
    standard_deduction: Decimal
    tax_brackets: list[TaxBracketSchema]


class TaxConfigCreate(BaseModel):
    """Schema for creating a year's tax configuration (created inactive)."""

    tax_year: int = Field(ge=2000, le=2100)
    ss_wage_base: Decimal = Field(gt=0)
    ss_rate: Decimal = Field(default=Decimal("0.062"), ge=0, le=1)
    medicare_rate: Decimal = Field(default=Decimal("0.0145"), ge=0, le=1)
    additional_medicare_rate: Decimal = Field(default=Decimal("0.009"), ge=0, le=1)
    additional_medicare_threshold: Decimal = Field(default=Decimal("200000"), ge=0)
    filing_statuses: dict[
        Literal["single", "married", "head_of_household"], FilingStatusConfigSchema
    ]


class TaxConfigUpdate(BaseModel):
    """Scalar rate changes and standard deductions by filing status."""

    ss_wage_base: Decimal | None = Field(default=None, ge=0)
    ss_rate: Decimal | None = Field(default=None, ge=0, le=1)
    medicare_rate: Decimal | None = Field(default=None, ge=0, le=1)
    additional_medicare_rate: Decimal | None = Field(default=None, ge=0, le=1)
    additional_medicare_threshold: Decimal | None = Field(default=None, ge=0)
    standard_deductions: dict[str, Decimal] | None = None


class TaxConfigCopyRequest(BaseModel):
    tax_year: int = Field(ge=2000, le=2100)


class BracketsReplace(BaseModel):
    brackets: list[TaxBracketSchema]


class TaxConfigResponse(BaseModel):
    """Schema for tax configuration response."""

    model_config = ConfigDict(from_attributes=True)

    annual_tax_config_id: UUID
    tax_year: int
    ss_wage_base: Decimal
    ss_rate: Decimal
    medicare_rate: Decimal
    additional_medicare_rate: Decimal
    additional_medicare_threshold: Decimal
    is_active: bool
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None
    filing_status_configs: list[FilingStatusConfigResponse] = []


class TaxConfigAuditLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tax_config_audit_log_id: UUID
    annual_tax_config_id: UUID
    actor_id: UUID | None = None
    action: str
    field_name: str | None = None
    old_value: str | None = None
    new_value: str | None = None
    created_at: datetime


# ============================================================================
# YTD schemas
# ============================================================================


YtdScopeName = Literal["employee", "department", "company"]


class YtdResetRequest(BaseModel):
    """Destructive; confirm must be true."""

    scope: YtdScopeName
    entity_id: UUID
    year: int
    confirm: bool = False


class YtdTotalResponse(BaseModel):
    scope: YtdScopeName
    entity_id: UUID
    year: int
    totals: dict[str, Decimal]


# ============================================================================
# Error schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
