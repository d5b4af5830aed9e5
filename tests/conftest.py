"""Pytest fixtures for territorial payroll tests."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from territorial_payroll.calculators.rate_repository import TaxRateRepository
from territorial_payroll.calculators.types import ProgressiveBracket
from territorial_payroll.config import Settings
from territorial_payroll.context import RequestContext
from territorial_payroll.database import make_session_factory
from territorial_payroll.models import (
    AnnualTaxConfig,
    Base,
    Company,
    Department,
    Employee,
    TaxTable,
)
from territorial_payroll.services.pay_period_service import PayPeriodService

INGEST_URL = "https://tax.example.gov/api/v1/payroll-submissions"

# 2026 annual ladder, single filer
BRACKETS_2026_SINGLE = [
    ProgressiveBracket(Decimal("0"), Decimal("12400"), Decimal("0.10")),
    ProgressiveBracket(Decimal("12400"), Decimal("50400"), Decimal("0.12")),
    ProgressiveBracket(Decimal("50400"), Decimal("105700"), Decimal("0.22")),
    ProgressiveBracket(Decimal("105700"), None, Decimal("0.24")),
]

BRACKETS_2026_MARRIED = [
    ProgressiveBracket(Decimal("0"), Decimal("24800"), Decimal("0.10")),
    ProgressiveBracket(Decimal("24800"), Decimal("100800"), Decimal("0.12")),
    ProgressiveBracket(Decimal("100800"), None, Decimal("0.22")),
]

# Legacy 2024 single/biweekly withholding table; nothing withheld below 562
LEGACY_2024_BRACKETS = [
    {"min_income": "0", "max_income": "561.99", "base_tax": "0", "rate": "0", "threshold": "0"},
    {
        "min_income": "562",
        "max_income": "1007.99",
        "base_tax": "0",
        "rate": "0.10",
        "threshold": "562",
    },
    {
        "min_income": "1008",
        "max_income": "2374.99",
        "base_tax": "44.60",
        "rate": "0.12",
        "threshold": "1008",
    },
    {
        "min_income": "2375",
        "max_income": None,
        "base_tax": "208.64",
        "rate": "0.22",
        "threshold": "2375",
    },
]


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payroll.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def settings() -> Settings:
    """Settings pointing tax sync at a fake ingest endpoint."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        tax_sync_ingest_url=INGEST_URL,
        tax_sync_api_token="test-token",
        tax_sync_shared_secret="test-secret",
        tax_sync_source="territorial-payroll-test",
        tax_sync_timeout_seconds=5.0,
        tax_sync_max_attempts=5,
        tax_sync_worker_enabled=False,
        tax_sync_sweep_interval_seconds=0,
    )


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    company = Company(
        name="Marianas Builders",
        ein="66-0401234",
        pay_frequency="biweekly",
        city="Hagatna",
        state="GU",
    )
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
async def other_company(session: AsyncSession) -> Company:
    company = Company(name="Other Co", ein="66-0409999")
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
async def department(session: AsyncSession, company: Company) -> Department:
    department = Department(company_id=company.company_id, name="Construction")
    session.add(department)
    await session.flush()
    return department


@pytest.fixture
def ctx(company: Company) -> RequestContext:
    return RequestContext(company_id=company.company_id, actor_id=uuid4())


@pytest.fixture
async def hourly_employee(
    session: AsyncSession, company: Company, department: Department
) -> Employee:
    """Hourly, $9.25/h, single, biweekly."""
    employee = Employee(
        company_id=company.company_id,
        department_id=department.department_id,
        first_name="Fredly",
        last_name="Fred",
        employment_type="hourly",
        pay_rate=Decimal("9.25"),
        pay_frequency="biweekly",
        filing_status="single",
        allowances=0,
        hire_date=date(2020, 3, 1),
    )
    session.add(employee)
    await session.flush()
    return employee


@pytest.fixture
async def salaried_employee(
    session: AsyncSession, company: Company, department: Department
) -> Employee:
    """Salaried, $52,000/yr, single, biweekly."""
    employee = Employee(
        company_id=company.company_id,
        department_id=department.department_id,
        first_name="Ana",
        last_name="Cruz",
        employment_type="salary",
        pay_rate=Decimal("52000"),
        pay_frequency="biweekly",
        filing_status="single",
        allowances=0,
        hire_date=date(2019, 6, 15),
    )
    session.add(employee)
    await session.flush()
    return employee


@pytest.fixture
async def tax_config_2026(session: AsyncSession, ctx: RequestContext) -> AnnualTaxConfig:
    """Active 2026 configuration."""
    repository = TaxRateRepository(session)
    config = await repository.create_config(
        ctx,
        tax_year=2026,
        ss_wage_base=Decimal("184500"),
        filing_statuses={
            "single": (Decimal("16100"), BRACKETS_2026_SINGLE),
            "married": (Decimal("32200"), BRACKETS_2026_MARRIED),
        },
    )
    return await repository.activate(ctx, config.annual_tax_config_id)


@pytest.fixture
async def legacy_tax_table_2024(session: AsyncSession) -> TaxTable:
    table = TaxTable(
        tax_year=2024,
        filing_status="single",
        pay_frequency="biweekly",
        ss_wage_base=Decimal("168600"),
        allowance_amount=Decimal("0"),
        bracket_data=LEGACY_2024_BRACKETS,
    )
    session.add(table)
    await session.flush()
    return table


@pytest.fixture
def pay_period_service(session: AsyncSession, ctx: RequestContext) -> PayPeriodService:
    return PayPeriodService(session, ctx)


@pytest.fixture
async def committed_period(
    session: AsyncSession,
    pay_period_service: PayPeriodService,
    tax_config_2026,
    hourly_employee: Employee,
    salaried_employee: Employee,
):
    """Committed 2026 period with both employees."""
    period = await pay_period_service.create_period(
        date(2026, 1, 4), date(2026, 1, 17), date(2026, 1, 23)
    )
    await pay_period_service.run_payroll(period.pay_period_id)
    await pay_period_service.approve(period.pay_period_id)
    return await pay_period_service.commit(period.pay_period_id)
