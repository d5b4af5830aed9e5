"""Year-scoped tax rate lookup and administration."""

from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from territorial_payroll.calculators.types import (
    CONFIGURED_FILING_STATUSES,
    FilingStatus,
    PayFrequency,
    PayrollTaxRates,
    ProgressiveBracket,
    TaxSchedule,
    WithholdingBracket,
    as_decimal,
)
from territorial_payroll.context import RequestContext
from territorial_payroll.errors import ConfigurationError, NotFoundError, ValidationError
from territorial_payroll.models import (
    AnnualTaxConfig,
    FilingStatusConfig,
    TaxBracket,
    TaxConfigAuditLog,
    TaxTable,
)

logger = logging.getLogger(__name__)


class TaxConfigNotFoundError(ConfigurationError):
    """Raised when no tax configuration covers a year/filing status/frequency."""

    def __init__(self, tax_year: int, filing_status: str, pay_frequency: str):
        self.tax_year = tax_year
        self.filing_status = filing_status
        self.pay_frequency = pay_frequency
        super().__init__(
            f"No tax configuration for {tax_year} ({filing_status}, {pay_frequency})"
        )


class InvalidBracketsError(ValidationError):
    """Bracket ladder is not a contiguous ascending partition of [0, inf)."""


# Scalar fields editable through update_config
UPDATABLE_FIELDS = (
    "ss_wage_base",
    "ss_rate",
    "medicare_rate",
    "additional_medicare_rate",
    "additional_medicare_threshold",
)


def validate_brackets(brackets: list[ProgressiveBracket]) -> None:
    """Check brackets form a contiguous, non-overlapping, ascending partition of [0, inf)."""
    if not brackets:
        raise InvalidBracketsError("At least one bracket is required")
    if brackets[0].min_income != 0:
        raise InvalidBracketsError("First bracket must start at 0")

    for index, bracket in enumerate(brackets):
        if not (0 <= bracket.rate <= 1):
            raise InvalidBracketsError(f"Bracket {index + 1}: rate must be between 0 and 1")
        is_last = index == len(brackets) - 1
        if bracket.max_income is None:
            if not is_last:
                raise InvalidBracketsError(
                    f"Bracket {index + 1}: only the last bracket may be unbounded"
                )
            continue
        if bracket.max_income <= bracket.min_income:
            raise InvalidBracketsError(
                f"Bracket {index + 1}: max income must exceed min income"
            )
        if is_last:
            raise InvalidBracketsError("Last bracket must be unbounded")
        if brackets[index + 1].min_income != bracket.max_income:
            raise InvalidBracketsError(
                f"Bracket {index + 2} must start where bracket {index + 1} ends"
            )


def _brackets_json(brackets: Iterable[ProgressiveBracket | TaxBracket]) -> str:
    return json.dumps(
        [
            {
                "min_income": str(b.min_income),
                "max_income": None if b.max_income is None else str(b.max_income),
                "rate": str(b.rate),
            }
            for b in brackets
        ]
    )


class TaxRateRepository:
    """Resolves tax schedules and applies audited changes to tax configuration.

    Resolution order for (year, filing status, frequency):
    1. AnnualTaxConfig for that year
    2. The active AnnualTaxConfig
    3. Legacy TaxTable for (year, filing status, frequency)
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._schedule_cache: dict[tuple[int, str, str], TaxSchedule] = {}

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(
        self, tax_year: int, filing_status: str, pay_frequency: str
    ) -> TaxSchedule:
        """Return the applicable schedule, or raise TaxConfigNotFoundError."""
        cache_key = (tax_year, filing_status, pay_frequency)
        if cache_key in self._schedule_cache:
            return self._schedule_cache[cache_key]

        frequency = PayFrequency(pay_frequency)
        schedule = await self._resolve_annual(tax_year, filing_status, frequency)
        if schedule is None:
            schedule = await self._resolve_legacy(tax_year, filing_status, frequency)
        if schedule is None:
            raise TaxConfigNotFoundError(tax_year, filing_status, pay_frequency)

        self._schedule_cache[cache_key] = schedule
        return schedule

    async def current_config(self, tax_year: int) -> AnnualTaxConfig | None:
        """Year-matching config, else the active one."""
        config = await self._load_config(AnnualTaxConfig.tax_year == tax_year)
        if config is None:
            config = await self._load_config(AnnualTaxConfig.is_active.is_(True))
        return config

    async def _resolve_annual(
        self, tax_year: int, filing_status: str, frequency: PayFrequency
    ) -> TaxSchedule | None:
        config = await self.current_config(tax_year)
        if config is None:
            return None

        # married_separate has no annual schedule of its own
        lookup_status = (
            FilingStatus.SINGLE.value
            if filing_status == FilingStatus.MARRIED_SEPARATE.value
            else filing_status
        )
        fsc = next(
            (f for f in config.filing_status_configs if f.filing_status == lookup_status),
            None,
        )
        if fsc is None:
            return None

        return TaxSchedule(
            tax_year=config.tax_year,
            filing_status=filing_status,
            pay_frequency=frequency,
            rates=PayrollTaxRates(
                ss_wage_base=config.ss_wage_base,
                ss_rate=config.ss_rate,
                medicare_rate=config.medicare_rate,
                additional_medicare_rate=config.additional_medicare_rate,
                additional_medicare_threshold=config.additional_medicare_threshold,
            ),
            source="annual_config",
            standard_deduction=fsc.standard_deduction,
            annual_brackets=tuple(
                ProgressiveBracket(
                    min_income=b.min_income, max_income=b.max_income, rate=b.rate
                )
                for b in fsc.tax_brackets
            ),
        )

    async def _resolve_legacy(
        self, tax_year: int, filing_status: str, frequency: PayFrequency
    ) -> TaxSchedule | None:
        result = await self.session.execute(
            select(TaxTable).where(
                TaxTable.tax_year == tax_year,
                TaxTable.filing_status == filing_status,
                TaxTable.pay_frequency == frequency.value,
            )
        )
        table = result.scalar_one_or_none()
        if table is None:
            return None

        return TaxSchedule(
            tax_year=table.tax_year,
            filing_status=filing_status,
            pay_frequency=frequency,
            rates=PayrollTaxRates(
                ss_wage_base=table.ss_wage_base,
                ss_rate=table.ss_rate,
                medicare_rate=table.medicare_rate,
                additional_medicare_rate=table.additional_medicare_rate,
                additional_medicare_threshold=table.additional_medicare_threshold,
            ),
            source="tax_table",
            allowance_amount=as_decimal(table.allowance_amount),
            withholding_brackets=tuple(
                WithholdingBracket(
                    min_income=as_decimal(row.get("min_income")),
                    max_income=(
                        None if row.get("max_income") is None else as_decimal(row["max_income"])
                    ),
                    base_tax=as_decimal(row.get("base_tax")),
                    rate=as_decimal(row.get("rate")),
                    threshold=as_decimal(row.get("threshold")),
                )
                for row in sorted(
                    table.bracket_data, key=lambda r: as_decimal(r.get("min_income"))
                )
            ),
        )

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    async def list_configs(self) -> list[AnnualTaxConfig]:
        result = await self.session.execute(
            select(AnnualTaxConfig)
            .options(
                selectinload(AnnualTaxConfig.filing_status_configs).selectinload(
                    FilingStatusConfig.tax_brackets
                )
            )
            .order_by(AnnualTaxConfig.tax_year.desc())
        )
        return list(result.scalars().all())

    async def get_config(self, config_id: UUID) -> AnnualTaxConfig:
        config = await self._load_config(AnnualTaxConfig.annual_tax_config_id == config_id)
        if config is None:
            raise NotFoundError("AnnualTaxConfig", config_id)
        return config

    async def create_config(
        self,
        ctx: RequestContext,
        tax_year: int,
        ss_wage_base: Decimal,
        filing_statuses: dict[str, tuple[Decimal, list[ProgressiveBracket]]],
        ss_rate: Decimal = Decimal("0.062"),
        medicare_rate: Decimal = Decimal("0.0145"),
        additional_medicare_rate: Decimal = Decimal("0.009"),
        additional_medicare_threshold: Decimal = Decimal("200000"),
    ) -> AnnualTaxConfig:
        """Create a year's configuration.

        filing_statuses maps status -> (standard deduction, bracket ladder).
        """
        await self._ensure_year_free(tax_year)
        for status, (_, brackets) in filing_statuses.items():
            self._check_filing_status(status)
            validate_brackets(brackets)

        config = AnnualTaxConfig(
            tax_year=tax_year,
            ss_wage_base=ss_wage_base,
            ss_rate=ss_rate,
            medicare_rate=medicare_rate,
            additional_medicare_rate=additional_medicare_rate,
            additional_medicare_threshold=additional_medicare_threshold,
            is_active=False,
            created_by_id=ctx.actor_id,
            updated_by_id=ctx.actor_id,
        )
        config.filing_status_configs = [
            self._build_filing_status(status, deduction, brackets)
            for status, (deduction, brackets) in filing_statuses.items()
        ]
        self.session.add(config)
        await self.session.flush()

        self._audit(ctx, config, "created", new_value=str(tax_year))
        await self.session.flush()
        self._schedule_cache.clear()
        logger.info("Created tax config for %s", tax_year)
        return await self.get_config(config.annual_tax_config_id)

    async def create_from_previous(
        self, ctx: RequestContext, source_config_id: UUID, new_year: int
    ) -> AnnualTaxConfig:
        """Deep-copy a year's rates, deductions and brackets into a new, inactive year."""
        source = await self.get_config(source_config_id)
        await self._ensure_year_free(new_year)

        config = AnnualTaxConfig(
            tax_year=new_year,
            ss_wage_base=source.ss_wage_base,
            ss_rate=source.ss_rate,
            medicare_rate=source.medicare_rate,
            additional_medicare_rate=source.additional_medicare_rate,
            additional_medicare_threshold=source.additional_medicare_threshold,
            is_active=False,
            created_by_id=ctx.actor_id,
            updated_by_id=ctx.actor_id,
        )
        config.filing_status_configs = [
            self._build_filing_status(
                fsc.filing_status,
                fsc.standard_deduction,
                [
                    ProgressiveBracket(b.min_income, b.max_income, b.rate)
                    for b in fsc.tax_brackets
                ],
            )
            for fsc in source.filing_status_configs
        ]
        self.session.add(config)
        await self.session.flush()

        self._audit(
            ctx,
            config,
            "created",
            field_name="copied_from",
            new_value=str(source.tax_year),
        )
        await self.session.flush()
        self._schedule_cache.clear()
        logger.info("Copied tax config %s into %s", source.tax_year, new_year)
        return await self.get_config(config.annual_tax_config_id)

    async def update_config(
        self, ctx: RequestContext, config_id: UUID, changes: dict[str, Any]
    ) -> AnnualTaxConfig:
        """Update scalar rates; one audit row per changed field."""
        config = await self.get_config(config_id)
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        for field_name, value in changes.items():
            new_value = as_decimal(value)
            if new_value < 0:
                raise ValidationError(f"{field_name} must not be negative")
            if field_name.endswith("_rate") and new_value > 1:
                raise ValidationError(f"{field_name} must be between 0 and 1")
            old_value = getattr(config, field_name)
            if old_value == new_value:
                continue
            setattr(config, field_name, new_value)
            self._audit(
                ctx,
                config,
                "updated",
                field_name=field_name,
                old_value=str(old_value),
                new_value=str(new_value),
            )

        config.updated_by_id = ctx.actor_id
        await self.session.flush()
        self._schedule_cache.clear()
        return config

    async def update_standard_deduction(
        self, ctx: RequestContext, config_id: UUID, filing_status: str, amount: Decimal
    ) -> FilingStatusConfig:
        if amount < 0:
            raise ValidationError("Standard deduction must not be negative")
        config = await self.get_config(config_id)
        fsc = self._filing_status_config(config, filing_status)

        old_value = fsc.standard_deduction
        if old_value != amount:
            fsc.standard_deduction = amount
            self._audit(
                ctx,
                config,
                "updated",
                field_name=f"{filing_status}.standard_deduction",
                old_value=str(old_value),
                new_value=str(amount),
            )
            await self.session.flush()
            self._schedule_cache.clear()
        return fsc

    async def replace_brackets(
        self,
        ctx: RequestContext,
        config_id: UUID,
        filing_status: str,
        brackets: list[ProgressiveBracket],
    ) -> FilingStatusConfig:
        """Swap a filing status's whole bracket ladder for a validated new one."""
        validate_brackets(brackets)
        config = await self.get_config(config_id)
        fsc = self._filing_status_config(config, filing_status)
        old_json = _brackets_json(fsc.tax_brackets)

        # Old rows go first so (config, order) stays unique
        fsc.tax_brackets.clear()
        await self.session.flush()

        fsc.tax_brackets.extend(
            TaxBracket(
                bracket_order=order,
                min_income=bracket.min_income,
                max_income=bracket.max_income,
                rate=bracket.rate,
            )
            for order, bracket in enumerate(brackets, start=1)
        )
        self._audit(
            ctx,
            config,
            "updated",
            field_name=f"{filing_status}.brackets",
            old_value=old_json,
            new_value=_brackets_json(brackets),
        )
        await self.session.flush()
        await self.session.refresh(fsc, ["tax_brackets"])
        self._schedule_cache.clear()
        return fsc

    async def activate(self, ctx: RequestContext, config_id: UUID) -> AnnualTaxConfig:
        """Make one config the active one; every other config is deactivated first."""
        config = await self.get_config(config_id)
        if config.is_active:
            return config

        result = await self.session.execute(
            select(AnnualTaxConfig).where(AnnualTaxConfig.is_active.is_(True))
        )
        for other in result.scalars().all():
            other.is_active = False
            other.updated_by_id = ctx.actor_id
            self._audit(ctx, other, "deactivated")
        await self.session.flush()

        config.is_active = True
        config.updated_by_id = ctx.actor_id
        self._audit(ctx, config, "activated")
        await self.session.flush()
        self._schedule_cache.clear()
        logger.info("Activated tax config for %s", config.tax_year)
        return config

    async def deactivate(self, ctx: RequestContext, config_id: UUID) -> AnnualTaxConfig:
        config = await self.get_config(config_id)
        if not config.is_active:
            return config
        config.is_active = False
        config.updated_by_id = ctx.actor_id
        self._audit(ctx, config, "deactivated")
        await self.session.flush()
        self._schedule_cache.clear()
        return config

    async def audit_logs(self, config_id: UUID) -> list[TaxConfigAuditLog]:
        result = await self.session.execute(
            select(TaxConfigAuditLog)
            .where(TaxConfigAuditLog.annual_tax_config_id == config_id)
            .order_by(TaxConfigAuditLog.created_at, TaxConfigAuditLog.action)
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _load_config(self, *criteria: Any) -> AnnualTaxConfig | None:
        result = await self.session.execute(
            select(AnnualTaxConfig)
            .where(*criteria)
            .options(
                selectinload(AnnualTaxConfig.filing_status_configs).selectinload(
                    FilingStatusConfig.tax_brackets
                )
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _ensure_year_free(self, tax_year: int) -> None:
        existing = await self.session.scalar(
            select(AnnualTaxConfig.annual_tax_config_id).where(
                AnnualTaxConfig.tax_year == tax_year
            )
        )
        if existing is not None:
            raise ValidationError(f"Tax config for {tax_year} already exists")

    @staticmethod
    def _check_filing_status(filing_status: str) -> None:
        if filing_status not in {s.value for s in CONFIGURED_FILING_STATUSES}:
            raise ValidationError(f"Unsupported filing status: {filing_status}")

    def _filing_status_config(
        self, config: AnnualTaxConfig, filing_status: str
    ) -> FilingStatusConfig:
        self._check_filing_status(filing_status)
        fsc = next(
            (f for f in config.filing_status_configs if f.filing_status == filing_status),
            None,
        )
        if fsc is None:
            raise NotFoundError("FilingStatusConfig", f"{config.tax_year}/{filing_status}")
        return fsc

    @staticmethod
    def _build_filing_status(
        filing_status: str, standard_deduction: Decimal, brackets: list[ProgressiveBracket]
    ) -> FilingStatusConfig:
        fsc = FilingStatusConfig(
            filing_status=filing_status,
            standard_deduction=standard_deduction,
        )
        fsc.tax_brackets = [
            TaxBracket(
                bracket_order=order,
                min_income=b.min_income,
                max_income=b.max_income,
                rate=b.rate,
            )
            for order, b in enumerate(brackets, start=1)
        ]
        return fsc

    def _audit(
        self,
        ctx: RequestContext,
        config: AnnualTaxConfig,
        action: str,
        field_name: str | None = None,
        old_value: str | None = None,
        new_value: str | None = None,
    ) -> None:
        self.session.add(
            TaxConfigAuditLog(
                annual_tax_config_id=config.annual_tax_config_id,
                actor_id=ctx.actor_id,
                action=action,
                field_name=field_name,
                old_value=old_value,
                new_value=new_value,
            )
        )
