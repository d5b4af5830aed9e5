"""API routes."""

from territorial_payroll.api.routes.health import router as health_router
from territorial_payroll.api.routes.pay_periods import router as pay_periods_router
from territorial_payroll.api.routes.payroll_items import router as payroll_items_router
from territorial_payroll.api.routes.tax_configs import router as tax_configs_router
from territorial_payroll.api.routes.ytd import router as ytd_router

__all__ = [
    "health_router",
    "pay_periods_router",
    "payroll_items_router",
    "tax_configs_router",
    "ytd_router",
]
