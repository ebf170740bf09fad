"""API routes."""

from netpay_engine.api.routes.adjustment_types import router as adjustment_types_router
from netpay_engine.api.routes.adjustments import router as adjustments_router
from netpay_engine.api.routes.company_profile import router as company_profile_router
from netpay_engine.api.routes.health import router as health_router
from netpay_engine.api.routes.jobs import router as jobs_router
from netpay_engine.api.routes.payroll_runs import router as payroll_runs_router
from netpay_engine.api.routes.recurring_adjustments import router as recurring_adjustments_router
from netpay_engine.api.routes.reports import router as reports_router
from netpay_engine.api.routes.statutory import router as statutory_router
from netpay_engine.api.routes.worker import router as worker_router

__all__ = [
    "adjustment_types_router",
    "adjustments_router",
    "company_profile_router",
    "health_router",
    "jobs_router",
    "payroll_runs_router",
    "recurring_adjustments_router",
    "reports_router",
    "statutory_router",
    "worker_router",
]
