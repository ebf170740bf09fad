"""Payroll run lifecycle and job services."""

from netpay_engine.services.adjustment_service import AdjustmentTypeService, RecurringAdjustmentService
from netpay_engine.services.company_service import CompanyProfileService
from netpay_engine.services.dispatch import HttpTaskDispatcher, InlineTaskDispatcher, TaskDispatcher
from netpay_engine.services.handlers import (
    TASK_ACCOUNTING_POST,
    TASK_PAYROLL_GENERATE,
    AccountingPoster,
    JournalSummary,
    build_registry,
)
from netpay_engine.services.job_service import (
    HandlerRegistry,
    JobContext,
    JobOrchestrator,
    JobRunner,
    JobStatus,
)
from netpay_engine.services.payroll_run_service import PayrollRunService
from netpay_engine.services.state_machine import PayrollRunStateMachine, PayrollRunStatus

__all__ = [
    "AccountingPoster",
    "AdjustmentTypeService",
    "CompanyProfileService",
    "HandlerRegistry",
    "HttpTaskDispatcher",
    "InlineTaskDispatcher",
    "JobContext",
    "JobOrchestrator",
    "JobRunner",
    "JobStatus",
    "JournalSummary",
    "PayrollRunService",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "RecurringAdjustmentService",
    "TASK_ACCOUNTING_POST",
    "TASK_PAYROLL_GENERATE",
    "TaskDispatcher",
    "build_registry",
]
