"""ORM models."""

from netpay_engine.models.adjustments import Adjustment, AdjustmentType, RecurringAdjustment
from netpay_engine.models.base import Base, TimestampMixin
from netpay_engine.models.company import CompanyProfile, Employee, Tenant
from netpay_engine.models.jobs import Job
from netpay_engine.models.payroll import PayrollHistory, PayrollRow, PayrollRun
from netpay_engine.models.statutory import (
    RateSchemeParameter,
    SssBracket,
    StatutoryVersion,
    TaxBracket,
)

__all__ = [
    "Adjustment",
    "AdjustmentType",
    "Base",
    "CompanyProfile",
    "Employee",
    "Job",
    "PayrollHistory",
    "PayrollRow",
    "PayrollRun",
    "RateSchemeParameter",
    "RecurringAdjustment",
    "SssBracket",
    "StatutoryVersion",
    "TaxBracket",
    "Tenant",
    "TimestampMixin",
]
