"""Payroll calculation modules."""

from netpay_engine.calculators.adjustment_resolver import AdjustmentResolver
from netpay_engine.calculators.contributions import ContributionCalculator, bracket_for
from netpay_engine.calculators.engine import PayrollCalculator, PayrollEngine, RunTotals
from netpay_engine.calculators.money import round_currency
from netpay_engine.calculators.statutory_resolver import StatutoryTableResolver
from netpay_engine.calculators.types import Category, PayrollCode

__all__ = [
    "AdjustmentResolver",
    "Category",
    "ContributionCalculator",
    "PayrollCalculator",
    "PayrollCode",
    "PayrollEngine",
    "RunTotals",
    "StatutoryTableResolver",
    "bracket_for",
    "round_currency",
]
