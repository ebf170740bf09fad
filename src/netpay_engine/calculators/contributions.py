"""Statutory contribution and withholding tax calculation.

Everything here is pure: inputs are detached ``StatutoryTables`` and plain
Decimals, so the same calculator serves the engine, previews and tests.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from netpay_engine.calculators.money import ZERO, clamp, round_currency, to_decimal
from netpay_engine.calculators.types import (
    PAGIBIG_EE,
    PAGIBIG_ER,
    PHILHEALTH_EE,
    PHILHEALTH_ER,
    SSS_EC,
    SSS_EE_MC,
    SSS_EE_MPF,
    SSS_ER_MC,
    SSS_ER_MPF,
    ContributionBracket,
    ContributionResult,
    RateScheme,
    StatutoryTables,
    TaxFrequency,
    WithholdingBracket,
)
from netpay_engine.errors import InvalidCompensation, NoBracketMatch, ValidationError

if TYPE_CHECKING:
    from netpay_engine.models import CompanyProfile


def check_compensation(value: Any) -> Decimal:
    """Return compensation as Decimal, rejecting negative or non-finite values."""
    try:
        amount = to_decimal(value, "compensation")
    except ValidationError as exc:
        raise InvalidCompensation(value) from exc
    if not amount.is_finite() or amount < 0:
        raise InvalidCompensation(value)
    return amount


def bracket_for(
    brackets: Sequence[ContributionBracket], compensation: Decimal
) -> ContributionBracket:
    """Select the bracket containing compensation.

    Brackets are ordered by compensation_min. Below the first row clamps to
    the first row; above the last row clamps to the last (open) row. A
    boundary shared by two rows belongs to the lower one.
    """
    if not brackets:
        raise NoBracketMatch("Contribution bracket table is empty")
    for bracket in brackets:
        if bracket.compensation_max is None or compensation <= bracket.compensation_max:
            return bracket
    return brackets[-1]


def withholding_bracket_for(
    brackets: Sequence[WithholdingBracket], taxable_income: Decimal
) -> WithholdingBracket | None:
    """Highest bracket whose threshold is at or below the income."""
    selected = None
    for bracket in sorted(brackets, key=lambda b: b.threshold):
        if bracket.threshold <= taxable_income:
            selected = bracket
        else:
            break
    return selected


def apply_profile_overrides(
    tables: StatutoryTables, profile: CompanyProfile | None
) -> StatutoryTables:
    """Layer a company's rate-scheme overrides on top of version tables."""
    if profile is None:
        return tables

    philhealth = tables.philhealth
    if profile.philhealth_rate is not None:
        half = to_decimal(profile.philhealth_rate) / 2
        philhealth = replace(philhealth, employee_rate=half, employer_rate=half)
    if profile.philhealth_min_base is not None:
        philhealth = replace(philhealth, min_base=to_decimal(profile.philhealth_min_base))
    if profile.philhealth_max_base is not None:
        philhealth = replace(philhealth, max_base=to_decimal(profile.philhealth_max_base))

    pagibig = tables.pagibig
    if profile.pagibig_ee_rate is not None:
        pagibig = replace(pagibig, employee_rate=to_decimal(profile.pagibig_ee_rate))
    if profile.pagibig_er_rate is not None:
        pagibig = replace(pagibig, employer_rate=to_decimal(profile.pagibig_er_rate))
    if profile.pagibig_max_base is not None:
        pagibig = replace(pagibig, max_base=to_decimal(profile.pagibig_max_base))

    return replace(tables, philhealth=philhealth, pagibig=pagibig)


class ContributionCalculator:
    """Computes government contributions and withholding tax.

    - Bracket schemes (SSS): amounts are read from the matched row.
    - Rate schemes (PhilHealth, Pag-IBIG): rate * clamp(comp, min, max).
    - Withholding: progressive bracket over taxable income.

    Each final amount is rounded once (centavo, half-up); intermediate sums
    are never rounded.
    """

    def __init__(self, tables: StatutoryTables, profile: CompanyProfile | None = None):
        self.tables = apply_profile_overrides(tables, profile)

    def social_insurance(self, compensation: Decimal) -> dict[str, Decimal]:
        bracket = bracket_for(self.tables.sss, compensation)
        return {
            SSS_EE_MC: round_currency(bracket.ee_mc),
            SSS_EE_MPF: round_currency(bracket.ee_mpf),
            SSS_ER_MC: round_currency(bracket.er_mc),
            SSS_ER_MPF: round_currency(bracket.er_mpf),
            SSS_EC: round_currency(bracket.ec),
        }

    @staticmethod
    def rate_scheme(compensation: Decimal, scheme: RateScheme) -> tuple[Decimal, Decimal]:
        base = clamp(compensation, scheme.min_base, scheme.max_base)
        return (
            round_currency(base * scheme.employee_rate),
            round_currency(base * scheme.employer_rate),
        )

    def contributions(self, compensation: Any) -> ContributionResult:
        """Monthly contributions for a compensation base."""
        comp = check_compensation(compensation)
        sss = self.social_insurance(comp)
        ph_ee, ph_er = self.rate_scheme(comp, self.tables.philhealth)
        pi_ee, pi_er = self.rate_scheme(comp, self.tables.pagibig)

        return ContributionResult(
            employee={
                SSS_EE_MC: sss[SSS_EE_MC],
                SSS_EE_MPF: sss[SSS_EE_MPF],
                PHILHEALTH_EE: ph_ee,
                PAGIBIG_EE: pi_ee,
            },
            employer={
                SSS_ER_MC: sss[SSS_ER_MC],
                SSS_ER_MPF: sss[SSS_ER_MPF],
                SSS_EC: sss[SSS_EC],
                PHILHEALTH_ER: ph_er,
                PAGIBIG_ER: pi_er,
            },
        )

    def withholding_tax(
        self,
        taxable_income: Any,
        frequency: TaxFrequency = TaxFrequency.MONTHLY,
    ) -> Decimal:
        income = to_decimal(taxable_income, "taxable_income")
        if income <= 0:
            return ZERO
        brackets = self.tables.withholding.get(TaxFrequency(frequency), ())
        if not brackets:
            raise NoBracketMatch(f"No {TaxFrequency(frequency).value} withholding table")
        bracket = withholding_bracket_for(brackets, income)
        if bracket is None:
            return ZERO
        tax = bracket.base_tax + (income - bracket.threshold) * bracket.rate
        return max(ZERO, round_currency(tax))

    def compute(
        self,
        compensation: Any,
        taxable_income: Any = None,
        frequency: TaxFrequency = TaxFrequency.MONTHLY,
    ) -> ContributionResult:
        """Contributions plus withholding tax.

        Without an explicit taxable income, the whole compensation is taken as
        taxable less the employee-side contributions.
        """
        result = self.contributions(compensation)
        if taxable_income is None:
            taxable_income = max(ZERO, check_compensation(compensation) - result.employee_total)
        result.withholding_tax = self.withholding_tax(taxable_income, frequency)
        return result
