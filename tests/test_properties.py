"""Property-based tests for money and table invariants."""

from __future__ import annotations

from decimal import Decimal

from hypothesis import given, settings, strategies as st

from netpay_engine.calculators.adjustment_resolver import recurring_cutoff_amount
from netpay_engine.calculators.contributions import ContributionCalculator, bracket_for
from netpay_engine.calculators.money import round_currency
from netpay_engine.calculators.statutory_resolver import (
    DEFAULT_PAGIBIG,
    DEFAULT_PHILHEALTH,
    DEFAULT_WITHHOLDING,
    default_sss_brackets,
)
from netpay_engine.calculators.types import PayrollCode, StatutoryTables, TaxFrequency

TABLES = StatutoryTables(
    version_id=None,
    sss=default_sss_brackets(),
    withholding=dict(DEFAULT_WITHHOLDING),
    philhealth=DEFAULT_PHILHEALTH,
    pagibig=DEFAULT_PAGIBIG,
)

amounts = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("10000000"),
    places=4,
    allow_nan=False,
    allow_infinity=False,
)
centavos = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("1000000"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)


class TestMoneyProperties:
    @given(amounts)
    def test_rounding_is_idempotent(self, value):
        once = round_currency(value)
        assert round_currency(once) == once
        assert abs(once - value) <= Decimal("0.005")

    @given(centavos)
    def test_split_halves_sum_to_amount(self, amount):
        first = recurring_cutoff_amount("SPLIT", amount, PayrollCode.A)
        second = recurring_cutoff_amount("SPLIT", amount, PayrollCode.B)

        assert first + second == amount
        assert abs(first - second) <= Decimal("0.01")

    @given(centavos, st.sampled_from(["1ST", "2ND"]))
    def test_single_cutoff_modes_land_once(self, amount, mode):
        first = recurring_cutoff_amount(mode, amount, PayrollCode.A)
        second = recurring_cutoff_amount(mode, amount, PayrollCode.B)

        assert first + second == amount
        assert Decimal("0") in (first, second)


class TestTableProperties:
    @given(st.decimals(min_value=Decimal("0"), max_value=Decimal("100000"), places=2))
    def test_exactly_one_bracket_contains_compensation(self, compensation):
        brackets = TABLES.sss
        chosen = bracket_for(brackets, compensation)

        assert chosen in brackets
        if compensation >= brackets[0].compensation_min:
            assert compensation >= chosen.compensation_min
        if chosen.compensation_max is not None:
            assert compensation <= chosen.compensation_max or chosen is brackets[-1]

    @settings(max_examples=200)
    @given(amounts, amounts, st.sampled_from(list(TaxFrequency)))
    def test_withholding_never_decreases_with_income(self, a, b, frequency):
        calculator = ContributionCalculator(TABLES)
        low, high = sorted((a, b))

        assert calculator.withholding_tax(low, frequency) <= calculator.withholding_tax(high, frequency)

    @given(amounts)
    def test_contributions_are_non_negative_and_rounded(self, compensation):
        result = ContributionCalculator(TABLES).contributions(compensation)

        for amount in list(result.employee.values()) + list(result.employer.values()):
            assert amount >= 0
            assert amount == round_currency(amount)
