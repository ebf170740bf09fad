"""Tests for statutory version resolution and administration."""

from datetime import date
from decimal import Decimal

import pytest

from netpay_engine.calculators.statutory_resolver import (
    OPEN_MAX_SENTINEL,
    StatutoryTableResolver,
    normalize_max,
    validate_brackets,
)
from netpay_engine.calculators.types import ContributionBracket, TaxFrequency
from netpay_engine.errors import (
    ConflictError,
    MalformedBracketTable,
    NoStatutoryVersion,
    ValidationError,
)

SSS_ROWS = [
    {"compensation_min": "0", "compensation_max": "9999.99", "ee_mc": "450", "er_mc": "900", "ec": "10"},
    {"compensation_min": "10000", "compensation_max": "900000000000", "ee_mc": "900", "er_mc": "1800", "ec": "30"},
]
TAX_ROWS = [
    {"frequency": "MONTHLY", "threshold": "0", "base_tax": "0", "rate": "0"},
    {"frequency": "MONTHLY", "threshold": "20833", "base_tax": "0", "rate": "0.15"},
    {"frequency": "SEMI_MONTHLY", "threshold": "0", "base_tax": "0", "rate": "0"},
    {"frequency": "SEMI_MONTHLY", "threshold": "10417", "base_tax": "0", "rate": "0.15"},
]


def bracket(low: str, high: str | None) -> ContributionBracket:
    return ContributionBracket(Decimal(low), Decimal(high) if high is not None else None)


class TestBracketValidation:
    """Contiguity checks on bracket tables."""

    def test_centavo_and_shared_boundaries_accepted(self):
        validate_brackets([bracket("0", "4999.99"), bracket("5000", "10000"), bracket("10000", None)])

    def test_peso_step_accepted(self):
        validate_brackets([bracket("0", "4999"), bracket("5000", None)])

    def test_overlap_rejected(self):
        with pytest.raises(MalformedBracketTable, match="overlap"):
            validate_brackets([bracket("0", "5000"), bracket("4000", None)])

    def test_gap_rejected(self):
        with pytest.raises(MalformedBracketTable, match="Gap"):
            validate_brackets([bracket("0", "4999.99"), bracket("6000", None)])

    def test_open_row_must_be_last(self):
        with pytest.raises(MalformedBracketTable, match="open-ended"):
            validate_brackets([bracket("0", None), bracket("5000", "6000")])

    def test_max_below_min_rejected(self):
        with pytest.raises(MalformedBracketTable):
            validate_brackets([bracket("5000", "4000")])

    def test_sentinel_means_open(self):
        assert normalize_max(OPEN_MAX_SENTINEL) is None
        assert normalize_max("9e11") is None
        assert normalize_max("35000") == Decimal("35000")


class TestResolution:
    """Version lookup by country and date."""

    async def test_no_version_raises(self, session):
        with pytest.raises(NoStatutoryVersion):
            await StatutoryTableResolver(session).resolve("PH", date(2024, 1, 15))

    async def test_resolve_or_provision_creates_default(self, session):
        resolver = StatutoryTableResolver(session)

        version = await resolver.resolve_or_provision("PH", date(2024, 1, 15))

        assert version.status == "PUBLISHED"
        assert version.effective_to is None
        tables = await resolver.load_tables(version.statutory_version_id)
        assert tables.sss[0].compensation_min == Decimal("0")
        assert tables.sss[-1].compensation_max is None
        assert tables.withholding[TaxFrequency.MONTHLY]

    async def test_ensure_default_is_idempotent(self, session):
        resolver = StatutoryTableResolver(session)
        first = await resolver.ensure_default_version("PH")
        second = await resolver.ensure_default_version("PH")
        assert first.statutory_version_id == second.statutory_version_id

    async def test_date_before_any_version_does_not_provision(self, session, statutory_version):
        resolver = StatutoryTableResolver(session)
        with pytest.raises(NoStatutoryVersion):
            await resolver.resolve_or_provision("PH", date(1999, 12, 31))


class TestVersionAdministration:
    """Draft, tables and publish."""

    async def test_replace_tables_rejects_malformed_bracket_table(self, session):
        resolver = StatutoryTableResolver(session)
        draft = await resolver.create_draft("PH", date(2025, 1, 1))

        bad = [
            {"compensation_min": "0", "compensation_max": "5000"},
            {"compensation_min": "7000", "compensation_max": None},
        ]
        with pytest.raises(MalformedBracketTable):
            await resolver.replace_tables(draft.statutory_version_id, sss_rows=bad)

        version = await resolver.get_version(draft.statutory_version_id)
        assert version.sss_brackets == []

    async def test_publish_requires_tables(self, session):
        resolver = StatutoryTableResolver(session)
        draft = await resolver.create_draft("PH", date(2025, 1, 1))

        with pytest.raises(ValidationError):
            await resolver.publish(draft.statutory_version_id)

    async def test_publish_supersedes_open_predecessor(self, session, statutory_version):
        resolver = StatutoryTableResolver(session)
        draft = await resolver.create_draft("PH", date(2025, 1, 1), note="2025 rates")
        await resolver.replace_tables(draft.statutory_version_id, sss_rows=SSS_ROWS, tax_rows=TAX_ROWS)

        published = await resolver.publish(draft.statutory_version_id)

        assert published.status == "PUBLISHED"
        previous = await resolver.get_version(statutory_version.statutory_version_id)
        assert previous.effective_to == date(2025, 1, 1)

        # Half-open intervals: the new version owns its start date
        assert (await resolver.resolve("PH", date(2024, 12, 31))).statutory_version_id == (
            statutory_version.statutory_version_id
        )
        assert (await resolver.resolve("PH", date(2025, 1, 1))).statutory_version_id == (
            published.statutory_version_id
        )
        tables = await resolver.tables_for("PH", date(2025, 6, 30))
        assert tables.sss[-1].compensation_max is None
        assert tables.sss[-1].ee_mc == Decimal("900")

    async def test_publish_rejects_overlap_with_closed_version(self, session):
        resolver = StatutoryTableResolver(session)
        first = await resolver.create_draft("PH", date(2025, 1, 1), date(2026, 1, 1))
        await resolver.replace_tables(first.statutory_version_id, sss_rows=SSS_ROWS, tax_rows=TAX_ROWS)
        await resolver.publish(first.statutory_version_id)

        second = await resolver.create_draft("PH", date(2025, 6, 1))
        await resolver.replace_tables(second.statutory_version_id, sss_rows=SSS_ROWS, tax_rows=TAX_ROWS)

        with pytest.raises(ConflictError, match="overlaps"):
            await resolver.publish(second.statutory_version_id)

    async def test_published_versions_are_immutable(self, session, statutory_version):
        resolver = StatutoryTableResolver(session)
        with pytest.raises(ConflictError):
            await resolver.replace_tables(statutory_version.statutory_version_id, sss_rows=SSS_ROWS)

    async def test_draft_interval_validated(self, session):
        with pytest.raises(ValidationError):
            await StatutoryTableResolver(session).create_draft("PH", date(2025, 1, 1), date(2024, 1, 1))
