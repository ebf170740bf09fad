"""Statutory table version resolution and administration."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from netpay_engine.calculators.money import ZERO, to_decimal
from netpay_engine.calculators.types import (
    ContributionBracket,
    RateScheme,
    StatutoryTables,
    TaxFrequency,
    WithholdingBracket,
)
from netpay_engine.errors import (
    ConflictError,
    MalformedBracketTable,
    NoStatutoryVersion,
    NotFoundError,
    ValidationError,
)
from netpay_engine.models import RateSchemeParameter, SssBracket, StatutoryVersion, TaxBracket

logger = logging.getLogger(__name__)

# Stored maxima at or above this value mean "no upper bound"
OPEN_MAX_SENTINEL = Decimal("900000000000")
# Widest gap allowed between consecutive rows (peso-granular tables)
MAX_BRACKET_STEP = Decimal("1")

DEFAULT_EFFECTIVE_FROM = date(2000, 1, 1)

DEFAULT_PHILHEALTH = RateScheme(
    employee_rate=Decimal("0.025"),
    employer_rate=Decimal("0.025"),
    min_base=Decimal("10000"),
    max_base=Decimal("100000"),
)
DEFAULT_PAGIBIG = RateScheme(
    employee_rate=Decimal("0.02"),
    employer_rate=Decimal("0.02"),
    min_base=ZERO,
    max_base=Decimal("10000"),
)


def _train_table(rows: Iterable[tuple[str, str, str]]) -> tuple[WithholdingBracket, ...]:
    return tuple(
        WithholdingBracket(Decimal(threshold), Decimal(base), Decimal(rate))
        for threshold, base, rate in rows
    )


# BIR withholding tables (TRAIN law, 2023 onwards)
DEFAULT_WITHHOLDING: dict[TaxFrequency, tuple[WithholdingBracket, ...]] = {
    TaxFrequency.SEMI_MONTHLY: _train_table([
        ("0", "0", "0"),
        ("10417", "0", "0.15"),
        ("16667", "937.50", "0.20"),
        ("33333", "4270.70", "0.25"),
        ("83333", "16770.70", "0.30"),
        ("333333", "91770.70", "0.35"),
    ]),
    TaxFrequency.MONTHLY: _train_table([
        ("0", "0", "0"),
        ("20833", "0", "0.15"),
        ("33333", "1875", "0.20"),
        ("66667", "8541.80", "0.25"),
        ("166667", "33541.80", "0.30"),
        ("666667", "183541.80", "0.35"),
    ]),
    TaxFrequency.ANNUAL: _train_table([
        ("0", "0", "0"),
        ("250000", "0", "0.15"),
        ("400000", "22500", "0.20"),
        ("800000", "102500", "0.25"),
        ("2000000", "402500", "0.30"),
        ("8000000", "2202500", "0.35"),
    ]),
}


def default_sss_brackets() -> tuple[ContributionBracket, ...]:
    """SSS schedule with monthly salary credits 5,000 to 35,000.

    Regular SS credit caps at 20,000; the excess goes to the MPF. EE pays
    5%, ER 10%, EC is 10 below a 15,000 credit and 30 from it.
    """
    rows = []
    credits = list(range(5000, 35001, 500))
    for index, credit in enumerate(credits):
        msc = Decimal(credit)
        regular = min(msc, Decimal("20000"))
        mpf = max(ZERO, msc - Decimal("20000"))
        low = ZERO if index == 0 else msc - 250
        high = None if index == len(credits) - 1 else msc + Decimal("249.99")
        rows.append(ContributionBracket(
            compensation_min=low,
            compensation_max=high,
            ee_mc=regular * Decimal("0.05"),
            ee_mpf=mpf * Decimal("0.05"),
            er_mc=regular * Decimal("0.10"),
            er_mpf=mpf * Decimal("0.10"),
            ec=Decimal("10") if credit < 15000 else Decimal("30"),
        ))
    return tuple(rows)


def normalize_max(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    amount = to_decimal(value, "compensation_max")
    return None if amount >= OPEN_MAX_SENTINEL else amount


def validate_brackets(brackets: Sequence[ContributionBracket]) -> None:
    """Reject tables that are unordered, overlapping, gapped or open mid-table."""
    for index, bracket in enumerate(brackets):
        if bracket.compensation_min < 0:
            raise MalformedBracketTable(f"Row {index + 1}: negative compensation_min")
        if bracket.compensation_max is not None and bracket.compensation_max < bracket.compensation_min:
            raise MalformedBracketTable(f"Row {index + 1}: compensation_max below compensation_min")
        if index == 0:
            continue
        previous = brackets[index - 1]
        if previous.compensation_max is None:
            raise MalformedBracketTable(f"Row {index}: only the last row may be open-ended")
        step = bracket.compensation_min - previous.compensation_max
        if step < 0:
            raise MalformedBracketTable(
                f"Rows {index} and {index + 1} overlap "
                f"({previous.compensation_max} > {bracket.compensation_min})"
            )
        if step > MAX_BRACKET_STEP:
            raise MalformedBracketTable(
                f"Gap between rows {index} and {index + 1} "
                f"({previous.compensation_max} to {bracket.compensation_min})"
            )


def _tables_from_version(version: StatutoryVersion) -> StatutoryTables:
    sss = tuple(
        ContributionBracket(
            compensation_min=row.compensation_min,
            compensation_max=normalize_max(row.compensation_max),
            ee_mc=row.ee_mc,
            ee_mpf=row.ee_mpf,
            er_mc=row.er_mc,
            er_mpf=row.er_mpf,
            ec=row.ec,
        )
        for row in sorted(version.sss_brackets, key=lambda r: r.compensation_min)
    )
    validate_brackets(sss)

    withholding: dict[TaxFrequency, tuple[WithholdingBracket, ...]] = {}
    for frequency in TaxFrequency:
        rows = sorted(
            (r for r in version.tax_brackets if r.frequency == frequency.value),
            key=lambda r: r.threshold,
        )
        withholding[frequency] = tuple(
            WithholdingBracket(r.threshold, r.base_tax, r.rate, normalize_max(r.upper))
            for r in rows
        )

    schemes = {p.scheme: p for p in version.rate_parameters}

    def scheme(name: str, default: RateScheme) -> RateScheme:
        param = schemes.get(name)
        if param is None:
            return default
        return RateScheme(
            employee_rate=param.employee_rate,
            employer_rate=param.employer_rate,
            min_base=param.min_base,
            max_base=normalize_max(param.max_base),
        )

    return StatutoryTables(
        version_id=version.statutory_version_id,
        sss=sss,
        withholding=withholding,
        philhealth=scheme("PHILHEALTH", DEFAULT_PHILHEALTH),
        pagibig=scheme("PAGIBIG", DEFAULT_PAGIBIG),
    )


class StatutoryTableResolver:
    """Resolves and administers time-boxed statutory versions.

    Resolution picks the PUBLISHED version for the country whose half-open
    [effective_from, effective_to) interval contains the date, newest
    effective_from first. Loaded tables are cached per version id for the
    lifetime of the resolver (one session).
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._tables_cache: dict[UUID, StatutoryTables] = {}

    async def resolve(self, country: str, as_of: date) -> StatutoryVersion:
        result = await self.session.execute(
            select(StatutoryVersion)
            .where(
                StatutoryVersion.country == country,
                StatutoryVersion.status == "PUBLISHED",
                StatutoryVersion.effective_from <= as_of,
                or_(
                    StatutoryVersion.effective_to.is_(None),
                    StatutoryVersion.effective_to > as_of,
                ),
            )
            .order_by(StatutoryVersion.effective_from.desc())
            .limit(1)
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise NoStatutoryVersion(country, as_of)
        return version

    async def resolve_or_provision(self, country: str, as_of: date) -> StatutoryVersion:
        """Resolve, auto-provisioning the default version for a bare country."""
        try:
            return await self.resolve(country, as_of)
        except NoStatutoryVersion:
            if await self._has_published(country):
                raise
        await self.ensure_default_version(country)
        return await self.resolve(country, as_of)

    async def can_resolve(self, country: str, as_of: date) -> bool:
        """Whether tables_for would find (or provision) a version for as_of."""
        try:
            await self.resolve(country, as_of)
        except NoStatutoryVersion:
            return not await self._has_published(country)
        return True

    async def tables_for(self, country: str, as_of: date) -> StatutoryTables:
        version = await self.resolve_or_provision(country, as_of)
        return await self.load_tables(version.statutory_version_id)

    async def load_tables(self, statutory_version_id: UUID) -> StatutoryTables:
        cached = self._tables_cache.get(statutory_version_id)
        if cached is not None:
            return cached
        version = await self.get_version(statutory_version_id)
        tables = _tables_from_version(version)
        self._tables_cache[statutory_version_id] = tables
        return tables

    async def get_version(self, statutory_version_id: UUID) -> StatutoryVersion:
        result = await self.session.execute(
            select(StatutoryVersion)
            .where(StatutoryVersion.statutory_version_id == statutory_version_id)
            .options(
                selectinload(StatutoryVersion.sss_brackets),
                selectinload(StatutoryVersion.tax_brackets),
                selectinload(StatutoryVersion.rate_parameters),
            )
            .execution_options(populate_existing=True)
        )
        version = result.scalar_one_or_none()
        if version is None:
            raise NotFoundError("StatutoryVersion", statutory_version_id)
        return version

    async def list_versions(self, country: str) -> list[StatutoryVersion]:
        result = await self.session.execute(
            select(StatutoryVersion)
            .where(StatutoryVersion.country == country)
            .order_by(StatutoryVersion.effective_from.desc())
        )
        return list(result.scalars().all())

    async def create_draft(
        self,
        country: str,
        effective_from: date,
        effective_to: date | None = None,
        note: str | None = None,
    ) -> StatutoryVersion:
        if effective_to is not None and effective_to <= effective_from:
            raise ValidationError(
                "effective_to must be after effective_from",
                {"effective_from": str(effective_from), "effective_to": str(effective_to)},
            )
        version = StatutoryVersion(
            country=country,
            status="DRAFT",
            effective_from=effective_from,
            effective_to=effective_to,
            note=note,
        )
        self.session.add(version)
        await self.session.flush()
        return version

    async def replace_tables(
        self,
        statutory_version_id: UUID,
        sss_rows: Sequence[dict[str, Any]] | None = None,
        tax_rows: Sequence[dict[str, Any]] | None = None,
        rate_rows: Sequence[dict[str, Any]] | None = None,
    ) -> StatutoryVersion:
        """Replace a draft version's tables; malformed input writes nothing."""
        version = await self.get_version(statutory_version_id)
        if version.status != "DRAFT":
            raise ConflictError(
                "Published statutory versions are immutable; create a superseding version",
                {"status": version.status},
            )

        sss = _parse_sss_rows(sss_rows) if sss_rows is not None else None
        tax = _parse_tax_rows(tax_rows) if tax_rows is not None else None
        rates = _parse_rate_rows(rate_rows) if rate_rows is not None else None

        if sss is not None:
            validate_brackets([
                ContributionBracket(r.compensation_min, r.compensation_max) for r in sss
            ])
            version.sss_brackets = sss
        if tax is not None:
            version.tax_brackets = tax
        if rates is not None:
            version.rate_parameters = rates

        await self.session.flush()
        self._tables_cache.pop(statutory_version_id, None)
        return version

    async def publish(self, statutory_version_id: UUID) -> StatutoryVersion:
        """Publish a draft, closing an open-ended predecessor it supersedes."""
        version = await self.get_version(statutory_version_id)
        if version.status != "DRAFT":
            raise ConflictError("Statutory version is already published")

        frequencies = {row.frequency for row in version.tax_brackets}
        missing = {TaxFrequency.MONTHLY.value, TaxFrequency.SEMI_MONTHLY.value} - frequencies
        if missing:
            raise ValidationError(
                "Withholding tables are required before publishing",
                {"missing": sorted(missing)},
            )
        if not version.sss_brackets:
            raise ValidationError("Social-insurance bracket table is required before publishing")
        _tables_from_version(version)

        result = await self.session.execute(
            select(StatutoryVersion).where(
                StatutoryVersion.country == version.country,
                StatutoryVersion.status == "PUBLISHED",
            )
        )
        for other in result.scalars().all():
            if not _overlaps(other, version):
                continue
            if other.effective_to is None and other.effective_from < version.effective_from:
                logger.info(
                    "Closing statutory version %s at %s (superseded by %s)",
                    other.statutory_version_id,
                    version.effective_from,
                    version.statutory_version_id,
                )
                other.effective_to = version.effective_from
                continue
            raise ConflictError(
                "Effective interval overlaps a published version",
                {
                    "conflicting_version_id": str(other.statutory_version_id),
                    "effective_from": str(other.effective_from),
                    "effective_to": str(other.effective_to) if other.effective_to else None,
                },
            )

        version.status = "PUBLISHED"
        version.published_at = datetime.now(timezone.utc)
        await self.session.flush()
        return version

    async def ensure_default_version(self, country: str) -> StatutoryVersion:
        """Provision the built-in open-ended version when none is published."""
        result = await self.session.execute(
            select(StatutoryVersion)
            .where(
                StatutoryVersion.country == country,
                StatutoryVersion.status == "PUBLISHED",
            )
            .order_by(StatutoryVersion.effective_from)
            .limit(1)
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        logger.info("Provisioning default statutory version for %s", country)
        version = StatutoryVersion(
            country=country,
            status="PUBLISHED",
            effective_from=DEFAULT_EFFECTIVE_FROM,
            effective_to=None,
            published_at=datetime.now(timezone.utc),
            note="Built-in default tables",
        )
        version.sss_brackets = [
            SssBracket(
                compensation_min=b.compensation_min,
                compensation_max=b.compensation_max,
                ee_mc=b.ee_mc,
                ee_mpf=b.ee_mpf,
                er_mc=b.er_mc,
                er_mpf=b.er_mpf,
                ec=b.ec,
            )
            for b in default_sss_brackets()
        ]
        version.tax_brackets = [
            TaxBracket(
                frequency=frequency.value,
                threshold=b.threshold,
                base_tax=b.base_tax,
                rate=b.rate,
            )
            for frequency, brackets in DEFAULT_WITHHOLDING.items()
            for b in brackets
        ]
        version.rate_parameters = [
            _rate_parameter("PHILHEALTH", DEFAULT_PHILHEALTH),
            _rate_parameter("PAGIBIG", DEFAULT_PAGIBIG),
        ]
        self.session.add(version)
        await self.session.flush()
        return version

    async def _has_published(self, country: str) -> bool:
        result = await self.session.execute(
            select(StatutoryVersion.statutory_version_id)
            .where(
                StatutoryVersion.country == country,
                StatutoryVersion.status == "PUBLISHED",
            )
            .limit(1)
        )
        return result.first() is not None


def _overlaps(a: StatutoryVersion, b: StatutoryVersion) -> bool:
    a_end = a.effective_to or date.max
    b_end = b.effective_to or date.max
    return a.effective_from < b_end and b.effective_from < a_end


def _rate_parameter(name: str, scheme: RateScheme) -> RateSchemeParameter:
    return RateSchemeParameter(
        scheme=name,
        employee_rate=scheme.employee_rate,
        employer_rate=scheme.employer_rate,
        min_base=scheme.min_base,
        max_base=scheme.max_base,
    )


def _parse_sss_rows(rows: Sequence[dict[str, Any]]) -> list[SssBracket]:
    parsed = [
        SssBracket(
            compensation_min=to_decimal(row.get("compensation_min"), "compensation_min"),
            compensation_max=normalize_max(row.get("compensation_max")),
            ee_mc=to_decimal(row.get("ee_mc"), "ee_mc"),
            ee_mpf=to_decimal(row.get("ee_mpf"), "ee_mpf"),
            er_mc=to_decimal(row.get("er_mc"), "er_mc"),
            er_mpf=to_decimal(row.get("er_mpf"), "er_mpf"),
            ec=to_decimal(row.get("ec"), "ec"),
        )
        for row in rows
    ]
    return sorted(parsed, key=lambda r: r.compensation_min)


def _parse_tax_rows(rows: Sequence[dict[str, Any]]) -> list[TaxBracket]:
    parsed = []
    for row in rows:
        try:
            frequency = TaxFrequency(str(row.get("frequency", "")).upper())
        except ValueError as exc:
            raise ValidationError(
                f"Unknown tax frequency '{row.get('frequency')}'",
                {"frequency": row.get("frequency")},
            ) from exc
        parsed.append(TaxBracket(
            frequency=frequency.value,
            threshold=to_decimal(row.get("threshold"), "threshold"),
            upper=normalize_max(row.get("upper")),
            base_tax=to_decimal(row.get("base_tax"), "base_tax"),
            rate=to_decimal(row.get("rate"), "rate"),
        ))
    return parsed


def _parse_rate_rows(rows: Sequence[dict[str, Any]]) -> list[RateSchemeParameter]:
    parsed = []
    seen: set[str] = set()
    for row in rows:
        name = str(row.get("scheme", "")).upper()
        if name not in ("PHILHEALTH", "PAGIBIG"):
            raise ValidationError(f"Unknown rate scheme '{row.get('scheme')}'", {"scheme": row.get("scheme")})
        if name in seen:
            raise ValidationError(f"Duplicate rate scheme '{name}'", {"scheme": name})
        seen.add(name)
        parsed.append(_rate_parameter(name, RateScheme(
            employee_rate=to_decimal(row.get("employee_rate"), "employee_rate"),
            employer_rate=to_decimal(row.get("employer_rate"), "employer_rate"),
            min_base=to_decimal(row.get("min_base"), "min_base"),
            max_base=normalize_max(row.get("max_base")),
        )))
    return parsed
