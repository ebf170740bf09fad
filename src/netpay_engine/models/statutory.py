"""Statutory table versions and their contribution/tax tables."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netpay_engine.models.base import Base, Rate, TimestampMixin


class StatutoryVersion(Base, TimestampMixin):
    """A time-boxed set of government contribution and tax tables.

    Effective interval is half-open: [effective_from, effective_to).
    A NULL effective_to marks the open-ended catch-all tail.
    """

    __tablename__ = "statutory_version"

    statutory_version_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    country: Mapped[str] = mapped_column(String(2), nullable=False, default="PH")
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('DRAFT', 'PUBLISHED')", name="statutory_version_status_check"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="statutory_version_interval_check",
        ),
        Index("ix_statutory_version_lookup", "country", "status", "effective_from"),
    )

    sss_brackets: Mapped[list[SssBracket]] = relationship(
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="SssBracket.compensation_min",
    )
    tax_brackets: Mapped[list[TaxBracket]] = relationship(
        back_populates="version",
        cascade="all, delete-orphan",
        order_by="TaxBracket.threshold",
    )
    rate_parameters: Mapped[list[RateSchemeParameter]] = relationship(
        back_populates="version",
        cascade="all, delete-orphan",
    )

    def covers(self, as_of: date) -> bool:
        if as_of < self.effective_from:
            return False
        return self.effective_to is None or as_of < self.effective_to


class SssBracket(Base):
    """Social-insurance bracket row; amounts are monthly."""

    __tablename__ = "sss_bracket"

    sss_bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    statutory_version_id: Mapped[UUID] = mapped_column(
        ForeignKey("statutory_version.statutory_version_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    compensation_min: Mapped[Decimal] = mapped_column(nullable=False)
    compensation_max: Mapped[Decimal | None] = mapped_column(nullable=True)  # NULL = open top
    ee_mc: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ee_mpf: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    er_mc: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    er_mpf: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ec: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    version: Mapped[StatutoryVersion] = relationship(back_populates="sss_brackets")


class TaxBracket(Base):
    """Withholding tax bracket for one pay frequency."""

    __tablename__ = "tax_bracket"

    tax_bracket_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    statutory_version_id: Mapped[UUID] = mapped_column(
        ForeignKey("statutory_version.statutory_version_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    frequency: Mapped[str] = mapped_column(String, nullable=False)
    threshold: Mapped[Decimal] = mapped_column(nullable=False)
    upper: Mapped[Decimal | None] = mapped_column(nullable=True)
    base_tax: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    rate: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("0"))

    __table_args__ = (
        CheckConstraint(
            "frequency IN ('SEMI_MONTHLY', 'MONTHLY', 'ANNUAL')",
            name="tax_bracket_frequency_check",
        ),
    )

    version: Mapped[StatutoryVersion] = relationship(back_populates="tax_brackets")


class RateSchemeParameter(Base):
    """Rate-based scheme parameters (PhilHealth, Pag-IBIG)."""

    __tablename__ = "rate_scheme_parameter"

    rate_scheme_parameter_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    statutory_version_id: Mapped[UUID] = mapped_column(
        ForeignKey("statutory_version.statutory_version_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scheme: Mapped[str] = mapped_column(String, nullable=False)
    employee_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    employer_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False)
    min_base: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    max_base: Mapped[Decimal | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint("scheme IN ('PHILHEALTH', 'PAGIBIG')", name="rate_scheme_check"),
    )

    version: Mapped[StatutoryVersion] = relationship(back_populates="rate_parameters")
