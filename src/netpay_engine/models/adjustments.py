"""Adjustment catalog, one-time adjustments and recurring definitions."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from netpay_engine.models.base import Base, TimestampMixin, UpdatedAtMixin


class AdjustmentType(Base, TimestampMixin):
    """Tenant catalog entry classifying an adjustment name."""

    __tablename__ = "adjustment_type"

    adjustment_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="adjustment_type_tenant_name_unique"),
    )


class Adjustment(Base, UpdatedAtMixin):
    """One-time adjustment for an employee in one adjustment period key.

    Amounts are signed the way they are entered: earnings positive,
    deductions negative.
    """

    __tablename__ = "adjustment"

    adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    period_key: Mapped[str] = mapped_column(String, nullable=False)
    source: Mapped[str] = mapped_column(String, nullable=False, default="manual")

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "employee_id", "name", "period_key",
            name="adjustment_entry_unique",
        ),
        CheckConstraint("source IN ('manual', 'recurring')", name="adjustment_source_check"),
        Index("ix_adjustment_period", "tenant_id", "period_key"),
    )


class RecurringAdjustment(Base, UpdatedAtMixin):
    """Recurring definition materialized into Adjustment rows per cutoff."""

    __tablename__ = "recurring_adjustment"

    recurring_adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    mode: Mapped[str] = mapped_column(String, nullable=False, default="SPLIT")
    max_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("mode IN ('SPLIT', '1ST', '2ND')", name="recurring_adjustment_mode_check"),
    )
