"""Payroll run, computed row and posted history models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netpay_engine.models.base import Base, TimestampMixin, UpdatedAtMixin

ZERO = Decimal("0")


class StatutoryAmountsMixin:
    """Per-scheme employee/employer amounts shared by rows and history."""

    sss_ee_mc: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    sss_ee_mpf: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    philhealth_ee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    pagibig_ee: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    sss_er_mc: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    sss_er_mpf: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    sss_ec: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    philhealth_er: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    pagibig_er: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    basic_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    gross_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    taxable_income: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    withholding_tax: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    # 13th month / de minimis amount counted against the annual exemption
    ceiling_benefits: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)


class PayrollRun(Base, UpdatedAtMixin):
    """A payroll run for one tenant and one cutoff."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_key: Mapped[str] = mapped_column(String, nullable=False)
    period_label: Mapped[str] = mapped_column(String, nullable=False)
    payroll_code: Mapped[str] = mapped_column(String, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="DRAFT")

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_net_pay: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    computed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    posted_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('DRAFT', 'COMPUTED', 'APPROVED', 'POSTED')",
            name="payroll_run_status_check",
        ),
        CheckConstraint(
            "payroll_code IN ('A', 'B', 'MONTHLY', 'SPECIAL')",
            name="payroll_run_code_check",
        ),
        UniqueConstraint(
            "tenant_id", "period_label", "period_start", "period_end",
            name="payroll_run_cutoff_unique",
        ),
    )

    rows: Mapped[list[PayrollRow]] = relationship(
        back_populates="run",
        cascade="all, delete-orphan",
        order_by="PayrollRow.employee_name",
    )

    @property
    def adjustment_period_key(self) -> str:
        """Key used for adjustments: periodKey plus the semi-monthly code."""
        if self.payroll_code in ("A", "B"):
            return f"{self.period_key} {self.payroll_code}"
        return self.period_key


class PayrollRow(Base, StatutoryAmountsMixin, TimestampMixin):
    """Computed result for one employee in one run."""

    __tablename__ = "payroll_row"

    payroll_row_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_name: Mapped[str] = mapped_column(String, nullable=False)
    # Ordered [{"name", "category", "amount"}] with a schema version tag
    components: Mapped[list[Any]] = mapped_column(nullable=False, default=list)
    components_schema: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    inputs_snapshot: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payroll_row_run_employee_unique"),
    )

    run: Mapped[PayrollRun] = relationship(back_populates="rows")


class PayrollHistory(Base, StatutoryAmountsMixin, TimestampMixin):
    """Immutable posted ledger row; removed only by unposting its run."""

    __tablename__ = "payroll_history"

    payroll_history_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.employee_id", ondelete="CASCADE"),
        nullable=False,
    )
    period_key: Mapped[str] = mapped_column(String, nullable=False)
    payroll_code: Mapped[str] = mapped_column(String, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    posted_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payroll_history_run_employee_unique"),
        Index("ix_payroll_history_employee_period", "tenant_id", "employee_id", "period_key"),
    )
