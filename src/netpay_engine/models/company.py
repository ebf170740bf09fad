"""Tenant, company profile and employee models."""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from netpay_engine.models.base import Base, Rate, TimestampMixin, UpdatedAtMixin


class Tenant(Base, TimestampMixin):
    """Multi-tenant container (one company)."""

    __tablename__ = "tenant"

    tenant_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    country: Mapped[str] = mapped_column(String(2), nullable=False, default="PH")

    profile: Mapped[CompanyProfile | None] = relationship(back_populates="tenant")


class CompanyProfile(Base, UpdatedAtMixin):
    """Per-tenant payroll settings; upserted, never deleted.

    Scheme parameters left NULL fall back to the statutory version's values.
    """

    __tablename__ = "company_profile"

    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        primary_key=True,
    )
    pay_frequency: Mapped[str] = mapped_column(String, nullable=False, default="SEMI_MONTHLY")
    working_days_per_year: Mapped[int] = mapped_column(Integer, nullable=False, default=261)
    compute_tax: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    philhealth_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    philhealth_min_base: Mapped[Decimal | None] = mapped_column(nullable=True)
    philhealth_max_base: Mapped[Decimal | None] = mapped_column(nullable=True)
    pagibig_ee_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    pagibig_er_rate: Mapped[Decimal | None] = mapped_column(Rate, nullable=True)
    pagibig_max_base: Mapped[Decimal | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "pay_frequency IN ('SEMI_MONTHLY', 'MONTHLY')",
            name="company_profile_frequency_check",
        ),
    )

    tenant: Mapped[Tenant] = relationship(back_populates="profile")


class Employee(Base, TimestampMixin):
    """Employee with the compensation attributes the engine needs."""

    __tablename__ = "employee"

    employee_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        ForeignKey("tenant.tenant_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_code: Mapped[str] = mapped_column(String, nullable=False)
    first_name: Mapped[str] = mapped_column(String, nullable=False)
    last_name: Mapped[str] = mapped_column(String, nullable=False)
    monthly_basic: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    pay_basis: Mapped[str] = mapped_column(String, nullable=False, default="MONTHLY")
    # DAILY basis only; derived from monthly_basic and working days when NULL
    daily_rate: Mapped[Decimal | None] = mapped_column(nullable=True)

    is_consultant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consultant_tax_rate: Mapped[Decimal] = mapped_column(Rate, nullable=False, default=Decimal("0"))
    is_mwe: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_pwd: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_filipino: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_retired: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "employee_code", name="employee_tenant_code_unique"),
        CheckConstraint("pay_basis IN ('MONTHLY', 'DAILY')", name="employee_pay_basis_check"),
    )

    @property
    def display_name(self) -> str:
        return f"{self.last_name}, {self.first_name}"
