"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from netpay_engine.services.state_machine import PayrollRunStateMachine


class ErrorResponse(BaseModel):
    """Error payload produced by the exception handlers."""

    detail: str
    code: str
    details: dict[str, Any] | None = None


# ============================================================================
# Payroll run schemas
# ============================================================================


class PayrollRunGenerate(BaseModel):
    """Request to create (or reuse) a run and queue its computation."""

    payroll_code: str
    period_start: date
    period_end: date


class PayrollRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    tenant_id: UUID
    period_key: str
    period_label: str
    payroll_code: str
    period_start: date
    period_end: date
    status: str
    total_employees: int
    total_gross_pay: Decimal
    total_net_pay: Decimal
    computed_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: UUID | None = None
    posted_at: datetime | None = None
    posted_by: UUID | None = None
    created_at: datetime

    @computed_field
    @property
    def next_statuses(self) -> list[str]:
        """Statuses this run can move to next."""
        return PayrollRunStateMachine.get_next_statuses(self.status)


class PayrollRowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payroll_row_id: UUID
    employee_id: UUID
    employee_name: str
    basic_pay: Decimal
    gross_pay: Decimal
    taxable_income: Decimal
    withholding_tax: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    components: list[dict[str, Any]]
    inputs_snapshot: dict[str, Any] | None = None


class PayrollRunDetailResponse(PayrollRunResponse):
    rows: list[PayrollRowResponse] = []


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: UUID
    tenant_id: UUID
    type: str
    target_id: UUID | None = None
    status: str
    progress: int
    message: str | None = None
    result: dict[str, Any] | None = None
    error: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime


class GenerateResponse(BaseModel):
    run: PayrollRunResponse
    job: JobResponse
    created: bool


class TransitionRequest(BaseModel):
    actor_user_id: UUID | None = None


class DeleteRunResponse(BaseModel):
    payroll_run_id: UUID
    cancelled_jobs: int


class AccountingPostResponse(BaseModel):
    job: JobResponse
    created: bool


class CancelJobRequest(BaseModel):
    message: str | None = None


# ============================================================================
# Adjustment schemas
# ============================================================================


class AdjustmentEntry(BaseModel):
    employee_id: UUID
    name: str = Field(min_length=1)
    period_key: str = Field(min_length=1)
    amount: Decimal | None = None
    category: str | None = None


class AdjustmentBatchRequest(BaseModel):
    entries: list[AdjustmentEntry] = Field(min_length=1)


class AdjustmentBatchResponse(BaseModel):
    upserted: int
    deleted: int


class AdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    adjustment_id: UUID
    employee_id: UUID
    name: str
    category: str
    amount: Decimal
    period_key: str
    source: str


class ApplyRecurringRequest(BaseModel):
    period_key: str = Field(pattern=r"^\d{4}-\d{2}$")
    payroll_code: str
    as_of: date | None = None
    employee_ids: list[UUID] | None = None


class ApplyRecurringResponse(BaseModel):
    period_key: str
    applied: list[dict[str, Any]]
    removed: int
    skipped_manual: int


class AdjustmentTypeCreate(BaseModel):
    name: str = Field(min_length=1)
    category: str = Field(min_length=1)


class AdjustmentTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    adjustment_type_id: UUID
    name: str
    category: str


class SeedAdjustmentTypesResponse(BaseModel):
    created: int
    updated: int
    total: int


class RecurringAdjustmentCreate(BaseModel):
    employee_id: UUID
    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    amount: Decimal
    mode: str = "SPLIT"
    max_amount: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None


class RecurringAdjustmentUpdate(BaseModel):
    """Partial edit; only fields sent are changed."""

    name: str | None = None
    category: str | None = None
    amount: Decimal | None = None
    mode: str | None = None
    max_amount: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None
    active: bool | None = None


class RecurringAdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    recurring_adjustment_id: UUID
    employee_id: UUID
    name: str
    category: str
    amount: Decimal
    mode: str
    max_amount: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None
    active: bool


# ============================================================================
# Company profile schemas
# ============================================================================


class CompanyProfileUpdate(BaseModel):
    pay_frequency: str | None = None
    working_days_per_year: int | None = None
    compute_tax: bool | None = None
    philhealth_rate: Decimal | None = None
    philhealth_min_base: Decimal | None = None
    philhealth_max_base: Decimal | None = None
    pagibig_ee_rate: Decimal | None = None
    pagibig_er_rate: Decimal | None = None
    pagibig_max_base: Decimal | None = None


class CompanyProfileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: UUID
    pay_frequency: str
    working_days_per_year: int
    compute_tax: bool
    philhealth_rate: Decimal | None = None
    philhealth_min_base: Decimal | None = None
    philhealth_max_base: Decimal | None = None
    pagibig_ee_rate: Decimal | None = None
    pagibig_er_rate: Decimal | None = None
    pagibig_max_base: Decimal | None = None
    updated_at: datetime | None = None


# ============================================================================
# Tax report schemas
# ============================================================================


class AnnualizationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    employee_name: str
    year: int
    gross_compensation: Decimal
    non_taxable_compensation: Decimal
    employee_contributions: Decimal
    taxable_compensation: Decimal
    tax_due: Decimal
    tax_withheld: Decimal
    tax_difference: Decimal


class ProjectionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: UUID
    employee_name: str
    year: int
    through_month: int
    months_paid: int
    remaining_months: int
    ytd_taxable: Decimal
    projected_taxable: Decimal
    annual_tax_due: Decimal
    ytd_tax_withheld: Decimal
    remaining_tax: Decimal
    remaining_cutoffs: int
    per_cutoff_tax: Decimal


class SettlementRequest(BaseModel):
    year: int
    period_key: str = Field(pattern=r"^\d{4}-\d{2}$")


# ============================================================================
# Statutory schemas
# ============================================================================


class StatutoryVersionCreate(BaseModel):
    country: str | None = None
    effective_from: date
    effective_to: date | None = None
    note: str | None = None


class SssBracketSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    compensation_min: Decimal
    compensation_max: Decimal | None = None
    ee_mc: Decimal = Decimal("0")
    ee_mpf: Decimal = Decimal("0")
    er_mc: Decimal = Decimal("0")
    er_mpf: Decimal = Decimal("0")
    ec: Decimal = Decimal("0")


class TaxBracketSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    frequency: str
    threshold: Decimal
    upper: Decimal | None = None
    base_tax: Decimal
    rate: Decimal


class RateSchemeSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    scheme: str
    employee_rate: Decimal
    employer_rate: Decimal
    min_base: Decimal = Decimal("0")
    max_base: Decimal | None = None


class StatutoryTablesRequest(BaseModel):
    sss_brackets: list[SssBracketSchema] | None = None
    tax_brackets: list[TaxBracketSchema] | None = None
    rate_parameters: list[RateSchemeSchema] | None = None


class StatutoryVersionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    statutory_version_id: UUID
    country: str
    status: str
    effective_from: date
    effective_to: date | None = None
    published_at: datetime | None = None
    note: str | None = None


class StatutoryVersionDetailResponse(StatutoryVersionResponse):
    sss_brackets: list[SssBracketSchema] = []
    tax_brackets: list[TaxBracketSchema] = []
    rate_parameters: list[RateSchemeSchema] = []


# ============================================================================
# Worker schemas
# ============================================================================


class WorkerExecuteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    job_id: UUID = Field(alias="jobId")
    target_id: UUID | None = Field(default=None, alias="targetId")
    tenant_id: UUID = Field(alias="tenantId")


class WorkerExecuteResponse(BaseModel):
    job_id: UUID
    status: str
