"""Type definitions for the calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from netpay_engine.errors import ValidationError

ZERO = Decimal("0")


class PayrollCode(str, Enum):
    """Cutoff code of a run."""

    A = "A"
    B = "B"
    MONTHLY = "MONTHLY"
    SPECIAL = "SPECIAL"

    @property
    def is_semi_monthly(self) -> bool:
        return self in (PayrollCode.A, PayrollCode.B)


class PayBasis(str, Enum):
    """How an employee's basic pay is stated."""

    MONTHLY = "MONTHLY"
    # Basic pay is daily rate times the days worked in the cutoff
    DAILY = "DAILY"


class TaxFrequency(str, Enum):
    """Withholding table frequencies."""

    SEMI_MONTHLY = "SEMI_MONTHLY"
    MONTHLY = "MONTHLY"
    ANNUAL = "ANNUAL"


class TaxTreatment(str, Enum):
    TAXABLE = "TAXABLE"
    EXEMPT = "EXEMPT"
    # Exempt up to the shared annual ceiling, taxable above it
    CEILING = "CEILING"
    NONE = "NONE"


class Category(str, Enum):
    """Closed set of adjustment categories."""

    BASIC_PAY_RELATED = "Basic Pay Related"
    TAXABLE_EARNING = "Taxable Earning"
    NON_TAXABLE_EARNING = "Non-Taxable Earning"
    DE_MINIMIS = "Non-Taxable Earning - De Minimis"
    NON_TAXABLE_OTHER = "Non-Taxable Earning - Other"
    OTHER_BENEFITS = "13th Month Pay and Other Benefits"
    DEDUCTION = "Deduction"
    ADDITION = "Addition"
    STATUTORY = "Statutory"

    @classmethod
    def parse(cls, value: str | Category) -> Category:
        """Match a category label case-insensitively."""
        if isinstance(value, Category):
            return value
        wanted = " ".join(str(value or "").split()).lower()
        for member in cls:
            if member.value.lower() == wanted:
                return member
        raise ValidationError(f"Unknown adjustment category '{value}'", {"category": value})

    @property
    def treatment(self) -> CategoryTreatment:
        return CATEGORY_TREATMENT[self]


@dataclass(frozen=True)
class CategoryTreatment:
    """How amounts of one category flow into the computation.

    net_effect: -1 reduces net pay (by absolute value), +1 adds to net pay,
    0 means the amount reaches net only through gross pay.
    """

    affects_gross: bool
    tax: TaxTreatment
    net_effect: int = 0
    contribution_base: bool = False


CATEGORY_TREATMENT: dict[Category, CategoryTreatment] = {
    Category.BASIC_PAY_RELATED: CategoryTreatment(True, TaxTreatment.TAXABLE, contribution_base=True),
    Category.TAXABLE_EARNING: CategoryTreatment(True, TaxTreatment.TAXABLE),
    Category.NON_TAXABLE_EARNING: CategoryTreatment(True, TaxTreatment.EXEMPT),
    Category.DE_MINIMIS: CategoryTreatment(True, TaxTreatment.CEILING),
    Category.NON_TAXABLE_OTHER: CategoryTreatment(True, TaxTreatment.EXEMPT),
    Category.OTHER_BENEFITS: CategoryTreatment(True, TaxTreatment.CEILING),
    Category.DEDUCTION: CategoryTreatment(False, TaxTreatment.NONE, net_effect=-1),
    Category.ADDITION: CategoryTreatment(False, TaxTreatment.NONE, net_effect=1),
    # Routed onto the statutory component of the same name
    Category.STATUTORY: CategoryTreatment(False, TaxTreatment.NONE),
}


# Statutory component names as they appear in rows and adjustment inputs
SSS_EE_MC = "SSS EE MC"
SSS_EE_MPF = "SSS EE MPF"
PHILHEALTH_EE = "PhilHealth EE"
PAGIBIG_EE = "Pag-IBIG EE"
SSS_ER_MC = "SSS ER MC"
SSS_ER_MPF = "SSS ER MPF"
SSS_EC = "SSS EC"
PHILHEALTH_ER = "PhilHealth ER"
PAGIBIG_ER = "Pag-IBIG ER"
WITHHOLDING_TAX = "Withholding Tax"

EMPLOYEE_COMPONENTS = (SSS_EE_MC, SSS_EE_MPF, PHILHEALTH_EE, PAGIBIG_EE)
EMPLOYER_COMPONENTS = (SSS_ER_MC, SSS_ER_MPF, SSS_EC, PHILHEALTH_ER, PAGIBIG_ER)
STATUTORY_COMPONENTS = EMPLOYEE_COMPONENTS + EMPLOYER_COMPONENTS + (WITHHOLDING_TAX,)

# Component name -> PayrollRow/PayrollHistory column
COMPONENT_COLUMNS = {
    SSS_EE_MC: "sss_ee_mc",
    SSS_EE_MPF: "sss_ee_mpf",
    PHILHEALTH_EE: "philhealth_ee",
    PAGIBIG_EE: "pagibig_ee",
    SSS_ER_MC: "sss_er_mc",
    SSS_ER_MPF: "sss_er_mpf",
    SSS_EC: "sss_ec",
    PHILHEALTH_ER: "philhealth_er",
    PAGIBIG_ER: "pagibig_er",
}

_ALIASES = {
    "SSS EE": SSS_EE_MC,
    "SSS ER": SSS_ER_MC,
    "SSS MPF EE": SSS_EE_MPF,
    "SSS MPF ER": SSS_ER_MPF,
    "PHIC EE": PHILHEALTH_EE,
    "PHIC ER": PHILHEALTH_ER,
    "PAGIBIG EE": PAGIBIG_EE,
    "PAGIBIG ER": PAGIBIG_ER,
    "HDMF EE": PAGIBIG_EE,
    "HDMF ER": PAGIBIG_ER,
    "WTAX": WITHHOLDING_TAX,
    "WITHHOLDING": WITHHOLDING_TAX,
}
_CANONICAL = {name.upper(): name for name in STATUTORY_COMPONENTS}


# Working days per year assumed when a company profile leaves it unset
DEFAULT_WORKING_DAYS = 261

# Attendance input carrying a day count, not an amount
DAYS_WORKED = "Days Worked"


def is_days_worked(name: str) -> bool:
    return " ".join(str(name or "").split()).upper() == DAYS_WORKED.upper()


def canonical_component(name: str) -> str | None:
    """Return the statutory component an adjustment name refers to, if any."""
    key = " ".join(str(name or "").split()).upper()
    if key in _CANONICAL:
        return _CANONICAL[key]
    return _ALIASES.get(key)


@dataclass(frozen=True)
class ContributionBracket:
    """Social-insurance bracket; compensation_max None is the open top."""

    compensation_min: Decimal
    compensation_max: Decimal | None
    ee_mc: Decimal = ZERO
    ee_mpf: Decimal = ZERO
    er_mc: Decimal = ZERO
    er_mpf: Decimal = ZERO
    ec: Decimal = ZERO


@dataclass(frozen=True)
class WithholdingBracket:
    """Progressive tax bracket: base_tax + (income - threshold) * rate."""

    threshold: Decimal
    base_tax: Decimal
    rate: Decimal
    upper: Decimal | None = None


@dataclass(frozen=True)
class RateScheme:
    """Rate-based scheme: contribution = rate * clamp(comp, min_base, max_base)."""

    employee_rate: Decimal
    employer_rate: Decimal
    min_base: Decimal = ZERO
    max_base: Decimal | None = None


@dataclass(frozen=True)
class StatutoryTables:
    """All tables of one resolved statutory version, detached from the ORM."""

    version_id: UUID | None
    sss: tuple[ContributionBracket, ...]
    withholding: dict[TaxFrequency, tuple[WithholdingBracket, ...]]
    philhealth: RateScheme
    pagibig: RateScheme


@dataclass
class ContributionResult:
    """Employee/employer amounts per scheme plus withholding tax."""

    employee: dict[str, Decimal] = field(default_factory=dict)
    employer: dict[str, Decimal] = field(default_factory=dict)
    withholding_tax: Decimal = ZERO

    @property
    def employee_total(self) -> Decimal:
        return sum(self.employee.values(), ZERO)

    @property
    def employer_total(self) -> Decimal:
        return sum(self.employer.values(), ZERO)


@dataclass(frozen=True)
class ComponentLine:
    """One named amount in a row's breakdown."""

    name: str
    category: str
    amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "category": self.category, "amount": str(self.amount)}
