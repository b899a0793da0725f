"""
program_kernel.domain.records -- Frozen records for the program ledger.

Pure data.  ZERO I/O.  Every record crossing a service boundary is one of
these frozen dataclasses; ORM models translate to and from them with
``to_dto()`` / ``from_dto()``.

Invariants enforced:
    - Records are immutable.  A mutation is expressed as
      ``dataclasses.replace(record, ...)`` followed by a store update.
    - ``notes`` fields are append-only; use ``append_note`` to extend them.
    - Derived budget figures (remaining, variance) are properties, never
      stored independently of allocated/spent.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from program_kernel.domain.values import ZERO, percent_of

_SCORE_TOKEN = re.compile(r"score:\s*(\d+)")


# =============================================================================
# Enums
# =============================================================================


class BudgetStatus(str, Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    ACTIVE = "active"
    CLOSED = "closed"


class BudgetCategory(str, Enum):
    LABOR = "labor"
    MATERIALS = "materials"
    EQUIPMENT = "equipment"
    SUBCONTRACTS = "subcontracts"
    TRAVEL = "travel"
    INDIRECT = "indirect"
    CONTINGENCY = "contingency"
    OTHER = "other"


class TransactionType(str, Enum):
    EXPENSE = "expense"
    REVENUE = "revenue"
    ADJUSTMENT = "adjustment"


class CashFlowType(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"


class CashFlowStatus(str, Enum):
    FORECASTED = "forecasted"
    SCHEDULED = "scheduled"
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


class PerformanceTrend(str, Enum):
    """Direction of a program or an index between observations."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


# =============================================================================
# Notes helpers
# =============================================================================


def append_note(existing: str, entry: str) -> str:
    """Return ``existing`` extended by ``entry`` on a new line."""
    if not existing:
        return entry
    return f"{existing}\n{entry}"


def fiscal_year_label(year: int) -> str:
    return f"FY{year}"


def parse_fiscal_year(label: str) -> int:
    """``"FY2025"`` -> 2025."""
    return int(label.removeprefix("FY"))


# =============================================================================
# Ledger records
# =============================================================================


@dataclass(frozen=True)
class Budget:
    """One budget line of a program for one fiscal year."""

    budget_id: str
    program_id: str
    name: str
    category: BudgetCategory
    allocated: Decimal
    fiscal_year: str
    period_start: date
    period_end: date
    committed: Decimal = ZERO
    spent: Decimal = ZERO
    currency: str = "USD"
    status: BudgetStatus = BudgetStatus.ACTIVE
    notes: str = ""
    project_id: str | None = None
    created_by: str = "system"
    created_date: datetime | None = None
    modified_by: str | None = None
    modified_date: datetime | None = None

    @property
    def remaining(self) -> Decimal:
        return self.allocated - self.spent

    @property
    def variance(self) -> Decimal:
        """Positive when under budget."""
        return self.allocated - self.spent

    @property
    def variance_percent(self) -> Decimal:
        return percent_of(self.variance, self.allocated)

    @property
    def is_open(self) -> bool:
        return self.status != BudgetStatus.CLOSED


@dataclass(frozen=True)
class FinancialTransaction:
    transaction_id: str
    program_id: str
    type: TransactionType
    amount: Decimal
    transaction_date: date
    description: str = ""
    currency: str = "USD"
    category: str | None = None
    budget_id: str | None = None
    project_id: str | None = None
    reconciled: bool = False
    reconciled_date: date | None = None
    reconciled_by: str | None = None
    cash_flow_id: str | None = None
    notes: str = ""
    created_by: str = "system"
    created_date: datetime | None = None


@dataclass(frozen=True)
class CashFlow:
    flow_id: str
    program_id: str
    type: CashFlowType
    amount: Decimal
    forecast_date: date
    status: CashFlowStatus = CashFlowStatus.FORECASTED
    description: str = ""
    currency: str = "USD"
    category: str | None = None
    actual_date: date | None = None
    reconciled_transaction_id: str | None = None
    notes: str = ""
    created_by: str = "system"
    created_date: datetime | None = None

    @property
    def reconciled(self) -> bool:
        return self.reconciled_transaction_id is not None

    @property
    def effective_date(self) -> date:
        """Actual date once known, else the forecast date."""
        return self.actual_date or self.forecast_date


# =============================================================================
# EVM records
# =============================================================================


@dataclass(frozen=True)
class ProgramAggregates:
    """The four EVM base measures for a program as of a date."""

    pv: Decimal
    ev: Decimal
    ac: Decimal
    bac: Decimal


@dataclass(frozen=True)
class EVMMetrics:
    """Derived EVM metrics; recomputed from pv/ev/ac/bac, never edited."""

    cv: Decimal
    sv: Decimal
    cv_percent: Decimal
    sv_percent: Decimal
    cpi: Decimal
    spi: Decimal
    eac: Decimal
    etc: Decimal
    vac: Decimal
    tcpi: Decimal


@dataclass(frozen=True)
class EVMSnapshot:
    """
    Immutable point-in-time EVM capture.

    ``health_score`` is None only for rows written before the score became
    a stored column; readers then fall back to the ``score: N`` token in
    ``notes``.
    """

    snapshot_id: str
    program_id: str
    snapshot_date: date
    reporting_period: str
    pv: Decimal
    ev: Decimal
    ac: Decimal
    bac: Decimal
    metrics: EVMMetrics
    percent_complete: Decimal
    percent_schedule_complete: Decimal
    trend: PerformanceTrend
    calculated_by: str
    calculated_date: datetime
    notes: str = ""
    health_score: int | None = None
    health_status: HealthStatus | None = None
    project_id: str | None = None

    @property
    def cpi(self) -> Decimal:
        return self.metrics.cpi

    @property
    def spi(self) -> Decimal:
        return self.metrics.spi

    def resolve_health_score(self, default: int = 50) -> tuple[int, bool]:
        """
        Health score and whether it was inferred.

        Stored column first, then the ``score: N`` token in notes, then
        ``default``.  The flag is True only when ``default`` was used.
        """
        if self.health_score is not None:
            return self.health_score, False
        match = _SCORE_TOKEN.search(self.notes or "")
        if match:
            return int(match.group(1)), False
        return default, True
