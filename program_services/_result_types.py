"""
program_services._result_types -- Result records returned by the services.

Responsibility:
    Frozen dataclasses for everything the allocation, reconciliation and
    snapshot services hand back to callers: reallocation and distribution
    outcomes, validation verdicts, match outcomes, discrepancy and
    reconciliation reports, and batch failure entries.

Architecture position:
    Services.  These types live beside the services that build them; they
    depend only on program_kernel.domain.records.

Invariants enforced:
    - All results are frozen.  A batch result's ``errors`` holds one
      ``ItemFailure`` per item that raised; other items are unaffected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError

from program_kernel.domain.records import (
    Budget,
    BudgetCategory,
    BudgetStatus,
    CashFlow,
    EVMSnapshot,
    FinancialTransaction,
    PerformanceTrend,
)
from program_kernel.domain.values import ZERO
from program_kernel.exceptions import ProgramFinanceError
from program_engines.matching import AmountMismatch


@dataclass(frozen=True)
class ItemFailure:
    """One failed item of a batch operation."""

    item_id: str
    error_code: str
    message: str

    @classmethod
    def from_exception(cls, item_id: str, exc: Exception) -> ItemFailure:
        return cls(
            item_id=item_id,
            error_code=getattr(exc, "code", None) or type(exc).__name__,
            message=str(exc),
        )


# =============================================================================
# Allocation
# =============================================================================


@dataclass(frozen=True)
class ReallocationResult:
    from_budget: Budget
    to_budget: Budget
    amount: Decimal
    reason: str
    approved_by: str


@dataclass(frozen=True)
class DistributionResult:
    """
    Outcome of distributing a budget's remaining funds.

    ``distributed`` is what reached targets; ``undelivered`` is the sum of
    shares whose target write failed and which therefore stay on the source.
    """

    source: Budget
    targets: tuple[Budget, ...]
    shares: dict[str, Decimal]
    distributed: Decimal
    undelivered: Decimal = ZERO
    errors: tuple[ItemFailure, ...] = ()

    @property
    def budgets(self) -> list[Budget]:
        return [self.source, *self.targets]


@dataclass(frozen=True)
class AllocationValidation:
    valid: bool
    reason: str | None = None


@dataclass(frozen=True)
class AllocationSummary:
    program_id: str
    fiscal_year: str | None
    budget_count: int
    total_allocated: Decimal
    total_committed: Decimal
    total_spent: Decimal
    total_remaining: Decimal
    utilization_percent: Decimal
    by_status: dict[BudgetStatus, int] = field(default_factory=dict)
    by_category: dict[BudgetCategory, Decimal] = field(default_factory=dict)


# =============================================================================
# Reconciliation
# =============================================================================


class ReconciliationStatus(str, Enum):
    CLEAN = "clean"
    REVIEW_NEEDED = "review_needed"
    ACTION_REQUIRED = "action_required"


@dataclass(frozen=True)
class MatchOutcome:
    matched: bool
    variance: Decimal
    transaction: FinancialTransaction
    cash_flow: CashFlow


@dataclass(frozen=True)
class AutoReconciliationResult:
    program_id: str
    reconciled_count: int
    matched_pairs: tuple[tuple[str, str], ...]
    unmatched_transactions: tuple[FinancialTransaction, ...]
    unmatched_cash_flows: tuple[CashFlow, ...]
    report: str
    errors: tuple[ItemFailure, ...] = ()


@dataclass(frozen=True)
class BudgetReconciliation:
    transaction: FinancialTransaction
    budget_match: bool
    budget_id: str | None
    variance: Decimal
    over_allocated: bool
    notes: str


@dataclass(frozen=True)
class DiscrepancyReport:
    program_id: str
    duplicate_groups: tuple[tuple[FinancialTransaction, ...], ...]
    orphaned_transactions: tuple[FinancialTransaction, ...]
    mismatched_amounts: tuple[AmountMismatch, ...]
    summary: str

    @property
    def duplicate_transaction_count(self) -> int:
        return sum(len(group) for group in self.duplicate_groups)

    @property
    def total_discrepancies(self) -> int:
        return (
            self.duplicate_transaction_count
            + len(self.orphaned_transactions)
            + len(self.mismatched_amounts)
        )


@dataclass(frozen=True)
class ReconciliationReport:
    program_id: str
    period_start: date
    period_end: date
    total_transactions: int
    reconciled_transactions: int
    unreconciled_transactions: int
    reconciliation_rate: Decimal
    discrepancies: int
    status: ReconciliationStatus
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class BulkReconciliationResult:
    matched: tuple[MatchOutcome, ...]
    unmatched: tuple[MatchOutcome, ...]
    errors: tuple[ItemFailure, ...]

    @property
    def success_count(self) -> int:
        return len(self.matched)

    @property
    def failure_count(self) -> int:
        return len(self.unmatched) + len(self.errors)


@dataclass(frozen=True)
class AllocationIntegrityCheck:
    budget_id: str
    allocated: Decimal
    committed: Decimal
    spent: Decimal
    transaction_total: Decimal
    variance: Decimal
    reconciled: bool
    issues: tuple[str, ...]


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class SnapshotComparison:
    """Period-over-period movement between two snapshots."""

    baseline: EVMSnapshot
    current: EVMSnapshot
    cpi_trend: PerformanceTrend
    spi_trend: PerformanceTrend
    cpi_delta: Decimal
    spi_delta: Decimal
    cost_delta: Decimal
    schedule_delta: Decimal
    health_delta: int
    health_score_inferred: bool


# Failures a batch operation records per item instead of propagating.
ITEM_FAILURES: tuple[type[Exception], ...] = (ProgramFinanceError, SQLAlchemyError)
