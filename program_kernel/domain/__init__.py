"""
Pure domain layer.

Frozen records, enums, Decimal helpers and the injectable clock.  No
dependencies on the ORM, the database or I/O.
"""

from program_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from program_kernel.domain.records import (
    Budget,
    BudgetCategory,
    BudgetStatus,
    CashFlow,
    CashFlowStatus,
    CashFlowType,
    EVMMetrics,
    EVMSnapshot,
    FinancialTransaction,
    HealthStatus,
    PerformanceTrend,
    ProgramAggregates,
    TransactionType,
    append_note,
    fiscal_year_label,
    parse_fiscal_year,
)

__all__ = [
    "Budget",
    "BudgetCategory",
    "BudgetStatus",
    "CashFlow",
    "CashFlowStatus",
    "CashFlowType",
    "Clock",
    "DeterministicClock",
    "EVMMetrics",
    "EVMSnapshot",
    "FinancialTransaction",
    "HealthStatus",
    "PerformanceTrend",
    "ProgramAggregates",
    "SystemClock",
    "TransactionType",
    "append_note",
    "fiscal_year_label",
    "parse_fiscal_year",
]
