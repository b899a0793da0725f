"""
Module: program_services
Responsibility:
    Stateful orchestration over the pure engines and the kernel store:
    snapshots, forecasts, trends, budget allocation and reconciliation.

Architecture position:
    Services.  May import program_kernel, program_engines and
    program_config.schema.  Each service receives its RowStore (or
    SnapshotStore), Clock and settings section at construction.
"""

from program_services._result_types import (
    AllocationIntegrityCheck,
    AllocationSummary,
    AllocationValidation,
    AutoReconciliationResult,
    BudgetReconciliation,
    BulkReconciliationResult,
    DiscrepancyReport,
    DistributionResult,
    ItemFailure,
    MatchOutcome,
    ReallocationResult,
    ReconciliationReport,
    ReconciliationStatus,
    SnapshotComparison,
)
from program_services.allocation_service import AllocationLedger
from program_services.forecast_service import ForecastService
from program_services.reconciliation_service import ReconciliationEngine
from program_services.snapshot_service import SnapshotStore
from program_services.trend_service import TrendService

__all__ = [
    "AllocationIntegrityCheck",
    "AllocationLedger",
    "AllocationSummary",
    "AllocationValidation",
    "AutoReconciliationResult",
    "BudgetReconciliation",
    "BulkReconciliationResult",
    "DiscrepancyReport",
    "DistributionResult",
    "ForecastService",
    "ItemFailure",
    "MatchOutcome",
    "ReallocationResult",
    "ReconciliationEngine",
    "ReconciliationReport",
    "ReconciliationStatus",
    "SnapshotComparison",
    "SnapshotStore",
    "TrendService",
]
