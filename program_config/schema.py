"""
Settings schema.

Frozen dataclasses parsed from YAML by ``program_config.loader``.  Services
receive the relevant section at construction and pass values to the pure
engines as arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReconciliationSettings:
    match_tolerance: Decimal = Decimal("1.00")  # manual match: strictly below
    auto_match_amount_tolerance: Decimal = Decimal("10.00")
    auto_match_date_window_days: int = 3
    duplicate_amount_tolerance: Decimal = Decimal("0.01")
    mismatch_tolerance: Decimal = Decimal("1.00")
    budget_variance_tolerance: Decimal = Decimal("1.00")
    report_window_days: int = 30
    clean_rate_threshold: Decimal = Decimal("95")
    review_rate_threshold: Decimal = Decimal("80")
    review_max_discrepancies: int = 5


@dataclass(frozen=True)
class AllocationSettings:
    program_ceiling: Decimal = Decimal("10000000.00")
    low_utilization_floor: Decimal = Decimal("0.10")
    oversize_growth_factor: Decimal = Decimal("2")
    default_currency: str = "USD"


@dataclass(frozen=True)
class ForecastSettings:
    on_time_tolerance_days: int = 7
    confidence_window_months: int = 3
    assumed_elapsed_days: int = 180
    optimistic_factor: Decimal = Decimal("1.1")
    pessimistic_factor: Decimal = Decimal("0.9")


@dataclass(frozen=True)
class SnapshotSettings:
    default_list_limit: int = 100
    max_list_limit: int = 1000
    default_history_months: int = 12
    trend_delta_threshold: Decimal = Decimal("0.02")
    legacy_default_health_score: int = 50


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FinancialSettings:
    """Complete, validated settings for one deployment."""

    config_id: str
    version: int
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    allocation: AllocationSettings = field(default_factory=AllocationSettings)
    forecast: ForecastSettings = field(default_factory=ForecastSettings)
    snapshots: SnapshotSettings = field(default_factory=SnapshotSettings)
    checksum: str = ""
