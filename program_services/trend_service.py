"""
program_services.trend_service -- Program performance trends from snapshot history.

Responsibility:
    Load a program's snapshot history and run TrendAnalyzer over it:
    performance trend with risk and recommendations, anomaly detection on
    CPI and SPI, and comparison of the current position to a baseline
    snapshot.

Architecture position:
    Services -- read-only orchestration over SnapshotStore.

Failure modes:
    - SnapshotNotFoundError: baseline id unknown, or no snapshots to compare.
"""

from __future__ import annotations

import time
from decimal import Decimal

from program_config.schema import SnapshotSettings
from program_kernel.exceptions import SnapshotNotFoundError
from program_kernel.logging_config import get_logger
from program_engines.trending import (
    Anomaly,
    BaselineComparison,
    PerformanceTrendAnalysis,
    TrendAnalyzer,
)
from program_services.snapshot_service import SnapshotStore

logger = get_logger("services.trends")

BASELINE_LOOKBACK_MONTHS = 24


class TrendService:
    def __init__(self, snapshots: SnapshotStore, settings: SnapshotSettings | None = None):
        self._snapshots = snapshots
        self._settings = settings or SnapshotSettings()
        self._analyzer = TrendAnalyzer()

    def analyze_performance(self, program_id: str, months: int = 6) -> PerformanceTrendAnalysis:
        t0 = time.monotonic()
        history = self._snapshots.history(program_id, months=months)
        analysis = self._analyzer.analyze_performance(
            history, default_health_score=self._settings.legacy_default_health_score,
        )
        logger.info("performance_trend_analyzed", extra={
            "program_id": program_id,
            "snapshot_count": len(history),
            "overall_trend": analysis.overall_trend.value,
            "risk_level": analysis.risk_level.value,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return analysis

    def detect_anomalies(
        self,
        program_id: str,
        months: int = 12,
        threshold: Decimal = Decimal("2.0"),
    ) -> list[Anomaly]:
        """CPI then SPI outliers over the window."""
        history = self._snapshots.history(program_id, months=months)
        anomalies = [
            *self._analyzer.detect_anomalies(history, "cpi", threshold),
            *self._analyzer.detect_anomalies(history, "spi", threshold),
        ]
        if anomalies:
            logger.warning("performance_anomalies_detected", extra={
                "program_id": program_id,
                "anomaly_count": len(anomalies),
            })
        return anomalies

    def compare_to_baseline(self, program_id: str, baseline_snapshot_id: str) -> BaselineComparison:
        """
        Current position against ``baseline_snapshot_id``.

        The baseline must belong to the program and fall within the last
        24 months.
        """
        history = self._snapshots.history(program_id, months=BASELINE_LOOKBACK_MONTHS)
        baseline = next(
            (s for s in history if s.snapshot_id == baseline_snapshot_id), None,
        )
        if baseline is None:
            raise SnapshotNotFoundError(snapshot_id=baseline_snapshot_id)
        return self._analyzer.compare_to_baseline(baseline, history[-1])
