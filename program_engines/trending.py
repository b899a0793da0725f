"""
program_engines.trending -- Trend analysis over EVM snapshot history.

Responsibility:
    Fit least-squares trends to CPI, SPI and health score sequences, flag
    statistical outliers, classify program risk and compare the current
    position against a baseline snapshot.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Operates on snapshot
    sequences already ordered oldest first.
    Consumed by TrendService.

Invariants enforced:
    - Regression over observation index (0, 1, 2, ...), not calendar time.
    - Slopes, intercepts and R^2 are quantized to 4 places; R^2 is clamped
      to [0, 1].
    - Volatility is the population standard deviation.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum

from program_kernel.domain.records import EVMSnapshot, PerformanceTrend
from program_kernel.domain.values import (
    HUNDRED,
    ONE,
    ZERO,
    round_money,
    round_places,
    round_ratio,
)
from program_engines.forecasting import population_std_dev
from program_engines.tracer import traced_engine

_SLOPE_THRESHOLD = Decimal("0.01")
_CRITICAL_INDEX = Decimal("0.85")
_DECLINE_RISK_INDEX = Decimal("0.9")
_WATCH_INDEX = Decimal("0.95")
_MEDIUM_RISK_VOLATILITY = Decimal("0.15")
_HIGH_VOLATILITY = Decimal("0.2")
_DETERIORATING_HEALTH = 60
_SIGNIFICANT_INDEX_CHANGE = Decimal("0.05")
_NOTABLE_DAYS_VARIANCE = 30
_DAYS_PER_YEAR = Decimal("365")

TRACKED_METRICS = ("cpi", "spi", "cv", "sv")


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class LinearRegression:
    slope: Decimal
    intercept: Decimal
    r_squared: Decimal


@dataclass(frozen=True)
class IndexTrend:
    index: str
    trend: PerformanceTrend
    slope: Decimal
    r_squared: Decimal
    current: Decimal
    average: Decimal
    minimum: Decimal
    maximum: Decimal
    volatility: Decimal


@dataclass(frozen=True)
class Anomaly:
    snapshot_id: str
    snapshot_date: date
    metric: str
    value: Decimal
    z_score: Decimal
    deviation: str  # "high" or "low"

    @property
    def severity(self) -> str:
        return "high" if abs(self.z_score) > 3 else "medium"


@dataclass(frozen=True)
class PerformanceTrendAnalysis:
    overall_trend: PerformanceTrend
    cpi: IndexTrend
    spi: IndexTrend
    health_slope: Decimal
    health_forecast_3_months: int
    risk_level: RiskLevel
    recommendations: tuple[str, ...]


@dataclass(frozen=True)
class BaselineComparison:
    baseline_snapshot_id: str
    current_snapshot_id: str
    cost_variance_change: Decimal
    schedule_variance_change: Decimal
    cpi_change: Decimal
    spi_change: Decimal
    days_variance: int
    summary: str


def linear_regression(values: Sequence[Decimal]) -> LinearRegression:
    """Least-squares fit of ``values`` against their index."""
    n = len(values)
    if n == 0:
        return LinearRegression(ZERO, ZERO, ZERO)
    if n == 1:
        return LinearRegression(ZERO, round_ratio(values[0]), ZERO)

    xs = [Decimal(i) for i in range(n)]
    mean_x = sum(xs, ZERO) / n
    mean_y = sum(values, ZERO) / n

    numerator = sum(((x - mean_x) * (y - mean_y) for x, y in zip(xs, values)), ZERO)
    denominator = sum(((x - mean_x) ** 2 for x in xs), ZERO)
    slope = numerator / denominator if denominator else ZERO
    intercept = mean_y - slope * mean_x

    ss_res = sum(((y - (slope * x + intercept)) ** 2 for x, y in zip(xs, values)), ZERO)
    ss_tot = sum(((y - mean_y) ** 2 for y in values), ZERO)
    r_squared = ONE - ss_res / ss_tot if ss_tot else ZERO
    r_squared = max(ZERO, min(ONE, r_squared))

    return LinearRegression(round_ratio(slope), round_ratio(intercept), round_ratio(r_squared))


def moving_average(values: Sequence[Decimal], window: int = 3) -> list[Decimal]:
    """Trailing mean; early points average over what is available."""
    window = max(1, window)
    result: list[Decimal] = []
    for i in range(len(values)):
        chunk = values[max(0, i - window + 1): i + 1]
        result.append(round_ratio(sum(chunk, ZERO) / len(chunk)))
    return result


def _direction(slope: Decimal) -> PerformanceTrend:
    if slope > _SLOPE_THRESHOLD:
        return PerformanceTrend.IMPROVING
    if slope < -_SLOPE_THRESHOLD:
        return PerformanceTrend.DECLINING
    return PerformanceTrend.STABLE


class TrendAnalyzer:
    """
    Pure trend calculator over snapshot history.

    Contract:
        Input sequences are ordered oldest first.  No I/O.
    """

    def analyze_index_trend(self, snapshots: Sequence[EVMSnapshot], index: str) -> IndexTrend:
        """Trend of ``cpi`` or ``spi``.  Empty history is stable at zero."""
        if index not in ("cpi", "spi"):
            raise ValueError(f"Unsupported index: {index}")
        values = [getattr(s, index) for s in snapshots]
        if not values:
            return IndexTrend(index, PerformanceTrend.STABLE, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO, ZERO)

        fit = linear_regression(values)
        return IndexTrend(
            index=index,
            trend=_direction(fit.slope),
            slope=fit.slope,
            r_squared=fit.r_squared,
            current=round_ratio(values[-1]),
            average=round_ratio(sum(values, ZERO) / len(values)),
            minimum=round_ratio(min(values)),
            maximum=round_ratio(max(values)),
            volatility=round_ratio(population_std_dev(values)),
        )

    @traced_engine("evm_anomalies", "1.0", fingerprint_fields=("metric", "threshold"))
    def detect_anomalies(
        self,
        snapshots: Sequence[EVMSnapshot],
        metric: str = "cpi",
        threshold: Decimal = Decimal("2.0"),
    ) -> list[Anomaly]:
        """
        Snapshots whose ``metric`` lies more than ``threshold`` standard
        deviations from the mean.  Fewer than three snapshots yield none.
        """
        if metric not in TRACKED_METRICS:
            raise ValueError(f"Unsupported metric: {metric}")
        if len(snapshots) < 3:
            return []

        values = [getattr(s.metrics, metric) for s in snapshots]
        mean = sum(values, ZERO) / len(values)
        std_dev = population_std_dev(values)
        if std_dev == ZERO:
            return []

        anomalies = []
        for snapshot, value in zip(snapshots, values):
            z_score = (value - mean) / std_dev
            if abs(z_score) > threshold:
                anomalies.append(
                    Anomaly(
                        snapshot_id=snapshot.snapshot_id,
                        snapshot_date=snapshot.snapshot_date,
                        metric=metric,
                        value=round_ratio(value),
                        z_score=round_places(z_score, 2),
                        deviation="high" if z_score > 0 else "low",
                    )
                )
        return anomalies

    @traced_engine("evm_trend", "1.0")
    def analyze_performance(
        self,
        snapshots: Sequence[EVMSnapshot],
        default_health_score: int = 50,
    ) -> PerformanceTrendAnalysis:
        """Overall direction, risk level and recommendations."""
        cpi = self.analyze_index_trend(snapshots, "cpi")
        spi = self.analyze_index_trend(snapshots, "spi")

        scores = [Decimal(s.resolve_health_score(default_health_score)[0]) for s in snapshots]
        health_fit = linear_regression(scores)
        projected = health_fit.slope * (len(snapshots) - 1 + 3) + health_fit.intercept
        forecast = int(round_places(max(ZERO, min(HUNDRED, projected)), 0))

        overall = self._overall_trend(cpi.trend, spi.trend)
        risk = self._risk_level(cpi, spi, overall)

        recommendations: list[str] = []
        if cpi.trend == PerformanceTrend.DECLINING:
            recommendations.append(
                "Cost performance is declining. Review budget allocation and cost controls."
            )
            if cpi.current < _DECLINE_RISK_INDEX:
                recommendations.append(
                    "Critical: CPI below 0.9 indicates significant cost overruns. "
                    "Immediate corrective action required."
                )
        if spi.trend == PerformanceTrend.DECLINING:
            recommendations.append(
                "Schedule performance is declining. Review project timeline and resource allocation."
            )
            if spi.current < _DECLINE_RISK_INDEX:
                recommendations.append(
                    "Critical: SPI below 0.9 indicates significant schedule delays. "
                    "Re-baseline may be necessary."
                )
        if cpi.volatility > _HIGH_VOLATILITY or spi.volatility > _HIGH_VOLATILITY:
            recommendations.append(
                "High performance volatility detected. "
                "Implement more consistent tracking and control processes."
            )
        if snapshots and forecast < _DETERIORATING_HEALTH:
            recommendations.append(
                "Health score forecast indicates deteriorating conditions. "
                "Proactive intervention recommended."
            )
        if overall == PerformanceTrend.IMPROVING:
            recommendations.append(
                "Performance is improving. Continue current management practices "
                "and monitor for sustainability."
            )
        if not recommendations:
            recommendations.append(
                "Performance is stable. Maintain current tracking and control processes."
            )

        return PerformanceTrendAnalysis(
            overall_trend=overall,
            cpi=cpi,
            spi=spi,
            health_slope=health_fit.slope,
            health_forecast_3_months=forecast,
            risk_level=risk,
            recommendations=tuple(recommendations),
        )

    def compare_to_baseline(
        self, baseline: EVMSnapshot, current: EVMSnapshot
    ) -> BaselineComparison:
        """
        Change in cost and schedule position since ``baseline``.

        Days variance converts the change in schedule slip (1 - SPI) into
        calendar days over a 365-day year; positive means behind baseline.
        """
        cpi_change = current.cpi - baseline.cpi
        spi_change = current.spi - baseline.spi
        slip_change = ((ONE - current.spi) - (ONE - baseline.spi)) * HUNDRED
        days_variance = int(round_places(slip_change / HUNDRED * _DAYS_PER_YEAR, 0))

        parts = []
        if cpi_change > _SIGNIFICANT_INDEX_CHANGE:
            parts.append("Cost performance has improved significantly.")
        elif cpi_change < -_SIGNIFICANT_INDEX_CHANGE:
            parts.append("Cost performance has declined significantly.")
        else:
            parts.append("Cost performance is relatively stable.")

        if spi_change > _SIGNIFICANT_INDEX_CHANGE:
            parts.append("Schedule performance has improved significantly.")
        elif spi_change < -_SIGNIFICANT_INDEX_CHANGE:
            parts.append("Schedule performance has declined significantly.")
        else:
            parts.append("Schedule performance is relatively stable.")

        if abs(days_variance) > _NOTABLE_DAYS_VARIANCE:
            direction = "behind" if days_variance > 0 else "ahead"
            parts.append(
                f"Estimated schedule variance of {abs(days_variance)} days {direction} of baseline."
            )
        else:
            parts.append("Schedule is tracking close to baseline.")

        return BaselineComparison(
            baseline_snapshot_id=baseline.snapshot_id,
            current_snapshot_id=current.snapshot_id,
            cost_variance_change=round_money(current.metrics.cv - baseline.metrics.cv),
            schedule_variance_change=round_money(current.metrics.sv - baseline.metrics.sv),
            cpi_change=round_ratio(cpi_change),
            spi_change=round_ratio(spi_change),
            days_variance=days_variance,
            summary=" ".join(parts),
        )

    @staticmethod
    def _overall_trend(cpi: PerformanceTrend, spi: PerformanceTrend) -> PerformanceTrend:
        steady = (PerformanceTrend.IMPROVING, PerformanceTrend.STABLE)
        if cpi == PerformanceTrend.IMPROVING and spi in steady:
            return PerformanceTrend.IMPROVING
        if spi == PerformanceTrend.IMPROVING and cpi in steady:
            return PerformanceTrend.IMPROVING
        if PerformanceTrend.DECLINING in (cpi, spi):
            return PerformanceTrend.DECLINING
        return PerformanceTrend.STABLE

    @staticmethod
    def _risk_level(cpi: IndexTrend, spi: IndexTrend, overall: PerformanceTrend) -> RiskLevel:
        declining = overall == PerformanceTrend.DECLINING
        if (
            cpi.current < _CRITICAL_INDEX
            or spi.current < _CRITICAL_INDEX
            or (declining and (cpi.current < _DECLINE_RISK_INDEX or spi.current < _DECLINE_RISK_INDEX))
        ):
            return RiskLevel.HIGH
        if (
            cpi.current < _WATCH_INDEX
            or spi.current < _WATCH_INDEX
            or declining
            or cpi.volatility > _MEDIUM_RISK_VOLATILITY
            or spi.volatility > _MEDIUM_RISK_VOLATILITY
        ):
            return RiskLevel.MEDIUM
        return RiskLevel.LOW
