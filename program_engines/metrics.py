"""
program_engines.metrics -- Earned Value Management metrics and health scoring.

Responsibility:
    Derive the EVM metric set (CV, SV, CPI, SPI, EAC, ETC, VAC, TCPI and the
    variance percentages) from the four base measures PV, EV, AC and BAC,
    and score program health from those metrics.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import program_kernel.domain and program_kernel.exceptions.
    Consumed by SnapshotStore and ForecastService.

Invariants enforced:
    - Division guards use an explicit zero sentinel: CPI is 0 when AC is 0,
      SPI is 0 when PV is 0, TCPI is 0 when BAC - AC <= 0.  Results are
      never NaN or Infinity.
    - ETC is never negative.
    - Money outputs quantize to 2 places, ratios (CPI, SPI, TCPI) to 4
      places, ROUND_HALF_UP.  CV and SV are exact differences of the inputs
      before that final quantization.
    - EAC divides by the unrounded CPI.

Failure modes:
    - InvalidMeasureError if any base measure is negative.

Audit relevance:
    Every snapshot stores the output of ``compute`` verbatim; recomputing
    from the stored PV/EV/AC/BAC reproduces the stored metrics exactly.
    Health indicator strings are stable and safe to substring-match.

Usage:
    from decimal import Decimal
    from program_engines.metrics import MetricsEngine

    engine = MetricsEngine()
    metrics = engine.compute(
        pv=Decimal("100000"), ev=Decimal("110000"),
        ac=Decimal("95000"), bac=Decimal("200000"),
    )
    metrics.cpi   # Decimal("1.1579")
    health = engine.health_index(metrics, bac=Decimal("200000"))
    health.status # HealthStatus.HEALTHY
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from program_kernel.domain.records import EVMMetrics, HealthStatus, PerformanceTrend
from program_kernel.domain.values import (
    HUNDRED,
    ZERO,
    round_money,
    round_places,
    round_ratio,
    to_decimal,
)
from program_kernel.exceptions import InvalidMeasureError
from program_engines.tracer import traced_engine

# Index bands shared by CPI and SPI scoring
_CRITICAL_INDEX = Decimal("0.85")
_MODERATE_INDEX = Decimal("0.95")
_FAVORABLE_INDEX = Decimal("1.05")

_DIFFICULT_TCPI = Decimal("1.15")
_ELEVATED_TCPI = Decimal("1.05")

_SIGNIFICANT_VAC_SHARE = Decimal("0.10")
_MODERATE_VAC_SHARE = Decimal("0.05")

HEALTHY_SCORE = 70
WARNING_SCORE = 50

_STATUS_SUMMARY = {
    HealthStatus.HEALTHY: "Project is performing well",
    HealthStatus.WARNING: "Project requires attention",
    HealthStatus.CRITICAL: "Project requires immediate action",
}

# Snapshot trend classification
_IMPROVING_INDEX = Decimal("1.05")
_DECLINING_INDEX = Decimal("0.9")


@dataclass(frozen=True)
class HealthAssessment:
    """Health score in [0, 100], its status band and readable indicators."""

    status: HealthStatus
    score: int
    indicators: tuple[str, ...]


def _two_places(value: Decimal) -> str:
    return str(round_places(value, 2))


def _whole(value: Decimal) -> str:
    return str(round_places(value, 0))


def status_for_score(score: int) -> HealthStatus:
    if score >= HEALTHY_SCORE:
        return HealthStatus.HEALTHY
    if score >= WARNING_SCORE:
        return HealthStatus.WARNING
    return HealthStatus.CRITICAL


class MetricsEngine:
    """
    Pure EVM calculator.

    Contract:
        No I/O, no clock, fully deterministic.
    Guarantees:
        - ``compute`` never divides by zero.
        - ``health_index`` score is clamped to [0, 100].
    Non-goals:
        - Does not fetch base measures; callers supply them.
    """

    @traced_engine("evm_metrics", "1.0", fingerprint_fields=("pv", "ev", "ac", "bac"))
    def compute(
        self,
        pv: Decimal | int | str,
        ev: Decimal | int | str,
        ac: Decimal | int | str,
        bac: Decimal | int | str,
    ) -> EVMMetrics:
        """
        Derive the full EVM metric set.

        Preconditions:
            All four measures are non-negative.

        Postconditions:
            cv == ev - ac and sv == ev - pv (quantized to 2 places).
            etc >= 0.

        Raises:
            InvalidMeasureError: If a measure is negative.
        """
        measures = {
            "pv": to_decimal(pv),
            "ev": to_decimal(ev),
            "ac": to_decimal(ac),
            "bac": to_decimal(bac),
        }
        for name, value in measures.items():
            if value < ZERO:
                raise InvalidMeasureError(name, value)
        pv, ev, ac, bac = (measures[k] for k in ("pv", "ev", "ac", "bac"))

        cv = ev - ac
        sv = ev - pv

        cpi = ev / ac if ac > ZERO else ZERO
        spi = ev / pv if pv > ZERO else ZERO

        cv_percent = cv / ac * HUNDRED if ac > ZERO else ZERO
        sv_percent = sv / pv * HUNDRED if pv > ZERO else ZERO

        if cpi <= ZERO:
            eac = bac + abs(ac)
        else:
            eac = bac / cpi

        etc = max(ZERO, eac - ac)
        vac = bac - eac

        remaining_budget = bac - ac
        if remaining_budget <= ZERO:
            tcpi = ZERO
        else:
            tcpi = (bac - ev) / remaining_budget

        return EVMMetrics(
            cv=round_money(cv),
            sv=round_money(sv),
            cv_percent=round_money(cv_percent),
            sv_percent=round_money(sv_percent),
            cpi=round_ratio(cpi),
            spi=round_ratio(spi),
            eac=round_money(eac),
            etc=round_money(etc),
            vac=round_money(vac),
            tcpi=round_ratio(tcpi),
        )

    @traced_engine("evm_health", "1.0")
    def health_index(self, metrics: EVMMetrics, bac: Decimal) -> HealthAssessment:
        """
        Score program health.

        Deductions from 100: CPI and SPI each -30 below 0.85 or -15 below
        0.95; VAC -20 beyond 10% of BAC overrun or -10 beyond 5%; TCPI -20
        above 1.15 or -10 above 1.05.  The first indicator is always the
        overall summary line.
        """
        score = 100
        indicators: list[str] = []

        cpi = metrics.cpi
        if cpi < _CRITICAL_INDEX:
            score -= 30
            indicators.append(f"Critical cost overrun (CPI: {_two_places(cpi)})")
        elif cpi < _MODERATE_INDEX:
            score -= 15
            indicators.append(f"Moderate cost overrun (CPI: {_two_places(cpi)})")
        elif cpi >= _FAVORABLE_INDEX:
            indicators.append(f"Under budget (CPI: {_two_places(cpi)})")

        spi = metrics.spi
        if spi < _CRITICAL_INDEX:
            score -= 30
            indicators.append(f"Critically behind schedule (SPI: {_two_places(spi)})")
        elif spi < _MODERATE_INDEX:
            score -= 15
            indicators.append(f"Moderately behind schedule (SPI: {_two_places(spi)})")
        elif spi >= _FAVORABLE_INDEX:
            indicators.append(f"Ahead of schedule (SPI: {_two_places(spi)})")

        tcpi = metrics.tcpi
        if tcpi > _DIFFICULT_TCPI:
            score -= 20
            indicators.append(
                f"Difficult target performance required (TCPI: {_two_places(tcpi)})"
            )
        elif tcpi > _ELEVATED_TCPI:
            score -= 10
            indicators.append(f"Improved performance needed (TCPI: {_two_places(tcpi)})")

        vac = metrics.vac
        bac = to_decimal(bac)
        if vac < -(_SIGNIFICANT_VAC_SHARE * bac):
            score -= 20
            indicators.append(f"Significant budget overrun expected (VAC: {_whole(vac)})")
        elif vac < -(_MODERATE_VAC_SHARE * bac):
            score -= 10
            indicators.append(f"Moderate budget overrun expected (VAC: {_whole(vac)})")
        elif vac > ZERO:
            indicators.append(f"Under budget at completion (VAC: {_whole(vac)})")

        score = max(0, min(100, score))
        status = status_for_score(score)
        indicators.insert(0, _STATUS_SUMMARY[status])

        return HealthAssessment(status=status, score=score, indicators=tuple(indicators))


def classify_trend(metrics: EVMMetrics, status: HealthStatus) -> PerformanceTrend:
    """
    Point-in-time trend label stored on a snapshot.

    improving: healthy and either index at or above 1.05.
    declining: critical, or both indices below 0.9.
    """
    if status == HealthStatus.HEALTHY and (
        metrics.cpi >= _IMPROVING_INDEX or metrics.spi >= _IMPROVING_INDEX
    ):
        return PerformanceTrend.IMPROVING
    if status == HealthStatus.CRITICAL or (
        metrics.cpi < _DECLINING_INDEX and metrics.spi < _DECLINING_INDEX
    ):
        return PerformanceTrend.DECLINING
    return PerformanceTrend.STABLE
