"""
program_engines.forecasting -- Completion cost and date forecasting.

Responsibility:
    Project Estimate at Completion under three methods, forecast the
    completion date from schedule performance, rate forecast confidence
    from CPI stability, build optimistic/baseline/pessimistic scenarios and
    compute the performance required to hit a cost target.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``today`` is always an
    argument; the engine never reads a clock.
    Consumed by ForecastService.

Invariants enforced:
    - No division blowups: CPI <= 0, CPI x SPI <= 0 and SPI <= 0 all take
      explicit bounded fallbacks.
    - ETC is never negative.
    - Scenario asymmetry is deliberate: the optimistic case runs through the
      CPI method, the pessimistic case through the CPI x SPI method, which
      biases the spread toward overrun.
    - An exhausted budget reports TCPI as 0 with ``impossible`` set.

Failure modes:
    - ValueError for an unknown forecast method string.

Usage:
    from program_engines.forecasting import ForecastEngine, ForecastMethod

    engine = ForecastEngine()
    forecast = engine.forecast_eac(
        bac=Decimal("200000"), ac=Decimal("110000"), ev=Decimal("80000"),
        cpi=Decimal("0.7273"), spi=Decimal("0.8"), method=ForecastMethod.CPI,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum

from program_kernel.domain.periods import add_months, add_years
from program_kernel.domain.records import EVMSnapshot
from program_kernel.domain.values import (
    HUNDRED,
    ONE,
    ZERO,
    round_money,
    round_places,
    round_ratio,
    to_decimal,
    truncate_to_int,
)
from program_kernel.logging_config import get_logger
from program_engines.tracer import traced_engine

logger = get_logger("engines.forecasting")

_HIGH_CONFIDENCE_STD = Decimal("0.05")
_MEDIUM_CONFIDENCE_STD = Decimal("0.15")

_FEASIBLE_TCPI = Decimal("1.1")
_CHALLENGING_TCPI = Decimal("1.2")

STALLED_VARIANCE_DAYS = 365


class ForecastMethod(str, Enum):
    CPI = "cpi"
    CPI_SPI = "cpi-spi"
    BOTTOM_UP = "bottom-up"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class EACForecast:
    method: ForecastMethod
    eac: Decimal
    etc: Decimal
    vac: Decimal


@dataclass(frozen=True)
class CompletionForecast:
    """
    Forecast completion date.

    ``stalled`` marks the SPI <= 0 fallback: planned end plus one year,
    variance fixed at 365 days.
    """

    forecast_date: date
    variance_days: int
    on_time: bool
    stalled: bool = False


@dataclass(frozen=True)
class ForecastScenario:
    name: str
    cpi: Decimal
    spi: Decimal
    method: ForecastMethod
    eac: Decimal
    completion_date: date | None


@dataclass(frozen=True)
class ForecastScenarios:
    baseline: ForecastScenario
    optimistic: ForecastScenario
    pessimistic: ForecastScenario


@dataclass(frozen=True)
class RequiredPerformance:
    tcpi_bac: Decimal
    tcpi_eac: Decimal
    target_eac: Decimal
    feasible: bool
    impossible: bool
    message: str


def _eac_by_cpi(bac: Decimal, ac: Decimal, cpi: Decimal) -> Decimal:
    if bac <= ZERO:
        return ZERO
    if cpi <= ZERO:
        return bac + abs(ac)
    return bac / cpi


def _eac_by_cpi_spi(
    bac: Decimal, ac: Decimal, ev: Decimal, cpi: Decimal, spi: Decimal
) -> Decimal:
    if bac <= ZERO:
        return ZERO
    remaining_work = bac - ev
    factor = cpi * spi
    if factor <= ZERO:
        # Compound worst case
        return ac + remaining_work + abs(bac - ac)
    return ac + remaining_work / factor


def _tcpi(remaining_work: Decimal, remaining_budget: Decimal) -> Decimal | None:
    """None when the budget is exhausted."""
    if remaining_budget <= ZERO:
        return None
    return remaining_work / remaining_budget


def _improvement_message(tcpi: Decimal | None) -> str:
    if tcpi is None:
        return "Target is impossible - budget already exhausted"
    if tcpi <= ONE:
        margin = round_places((ONE - tcpi) * HUNDRED, 1)
        return f"No improvement needed - {margin}% margin available"

    improvement = round_places((tcpi - ONE) * HUNDRED, 1)
    message = f"{improvement}% improvement in cost efficiency needed"
    if tcpi > _CHALLENGING_TCPI:
        return message + " (very challenging - consider scope/budget adjustment)"
    if tcpi > _FEASIBLE_TCPI:
        return message + " (challenging but achievable with focused effort)"
    return message + " (achievable with improved efficiency)"


def population_std_dev(values: Sequence[Decimal]) -> Decimal:
    if not values:
        return ZERO
    count = Decimal(len(values))
    mean = sum(values, ZERO) / count
    variance = sum(((v - mean) ** 2 for v in values), ZERO) / count
    return variance.sqrt()


class ForecastEngine:
    """
    Pure forecaster.

    Contract:
        No I/O, no clock, fully deterministic.
    Guarantees:
        - All money outputs are quantized to 2 places, TCPI to 4.
    Non-goals:
        - Does not select which snapshot to forecast from; callers pass the
          measures (typically from the latest snapshot).
    """

    @traced_engine("evm_forecast", "1.0", fingerprint_fields=("bac", "ac", "ev", "cpi", "spi", "method"))
    def forecast_eac(
        self,
        bac: Decimal,
        ac: Decimal,
        ev: Decimal,
        cpi: Decimal,
        spi: Decimal,
        method: ForecastMethod | str = ForecastMethod.CPI,
    ) -> EACForecast:
        """
        Estimate at completion by the selected method.

        cpi:        BAC / CPI
        cpi-spi:    AC + (BAC - EV) / (CPI x SPI)
        bottom-up:  AC + (BAC - EV)

        Raises:
            ValueError: If ``method`` is not a known ForecastMethod value.
        """
        method = ForecastMethod(method)
        bac, ac, ev = to_decimal(bac), to_decimal(ac), to_decimal(ev)
        cpi, spi = to_decimal(cpi), to_decimal(spi)

        match method:
            case ForecastMethod.CPI:
                eac = _eac_by_cpi(bac, ac, cpi)
            case ForecastMethod.CPI_SPI:
                eac = _eac_by_cpi_spi(bac, ac, ev, cpi, spi)
            case ForecastMethod.BOTTOM_UP:
                eac = ac + (bac - ev)

        eac = round_money(eac)
        return EACForecast(
            method=method,
            eac=eac,
            etc=round_money(max(ZERO, eac - ac)),
            vac=round_money(bac - eac),
        )

    @traced_engine("evm_forecast", "1.0", fingerprint_fields=("planned_end", "spi", "today"))
    def forecast_completion_date(
        self,
        planned_end: date,
        spi: Decimal,
        today: date,
        on_time_tolerance_days: int = 7,
    ) -> CompletionForecast:
        """
        Forecast completion from remaining calendar days and SPI.

        Early completion is always on time; late completion is on time
        within ``on_time_tolerance_days``.
        """
        spi = to_decimal(spi)
        if spi <= ZERO:
            return CompletionForecast(
                forecast_date=add_years(planned_end, 1),
                variance_days=STALLED_VARIANCE_DAYS,
                on_time=False,
                stalled=True,
            )

        remaining_days = max(0, (planned_end - today).days)
        forecast_remaining = Decimal(remaining_days) / spi
        forecast_date = today + timedelta(days=truncate_to_int(forecast_remaining))
        variance_days = (forecast_date - planned_end).days
        return CompletionForecast(
            forecast_date=forecast_date,
            variance_days=variance_days,
            on_time=variance_days <= on_time_tolerance_days,
        )

    def assess_confidence(
        self,
        history: Sequence[EVMSnapshot],
        today: date,
        window_months: int = 3,
    ) -> ConfidenceLevel:
        """
        Rate forecast confidence from CPI stability over the recent window.

        Fewer than two snapshots in the window rates low.  Otherwise the
        population standard deviation of CPI decides: below 0.05 high,
        below 0.15 medium, else low.
        """
        window_start = add_months(today, -window_months)
        cpis = [
            s.cpi for s in history if window_start <= s.snapshot_date <= today
        ]
        if len(cpis) < 2:
            return ConfidenceLevel.LOW

        std_dev = population_std_dev(cpis)
        if std_dev < _HIGH_CONFIDENCE_STD:
            return ConfidenceLevel.HIGH
        if std_dev < _MEDIUM_CONFIDENCE_STD:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW

    @traced_engine("evm_scenarios", "1.0", fingerprint_fields=("bac", "ac", "ev", "cpi", "spi", "today"))
    def generate_scenarios(
        self,
        bac: Decimal,
        ac: Decimal,
        ev: Decimal,
        cpi: Decimal,
        spi: Decimal,
        today: date,
        planned_end: date | None = None,
        optimistic_factor: Decimal = Decimal("1.1"),
        pessimistic_factor: Decimal = Decimal("0.9"),
        assumed_elapsed_days: int = 180,
        on_time_tolerance_days: int = 7,
    ) -> ForecastScenarios:
        """
        Baseline, optimistic and pessimistic completion forecasts.

        Completion dates come from ``forecast_completion_date`` when a
        planned end is known.  Without one, the total duration is inferred
        from percent complete (EV / BAC) over ``assumed_elapsed_days``; the
        date is None when that inference is undefined (no progress, no
        budget or SPI <= 0).
        """
        bac, ac, ev = to_decimal(bac), to_decimal(ac), to_decimal(ev)
        cpi, spi = to_decimal(cpi), to_decimal(spi)

        def completion(scenario_spi: Decimal) -> date | None:
            if planned_end is not None:
                return self.forecast_completion_date(
                    planned_end, scenario_spi, today, on_time_tolerance_days,
                ).forecast_date
            if scenario_spi <= ZERO or bac <= ZERO or ev <= ZERO:
                return None
            elapsed = Decimal(assumed_elapsed_days)
            total_days = elapsed / (ev / bac)
            remaining = max(ZERO, total_days - elapsed)
            return today + timedelta(days=truncate_to_int(remaining / scenario_spi))

        def scenario(name: str, s_cpi: Decimal, s_spi: Decimal, method: ForecastMethod) -> ForecastScenario:
            if method is ForecastMethod.CPI:
                eac = _eac_by_cpi(bac, ac, s_cpi)
            else:
                eac = _eac_by_cpi_spi(bac, ac, ev, s_cpi, s_spi)
            return ForecastScenario(
                name=name,
                cpi=round_ratio(s_cpi),
                spi=round_ratio(s_spi),
                method=method,
                eac=round_money(eac),
                completion_date=completion(s_spi),
            )

        return ForecastScenarios(
            baseline=scenario("baseline", cpi, spi, ForecastMethod.CPI),
            optimistic=scenario(
                "optimistic", cpi * optimistic_factor, spi * optimistic_factor, ForecastMethod.CPI,
            ),
            pessimistic=scenario(
                "pessimistic", cpi * pessimistic_factor, spi * pessimistic_factor, ForecastMethod.CPI_SPI,
            ),
        )

    @traced_engine("evm_required_performance", "1.0", fingerprint_fields=("bac", "ac", "ev", "target_eac"))
    def required_performance(
        self,
        bac: Decimal,
        ac: Decimal,
        ev: Decimal,
        target_eac: Decimal | None = None,
    ) -> RequiredPerformance:
        """
        TCPI needed to finish at BAC and at ``target_eac`` (default BAC).

        Feasible means TCPI against the target is at most 1.1 and the
        target is not already exhausted.
        """
        bac, ac, ev = to_decimal(bac), to_decimal(ac), to_decimal(ev)
        target = to_decimal(target_eac) if target_eac is not None else bac
        remaining_work = bac - ev

        tcpi_bac = _tcpi(remaining_work, bac - ac)
        tcpi_eac = _tcpi(remaining_work, target - ac)
        impossible = tcpi_eac is None
        feasible = not impossible and tcpi_eac <= _FEASIBLE_TCPI

        return RequiredPerformance(
            tcpi_bac=round_ratio(tcpi_bac) if tcpi_bac is not None else round_ratio(ZERO),
            tcpi_eac=round_ratio(tcpi_eac) if tcpi_eac is not None else round_ratio(ZERO),
            target_eac=round_money(target),
            feasible=feasible,
            impossible=impossible,
            message=_improvement_message(tcpi_eac),
        )
