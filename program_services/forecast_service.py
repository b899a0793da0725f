"""
program_services.forecast_service -- Forecasts over a program's latest snapshot.

Responsibility:
    Resolve the latest EVM snapshot of a program and run the pure
    ForecastEngine over its measures: EAC by method, completion date,
    confidence from recent history, scenarios and required performance.

Architecture position:
    Services -- thin orchestration.  Reads snapshots through SnapshotStore
    and the clock; all arithmetic lives in program_engines.forecasting.

Failure modes:
    - SnapshotNotFoundError when the program has no snapshot yet.
    - ValueError for an unknown forecast method.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from program_config.schema import ForecastSettings
from program_kernel.domain.clock import Clock
from program_kernel.domain.records import EVMSnapshot
from program_kernel.exceptions import SnapshotNotFoundError
from program_kernel.logging_config import get_logger
from program_engines.forecasting import (
    CompletionForecast,
    ConfidenceLevel,
    EACForecast,
    ForecastEngine,
    ForecastMethod,
    ForecastScenarios,
    RequiredPerformance,
)
from program_services.snapshot_service import SnapshotStore

logger = get_logger("services.forecast")


class ForecastService:
    """
    Forecasts from the most recent snapshot.

    Contract:
        Read-only; never writes to the store.
    Non-goals:
        - Does not create a snapshot when none exists.
    """

    def __init__(
        self,
        snapshots: SnapshotStore,
        clock: Clock,
        settings: ForecastSettings | None = None,
    ):
        self._snapshots = snapshots
        self._clock = clock
        self._settings = settings or ForecastSettings()
        self._engine = ForecastEngine()

    def _latest(self, program_id: str) -> EVMSnapshot:
        snapshot = self._snapshots.latest(program_id)
        if snapshot is None:
            logger.warning("forecast_no_snapshot", extra={"program_id": program_id})
            raise SnapshotNotFoundError(program_id=program_id)
        return snapshot

    def forecast_at_completion(
        self,
        program_id: str,
        method: ForecastMethod | str = ForecastMethod.CPI,
    ) -> EACForecast:
        snap = self._latest(program_id)
        return self._engine.forecast_eac(
            bac=snap.bac, ac=snap.ac, ev=snap.ev,
            cpi=snap.cpi, spi=snap.spi, method=method,
        )

    def forecast_completion(self, program_id: str, planned_end: date) -> CompletionForecast:
        snap = self._latest(program_id)
        return self._engine.forecast_completion_date(
            planned_end,
            snap.spi,
            self._clock.today(),
            on_time_tolerance_days=self._settings.on_time_tolerance_days,
        )

    def assess_confidence(self, program_id: str) -> ConfidenceLevel:
        history = self._snapshots.history(
            program_id, months=self._settings.confidence_window_months,
        )
        return self._engine.assess_confidence(
            history,
            self._clock.today(),
            window_months=self._settings.confidence_window_months,
        )

    def scenarios(self, program_id: str, planned_end: date | None = None) -> ForecastScenarios:
        snap = self._latest(program_id)
        return self._engine.generate_scenarios(
            bac=snap.bac,
            ac=snap.ac,
            ev=snap.ev,
            cpi=snap.cpi,
            spi=snap.spi,
            today=self._clock.today(),
            planned_end=planned_end,
            optimistic_factor=self._settings.optimistic_factor,
            pessimistic_factor=self._settings.pessimistic_factor,
            assumed_elapsed_days=self._settings.assumed_elapsed_days,
            on_time_tolerance_days=self._settings.on_time_tolerance_days,
        )

    def required_performance(
        self,
        program_id: str,
        target_eac: Decimal | None = None,
    ) -> RequiredPerformance:
        snap = self._latest(program_id)
        return self._engine.required_performance(
            bac=snap.bac, ac=snap.ac, ev=snap.ev, target_eac=target_eac,
        )
