"""
program_services.snapshot_service -- Immutable EVM snapshot capture and history.

Responsibility:
    Capture a program's EVM position as an immutable snapshot (base
    measures, derived metrics, health score and status, trend label), list
    and fetch snapshots, return date-windowed history for trend analysis,
    compare two snapshots, and hard-delete a snapshot on explicit admin
    request.

Architecture position:
    Services -- orchestration over engines + kernel.
    Composes MetricsEngine (pure) with a ProgramDataProvider and a RowStore.

Invariants enforced:
    - Snapshots are created only here and are never updated.  The row store
      and an ORM listener both reject updates.
    - Stored metrics are exactly ``MetricsEngine.compute(pv, ev, ac, bac)``.
    - ``health_score`` is persisted first-class; ``notes`` carries the same
      value as ``Health: {status} (score: {score})``.

Failure modes:
    - AggregateFetchError: the data provider failed (chained cause).
    - SnapshotNotFoundError: unknown snapshot id.

Audit relevance:
    ``snapshot_created`` and ``snapshot_deleted`` log events carry the
    snapshot id and actor.  Deletes log at WARNING.

Usage:
    store = SqlAlchemyRowStore(session)
    snapshots = SnapshotStore(store, provider, clock)
    snap = snapshots.create("PROG-001", actor="pm.jones")
"""

from __future__ import annotations

import time
from datetime import date
from decimal import Decimal

from program_config.schema import SnapshotSettings
from program_kernel.domain.clock import Clock
from program_kernel.domain.periods import add_months, reporting_period
from program_kernel.domain.records import EVMSnapshot, PerformanceTrend
from program_kernel.domain.values import percent_of, round_money, round_ratio
from program_kernel.exceptions import AggregateFetchError, SnapshotNotFoundError
from program_kernel.logging_config import get_logger
from program_kernel.store import ProgramDataProvider, RowStore, Table
from program_engines.metrics import MetricsEngine, classify_trend
from program_services._result_types import SnapshotComparison

logger = get_logger("services.snapshots")


class SnapshotStore:
    """
    Persists immutable EVM captures.

    Contract:
        Receives RowStore, ProgramDataProvider and Clock via constructor
        injection.  Flushes through the store; never commits.
    Guarantees:
        - ``list`` is newest first; ``history`` is oldest first.
        - ``compare`` never raises for snapshots without a stored score.
    Non-goals:
        - Does not schedule periodic captures.
    """

    def __init__(
        self,
        store: RowStore,
        provider: ProgramDataProvider,
        clock: Clock,
        settings: SnapshotSettings | None = None,
    ):
        self._store = store
        self._provider = provider
        self._clock = clock
        self._settings = settings or SnapshotSettings()
        self._metrics = MetricsEngine()

    def create(
        self,
        program_id: str,
        snapshot_date: date | None = None,
        actor: str = "system",
        project_id: str | None = None,
    ) -> EVMSnapshot:
        """
        Capture the program's EVM position as of ``snapshot_date``.

        Raises:
            AggregateFetchError: If the provider cannot supply PV/EV/AC/BAC.
        """
        t0 = time.monotonic()
        as_of = snapshot_date or self._clock.today()

        try:
            aggregates = self._provider.get_aggregates(program_id, as_of)
        except Exception as exc:
            logger.error("snapshot_aggregate_fetch_failed", extra={
                "program_id": program_id,
                "as_of": as_of.isoformat(),
                "error": str(exc),
            })
            raise AggregateFetchError(program_id, as_of.isoformat(), str(exc)) from exc

        metrics = self._metrics.compute(
            aggregates.pv, aggregates.ev, aggregates.ac, aggregates.bac,
        )
        health = self._metrics.health_index(metrics, aggregates.bac)

        snapshot = EVMSnapshot(
            snapshot_id=self._store.next_id(Table.SNAPSHOTS),
            program_id=program_id,
            project_id=project_id,
            snapshot_date=as_of,
            reporting_period=reporting_period(as_of),
            pv=aggregates.pv,
            ev=aggregates.ev,
            ac=aggregates.ac,
            bac=aggregates.bac,
            metrics=metrics,
            percent_complete=percent_of(aggregates.ev, aggregates.bac),
            percent_schedule_complete=percent_of(aggregates.pv, aggregates.bac),
            trend=classify_trend(metrics, health.status),
            health_score=health.score,
            health_status=health.status,
            calculated_by=actor,
            calculated_date=self._clock.now_utc(),
            notes=f"Health: {health.status.value} (score: {health.score})",
        )
        self._store.append(Table.SNAPSHOTS, snapshot)

        logger.info("snapshot_created", extra={
            "snapshot_id": snapshot.snapshot_id,
            "program_id": program_id,
            "snapshot_date": as_of.isoformat(),
            "health_status": health.status.value,
            "health_score": health.score,
            "actor_id": actor,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return snapshot

    def get(self, snapshot_id: str) -> EVMSnapshot:
        snapshot = self._store.get(Table.SNAPSHOTS, snapshot_id)
        if snapshot is None:
            raise SnapshotNotFoundError(snapshot_id=snapshot_id)
        return snapshot

    def list(
        self,
        program_id: str,
        start: date | None = None,
        end: date | None = None,
        limit: int | None = None,
    ) -> list[EVMSnapshot]:
        """Snapshots within [start, end], newest first, at most ``limit`` (capped)."""
        if limit is None:
            limit = self._settings.default_list_limit
        limit = min(max(limit, 0), self._settings.max_list_limit)
        snapshots = [
            s for s in self._store.list(Table.SNAPSHOTS, program_id=program_id)
            if (start is None or s.snapshot_date >= start)
            and (end is None or s.snapshot_date <= end)
        ]
        snapshots.sort(key=lambda s: (s.snapshot_date, s.snapshot_id), reverse=True)
        return snapshots[:limit]

    def latest(self, program_id: str) -> EVMSnapshot | None:
        newest = self.list(program_id, limit=1)
        return newest[0] if newest else None

    def history(self, program_id: str, months: int | None = None) -> list[EVMSnapshot]:
        """Snapshots over the ``months`` ending today, oldest first."""
        months = months if months is not None else self._settings.default_history_months
        today = self._clock.today()
        snapshots = self.list(
            program_id,
            start=add_months(today, -months),
            end=today,
            limit=self._settings.max_list_limit,
        )
        snapshots.reverse()
        return snapshots

    def compare(self, baseline: EVMSnapshot, current: EVMSnapshot) -> SnapshotComparison:
        """
        Movement from ``baseline`` to ``current``.

        An index moving by more than the trend threshold either way is
        improving or declining; otherwise stable.
        """
        threshold = self._settings.trend_delta_threshold
        default_score = self._settings.legacy_default_health_score

        cpi_delta = current.cpi - baseline.cpi
        spi_delta = current.spi - baseline.spi
        baseline_score, baseline_inferred = baseline.resolve_health_score(default_score)
        current_score, current_inferred = current.resolve_health_score(default_score)

        return SnapshotComparison(
            baseline=baseline,
            current=current,
            cpi_trend=_direction(cpi_delta, threshold),
            spi_trend=_direction(spi_delta, threshold),
            cpi_delta=round_ratio(cpi_delta),
            spi_delta=round_ratio(spi_delta),
            cost_delta=round_money(current.metrics.cv - baseline.metrics.cv),
            schedule_delta=round_money(current.metrics.sv - baseline.metrics.sv),
            health_delta=current_score - baseline_score,
            health_score_inferred=baseline_inferred or current_inferred,
        )

    def delete(self, snapshot_id: str, actor: str) -> None:
        """Hard delete.  Administrative correction only."""
        if self._store.get(Table.SNAPSHOTS, snapshot_id) is None:
            raise SnapshotNotFoundError(snapshot_id=snapshot_id)
        self._store.delete(Table.SNAPSHOTS, snapshot_id)
        logger.warning("snapshot_deleted", extra={
            "snapshot_id": snapshot_id,
            "actor_id": actor,
        })


def _direction(delta: Decimal, threshold: Decimal) -> PerformanceTrend:
    if delta > threshold:
        return PerformanceTrend.IMPROVING
    if delta < -threshold:
        return PerformanceTrend.DECLINING
    return PerformanceTrend.STABLE
