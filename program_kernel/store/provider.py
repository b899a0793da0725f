"""
Program data providers: the source of the four EVM base measures.

``ProgramDataProvider`` is the interface SnapshotStore depends on.
``BudgetLedgerDataProvider`` derives AC and BAC from the budget table and
delegates PV and EV, which depend on schedule and deliverable progress, to a
pluggable ``WorkProgressSource``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Protocol

from program_kernel.domain.records import Budget, ProgramAggregates
from program_kernel.domain.values import ZERO, round_money
from program_kernel.store.row_store import RowStore, Table


class ProgramDataProvider(Protocol):
    """Aggregate PV/EV/AC/BAC by program and as-of date."""

    def get_aggregates(self, program_id: str, as_of: date) -> ProgramAggregates:
        ...


class WorkProgressSource(Protocol):
    """Scheduled and earned work for a program, in budget currency."""

    def planned_value(self, program_id: str, as_of: date) -> Decimal:
        ...

    def earned_value(self, program_id: str, as_of: date) -> Decimal:
        ...


class BudgetLedgerDataProvider:
    """
    AC = sum of budget ``spent``; BAC = sum of budget ``allocated``.

    Closed budgets still count: their spend and allocation are part of the
    program baseline.
    """

    def __init__(self, store: RowStore, progress: WorkProgressSource):
        self._store = store
        self._progress = progress

    def get_aggregates(self, program_id: str, as_of: date) -> ProgramAggregates:
        budgets: list[Budget] = self._store.list(Table.BUDGETS, program_id=program_id)
        ac = sum((b.spent for b in budgets), ZERO)
        bac = sum((b.allocated for b in budgets), ZERO)
        return ProgramAggregates(
            pv=round_money(self._progress.planned_value(program_id, as_of)),
            ev=round_money(self._progress.earned_value(program_id, as_of)),
            ac=round_money(ac),
            bac=round_money(bac),
        )
