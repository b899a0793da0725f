"""
Pytest configuration and fixtures for the program finance core tests.

Database tests run against an in-memory SQLite database.  Each test gets a
fresh engine, fresh tables and a fresh session; the immutability listeners
are registered for the whole run so that every store write goes through
the same ORM checks as production.
"""

import json
import logging
from collections.abc import Callable, Generator
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from program_config import get_active_settings
from program_config.schema import FinancialSettings
from program_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from program_kernel.db.immutability import register_immutability_listeners
from program_kernel.domain.clock import DeterministicClock
from program_kernel.domain.periods import reporting_period
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
    PerformanceTrend,
    ProgramAggregates,
    TransactionType,
)
from program_kernel.exceptions import RecordNotFoundError
from program_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from program_kernel.store import SqlAlchemyRowStore, Table
from program_services.snapshot_service import SnapshotStore

TEST_PROGRAM_ID = "PROG-001"
TEST_ACTOR = "test.analyst"


class FixedAggregates:
    """Data provider returning the same measures for every as-of date."""

    def __init__(self, pv="100000", ev="110000", ac="95000", bac="200000"):
        self.aggregates = ProgramAggregates(
            pv=Decimal(pv), ev=Decimal(ev), ac=Decimal(ac), bac=Decimal(bac),
        )
        self.calls: list[tuple[str, date]] = []

    def get_aggregates(self, program_id: str, as_of: date) -> ProgramAggregates:
        self.calls.append((program_id, as_of))
        return self.aggregates


class FailingUpdates:
    """
    RowStore wrapper whose ``update`` fails for chosen rows.

    ``fail_after`` maps a row id to the number of updates allowed before
    every further update of that row raises RecordNotFoundError.
    """

    def __init__(self, inner, fail_after: dict[str, int]):
        self._inner = inner
        self._remaining = dict(fail_after)

    def get(self, table, row_id):
        return self._inner.get(table, row_id)

    def list(self, table, **filters):
        return self._inner.list(table, **filters)

    def append(self, table, record):
        return self._inner.append(table, record)

    def delete(self, table, row_id):
        self._inner.delete(table, row_id)

    def next_id(self, table):
        return self._inner.next_id(table)

    def atomic(self):
        return self._inner.atomic()

    def update(self, table, record):
        row_id = table.id_of(record)
        if row_id in self._remaining:
            if self._remaining[row_id] <= 0:
                raise RecordNotFoundError(table.value, row_id)
            self._remaining[row_id] -= 1
        return self._inner.update(table, record)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def _configure_test_logging():
    """Enable structured logging at DEBUG for the whole test session."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs() -> Generator[Callable[[], list[dict]], None, None]:
    """
    Capture JSON log lines emitted under ``program_kernel``.

    Returns a callable that parses everything captured so far.
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("program_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _records() -> list[dict]:
        return [json.loads(line) for line in stream.getvalue().splitlines() if line]

    yield _records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite engine with all tables created."""
    eng = init_engine_from_url("sqlite://")
    create_tables()
    register_immutability_listeners()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    sess = get_session()
    yield sess
    try:
        sess.rollback()
    finally:
        sess.close()


@pytest.fixture
def store(session) -> SqlAlchemyRowStore:
    return SqlAlchemyRowStore(session)


@pytest.fixture
def reject_updates() -> Generator[Callable[..., None], None, None]:
    """
    Make UPDATEs of chosen rows fail during flush.

    Call with a model class and row ids; a before_update listener raises
    SQLAlchemyError for those rows.  Listeners are removed on teardown.
    """
    registered = []

    def _reject(model_cls, *row_ids: str) -> None:
        def _listener(mapper, connection, target):
            if target.row_id in row_ids:
                raise SQLAlchemyError(f"update rejected for {target.row_id}")

        event.listen(model_cls, "before_update", _listener)
        registered.append((model_cls, _listener))

    yield _reject

    for model_cls, listener in registered:
        event.remove(model_cls, "before_update", listener)


# =============================================================================
# Clock and settings
# =============================================================================


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    """Clock fixed at 2024-03-15 12:00 UTC."""
    return DeterministicClock(datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> FinancialSettings:
    return get_active_settings()


# =============================================================================
# Test data generators
# =============================================================================


@pytest.fixture
def create_budget(store) -> Callable[..., Budget]:
    """Factory fixture to append budgets (FY2023: 2023-10-01 to 2024-09-30)."""

    def _create_budget(
        budget_id: str,
        allocated: Decimal | str = "100000.00",
        spent: Decimal | str = "0",
        committed: Decimal | str = "0",
        category: BudgetCategory = BudgetCategory.LABOR,
        status: BudgetStatus = BudgetStatus.ACTIVE,
        program_id: str = TEST_PROGRAM_ID,
        fiscal_year: str = "FY2023",
        period_start: date = date(2023, 10, 1),
        period_end: date = date(2024, 9, 30),
        notes: str = "",
    ) -> Budget:
        budget = Budget(
            budget_id=budget_id,
            program_id=program_id,
            name=f"{category.value.title()} budget {budget_id}",
            category=category,
            allocated=Decimal(allocated),
            committed=Decimal(committed),
            spent=Decimal(spent),
            fiscal_year=fiscal_year,
            period_start=period_start,
            period_end=period_end,
            status=status,
            notes=notes,
        )
        return store.append(Table.BUDGETS, budget)

    return _create_budget


@pytest.fixture
def create_transaction(store) -> Callable[..., FinancialTransaction]:
    def _create_transaction(
        transaction_id: str,
        amount: Decimal | str,
        transaction_date: date = date(2024, 3, 1),
        type: TransactionType = TransactionType.EXPENSE,
        description: str = "Vendor invoice",
        budget_id: str | None = None,
        program_id: str = TEST_PROGRAM_ID,
        reconciled: bool = False,
        cash_flow_id: str | None = None,
        notes: str = "",
    ) -> FinancialTransaction:
        transaction = FinancialTransaction(
            transaction_id=transaction_id,
            program_id=program_id,
            type=type,
            amount=Decimal(amount),
            transaction_date=transaction_date,
            description=description,
            budget_id=budget_id,
            reconciled=reconciled,
            cash_flow_id=cash_flow_id,
            notes=notes,
        )
        return store.append(Table.TRANSACTIONS, transaction)

    return _create_transaction


@pytest.fixture
def create_cash_flow(store) -> Callable[..., CashFlow]:
    def _create_cash_flow(
        flow_id: str,
        amount: Decimal | str,
        forecast_date: date = date(2024, 3, 1),
        type: CashFlowType = CashFlowType.OUTFLOW,
        status: CashFlowStatus = CashFlowStatus.SCHEDULED,
        description: str = "Scheduled payment",
        program_id: str = TEST_PROGRAM_ID,
        reconciled_transaction_id: str | None = None,
        notes: str = "",
    ) -> CashFlow:
        flow = CashFlow(
            flow_id=flow_id,
            program_id=program_id,
            type=type,
            amount=Decimal(amount),
            forecast_date=forecast_date,
            status=status,
            description=description,
            reconciled_transaction_id=reconciled_transaction_id,
            notes=notes,
        )
        return store.append(Table.CASH_FLOWS, flow)

    return _create_cash_flow


@pytest.fixture
def make_snapshot() -> Callable[..., EVMSnapshot]:
    """
    Factory for in-memory snapshots (not persisted).

    Only the fields a test cares about need passing; metrics not given are
    zero and the base measures default to a 1,000 budget.
    """

    def _make_snapshot(
        snapshot_id: str,
        snapshot_date: date,
        cpi: Decimal | str = "1",
        spi: Decimal | str = "1",
        cv: Decimal | str = "0",
        sv: Decimal | str = "0",
        health_score: int | None = None,
        notes: str = "",
        program_id: str = TEST_PROGRAM_ID,
        pv: Decimal | str = "500",
        ev: Decimal | str = "500",
        ac: Decimal | str = "500",
        bac: Decimal | str = "1000",
    ) -> EVMSnapshot:
        zero = Decimal("0")
        metrics = EVMMetrics(
            cv=Decimal(cv), sv=Decimal(sv),
            cv_percent=zero, sv_percent=zero,
            cpi=Decimal(cpi), spi=Decimal(spi),
            eac=zero, etc=zero, vac=zero, tcpi=zero,
        )
        return EVMSnapshot(
            snapshot_id=snapshot_id,
            program_id=program_id,
            snapshot_date=snapshot_date,
            reporting_period=reporting_period(snapshot_date),
            pv=Decimal(pv), ev=Decimal(ev), ac=Decimal(ac), bac=Decimal(bac),
            metrics=metrics,
            percent_complete=Decimal("50.00"),
            percent_schedule_complete=Decimal("50.00"),
            trend=PerformanceTrend.STABLE,
            calculated_by=TEST_ACTOR,
            calculated_date=datetime(
                snapshot_date.year, snapshot_date.month, snapshot_date.day, tzinfo=timezone.utc,
            ),
            notes=notes,
            health_score=health_score,
        )

    return _make_snapshot


@pytest.fixture
def record_snapshot(store, make_snapshot) -> Callable[..., EVMSnapshot]:
    """Persist a snapshot built by ``make_snapshot``."""

    def _record_snapshot(snapshot_id: str, snapshot_date: date, **fields) -> EVMSnapshot:
        return store.append(Table.SNAPSHOTS, make_snapshot(snapshot_id, snapshot_date, **fields))

    return _record_snapshot


@pytest.fixture
def snapshot_store(store, deterministic_clock, settings) -> SnapshotStore:
    return SnapshotStore(store, FixedAggregates(), deterministic_clock, settings.snapshots)
