"""
Module: program_kernel.store.row_store
Responsibility: Row-oriented access to the four ledger tables (budgets,
    transactions, cash flows, EVM snapshots) behind the ``RowStore``
    protocol, plus the SQLAlchemy-backed implementation.
Architecture position: Kernel > Store.  Services receive a RowStore handle
    at construction; nothing in this package holds global client state.

Invariants enforced:
    - Snapshot rows are insert-only: ``update(Table.SNAPSHOTS, ...)`` raises
      before anything reaches the session.
    - ``next_id`` yields ``{PREFIX}-{n:03d}`` one past the highest stored
      suffix for the table.
    - Writes flush but never commit.  Each write runs in its own SAVEPOINT,
      so a write that fails at flush leaves the session usable and the
      rows as they were before the call.
    - ``atomic()`` groups several writes into one SAVEPOINT: all land or
      none do.

Failure modes:
    - RecordNotFoundError on update/delete of an unknown id.
    - DuplicateRecordError on append of an id that already exists.
    - ImmutabilityViolationError on snapshot update, or on a notes rewrite
      (raised from the ORM listener during flush).
"""

from __future__ import annotations

import re
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import select
from sqlalchemy.orm import Session

from program_kernel.db.base import Base
from program_kernel.domain.records import Budget, CashFlow, EVMSnapshot, FinancialTransaction
from program_kernel.exceptions import (
    DuplicateRecordError,
    ImmutabilityViolationError,
    RecordNotFoundError,
)
from program_kernel.logging_config import get_logger
from program_kernel.models import BudgetModel, CashFlowModel, EVMSnapshotModel, TransactionModel

logger = get_logger("store.row_store")

Record = Budget | FinancialTransaction | CashFlow | EVMSnapshot


class Table(str, Enum):
    BUDGETS = "Budgets"
    TRANSACTIONS = "Transactions"
    CASH_FLOWS = "Cash Flows"
    SNAPSHOTS = "EVM Snapshots"

    @property
    def id_prefix(self) -> str:
        return _ID_PREFIXES[self]

    @property
    def id_field(self) -> str:
        return _ID_FIELDS[self]

    def id_of(self, record: Record) -> str:
        return getattr(record, self.id_field)


_ID_PREFIXES = {
    Table.BUDGETS: "BUD",
    Table.TRANSACTIONS: "TXN",
    Table.CASH_FLOWS: "CF",
    Table.SNAPSHOTS: "SNAP",
}

_ID_FIELDS = {
    Table.BUDGETS: "budget_id",
    Table.TRANSACTIONS: "transaction_id",
    Table.CASH_FLOWS: "flow_id",
    Table.SNAPSHOTS: "snapshot_id",
}

_MODELS: dict[Table, type[Base]] = {
    Table.BUDGETS: BudgetModel,
    Table.TRANSACTIONS: TransactionModel,
    Table.CASH_FLOWS: CashFlowModel,
    Table.SNAPSHOTS: EVMSnapshotModel,
}


@runtime_checkable
class RowStore(Protocol):
    """
    Row-oriented store over named tables.

    Implementations return frozen records from ``program_kernel.domain.records``
    and accept the same records on write.  ``list`` filters are equality
    matches on record field names; enum values may be passed as enums.
    ``atomic()`` returns a context manager; writes made inside it are kept
    together or undone together.
    """

    def get(self, table: Table, row_id: str) -> Any | None: ...

    def list(self, table: Table, **filters: Any) -> list[Any]: ...

    def append(self, table: Table, record: Any) -> Any: ...

    def update(self, table: Table, record: Any) -> Any: ...

    def delete(self, table: Table, row_id: str) -> None: ...

    def next_id(self, table: Table) -> str: ...

    def atomic(self) -> Any: ...


class SqlAlchemyRowStore:
    """
    RowStore over a caller-owned SQLAlchemy Session.

    Contract:
        The caller owns the transaction boundary; this class only flushes,
        inside SAVEPOINTs it opens and closes itself.

    Non-goals:
        No row-level compare-and-set.  Concurrent read-modify-write of the
        same budget must be serialized by the caller.
    """

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def get(self, table: Table, row_id: str) -> Any | None:
        model = self._session.get(_MODELS[table], row_id)
        return model.to_dto() if model is not None else None

    def list(self, table: Table, **filters: Any) -> list[Any]:
        model_cls = _MODELS[table]
        criteria = {
            key: value.value if isinstance(value, Enum) else value
            for key, value in filters.items()
        }
        stmt = (
            select(model_cls)
            .filter_by(**criteria)
            .order_by(getattr(model_cls, table.id_field))
        )
        return [row.to_dto() for row in self._session.scalars(stmt)]

    def append(self, table: Table, record: Any) -> Any:
        model_cls = _MODELS[table]
        row_id = table.id_of(record)
        if self._session.get(model_cls, row_id) is not None:
            raise DuplicateRecordError(table.value, row_id)

        with self._session.begin_nested():
            self._session.add(model_cls.from_dto(record))
            self._session.flush()
        logger.debug("row_appended", extra={"table": table.value, "row_id": row_id})
        return record

    def update(self, table: Table, record: Any) -> Any:
        row_id = table.id_of(record)
        if table is Table.SNAPSHOTS:
            raise ImmutabilityViolationError(
                entity_type="EVMSnapshot",
                entity_id=row_id,
                reason="snapshots are frozen at creation",
            )

        model = self._session.get(_MODELS[table], row_id)
        if model is None:
            raise RecordNotFoundError(table.value, row_id)

        with self._session.begin_nested():
            model.apply_dto(record)
            self._session.flush()
        logger.debug("row_updated", extra={"table": table.value, "row_id": row_id})
        return model.to_dto()

    def delete(self, table: Table, row_id: str) -> None:
        model = self._session.get(_MODELS[table], row_id)
        if model is None:
            raise RecordNotFoundError(table.value, row_id)
        with self._session.begin_nested():
            self._session.delete(model)
            self._session.flush()
        logger.debug("row_deleted", extra={"table": table.value, "row_id": row_id})

    def next_id(self, table: Table) -> str:
        model_cls = _MODELS[table]
        prefix = table.id_prefix
        id_column = getattr(model_cls, table.id_field)
        pattern = re.compile(rf"^{prefix}-(\d+)$")

        highest = 0
        for existing in self._session.scalars(
            select(id_column).where(id_column.like(f"{prefix}-%"))
        ):
            match = pattern.match(existing)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix}-{highest + 1:03d}"

    @contextmanager
    def atomic(self) -> Iterator[None]:
        """
        Run a group of writes in one SAVEPOINT.

        Postconditions: On normal exit the savepoint is released.  On
            exception it is rolled back, every row written inside the block
            reverts to its state at entry, and the exception is re-raised.
        """
        savepoint = self._session.begin_nested()
        try:
            yield
        except Exception:
            savepoint.rollback()
            logger.debug("atomic_block_rolled_back", exc_info=True)
            raise
        savepoint.commit()
