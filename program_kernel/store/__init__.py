"""Row store and program data provider interfaces."""

from program_kernel.store.provider import (
    BudgetLedgerDataProvider,
    ProgramDataProvider,
    WorkProgressSource,
)
from program_kernel.store.row_store import RowStore, SqlAlchemyRowStore, Table

__all__ = [
    "BudgetLedgerDataProvider",
    "ProgramDataProvider",
    "RowStore",
    "SqlAlchemyRowStore",
    "Table",
    "WorkProgressSource",
]
