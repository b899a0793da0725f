"""SQLAlchemy ORM models. Importing this package registers every table on Base.metadata."""

from program_kernel.models.budget import BudgetModel
from program_kernel.models.snapshot import EVMSnapshotModel
from program_kernel.models.transaction import CashFlowModel, TransactionModel

__all__ = [
    "BudgetModel",
    "CashFlowModel",
    "EVMSnapshotModel",
    "TransactionModel",
]
