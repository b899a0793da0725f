"""
Typed exception hierarchy for the program finance core.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from ProgramFinanceError:

    ProgramFinanceError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- EmptyReasonError
    |   +-- SelfTransferError
    |   +-- InvalidCategoryError
    |   +-- InvalidMeasureError
    |   +-- ZeroAmountTransactionError
    |
    +-- NotFoundError
    |   +-- RecordNotFoundError
    |   +-- BudgetNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- CashFlowNotFoundError
    |   +-- SnapshotNotFoundError
    |
    +-- StateError
    |   +-- BudgetClosedError
    |   +-- BudgetPeriodExpiredError
    |   +-- InsufficientAllocationError
    |   +-- NoRemainingFundsError
    |   +-- NoEligibleTargetsError
    |   +-- AlreadyReconciledError
    |
    +-- ConsistencyError
    |   +-- ReallocationRollbackError
    |   +-- ImmutabilityViolationError
    |   +-- DuplicateRecordError
    |
    +-- ComputationError
        +-- AggregateFetchError

===============================================================================
ERROR CODES
===============================================================================

Every exception class carries a ``code`` class attribute.  Callers branch on
the type or the code, never on the message text.

    Code                        | Exception                   | Typical caller action
    ----------------------------|-----------------------------|----------------------------
    VALIDATION_ERROR            | ValidationError             | Fix the request
    INVALID_AMOUNT              | InvalidAmountError          | Supply a positive amount
    EMPTY_REASON                | EmptyReasonError            | Supply a justification
    SELF_TRANSFER               | SelfTransferError           | Pick a different target
    NOT_FOUND                   | NotFoundError               | Check the identifier
    BUDGET_CLOSED               | BudgetClosedError           | Unfreeze or pick another
    INSUFFICIENT_ALLOCATION     | InsufficientAllocationError | Reduce the amount
    ALREADY_RECONCILED          | AlreadyReconciledError      | Skip the pair
    REALLOCATION_ROLLBACK       | ReallocationRollbackError   | Inspect source notes
    IMMUTABILITY_VIOLATION      | ImmutabilityViolationError  | Create a new record
    AGGREGATE_FETCH_FAILED      | AggregateFetchError         | Retry at the caller

No retries happen at this layer.  Wrapped causes are chained with
``raise ... from exc`` so ``__cause__`` always carries the original failure.
"""

from decimal import Decimal


class ProgramFinanceError(Exception):
    """
    Base exception for all program finance errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROGRAM_FINANCE_ERROR"


# Validation exceptions


class ValidationError(ProgramFinanceError):
    """Request rejected before any state was read or written."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Amount must be strictly positive."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: Decimal, field: str = "amount"):
        self.amount = amount
        self.field = field
        super().__init__(f"{field} must be positive, got {amount}")


class EmptyReasonError(ValidationError):
    """A justification is required for this operation."""

    code: str = "EMPTY_REASON"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"A non-empty reason is required for {operation}")


class SelfTransferError(ValidationError):
    """Source and destination are the same record."""

    code: str = "SELF_TRANSFER"

    def __init__(self, budget_id: str):
        self.budget_id = budget_id
        super().__init__(f"Cannot reallocate budget {budget_id} to itself")


class InvalidCategoryError(ValidationError):
    """Budget category is not one of the known categories."""

    code: str = "INVALID_CATEGORY"

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"Invalid budget category: {category}")


class InvalidMeasureError(ValidationError):
    """An EVM base measure is negative."""

    code: str = "INVALID_MEASURE"

    def __init__(self, measure: str, value: Decimal):
        self.measure = measure
        self.value = value
        super().__init__(f"EVM measure {measure} must be non-negative, got {value}")


class ZeroAmountTransactionError(ValidationError):
    """Only adjustment transactions may carry a zero amount."""

    code: str = "ZERO_AMOUNT_TRANSACTION"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            f"Transaction {transaction_id} has zero amount and is not an adjustment"
        )


# Lookup exceptions


class NotFoundError(ProgramFinanceError):
    """Identifier does not resolve to a stored record."""

    code: str = "NOT_FOUND"


class RecordNotFoundError(NotFoundError):
    """Row not present in a store table."""

    code: str = "RECORD_NOT_FOUND"

    def __init__(self, table: str, row_id: str):
        self.table = table
        self.row_id = row_id
        super().__init__(f"{table} row not found: {row_id}")


class BudgetNotFoundError(NotFoundError):
    code: str = "BUDGET_NOT_FOUND"

    def __init__(self, budget_id: str):
        self.budget_id = budget_id
        super().__init__(f"Budget not found: {budget_id}")


class TransactionNotFoundError(NotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class CashFlowNotFoundError(NotFoundError):
    code: str = "CASH_FLOW_NOT_FOUND"

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Cash flow not found: {flow_id}")


class SnapshotNotFoundError(NotFoundError):
    """No snapshot matches the id, or the program has no snapshots yet."""

    code: str = "SNAPSHOT_NOT_FOUND"

    def __init__(self, snapshot_id: str | None = None, program_id: str | None = None):
        self.snapshot_id = snapshot_id
        self.program_id = program_id
        if snapshot_id is not None:
            msg = f"Snapshot not found: {snapshot_id}"
        else:
            msg = f"No EVM snapshots recorded for program {program_id}"
        super().__init__(msg)


# State exceptions


class StateError(ProgramFinanceError):
    """Record exists but its current state forbids the operation."""

    code: str = "STATE_ERROR"


class BudgetClosedError(StateError):
    code: str = "BUDGET_CLOSED"

    def __init__(self, budget_id: str, operation: str = "modify"):
        self.budget_id = budget_id
        self.operation = operation
        super().__init__(f"Cannot {operation} closed budget {budget_id}")


class BudgetPeriodExpiredError(StateError):
    code: str = "BUDGET_PERIOD_EXPIRED"

    def __init__(self, budget_id: str, period_end: str):
        self.budget_id = budget_id
        self.period_end = period_end
        super().__init__(f"Budget {budget_id} period ended on {period_end}")


class InsufficientAllocationError(StateError):
    """Source budget cannot cover the requested debit."""

    code: str = "INSUFFICIENT_ALLOCATION"

    def __init__(self, budget_id: str, available: Decimal, requested: Decimal):
        self.budget_id = budget_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient allocation in budget {budget_id}: "
            f"available {available}, requested {requested}"
        )


class NoRemainingFundsError(StateError):
    code: str = "NO_REMAINING_FUNDS"

    def __init__(self, budget_id: str, remaining: Decimal):
        self.budget_id = budget_id
        self.remaining = remaining
        super().__init__(
            f"Budget {budget_id} has no remaining funds to distribute ({remaining})"
        )


class NoEligibleTargetsError(StateError):
    code: str = "NO_ELIGIBLE_TARGETS"

    def __init__(self, source_budget_id: str, program_id: str, fiscal_year: str):
        self.source_budget_id = source_budget_id
        self.program_id = program_id
        self.fiscal_year = fiscal_year
        super().__init__(
            f"No eligible budgets in program {program_id} {fiscal_year} "
            f"to receive funds from {source_budget_id}"
        )


class AlreadyReconciledError(StateError):
    """Transaction or cash flow is already linked to a counterpart."""

    code: str = "ALREADY_RECONCILED"

    def __init__(self, record_type: str, record_id: str):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(f"{record_type} {record_id} is already reconciled")


# Consistency exceptions


class ConsistencyError(ProgramFinanceError):
    """Stored state no longer satisfies a cross-row invariant."""

    code: str = "CONSISTENCY_ERROR"


class ReallocationRollbackError(ConsistencyError):
    """
    Destination write failed after the source was debited.

    ``compensated`` is True when the source's prior allocation was restored.
    When False, the source remains debited and needs manual correction.
    """

    code: str = "REALLOCATION_ROLLBACK"

    def __init__(
        self,
        from_budget_id: str,
        to_budget_id: str,
        amount: Decimal,
        compensated: bool,
    ):
        self.from_budget_id = from_budget_id
        self.to_budget_id = to_budget_id
        self.amount = amount
        self.compensated = compensated
        outcome = "source restored" if compensated else "source NOT restored"
        super().__init__(
            f"Reallocation of {amount} from {from_budget_id} to {to_budget_id} "
            f"failed at destination; {outcome}"
        )


class ImmutabilityViolationError(ConsistencyError):
    """Attempted to modify a frozen record or rewrite an append-only field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class DuplicateRecordError(ConsistencyError):
    code: str = "DUPLICATE_RECORD"

    def __init__(self, table: str, row_id: str):
        self.table = table
        self.row_id = row_id
        super().__init__(f"{table} row already exists: {row_id}")


# Computation exceptions


class ComputationError(ProgramFinanceError):
    """An upstream input needed for a calculation could not be produced."""

    code: str = "COMPUTATION_ERROR"


class AggregateFetchError(ComputationError):
    code: str = "AGGREGATE_FETCH_FAILED"

    def __init__(self, program_id: str, as_of: str, detail: str):
        self.program_id = program_id
        self.as_of = as_of
        self.detail = detail
        super().__init__(
            f"Failed to fetch EVM aggregates for program {program_id} "
            f"as of {as_of}: {detail}"
        )
