"""
program_services.allocation_service -- Budget allocation ledger.

Responsibility:
    Budget lifecycle operations against the ledger: reallocation between
    budgets, allocation to a category, proportional distribution of a
    budget's remaining funds, allocation validation, freeze/unfreeze and
    program allocation summaries.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes DistributionEngine (pure) with a RowStore and a Clock.

Invariants enforced:
    - Reallocation debits one budget's ``allocated`` and credits another's
      by the same amount.  Neither may be closed; the source must hold the
      amount before the debit.
    - Every mutation of ``allocated`` or ``status`` appends a timestamped,
      attributed line to ``notes``.  Notes are never rewritten.
    - Reallocation is a two-step compensating saga: source first, then
      destination; a destination failure restores the source's prior
      allocation and annotates it with a ROLLBACK line.

Failure modes:
    - ValidationError subclasses for bad amounts, empty reasons, self
      transfers and unknown categories.
    - BudgetNotFoundError for unknown budgets.
    - StateError subclasses for closed budgets, insufficient allocation,
      no remaining funds and no eligible distribution targets.
    - ReallocationRollbackError when the destination write fails.

Audit relevance:
    Notes are the per-budget audit log.  Log events ``reallocation_completed``,
    ``reallocation_compensated``, ``budget_allocated``, ``funds_distributed``,
    ``budget_frozen`` and ``budget_unfrozen`` carry actor and amounts.

Usage:
    ledger = AllocationLedger(SqlAlchemyRowStore(session), clock)
    result = ledger.reallocate(
        "BUD-001", "BUD-002", Decimal("5000.00"),
        reason="Shift to materials", approved_by="cfo",
    )
"""

from __future__ import annotations

import dataclasses
import time
from decimal import Decimal

from program_config.schema import AllocationSettings
from program_kernel.domain.clock import Clock
from program_kernel.domain.periods import fiscal_year_bounds
from program_kernel.domain.records import (
    Budget,
    BudgetCategory,
    BudgetStatus,
    append_note,
    fiscal_year_label,
    parse_fiscal_year,
)
from program_kernel.domain.values import (
    ZERO,
    format_amount,
    percent_of,
    round_money,
    to_decimal,
)
from program_kernel.exceptions import (
    BudgetClosedError,
    BudgetNotFoundError,
    EmptyReasonError,
    InsufficientAllocationError,
    InvalidAmountError,
    InvalidCategoryError,
    NoEligibleTargetsError,
    NoRemainingFundsError,
    ReallocationRollbackError,
    SelfTransferError,
)
from program_kernel.logging_config import get_logger
from program_kernel.store import RowStore, Table
from program_engines.distribution import DistributionEngine, DistributionTarget
from program_services._result_types import (
    ITEM_FAILURES,
    AllocationSummary,
    AllocationValidation,
    DistributionResult,
    ItemFailure,
    ReallocationResult,
)

logger = get_logger("services.allocation")


class AllocationLedger:
    """
    Budget allocation operations.

    Contract:
        Receives RowStore and Clock via constructor injection.  Flushes
        through the store; the caller owns commit.
    Guarantees:
        - Validation failures raise before any write.
        - ``freeze``/``unfreeze`` on a budget already in the target state
          writes nothing.
        - ``validate`` never raises for a rule failure.
    Non-goals:
        - No cross-row atomicity beyond the reallocation compensation.
        - Does not serialize concurrent writers to the same budget.
    """

    def __init__(
        self,
        store: RowStore,
        clock: Clock,
        settings: AllocationSettings | None = None,
    ):
        self._store = store
        self._clock = clock
        self._settings = settings or AllocationSettings()
        self._distribution = DistributionEngine()

    def _timestamp(self) -> str:
        return self._clock.now_utc().isoformat()

    def _require(self, budget_id: str) -> Budget:
        budget = self._store.get(Table.BUDGETS, budget_id)
        if budget is None:
            raise BudgetNotFoundError(budget_id)
        return budget

    def _write(self, budget: Budget, actor: str, note: str, **changes) -> Budget:
        updated = dataclasses.replace(
            budget,
            notes=append_note(budget.notes, note),
            modified_by=actor,
            modified_date=self._clock.now_utc(),
            **changes,
        )
        return self._store.update(Table.BUDGETS, updated)

    # =========================================================================
    # Reallocation
    # =========================================================================

    def reallocate(
        self,
        from_budget_id: str,
        to_budget_id: str,
        amount: Decimal,
        reason: str,
        approved_by: str,
    ) -> ReallocationResult:
        """
        Move ``amount`` of allocation from one budget to another.

        Preconditions:
            amount > 0; distinct budgets; non-empty reason.

        Postconditions:
            from.allocated decreases and to.allocated increases by exactly
            ``amount``; both notes gain one attributed line.

        Raises:
            InvalidAmountError, SelfTransferError, EmptyReasonError,
            BudgetNotFoundError, BudgetClosedError,
            InsufficientAllocationError, ReallocationRollbackError.
        """
        t0 = time.monotonic()
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise InvalidAmountError(amount)
        if from_budget_id == to_budget_id:
            raise SelfTransferError(from_budget_id)
        if not reason or not reason.strip():
            raise EmptyReasonError("reallocation")

        source = self._require(from_budget_id)
        destination = self._require(to_budget_id)
        if not source.is_open:
            raise BudgetClosedError(from_budget_id, "reallocate from")
        if not destination.is_open:
            raise BudgetClosedError(to_budget_id, "reallocate to")
        if source.allocated < amount:
            raise InsufficientAllocationError(from_budget_id, source.allocated, amount)

        ts = self._timestamp()
        amt = format_amount(amount)
        currency = source.currency

        debited = self._write(
            source,
            approved_by,
            f"Reallocated {amt} {currency} to {to_budget_id} on {ts}. "
            f"Reason: {reason}. Approved by: {approved_by}",
            allocated=source.allocated - amount,
        )

        try:
            credited = self._write(
                destination,
                approved_by,
                f"Received {amt} {currency} from {from_budget_id} on {ts}. "
                f"Reason: {reason}. Approved by: {approved_by}",
                allocated=destination.allocated + amount,
            )
        except ITEM_FAILURES as exc:
            compensated = self._compensate(debited, source.allocated, approved_by, exc)
            raise ReallocationRollbackError(
                from_budget_id, to_budget_id, amount, compensated,
            ) from exc

        logger.info("reallocation_completed", extra={
            "from_budget_id": from_budget_id,
            "to_budget_id": to_budget_id,
            "amount": amt,
            "currency": currency,
            "actor_id": approved_by,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return ReallocationResult(
            from_budget=debited,
            to_budget=credited,
            amount=amount,
            reason=reason,
            approved_by=approved_by,
        )

    def _compensate(
        self,
        debited: Budget,
        prior_allocated: Decimal,
        actor: str,
        cause: Exception,
    ) -> bool:
        """Restore the source after a failed credit.  True if restored."""
        try:
            self._write(
                debited,
                actor,
                f"ROLLBACK: Destination update failed on {self._timestamp()}",
                allocated=prior_allocated,
            )
        except ITEM_FAILURES:
            logger.error(
                "reallocation_compensation_failed",
                extra={
                    "budget_id": debited.budget_id,
                    "prior_allocated": format_amount(prior_allocated),
                    "cause": str(cause),
                },
                exc_info=True,
            )
            return False

        logger.warning("reallocation_compensated", extra={
            "budget_id": debited.budget_id,
            "restored_allocated": format_amount(prior_allocated),
            "cause": str(cause),
        })
        return True

    # =========================================================================
    # Category allocation
    # =========================================================================

    def allocate_to_category(
        self,
        program_id: str,
        category: BudgetCategory | str,
        amount: Decimal,
        fiscal_year: int,
        actor: str,
    ) -> Budget:
        """
        Add ``amount`` to the program's budget for (category, fiscal year).

        The first open budget matching the identity is incremented; when
        none exists a new active budget is created for the fiscal year's
        Oct 1 to Sep 30 period.

        Raises:
            InvalidAmountError, InvalidCategoryError, BudgetClosedError (all
            matching budgets are closed).
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            raise InvalidAmountError(amount)
        try:
            category = BudgetCategory(category)
        except ValueError as exc:
            raise InvalidCategoryError(str(category)) from exc

        label = fiscal_year_label(fiscal_year)
        ts = self._timestamp()
        amt = format_amount(amount)

        existing = self._store.list(
            Table.BUDGETS, program_id=program_id, category=category, fiscal_year=label,
        )
        if existing:
            open_budgets = [b for b in existing if b.is_open]
            if not open_budgets:
                raise BudgetClosedError(existing[0].budget_id, "allocate to")
            target = open_budgets[0]
            updated = self._write(
                target,
                actor,
                f"Added allocation of {amt} {target.currency} on {ts}. Allocated by: {actor}",
                allocated=target.allocated + amount,
            )
            logger.info("budget_allocated", extra={
                "budget_id": updated.budget_id,
                "program_id": program_id,
                "category": category.value,
                "amount": amt,
                "actor_id": actor,
                "created": False,
            })
            return updated

        period_start, period_end = fiscal_year_bounds(fiscal_year)
        currency = self._settings.default_currency
        now = self._clock.now_utc()
        budget = Budget(
            budget_id=self._store.next_id(Table.BUDGETS),
            program_id=program_id,
            name=f"{category.value.title()} - {label}",
            category=category,
            allocated=amount,
            fiscal_year=label,
            period_start=period_start,
            period_end=period_end,
            currency=currency,
            status=BudgetStatus.ACTIVE,
            notes=f"Initial allocation of {amt} {currency} on {ts}. Allocated by: {actor}",
            created_by=actor,
            created_date=now,
            modified_by=actor,
            modified_date=now,
        )
        self._store.append(Table.BUDGETS, budget)
        logger.info("budget_allocated", extra={
            "budget_id": budget.budget_id,
            "program_id": program_id,
            "category": category.value,
            "amount": amt,
            "actor_id": actor,
            "created": True,
        })
        return budget

    # =========================================================================
    # Distribution
    # =========================================================================

    def distribute_remaining(
        self,
        source_budget_id: str,
        program_id: str,
        fiscal_year: int,
        actor: str,
    ) -> DistributionResult:
        """
        Spread the source budget's remaining funds across under-spent peers.

        Eligible targets share the program and fiscal year, are open, and
        have positive allocation and positive variance.  Shares are
        proportional to variance.  A target whose write fails is recorded
        in ``errors`` and its share stays on the source.

        Raises:
            BudgetNotFoundError, BudgetClosedError, NoRemainingFundsError,
            NoEligibleTargetsError.
        """
        t0 = time.monotonic()
        source = self._require(source_budget_id)
        if not source.is_open:
            raise BudgetClosedError(source_budget_id, "distribute from")
        if source.remaining <= ZERO:
            raise NoRemainingFundsError(source_budget_id, source.remaining)

        label = fiscal_year_label(fiscal_year)
        candidates = [
            b for b in self._store.list(Table.BUDGETS, program_id=program_id, fiscal_year=label)
            if b.budget_id != source_budget_id
            and b.is_open
            and b.variance > ZERO
            and b.allocated > ZERO
        ]
        if not candidates:
            raise NoEligibleTargetsError(source_budget_id, program_id, label)

        amount = source.remaining
        shares = self._distribution.distribute(
            amount,
            [DistributionTarget(b.budget_id, b.variance) for b in candidates],
        )
        by_id = {b.budget_id: b for b in candidates}

        ts = self._timestamp()
        targets: list[Budget] = []
        delivered: dict[str, Decimal] = {}
        errors: list[ItemFailure] = []
        undelivered = ZERO
        for share in shares:
            target = by_id[share.target_id]
            try:
                updated = self._write(
                    target,
                    actor,
                    f"Received {format_amount(share.amount)} {target.currency} distributed "
                    f"from {source_budget_id} on {ts}. Distributed by: {actor}",
                    allocated=target.allocated + share.amount,
                )
            except ITEM_FAILURES as exc:
                logger.warning("distribution_target_failed", extra={
                    "source_budget_id": source_budget_id,
                    "budget_id": share.target_id,
                    "amount": format_amount(share.amount),
                    "error": str(exc),
                })
                errors.append(ItemFailure.from_exception(share.target_id, exc))
                undelivered += share.amount
                continue
            targets.append(updated)
            delivered[share.target_id] = share.amount

        distributed = sum(delivered.values(), ZERO)
        updated_source = self._write(
            source,
            actor,
            f"Distributed {format_amount(distributed)} {source.currency} to "
            f"{len(targets)} budget(s) on {ts}. Distributed by: {actor}",
            allocated=source.spent + undelivered,
        )

        logger.info("funds_distributed", extra={
            "source_budget_id": source_budget_id,
            "program_id": program_id,
            "fiscal_year": label,
            "distributed": format_amount(distributed),
            "target_count": len(targets),
            "failure_count": len(errors),
            "actor_id": actor,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return DistributionResult(
            source=updated_source,
            targets=tuple(targets),
            shares=delivered,
            distributed=distributed,
            undelivered=undelivered,
            errors=tuple(errors),
        )

    # =========================================================================
    # Validation
    # =========================================================================

    def validate(self, budget_id: str, amount: Decimal) -> AllocationValidation:
        """
        Whether ``amount`` may be added to ``budget_id``.

        Rule failures come back as ``valid=False`` with a reason.
        """
        amount = to_decimal(amount)
        if amount <= ZERO:
            return AllocationValidation(False, "Allocation amount must be positive")

        budget = self._store.get(Table.BUDGETS, budget_id)
        if budget is None:
            return AllocationValidation(False, f"Budget {budget_id} not found")
        if not budget.is_open:
            return AllocationValidation(
                False, f"Budget {budget_id} is closed and cannot accept new allocations",
            )
        if budget.period_end < self._clock.today():
            return AllocationValidation(
                False, f"Budget period has ended ({budget.period_end.isoformat()})",
            )

        summary = self.allocation_summary(
            budget.program_id, parse_fiscal_year(budget.fiscal_year),
        )
        ceiling = self._settings.program_ceiling
        if summary.total_allocated + amount > ceiling:
            return AllocationValidation(
                False,
                "Program-level budget allocation would exceed warning threshold of "
                f"{format_amount(ceiling)}. Current total: "
                f"{format_amount(summary.total_allocated)}, Requested: {format_amount(amount)}",
            )

        if budget.spent > ZERO and budget.allocated > ZERO:
            utilization = budget.spent / budget.allocated
            growth = self._settings.oversize_growth_factor
            if (
                utilization < self._settings.low_utilization_floor
                and budget.allocated + amount > budget.allocated * growth
            ):
                return AllocationValidation(
                    False,
                    f"Budget utilization is very low ({percent_of(budget.spent, budget.allocated)}%). "
                    f"Adding {format_amount(amount)} would more than double allocation. "
                    "Consider reallocating from this budget instead.",
                )

        return AllocationValidation(True)

    # =========================================================================
    # Freeze / unfreeze
    # =========================================================================

    def freeze(self, budget_id: str, actor: str) -> Budget:
        """Close the budget.  Already closed: returned unchanged."""
        budget = self._require(budget_id)
        if budget.status == BudgetStatus.CLOSED:
            return budget
        updated = self._write(
            budget,
            actor,
            f"Budget frozen on {self._timestamp()}. Frozen by: {actor}",
            status=BudgetStatus.CLOSED,
        )
        logger.info("budget_frozen", extra={"budget_id": budget_id, "actor_id": actor})
        return updated

    def unfreeze(self, budget_id: str, actor: str) -> Budget:
        """Reopen a closed budget as active.  Not closed: returned unchanged."""
        budget = self._require(budget_id)
        if budget.status != BudgetStatus.CLOSED:
            return budget
        updated = self._write(
            budget,
            actor,
            f"Budget unfrozen on {self._timestamp()}. Unfrozen by: {actor}",
            status=BudgetStatus.ACTIVE,
        )
        logger.info("budget_unfrozen", extra={"budget_id": budget_id, "actor_id": actor})
        return updated

    # =========================================================================
    # Summary
    # =========================================================================

    def allocation_summary(
        self,
        program_id: str,
        fiscal_year: int | None = None,
    ) -> AllocationSummary:
        filters = {"program_id": program_id}
        label = None
        if fiscal_year is not None:
            label = fiscal_year_label(fiscal_year)
            filters["fiscal_year"] = label
        budgets: list[Budget] = self._store.list(Table.BUDGETS, **filters)

        by_status: dict[BudgetStatus, int] = {}
        by_category: dict[BudgetCategory, Decimal] = {}
        for b in budgets:
            by_status[b.status] = by_status.get(b.status, 0) + 1
            by_category[b.category] = by_category.get(b.category, ZERO) + b.allocated

        total_allocated = sum((b.allocated for b in budgets), ZERO)
        total_spent = sum((b.spent for b in budgets), ZERO)
        return AllocationSummary(
            program_id=program_id,
            fiscal_year=label,
            budget_count=len(budgets),
            total_allocated=round_money(total_allocated),
            total_committed=round_money(sum((b.committed for b in budgets), ZERO)),
            total_spent=round_money(total_spent),
            total_remaining=round_money(sum((b.remaining for b in budgets), ZERO)),
            utilization_percent=percent_of(total_spent, total_allocated),
            by_status=by_status,
            by_category={k: round_money(v) for k, v in by_category.items()},
        )
