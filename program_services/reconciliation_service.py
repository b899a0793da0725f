"""
program_services.reconciliation_service -- Transaction, cash flow and budget reconciliation.

Responsibility:
    Reconcile ledger transactions against cash flows (manual match,
    greedy auto-match, bulk match), cross-foot transactions against their
    budgets, find ledger discrepancies (duplicates, orphans, mismatched
    reconciled pairs) and report reconciliation health for a period.

Architecture position:
    Services -- stateful orchestration over engines + kernel.
    Composes ReconciliationMatcher (pure) with a RowStore and a Clock.

Invariants enforced:
    - A reconciled transaction references exactly one cash flow and that
      flow references it back.  The link is stored in ``cash_flow_id`` /
      ``reconciled_transaction_id`` and echoed in both notes.
    - A transaction or flow is reconciled at most once
      (AlreadyReconciledError).
    - Auto-reconciliation is greedy: first eligible flow wins.

Failure modes:
    - TransactionNotFoundError, CashFlowNotFoundError, BudgetNotFoundError.
    - AlreadyReconciledError on a second match attempt.
    - ZeroAmountTransactionError for a zero non-adjustment transaction.
    - Batch operations record per-item failures as ItemFailure and go on.

Audit relevance:
    Match notes name the actor and the UTC timestamp.  Log events
    ``transaction_reconciled``, ``auto_reconciliation_completed`` and
    ``bulk_reconciliation_completed`` summarise each run.

Usage:
    engine = ReconciliationEngine(SqlAlchemyRowStore(session), clock)
    outcome = engine.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")
    report = engine.generate_report("PROG-001")
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal

from program_config.schema import ReconciliationSettings
from program_kernel.domain.clock import Clock
from program_kernel.domain.records import (
    Budget,
    CashFlow,
    CashFlowStatus,
    FinancialTransaction,
    TransactionType,
    append_note,
)
from program_kernel.domain.values import HUNDRED, ZERO, format_amount, round_money
from program_kernel.exceptions import (
    AlreadyReconciledError,
    BudgetNotFoundError,
    CashFlowNotFoundError,
    TransactionNotFoundError,
    ZeroAmountTransactionError,
)
from program_kernel.logging_config import get_logger
from program_kernel.store import RowStore, Table
from program_engines.matching import MatchPair, ReconciliationMatcher
from program_services._result_types import (
    ITEM_FAILURES,
    AllocationIntegrityCheck,
    AutoReconciliationResult,
    BudgetReconciliation,
    BulkReconciliationResult,
    DiscrepancyReport,
    ItemFailure,
    MatchOutcome,
    ReconciliationReport,
    ReconciliationStatus,
)

logger = get_logger("services.reconciliation")

_BULK_SUGGESTION_VOLUME = 100
_BULK_SUGGESTION_RATE = Decimal("90")


class ReconciliationEngine:
    """
    Reconciles the ledger.

    Contract:
        Receives RowStore and Clock via constructor injection; tolerances
        come from ReconciliationSettings.
    Guarantees:
        - A non-matching pair writes nothing.
        - Report and discrepancy queries never write.
    Non-goals:
        - No optimal (maximum-cardinality) matching.
        - Does not un-reconcile pairs.
    """

    def __init__(
        self,
        store: RowStore,
        clock: Clock,
        settings: ReconciliationSettings | None = None,
    ):
        self._store = store
        self._clock = clock
        self._settings = settings or ReconciliationSettings()
        self._matcher = ReconciliationMatcher()

    def _transaction(self, transaction_id: str) -> FinancialTransaction:
        transaction = self._store.get(Table.TRANSACTIONS, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    def _cash_flow(self, flow_id: str) -> CashFlow:
        flow = self._store.get(Table.CASH_FLOWS, flow_id)
        if flow is None:
            raise CashFlowNotFoundError(flow_id)
        return flow

    # =========================================================================
    # Matching
    # =========================================================================

    def match_transaction_to_cash_flow(
        self,
        transaction_id: str,
        flow_id: str,
        actor: str,
    ) -> MatchOutcome:
        """
        Reconcile a transaction with a cash flow when their amounts agree.

        Amounts agree when they differ by strictly less than the match
        tolerance.  Otherwise nothing is written and ``matched`` is False.

        Raises:
            TransactionNotFoundError, CashFlowNotFoundError,
            AlreadyReconciledError, ZeroAmountTransactionError.
        """
        transaction = self._transaction(transaction_id)
        flow = self._cash_flow(flow_id)
        if transaction.reconciled:
            raise AlreadyReconciledError("Transaction", transaction_id)
        if flow.reconciled:
            raise AlreadyReconciledError("Cash flow", flow_id)
        if transaction.amount == ZERO and transaction.type != TransactionType.ADJUSTMENT:
            raise ZeroAmountTransactionError(transaction_id)

        variance = abs(transaction.amount - flow.amount)
        if variance >= self._settings.match_tolerance:
            logger.info("transaction_match_rejected", extra={
                "transaction_id": transaction_id,
                "flow_id": flow_id,
                "variance": format_amount(variance),
            })
            return MatchOutcome(False, variance, transaction, flow)

        reconciled_txn, reconciled_flow = self._write_link(transaction, flow, actor)

        logger.info("transaction_reconciled", extra={
            "transaction_id": transaction_id,
            "flow_id": flow_id,
            "variance": format_amount(variance),
            "actor_id": actor,
        })
        return MatchOutcome(True, variance, reconciled_txn, reconciled_flow)

    def auto_reconcile(self, program_id: str, actor: str) -> AutoReconciliationResult:
        """
        Greedy automatic matching for a program.

        Each unreconciled transaction takes the first compatible,
        unreconciled, non-cancelled flow within the date window and amount
        tolerance.  A failed write records an ItemFailure and the scan tries
        the transaction's next candidate.
        """
        t0 = time.monotonic()
        transactions = [
            t for t in self._store.list(Table.TRANSACTIONS, program_id=program_id)
            if not t.reconciled
        ]
        flows = [
            f for f in self._store.list(Table.CASH_FLOWS, program_id=program_id)
            if not f.reconciled and f.status != CashFlowStatus.CANCELLED
        ]

        txns_by_id = {t.transaction_id: t for t in transactions}
        flows_by_id = {f.flow_id: f for f in flows}
        errors: list[ItemFailure] = []

        def write(candidate: MatchPair) -> bool:
            try:
                self._write_link(
                    txns_by_id[candidate.transaction_id],
                    flows_by_id[candidate.flow_id],
                    actor,
                )
            except ITEM_FAILURES as exc:
                logger.warning("auto_reconcile_pair_failed", extra={
                    "transaction_id": candidate.transaction_id,
                    "flow_id": candidate.flow_id,
                    "error": str(exc),
                })
                errors.append(ItemFailure.from_exception(
                    f"{candidate.transaction_id}:{candidate.flow_id}", exc,
                ))
                return False
            return True

        matches = self._matcher.greedy_pairs(
            transactions,
            flows,
            self._settings.auto_match_amount_tolerance,
            self._settings.auto_match_date_window_days,
            accept=write,
        )
        pairs = [(m.transaction_id, m.flow_id) for m in matches]
        matched_txns = {m.transaction_id for m in matches}
        consumed = {m.flow_id for m in matches}

        unmatched_txns = tuple(t for t in transactions if t.transaction_id not in matched_txns)
        unmatched_flows = tuple(f for f in flows if f.flow_id not in consumed)
        report = _auto_report(
            program_id,
            len(pairs),
            unmatched_txns,
            unmatched_flows,
            self._settings,
        )

        logger.info("auto_reconciliation_completed", extra={
            "program_id": program_id,
            "reconciled_count": len(pairs),
            "unmatched_transactions": len(unmatched_txns),
            "unmatched_cash_flows": len(unmatched_flows),
            "failure_count": len(errors),
            "actor_id": actor,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return AutoReconciliationResult(
            program_id=program_id,
            reconciled_count=len(pairs),
            matched_pairs=tuple(pairs),
            unmatched_transactions=unmatched_txns,
            unmatched_cash_flows=unmatched_flows,
            report=report,
            errors=tuple(errors),
        )

    def _write_link(
        self,
        transaction: FinancialTransaction,
        flow: CashFlow,
        actor: str,
    ) -> tuple[FinancialTransaction, CashFlow]:
        """
        Mark both sides reconciled, link their ids and annotate both notes.

        Both rows are written in one store-level atomic block: if the flow
        write fails the transaction row is left as it was.
        """
        now = self._clock.now_utc()
        ts = now.isoformat()
        with self._store.atomic():
            linked_txn = self._store.update(
                Table.TRANSACTIONS,
                dataclasses.replace(
                    transaction,
                    reconciled=True,
                    reconciled_date=now.date(),
                    reconciled_by=actor,
                    cash_flow_id=flow.flow_id,
                    notes=append_note(transaction.notes, f"Reconciled by {actor} on {ts}"),
                ),
            )
            linked_flow = self._store.update(
                Table.CASH_FLOWS,
                dataclasses.replace(
                    flow,
                    reconciled_transaction_id=transaction.transaction_id,
                    notes=append_note(
                        flow.notes,
                        f"Reconciled with transaction {transaction.transaction_id} by {actor} on {ts}",
                    ),
                ),
            )
        return linked_txn, linked_flow

    def bulk_reconcile(
        self,
        pairs: Iterable[tuple[str, str]],
        actor: str,
    ) -> BulkReconciliationResult:
        """Manual match for each (transaction_id, flow_id) pair, in order."""
        t0 = time.monotonic()
        matched: list[MatchOutcome] = []
        unmatched: list[MatchOutcome] = []
        errors: list[ItemFailure] = []

        for transaction_id, flow_id in pairs:
            try:
                outcome = self.match_transaction_to_cash_flow(transaction_id, flow_id, actor)
            except ITEM_FAILURES as exc:
                errors.append(ItemFailure.from_exception(transaction_id, exc))
                continue
            (matched if outcome.matched else unmatched).append(outcome)

        logger.info("bulk_reconciliation_completed", extra={
            "matched_count": len(matched),
            "unmatched_count": len(unmatched),
            "failure_count": len(errors),
            "actor_id": actor,
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        })
        return BulkReconciliationResult(tuple(matched), tuple(unmatched), tuple(errors))

    # =========================================================================
    # Budget cross-footing
    # =========================================================================

    def _budget_transaction_total(self, budget_id: str) -> Decimal:
        """Signed sum of every transaction booked against the budget, adjustments included."""
        return sum(
            (t.amount for t in self._store.list(Table.TRANSACTIONS, budget_id=budget_id)),
            ZERO,
        )

    def reconcile_with_budget(self, transaction_id: str) -> BudgetReconciliation:
        """
        Cross-foot the transaction's budget ``spent`` against the sum of
        every transaction linked to that budget.
        """
        transaction = self._transaction(transaction_id)
        if not transaction.budget_id:
            return BudgetReconciliation(
                transaction, False, None, ZERO, False, "Transaction has no budget allocation",
            )

        budget: Budget | None = self._store.get(Table.BUDGETS, transaction.budget_id)
        if budget is None:
            return BudgetReconciliation(
                transaction,
                False,
                transaction.budget_id,
                ZERO,
                False,
                f"Budget {transaction.budget_id} not found - invalid budget reference",
            )

        total = self._budget_transaction_total(budget.budget_id)
        variance = abs(budget.spent - total)
        over_allocated = budget.spent > budget.allocated

        if total <= budget.allocated:
            notes = (
                f"Budget has sufficient allocation. Total transactions: {format_amount(total)}, "
                f"Allocated: {format_amount(budget.allocated)}, "
                f"Remaining: {format_amount(budget.allocated - total)}"
            )
        else:
            notes = (
                f"Budget exceeded! Total transactions: {format_amount(total)}, "
                f"Allocated: {format_amount(budget.allocated)}, "
                f"Over by: {format_amount(total - budget.allocated)}"
            )
        if variance > self._settings.budget_variance_tolerance:
            notes += (
                f". Warning: Budget.spent ({format_amount(budget.spent)}) differs from "
                f"transaction total by {format_amount(variance)}"
            )
        if over_allocated:
            notes += (
                f". Over-allocated: spent {format_amount(budget.spent)} exceeds "
                f"allocated {format_amount(budget.allocated)}"
            )

        return BudgetReconciliation(
            transaction=transaction,
            budget_match=True,
            budget_id=budget.budget_id,
            variance=round_money(variance),
            over_allocated=over_allocated,
            notes=notes,
        )

    def reconcile_budget_allocations(self, budget_id: str) -> AllocationIntegrityCheck:
        """Integrity check of one budget's figures against its transactions."""
        budget: Budget | None = self._store.get(Table.BUDGETS, budget_id)
        if budget is None:
            raise BudgetNotFoundError(budget_id)

        transactions = self._store.list(Table.TRANSACTIONS, budget_id=budget_id)
        total = self._budget_transaction_total(budget_id)
        variance = abs(budget.spent - total)
        reconciled = variance < self._settings.budget_variance_tolerance

        issues: list[str] = []
        for name in ("allocated", "committed", "spent"):
            value = getattr(budget, name)
            if value < ZERO:
                issues.append(f"Negative {name} amount: {format_amount(value)}")
        if not reconciled:
            issues.append(
                f"Budget.spent ({format_amount(budget.spent)}) differs from transaction "
                f"total ({format_amount(total)}) by {format_amount(variance)}"
            )
        if budget.spent > budget.allocated:
            issues.append(
                f"Budget overspent: Spent {format_amount(budget.spent)} exceeds "
                f"allocated {format_amount(budget.allocated)}"
            )
        if budget.committed + budget.spent > budget.allocated:
            issues.append(
                f"Committed plus spent ({format_amount(budget.committed + budget.spent)}) "
                f"exceeds allocated {format_amount(budget.allocated)}"
            )
        invalid = [
            t for t in transactions
            if t.amount <= ZERO and t.type != TransactionType.ADJUSTMENT
        ]
        if invalid:
            issues.append(f"Found {len(invalid)} transactions with zero or negative amounts")
        unreconciled = sum(1 for t in transactions if not t.reconciled)
        if unreconciled:
            issues.append(
                f"{unreconciled} of {len(transactions)} transactions are not reconciled"
            )

        return AllocationIntegrityCheck(
            budget_id=budget_id,
            allocated=budget.allocated,
            committed=budget.committed,
            spent=budget.spent,
            transaction_total=round_money(total),
            variance=round_money(variance),
            reconciled=reconciled,
            issues=tuple(issues),
        )

    # =========================================================================
    # Discrepancies and reporting
    # =========================================================================

    def find_discrepancies(self, program_id: str) -> DiscrepancyReport:
        transactions = self._store.list(Table.TRANSACTIONS, program_id=program_id)
        flows = self._store.list(Table.CASH_FLOWS, program_id=program_id)
        known_budgets = {b.budget_id for b in self._store.list(Table.BUDGETS)}

        duplicates = self._matcher.duplicate_groups(
            transactions, self._settings.duplicate_amount_tolerance,
        )
        orphaned = tuple(
            t for t in transactions
            if not t.budget_id or t.budget_id not in known_budgets
        )
        mismatches = self._matcher.amount_mismatches(
            transactions, flows, self._settings.mismatch_tolerance,
        )

        report = DiscrepancyReport(
            program_id=program_id,
            duplicate_groups=tuple(duplicates),
            orphaned_transactions=orphaned,
            mismatched_amounts=tuple(mismatches),
            summary="",
        )
        return dataclasses.replace(report, summary=_discrepancy_summary(report))

    def generate_report(
        self,
        program_id: str,
        period_start: date | None = None,
        period_end: date | None = None,
    ) -> ReconciliationReport:
        """Reconciliation health over a period (default: the last 30 days)."""
        end = period_end or self._clock.today()
        start = period_start or end - timedelta(days=self._settings.report_window_days)

        transactions = [
            t for t in self._store.list(Table.TRANSACTIONS, program_id=program_id)
            if start <= t.transaction_date <= end
        ]
        total = len(transactions)
        reconciled = sum(1 for t in transactions if t.reconciled)
        unreconciled = total - reconciled
        rate = round_money(Decimal(reconciled) / Decimal(total) * HUNDRED) if total else HUNDRED

        discrepancies = self.find_discrepancies(program_id)
        count = discrepancies.total_discrepancies

        s = self._settings
        if rate >= s.clean_rate_threshold and count == 0:
            status = ReconciliationStatus.CLEAN
        elif rate >= s.review_rate_threshold and count <= s.review_max_discrepancies:
            status = ReconciliationStatus.REVIEW_NEEDED
        else:
            status = ReconciliationStatus.ACTION_REQUIRED

        recommendations: list[str] = []
        if unreconciled:
            recommendations.append(f"Reconcile {unreconciled} outstanding transactions")
        if discrepancies.duplicate_groups:
            recommendations.append(
                f"Review and resolve {len(discrepancies.duplicate_groups)} sets of duplicate transactions"
            )
        if discrepancies.orphaned_transactions:
            recommendations.append(
                f"Assign budgets to {len(discrepancies.orphaned_transactions)} orphaned transactions"
            )
        if discrepancies.mismatched_amounts:
            recommendations.append(
                f"Investigate {len(discrepancies.mismatched_amounts)} amount mismatches "
                "between transactions and cash flows"
            )
        if rate < s.review_rate_threshold:
            recommendations.append(
                "Implement daily reconciliation process to maintain >95% reconciliation rate"
            )
        if status == ReconciliationStatus.CLEAN:
            recommendations.append("Maintain current reconciliation practices")
        if total > _BULK_SUGGESTION_VOLUME and rate < _BULK_SUGGESTION_RATE:
            recommendations.append("Consider using auto-reconciliation to improve efficiency")

        logger.info("reconciliation_report_generated", extra={
            "program_id": program_id,
            "period_start": start.isoformat(),
            "period_end": end.isoformat(),
            "reconciliation_rate": str(rate),
            "discrepancies": count,
            "status": status.value,
        })
        return ReconciliationReport(
            program_id=program_id,
            period_start=start,
            period_end=end,
            total_transactions=total,
            reconciled_transactions=reconciled,
            unreconciled_transactions=unreconciled,
            reconciliation_rate=rate,
            discrepancies=count,
            status=status,
            recommendations=tuple(recommendations),
        )


# =============================================================================
# Text reports
# =============================================================================


def _auto_report(
    program_id: str,
    reconciled_count: int,
    unmatched_txns: tuple[FinancialTransaction, ...],
    unmatched_flows: tuple[CashFlow, ...],
    settings: ReconciliationSettings,
) -> str:
    txn_lines = [
        f"  - {t.transaction_id}: {t.description} ({format_amount(t.amount)}) "
        f"on {t.transaction_date.isoformat()}"
        for t in unmatched_txns
    ] or ["  None"]
    flow_lines = [
        f"  - {f.flow_id}: {f.description} ({format_amount(f.amount)}) "
        f"on {f.forecast_date.isoformat()}"
        for f in unmatched_flows
    ] or ["  None"]

    next_steps = []
    if unmatched_txns:
        next_steps.append("- Review unmatched transactions for manual reconciliation")
    if unmatched_flows:
        next_steps.append("- Review unmatched cash flows for manual reconciliation")
    if reconciled_count == 0:
        next_steps.append("- No automatic matches found - manual review required")

    lines = [
        f"Auto-Reconciliation Report for Program {program_id}",
        "=" * 61,
        "",
        "Summary:",
        f"- Reconciled: {reconciled_count} transaction-cashflow pairs",
        f"- Unmatched Transactions: {len(unmatched_txns)}",
        f"- Unmatched Cash Flows: {len(unmatched_flows)}",
        "",
        "Matching Criteria:",
        f"- Date variance: +/-{settings.auto_match_date_window_days} days",
        f"- Amount variance: +/-{format_amount(settings.auto_match_amount_tolerance)}",
        "- Type match: expense/outflow, revenue/inflow",
        "",
        "Unmatched Transactions:",
        *txn_lines,
        "",
        "Unmatched Cash Flows:",
        *flow_lines,
        "",
        "Next Steps:",
        *next_steps,
    ]
    return "\n".join(lines) + "\n"


def _discrepancy_summary(report: DiscrepancyReport) -> str:
    dup_lines = [
        f"  Set {i}: {', '.join(t.transaction_id for t in group)} - "
        f"{group[0].description} ({format_amount(group[0].amount)})"
        for i, group in enumerate(report.duplicate_groups, start=1)
    ] or ["  None"]
    orphan_lines = [
        f"  - {t.transaction_id}: {t.description} ({format_amount(t.amount)}) - "
        + ("No budget assigned" if not t.budget_id else "Invalid budget reference")
        for t in report.orphaned_transactions
    ] or ["  None"]
    mismatch_lines = [
        f"  - {m.transaction.transaction_id} <-> {m.cash_flow.flow_id}: "
        f"Variance {format_amount(m.variance)}"
        for m in report.mismatched_amounts
    ] or ["  None"]

    lines = [
        f"Reconciliation Discrepancy Report for Program {report.program_id}",
        "=" * 64,
        "",
        f"Duplicate Transactions: {len(report.duplicate_groups)} sets "
        f"({report.duplicate_transaction_count} transactions total)",
        *dup_lines,
        "",
        f"Orphaned Transactions: {len(report.orphaned_transactions)}",
        *orphan_lines,
        "",
        f"Mismatched Amounts: {len(report.mismatched_amounts)}",
        *mismatch_lines,
        "",
        f"Total Discrepancies: {report.total_discrepancies}",
    ]
    return "\n".join(lines) + "\n"
