"""
Module: program_engines.matching
Responsibility:
    Pair ledger transactions with cash flows and detect ledger anomalies:
    duplicate transactions and reconciled pairs whose amounts disagree.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by ReconciliationEngine, which performs the writes through
    the ``accept`` hook of ``greedy_pairs``.

Invariants enforced:
    - Type compatibility: expense pairs with outflow, revenue with inflow.
      Adjustments never auto-match.
    - Matching is greedy in input order: the first eligible flow wins and is
      consumed.  No global optimisation.
    - Duplicate detection is a pairwise O(n^2) scan; each transaction joins
      at most one duplicate group.

Failure modes:
    None.  Inputs are trusted records from the store.

Usage:
    from program_engines.matching import ReconciliationMatcher

    matcher = ReconciliationMatcher()
    pairs = matcher.greedy_pairs(
        transactions, flows,
        amount_tolerance=Decimal("10.00"), date_window_days=3,
    )
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal

from program_kernel.domain.records import (
    CashFlow,
    CashFlowType,
    FinancialTransaction,
    TransactionType,
)
from program_kernel.logging_config import get_logger
from program_engines.tracer import traced_engine

logger = get_logger("engines.matching")

_COMPATIBLE_TYPES = {
    TransactionType.EXPENSE: CashFlowType.OUTFLOW,
    TransactionType.REVENUE: CashFlowType.INFLOW,
}

LEGACY_LINK_NOTE = "Reconciled with transaction {transaction_id}"


def types_compatible(transaction_type: TransactionType, flow_type: CashFlowType) -> bool:
    return _COMPATIBLE_TYPES.get(transaction_type) == flow_type


@dataclass(frozen=True)
class MatchPair:
    """An eligible transaction/cash flow pairing."""

    transaction_id: str
    flow_id: str
    amount_delta: Decimal
    days_apart: int


@dataclass(frozen=True)
class AmountMismatch:
    transaction: FinancialTransaction
    cash_flow: CashFlow
    variance: Decimal


def linked_flow(
    transaction: FinancialTransaction,
    flows: Sequence[CashFlow],
) -> CashFlow | None:
    """
    Cash flow a reconciled transaction is linked to.

    Uses the stored ``cash_flow_id`` link; rows reconciled before the link
    column existed are found by the note written on the flow.
    """
    if transaction.cash_flow_id is not None:
        for flow in flows:
            if flow.flow_id == transaction.cash_flow_id:
                return flow
        return None

    marker = LEGACY_LINK_NOTE.format(transaction_id=transaction.transaction_id)
    for flow in flows:
        if flow.notes and marker in flow.notes:
            return flow
    return None


class ReconciliationMatcher:
    """
    Pure matcher for reconciliation.

    Contract:
        No I/O of its own.  Callers pass only unreconciled, non-cancelled
        flows to the pairing methods.
    Guarantees:
        - ``greedy_pairs`` never uses a transaction or flow twice.
        - Results preserve input order.
    Non-goals:
        - Does not maximise the number of matched pairs.
    """

    def eligible_flows(
        self,
        transaction: FinancialTransaction,
        flows: Sequence[CashFlow],
        amount_tolerance: Decimal,
        date_window_days: int,
    ) -> list[MatchPair]:
        """Flows ``transaction`` may pair with, in input order."""
        pairs: list[MatchPair] = []
        for flow in flows:
            if not types_compatible(transaction.type, flow.type):
                continue
            days_apart = abs((transaction.transaction_date - flow.forecast_date).days)
            if days_apart > date_window_days:
                continue
            amount_delta = abs(transaction.amount - flow.amount)
            if amount_delta > amount_tolerance:
                continue
            pairs.append(
                MatchPair(transaction.transaction_id, flow.flow_id, amount_delta, days_apart)
            )
        return pairs

    @traced_engine("reconciliation_matching", "1.0", fingerprint_fields=("amount_tolerance", "date_window_days"))
    def greedy_pairs(
        self,
        transactions: Sequence[FinancialTransaction],
        flows: Sequence[CashFlow],
        amount_tolerance: Decimal,
        date_window_days: int,
        accept: Callable[[MatchPair], bool] | None = None,
    ) -> list[MatchPair]:
        """
        First-fit pairing; each flow is consumed by the first transaction that takes it.

        ``accept`` is offered each candidate in order and returns whether the
        pair was taken.  A refused flow stays available and the transaction
        moves on to its next candidate.  Without ``accept`` every first
        candidate is taken.
        """
        consumed: set[str] = set()
        pairs: list[MatchPair] = []
        for transaction in transactions:
            available = [f for f in flows if f.flow_id not in consumed]
            for candidate in self.eligible_flows(
                transaction, available, amount_tolerance, date_window_days,
            ):
                if accept is not None and not accept(candidate):
                    continue
                pairs.append(candidate)
                consumed.add(candidate.flow_id)
                break
        return pairs

    @traced_engine("duplicate_detection", "1.0", fingerprint_fields=("amount_tolerance",))
    def duplicate_groups(
        self,
        transactions: Sequence[FinancialTransaction],
        amount_tolerance: Decimal = Decimal("0.01"),
    ) -> list[tuple[FinancialTransaction, ...]]:
        """
        Groups of transactions sharing date, description and amount.

        Amounts match when they differ by strictly less than
        ``amount_tolerance``.  Each group is anchored on its earliest member
        in input order.
        """
        grouped: set[str] = set()
        groups: list[tuple[FinancialTransaction, ...]] = []
        for i, anchor in enumerate(transactions):
            if anchor.transaction_id in grouped:
                continue
            members = [anchor]
            for other in transactions[i + 1:]:
                if other.transaction_id in grouped:
                    continue
                if (
                    abs(anchor.amount - other.amount) < amount_tolerance
                    and anchor.transaction_date == other.transaction_date
                    and anchor.description == other.description
                ):
                    members.append(other)
                    grouped.add(other.transaction_id)
            if len(members) > 1:
                grouped.add(anchor.transaction_id)
                groups.append(tuple(members))

        if groups:
            logger.info("duplicate_transactions_detected", extra={
                "group_count": len(groups),
                "transaction_count": sum(len(g) for g in groups),
            })
        return groups

    def amount_mismatches(
        self,
        transactions: Sequence[FinancialTransaction],
        flows: Sequence[CashFlow],
        tolerance: Decimal = Decimal("1.00"),
    ) -> list[AmountMismatch]:
        """Reconciled transactions whose linked flow differs by more than ``tolerance``."""
        mismatches: list[AmountMismatch] = []
        for transaction in transactions:
            if not transaction.reconciled:
                continue
            flow = linked_flow(transaction, flows)
            if flow is None:
                continue
            variance = abs(transaction.amount - flow.amount)
            if variance > tolerance:
                mismatches.append(AmountMismatch(transaction, flow, variance))
        return mismatches
