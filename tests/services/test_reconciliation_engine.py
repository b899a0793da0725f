"""
Tests for ReconciliationEngine.

Covers:
- Manual match within tolerance writes the two-way link; outside it writes nothing
- A failed flow write leaves the transaction side unlinked
- Greedy auto-reconciliation and its text report
- Bulk matching with per-pair failures
- Budget cross-footing and allocation integrity checks
- Discrepancy detection and the period reconciliation report
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from program_kernel.domain.records import CashFlowStatus, CashFlowType, TransactionType
from program_kernel.exceptions import (
    AlreadyReconciledError,
    BudgetNotFoundError,
    CashFlowNotFoundError,
    RecordNotFoundError,
    TransactionNotFoundError,
    ZeroAmountTransactionError,
)
from program_kernel.models import CashFlowModel
from program_kernel.store import Table
from program_services._result_types import ReconciliationStatus
from program_services.reconciliation_service import ReconciliationEngine
from tests.conftest import TEST_PROGRAM_ID, FailingUpdates

TS = "2024-03-15T12:00:00+00:00"


@pytest.fixture
def engine_under_test(store, deterministic_clock, settings):
    return ReconciliationEngine(store, deterministic_clock, settings.reconciliation)


class TestManualMatch:

    def test_within_tolerance_links_both_sides(
        self, engine_under_test, store, create_transaction, create_cash_flow, captured_logs,
    ):
        create_transaction("TXN-001", "1000.00")
        create_cash_flow("CF-001", "1000.50")

        outcome = engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")

        assert outcome.matched
        assert outcome.variance == Decimal("0.50")

        transaction = store.get(Table.TRANSACTIONS, "TXN-001")
        assert transaction.reconciled
        assert transaction.reconciled_by == "analyst"
        assert transaction.reconciled_date == date(2024, 3, 15)
        assert transaction.cash_flow_id == "CF-001"
        assert transaction.notes == f"Reconciled by analyst on {TS}"

        flow = store.get(Table.CASH_FLOWS, "CF-001")
        assert flow.reconciled
        assert flow.reconciled_transaction_id == "TXN-001"
        assert flow.notes == f"Reconciled with transaction TXN-001 by analyst on {TS}"

        assert any(r["message"] == "transaction_reconciled" for r in captured_logs())

    def test_existing_notes_are_extended(
        self, engine_under_test, store, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "10.00", notes="Imported from AP")
        create_cash_flow("CF-001", "10.00")
        engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")
        assert store.get(Table.TRANSACTIONS, "TXN-001").notes.splitlines() == [
            "Imported from AP",
            f"Reconciled by analyst on {TS}",
        ]

    def test_tolerance_is_exclusive(
        self, engine_under_test, store, create_transaction, create_cash_flow, captured_logs,
    ):
        create_transaction("TXN-001", "1000.00")
        create_cash_flow("CF-001", "1001.00")

        outcome = engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")

        assert not outcome.matched
        assert outcome.variance == Decimal("1.00")
        assert not store.get(Table.TRANSACTIONS, "TXN-001").reconciled
        assert not store.get(Table.CASH_FLOWS, "CF-001").reconciled
        assert any(r["message"] == "transaction_match_rejected" for r in captured_logs())

    def test_transaction_already_reconciled(
        self, engine_under_test, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "10.00", reconciled=True)
        create_cash_flow("CF-001", "10.00")
        with pytest.raises(AlreadyReconciledError) as exc_info:
            engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")
        assert str(exc_info.value) == "Transaction TXN-001 is already reconciled"

    def test_flow_already_reconciled(
        self, engine_under_test, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "10.00")
        create_cash_flow("CF-001", "10.00", reconciled_transaction_id="TXN-999")
        with pytest.raises(AlreadyReconciledError):
            engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")

    def test_second_match_rejected(
        self, engine_under_test, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "10.00")
        create_cash_flow("CF-001", "10.00")
        create_cash_flow("CF-002", "10.00")
        engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")
        with pytest.raises(AlreadyReconciledError):
            engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-002", "analyst")

    def test_zero_expense_rejected(self, engine_under_test, create_transaction, create_cash_flow):
        create_transaction("TXN-001", "0")
        create_cash_flow("CF-001", "0")
        with pytest.raises(ZeroAmountTransactionError):
            engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")

    def test_zero_adjustment_allowed(self, engine_under_test, create_transaction, create_cash_flow):
        create_transaction("TXN-001", "0", type=TransactionType.ADJUSTMENT)
        create_cash_flow("CF-001", "0")
        assert engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "a").matched

    def test_unknown_records(self, engine_under_test, create_transaction):
        with pytest.raises(TransactionNotFoundError):
            engine_under_test.match_transaction_to_cash_flow("TXN-404", "CF-001", "a")
        create_transaction("TXN-001", "10.00")
        with pytest.raises(CashFlowNotFoundError):
            engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-404", "a")


class TestLinkWrites:

    def test_flow_write_failure_leaves_transaction_unlinked(
        self, store, deterministic_clock, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "100.00", notes="Imported")
        create_cash_flow("CF-001", "100.00")
        reconciler = ReconciliationEngine(
            FailingUpdates(store, {"CF-001": 0}), deterministic_clock,
        )

        with pytest.raises(RecordNotFoundError):
            reconciler.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")

        transaction = store.get(Table.TRANSACTIONS, "TXN-001")
        assert not transaction.reconciled
        assert transaction.cash_flow_id is None
        assert transaction.reconciled_by is None
        assert transaction.notes == "Imported"
        assert not store.get(Table.CASH_FLOWS, "CF-001").reconciled

    def test_flow_flush_failure_leaves_transaction_unlinked(
        self, engine_under_test, store, create_transaction, create_cash_flow, reject_updates,
    ):
        create_transaction("TXN-001", "100.00", description="Invoice A")
        create_transaction("TXN-002", "200.00", description="Invoice B")
        create_cash_flow("CF-001", "100.00")
        create_cash_flow("CF-002", "200.00")
        reject_updates(CashFlowModel, "CF-001")

        with pytest.raises(SQLAlchemyError):
            engine_under_test.match_transaction_to_cash_flow("TXN-001", "CF-001", "analyst")

        transaction = store.get(Table.TRANSACTIONS, "TXN-001")
        assert (transaction.reconciled, transaction.cash_flow_id, transaction.notes) == (
            False, None, "",
        )

        outcome = engine_under_test.match_transaction_to_cash_flow("TXN-002", "CF-002", "analyst")
        assert outcome.matched
        assert store.get(Table.CASH_FLOWS, "CF-002").reconciled_transaction_id == "TXN-002"

    def test_bulk_continues_after_half_written_pair(
        self, store, deterministic_clock, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "100.00", description="Invoice A")
        create_transaction("TXN-002", "200.00", description="Invoice B")
        create_cash_flow("CF-001", "100.00")
        create_cash_flow("CF-002", "200.00")
        reconciler = ReconciliationEngine(
            FailingUpdates(store, {"CF-001": 0}), deterministic_clock,
        )

        result = reconciler.bulk_reconcile([("TXN-001", "CF-001"), ("TXN-002", "CF-002")], "a")

        assert [(e.item_id, e.error_code) for e in result.errors] == [
            ("TXN-001", "RECORD_NOT_FOUND"),
        ]
        assert [o.transaction.transaction_id for o in result.matched] == ["TXN-002"]
        assert not store.get(Table.TRANSACTIONS, "TXN-001").reconciled


class TestAutoReconcile:

    @pytest.fixture
    def ledger(self, create_transaction, create_cash_flow):
        create_transaction("TXN-001", "1000.00", transaction_date=date(2024, 3, 1))
        create_transaction("TXN-002", "500.00", transaction_date=date(2024, 3, 10))
        create_transaction(
            "TXN-003", "200.00", transaction_date=date(2024, 3, 1), type=TransactionType.REVENUE,
        )
        create_transaction("TXN-004", "1000.00", reconciled=True)

        # Within 3 days and 10.00
        create_cash_flow("CF-001", "1005.00", forecast_date=date(2024, 3, 3))
        # Ten days from TXN-002
        create_cash_flow("CF-002", "500.00", forecast_date=date(2024, 3, 20))
        create_cash_flow(
            "CF-003", "200.00", type=CashFlowType.INFLOW, status=CashFlowStatus.CANCELLED,
        )
        create_cash_flow("CF-004", "200.00", forecast_date=date(2024, 3, 2), type=CashFlowType.INFLOW)

    def test_greedy_matches(self, engine_under_test, store, ledger, captured_logs):
        result = engine_under_test.auto_reconcile(TEST_PROGRAM_ID, "system")

        assert result.reconciled_count == 2
        assert result.matched_pairs == (("TXN-001", "CF-001"), ("TXN-003", "CF-004"))
        assert [t.transaction_id for t in result.unmatched_transactions] == ["TXN-002"]
        assert [f.flow_id for f in result.unmatched_cash_flows] == ["CF-002"]
        assert result.errors == ()

        assert store.get(Table.TRANSACTIONS, "TXN-003").cash_flow_id == "CF-004"
        assert store.get(Table.CASH_FLOWS, "CF-001").reconciled_transaction_id == "TXN-001"
        assert not store.get(Table.CASH_FLOWS, "CF-003").reconciled

        record = next(r for r in captured_logs() if r["message"] == "auto_reconciliation_completed")
        assert record["reconciled_count"] == 2

    def test_report_text(self, engine_under_test, ledger):
        report = engine_under_test.auto_reconcile(TEST_PROGRAM_ID, "system").report
        lines = report.splitlines()

        assert lines[0] == f"Auto-Reconciliation Report for Program {TEST_PROGRAM_ID}"
        assert "- Reconciled: 2 transaction-cashflow pairs" in lines
        assert "- Unmatched Transactions: 1" in lines
        assert "- Date variance: +/-3 days" in lines
        assert "- Amount variance: +/-10.00" in lines
        assert "  - TXN-002: Vendor invoice (500.00) on 2024-03-10" in lines
        assert "  - CF-002: Scheduled payment (500.00) on 2024-03-20" in lines
        assert lines[-2:] == [
            "- Review unmatched transactions for manual reconciliation",
            "- Review unmatched cash flows for manual reconciliation",
        ]

    def test_nothing_to_match(self, engine_under_test):
        result = engine_under_test.auto_reconcile(TEST_PROGRAM_ID, "system")
        assert result.reconciled_count == 0
        lines = result.report.splitlines()
        assert lines.count("  None") == 2
        assert lines[-1] == "- No automatic matches found - manual review required"

    def test_first_transaction_takes_the_flow(
        self, engine_under_test, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "100.00", description="Invoice A")
        create_transaction("TXN-002", "100.00", description="Invoice B")
        create_cash_flow("CF-001", "100.00")

        result = engine_under_test.auto_reconcile(TEST_PROGRAM_ID, "system")
        assert result.matched_pairs == (("TXN-001", "CF-001"),)
        assert [t.transaction_id for t in result.unmatched_transactions] == ["TXN-002"]

    def test_other_programs_untouched(self, engine_under_test, create_transaction, create_cash_flow):
        create_transaction("TXN-001", "100.00", program_id="PROG-002")
        create_cash_flow("CF-001", "100.00")
        assert engine_under_test.auto_reconcile(TEST_PROGRAM_ID, "system").reconciled_count == 0

    def test_failed_write_moves_on(
        self, store, deterministic_clock, create_transaction, create_cash_flow,
    ):
        create_transaction("TXN-001", "100.00", description="Invoice A")
        create_transaction("TXN-002", "100.00", description="Invoice B")
        create_cash_flow("CF-001", "100.00")
        reconciler = ReconciliationEngine(
            FailingUpdates(store, {"TXN-001": 0}), deterministic_clock,
        )

        result = reconciler.auto_reconcile(TEST_PROGRAM_ID, "system")

        assert result.matched_pairs == (("TXN-002", "CF-001"),)
        assert [(e.item_id, e.error_code) for e in result.errors] == [
            ("TXN-001:CF-001", "RECORD_NOT_FOUND"),
        ]
        assert not store.get(Table.TRANSACTIONS, "TXN-001").reconciled

    def test_flow_flush_failure_tries_next_flow(
        self, engine_under_test, store, create_transaction, create_cash_flow, reject_updates,
    ):
        create_transaction("TXN-001", "100.00")
        create_cash_flow("CF-001", "100.00")
        create_cash_flow("CF-002", "100.00")
        reject_updates(CashFlowModel, "CF-001")

        result = engine_under_test.auto_reconcile(TEST_PROGRAM_ID, "system")

        assert result.matched_pairs == (("TXN-001", "CF-002"),)
        assert [(e.item_id, e.error_code) for e in result.errors] == [
            ("TXN-001:CF-001", "SQLAlchemyError"),
        ]
        assert [f.flow_id for f in result.unmatched_cash_flows] == ["CF-001"]
        assert store.get(Table.TRANSACTIONS, "TXN-001").cash_flow_id == "CF-002"
        assert not store.get(Table.CASH_FLOWS, "CF-001").reconciled


class TestBulkReconcile:

    def test_mixed_batch(self, engine_under_test, create_transaction, create_cash_flow):
        create_transaction("TXN-001", "100.00", description="Invoice A")
        create_transaction("TXN-002", "200.00", description="Invoice B")
        create_cash_flow("CF-001", "100.00")
        create_cash_flow("CF-002", "250.00")
        create_cash_flow("CF-003", "100.00")

        result = engine_under_test.bulk_reconcile(
            [
                ("TXN-001", "CF-001"),
                ("TXN-002", "CF-002"),
                ("TXN-404", "CF-003"),
                ("TXN-001", "CF-003"),
            ],
            "analyst",
        )

        assert result.success_count == 1
        assert result.matched[0].transaction.transaction_id == "TXN-001"
        assert [o.variance for o in result.unmatched] == [Decimal("50.00")]
        assert [(e.item_id, e.error_code) for e in result.errors] == [
            ("TXN-404", "TRANSACTION_NOT_FOUND"),
            ("TXN-001", "ALREADY_RECONCILED"),
        ]

    def test_empty_batch(self, engine_under_test):
        result = engine_under_test.bulk_reconcile([], "analyst")
        assert (result.matched, result.unmatched, result.errors) == ((), (), ())


class TestReconcileWithBudget:

    def test_no_budget(self, engine_under_test, create_transaction):
        create_transaction("TXN-001", "10.00")
        result = engine_under_test.reconcile_with_budget("TXN-001")
        assert not result.budget_match
        assert result.budget_id is None
        assert result.notes == "Transaction has no budget allocation"

    def test_dangling_budget(self, engine_under_test, create_transaction):
        create_transaction("TXN-001", "10.00", budget_id="BUD-404")
        result = engine_under_test.reconcile_with_budget("TXN-001")
        assert not result.budget_match
        assert result.notes == "Budget BUD-404 not found - invalid budget reference"

    def test_within_allocation(self, engine_under_test, create_budget, create_transaction):
        create_budget("BUD-001", allocated="10000.00", spent="1800.00")
        create_transaction("TXN-001", "1000.00", budget_id="BUD-001", description="A")
        create_transaction("TXN-002", "500.00", budget_id="BUD-001", description="B")
        create_transaction(
            "TXN-003", "300.00", budget_id="BUD-001", type=TransactionType.REVENUE,
        )

        result = engine_under_test.reconcile_with_budget("TXN-001")
        assert result.budget_match
        assert result.variance == Decimal("0.00")
        assert not result.over_allocated
        assert result.notes == (
            "Budget has sufficient allocation. Total transactions: 1800.00, "
            "Allocated: 10000.00, Remaining: 8200.00"
        )

    def test_adjustment_nets_into_total(self, engine_under_test, create_budget, create_transaction):
        create_budget("BUD-001", allocated="10000.00", spent="950.00")
        create_transaction("TXN-001", "1000.00", budget_id="BUD-001")
        create_transaction(
            "TXN-002", "-50.00", budget_id="BUD-001", type=TransactionType.ADJUSTMENT,
        )

        result = engine_under_test.reconcile_with_budget("TXN-001")
        assert result.variance == Decimal("0.00")
        assert "Warning" not in result.notes
        assert "Total transactions: 950.00" in result.notes

    def test_exceeded_and_drifted(self, engine_under_test, create_budget, create_transaction):
        create_budget("BUD-001", allocated="1000.00", spent="1200.00")
        create_transaction("TXN-001", "1500.00", budget_id="BUD-001")

        result = engine_under_test.reconcile_with_budget("TXN-001")
        assert result.variance == Decimal("300.00")
        assert result.over_allocated
        assert result.notes == (
            "Budget exceeded! Total transactions: 1500.00, Allocated: 1000.00, Over by: 500.00"
            ". Warning: Budget.spent (1200.00) differs from transaction total by 300.00"
            ". Over-allocated: spent 1200.00 exceeds allocated 1000.00"
        )

    def test_unknown_transaction(self, engine_under_test):
        with pytest.raises(TransactionNotFoundError):
            engine_under_test.reconcile_with_budget("TXN-404")


class TestBudgetAllocationIntegrity:

    def test_clean_budget(self, engine_under_test, create_budget, create_transaction):
        create_budget("BUD-001", allocated="10000.00", spent="1500.00")
        create_transaction("TXN-001", "1000.00", budget_id="BUD-001", reconciled=True)
        create_transaction("TXN-002", "500.00", budget_id="BUD-001", reconciled=True)

        check = engine_under_test.reconcile_budget_allocations("BUD-001")
        assert check.reconciled
        assert check.transaction_total == Decimal("1500.00")
        assert check.variance == Decimal("0.00")
        assert check.issues == ()

    def test_issues_listed(self, engine_under_test, create_budget, create_transaction):
        create_budget("BUD-001", allocated="1000.00", committed="200.00", spent="900.00")
        create_transaction("TXN-001", "1000.00", budget_id="BUD-001", description="A")
        create_transaction(
            "TXN-002", "-50.00", budget_id="BUD-001", type=TransactionType.ADJUSTMENT,
        )
        create_transaction("TXN-003", "0", budget_id="BUD-001", description="C")

        check = engine_under_test.reconcile_budget_allocations("BUD-001")
        assert not check.reconciled
        assert check.transaction_total == Decimal("950.00")
        assert check.variance == Decimal("50.00")
        assert check.issues == (
            "Budget.spent (900.00) differs from transaction total (950.00) by 50.00",
            "Committed plus spent (1100.00) exceeds allocated 1000.00",
            "Found 1 transactions with zero or negative amounts",
            "3 of 3 transactions are not reconciled",
        )

    def test_adjustment_reconciles_spent(
        self, engine_under_test, create_budget, create_transaction,
    ):
        create_budget("BUD-001", allocated="10000.00", spent="950.00")
        create_transaction("TXN-001", "1000.00", budget_id="BUD-001", reconciled=True)
        create_transaction(
            "TXN-002", "-50.00", budget_id="BUD-001",
            type=TransactionType.ADJUSTMENT, reconciled=True,
        )

        check = engine_under_test.reconcile_budget_allocations("BUD-001")
        assert check.reconciled
        assert check.transaction_total == Decimal("950.00")
        assert check.variance == Decimal("0.00")
        assert check.issues == ()

    def test_overspent(self, engine_under_test, create_budget, create_transaction):
        create_budget("BUD-001", allocated="100.00", spent="150.00")
        create_transaction("TXN-001", "150.00", budget_id="BUD-001", reconciled=True)
        check = engine_under_test.reconcile_budget_allocations("BUD-001")
        assert check.reconciled
        assert "Budget overspent: Spent 150.00 exceeds allocated 100.00" in check.issues

    def test_unknown_budget(self, engine_under_test):
        with pytest.raises(BudgetNotFoundError):
            engine_under_test.reconcile_budget_allocations("BUD-404")


class TestDiscrepancies:

    @pytest.fixture
    def messy_ledger(self, create_budget, create_transaction, create_cash_flow):
        create_budget("BUD-001")
        create_transaction("TXN-001", "250.00", budget_id="BUD-001")
        create_transaction("TXN-002", "250.00", budget_id="BUD-001")
        create_transaction("TXN-003", "75.00", description="Travel")
        create_transaction("TXN-004", "120.00", budget_id="BUD-404", description="Hotel")
        create_transaction(
            "TXN-005", "1000.00", budget_id="BUD-001", description="Milestone",
            reconciled=True, cash_flow_id="CF-001",
        )
        create_cash_flow("CF-001", "1003.00", reconciled_transaction_id="TXN-005")
        # Same shape as TXN-001 but another program
        create_transaction("TXN-006", "250.00", budget_id="BUD-001", program_id="PROG-002")

    def test_findings(self, engine_under_test, messy_ledger):
        report = engine_under_test.find_discrepancies(TEST_PROGRAM_ID)

        assert [[t.transaction_id for t in g] for g in report.duplicate_groups] == [
            ["TXN-001", "TXN-002"],
        ]
        assert [t.transaction_id for t in report.orphaned_transactions] == ["TXN-003", "TXN-004"]
        assert [(m.transaction.transaction_id, m.cash_flow.flow_id) for m in report.mismatched_amounts] == [
            ("TXN-005", "CF-001"),
        ]
        assert report.mismatched_amounts[0].variance == Decimal("3.00")
        assert report.total_discrepancies == 5

    def test_summary_text(self, engine_under_test, messy_ledger):
        lines = engine_under_test.find_discrepancies(TEST_PROGRAM_ID).summary.splitlines()

        assert lines[0] == f"Reconciliation Discrepancy Report for Program {TEST_PROGRAM_ID}"
        assert "Duplicate Transactions: 1 sets (2 transactions total)" in lines
        assert "  Set 1: TXN-001, TXN-002 - Vendor invoice (250.00)" in lines
        assert "  - TXN-003: Travel (75.00) - No budget assigned" in lines
        assert "  - TXN-004: Hotel (120.00) - Invalid budget reference" in lines
        assert "  - TXN-005 <-> CF-001: Variance 3.00" in lines
        assert lines[-1] == "Total Discrepancies: 5"

    def test_legacy_link_by_note(self, engine_under_test, create_budget, create_transaction, create_cash_flow):
        create_budget("BUD-001")
        create_transaction("TXN-001", "500.00", budget_id="BUD-001", reconciled=True)
        create_cash_flow(
            "CF-001", "520.00", reconciled_transaction_id="TXN-001",
            notes="Reconciled with transaction TXN-001",
        )
        report = engine_under_test.find_discrepancies(TEST_PROGRAM_ID)
        assert report.mismatched_amounts[0].variance == Decimal("20.00")

    def test_clean_ledger(self, engine_under_test, create_budget, create_transaction):
        create_budget("BUD-001")
        create_transaction("TXN-001", "250.00", budget_id="BUD-001")
        report = engine_under_test.find_discrepancies(TEST_PROGRAM_ID)
        assert report.total_discrepancies == 0
        assert report.summary.splitlines().count("  None") == 3


class TestReconciliationReport:

    @pytest.fixture
    def budgeted(self, create_budget, create_transaction):
        create_budget("BUD-001")

        def _add(transaction_id, amount, reconciled, transaction_date=date(2024, 3, 1)):
            return create_transaction(
                transaction_id, amount,
                transaction_date=transaction_date,
                budget_id="BUD-001",
                reconciled=reconciled,
                description=f"Invoice {transaction_id}",
            )

        return _add

    def test_clean(self, engine_under_test, budgeted, captured_logs):
        budgeted("TXN-001", "100.00", True)
        budgeted("TXN-002", "200.00", True)

        report = engine_under_test.generate_report(TEST_PROGRAM_ID)

        assert (report.period_start, report.period_end) == (date(2024, 2, 14), date(2024, 3, 15))
        assert report.total_transactions == 2
        assert report.reconciliation_rate == Decimal("100.00")
        assert report.status == ReconciliationStatus.CLEAN
        assert report.recommendations == ("Maintain current reconciliation practices",)
        record = next(r for r in captured_logs() if r["message"] == "reconciliation_report_generated")
        assert record["status"] == "clean"

    def test_review_needed(self, engine_under_test, budgeted):
        for n in range(1, 5):
            budgeted(f"TXN-00{n}", f"{n}00.00", True)
        budgeted("TXN-005", "500.00", False)

        report = engine_under_test.generate_report(TEST_PROGRAM_ID)
        assert report.reconciliation_rate == Decimal("80.00")
        assert report.unreconciled_transactions == 1
        assert report.status == ReconciliationStatus.REVIEW_NEEDED
        assert report.recommendations == ("Reconcile 1 outstanding transactions",)

    def test_action_required(self, engine_under_test, budgeted, create_transaction):
        budgeted("TXN-001", "100.00", True)
        budgeted("TXN-002", "200.00", False)
        create_transaction("TXN-003", "75.00", description="Travel")

        report = engine_under_test.generate_report(TEST_PROGRAM_ID)
        assert report.reconciliation_rate == Decimal("33.33")
        assert report.discrepancies == 1
        assert report.status == ReconciliationStatus.ACTION_REQUIRED
        assert report.recommendations == (
            "Reconcile 2 outstanding transactions",
            "Assign budgets to 1 orphaned transactions",
            "Implement daily reconciliation process to maintain >95% reconciliation rate",
        )

    def test_period_filter(self, engine_under_test, budgeted):
        budgeted("TXN-001", "100.00", False, transaction_date=date(2023, 12, 1))
        budgeted("TXN-002", "200.00", True, transaction_date=date(2024, 1, 15))

        default = engine_under_test.generate_report(TEST_PROGRAM_ID)
        assert default.total_transactions == 0
        assert default.reconciliation_rate == Decimal("100")

        explicit = engine_under_test.generate_report(
            TEST_PROGRAM_ID, period_start=date(2023, 11, 1), period_end=date(2024, 1, 31),
        )
        assert explicit.total_transactions == 2
        assert explicit.reconciliation_rate == Decimal("50.00")
