"""
test_registry_operations.py - Unit tests for LoanRegistry

Tests:
- create_loan / take_loan / repay_loan happy paths and funds routing
- Rejected operations leave every piece of state untouched
- execute(): idempotency, stale snapshots, future timestamps, funds accounting
- Events, subscribers, audit log, clone, read-side views
"""

import pytest

from lending import (
    LoanRegistry, ManualClock, Coin, Move, LoanStatus,
    LoanRepaidEvent, Receipt, ExecuteResult, build_transaction,
    compute_take, compute_repayment,
    InvalidParameters, NotFound, AlreadyTaken, Unauthorized, AlreadyRepaid,
    InsufficientFunds, ESCROW_WALLET,
)
from tests.conftest import T0, TEN_PERCENT, offer_and_take, snapshot, assert_conserved
from tests.fake_view import FakeView


# =============================================================================
# CREATE
# =============================================================================

class TestCreateLoan:

    def test_returns_sequential_ids(self, registry):
        first = registry.create_loan("alice", 1000, TEN_PERCENT, T0 + 100)
        second = registry.create_loan("alice", 500, 0, T0 + 100)
        assert first == "loan:00000001"
        assert second == "loan:00000002"

    def test_offer_is_available_and_moves_nothing(self, registry):
        loan_id = registry.create_loan("alice", 1000, TEN_PERCENT, T0 + 100)
        loan = registry.find_loan(loan_id)
        assert loan.status == LoanStatus.AVAILABLE
        assert loan.created_at == T0
        assert registry.pool_balance == 0
        assert registry.payouts.log == []

    def test_past_due_date_rejected(self, registry):
        before = snapshot(registry)
        with pytest.raises(InvalidParameters):
            registry.create_loan("alice", 1000, TEN_PERCENT, T0)
        assert snapshot(registry) == before

    def test_zero_amount_rejected(self, registry):
        with pytest.raises(InvalidParameters):
            registry.create_loan("alice", 0, TEN_PERCENT, T0 + 100)
        assert registry.loans == {}

    def test_rejected_create_keeps_id_sequence(self, registry):
        with pytest.raises(InvalidParameters):
            registry.create_loan("alice", 0, 0, T0 + 100)
        assert registry.create_loan("alice", 10, 0, T0 + 100) == "loan:00000001"


# =============================================================================
# TAKE
# =============================================================================

class TestTakeLoan:

    def test_take_books_custody_and_pays_borrower(self, registry, offered_loan):
        loan = registry.take_loan("bob", offered_loan.loan_id, Coin(1000, "bob"))
        assert loan.borrower == "bob"
        assert loan.taken_at == T0
        assert loan.amount == 1000
        assert registry.pool_balance == 1000
        assert registry.payouts.received("bob") == 1000
        assert_conserved(registry)

    def test_take_unknown_loan(self, registry):
        with pytest.raises(NotFound):
            registry.take_loan("bob", "loan:99999999", Coin(1000, "bob"))

    def test_second_take_rejected(self, registry, taken_loan):
        before = snapshot(registry)
        with pytest.raises(AlreadyTaken):
            registry.take_loan("carol", taken_loan.loan_id, Coin(1000, "carol"))
        assert snapshot(registry) == before

    def test_short_funds_leave_state_unchanged(self, registry, offered_loan):
        before = snapshot(registry)
        with pytest.raises(InsufficientFunds):
            registry.take_loan("bob", offered_loan.loan_id, Coin(999, "bob"))
        assert snapshot(registry) == before
        assert registry.find_loan(offered_loan.loan_id).borrower is None

    def test_coin_of_another_user_rejected(self, registry, offered_loan):
        before = snapshot(registry)
        with pytest.raises(InvalidParameters, match="owned by carol"):
            registry.take_loan("bob", offered_loan.loan_id, Coin(1000, "carol"))
        assert snapshot(registry) == before

    def test_lender_cannot_take(self, registry, offered_loan):
        with pytest.raises(InvalidParameters):
            registry.take_loan("alice", offered_loan.loan_id, Coin(1000, "alice"))


# =============================================================================
# REPAY
# =============================================================================

class TestRepayLoan:

    def test_repay_releases_custody_to_lender(self, registry, taken_loan):
        receipt = registry.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))
        assert receipt == Receipt(
            loan_id=taken_loan.loan_id,
            lender="alice",
            borrower="bob",
            principal=1000,
            interest=100,
            amount_paid=1100,
            repaid_at=T0,
        )
        assert registry.pool_balance == 0
        assert registry.payouts.received("alice") == 1100
        assert registry.get_stars("bob") == 1
        assert registry.find_loan(taken_loan.loan_id).status == LoanStatus.REPAID
        assert_conserved(registry)

    def test_repay_emits_event(self, registry, taken_loan):
        registry.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))
        assert registry.events == [
            LoanRepaidEvent(taken_loan.loan_id, "alice", "bob", 1100)
        ]

    def test_subscribers_notified_after_commit(self, registry, taken_loan):
        seen = []

        def on_repaid(event):
            # State is already committed when subscribers run.
            seen.append((event, registry.find_loan(event.loan_id).repaid))

        registry.subscribe(on_repaid)
        registry.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))
        assert len(seen) == 1
        assert seen[0][0].amount == 1100
        assert seen[0][1] is True

    def test_lender_repay_unauthorized(self, registry, taken_loan):
        before = snapshot(registry)
        with pytest.raises(Unauthorized):
            registry.repay_loan("alice", taken_loan.loan_id, Coin(1100, "alice"))
        assert snapshot(registry) == before

    def test_double_repay_rejected(self, registry, taken_loan):
        registry.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))
        before = snapshot(registry)
        with pytest.raises(AlreadyRepaid):
            registry.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))
        assert snapshot(registry) == before
        assert registry.get_stars("bob") == 1

    def test_underpayment_rejected(self, registry, taken_loan):
        before = snapshot(registry)
        with pytest.raises(InsufficientFunds):
            registry.repay_loan("bob", taken_loan.loan_id, Coin(1000, "bob"))
        assert snapshot(registry) == before

    def test_custody_shortfall_rejected(self, registry, taken_loan):
        # Drain custody behind the registry's back.
        registry.pool.withdraw(1000, "mallory")
        with pytest.raises(InsufficientFunds, match="cannot release 1000"):
            registry.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))
        assert registry.find_loan(taken_loan.loan_id).repaid is False
        assert registry.get_stars("bob") == 0

    def test_amount_due(self, registry, taken_loan):
        assert registry.amount_due(taken_loan.loan_id) == 1100


# =============================================================================
# EXECUTE
# =============================================================================

class TestExecute:

    def test_duplicate_intent_already_applied(self, registry, offered_loan):
        pending = compute_take(registry, offered_loan.loan_id, "bob", Coin(1000, "bob"))
        assert registry.execute(pending) == ExecuteResult.APPLIED
        assert registry.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert registry.pool_balance == 1000
        assert registry.payouts.received("bob") == 1000

    def test_stale_take_rejected(self, registry, offered_loan):
        first = compute_take(registry, offered_loan.loan_id, "bob", Coin(1000, "bob"))
        second = compute_take(registry, offered_loan.loan_id, "carol", Coin(1000, "carol"))
        assert registry.execute(first) == ExecuteResult.APPLIED
        assert registry.execute(second) == ExecuteResult.REJECTED
        assert registry.find_loan(offered_loan.loan_id).borrower == "bob"
        assert registry.payouts.received("carol") == 0

    def test_retried_repay_is_already_applied(self, registry, taken_loan):
        pending = compute_repayment(registry, taken_loan.loan_id, "bob", Coin(1100, "bob"))
        registry.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))
        assert registry.execute(pending) == ExecuteResult.ALREADY_APPLIED

    def test_future_timestamp_rejected(self, registry, offered_loan):
        view = FakeView(loans=[offered_loan], time=T0 + 500)
        pending = compute_take(view, offered_loan.loan_id, "bob", Coin(1000, "bob"))
        assert registry.execute(pending) == ExecuteResult.REJECTED
        assert registry.find_loan(offered_loan.loan_id).borrower is None

    def test_funds_mismatch_rejected(self, registry):
        pending = build_transaction(
            registry,
            payouts=[Move(100, ESCROW_WALLET, "bob", "gift")],
            funds_in=500,
        )
        assert registry.execute(pending) == ExecuteResult.REJECTED

    def test_escrow_without_funds_rejected(self, registry):
        pending = build_transaction(
            registry,
            payouts=[Move(100, ESCROW_WALLET, "bob", "mint")],
        )
        assert registry.execute(pending) == ExecuteResult.REJECTED
        assert registry.payouts.log == []

    def test_empty_is_applied_without_logging(self, registry):
        assert registry.execute(build_transaction(registry)) == ExecuteResult.APPLIED
        assert registry.transaction_log == []

    def test_audit_log_records_each_operation(self, registry):
        loan = offer_and_take(registry)
        registry.repay_loan("bob", loan.loan_id, Coin(1100, "bob"))
        log = registry.transaction_log
        assert [tx.origin.event_type for tx in log] == ["CREATE", "TAKE", "REPAY"]
        assert [tx.sequence_number for tx in log] == [0, 1, 2]
        assert all(tx.exec_id.startswith("exec:test:") for tx in log)
        assert set(log[1].loan_ids) == {loan.loan_id}

    def test_verbose_prints_applied_and_rejected(self, capsys):
        registry = LoanRegistry("loud", time_source=ManualClock(T0), verbose=True)
        registry.create_loan("alice", 10, 0, T0 + 10)
        minted = build_transaction(registry, payouts=[Move(100, ESCROW_WALLET, "bob", "mint")])
        assert registry.execute(minted) == ExecuteResult.REJECTED
        out = capsys.readouterr().out
        assert "✓ APPLIED" in out
        assert "✗ REJECTED" in out


# =============================================================================
# VIEWS
# =============================================================================

class TestViews:

    def test_available_loans_is_restartable(self, registry):
        first = registry.create_loan("alice", 100, 0, T0 + 10)
        second = registry.create_loan("carol", 200, 0, T0 + 10)
        available = registry.view_available_loans()
        assert [l.loan_id for l in available] == [first, second]
        registry.take_loan("bob", first, Coin(100, "bob"))
        assert [l.loan_id for l in available] == [second]

    def test_get_user_loans(self, registry):
        given = offer_and_take(registry, lender="alice", borrower="bob")
        taken = offer_and_take(registry, lender="carol", borrower="alice")
        registry.repay_loan("alice", taken.loan_id, Coin(1100, "alice"))
        offer = registry.create_loan("alice", 50, 0, T0 + 10)

        loans = registry.get_user_loans("alice")
        assert [l.loan_id for l in loans.given_unpaid] == [given.loan_id, offer]
        assert loans.given_paid == ()
        assert loans.taken_unpaid == ()
        assert [l.loan_id for l in loans.taken_paid] == [taken.loan_id]

    def test_total_outstanding(self, registry):
        offer_and_take(registry, amount=1000)
        offer_and_take(registry, amount=300)
        registry.create_loan("alice", 5000, 0, T0 + 10)
        assert registry.total_outstanding() == 1300
        assert registry.verify_conservation() == {
            'valid': True,
            'pool_balance': 1300,
            'outstanding_principal': 1300,
            'discrepancy': 0,
        }

    def test_find_loan_unknown(self, registry):
        with pytest.raises(NotFound):
            registry.find_loan("loan:00000042")


# =============================================================================
# CLONE
# =============================================================================

class TestClone:

    def test_clone_is_independent(self, registry, taken_loan):
        cloned = registry.clone()
        cloned.repay_loan("bob", taken_loan.loan_id, Coin(1100, "bob"))

        assert cloned.pool_balance == 0
        assert cloned.get_stars("bob") == 1
        assert registry.pool_balance == 1000
        assert registry.get_stars("bob") == 0
        assert registry.find_loan(taken_loan.loan_id).repaid is False
        assert registry.payouts.received("alice") == 0
        assert cloned.payouts.received("alice") == 1100

    def test_clone_allocates_fresh_ids(self, registry, offered_loan):
        cloned = registry.clone()
        assert cloned.create_loan("carol", 10, 0, T0 + 10) == "loan:00000002"

    def test_clone_keeps_idempotency(self, registry, offered_loan):
        pending = compute_take(registry, offered_loan.loan_id, "bob", Coin(1000, "bob"))
        registry.execute(pending)
        assert registry.clone().execute(pending) == ExecuteResult.ALREADY_APPLIED
