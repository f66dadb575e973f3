"""
enforcer.py - Due-Date Enforcer

Sweeps active loans for overdue ones and applies the late-fee penalty
through the registry. A sweep is triggered externally: on a schedule, per
transaction, or from a simulation loop via step()/run().

Per-loan state machine:
    ACTIVE --(due_date < now, not repaid)--> LATE
    ACTIVE | LATE --repay_loan--> REPAID

The LATE state is absorbing for the enforcer: the fee is booked once per
loan, so sweeping again (with or without time advancing) never compounds it.
The enforcer never marks a loan repaid and never moves funds out of the pool.
"""

from __future__ import annotations
from typing import Callable, Dict, Iterable, List, Optional

from .core import (
    LendingView, PendingTransaction, Transaction, ExecuteResult,
    LoanId, Timestamp, LendingError,
)
from .loans import compute_late_fee
from .registry import LoanRegistry


LateFeeRule = Callable[[LendingView, LoanId, Timestamp], PendingTransaction]


def late_fee_contract(
    view: LendingView,
    loan_id: LoanId,
    timestamp: Timestamp,
) -> PendingTransaction:
    """
    Lifecycle rule for one loan: late fee if overdue, empty otherwise.

    Example:
        enforcer = DueDateEnforcer(registry)
        enforcer.rule = late_fee_contract
    """
    return compute_late_fee(view, loan_id, timestamp)


class DueDateEnforcer:
    """
    Applies late-fee penalties to overdue loans.

    Each overdue loan is penalized in its own atomic transaction, so a
    failure on one loan never leaves another half-applied.
    """

    def __init__(self, registry: LoanRegistry, rule: Optional[LateFeeRule] = None):
        """
        Args:
            registry: The registry to sweep
            rule: Per-loan lifecycle rule (default: late_fee_contract)
        """
        self.registry = registry
        self.rule: LateFeeRule = rule or late_fee_contract
        self.verbose = registry.verbose
        self.sweeps = 0

    def check_due_dates(self) -> List[Transaction]:
        """
        Run one sweep at the registry's current time.

        Returns:
            Transactions applied during this sweep (one per penalized loan)

        Raises:
            LendingError: If the registry rejects a penalty transaction
        """
        registry = self.registry
        executed: List[Transaction] = []
        with registry._lock:
            now = registry.current_time
            # Sorted for deterministic order.
            for loan in registry.list_loans():
                if not loan.is_overdue(now) or loan.late_fee_applied:
                    continue
                pending = self.rule(registry, loan.loan_id, now)
                if pending.is_empty():
                    continue
                result = registry.execute(pending)
                if result == ExecuteResult.REJECTED:
                    raise LendingError(f"Late fee rejected for {loan.loan_id}")
                if result == ExecuteResult.APPLIED:
                    executed.append(registry.transaction_log[-1])
            self.sweeps += 1
        if self.verbose and executed:
            print(f"[ENFORCER] sweep {self.sweeps}: {len(executed)} late fee(s) at t={now}")
        return executed

    def step(self, timestamp: Timestamp) -> List[Transaction]:
        """
        Advance the registry clock to timestamp and sweep.

        Requires a time source with advance_time (ManualClock).
        """
        clock = self.registry.time_source
        if not hasattr(clock, "advance_time"):
            raise TypeError(f"{type(clock).__name__} cannot be advanced")
        clock.advance_time(timestamp)
        return self.check_due_dates()

    def run(self, timestamps: Iterable[Timestamp]) -> List[Transaction]:
        """Step through a sequence of timestamps, returning all applied transactions."""
        all_transactions: List[Transaction] = []
        for timestamp in timestamps:
            all_transactions.extend(self.step(timestamp))
        return all_transactions

    # ========================================================================
    # QUERY METHODS
    # ========================================================================

    def overdue_loans(self, now: Optional[Timestamp] = None) -> List[LoanId]:
        """Identifiers of taken, unrepaid loans past their due date."""
        now = self.registry.current_time if now is None else now
        return [loan.loan_id for loan in self.registry.list_loans() if loan.is_overdue(now)]

    def pending_penalties(self, now: Optional[Timestamp] = None) -> Dict[LoanId, int]:
        """Late fee each overdue, not-yet-penalized loan would receive now."""
        now = self.registry.current_time if now is None else now
        penalties = {}
        for loan in self.registry.list_loans():
            if loan.is_overdue(now) and not loan.late_fee_applied:
                penalties[loan.loan_id] = compute_late_fee(self.registry, loan.loan_id, now).deposit
        return penalties
