"""
desk.py - Public operation surface

LendingDesk is what the transport/identity layer calls. Every call carries
the authenticated caller identity. The desk exposes only the operations an
external caller may invoke: star changes are reachable solely through loan
repayment and the enforcer, never directly.
"""

from __future__ import annotations
from typing import Iterable, List, Optional, Tuple

from .core import (
    Coin, Loan, Receipt, UserLoans, Identity, LoanId, Timestamp, Transaction,
    InvalidParameters,
)
from .enforcer import DueDateEnforcer
from .registry import LoanRegistry


class LendingDesk:
    """
    Caller-facing facade over LoanRegistry, ReputationStore and DueDateEnforcer.

    Example:
        desk = LendingDesk(LoanRegistry("main", time_source=clock, verbose=False))
        loan_id = desk.create_loan("alice", 1000, 100_000_000, clock.now() + 1000)
        desk.take_loan("bob", "alice", loan_id, Coin(1000, "bob"))
    """

    def __init__(self, registry: LoanRegistry, enforcer: Optional[DueDateEnforcer] = None):
        self.registry = registry
        self.enforcer = enforcer or DueDateEnforcer(registry)

    def create_loan(
        self,
        caller: Identity,
        amount: int,
        interest_rate: int,
        due_date: Timestamp,
    ) -> LoanId:
        """Offer a loan as caller. Returns the new loan identifier."""
        return self.registry.create_loan(caller, amount, interest_rate, due_date)

    def view_available_loans(self) -> Iterable[Loan]:
        return self.registry.view_available_loans()

    def _check_lender_hint(self, loan_id: LoanId, lender_hint: Identity) -> None:
        loan = self.registry.find_loan(loan_id)
        if loan.lender != lender_hint:
            raise InvalidParameters(
                f"Loan {loan_id} belongs to {loan.lender}, not {lender_hint}"
            )

    def take_loan(
        self,
        caller: Identity,
        lender_hint: Identity,
        loan_id: LoanId,
        funds: Coin,
    ) -> Loan:
        """
        Take loan_id as caller. lender_hint must name the loan's lender.

        Raises:
            NotFound, InvalidParameters, AlreadyTaken, InsufficientFunds
        """
        with self.registry._lock:
            self._check_lender_hint(loan_id, lender_hint)
            return self.registry.take_loan(caller, loan_id, funds)

    def repay_loan(
        self,
        caller: Identity,
        lender_hint: Identity,
        loan_id: LoanId,
        funds: Coin,
    ) -> Receipt:
        """
        Repay loan_id as caller. lender_hint must name the loan's lender.

        Raises:
            NotFound, InvalidParameters, Unauthorized, AlreadyRepaid, InsufficientFunds
        """
        with self.registry._lock:
            self._check_lender_hint(loan_id, lender_hint)
            return self.registry.repay_loan(caller, loan_id, funds)

    def get_user_loans(self, user: Identity) -> UserLoans:
        return self.registry.get_user_loans(user)

    def add_review(self, user: Identity, text: bytes) -> None:
        """Append a free-text review for user. Serialized with loan operations."""
        with self.registry._lock:
            try:
                self.registry.reputation.add_review(user, text)
            except ValueError as e:
                raise InvalidParameters(str(e)) from e

    def get_reputation(self, user: Identity) -> Tuple[int, Tuple[bytes, ...]]:
        """Return (stars, reviews) for user."""
        return self.registry.get_reputation(user)

    def check_due_dates(self) -> List[Transaction]:
        """Enforcer entry point: penalize every overdue loan once."""
        return self.enforcer.check_due_dates()
