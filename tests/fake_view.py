"""
fake_view.py - Test Helper for LendingView

Provides a minimal LendingView implementation for testing the pure loan
functions without a full LoanRegistry.
"""

from __future__ import annotations
from typing import Dict, List, Optional

from lending import Loan


class FakeView:
    """
    Minimal LendingView implementation for testing pure functions.

    Example:
        view = FakeView(
            loans=[Loan("loan:1", "alice", 1000, 0, 0, 100)],
            time=50,
        )
        view.get_loan("loan:1")
    """

    def __init__(
        self,
        loans: Optional[List[Loan]] = None,
        time: int = 0,
        pool_balance: int = 0,
        stars: Optional[Dict[str, int]] = None,
    ):
        self._loans = {loan.loan_id: loan for loan in (loans or [])}
        self._time = time
        self._pool_balance = pool_balance
        self._stars = stars or {}

    @property
    def current_time(self) -> int:
        return self._time

    @property
    def pool_balance(self) -> int:
        return self._pool_balance

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        return self._loans.get(loan_id)

    def list_loans(self) -> List[Loan]:
        return [self._loans[k] for k in sorted(self._loans)]

    def get_stars(self, user: str) -> int:
        return self._stars.get(user, 0)
