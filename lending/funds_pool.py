"""
funds_pool.py - Custody account for principal in flight

The FundsPool is the registry's custody book. Taking a loan deposits its
principal; the enforcer books late fees on top; repaying a loan withdraws the
(possibly fee-adjusted) principal and releases it as a Coin to the lender.

Invariant maintained by LoanRegistry:
    balance == sum(loan.amount for loan in loans if loan.is_active)
"""

from __future__ import annotations
from typing import List, Tuple

from .core import Coin, InsufficientFunds, check_uint, check_identity


class FundsPool:
    """
    Holds aggregate custody of lent principal.

    The pool only counts value; it does not know about loans. Callers
    (LoanRegistry) are responsible for pairing every deposit with a loan.

    Example:
        pool = FundsPool()
        pool.deposit(1000)
        coin = pool.withdraw(1000, "alice")
        assert pool.balance == 0 and coin.value == 1000
    """

    def __init__(self, balance: int = 0):
        self._balance = check_uint("balance", balance)
        self.total_deposited = 0
        self.total_withdrawn = 0

    @property
    def balance(self) -> int:
        """Funds currently held in custody."""
        return self._balance

    def can_withdraw(self, amount: int) -> bool:
        return 0 <= amount <= self._balance

    def deposit(self, amount: int) -> None:
        """
        Increase the held balance. Never fails for a valid uint64 amount.

        Raises:
            ValueError: If amount is not an unsigned integer
        """
        check_uint("deposit amount", amount)
        self._balance += amount
        self.total_deposited += amount

    def withdraw(self, amount: int, recipient: str) -> Coin:
        """
        Decrease the held balance and yield a Coin owned by recipient.

        Raises:
            InsufficientFunds: If the pool holds less than amount
            ValueError: If amount or recipient is malformed
        """
        check_uint("withdraw amount", amount)
        check_identity("recipient", recipient)
        if amount > self._balance:
            raise InsufficientFunds(
                f"Pool holds {self._balance}, cannot withdraw {amount}"
            )
        self._balance -= amount
        self.total_withdrawn += amount
        return Coin(value=amount, owner=recipient)

    def clone(self) -> FundsPool:
        cloned = FundsPool(self._balance)
        cloned.total_deposited = self.total_deposited
        cloned.total_withdrawn = self.total_withdrawn
        return cloned

    def __repr__(self) -> str:
        return f"FundsPool(balance={self._balance})"
