"""
lending - Peer-to-Peer Lending Ledger

A registry of loan offers and active loans, a pooled-funds custody account,
per-user reputation tied to repayment, and a due-date enforcer.

Usage:
    from lending import LoanRegistry, LendingDesk, ManualClock, Coin

    clock = ManualClock(1_000)
    desk = LendingDesk(LoanRegistry("main", time_source=clock))

    loan_id = desk.create_loan("alice", 1000, 100_000_000, 2_000)   # 10% interest
    desk.take_loan("bob", "alice", loan_id, Coin(1000, "bob"))
    receipt = desk.repay_loan("bob", "alice", loan_id, Coin(1100, "bob"))

    clock.advance_time(5_000)
    desk.check_due_dates()
"""

# Core types
from .core import (
    LendingView,
    TimeSource,
    PayoutSink,
    Loan,
    LoanStatus,
    Coin,
    Move,
    LoanChange,
    ReputationChange,
    LoanRepaidEvent,
    Receipt,
    UserLoans,
    PendingTransaction,
    Transaction,
    TransactionOrigin,
    OriginType,
    ExecuteResult,
    build_transaction,
    empty_pending_transaction,
    LendingError,
    InvalidParameters,
    NotFound,
    AlreadyTaken,
    Unauthorized,
    AlreadyRepaid,
    InsufficientFunds,
    StaleState,
    SCALE,
    LATE_FEE_DIVISOR,
    POOL_WALLET,
    ESCROW_WALLET,
    SYSTEM_ACTOR,
)

# Components
from .funds_pool import FundsPool
from .reputation import UserReputation, ReputationStore
from .time_source import FixedTimeSource, ManualClock, SystemTimeSource
from .transfers import InMemoryPayouts

# Loan lifecycle (pure functions)
from .loans import (
    compute_interest,
    compute_amount_due,
    late_fee_for,
    create_loan_offer,
    compute_take,
    compute_repayment,
    compute_late_fee,
    iter_available_loans,
    partition_user_loans,
    outstanding_principal,
)

# Registry, enforcer, public surface
from .registry import LoanRegistry
from .enforcer import DueDateEnforcer, late_fee_contract
from .desk import LendingDesk

__all__ = [
    # Core
    'LendingView', 'TimeSource', 'PayoutSink',
    'Loan', 'LoanStatus', 'Coin', 'Move', 'LoanChange', 'ReputationChange',
    'LoanRepaidEvent', 'Receipt', 'UserLoans',
    'PendingTransaction', 'Transaction', 'TransactionOrigin', 'OriginType',
    'ExecuteResult', 'build_transaction', 'empty_pending_transaction',
    'LendingError', 'InvalidParameters', 'NotFound', 'AlreadyTaken',
    'Unauthorized', 'AlreadyRepaid', 'InsufficientFunds', 'StaleState',
    'SCALE', 'LATE_FEE_DIVISOR', 'POOL_WALLET', 'ESCROW_WALLET', 'SYSTEM_ACTOR',
    # Components
    'FundsPool', 'UserReputation', 'ReputationStore',
    'FixedTimeSource', 'ManualClock', 'SystemTimeSource', 'InMemoryPayouts',
    # Loan lifecycle
    'compute_interest', 'compute_amount_due', 'late_fee_for',
    'create_loan_offer', 'compute_take', 'compute_repayment', 'compute_late_fee',
    'iter_available_loans', 'partition_user_loans', 'outstanding_principal',
    # Registry
    'LoanRegistry', 'DueDateEnforcer', 'late_fee_contract', 'LendingDesk',
]

__version__ = '1.0.0'
