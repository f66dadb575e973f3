"""
loans.py - Pure functions for the loan lifecycle

This module computes every loan state transition without mutating anything:
1. create_loan_offer() - validate an offer and build the creation transaction
2. compute_take() - borrower takes an available loan
3. compute_repayment() - borrower repays principal plus interest
4. compute_late_fee() - overdue loan gets a one-time 10% late fee and a star penalty
5. partition_user_loans() / iter_available_loans() - read-side helpers

Lifecycle:
    AVAILABLE --take--> ACTIVE --repay--> REPAID
                          |                 ^
                          +--late fee--> LATE

Funds routing:
    Take:  supplied funds pass through escrow to the borrower; the principal
           is booked into pool custody.
    Repay: supplied funds settle custody; the pool releases the principal to
           the lender and the interest passes through escrow to the lender.

All functions take a LendingView (read-only) and return a PendingTransaction,
or raise a LendingError subclass describing why the operation is rejected.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Iterable, Iterator, Optional

from .core import (
    LendingView, Loan, LoanChange, LoanRepaidEvent, Move, Coin,
    ReputationChange, TransactionOrigin, OriginType, PendingTransaction,
    UserLoans, Identity, LoanId, Timestamp,
    SCALE, LATE_FEE_DIVISOR, MAX_UINT64, POOL_WALLET, ESCROW_WALLET,
    STAR_ADD, STAR_PENALIZE, SYSTEM_ACTOR,
    InvalidParameters, NotFound, AlreadyTaken, Unauthorized, AlreadyRepaid,
    InsufficientFunds,
    build_transaction, empty_pending_transaction, check_uint,
)


# ============================================================================
# ARITHMETIC
# ============================================================================

def compute_interest(amount: int, interest_rate: int) -> int:
    """Interest on amount at a fixed-point rate, floored: amount * rate // SCALE."""
    return amount * interest_rate // SCALE


def compute_amount_due(loan: Loan) -> int:
    """Principal plus floored interest on the current principal."""
    return loan.amount + compute_interest(loan.amount, loan.interest_rate)


def late_fee_for(amount: int) -> int:
    """10% of principal, floor division."""
    return amount // LATE_FEE_DIVISOR


def _require_loan(view: LendingView, loan_id: LoanId) -> Loan:
    loan = view.get_loan(loan_id)
    if loan is None:
        raise NotFound(f"Loan {loan_id} not found")
    return loan


def _check_funds(funds: Coin, required: int, caller: Identity) -> None:
    """
    Enforce the exact-amount policy for supplied funds.

    The coin must be owned by the caller.

    Raises:
        InvalidParameters: If funds is not a Coin owned by caller
        InsufficientFunds: If funds.value < required
        InvalidParameters: If funds.value > required (excess is rejected, not refunded)
    """
    if not isinstance(funds, Coin):
        raise InvalidParameters(f"funds must be a Coin, got {type(funds).__name__}")
    if funds.owner != caller:
        raise InvalidParameters(f"funds owned by {funds.owner}, not caller {caller}")
    if funds.value < required:
        raise InsufficientFunds(f"Supplied {funds.value}, required {required}")
    if funds.value > required:
        raise InvalidParameters(
            f"Supplied {funds.value} exceeds required {required}; exact amount expected"
        )


# ============================================================================
# CREATE
# ============================================================================

def create_loan_offer(
    view: LendingView,
    loan_id: LoanId,
    lender: Identity,
    amount: int,
    interest_rate: int,
    due_date: Timestamp,
) -> PendingTransaction:
    """
    Validate a loan offer and build the transaction that records it.

    No funds move at creation: the offer is a record, not a transfer.

    Args:
        view: Read-only registry access (provides current_time)
        loan_id: Fresh identifier allocated by the registry
        lender: Caller identity
        amount: Principal, must be positive
        interest_rate: Fixed-point rate scaled by SCALE, may be zero
        due_date: Must be strictly after the current time

    Returns:
        PendingTransaction creating the Loan with borrower unset.

    Raises:
        InvalidParameters: On zero amount, past due date, non-integer input,
                           an identifier already in use, or an amount due
                           (including the late fee) that would overflow uint64.
    """
    try:
        check_uint("amount", amount)
        check_uint("interest_rate", interest_rate)
        check_uint("due_date", due_date)
    except ValueError as e:
        raise InvalidParameters(str(e)) from e
    if not isinstance(lender, str) or not lender.strip():
        raise InvalidParameters("lender cannot be empty")
    if amount == 0:
        raise InvalidParameters("amount must be positive")
    now = view.current_time
    if due_date <= now:
        raise InvalidParameters(f"due_date {due_date} must be after current time {now}")
    # Worst case: the one-time late fee raises principal before repayment.
    penalized = amount + late_fee_for(amount)
    if penalized + compute_interest(penalized, interest_rate) > MAX_UINT64:
        raise InvalidParameters("amount due after late fee would overflow uint64")
    if view.get_loan(loan_id) is not None:
        raise InvalidParameters(f"Loan {loan_id} already exists")

    loan = Loan(
        loan_id=loan_id,
        lender=lender,
        amount=amount,
        interest_rate=interest_rate,
        created_at=now,
        due_date=due_date,
    )
    origin = TransactionOrigin(OriginType.USER_ACTION, lender, loan_id, "CREATE")
    return build_transaction(view, [LoanChange(loan_id, None, loan)], origin=origin)


# ============================================================================
# TAKE
# ============================================================================

def compute_take(
    view: LendingView,
    loan_id: LoanId,
    borrower: Identity,
    funds: Coin,
) -> PendingTransaction:
    """
    Build the transaction for a borrower taking an available loan.

    Checks, in order: the loan exists, it has no borrower, the borrower is
    not the lender, and the supplied funds are a coin owned by the borrower
    equal to the principal.

    Returns:
        PendingTransaction that sets borrower and taken_at, books the
        principal into pool custody, and delivers the principal to the
        borrower.

    Raises:
        NotFound, AlreadyTaken, InvalidParameters, InsufficientFunds
    """
    loan = _require_loan(view, loan_id)
    if loan.borrower is not None:
        raise AlreadyTaken(f"Loan {loan_id} already taken by {loan.borrower}")
    if not isinstance(borrower, str) or not borrower.strip():
        raise InvalidParameters("borrower cannot be empty")
    if borrower == loan.lender:
        raise InvalidParameters(f"Lender {borrower} cannot take own loan {loan_id}")
    _check_funds(funds, loan.amount, borrower)

    taken = replace(loan, borrower=borrower, taken_at=view.current_time)
    moves = [
        Move(
            quantity=loan.amount,
            source=ESCROW_WALLET,
            dest=borrower,
            reference=f"disburse:{loan_id}",
        ),
    ]
    origin = TransactionOrigin(OriginType.USER_ACTION, borrower, loan_id, "TAKE")
    return build_transaction(
        view,
        [LoanChange(loan_id, loan, taken)],
        payouts=moves,
        deposit=loan.amount,
        funds_in=funds.value,
        origin=origin,
    )


# ============================================================================
# REPAY
# ============================================================================

def compute_repayment(
    view: LendingView,
    loan_id: LoanId,
    caller: Identity,
    funds: Coin,
) -> PendingTransaction:
    """
    Build the transaction for a borrower repaying a loan.

    amount_due = principal + floor(principal * interest_rate / SCALE), where
    principal includes any late fee already applied.

    Checks, in order: the loan exists, caller is its borrower, it is not
    already repaid, and the supplied funds are a coin owned by the caller
    equal to amount_due.

    Returns:
        PendingTransaction that marks the loan repaid, releases the principal
        from custody to the lender, passes the interest to the lender,
        awards the borrower one star, and emits LoanRepaidEvent.

    Raises:
        NotFound, Unauthorized, AlreadyRepaid, InsufficientFunds, InvalidParameters
    """
    loan = _require_loan(view, loan_id)
    if loan.borrower is None or caller != loan.borrower:
        raise Unauthorized(f"{caller} is not the borrower of loan {loan_id}")
    if loan.repaid:
        raise AlreadyRepaid(f"Loan {loan_id} already repaid")

    interest = compute_interest(loan.amount, loan.interest_rate)
    amount_due = loan.amount + interest
    _check_funds(funds, amount_due, caller)

    repaid = replace(loan, repaid=True)
    moves = [
        Move(
            quantity=loan.amount,
            source=POOL_WALLET,
            dest=loan.lender,
            reference=f"release:{loan_id}",
        ),
    ]
    if interest > 0:
        moves.append(Move(
            quantity=interest,
            source=ESCROW_WALLET,
            dest=loan.lender,
            reference=f"interest:{loan_id}",
        ))
    event = LoanRepaidEvent(
        loan_id=loan_id,
        lender=loan.lender,
        borrower=loan.borrower,
        amount=amount_due,
    )
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, loan_id, "REPAY")
    return build_transaction(
        view,
        [LoanChange(loan_id, loan, repaid)],
        reputation_changes=[ReputationChange(loan.borrower, STAR_ADD)],
        payouts=moves,
        funds_in=funds.value,
        events=[event],
        origin=origin,
    )


# ============================================================================
# LATE FEE
# ============================================================================

def compute_late_fee(
    view: LendingView,
    loan_id: LoanId,
    timestamp: Optional[Timestamp] = None,
) -> PendingTransaction:
    """
    Apply the one-time late fee to an overdue loan.

    A loan is overdue when it is taken, unrepaid and due_date < timestamp.
    The fee (principal // 10) is added to principal and booked into pool
    custody, and the borrower loses one star (floored at zero).

    Returns an empty PendingTransaction if the loan is not overdue or the
    fee has already been applied, so repeated sweeps are no-ops.

    Raises:
        NotFound: If the loan does not exist
    """
    loan = _require_loan(view, loan_id)
    now = view.current_time if timestamp is None else timestamp
    if not loan.is_overdue(now) or loan.late_fee_applied:
        return empty_pending_transaction(view)

    fee = late_fee_for(loan.amount)
    penalized = replace(
        loan,
        amount=loan.amount + fee,
        late_fees=loan.late_fees + fee,
        late_fee_applied=True,
    )
    origin = TransactionOrigin(OriginType.LIFECYCLE, SYSTEM_ACTOR, loan_id, "LATE_FEE")
    return build_transaction(
        view,
        [LoanChange(loan_id, loan, penalized)],
        reputation_changes=[ReputationChange(loan.borrower, STAR_PENALIZE)],
        deposit=fee,
        origin=origin,
    )


# ============================================================================
# QUERIES
# ============================================================================

def iter_available_loans(loans: Iterable[Loan]) -> Iterator[Loan]:
    """Yield loans whose borrower is unset."""
    for loan in loans:
        if loan.is_available:
            yield loan


def partition_user_loans(loans: Iterable[Loan], user: Identity) -> UserLoans:
    """
    Split the loans a user is party to by role and repaid status.

    A loan where the user is lender lands in a given_* bucket; a loan where
    the user is borrower lands in a taken_* bucket.
    """
    given_unpaid, given_paid, taken_unpaid, taken_paid = [], [], [], []
    for loan in loans:
        if loan.lender == user:
            (given_paid if loan.repaid else given_unpaid).append(loan)
        # elif: compute_take rejects a lender taking their own offer, so a
        # loan never has the same user on both sides.
        elif loan.borrower == user:
            (taken_paid if loan.repaid else taken_unpaid).append(loan)
    return UserLoans(
        given_unpaid=tuple(given_unpaid),
        given_paid=tuple(given_paid),
        taken_unpaid=tuple(taken_unpaid),
        taken_paid=tuple(taken_paid),
    )


def outstanding_principal(loans: Iterable[Loan]) -> int:
    """Sum of principal over taken, unrepaid loans."""
    return sum(loan.amount for loan in loans if loan.is_active)
