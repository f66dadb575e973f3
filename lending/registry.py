"""
registry.py - Stateful Loan Registry

LoanRegistry is the central state manager for the lending ledger. It is the
only component that mutates state, ensuring controlled and auditable changes.

Key responsibilities:
    - Implements the LendingView protocol for read-only access by pure functions
    - Executes pending transactions atomically: loan records, pool custody,
      reputation, payouts and events all commit together or not at all
    - Serializes every operation behind a single lock
    - Keeps the transaction log (audit trail) and idempotency set
"""

from __future__ import annotations
from threading import RLock
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set, Tuple, Any

from .core import (
    # Types
    Loan, Coin, PendingTransaction, Transaction, Receipt, UserLoans,
    LoanRepaidEvent, ExecuteResult, Identity, LoanId, Timestamp,
    TimeSource, PayoutSink,
    # Constants
    POOL_WALLET, LOAN_ID_PREFIX,
    # Exceptions
    LendingError, NotFound, AlreadyTaken, AlreadyRepaid, InsufficientFunds,
    InvalidParameters, StaleState,
)
from .funds_pool import FundsPool
from .reputation import ReputationStore
from .time_source import ManualClock
from .transfers import InMemoryPayouts
from .loans import (
    create_loan_offer, compute_take, compute_repayment,
    iter_available_loans, partition_user_loans, outstanding_principal,
    compute_interest, compute_amount_due,
)


EventSubscriber = Callable[[LoanRepaidEvent], None]


class LoanRegistry:
    """
    Shared registry of all loans, with the funds pool and reputation store.

    Loans live in one mapping keyed by identifier; lender and borrower are
    plain attributes, never the storage key.

    Design Principles:
        - Always validates: every transaction is checked against the live
          loan snapshot, pool custody and supplied funds before anything moves.
        - Always logs: every applied transaction is recorded in the audit trail.

    Thread Safety:
        Every public operation holds one re-entrant lock from build to commit,
        so operations are fully serialized against each other.

    Example:
        clock = ManualClock(1_000)
        registry = LoanRegistry("main", time_source=clock, verbose=False)
        loan_id = registry.create_loan("alice", 1000, 100_000_000, 2_000)
        registry.take_loan("bob", loan_id, Coin(1000, "bob"))
        receipt = registry.repay_loan("bob", loan_id, Coin(1100, "bob"))
    """

    def __init__(
        self,
        name: str,
        time_source: Optional[TimeSource] = None,
        payouts: Optional[PayoutSink] = None,
        reputation: Optional[ReputationStore] = None,
        pool: Optional[FundsPool] = None,
        verbose: bool = True,
    ):
        """
        Create a registry.

        Args:
            name: Registry identifier (appears in exec ids)
            time_source: Injected clock (default: ManualClock at 0)
            payouts: Transfer primitive for outgoing value (default: InMemoryPayouts)
            reputation: Reputation store (default: empty store)
            pool: Funds pool (default: empty pool)
            verbose: Print a line per applied/rejected transaction (default: True)
        """
        self.name = name
        self.time_source = time_source or ManualClock()
        self.payouts = payouts if payouts is not None else InMemoryPayouts()
        self.reputation = reputation if reputation is not None else ReputationStore()
        self.pool = pool if pool is not None else FundsPool()
        self.verbose = verbose
        self.loans: Dict[LoanId, Loan] = {}
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.events: List[LoanRepaidEvent] = []
        self._subscribers: List[EventSubscriber] = []
        self._next_sequence: int = 0
        self._loan_sequence: int = 0
        self._lock = RLock()

    # ========================================================================
    # LendingView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> Timestamp:
        """Current time from the injected time source."""
        return self.time_source.now()

    @property
    def pool_balance(self) -> int:
        return self.pool.balance

    def get_loan(self, loan_id: LoanId) -> Optional[Loan]:
        return self.loans.get(loan_id)

    def find_loan(self, loan_id: LoanId) -> Loan:
        """
        Look up a loan by identifier (dict lookup, O(1) expected).

        Raises:
            NotFound: If the identifier is unknown
        """
        loan = self.loans.get(loan_id)
        if loan is None:
            raise NotFound(f"Loan {loan_id} not found")
        return loan

    def list_loans(self) -> List[Loan]:
        """All loans, ordered by identifier."""
        with self._lock:
            return [self.loans[k] for k in sorted(self.loans)]

    def get_stars(self, user: Identity) -> int:
        return self.reputation.get_stars(user)

    def get_reputation(self, user: Identity) -> Tuple[int, Tuple[bytes, ...]]:
        return self.reputation.get_reputation(user)

    def view_available_loans(self) -> Iterable[Loan]:
        """
        All loans whose borrower is unset.

        Returns a lazy, restartable iterable: every iteration walks the live
        registry, so loans taken in between are no longer yielded.
        """
        return _AvailableLoans(self)

    def get_user_loans(self, user: Identity) -> UserLoans:
        """
        Partition the loans where user is lender or borrower into
        (given_unpaid, given_paid, taken_unpaid, taken_paid).
        """
        return partition_user_loans(self.list_loans(), user)

    def total_outstanding(self) -> int:
        """Sum of principal over taken, unrepaid loans."""
        with self._lock:
            return outstanding_principal(self.loans.values())

    def amount_due(self, loan_id: LoanId) -> int:
        """Amount a repayment of loan_id must supply right now."""
        return compute_amount_due(self.find_loan(loan_id))

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Verify that pool custody equals outstanding principal.

        Returns:
            Dict with keys:
            - 'valid': bool - True if the invariant holds
            - 'pool_balance': int
            - 'outstanding_principal': int
            - 'discrepancy': int - pool_balance - outstanding_principal

        Example:
            result = registry.verify_conservation()
            assert result['valid'], f"Custody drift: {result['discrepancy']}"
        """
        with self._lock:
            outstanding = outstanding_principal(self.loans.values())
            balance = self.pool.balance
        return {
            'valid': balance == outstanding,
            'pool_balance': balance,
            'outstanding_principal': outstanding,
            'discrepancy': balance - outstanding,
        }

    # ========================================================================
    # EVENTS
    # ========================================================================

    def subscribe(self, callback: EventSubscriber) -> None:
        """Register a callback invoked with each LoanRepaidEvent after commit."""
        self._subscribers.append(callback)

    # ========================================================================
    # PUBLIC OPERATIONS (Mutating)
    # ========================================================================

    def _allocate_loan_id(self) -> LoanId:
        """Next unused identifier. The sequence only advances on a committed create."""
        number = self._loan_sequence + 1
        while f"{LOAN_ID_PREFIX}:{number:08d}" in self.loans:
            number += 1
        self._loan_sequence = number - 1
        return f"{LOAN_ID_PREFIX}:{number:08d}"

    def create_loan(
        self,
        caller: Identity,
        amount: int,
        interest_rate: int,
        due_date: Timestamp,
    ) -> LoanId:
        """
        Record a loan offer with caller as lender. No funds move.

        Returns:
            The fresh loan identifier

        Raises:
            InvalidParameters: If amount is zero or due_date is not in the future
        """
        with self._lock:
            loan_id = self._allocate_loan_id()
            pending = create_loan_offer(self, loan_id, caller, amount, interest_rate, due_date)
            self._submit(pending)
            self._loan_sequence += 1
            return loan_id

    def take_loan(self, caller: Identity, loan_id: LoanId, funds: Coin) -> Loan:
        """
        Take an available loan as borrower.

        Raises:
            NotFound, AlreadyTaken, InsufficientFunds, InvalidParameters
        """
        with self._lock:
            pending = compute_take(self, loan_id, caller, funds)
            self._submit(pending)
            return self.loans[loan_id]

    def repay_loan(self, caller: Identity, loan_id: LoanId, funds: Coin) -> Receipt:
        """
        Repay a taken loan as its borrower.

        Raises:
            NotFound, Unauthorized, AlreadyRepaid, InsufficientFunds, InvalidParameters
        """
        with self._lock:
            loan = self.loans.get(loan_id)
            pending = compute_repayment(self, loan_id, caller, funds)
            self._submit(pending)
            interest = compute_interest(loan.amount, loan.interest_rate)
            return Receipt(
                loan_id=loan_id,
                lender=loan.lender,
                borrower=loan.borrower,
                principal=loan.amount,
                interest=interest,
                amount_paid=loan.amount + interest,
                repaid_at=pending.timestamp,
            )

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{registry_name}:{sequence:012d}:{timestamp}
        """
        return f"exec:{self.name}:{sequence:012d}:{self.current_time}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        Execution is idempotent: a pending transaction with the same
        intent_id is not applied twice.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed
        """
        with self._lock:
            if pending.is_empty():
                return ExecuteResult.APPLIED
            if pending.intent_id in self.seen_intent_ids:
                if self.verbose:
                    print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
                return ExecuteResult.ALREADY_APPLIED
            error = self._validate_pending(pending)
            if error is not None:
                if self.verbose:
                    print(f"✗ REJECTED: {error}")
                return ExecuteResult.REJECTED
            self._apply(pending)
            return ExecuteResult.APPLIED

    def _submit(self, pending: PendingTransaction) -> Transaction:
        """Execute on behalf of a public operation, raising the rejection reason."""
        error = self._validate_pending(pending)
        if error is not None:
            if self.verbose:
                print(f"✗ REJECTED: {error}")
            raise error
        return self._apply(pending)

    def _validate_pending(self, pending: PendingTransaction) -> Optional[LendingError]:
        """
        Validate a pending transaction against live state.

        Checks performed:
        1. Timestamp (must not be from the future)
        2. Loan snapshots (old must equal the live record; creation must use a
           fresh identifier)
        3. Supplied funds accounting (funds_in covers escrow pass-through and
           custody settlement exactly)
        4. Pool custody (balance after deposit covers every release)

        Returns:
            None if valid, otherwise the LendingError describing the failure
        """
        if pending.timestamp > self.current_time:
            return InvalidParameters(f"future timestamp {pending.timestamp}")

        for lc in pending.loan_changes:
            live = self.loans.get(lc.loan_id)
            if lc.old is None:
                if live is not None:
                    return InvalidParameters(f"Loan {lc.loan_id} already exists")
                continue
            if live is None:
                return NotFound(f"Loan {lc.loan_id} not found")
            if live != lc.old:
                if lc.old.borrower is None and live.borrower is not None:
                    return AlreadyTaken(f"Loan {lc.loan_id} already taken by {live.borrower}")
                if not lc.old.repaid and live.repaid:
                    return AlreadyRepaid(f"Loan {lc.loan_id} already repaid")
                return StaleState(f"Loan {lc.loan_id} changed since transaction was built")

        escrow_out = pending.escrow_release
        pool_out = pending.pool_release
        if pending.funds_in and pending.funds_in != escrow_out + pool_out:
            return InvalidParameters(
                f"Supplied funds {pending.funds_in} do not match payouts {escrow_out + pool_out}"
            )
        if escrow_out > pending.funds_in:
            return InsufficientFunds(
                f"Escrow payouts {escrow_out} exceed supplied funds {pending.funds_in}"
            )
        if pool_out > self.pool.balance + pending.deposit:
            return InsufficientFunds(
                f"Pool holds {self.pool.balance + pending.deposit}, cannot release {pool_out}"
            )
        return None

    def _apply(self, pending: PendingTransaction) -> Transaction:
        """
        Apply a validated transaction. Cannot fail once validation passed.

        Order: pool custody, loan records, reputation, audit log, then
        delivery of coins and event notification.
        """
        if pending.deposit:
            self.pool.deposit(pending.deposit)
        coins: List[Tuple[str, Coin]] = []
        for move in pending.payouts:
            if move.source == POOL_WALLET:
                coins.append((move.reference, self.pool.withdraw(move.quantity, move.dest)))
            else:
                coins.append((move.reference, Coin(value=move.quantity, owner=move.dest)))

        for lc in pending.loan_changes:
            self.loans[lc.loan_id] = lc.new

        for rc in pending.reputation_changes:
            self.reputation.apply(rc)

        sequence = self._next_sequence
        self._next_sequence += 1
        tx = Transaction(
            loan_changes=pending.loan_changes,
            reputation_changes=pending.reputation_changes,
            payouts=pending.payouts,
            deposit=pending.deposit,
            funds_in=pending.funds_in,
            events=pending.events,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            registry_name=self.name,
            execution_time=self.current_time,
            sequence_number=sequence,
        )
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)
        self.events.extend(pending.events)

        if self.verbose:
            print(f"✓ APPLIED: {tx.exec_id} {tx.origin}")

        for reference, coin in coins:
            self.payouts.pay(coin, reference)
        for event in pending.events:
            for callback in self._subscribers:
                callback(event)
        return tx

    # ========================================================================
    # REGISTRY OPERATIONS
    # ========================================================================

    def clone(self) -> LoanRegistry:
        """
        Create an independent copy of this registry.

        The clone shares the time source but gets its own pool, reputation
        store, payout log and transaction log, so what-if sweeps on the clone
        never touch the original. Subscribers are not copied.
        """
        with self._lock:
            payouts = self.payouts.clone() if hasattr(self.payouts, "clone") else InMemoryPayouts()
            cloned = LoanRegistry(
                self.name,
                time_source=self.time_source,
                payouts=payouts,
                reputation=self.reputation.clone(),
                pool=self.pool.clone(),
                verbose=self.verbose,
            )
            # Loans are frozen; a shallow copy is independent.
            cloned.loans = dict(self.loans)
            cloned.seen_intent_ids = set(self.seen_intent_ids)
            cloned.transaction_log = list(self.transaction_log)
            cloned.events = list(self.events)
            cloned._next_sequence = self._next_sequence
            cloned._loan_sequence = self._loan_sequence
            return cloned

    def __repr__(self) -> str:
        return (
            f"LoanRegistry({self.name!r}, loans={len(self.loans)}, "
            f"pool={self.pool.balance})"
        )


class _AvailableLoans:
    """Restartable view over the registry's available loans."""

    def __init__(self, registry: LoanRegistry):
        self._registry = registry

    def __iter__(self) -> Iterator[Loan]:
        return iter_available_loans(self._registry.list_loans())
