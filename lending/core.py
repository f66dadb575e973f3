"""
Core types and pure helpers for the peer-to-peer lending ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LendingView for read-only registry access, TimeSource, PayoutSink
2. Immutable data structures: Loan, Coin, Move, LoanChange, PendingTransaction, Transaction
3. Exceptions: LendingError and the domain-specific rejection kinds
4. Constants: fixed-point SCALE, late fee divisor, reserved wallet names

Nothing in this module mutates registry state. Pure functions build a
PendingTransaction against a LendingView; only LoanRegistry applies it.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
import hashlib
from typing import (
    Dict, List, Optional, Any, Protocol, Tuple, FrozenSet, NamedTuple,
    Iterable, runtime_checkable,
)


# ============================================================================
# CONSTANTS
# ============================================================================

# Fixed-point scale for interest rates: rate 100_000_000 == 10%.
SCALE = 1_000_000_000

# Late fee is principal // LATE_FEE_DIVISOR (10%, floor division).
LATE_FEE_DIVISOR = 10

# Amounts, rates and timestamps are unsigned 64-bit integers.
MAX_UINT64 = 2 ** 64 - 1

# Reserved wallet for the funds pool custody account.
POOL_WALLET = "pool"

# Pass-through account for funds supplied with a take or repay call.
ESCROW_WALLET = "escrow"

# Actor used for enforcer-originated transactions.
SYSTEM_ACTOR = "system"

LOAN_ID_PREFIX = "loan"

# Reputation change kinds.
STAR_ADD = "add_star"
STAR_PENALIZE = "penalize"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Opaque caller identity supplied by the transport layer.
Identity = str

LoanId = str

# Seconds since the epoch (uint64).
Timestamp = int


def check_uint(name: str, value: Any) -> int:
    """Validate that value is an unsigned 64-bit integer and return it."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value > MAX_UINT64:
        raise ValueError(f"{name} must be in [0, 2**64), got {value}")
    return value


def check_identity(name: str, value: Any) -> str:
    """Validate a non-empty identity string."""
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{name} cannot be empty")
    return value


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the registry.
    ALREADY_APPLIED: Intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation (stale loan state, pool shortfall,
              future timestamp).
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated, for the audit trail."""
    USER_ACTION = "user_action"           # create / take / repay by a caller
    LIFECYCLE = "lifecycle"               # enforcer sweep
    SYSTEM = "system"                     # setup, replay


class LoanStatus(Enum):
    """Derived lifecycle status of a Loan."""
    AVAILABLE = "available"
    ACTIVE = "active"
    LATE = "late"
    REPAID = "repaid"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-related errors."""
    pass


class InvalidParameters(LendingError):
    """Raised when an operation receives out-of-range or inconsistent input."""
    pass


class NotFound(LendingError):
    """Raised when a loan identifier is not in the registry."""
    pass


class AlreadyTaken(LendingError):
    """Raised when taking a loan that already has a borrower."""
    pass


class Unauthorized(LendingError):
    """Raised when the caller is not allowed to perform the operation on a loan."""
    pass


class AlreadyRepaid(LendingError):
    """Raised when repaying a loan whose repaid flag is already set."""
    pass


class InsufficientFunds(LendingError):
    """Raised when supplied funds or the pool balance do not cover an amount."""
    pass


class StaleState(LendingError):
    """Raised when a pending transaction was built against an outdated loan snapshot."""
    pass


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class TimeSource(Protocol):
    """Injected wall-clock capability. Returns seconds since the epoch."""

    def now(self) -> Timestamp:
        ...


@runtime_checkable
class PayoutSink(Protocol):
    """
    Monetary-transfer capability for value leaving the core.

    The registry hands every Coin it releases to the sink; the sink delivers
    it to coin.owner. Implementations must not fail for a well-formed coin.
    """

    def pay(self, coin: 'Coin', reference: str) -> None:
        ...


@runtime_checkable
class LendingView(Protocol):
    """
    Read-only interface to registry state.

    Pure functions (loans.py, enforcer rules) accept a LendingView to declare
    that they only read. LoanRegistry implements this protocol and also the
    mutating operations.
    """

    @property
    def current_time(self) -> Timestamp:
        """Current time as reported by the injected time source."""
        ...

    def get_loan(self, loan_id: LoanId) -> Optional['Loan']:
        """Return the loan or None if the identifier is unknown."""
        ...

    def list_loans(self) -> List['Loan']:
        """Return all loans ordered by identifier."""
        ...

    @property
    def pool_balance(self) -> int:
        """Funds currently held in custody by the pool."""
        ...

    def get_stars(self, user: Identity) -> int:
        """Current star count for a user (0 if unknown)."""
        ...


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Caller identity or component name
        loan_id: Loan the transaction acts on (if any)
        event_type: Operation name ("CREATE", "TAKE", "REPAY", "LATE_FEE")
    """
    origin_type: OriginType
    source_id: str
    loan_id: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.loan_id:
            parts.append(f"loan={self.loan_id}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# VALUE OBJECTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Coin:
    """
    A transferable amount of the lending currency owned by one identity.

    Coins are supplied by the transport layer with take/repay calls and
    produced by the registry for recipients. The core never creates a Coin
    whose value was not supplied to it or held in pool custody.
    """
    value: int
    owner: Identity

    def __post_init__(self):
        check_uint("Coin value", self.value)
        check_identity("Coin owner", self.owner)

    def __repr__(self) -> str:
        return f"Coin({self.value} @ {self.owner})"


@dataclass(frozen=True, slots=True)
class Move:
    """
    A single delivery of value from a source to a destination.

    Attributes:
        quantity: Amount transferred (positive)
        source: Paying identity, or POOL_WALLET for custody releases
        dest: Receiving identity
        reference: Identifier of the operation that produced this move
    """
    quantity: int
    source: str
    dest: str
    reference: str

    def __post_init__(self):
        check_uint("Move quantity", self.quantity)
        if self.quantity == 0:
            raise ValueError("Move quantity must be positive")
        check_identity("Move source", self.source)
        check_identity("Move dest", self.dest)
        check_identity("Move reference", self.reference)
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class Loan:
    """
    A loan offer, and once taken, an active loan.

    Attributes:
        loan_id: Unique identifier assigned at creation (immutable)
        lender: Identity that created the offer
        borrower: Identity that took the loan (None while available)
        amount: Principal; grows only by late fees
        interest_rate: Fixed-point rate scaled by SCALE
        created_at: Creation timestamp
        due_date: Timestamp after which the loan is overdue
        taken_at: Timestamp of take_loan (None while available)
        repaid: Set exactly once by repay_loan
        late_fee_applied: Set by the enforcer when the late fee is booked
        late_fees: Total principal added by late fees
    """
    loan_id: LoanId
    lender: Identity
    amount: int
    interest_rate: int
    created_at: Timestamp
    due_date: Timestamp
    borrower: Optional[Identity] = None
    taken_at: Optional[Timestamp] = None
    repaid: bool = False
    late_fee_applied: bool = False
    late_fees: int = 0

    def __post_init__(self):
        check_identity("loan_id", self.loan_id)
        check_identity("lender", self.lender)
        check_uint("amount", self.amount)
        check_uint("interest_rate", self.interest_rate)
        check_uint("created_at", self.created_at)
        check_uint("due_date", self.due_date)
        if self.borrower is None and (self.repaid or self.late_fee_applied):
            raise ValueError("Untaken loan cannot be repaid or carry late fees")

    @property
    def is_available(self) -> bool:
        return self.borrower is None

    @property
    def is_active(self) -> bool:
        """Taken and not yet repaid."""
        return self.borrower is not None and not self.repaid

    def is_overdue(self, now: Timestamp) -> bool:
        return self.is_active and self.due_date < now

    @property
    def status(self) -> LoanStatus:
        if self.borrower is None:
            return LoanStatus.AVAILABLE
        if self.repaid:
            return LoanStatus.REPAID
        if self.late_fee_applied:
            return LoanStatus.LATE
        return LoanStatus.ACTIVE

    def involves(self, user: Identity) -> bool:
        return self.lender == user or self.borrower == user


class UserLoans(NamedTuple):
    """Loans of one user split by role and repaid status. The four are disjoint."""
    given_unpaid: Tuple[Loan, ...]
    given_paid: Tuple[Loan, ...]
    taken_unpaid: Tuple[Loan, ...]
    taken_paid: Tuple[Loan, ...]


@dataclass(frozen=True, slots=True)
class LoanRepaidEvent:
    """Notification emitted after a successful repayment commits."""
    loan_id: LoanId
    lender: Identity
    borrower: Identity
    amount: int


@dataclass(frozen=True, slots=True)
class Receipt:
    """Result of a successful repay_loan call."""
    loan_id: LoanId
    lender: Identity
    borrower: Identity
    principal: int
    interest: int
    amount_paid: int
    repaid_at: Timestamp


# ============================================================================
# STATE CHANGES
# ============================================================================

@dataclass(frozen=True, slots=True)
class LoanChange:
    """
    Before/after snapshot of one loan record.

    old is None for creation. The registry rejects the change if the live
    record no longer equals old (optimistic concurrency).
    """
    loan_id: LoanId
    old: Optional[Loan]
    new: Loan

    def __post_init__(self):
        if self.new.loan_id != self.loan_id:
            raise ValueError(f"LoanChange id mismatch: {self.loan_id} != {self.new.loan_id}")
        if self.old is not None and self.old.loan_id != self.loan_id:
            raise ValueError(f"LoanChange id mismatch: {self.loan_id} != {self.old.loan_id}")

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Fields that differ between old and new, as (old, new) pairs."""
        if self.old is None:
            return {}
        changes = {}
        for name in Loan.__dataclass_fields__:
            old_val = getattr(self.old, name)
            new_val = getattr(self.new, name)
            if old_val != new_val:
                changes[name] = (old_val, new_val)
        return changes


@dataclass(frozen=True, slots=True)
class ReputationChange:
    """A single star adjustment for one user (kind is STAR_ADD or STAR_PENALIZE)."""
    user: Identity
    kind: str

    def __post_init__(self):
        check_identity("user", self.user)
        if self.kind not in (STAR_ADD, STAR_PENALIZE):
            raise ValueError(f"Unknown reputation change kind: {self.kind}")


# ============================================================================
# CANONICAL HASHING
# ============================================================================

def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Dataclass instances are serialized field by field so that equal records
    always hash the same regardless of construction history.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, bytes):
        return f"B:{value.hex()}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if hasattr(value, "__dataclass_fields__"):
        items = [(name, getattr(value, name)) for name in sorted(value.__dataclass_fields__)]
        serialized = ",".join(f"{k}:{_canonicalize(v)}" for k, v in items)
        return f"{type(value).__name__}{{{serialized}}}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    loan_changes: Tuple[LoanChange, ...],
    reputation_changes: Tuple[ReputationChange, ...],
    payouts: Tuple[Move, ...],
    deposit: int,
    funds_in: int,
    origin: TransactionOrigin,
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Based solely on semantic content, never on execution time or sequence.
    Used for idempotency: the same intent is applied at most once.
    """
    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.loan_id:
        content_parts.append(f"loan:{origin.loan_id}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")
    content_parts.append(f"deposit:{deposit}")
    content_parts.append(f"funds_in:{funds_in}")
    for lc in sorted(loan_changes, key=lambda c: c.loan_id):
        content_parts.append(
            f"loan_change:{lc.loan_id}|{_canonicalize(lc.old)}|{_canonicalize(lc.new)}"
        )
    for rc in reputation_changes:
        content_parts.append(f"reputation:{rc.user}|{rc.kind}")
    for m in sorted(payouts, key=lambda m: (m.quantity, m.source, m.dest, m.reference)):
        content_parts.append(f"move:{m.quantity}|{m.source}|{m.dest}|{m.reference}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


# ============================================================================
# TRANSACTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction specification before execution - represents INTENT.

    Built by pure functions and submitted to LoanRegistry for execution.

    Attributes:
        loan_changes: Loan records to create or replace
        reputation_changes: Star adjustments, applied in order
        payouts: Value delivered to recipients (source POOL_WALLET releases custody)
        deposit: Amount booked into pool custody
        funds_in: Value of the coin consumed from the caller
        events: Notifications emitted after commit
        origin: Who/what created this transaction and why
        timestamp: Registry time when the intent was built
        intent_id: Content hash of the intent (auto-computed)
    """
    loan_changes: Tuple[LoanChange, ...]
    reputation_changes: Tuple[ReputationChange, ...]
    payouts: Tuple[Move, ...]
    deposit: int
    funds_in: int
    events: Tuple[LoanRepaidEvent, ...]
    origin: TransactionOrigin
    timestamp: Timestamp
    intent_id: str = field(default="")

    def __post_init__(self):
        check_uint("deposit", self.deposit)
        check_uint("funds_in", self.funds_in)
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.loan_changes, self.reputation_changes, self.payouts,
                self.deposit, self.funds_in, self.origin,
            )
            object.__setattr__(self, 'intent_id', computed_id)

    @property
    def pool_release(self) -> int:
        """Total custody released by this transaction."""
        return sum(m.quantity for m in self.payouts if m.source == POOL_WALLET)

    @property
    def escrow_release(self) -> int:
        """Total of supplied funds passed straight through to recipients."""
        return sum(m.quantity for m in self.payouts if m.source == ESCROW_WALLET)

    def is_empty(self) -> bool:
        """True if the transaction changes nothing."""
        return (
            not self.loan_changes and not self.reputation_changes
            and not self.payouts and not self.deposit
        )

    def __repr__(self) -> str:
        return (
            f"PendingTransaction({len(self.loan_changes)} loan changes, "
            f"{len(self.payouts)} payouts, {self.origin})"
        )


def build_transaction(
    view: LendingView,
    loan_changes: Iterable[LoanChange] = (),
    reputation_changes: Iterable[ReputationChange] = (),
    payouts: Iterable[Move] = (),
    deposit: int = 0,
    funds_in: int = 0,
    events: Iterable[LoanRepaidEvent] = (),
    origin: Optional[TransactionOrigin] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    This is the standard way to create transactions.

    Example:
        def compute_flag(view, loan_id):
            old = view.get_loan(loan_id)
            new = replace(old, late_fee_applied=True)
            return build_transaction(view, [LoanChange(loan_id, old, new)])
    """
    if origin is None:
        origin = TransactionOrigin(OriginType.SYSTEM, SYSTEM_ACTOR)

    return PendingTransaction(
        loan_changes=tuple(loan_changes),
        reputation_changes=tuple(reputation_changes),
        payouts=tuple(payouts),
        deposit=deposit,
        funds_in=funds_in,
        events=tuple(events),
        origin=origin,
        timestamp=view.current_time,
    )


def empty_pending_transaction(view: LendingView) -> PendingTransaction:
    """Create an empty PendingTransaction. Use when a rule has nothing to do."""
    return build_transaction(view, origin=TransactionOrigin(OriginType.SYSTEM, "noop"))


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of registry state changes - represents FACT.

    Created by LoanRegistry when applying a PendingTransaction.

    Attributes:
        loan_changes, reputation_changes, payouts, deposit, funds_in, events,
        origin, timestamp, intent_id: copied from the PendingTransaction
        exec_id: Unique execution identifier (registry + sequence + time)
        registry_name: Name of the registry that executed this
        execution_time: Registry time when applied
        sequence_number: Monotonic sequence within the registry
        loan_ids: Loans touched by this transaction (auto-populated)
    """
    loan_changes: Tuple[LoanChange, ...]
    reputation_changes: Tuple[ReputationChange, ...]
    payouts: Tuple[Move, ...]
    deposit: int
    funds_in: int
    events: Tuple[LoanRepaidEvent, ...]
    origin: TransactionOrigin
    timestamp: Timestamp
    intent_id: str
    exec_id: str
    registry_name: str
    execution_time: Timestamp
    sequence_number: int
    loan_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.loan_changes and not self.reputation_changes and not self.payouts:
            raise ValueError("Transaction must have loan changes, reputation changes, or payouts")
        if self.loan_ids is None:
            object.__setattr__(
                self, 'loan_ids',
                frozenset(lc.loan_id for lc in self.loan_changes)
            )

    def __repr__(self) -> str:
        w = 90
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"│{pad('   deposit        : ' + str(self.deposit))}│",
        ]
        if self.loan_changes:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Loan Changes (' + str(len(self.loan_changes)) + '):')}│")
            for lc in self.loan_changes:
                lines.append(f"│{pad('   [' + lc.loan_id + ']' + (' created' if lc.old is None else ''))}│")
                for field_name, (old_val, new_val) in lc.changed_fields().items():
                    lines.append(f"│{pad(f'      {field_name}: {old_val!r} → {new_val!r}')}│")
        if self.payouts:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Payouts (' + str(len(self.payouts)) + '):')}│")
            for i, move in enumerate(self.payouts):
                lines.append(f"│{pad(f'   [{i}] {move.quantity}: {move.source} → {move.dest}')}│")
        if self.reputation_changes:
            lines.append(f"├{bar}┤")
            for rc in self.reputation_changes:
                lines.append(f"│{pad('   reputation: ' + rc.user + ' ' + rc.kind)}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)
