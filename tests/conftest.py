"""
conftest.py - Shared pytest fixtures for lending tests

Provides common fixtures used across unit, conformance and functional tests:
- A manual clock starting at T0
- Quiet registries (empty, with one offer, with one taken loan)
- A desk and an enforcer bound to the registry
- Conservation helpers
"""

import pytest

from lending import (
    LoanRegistry, LendingDesk, DueDateEnforcer, ManualClock, InMemoryPayouts,
    Coin, Loan,
)


T0 = 1_700_000_000
TEN_PERCENT = 100_000_000


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_registry(clock: ManualClock = None, name: str = "test") -> LoanRegistry:
    """Create a quiet registry on a manual clock."""
    return LoanRegistry(
        name,
        time_source=clock or ManualClock(T0),
        payouts=InMemoryPayouts(),
        verbose=False,
    )


def offer_and_take(
    registry: LoanRegistry,
    lender: str = "alice",
    borrower: str = "bob",
    amount: int = 1000,
    interest_rate: int = TEN_PERCENT,
    term: int = 1000,
) -> Loan:
    """Create an offer and have borrower take it with exact funds."""
    loan_id = registry.create_loan(lender, amount, interest_rate, registry.current_time + term)
    return registry.take_loan(borrower, loan_id, Coin(amount, borrower))


def assert_conserved(registry: LoanRegistry) -> None:
    result = registry.verify_conservation()
    assert result['valid'], f"Custody drift: {result}"


def snapshot(registry: LoanRegistry) -> dict:
    """Capture everything a rejected operation must leave unchanged."""
    return {
        'loans': dict(registry.loans),
        'pool': registry.pool.balance,
        'reputation': {u: registry.reputation.get(u) for u in registry.reputation.users()},
        'log': len(registry.transaction_log),
        'events': len(registry.events),
        'payouts': len(registry.payouts.log),
    }


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock():
    return ManualClock(T0)


@pytest.fixture
def registry(clock):
    return make_registry(clock)


@pytest.fixture
def enforcer(registry):
    return DueDateEnforcer(registry)


@pytest.fixture
def desk(registry, enforcer):
    return LendingDesk(registry, enforcer)


@pytest.fixture
def offered_loan(registry):
    """An available 1000 @ 10% offer by alice, due T0 + 1000."""
    loan_id = registry.create_loan("alice", 1000, TEN_PERCENT, T0 + 1000)
    return registry.find_loan(loan_id)


@pytest.fixture
def taken_loan(registry, offered_loan):
    """The offered loan, taken by bob."""
    return registry.take_loan("bob", offered_loan.loan_id, Coin(1000, "bob"))
