"""
transfers.py - In-memory monetary-transfer primitive

The real transfer primitive (token contract, payment rail) is external.
InMemoryPayouts implements the PayoutSink protocol for simulations and
tests: it records every delivered coin and keeps per-identity totals.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Dict, List, Tuple

from .core import Coin, Identity


class InMemoryPayouts:
    """
    PayoutSink that accumulates delivered coins per owner.

    Example:
        payouts = InMemoryPayouts()
        payouts.pay(Coin(1000, "bob"), "disburse:loan:00000001")
        assert payouts.received("bob") == 1000
    """

    def __init__(self):
        self._received: Dict[Identity, int] = defaultdict(int)
        self.log: List[Tuple[str, Coin]] = []

    def pay(self, coin: Coin, reference: str) -> None:
        self._received[coin.owner] += coin.value
        self.log.append((reference, coin))

    def received(self, owner: Identity) -> int:
        """Total value delivered to owner."""
        return self._received.get(owner, 0)

    def total_paid(self) -> int:
        return sum(self._received.values())

    def coins_for(self, owner: Identity) -> List[Coin]:
        return [coin for _, coin in self.log if coin.owner == owner]

    def clone(self) -> InMemoryPayouts:
        cloned = InMemoryPayouts()
        cloned._received = defaultdict(int, self._received)
        cloned.log = list(self.log)
        return cloned

    def __repr__(self) -> str:
        return f"InMemoryPayouts({len(self.log)} payouts, total={self.total_paid()})"
