"""
reputation.py - Per-user star counts and reviews

Stars move by exactly one per lifecycle event: +1 for a repayment, -1 for a
late fee (never below zero). Reviews are free-text bytes, append-only, in
insertion order.

Only LoanRegistry applies star changes. The public surface (desk.py) exposes
add_review and get_reputation only.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from threading import RLock
from typing import Dict, Tuple

from .core import (
    Identity, ReputationChange, STAR_ADD, STAR_PENALIZE, check_identity,
)


@dataclass(frozen=True, slots=True)
class UserReputation:
    """Reputation record of one user."""
    user: Identity
    stars: int = 0
    reviews: Tuple[bytes, ...] = ()

    def __post_init__(self):
        if self.stars < 0:
            raise ValueError(f"stars cannot be negative, got {self.stars}")


class ReputationStore:
    """
    Keyed store of UserReputation records.

    Users are created lazily: an unknown user reads as zero stars and no
    reviews, and is materialized on first write.

    Every read-modify-write of a record holds the store lock, so a review
    and a star change on the same user never overwrite each other.
    """

    def __init__(self):
        self._records: Dict[Identity, UserReputation] = {}
        self._lock = RLock()

    def _get(self, user: Identity) -> UserReputation:
        return self._records.get(user) or UserReputation(user=user)

    def get(self, user: Identity) -> UserReputation:
        """Return the full record for a user."""
        return self._get(user)

    def get_reputation(self, user: Identity) -> Tuple[int, Tuple[bytes, ...]]:
        """Return (star_count, reviews) for a user."""
        record = self._get(user)
        return record.stars, record.reviews

    def get_stars(self, user: Identity) -> int:
        return self._get(user).stars

    def add_star(self, user: Identity) -> int:
        """Increment the user's stars by one. Returns the new count."""
        check_identity("user", user)
        with self._lock:
            record = self._get(user)
            updated = replace(record, stars=record.stars + 1)
            self._records[user] = updated
        return updated.stars

    def penalize(self, user: Identity) -> int:
        """Decrement the user's stars by one, floored at zero. Returns the new count."""
        check_identity("user", user)
        with self._lock:
            record = self._get(user)
            updated = replace(record, stars=max(record.stars - 1, 0))
            self._records[user] = updated
        return updated.stars

    def add_review(self, user: Identity, text: bytes) -> None:
        """Append a review for a user."""
        check_identity("user", user)
        if isinstance(text, str):
            text = text.encode("utf-8")
        if not isinstance(text, (bytes, bytearray)):
            raise ValueError(f"review text must be bytes, got {type(text).__name__}")
        with self._lock:
            record = self._get(user)
            self._records[user] = replace(record, reviews=record.reviews + (bytes(text),))

    def apply(self, change: ReputationChange) -> int:
        """Apply one lifecycle star change."""
        if change.kind == STAR_ADD:
            return self.add_star(change.user)
        if change.kind == STAR_PENALIZE:
            return self.penalize(change.user)
        raise ValueError(f"Unknown reputation change kind: {change.kind}")

    def users(self):
        with self._lock:
            return sorted(self._records)

    def clone(self) -> ReputationStore:
        cloned = ReputationStore()
        # Records are frozen, a shallow copy is independent.
        with self._lock:
            cloned._records = dict(self._records)
        return cloned

    def __len__(self) -> int:
        return len(self._records)
