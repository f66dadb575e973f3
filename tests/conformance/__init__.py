"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Pool custody equals outstanding principal; no value is minted
2. atomicity.py - Rejected operations leave no trace
3. exclusivity.py - A loan has at most one borrower, even under concurrency
4. idempotency.py - Duplicate execution and repeated sweeps are no-ops
5. reputation_bounds.py - Stars never go negative and move by one
6. partition.py - get_user_loans splits a user's loans exactly once
7. determinism.py - Identical operation sequences yield identical state
8. temporal.py - Time only moves forward; future intents are rejected
9. canonicalization.py - Intent ids depend on content only

These tests use hypothesis for property-based testing.
"""
