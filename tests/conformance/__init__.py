"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the loan ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. single_active_loan.py - At most one active loan per borrower
2. atomicity.py - Every operation is all-or-nothing
3. boundaries.py - Valuation is inclusive, liquidity is strict
4. round_trip.py - Borrow then repay restores the starting position
5. conservation.py - Currency and collateral are never created or lost

These tests use hypothesis for property-based testing.
"""
