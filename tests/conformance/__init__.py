"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_atomicity.py - A failing operation changes nothing
2. test_solvency.py - Debt never exceeds max borrowable after borrow or collateral withdrawal
3. test_accrual_monotonic.py - The index never decreases and debt never drops below principal

These tests use hypothesis for property-based testing.
"""
