"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the factoring fund.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting across fund operations
2. atomicity.py - Refused fund operations leave no trace
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible fund histories
5. queue_properties.py - FIFO payout and per-owner overwrite
6. fee_properties.py - Fee quotes, caps and protocol fee immutability

These tests use hypothesis for property-based testing.
"""
