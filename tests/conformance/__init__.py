"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending protocol.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Double-entry accounting and pool/mortgage invariants
2. atomicity.py - Rejected operations change nothing
3. idempotency.py - Duplicate execution handling
4. exchange_rate.py - Share pricing properties
5. canonicalization.py - Content-addressable identity
6. replay.py - Reproducible history

These tests use hypothesis for property-based testing.
"""
