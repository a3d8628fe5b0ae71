"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending risk core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. test_solvency.py - After any accepted operation, debt <= collateral * ltv
2. test_rollback.py - A rejected or failed operation leaves every record unchanged
3. test_accounting.py - Repay clamping, deposit/withdraw round-trips, config ranges
4. test_liquidation_rules.py - Liquidation only past the threshold, bounded seizure
5. test_concurrency.py - Serialized updates per position under threads

These tests use hypothesis for property-based testing.
"""
