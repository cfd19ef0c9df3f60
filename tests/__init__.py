"""
Test suite for the zkbench harness.

This package contains:
- unit/: pure-logic tests with fakes for clocks, clients and phase runners
- integration/: tests against a live Flask stub of the service and
  against real processes
- mocks/: the Flask stub of the ZK-Auth service used by integration tests
"""
