"""
Test doubles for the zkbench test suite.

The stub service stands in for the real ZK-Auth server so that the
preflight can be exercised over real HTTP without a prover.
"""
