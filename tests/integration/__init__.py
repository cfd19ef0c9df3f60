"""
Integration tests for the zkbench harness.

These tests talk real HTTP to the Flask stub served on an ephemeral port,
or sample real processes through psutil.
"""
