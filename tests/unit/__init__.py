"""Unit tests for zkbench components that need no network or processes."""
