"""Test doubles shared by the test suite and by downstream integrations."""
