"""Helpers shared by test framework integrations."""
