"""Shared helpers used across the errand hub apps."""
