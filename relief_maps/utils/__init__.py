"""Shared helpers used across pipeline modules."""
