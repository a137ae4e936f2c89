"""Adapters for calls leaving the process (circuit breaking)."""
