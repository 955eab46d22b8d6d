"""Persistence and transaction boundary."""
