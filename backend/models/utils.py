"""Shared utilities for ORM models."""

from ulid import ULID


def generate_ulid() -> str:
    """Generate a ULID string (globally unique, lexicographically time sortable)."""
    return str(ULID())
