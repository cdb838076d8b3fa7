"""Shared error types for spapi_core."""


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""
