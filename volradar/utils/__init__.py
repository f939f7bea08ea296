"""Utility modules for the volradar package."""

from .retry import RetryError, RetryPolicy, call_with_retry

__all__ = [
    "RetryError",
    "RetryPolicy",
    "call_with_retry",
]
