"""
Reliability module: conflict retry with backoff.
"""

from rankmesh.reliability.retry import RetryContext, RetryPolicy, calculate_backoff

__all__ = [
    "RetryContext",
    "RetryPolicy",
    "calculate_backoff",
]
