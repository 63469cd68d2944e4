"""
Utility modules package.
"""

from .timing import (
    UnparseableTimestamp,
    format_elapsed,
    parse_instant,
    retry_with_backoff,
    to_instant,
    utc_now,
)

__all__ = [
    'UnparseableTimestamp',
    'format_elapsed',
    'parse_instant',
    'retry_with_backoff',
    'to_instant',
    'utc_now',
]
