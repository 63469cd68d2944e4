"""
Timing utilities.

Helper functions for time-related operations:
- Normalizing stored timestamps into a single comparable instant
- Human-readable uptime
- Retry with backoff for flaky network calls
"""

import time
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, TypeVar

from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar('T')

# Zero-argument conversion methods exposed by vendor timestamp wrappers
# (Firestore/protobuf Timestamp, JS-style bridges).
_WRAPPER_METHODS = ('to_datetime', 'ToDatetime', 'toDate')


class UnparseableTimestamp(ValueError):
    """Raised when a value cannot be interpreted as an instant."""


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _from_epoch_ms(value: float) -> datetime:
    try:
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise UnparseableTimestamp(f'Epoch value out of range: {value!r}') from e


def _from_string(text: str) -> datetime:
    text = text.strip()
    if not text:
        raise UnparseableTimestamp('Empty timestamp string')

    # Realtime Database sometimes hands back epoch millis as strings
    try:
        return _from_epoch_ms(float(text))
    except ValueError:
        pass

    if text.endswith('Z') or text.endswith('z'):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as e:
        raise UnparseableTimestamp(f'Unrecognized timestamp string: {text!r}') from e

    return _as_utc(parsed)


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: Any) -> datetime:
    """
    Strictly convert a stored timestamp into an aware UTC datetime.

    Accepts native datetime/date objects, numeric epoch milliseconds,
    ISO-8601 strings (or numeric strings) and vendor wrappers exposing
    a zero-argument conversion method.

    Args:
        value: Raw timestamp value

    Returns:
        Timezone-aware UTC datetime

    Raises:
        UnparseableTimestamp: If the value is absent or not understood
    """
    if value is None:
        raise UnparseableTimestamp('Timestamp is missing')

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    # bool is an int subclass but never a timestamp
    if isinstance(value, bool):
        raise UnparseableTimestamp(f'Boolean is not a timestamp: {value!r}')

    if isinstance(value, (int, float)):
        if value != value:
            raise UnparseableTimestamp('Timestamp is NaN')
        return _from_epoch_ms(value)

    if isinstance(value, str):
        return _from_string(value)

    for method_name in _WRAPPER_METHODS:
        method = getattr(value, method_name, None)
        if callable(method):
            try:
                converted = method()
            except Exception as e:
                raise UnparseableTimestamp(
                    f'{type(value).__name__}.{method_name}() failed: {e}'
                ) from e
            # Guard against wrappers returning themselves
            if converted is value:
                break
            return parse_instant(converted)

    raise UnparseableTimestamp(f'Unsupported timestamp type: {type(value).__name__}')


def to_instant(value: Any, now: Optional[datetime] = None) -> datetime:
    """
    Convert a stored timestamp into an instant, never failing the caller.

    Absent or unparseable values resolve to ``now`` (or the current
    instant when ``now`` is not given). The anomaly is logged.

    Args:
        value: Raw timestamp value
        now: Instant to substitute when the value cannot be used

    Returns:
        Timezone-aware UTC datetime
    """
    try:
        return parse_instant(value)
    except UnparseableTimestamp as e:
        if value is None:
            logger.debug('Missing timestamp, defaulting to now')
        else:
            logger.warning(f'⚠️ {e}; defaulting to now')
        return _as_utc(now) if now is not None else utc_now()


_ELAPSED_UNITS = (('d', 86400), ('h', 3600), ('m', 60))


def format_elapsed(seconds: Optional[float]) -> Optional[str]:
    """
    Render an elapsed span as "1d 2h 30m 45s".

    Zero-valued leading units are dropped; seconds are always shown.
    Negative spans (clock skew) render as "0s".

    Args:
        seconds: Span in seconds, or None when nothing has happened yet

    Returns:
        Formatted string, or None for None
    """
    if seconds is None:
        return None

    remaining = max(int(seconds), 0)
    parts = []
    for suffix, size in _ELAPSED_UNITS:
        count, remaining = divmod(remaining, size)
        if count or parts:
            parts.append(f'{count}{suffix}')
    parts.append(f'{remaining}s')
    return ' '.join(parts)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
    backoff_factor: float = 2.0,
    retry_on: tuple = (Exception,),
) -> T:
    """
    Retry function with exponential backoff.

    Args:
        func: Function to retry
        max_attempts: Maximum number of attempts
        initial_delay: Initial delay in seconds
        backoff_factor: Backoff multiplier
        retry_on: Exception types that trigger another attempt

    Returns:
        Function result

    Raises:
        Last exception if all attempts fail
    """
    delay = initial_delay
    last_exception: Exception | None = None

    for attempt in range(max_attempts):
        try:
            return func()
        except retry_on as e:
            last_exception = e
            if attempt < max_attempts - 1:
                logger.debug(f'Attempt {attempt + 1}/{max_attempts} failed: {e}; retrying in {delay:.1f}s')
                time.sleep(delay)
                delay *= backoff_factor

    if last_exception:
        raise last_exception

    raise RuntimeError('Retry failed with no exception')
