"""
Visitor status module.

Derives lifecycle state from visitor records:
- Active / Overdue / CheckedOut classification
- Visit duration labels
- Overdue severity
- Calendar-day and attribute grouping
- Dashboard counters and search
"""

from datetime import datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Sequence

from ..models import UserAccount, VisitorRecord
from ..utils.timing import to_instant

VisitorStatus = Literal['Active', 'Overdue', 'CheckedOut']
Severity = Literal['Medium', 'High', 'Critical']
GroupByOption = Literal['none', 'gender', 'type', 'gender-type']
SearchField = Literal['all', 'name', 'phone', 'id', 'tag']

ACTIVE: VisitorStatus = 'Active'
OVERDUE: VisitorStatus = 'Overdue'
CHECKED_OUT: VisitorStatus = 'CheckedOut'

OVERDUE_THRESHOLD = timedelta(hours=12)
HIGH_SEVERITY_HOURS = 18
CRITICAL_SEVERITY_HOURS = 24

STATUS_DISPLAY: Dict[str, str] = {
    ACTIVE: 'Active',
    OVERDUE: 'Overdue',
    CHECKED_OUT: 'Checked Out',
}

_SECONDS_PER_HOUR = 3600


def time_since_check_in(visitor: VisitorRecord, now: datetime) -> timedelta:
    """Elapsed time between check-in and ``now``."""
    return to_instant(now) - to_instant(visitor.check_in, now)


def hours_since_check_in(visitor: VisitorRecord, now: datetime) -> float:
    """Fractional hours between check-in and ``now``."""
    return time_since_check_in(visitor, now).total_seconds() / _SECONDS_PER_HOUR


def is_overdue(
    visitor: VisitorRecord,
    now: datetime,
    threshold: timedelta = OVERDUE_THRESHOLD,
) -> bool:
    """True for a visitor still on site longer than ``threshold`` (strictly)."""
    if visitor.checked_out:
        return False
    return time_since_check_in(visitor, now) > threshold


def classify(
    visitor: VisitorRecord,
    now: datetime,
    threshold: timedelta = OVERDUE_THRESHOLD,
) -> VisitorStatus:
    """
    Classify a visitor at instant ``now``.

    Args:
        visitor: Visitor record
        now: Instant of the derivation pass
        threshold: Time on site after which a visitor is overdue

    Returns:
        'CheckedOut', 'Overdue' or 'Active'
    """
    if visitor.checked_out:
        return CHECKED_OUT
    if time_since_check_in(visitor, now) > threshold:
        return OVERDUE
    return ACTIVE


def duration(visitor: VisitorRecord) -> str:
    """
    Format the length of a completed visit.

    Args:
        visitor: Visitor record

    Returns:
        "Active" for a visit still in progress, else e.g. "45m", "3h", "3h 15m"
    """
    if not visitor.checked_out or visitor.check_out is None:
        return 'Active'

    elapsed = to_instant(visitor.check_out) - to_instant(visitor.check_in)
    total_minutes = max(0, int(elapsed.total_seconds() // 60))
    hours, minutes = divmod(total_minutes, 60)

    if hours == 0:
        return f'{minutes}m'
    if minutes == 0:
        return f'{hours}h'
    return f'{hours}h {minutes}m'


def severity(hours_overdue: float) -> Severity:
    """
    Alert level for an overdue visitor.

    Args:
        hours_overdue: Hours since check-in (already past the overdue threshold)

    Returns:
        'Critical' from 24h, 'High' from 18h, otherwise 'Medium'
    """
    if hours_overdue >= CRITICAL_SEVERITY_HOURS:
        return 'Critical'
    if hours_overdue >= HIGH_SEVERITY_HOURS:
        return 'High'
    return 'Medium'


def hours_overdue(visitor: VisitorRecord, now: datetime) -> int:
    """Whole hours since check-in, as shown on overdue alerts."""
    return int(time_since_check_in(visitor, now).total_seconds() // _SECONDS_PER_HOUR)


def format_overdue_duration(hours: int) -> str:
    """Render whole hours as "5 hours", "1 day" or "2 days 3 hours"."""
    if hours < 24:
        return f"{hours} hour{'s' if hours > 1 else ''}"

    days, remaining = divmod(hours, 24)
    day_text = f"{days} day{'s' if days > 1 else ''}"
    if remaining == 0:
        return day_text
    return f"{day_text} {remaining} hour{'s' if remaining > 1 else ''}"


def overdue_visitors(
    visitors: Iterable[VisitorRecord],
    now: datetime,
    threshold: timedelta = OVERDUE_THRESHOLD,
) -> List[VisitorRecord]:
    """Overdue visitors, longest on site first."""
    overdue = [v for v in visitors if is_overdue(v, now, threshold)]
    overdue.sort(key=lambda v: to_instant(v.check_in, now))
    return overdue


def severity_counts(
    visitors: Iterable[VisitorRecord],
    now: datetime,
    threshold: timedelta = OVERDUE_THRESHOLD,
) -> Dict[str, int]:
    """Count overdue visitors per severity level."""
    counts = {'Critical': 0, 'High': 0, 'Medium': 0}
    for visitor in overdue_visitors(visitors, now, threshold):
        counts[severity(hours_since_check_in(visitor, now))] += 1
    return counts


def day_key(instant: datetime, tz: Optional[tzinfo] = None) -> str:
    """
    Calendar day of an instant as 'YYYY-MM-DD'.

    Args:
        instant: Instant to key
        tz: Zone defining the calendar (None = host local zone)
    """
    local = to_instant(instant).astimezone(tz)
    return f'{local.year:04d}-{local.month:02d}-{local.day:02d}'


def group_by_calendar_day(
    visitors: Iterable[VisitorRecord],
    tz: Optional[tzinfo] = None,
) -> Dict[str, List[VisitorRecord]]:
    """
    Group visitors by the calendar day of their check-in.

    Groups appear in order of first occurrence and keep the supplied order
    of their members; nothing is re-sorted.

    Args:
        visitors: Visitor records
        tz: Zone defining the calendar (None = host local zone)

    Returns:
        Mapping of 'YYYY-MM-DD' to visitors checked in that day
    """
    groups: Dict[str, List[VisitorRecord]] = {}
    for visitor in visitors:
        groups.setdefault(day_key(visitor.check_in, tz), []).append(visitor)
    return groups


def format_gender(value: Optional[str]) -> str:
    """Normalize a free-form gender value for display."""
    if not value or value == 'N/A' or value.lower() == 'na':
        return 'N/A'
    return value[0].upper() + value[1:].lower()


def _category_label(visitor: VisitorRecord) -> str:
    return 'Vehicle' if visitor.category == 'vehicle' else 'Foot'


def group_by_attribute(
    visitors: Iterable[VisitorRecord],
    option: GroupByOption = 'none',
) -> Dict[str, List[VisitorRecord]]:
    """
    Group visitors by gender, category, or both.

    Args:
        visitors: Visitor records
        option: 'none', 'gender', 'type' or 'gender-type'

    Returns:
        Mapping of group label to visitors, in order of first occurrence

    Raises:
        ValueError: For an unknown option
    """
    if option == 'none':
        return {'All': list(visitors)}

    if option == 'gender':
        key_of = lambda v: format_gender(v.gender)
    elif option == 'type':
        key_of = _category_label
    elif option == 'gender-type':
        key_of = lambda v: f'{format_gender(v.gender)} - {_category_label(v)}'
    else:
        raise ValueError(f'Unknown grouping option: {option!r}')

    groups: Dict[str, List[VisitorRecord]] = {}
    for visitor in visitors:
        groups.setdefault(key_of(visitor), []).append(visitor)
    return groups


def day_stats(
    visitors: Sequence[VisitorRecord],
    now: datetime,
    threshold: timedelta = OVERDUE_THRESHOLD,
) -> Dict[str, int]:
    """Totals shown in a day group header."""
    return {
        'total': len(visitors),
        'active': sum(1 for v in visitors if not v.checked_out),
        'overdue': sum(1 for v in visitors if is_overdue(v, now, threshold)),
    }


def visitor_stats(
    visitors: Sequence[VisitorRecord],
    now: datetime,
    tz: Optional[tzinfo] = None,
    threshold: timedelta = OVERDUE_THRESHOLD,
) -> Dict[str, int]:
    """
    Dashboard counters for a visitor snapshot.

    Args:
        visitors: Full visitor snapshot
        now: Instant of the derivation pass
        tz: Zone defining "today" (None = host local zone)
        threshold: Overdue threshold

    Returns:
        Dict of counters
    """
    today = day_key(now, tz)
    genders = [(v.gender or '').lower() for v in visitors]

    return {
        'totalVisitors': len(visitors),
        'todayVisitors': sum(1 for v in visitors if day_key(v.check_in, tz) == today),
        'activeVisitors': sum(1 for v in visitors if not v.checked_out),
        'overdueVisitors': sum(1 for v in visitors if is_overdue(v, now, threshold)),
        'vehicleVisitors': sum(1 for v in visitors if v.category == 'vehicle'),
        'footVisitors': sum(1 for v in visitors if v.category == 'foot'),
        'checkedOutVisitors': sum(1 for v in visitors if v.checked_out),
        'maleVisitors': genders.count('male'),
        'femaleVisitors': genders.count('female'),
        'otherGenderVisitors': sum(
            1 for g in genders if g and g not in ('male', 'female', 'n/a')
        ),
    }


def search_visitors(
    visitors: Iterable[VisitorRecord],
    term: str,
    search_field: SearchField = 'all',
) -> List[VisitorRecord]:
    """
    Case-insensitive substring search.

    Args:
        visitors: Visitor records
        term: Text to look for (blank matches everything)
        search_field: 'all', 'name', 'phone', 'id' or 'tag'

    Returns:
        Matching visitors in their original order
    """
    if search_field not in ('all', 'name', 'phone', 'id', 'tag'):
        raise ValueError(f'Unknown search field: {search_field!r}')

    needle = (term or '').strip().lower()
    if not needle:
        return list(visitors)

    def values(visitor: VisitorRecord) -> List[str]:
        by_field = {
            'name': visitor.name,
            'phone': visitor.phone_number,
            'id': visitor.id_number,
            'tag': visitor.tag_number or '',
        }
        if search_field == 'all':
            return list(by_field.values())
        return [by_field[search_field]]

    return [v for v in visitors if any(needle in text.lower() for text in values(v))]


def display_name(uid: Optional[str], users: Mapping[str, UserAccount]) -> str:
    """
    Human name for an operator uid.

    Falls back to the email local part, then to the uid itself.
    """
    if not uid:
        return '-'

    user = users.get(uid)
    if user is None:
        return uid

    name = (user.display_name or '').strip()
    if name and name != '--':
        return name

    if user.email:
        local, _, _ = user.email.partition('@')
        return local or user.email

    return uid
