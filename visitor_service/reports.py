"""
Report module.

Flattens a visitor snapshot into the rows and summary figures consumed by
the PDF/spreadsheet exporters.
"""

from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, Iterable, List, Optional, Sequence

from .engine import status
from .models import UserAccount, VisitorRecord
from .utils.timing import to_instant


def tag_display(tag_number: Optional[str]) -> str:
    """Tag column text: "#<tag>" when a tag was given, else "N/A"."""
    if tag_number and tag_number != 'N/A':
        return f'#{tag_number}'
    return 'N/A'


def _format_dt(value: Optional[datetime], tz: Optional[tzinfo]) -> str:
    if value is None:
        return '-'
    return to_instant(value).astimezone(tz).strftime('%b %d, %Y %I:%M %p')


def report_rows(
    visitors: Iterable[VisitorRecord],
    users: Iterable[UserAccount],
    now: datetime,
    tz: Optional[tzinfo] = None,
    threshold: timedelta = status.OVERDUE_THRESHOLD,
) -> List[Dict[str, Any]]:
    """
    Export rows, most recent check-in first.

    Args:
        visitors: Visitors to export
        users: Operator accounts, for resolving checked-in/out-by names
        now: Instant of the derivation pass
        tz: Zone for rendered date/times (None = host local zone)
        threshold: Overdue threshold

    Returns:
        List of flat dicts
    """
    by_uid = {u.uid: u for u in users}
    ordered = sorted(visitors, key=lambda v: to_instant(v.check_in, now), reverse=True)

    rows = []
    for visitor in ordered:
        state = status.classify(visitor, now, threshold)
        rows.append({
            'id': visitor.id,
            'name': visitor.name,
            'phoneNumber': visitor.phone_number,
            'idNumber': visitor.id_number,
            'gender': status.format_gender(visitor.gender),
            'category': visitor.category,
            'vehiclePlate': visitor.vehicle_plate or '-',
            'purpose': visitor.purpose,
            'residence': visitor.residence,
            'occupation': visitor.occupation,
            'tag': tag_display(visitor.tag_number),
            'timeIn': _format_dt(visitor.check_in, tz),
            'timeOut': _format_dt(visitor.check_out, tz),
            'duration': status.duration(visitor),
            'status': status.STATUS_DISPLAY[state],
            'checkedInBy': status.display_name(visitor.checked_in_by, by_uid),
            'checkedOutBy': status.display_name(visitor.checked_out_by, by_uid)
            if visitor.checked_out_by else '-',
        })
    return rows


def report_summary(
    visitors: Sequence[VisitorRecord],
    now: datetime,
    tz: Optional[tzinfo] = None,
    threshold: timedelta = status.OVERDUE_THRESHOLD,
) -> Dict[str, Any]:
    """Summary block printed above the export table."""
    today = status.day_key(now, tz)
    todays = [v for v in visitors if status.day_key(v.check_in, tz) == today]

    return {
        'generatedAt': to_instant(now).isoformat(),
        'total': len(visitors),
        'active': sum(1 for v in visitors if not v.checked_out),
        'overdue': sum(1 for v in visitors if status.is_overdue(v, now, threshold)),
        'checkedOut': sum(1 for v in visitors if v.checked_out),
        'today': len(todays),
        'todayCheckedOut': sum(1 for v in todays if v.checked_out),
    }
