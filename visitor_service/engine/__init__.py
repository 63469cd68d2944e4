"""
Derivation engine package.

Contains modules for:
- Visitor status, duration and grouping
- Operator presence
- Edit audit and checkout
"""

from .status import (
    classify,
    duration,
    group_by_attribute,
    group_by_calendar_day,
    overdue_visitors,
    search_visitors,
    severity,
    visitor_stats,
)
from .presence import (
    PresenceCounter,
    StatusLabel,
    apply_presence,
    count_online,
    derive_online,
    status_color,
    status_label,
)
from .audit import (
    AlreadyCheckedOutError,
    CheckoutResult,
    checkout,
    record_edit,
)

__all__ = [
    'classify',
    'duration',
    'group_by_attribute',
    'group_by_calendar_day',
    'overdue_visitors',
    'search_visitors',
    'severity',
    'visitor_stats',
    'PresenceCounter',
    'StatusLabel',
    'apply_presence',
    'count_online',
    'derive_online',
    'status_color',
    'status_label',
    'AlreadyCheckedOutError',
    'CheckoutResult',
    'checkout',
    'record_edit',
]
