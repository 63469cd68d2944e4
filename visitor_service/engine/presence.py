"""
Presence management module.

Derives operator online/offline state from Realtime Database heartbeats:
- Online flag with a time-to-live on the last heartbeat
- "Last seen" labels and staleness colors
- Effective platform per role
- Current and peak online counts
"""

from dataclasses import replace
from datetime import datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Literal, Mapping, NamedTuple, Optional

from ..logging_config import get_logger
from ..models import PresenceHeartbeat, UserAccount
from ..utils.timing import UnparseableTimestamp, parse_instant, to_instant

logger = get_logger(__name__)

ONLINE_TTL = timedelta(seconds=120)
AWAY_WINDOW = timedelta(minutes=5)
RECENTLY_OFFLINE_WINDOW = timedelta(minutes=60)

LabelKind = Literal['Online', 'JustNow', 'MinutesAgo', 'HoursAgo', 'DaysAgo', 'NeverActive']
StatusColor = Literal['green', 'amber', 'red', 'gray']

STATUS_COLOR_HEX: Dict[str, str] = {
    'green': '#10B981',
    'amber': '#F59E0B',
    'red': '#EF4444',
    'gray': '#6B7280',
}

_MINUTES_PER_HOUR = 60
_MINUTES_PER_DAY = 1440


class StatusLabel(NamedTuple):
    """Presence label; ``value`` carries the count for the *Ago kinds."""

    kind: LabelKind
    value: Optional[int] = None


def heartbeat_instant(heartbeat: PresenceHeartbeat) -> Optional[datetime]:
    """
    Instant of the last heartbeat change, or None when it is unknown.

    A heartbeat without a usable timestamp cannot prove freshness, so it
    is never substituted with the current instant.
    """
    if heartbeat.last_changed is None:
        return None
    try:
        return parse_instant(heartbeat.last_changed)
    except UnparseableTimestamp as e:
        logger.warning(f'⚠️ Heartbeat for {heartbeat.uid} has {e}')
        return None


def derive_online(
    heartbeat: Optional[PresenceHeartbeat],
    now: datetime,
    ttl: timedelta = ONLINE_TTL,
) -> bool:
    """
    Decide whether a heartbeat still proves the user is online.

    Args:
        heartbeat: Latest heartbeat (None = no heartbeat)
        now: Instant of the derivation pass
        ttl: Maximum heartbeat age trusted as online

    Returns:
        True if the state is 'online' and the heartbeat is at most ``ttl`` old
    """
    if heartbeat is None or heartbeat.state != 'online':
        return False

    last_changed = heartbeat_instant(heartbeat)
    if last_changed is None:
        return False

    return to_instant(now) - last_changed <= ttl


def _elapsed_since_seen(user: UserAccount, now: datetime) -> timedelta:
    return to_instant(now) - to_instant(user.last_seen, now)


def status_label(user: UserAccount, now: datetime) -> StatusLabel:
    """
    Label describing when a user was last active.

    Args:
        user: Account with presence applied
        now: Instant of the derivation pass

    Returns:
        StatusLabel
    """
    if user.is_online:
        return StatusLabel('Online')
    if user.last_seen is None:
        return StatusLabel('NeverActive')

    minutes = int(_elapsed_since_seen(user, now).total_seconds() // 60)

    if minutes < 1:
        return StatusLabel('JustNow')
    if minutes < _MINUTES_PER_HOUR:
        return StatusLabel('MinutesAgo', minutes)
    if minutes < _MINUTES_PER_DAY:
        return StatusLabel('HoursAgo', minutes // _MINUTES_PER_HOUR)
    return StatusLabel('DaysAgo', minutes // _MINUTES_PER_DAY)


def status_text(label: StatusLabel) -> str:
    """Render a StatusLabel the way the dashboard shows it."""
    if label.kind == 'Online':
        return 'Online'
    if label.kind == 'NeverActive':
        return 'Never Active'
    if label.kind == 'JustNow':
        return 'Just Now'
    if label.kind == 'MinutesAgo':
        return f'{label.value} min ago'
    if label.kind == 'HoursAgo':
        return f'{label.value} hours ago'
    return f'{label.value} days ago'


def status_color(
    user: UserAccount,
    now: datetime,
    away: timedelta = AWAY_WINDOW,
    recently_offline: timedelta = RECENTLY_OFFLINE_WINDOW,
) -> StatusColor:
    """
    Staleness color for a user.

    Online is green, never seen is gray, offline within ``away`` is amber,
    offline within ``recently_offline`` is red, anything older is gray.
    """
    if user.is_online:
        return 'green'
    if user.last_seen is None:
        return 'gray'

    elapsed = _elapsed_since_seen(user, now)
    if elapsed < away:
        return 'amber'
    if elapsed < recently_offline:
        return 'red'
    return 'gray'


def effective_platform(
    role: str,
    reported: Optional[str] = None,
    stored: Optional[str] = None,
) -> str:
    """
    Platform a user is shown on.

    Non-admins always use the mobile app; admins use the heartbeat-reported
    platform, then the stored one, then web.
    """
    if role != 'admin':
        return 'mobile'
    return reported or stored or 'web'


def apply_presence(
    users: Iterable[UserAccount],
    heartbeats: Mapping[str, PresenceHeartbeat],
    now: datetime,
    ttl: timedelta = ONLINE_TTL,
) -> List[UserAccount]:
    """
    Merge the heartbeat feed into user accounts.

    Users without a heartbeat are returned unchanged. Inputs are not mutated.

    Args:
        users: Accounts from the users collection
        heartbeats: Heartbeats keyed by uid
        now: Instant of the derivation pass
        ttl: Online time-to-live

    Returns:
        New list of accounts
    """
    merged: List[UserAccount] = []
    for user in users:
        heartbeat = heartbeats.get(user.uid)
        if heartbeat is None:
            merged.append(user)
            continue

        last_changed = heartbeat_instant(heartbeat)
        merged.append(replace(
            user,
            is_online=derive_online(heartbeat, now, ttl),
            last_seen=last_changed if last_changed is not None else user.last_seen,
            platform=effective_platform(user.role, heartbeat.platform, user.platform),
            device_info=heartbeat.device_info or user.device_info,
        ))
    return merged


def count_online(
    heartbeats: Mapping[str, PresenceHeartbeat],
    now: datetime,
    ttl: timedelta = ONLINE_TTL,
) -> int:
    """Number of heartbeats that currently prove a user online."""
    return sum(1 for hb in heartbeats.values() if derive_online(hb, now, ttl))


class PresenceCounter:
    """
    Tracks current and peak online connections for the current day.

    The peak resets when the calendar day of the update changes.
    """

    def __init__(self, tz: Optional[tzinfo] = None):
        """
        Initialize presence counter.

        Args:
            tz: Zone defining the calendar day (None = host local zone)
        """
        self.tz = tz
        self.connections = 0
        self.peak_today = 0
        self._day: Optional[str] = None

    def update(self, online_count: int, now: datetime) -> Dict[str, int]:
        """
        Record the latest online count.

        Args:
            online_count: Users currently online
            now: Instant of the derivation pass

        Returns:
            Dict with 'connections' and 'peakToday'
        """
        today = to_instant(now).astimezone(self.tz).date().isoformat()
        if today != self._day:
            if self._day is not None:
                logger.info(f'New day {today}, resetting peak (was {self.peak_today})')
            self._day = today
            self.peak_today = 0

        self.connections = online_count
        if online_count > self.peak_today:
            self.peak_today = online_count
            logger.debug(f'New online peak: {online_count}')

        return self.snapshot()

    def snapshot(self) -> Dict[str, int]:
        return {
            'connections': self.connections,
            'peakToday': self.peak_today,
        }
