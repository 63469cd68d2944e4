"""
Dashboard snapshot module.

Holds the latest visitor/user/heartbeat snapshot behind a lock and
re-derives every view from it on request. A background poller refreshes
the snapshot from Firebase.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Dict, List, Optional

from .config import Config
from .engine import presence, status
from .firebase import FirebaseClient, FirebaseError
from .logging_config import get_logger
from .models import PresenceHeartbeat, UserAccount, VisitorRecord
from .utils.timing import format_elapsed, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class Policy:
    """Thresholds applied by every derivation pass."""

    overdue_threshold: timedelta = status.OVERDUE_THRESHOLD
    online_ttl: timedelta = presence.ONLINE_TTL
    away_window: timedelta = presence.AWAY_WINDOW
    recently_offline_window: timedelta = presence.RECENTLY_OFFLINE_WINDOW
    tz: Optional[tzinfo] = None

    @classmethod
    def from_config(cls, config: Config) -> 'Policy':
        return cls(
            overdue_threshold=timedelta(hours=config.overdue_threshold_hours),
            online_ttl=timedelta(seconds=config.online_ttl_seconds),
            away_window=timedelta(minutes=config.away_minutes),
            recently_offline_window=timedelta(minutes=config.recently_offline_minutes),
            tz=config.get_tzinfo(),
        )


def _newer_record(local: Optional[VisitorRecord], incoming: VisitorRecord) -> VisitorRecord:
    """Pick the copy of a visitor that reflects the latest write."""
    if local is None:
        return incoming
    if local.checked_out and not incoming.checked_out:
        return local
    if local.last_edited_at is not None and (
        incoming.last_edited_at is None or local.last_edited_at > incoming.last_edited_at
    ):
        return local
    return incoming


class DashboardState:
    """
    Latest snapshot, safe to share between the poller and request threads.

    Readers always get copies; derivations never see a half-applied refresh.
    """

    def __init__(self, policy: Optional[Policy] = None):
        self.policy = policy or Policy()
        # re-entrant so actions can hold it across get/put
        self.lock = threading.RLock()
        self.started_at = time.time()
        self.counter = presence.PresenceCounter(self.policy.tz)
        self._visitors: Dict[str, VisitorRecord] = {}
        self._users: Dict[str, UserAccount] = {}
        self._heartbeats: Dict[str, PresenceHeartbeat] = {}
        self.last_refresh: Optional[datetime] = None
        self.last_error: Optional[str] = None

    # -- snapshot ----------------------------------------------------------

    def replace_snapshot(
        self,
        visitors: List[VisitorRecord],
        users: List[UserAccount],
        heartbeats: Dict[str, PresenceHeartbeat],
        now: datetime,
    ) -> None:
        """
        Swap in a complete snapshot.

        Local visitor records that are ahead of the incoming copy are kept,
        so a snapshot read before a write completed cannot undo it.

        Args:
            visitors: Full visitor list
            users: Full user list
            heartbeats: Heartbeats keyed by uid
            now: Instant the snapshot was taken
        """
        online = presence.count_online(heartbeats, now, self.policy.online_ttl)
        with self.lock:
            self._visitors = {
                v.id: _newer_record(self._visitors.get(v.id), v)
                for v in visitors
            }
            self._users = {u.uid: u for u in users}
            self._heartbeats = dict(heartbeats)
            self.counter.update(online, now)
            self.last_refresh = now
            self.last_error = None

    def record_error(self, message: str) -> None:
        with self.lock:
            self.last_error = message

    # -- visitors ----------------------------------------------------------

    def visitors(self) -> List[VisitorRecord]:
        with self.lock:
            return list(self._visitors.values())

    def get_visitor(self, visitor_id: str) -> Optional[VisitorRecord]:
        with self.lock:
            return self._visitors.get(visitor_id)

    def put_visitor(self, record: VisitorRecord) -> None:
        with self.lock:
            self._visitors[record.id] = record

    def rollback_visitor(self, current: VisitorRecord, previous: VisitorRecord) -> bool:
        """
        Restore `previous` if `current` is still the stored record.

        Returns:
            True if the record was restored
        """
        with self.lock:
            if self._visitors.get(current.id) is not current:
                return False
            self._visitors[current.id] = previous
            return True

    # -- users -------------------------------------------------------------

    def raw_users(self) -> Dict[str, UserAccount]:
        with self.lock:
            return dict(self._users)

    def users(self, now: datetime) -> List[UserAccount]:
        """Accounts with the current heartbeat feed applied."""
        with self.lock:
            users = list(self._users.values())
            heartbeats = dict(self._heartbeats)
        return presence.apply_presence(users, heartbeats, now, self.policy.online_ttl)

    def get_user(self, uid: str) -> Optional[UserAccount]:
        with self.lock:
            return self._users.get(uid)

    def put_user(self, user: UserAccount) -> None:
        with self.lock:
            self._users[user.uid] = user

    def remove_user(self, uid: str) -> None:
        with self.lock:
            self._users.pop(uid, None)
            self._heartbeats.pop(uid, None)

    def online_stats(self) -> Dict[str, int]:
        with self.lock:
            return self.counter.snapshot()

    def health(self) -> Dict[str, Any]:
        with self.lock:
            return {
                'uptime': format_elapsed(time.time() - self.started_at),
                'snapshotAge': format_elapsed(
                    (utc_now() - self.last_refresh).total_seconds() if self.last_refresh else None
                ),
                'lastRefresh': self.last_refresh.isoformat() if self.last_refresh else None,
                'lastError': self.last_error,
                'visitors': len(self._visitors),
                'users': len(self._users),
            }


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

def visitor_view(visitor: VisitorRecord, now: datetime, policy: Policy) -> Dict[str, Any]:
    """
    Visitor row with derived status fields.

    Args:
        visitor: Visitor record
        now: Instant of the derivation pass
        policy: Thresholds

    Returns:
        JSON-safe dict
    """
    row = visitor.to_json()
    state = status.classify(visitor, now, policy.overdue_threshold)
    row['status'] = state
    row['statusText'] = status.STATUS_DISPLAY[state]
    row['duration'] = status.duration(visitor)
    row['severity'] = None
    row['hoursOverdue'] = None
    row['overdueFor'] = None
    if state == status.OVERDUE:
        row['hoursOverdue'] = status.hours_overdue(visitor, now)
        row['severity'] = status.severity(status.hours_since_check_in(visitor, now))
        row['overdueFor'] = status.format_overdue_duration(row['hoursOverdue'])
    return row


def user_view(user: UserAccount, now: datetime, policy: Policy) -> Dict[str, Any]:
    """User row with presence label and color."""
    row = user.to_json()
    label = presence.status_label(user, now)
    color = presence.status_color(
        user,
        now,
        away=policy.away_window,
        recently_offline=policy.recently_offline_window,
    )
    row['presence'] = {
        'kind': label.kind,
        'value': label.value,
        'text': presence.status_text(label),
        'color': color,
        'hex': presence.STATUS_COLOR_HEX[color],
    }
    return row


# ---------------------------------------------------------------------------
# Poller
# ---------------------------------------------------------------------------

class SnapshotPoller:
    """Periodically pulls a full snapshot from Firebase into the state."""

    def __init__(
        self,
        client: FirebaseClient,
        state: DashboardState,
        refresh_interval: int = 30,
    ):
        """
        Initialize snapshot poller.

        Args:
            client: Firebase client
            state: Shared dashboard state
            refresh_interval: Seconds between refreshes
        """
        self.client = client
        self.state = state
        self.refresh_interval = refresh_interval
        self.thread: Optional[threading.Thread] = None
        self.stop_flag = threading.Event()

    def refresh(self) -> bool:
        """
        Pull one snapshot.

        On failure the previous snapshot is kept.

        Returns:
            True if the snapshot was replaced
        """
        now = utc_now()
        try:
            visitors = self.client.fetch_visitors(now)
            users = self.client.fetch_users(now)
            heartbeats = self.client.fetch_heartbeats()
        except FirebaseError as e:
            logger.error(f'❌ Snapshot refresh failed: {e}', exc_info=True)
            self.state.record_error(str(e))
            return False

        self.state.replace_snapshot(visitors, users, heartbeats, now)
        logger.info(
            f'Snapshot refreshed: {len(visitors)} visitors, '
            f'{len(users)} users, {len(heartbeats)} heartbeats'
        )
        return True

    def start(self) -> None:
        """Start the polling thread."""
        if self.thread and self.thread.is_alive():
            logger.debug('Snapshot poller already running')
            return

        self.stop_flag.clear()
        self.thread = threading.Thread(
            target=self._run,
            daemon=True,
            name='SnapshotPoller',
        )
        self.thread.start()

    def _run(self) -> None:
        logger.info(f'Starting snapshot poller (every {self.refresh_interval}s)')
        while not self.stop_flag.is_set():
            try:
                self.refresh()
            except Exception as e:
                logger.error(f'Unexpected error in snapshot poller: {e}', exc_info=True)
            self.stop_flag.wait(self.refresh_interval)
        logger.info('Snapshot poller stopped')

    def stop(self) -> None:
        """Stop the polling thread."""
        self.stop_flag.set()
        if self.thread and self.thread.is_alive():
            self.thread.join(timeout=5)

    def is_alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()
