from datetime import datetime, timedelta, timezone

import pytest

from visitor_service.config import Config
from visitor_service.firebase import FirebaseError
from visitor_service.models import UserAccount, VisitorRecord

NOW = datetime(2024, 5, 10, 12, 0, 0, tzinfo=timezone.utc)


def make_visitor(visitor_id='v1', hours_ago=1.0, checked_out_after=None, **overrides):
    check_in = NOW - timedelta(hours=hours_ago)
    fields = dict(
        id=visitor_id,
        name=f'Visitor {visitor_id}',
        check_in=check_in,
        phone_number='0700000000',
        id_number='12345678',
        checked_in_by='op-1',
    )
    if checked_out_after is not None:
        fields.update(
            checked_out=True,
            check_out=check_in + checked_out_after,
            checked_out_by='op-2',
        )
    fields.update(overrides)
    return VisitorRecord(**fields)


def make_user(uid='u1', role='user', **overrides):
    fields = dict(
        uid=uid,
        email=f'{uid}@example.com',
        created_at=NOW - timedelta(days=30),
        role=role,
        platform='web' if role == 'admin' else 'mobile',
    )
    fields.update(overrides)
    return UserAccount(**fields)


class FakeFirebaseClient:
    """Stands in for FirebaseClient; records writes, optionally fails them."""

    def __init__(self, visitors=(), users=(), heartbeats=None, fail_writes=False, fail_reads=False):
        self.visitors = list(visitors)
        self.users = list(users)
        self.heartbeats = dict(heartbeats or {})
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads
        self.saved_edits = []
        self.saved_checkouts = []
        self.role_changes = []
        self.name_changes = []
        self.deleted_users = []

    def _maybe_fail_read(self):
        if self.fail_reads:
            raise FirebaseError('read failed', status_code=503)

    def _maybe_fail_write(self):
        if self.fail_writes:
            raise FirebaseError('write failed', status_code=403)

    def fetch_visitors(self, now=None):
        self._maybe_fail_read()
        return list(self.visitors)

    def fetch_users(self, now=None):
        self._maybe_fail_read()
        return list(self.users)

    def fetch_heartbeats(self):
        self._maybe_fail_read()
        return dict(self.heartbeats)

    def persist_edit(self, record, field):
        self._maybe_fail_write()
        self.saved_edits.append((record, field))

    def persist_checkout(self, record):
        self._maybe_fail_write()
        self.saved_checkouts.append(record)

    def create_user(self, email, password, display_name, role, now=None):
        self._maybe_fail_write()
        return UserAccount(
            uid='new-uid',
            email=email,
            display_name=display_name,
            role=role,
            platform='web' if role == 'admin' else 'mobile',
            created_at=now or NOW,
        )

    def update_user_role(self, uid, role, now=None):
        self._maybe_fail_write()
        self.role_changes.append((uid, role))

    def update_display_name(self, uid, display_name, now=None):
        self._maybe_fail_write()
        self.name_changes.append((uid, display_name))

    def delete_user(self, uid):
        self._maybe_fail_write()
        self.deleted_users.append(uid)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return Config(
        firebase_project_id='demo-project',
        firebase_database_url='https://demo-project-default-rtdb.firebaseio.com',
        firebase_credentials='',
        request_timeout=5.0,
        service_name='visitor-dashboard-test',
        http_port=5050,
        refresh_interval=30,
        timezone='UTC',
        overdue_threshold_hours=12.0,
        online_ttl_seconds=120.0,
        away_minutes=5.0,
        recently_offline_minutes=60.0,
        debug_mode=False,
    )
