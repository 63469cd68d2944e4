"""
Firebase collaborator.

Reads visitor/user snapshots and presence heartbeats, and persists
checkout/edit results through the Firebase Admin SDK:
- Firestore: `visitors` and `users` collections
- Realtime Database: `status/<uid>` heartbeats
- Authentication: operator accounts
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, TypeVar

import firebase_admin
from firebase_admin import auth, credentials, db, exceptions, firestore
from google.api_core import exceptions as google_exceptions

from .config import Config
from .logging_config import get_logger
from .models import EDITABLE_FIELDS, PresenceHeartbeat, UserAccount, VisitorRecord
from .utils.timing import retry_with_backoff, utc_now

logger = get_logger(__name__)

T = TypeVar('T')

VISITORS = 'visitors'
USERS = 'users'
STATUS = 'status'

_TRANSIENT_ERRORS = (
    exceptions.UnavailableError,
    exceptions.DeadlineExceededError,
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
)


class FirebaseError(RuntimeError):
    """Failed Firebase call."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FirebaseTransientError(FirebaseError):
    """Unavailable backend or deadline exceeded; worth retrying."""


def _status_code(error: Exception) -> Optional[int]:
    response = getattr(error, 'http_response', None)
    if response is not None:
        return getattr(response, 'status_code', None)
    # google.api_core errors carry the HTTP status as `code`
    code = getattr(error, 'code', None)
    return code if isinstance(code, int) else None


def initialize_app(config: Config) -> firebase_admin.App:
    """
    Get or create the Firebase app for this service.

    Uses the service account file from config, or Application Default
    Credentials when none is configured.

    Args:
        config: Service configuration

    Returns:
        Initialized firebase_admin.App
    """
    try:
        return firebase_admin.get_app(config.service_name)
    except ValueError:
        pass

    if config.firebase_credentials:
        cred = credentials.Certificate(config.firebase_credentials)
    else:
        cred = credentials.ApplicationDefault()

    app = firebase_admin.initialize_app(cred, {
        'projectId': config.firebase_project_id,
        'databaseURL': config.firebase_database_url,
        'httpTimeout': config.request_timeout,
    }, name=config.service_name)
    logger.info(f'✅ Firebase app initialized for project {config.firebase_project_id}')
    return app


class FirebaseClient:
    """Firestore, Realtime Database and Authentication access for the dashboard."""

    def __init__(
        self,
        config: Config,
        app: Optional[firebase_admin.App] = None,
        store: Any = None,
    ):
        """
        Initialize Firebase client.

        Args:
            config: Service configuration
            app: Initialized Firebase app (created from config if omitted)
            store: Firestore client (created from the app if omitted)
        """
        self.config = config
        self.app = app or initialize_app(config)
        self.store = store or firestore.client(app=self.app)

    # -- error mapping -----------------------------------------------------

    def _call(self, action: str, func: Callable[[], T]) -> T:
        """
        Run one SDK call, mapping SDK errors onto FirebaseError.

        Raises:
            FirebaseTransientError: Backend unavailable or deadline exceeded
            FirebaseError: Any other Firebase or Google API failure
        """
        try:
            return func()
        except _TRANSIENT_ERRORS as e:
            raise FirebaseTransientError(f'{action} failed: {e}', _status_code(e)) from e
        except (exceptions.FirebaseError, google_exceptions.GoogleAPICallError) as e:
            raise FirebaseError(f'{action} failed: {e}', _status_code(e)) from e

    def _read(self, action: str, func: Callable[[], T]) -> T:
        return retry_with_backoff(
            lambda: self._call(action, func),
            retry_on=(FirebaseTransientError,),
        )

    # -- Firestore ---------------------------------------------------------

    def _collection(self, name: str) -> List[Tuple[str, Dict[str, Any]]]:
        return self._read(
            f'Listing {name}',
            lambda: [(snap.id, snap.to_dict() or {}) for snap in self.store.collection(name).stream()],
        )

    def fetch_visitors(self, now: Optional[datetime] = None) -> List[VisitorRecord]:
        """
        Load the full visitor snapshot.

        Args:
            now: Instant substituted for missing timestamps

        Returns:
            List of visitor records
        """
        now = now or utc_now()
        visitors = [
            VisitorRecord.from_dict(doc_id, data, now)
            for doc_id, data in self._collection(VISITORS)
        ]
        logger.debug(f'Fetched {len(visitors)} visitors')
        return visitors

    def fetch_users(self, now: Optional[datetime] = None) -> List[UserAccount]:
        """Load all operator accounts, ordered by email."""
        now = now or utc_now()
        users = [
            UserAccount.from_dict(uid, data, now)
            for uid, data in self._collection(USERS)
        ]
        users.sort(key=lambda u: u.email)
        logger.debug(f'Fetched {len(users)} users')
        return users

    def save_visitor(self, record: VisitorRecord, stored_keys: Iterable[str]) -> None:
        """
        Persist selected stored keys of a visitor document.

        Keys the record no longer carries are deleted from the document.

        Args:
            record: Record holding the new values
            stored_keys: camelCase document keys to write
        """
        stored = record.to_dict()
        updates = {key: stored.get(key, firestore.DELETE_FIELD) for key in stored_keys}
        doc = self.store.collection(VISITORS).document(record.id)
        self._call(f'Updating visitor {record.id}', lambda: doc.update(updates))

    def persist_edit(self, record: VisitorRecord, field: str) -> None:
        """Write an edited field together with its audit trail."""
        stored_key = EDITABLE_FIELDS.get(field, field)
        self.save_visitor(record, [stored_key, 'editedBy', 'lastEditedAt', 'editHistory'])
        logger.info(f'✅ Saved edit of {stored_key} on visitor {record.id}')

    def persist_checkout(self, record: VisitorRecord) -> None:
        """Write the checkout transition together with its audit trail."""
        self.save_visitor(record, [
            'isCheckedOut',
            'timeOut',
            'checkedOutBy',
            'editedBy',
            'lastEditedAt',
            'editHistory',
        ])
        logger.info(f'✅ Saved checkout of visitor {record.id}')

    # -- Users -------------------------------------------------------------

    def create_user(
        self,
        email: str,
        password: str,
        display_name: str,
        role: str,
        now: Optional[datetime] = None,
    ) -> UserAccount:
        """
        Provision an operator account and its user document.

        Args:
            email: Login email
            password: Initial password
            display_name: Optional display name
            role: 'admin' or 'user'
            now: Creation instant

        Returns:
            The new account

        Raises:
            ValueError: Email or password rejected by the SDK
            FirebaseError: Account or document could not be created
        """
        now = now or utc_now()
        display_name = display_name.strip()

        record = self._call(
            f'Creating account {email}',
            lambda: auth.create_user(
                email=email,
                password=password,
                display_name=display_name or None,
                app=self.app,
            ),
        )

        doc = self.store.collection(USERS).document(record.uid)
        self._call(f'Writing user {record.uid}', lambda: doc.set({
            'email': email,
            'displayName': display_name,
            'role': role,
            'createdAt': now,
            'platform': 'web',
            'isActive': True,
        }))
        logger.info(f'✅ Created {role} account {email} ({record.uid})')

        return UserAccount(
            uid=record.uid,
            email=email,
            display_name=display_name,
            role=role,
            platform='web' if role == 'admin' else 'mobile',
            created_at=now,
        )

    def update_user_role(self, uid: str, role: str, now: Optional[datetime] = None) -> None:
        """Change an operator's role."""
        doc = self.store.collection(USERS).document(uid)
        self._call(f'Updating role of {uid}', lambda: doc.update({
            'role': role,
            'updatedAt': now or utc_now(),
        }))
        logger.info(f'✅ Role of {uid} set to {role}')

    def update_display_name(self, uid: str, display_name: str, now: Optional[datetime] = None) -> None:
        """Change an operator's display name."""
        doc = self.store.collection(USERS).document(uid)
        self._call(f'Updating display name of {uid}', lambda: doc.update({
            'displayName': display_name,
            'updatedAt': now or utc_now(),
        }))
        logger.info(f'✅ Display name of {uid} set to {display_name!r}')

    def delete_user(self, uid: str) -> None:
        """Remove an operator's heartbeat, realtime info, user document and login."""
        for path in (f'{STATUS}/{uid}', f'{USERS}/{uid}'):
            ref = db.reference(path, app=self.app)
            self._call(f'Deleting {path}', ref.delete)

        doc = self.store.collection(USERS).document(uid)
        self._call(f'Deleting user document {uid}', doc.delete)

        try:
            self._call(f'Deleting account {uid}', lambda: auth.delete_user(uid, app=self.app))
        except FirebaseError as e:
            if not isinstance(e.__cause__, auth.UserNotFoundError):
                raise
            logger.warning(f'⚠️ No login account for {uid}, removed its records only')

        logger.info(f'✅ Deleted user {uid}')

    # -- Realtime Database -------------------------------------------------

    def fetch_heartbeats(self) -> Dict[str, PresenceHeartbeat]:
        """
        Load presence heartbeats keyed by uid.

        Returns:
            Dict of uid to heartbeat (empty when no client has reported)
        """
        ref = db.reference(STATUS, app=self.app)
        body = self._read('Reading heartbeats', ref.get) or {}
        heartbeats = {
            uid: PresenceHeartbeat.from_dict(uid, data)
            for uid, data in body.items()
            if isinstance(data, dict)
        }
        logger.debug(f'Fetched {len(heartbeats)} heartbeats')
        return heartbeats
