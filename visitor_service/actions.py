"""
Operator actions.

Edits and checkouts are applied optimistically: the derived record goes
into the dashboard state first, then to Firebase. If Firebase rejects the
write, the previous record is put back and the error is re-raised.
"""

from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

from .dashboard import DashboardState
from .engine.audit import CheckoutResult, checkout, record_edit
from .firebase import FirebaseClient, FirebaseError
from .logging_config import get_logger
from .models import EDITABLE_FIELDS, UserAccount, VisitorRecord
from .utils.timing import utc_now

logger = get_logger(__name__)

ROLES = ('admin', 'user')
CATEGORIES = ('foot', 'vehicle')

# Editable fields that may be cleared to null
_OPTIONAL_TEXT_FIELDS = ('tag_number', 'vehicle_plate')


class VisitorNotFound(KeyError):
    """No visitor with the given id in the current snapshot."""


class UserNotFound(KeyError):
    """No user with the given uid in the current snapshot."""


def _require_visitor(state: DashboardState, visitor_id: str) -> VisitorRecord:
    visitor = state.get_visitor(visitor_id)
    if visitor is None:
        raise VisitorNotFound(visitor_id)
    return visitor


def _check_edit(visitor: VisitorRecord, field: str, new_value: Any) -> None:
    """Reject edits the dashboard never offers."""
    if field not in EDITABLE_FIELDS:
        raise ValueError(f'Field {field!r} cannot be edited')
    if field == 'category' and new_value not in CATEGORIES:
        raise ValueError(f'Visitor category must be one of {CATEGORIES}')
    if field == 'vehicle_plate' and visitor.category != 'vehicle':
        raise ValueError(f'Visitor {visitor.id} is on foot and has no vehicle plate')

    if field == 'tag_not_given':
        if not isinstance(new_value, bool):
            raise ValueError('tag_not_given must be true or false')
    elif field in _OPTIONAL_TEXT_FIELDS:
        if new_value is not None and not isinstance(new_value, str):
            raise ValueError(f'{field} must be text or null')
    elif not isinstance(new_value, str):
        raise ValueError(f'{field} must be text')


def edit_visitor(
    state: DashboardState,
    client: FirebaseClient,
    visitor_id: str,
    field: str,
    new_value: Any,
    editor: str,
    now: Optional[datetime] = None,
) -> Optional[VisitorRecord]:
    """
    Change one visitor field and record it in the edit history.

    Args:
        state: Dashboard state
        client: Firebase client
        visitor_id: Visitor to edit
        field: Attribute name (one of EDITABLE_FIELDS)
        new_value: New value
        editor: Operator uid
        now: Edit instant

    Returns:
        Updated record, or None when the value did not change

    Raises:
        VisitorNotFound: Unknown visitor
        ValueError: Field not editable or value not allowed
        FirebaseError: Write failed (state rolled back)
    """
    with state.lock:
        previous = _require_visitor(state, visitor_id)
        _check_edit(previous, field, new_value)
        old_value = getattr(previous, field)

        # Null edits never reach the history
        if new_value == old_value:
            logger.debug(f'Edit of {field} on visitor {visitor_id} is a no-op, skipped')
            return None

        updated, _ = record_edit(previous, field, old_value, new_value, editor, now or utc_now())
        state.put_visitor(updated)

    try:
        client.persist_edit(updated, field)
    except FirebaseError as e:
        logger.error(f'❌ Failed to save edit on visitor {visitor_id}, rolling back: {e}')
        state.rollback_visitor(updated, previous)
        raise

    return updated


def checkout_visitor(
    state: DashboardState,
    client: FirebaseClient,
    visitor_id: str,
    operator: str,
    now: Optional[datetime] = None,
) -> CheckoutResult:
    """
    Check a visitor out.

    Args:
        state: Dashboard state
        client: Firebase client
        visitor_id: Visitor to check out
        operator: Operator uid
        now: Checkout instant

    Returns:
        CheckoutResult; a repeat checkout carries AlreadyCheckedOutError
        and nothing is written

    Raises:
        VisitorNotFound: Unknown visitor
        FirebaseError: Write failed (state rolled back)
    """
    with state.lock:
        previous = _require_visitor(state, visitor_id)
        result = checkout(previous, operator, now or utc_now())
        if not result.ok:
            logger.warning(f'⚠️ {result.error}')
            return result
        state.put_visitor(result.record)

    try:
        client.persist_checkout(result.record)
    except FirebaseError as e:
        logger.error(f'❌ Failed to save checkout of visitor {visitor_id}, rolling back: {e}')
        state.rollback_visitor(result.record, previous)
        raise

    return result

    state.put_visitor(result.record)
    try:
        client.persist_checkout(result.record)
    except FirebaseError as e:
        logger.error(f'❌ Failed to save checkout of visitor {visitor_id}, rolling back: {e}')
        state.put_visitor(previous)
        raise

    return result


def create_user(
    state: DashboardState,
    client: FirebaseClient,
    email: str,
    password: str,
    display_name: str = '',
    role: str = 'user',
    now: Optional[datetime] = None,
) -> UserAccount:
    """Provision an operator account and add it to the snapshot."""
    if role not in ROLES:
        raise ValueError(f'Role must be one of {ROLES}')
    if not email or not password:
        raise ValueError('Email and password are required')

    user = client.create_user(email, password, display_name, role, now)
    state.put_user(user)
    return user


def change_role(
    state: DashboardState,
    client: FirebaseClient,
    uid: str,
    role: str,
    now: Optional[datetime] = None,
) -> UserAccount:
    """
    Change an operator's role.

    The effective platform follows the new role: demoted admins become
    mobile users, promoted users start out on web.
    """
    if role not in ROLES:
        raise ValueError(f'Role must be one of {ROLES}')

    user = state.get_user(uid)
    if user is None:
        raise UserNotFound(uid)

    client.update_user_role(uid, role, now)

    updated = replace(user, role=role, platform='web' if role == 'admin' else 'mobile')
    state.put_user(updated)
    return updated


def change_display_name(
    state: DashboardState,
    client: FirebaseClient,
    uid: str,
    display_name: str,
    now: Optional[datetime] = None,
) -> UserAccount:
    """Rename an operator; surrounding whitespace is dropped."""
    if not isinstance(display_name, str) or not display_name.strip():
        raise ValueError('Display name cannot be empty')
    display_name = display_name.strip()

    user = state.get_user(uid)
    if user is None:
        raise UserNotFound(uid)

    client.update_display_name(uid, display_name, now)

    updated = replace(user, display_name=display_name)
    state.put_user(updated)
    return updated


def delete_user(state: DashboardState, client: FirebaseClient, uid: str) -> None:
    """Delete an operator account and its heartbeat state."""
    if state.get_user(uid) is None:
        raise UserNotFound(uid)

    client.delete_user(uid)
    state.remove_user(uid)
