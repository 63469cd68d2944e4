"""
Edit audit module.

Field-level edits and the checkout transition on visitor records. Both are
pure: the input record is never modified, a new record is returned with one
history entry appended.
"""

from dataclasses import dataclass, fields, replace
from datetime import datetime
from typing import Any, FrozenSet, Optional, Tuple

from ..models import EditHistoryEntry, VisitorRecord
from ..utils.timing import to_instant

CHECKOUT_FIELD = 'checkout'

# Attributes owned by the lifecycle/audit machinery, never edited directly
_PROTECTED_FIELDS: FrozenSet[str] = frozenset({
    'id',
    'check_in',
    'checked_in_by',
    'checked_out',
    'check_out',
    'checked_out_by',
    'edit_history',
    'edited_by',
    'last_edited_at',
})


class AlreadyCheckedOutError(Exception):
    """Checkout attempted on a visitor that is already checked out."""

    def __init__(self, visitor_id: str):
        super().__init__(f'Visitor {visitor_id} is already checked out')
        self.visitor_id = visitor_id


@dataclass(frozen=True)
class CheckoutResult:
    """
    Outcome of a checkout attempt.

    On success ``entry`` is the appended audit entry and ``error`` is None.
    On an invalid transition ``record`` is the unchanged input, ``entry`` is
    None and ``error`` describes why.
    """

    record: VisitorRecord
    entry: Optional[EditHistoryEntry] = None
    error: Optional[AlreadyCheckedOutError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _record_fields() -> FrozenSet[str]:
    return frozenset(f.name for f in fields(VisitorRecord))


def record_edit(
    record: VisitorRecord,
    field: str,
    old_value: Any,
    new_value: Any,
    editor: str,
    now: datetime,
) -> Tuple[VisitorRecord, EditHistoryEntry]:
    """
    Apply one field-level edit and append its audit entry.

    Callers skip this when ``new_value == old_value`` so history never
    records null edits.

    Args:
        record: Current record (left untouched)
        field: Record attribute to change
        old_value: Value before the edit, as seen by the editor
        new_value: Value after the edit
        editor: Operator uid making the change
        now: Edit instant

    Returns:
        Tuple of (updated record, appended entry)

    Raises:
        ValueError: If ``field`` is not an editable record attribute
    """
    if field in _PROTECTED_FIELDS or field not in _record_fields():
        raise ValueError(f'Field {field!r} cannot be edited')

    edited_at = to_instant(now)
    entry = EditHistoryEntry(
        field=field,
        old_value=old_value,
        new_value=new_value,
        edited_by=editor,
        edited_at=edited_at,
    )
    updated = replace(
        record,
        **{field: new_value},
        edited_by=editor,
        last_edited_at=edited_at,
        edit_history=record.edit_history + (entry,),
    )
    return updated, entry


def checkout(record: VisitorRecord, operator: str, now: datetime) -> CheckoutResult:
    """
    Check a visitor out.

    Allowed only while the visitor is not checked out; there is no way back.

    Args:
        record: Current record (left untouched)
        operator: Operator uid performing the checkout
        now: Checkout instant

    Returns:
        CheckoutResult; ``error`` is AlreadyCheckedOutError for a repeat checkout
    """
    if record.checked_out:
        return CheckoutResult(record=record, error=AlreadyCheckedOutError(record.id))

    checked_out_at = to_instant(now)
    entry = EditHistoryEntry(
        field=CHECKOUT_FIELD,
        old_value=False,
        new_value=True,
        edited_by=operator,
        edited_at=checked_out_at,
    )
    updated = replace(
        record,
        checked_out=True,
        check_out=checked_out_at,
        checked_out_by=operator,
        edited_by=operator,
        last_edited_at=checked_out_at,
        edit_history=record.edit_history + (entry,),
    )
    return CheckoutResult(record=updated, entry=entry)
