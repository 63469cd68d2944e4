"""
Data model for visitor records, operator accounts and presence heartbeats.

Stored documents use camelCase keys and loosely typed values; records here
use snake_case attributes and aware UTC datetimes. ``from_dict``/``to_dict``
are the only places that know about the stored shape.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Literal, Mapping, Optional, Tuple

from .utils.timing import to_instant

VisitorCategory = Literal['foot', 'vehicle']
Role = Literal['admin', 'user']
Platform = Literal['web', 'mobile']
HeartbeatState = Literal['online', 'offline']

# Legacy documents carry misspelled keys for these attributes
_RESIDENCE_KEYS = ('residence', 'Residence', 'resdience', 'resdence')
_OCCUPATION_KEYS = (
    'institutionOccupation',
    'institutionalOccupation',
    'institutionoccupation',
    'insttutlnOccupation',
    'institution_occupation',
)
_CHECK_OUT_KEYS = ('timeOut', 'timeout', 'time_out')

# Attributes an operator may change inline, mapped to their stored key
EDITABLE_FIELDS: Dict[str, str] = {
    'name': 'visitorName',
    'phone_number': 'phoneNumber',
    'id_number': 'idNumber',
    'gender': 'gender',
    'category': 'visitorType',
    'vehicle_plate': 'vehiclePlate',
    'purpose': 'purposeOfVisit',
    'residence': 'residence',
    'occupation': 'institutionOccupation',
    'tag_number': 'tagNumber',
    'tag_not_given': 'tagNotGiven',
}
_FIELD_BY_STORED_KEY: Dict[str, str] = {stored: name for name, stored in EDITABLE_FIELDS.items()}


def _first_present(data: Mapping[str, Any], keys: Tuple[str, ...], default: Any = '') -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class EditHistoryEntry:
    """One immutable field-level change to a visitor record."""

    field: str
    old_value: Any
    new_value: Any
    edited_by: str
    edited_at: datetime

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], now: Optional[datetime] = None) -> 'EditHistoryEntry':
        stored_field = str(data.get('field', ''))
        return cls(
            field=_FIELD_BY_STORED_KEY.get(stored_field, stored_field),
            old_value=data.get('oldValue'),
            new_value=data.get('newValue'),
            edited_by=str(data.get('editedBy', '')),
            edited_at=to_instant(data.get('editedAt'), now),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'field': EDITABLE_FIELDS.get(self.field, self.field),
            'oldValue': self.old_value,
            'newValue': self.new_value,
            'editedBy': self.edited_by,
            'editedAt': self.edited_at,
        }


@dataclass(frozen=True)
class VisitorRecord:
    """
    One visit instance.

    Invariants:
        checked_out is True exactly when check_out is set
        check_out, when set, is not earlier than check_in
        vehicle_plate only matters for the 'vehicle' category
    """

    id: str
    name: str
    check_in: datetime
    phone_number: str = ''
    id_number: str = ''
    gender: str = 'N/A'
    category: VisitorCategory = 'foot'
    vehicle_plate: Optional[str] = None
    purpose: str = ''
    residence: str = ''
    occupation: str = ''
    tag_number: Optional[str] = None
    tag_not_given: bool = False
    ref_number: str = ''
    check_out: Optional[datetime] = None
    checked_out: bool = False
    checked_in_by: str = ''
    checked_out_by: Optional[str] = None
    edited_by: Optional[str] = None
    last_edited_at: Optional[datetime] = None
    edit_history: Tuple[EditHistoryEntry, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(
        cls,
        doc_id: str,
        data: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> 'VisitorRecord':
        """
        Build a record from a stored visitor document.

        Args:
            doc_id: Document identifier
            data: Decoded document fields
            now: Instant substituted for missing/unparseable timestamps

        Returns:
            VisitorRecord
        """
        checked_out = bool(data.get('isCheckedOut', False))
        category = data.get('visitorType')
        if category not in ('foot', 'vehicle'):
            category = 'foot'

        check_out = None
        if checked_out:
            check_out = to_instant(_first_present(data, _CHECK_OUT_KEYS, None), now)

        last_edited = data.get('lastEditedAt')
        history = data.get('editHistory') or []
        tag_number = data.get('tagNumber')

        return cls(
            id=doc_id,
            name=data.get('visitorName') or '',
            phone_number=data.get('phoneNumber') or '',
            id_number=data.get('idNumber') or '',
            gender=data.get('gender') or 'N/A',
            category=category,
            vehicle_plate=(data.get('vehiclePlate') or None) if category == 'vehicle' else None,
            purpose=data.get('purposeOfVisit') or '',
            residence=_first_present(data, _RESIDENCE_KEYS) or '',
            occupation=_first_present(data, _OCCUPATION_KEYS) or '',
            tag_number=str(tag_number) if tag_number not in (None, '') else None,
            tag_not_given=bool(data.get('tagNotGiven', False)),
            ref_number=data.get('refNumber') or '',
            check_in=to_instant(data.get('timeIn'), now),
            check_out=check_out,
            checked_out=checked_out,
            checked_in_by=data.get('checkedInBy') or '',
            checked_out_by=data.get('checkedOutBy') or None,
            edited_by=data.get('editedBy') or None,
            last_edited_at=to_instant(last_edited, now) if last_edited is not None else None,
            edit_history=tuple(
                EditHistoryEntry.from_dict(entry, now)
                for entry in history
                if isinstance(entry, Mapping)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Stored (camelCase) representation of the record."""
        data: Dict[str, Any] = {
            'visitorName': self.name,
            'phoneNumber': self.phone_number,
            'idNumber': self.id_number,
            'gender': self.gender,
            'visitorType': self.category,
            'purposeOfVisit': self.purpose,
            'residence': self.residence,
            'institutionOccupation': self.occupation,
            'tagNotGiven': self.tag_not_given,
            'refNumber': self.ref_number,
            'timeIn': self.check_in,
            'isCheckedOut': self.checked_out,
            'checkedInBy': self.checked_in_by,
            'editHistory': [entry.to_dict() for entry in self.edit_history],
        }
        if self.category == 'vehicle' and self.vehicle_plate:
            data['vehiclePlate'] = self.vehicle_plate
        if self.tag_number is not None:
            data['tagNumber'] = self.tag_number
        if self.check_out is not None:
            data['timeOut'] = self.check_out
        if self.checked_out_by:
            data['checkedOutBy'] = self.checked_out_by
        if self.edited_by:
            data['editedBy'] = self.edited_by
        if self.last_edited_at is not None:
            data['lastEditedAt'] = self.last_edited_at
        return data

    def to_json(self) -> Dict[str, Any]:
        """JSON-safe representation for the HTTP API."""
        return {
            'id': self.id,
            'name': self.name,
            'phoneNumber': self.phone_number,
            'idNumber': self.id_number,
            'gender': self.gender,
            'category': self.category,
            'vehiclePlate': self.vehicle_plate,
            'purpose': self.purpose,
            'residence': self.residence,
            'occupation': self.occupation,
            'tagNumber': self.tag_number,
            'tagNotGiven': self.tag_not_given,
            'refNumber': self.ref_number,
            'checkIn': _isoformat(self.check_in),
            'checkOut': _isoformat(self.check_out),
            'checkedOut': self.checked_out,
            'checkedInBy': self.checked_in_by,
            'checkedOutBy': self.checked_out_by,
            'editedBy': self.edited_by,
            'lastEditedAt': _isoformat(self.last_edited_at),
            'editHistory': [
                {
                    'field': entry.field,
                    'oldValue': entry.old_value,
                    'newValue': entry.new_value,
                    'editedBy': entry.edited_by,
                    'editedAt': _isoformat(entry.edited_at),
                }
                for entry in self.edit_history
            ],
        }


@dataclass(frozen=True)
class UserAccount:
    """One operator account with its last known presence."""

    uid: str
    email: str
    created_at: datetime
    display_name: str = ''
    role: Role = 'user'
    platform: Platform = 'mobile'
    is_online: bool = False
    last_seen: Optional[datetime] = None
    device_info: str = ''

    @classmethod
    def from_dict(
        cls,
        uid: str,
        data: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> 'UserAccount':
        """
        Build an account from a stored user document.

        Non-admin accounts are always mobile; admins keep their stored
        platform, defaulting to web.
        """
        role = data.get('role') or 'user'
        if role == 'admin':
            platform = data.get('platform') or 'web'
        else:
            platform = 'mobile'

        return cls(
            uid=uid,
            email=data.get('email') or '',
            display_name=data.get('displayName') or '',
            role=role,
            platform=platform,
            created_at=to_instant(data.get('createdAt'), now),
            device_info=data.get('deviceInfo') or '',
        )

    def to_json(self) -> Dict[str, Any]:
        return {
            'uid': self.uid,
            'email': self.email,
            'displayName': self.display_name,
            'role': self.role,
            'platform': self.platform,
            'isOnline': self.is_online,
            'lastSeen': _isoformat(self.last_seen),
            'deviceInfo': self.device_info,
            'createdAt': _isoformat(self.created_at),
        }


@dataclass(frozen=True)
class PresenceHeartbeat:
    """Last known connection state reported by a client for one user."""

    uid: str
    state: HeartbeatState
    last_changed: Any
    platform: Optional[str] = None
    device_info: Optional[str] = None

    @classmethod
    def from_dict(cls, uid: str, data: Mapping[str, Any]) -> 'PresenceHeartbeat':
        # last_changed stays raw; the presence engine normalizes it
        state = 'online' if data.get('state') == 'online' else 'offline'
        return cls(
            uid=uid,
            state=state,
            last_changed=data.get('lastChanged'),
            platform=data.get('platform') or None,
            device_info=data.get('deviceInfo') or None,
        )
