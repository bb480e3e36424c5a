"""
Domain models for the LMS graph store.

These models represent the core business entities independent of persistence concerns.
Each model knows how to flatten itself into node properties (``to_dict``) and how to
rebuild itself from a node returned by Kuzu (``from_dict``).
"""

from dataclasses import dataclass, field
from dataclasses import fields as dataclass_fields
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Set
from enum import Enum
import json
import re


def now_utc() -> datetime:
    """Timezone-aware UTC now for default timestamps (avoid datetime.utcnow deprecation)."""
    return datetime.now(timezone.utc)


def _decode(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop Kuzu internal keys (``_id``, ``_label``) and decode byte strings."""
    decoded = {}
    for k, v in data.items():
        if isinstance(k, bytes):
            k = k.decode('utf-8')
        if k.startswith('_'):
            continue
        decoded[k] = v.decode('utf-8') if isinstance(v, bytes) else v
    return decoded


def _known_fields(cls, data: Dict[str, Any]) -> Dict[str, Any]:
    names = {f.name for f in dataclass_fields(cls)}
    return {k: v for k, v in _decode(data).items() if k in names}


def _load_json(value: Any, default: Any) -> Any:
    if value is None or value == '':
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (TypeError, ValueError):
        return default


DEFAULT_PRONOUNS = ['She/Her', 'He/Him', 'They/Them']


def pronoun_key(display: str) -> str:
    """'He/Him' -> 'he_him'."""
    return re.sub(r'[^a-z0-9]+', '_', display.strip().lower()).strip('_')


_DEFAULT_PRONOUN_KEYS = {pronoun_key(p): p for p in DEFAULT_PRONOUNS}


class ContextType(Enum):
    """Tenancy scopes that own outcomes."""
    ACCOUNT = "Account"
    COURSE = "Course"

    @classmethod
    def from_path(cls, segment: str) -> 'ContextType':
        """Map URL segments ('accounts', 'courses') to a context type."""
        mapping = {'accounts': cls.ACCOUNT, 'courses': cls.COURSE}
        try:
            return mapping[segment.lower()]
        except KeyError:
            raise ValueError(f"Unknown context segment: {segment}")


class EnrollmentType(Enum):
    """Enrollment type enumeration."""
    STUDENT = "StudentEnrollment"
    TEACHER = "TeacherEnrollment"
    TA = "TaEnrollment"
    DESIGNER = "DesignerEnrollment"
    OBSERVER = "ObserverEnrollment"
    STUDENT_VIEW = "StudentViewEnrollment"

    @property
    def role_name(self) -> str:
        return {
            EnrollmentType.STUDENT: 'Student',
            EnrollmentType.TEACHER: 'Teacher',
            EnrollmentType.TA: 'TA',
            EnrollmentType.DESIGNER: 'Designer',
            EnrollmentType.OBSERVER: 'Observer',
            EnrollmentType.STUDENT_VIEW: 'Student',
        }[self]

    @property
    def is_student(self) -> bool:
        return self in (EnrollmentType.STUDENT, EnrollmentType.STUDENT_VIEW)

    @property
    def can_manage_course(self) -> bool:
        return self in (EnrollmentType.TEACHER, EnrollmentType.TA, EnrollmentType.DESIGNER)


class NotificationFrequency(Enum):
    IMMEDIATELY = "immediately"
    DAILY = "daily"
    WEEKLY = "weekly"
    NEVER = "never"


@dataclass
class Account:
    """Account (tenant) domain model with JSON-backed settings and feature flags."""
    id: Optional[str] = None
    name: str = ""
    parent_account_id: Optional[str] = None
    settings: Dict[str, Any] = field(default_factory=dict)
    features: Set[str] = field(default_factory=set)
    created_at: datetime = field(default_factory=now_utc)

    def feature_enabled(self, feature: str) -> bool:
        return feature in self.features

    def enable_feature(self, feature: str) -> None:
        self.features.add(feature)

    def disable_feature(self, feature: str) -> None:
        self.features.discard(feature)

    @property
    def users_can_edit_name(self) -> bool:
        return self.settings.get('users_can_edit_name', True) is not False

    @property
    def can_add_pronouns(self) -> bool:
        return bool(self.settings.get('can_add_pronouns', False))

    @property
    def can_change_pronouns(self) -> bool:
        return self.settings.get('can_change_pronouns', True) is not False

    @property
    def approved_pronouns(self) -> List[str]:
        return list(self.settings.get('pronouns') or DEFAULT_PRONOUNS)

    @property
    def mobile_qr_login_is_enabled(self) -> bool:
        return bool(self.settings.get('mobile_qr_login_is_enabled', False))

    @property
    def enable_profiles(self) -> bool:
        return bool(self.settings.get('enable_profiles', False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'parent_account_id': self.parent_account_id,
            'settings': json.dumps(self.settings),
            'features': json.dumps(sorted(self.features)),
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Account':
        values = _known_fields(cls, data)
        values['settings'] = _load_json(values.get('settings'), {})
        values['features'] = set(_load_json(values.get('features'), []))
        if values.get('created_at') is None:
            values.pop('created_at', None)
        return cls(**values)


@dataclass
class User:
    """User domain model."""
    id: Optional[str] = None
    username: str = ""
    password_hash: str = ""
    name: str = ""
    short_name: Optional[str] = None
    sortable_name: Optional[str] = None
    pronouns: Optional[str] = None  # stored form: default keys ('he_him') or a custom string
    time_zone: str = "UTC"
    account_id: Optional[str] = None
    workflow_state: str = "registered"
    is_fake_student: bool = False
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    def __post_init__(self):
        if not self.short_name and self.name:
            self.short_name = self.name
        if not self.sortable_name and self.name:
            self.sortable_name = self.sortable_name_for(self.name)

    @staticmethod
    def sortable_name_for(name: str) -> str:
        """'Jane Q Doe' -> 'Doe, Jane Q'."""
        parts = name.strip().split()
        if len(parts) < 2:
            return name.strip()
        return f"{parts[-1]}, {' '.join(parts[:-1])}"

    # Flask-Login compatibility
    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def is_active(self) -> bool:
        return self.workflow_state != 'deleted'

    @property
    def is_anonymous(self) -> bool:
        return False

    def get_id(self) -> str:
        return self.id or ""

    def set_password(self, password: str):
        """Set password hash using werkzeug."""
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        from werkzeug.security import check_password_hash
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    def set_pronouns(self, value: Optional[str]) -> None:
        """Store pronouns, mapping defaults to their keys."""
        cleaned = (value or '').strip()
        if not cleaned:
            self.pronouns = None
            return
        key = pronoun_key(cleaned)
        self.pronouns = key if key in _DEFAULT_PRONOUN_KEYS else cleaned

    @property
    def display_pronouns(self) -> Optional[str]:
        if not self.pronouns:
            return None
        return _DEFAULT_PRONOUN_KEYS.get(self.pronouns, self.pronouns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'username': self.username,
            'password_hash': self.password_hash,
            'name': self.name,
            'short_name': self.short_name,
            'sortable_name': self.sortable_name,
            'pronouns': self.pronouns,
            'time_zone': self.time_zone,
            'account_id': self.account_id,
            'workflow_state': self.workflow_state,
            'is_fake_student': self.is_fake_student,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        values = _known_fields(cls, data)
        for ts_field in ('created_at', 'updated_at'):
            if values.get(ts_field) is None:
                values.pop(ts_field, None)
        values['is_fake_student'] = bool(values.get('is_fake_student'))
        values['time_zone'] = values.get('time_zone') or 'UTC'
        return cls(**values)


@dataclass
class CommunicationChannel:
    """An email address or phone number the user can be reached on."""
    id: Optional[str] = None
    user_id: str = ""
    path: str = ""
    path_type: str = "email"
    position: int = 1
    workflow_state: str = "unconfirmed"
    created_at: datetime = field(default_factory=now_utc)

    @property
    def is_active(self) -> bool:
        return self.workflow_state == 'active'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'channel_path': self.path,
            'path_type': self.path_type,
            'position': self.position,
            'workflow_state': self.workflow_state,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CommunicationChannel':
        data = dict(data)
        if 'channel_path' in data:
            data['path'] = data.pop('channel_path')
        values = _known_fields(cls, data)
        if values.get('created_at') is None:
            values.pop('created_at', None)
        values['position'] = int(values.get('position') or 1)
        return cls(**values)


@dataclass
class NotificationPolicy:
    """How often a channel receives a notification. ``notification`` may be empty for throttling policies."""
    id: Optional[str] = None
    communication_channel_id: str = ""
    notification: Optional[str] = None
    frequency: str = NotificationFrequency.IMMEDIATELY.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'communication_channel_id': self.communication_channel_id,
            'notification': self.notification,
            'frequency': self.frequency,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'NotificationPolicy':
        return cls(**_known_fields(cls, data))


@dataclass
class ProfileLink:
    url: str = ""
    title: str = ""


@dataclass
class UserProfile:
    """Public profile details; one per user."""
    user_id: str = ""
    bio: Optional[str] = None
    title: Optional[str] = None
    links: List[ProfileLink] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.user_id,
            'bio': self.bio,
            'title': self.title,
            'links': json.dumps([{'url': l.url, 'title': l.title} for l in self.links]),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserProfile':
        decoded = _decode(data)
        links = [ProfileLink(url=l.get('url', ''), title=l.get('title', ''))
                 for l in _load_json(decoded.get('links'), [])]
        return cls(
            user_id=decoded.get('id') or decoded.get('user_id') or '',
            bio=decoded.get('bio'),
            title=decoded.get('title'),
            links=links,
        )


@dataclass
class UserService:
    """An external service (skype, twitter, ...) attached to a profile."""
    id: Optional[str] = None
    user_id: str = ""
    service: str = ""
    service_user_name: Optional[str] = None
    service_user_id: Optional[str] = None
    visible: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'service': self.service,
            'service_user_name': self.service_user_name,
            'service_user_id': self.service_user_id,
            'visible': self.visible,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UserService':
        values = _known_fields(cls, data)
        values['visible'] = bool(values.get('visible'))
        return cls(**values)


@dataclass
class AccountUser:
    """Administrative membership of a user in an account."""
    id: Optional[str] = None
    account_id: str = ""
    user_id: str = ""
    membership_type: str = "AccountAdmin"
    workflow_state: str = "active"
    created_at: datetime = field(default_factory=now_utc)

    @property
    def is_active(self) -> bool:
        return self.workflow_state == 'active'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'account_id': self.account_id,
            'user_id': self.user_id,
            'membership_type': self.membership_type,
            'workflow_state': self.workflow_state,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AccountUser':
        values = _known_fields(cls, data)
        if values.get('created_at') is None:
            values.pop('created_at', None)
        return cls(**values)


@dataclass
class Course:
    id: Optional[str] = None
    name: str = ""
    account_id: str = ""
    workflow_state: str = "available"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'account_id': self.account_id,
            'workflow_state': self.workflow_state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Course':
        return cls(**_known_fields(cls, data))


@dataclass
class Enrollment:
    """A user's role in a course."""
    id: Optional[str] = None
    user_id: str = ""
    course_id: str = ""
    enrollment_type: EnrollmentType = EnrollmentType.STUDENT
    workflow_state: str = "active"

    @property
    def is_active(self) -> bool:
        return self.workflow_state == 'active'

    @property
    def role(self) -> str:
        return self.enrollment_type.role_name

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'course_id': self.course_id,
            'enrollment_type': self.enrollment_type.value,
            'workflow_state': self.workflow_state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Enrollment':
        values = _known_fields(cls, data)
        values['enrollment_type'] = EnrollmentType(values.get('enrollment_type') or EnrollmentType.STUDENT.value)
        return cls(**values)


@dataclass
class StudentGroup:
    """A collaboration group inside an account or course."""
    id: Optional[str] = None
    name: str = ""
    context_type: str = ContextType.COURSE.value
    context_id: str = ""
    workflow_state: str = "available"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'context_type': self.context_type,
            'context_id': self.context_id,
            'workflow_state': self.workflow_state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StudentGroup':
        return cls(**_known_fields(cls, data))


@dataclass
class GroupMembership:
    id: Optional[str] = None
    group_id: str = ""
    user_id: str = ""
    workflow_state: str = "accepted"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'group_id': self.group_id,
            'user_id': self.user_id,
            'workflow_state': self.workflow_state,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'GroupMembership':
        return cls(**_known_fields(cls, data))


@dataclass
class AccessToken:
    """Hashed bearer token; the plain token is only shown once at creation."""
    id: Optional[str] = None
    user_id: str = ""
    purpose: str = "api"
    token_hash: str = ""
    created_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'purpose': self.purpose,
            'token_hash': self.token_hash,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AccessToken':
        values = _known_fields(cls, data)
        if values.get('created_at') is None:
            values.pop('created_at', None)
        return cls(**values)


@dataclass
class OutcomeGroup:
    """Folder in the outcome tree; exactly one root per context."""
    id: Optional[str] = None
    title: str = ""
    description: Optional[str] = None
    context_type: str = ContextType.ACCOUNT.value
    context_id: str = ""
    parent_id: Optional[str] = None
    is_root: bool = False
    workflow_state: str = "active"
    created_at: datetime = field(default_factory=now_utc)
    updated_at: datetime = field(default_factory=now_utc)

    @property
    def is_active(self) -> bool:
        return self.workflow_state == 'active'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'context_type': self.context_type,
            'context_id': self.context_id,
            'parent_id': self.parent_id,
            'is_root': self.is_root,
            'workflow_state': self.workflow_state,
            'created_at': self.created_at,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'OutcomeGroup':
        values = _known_fields(cls, data)
        for ts_field in ('created_at', 'updated_at'):
            if values.get(ts_field) is None:
                values.pop(ts_field, None)
        values['is_root'] = bool(values.get('is_root'))
        return cls(**values)


@dataclass
class LearningOutcome:
    """A learning objective; linked to exactly one active group."""
    id: Optional[str] = None
    title: str = ""
    display_name: Optional[str] = None
    description: Optional[str] = None
    context_type: str = ContextType.ACCOUNT.value
    context_id: str = ""
    workflow_state: str = "active"
    created_at: datetime = field(default_factory=now_utc)

    # Populated by the service layer
    group_id: Optional[str] = None

    def matches(self, search: Optional[str]) -> bool:
        """Case-insensitive match on title, display name and description."""
        if not search:
            return True
        needle = search.strip().lower()
        return any(needle in field.lower()
                   for field in (self.title, self.display_name, self.description) if field)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'title': self.title,
            'display_name': self.display_name,
            'description': self.description,
            'context_type': self.context_type,
            'context_id': self.context_id,
            'workflow_state': self.workflow_state,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LearningOutcome':
        values = _known_fields(cls, data)
        if values.get('created_at') is None:
            values.pop('created_at', None)
        return cls(**values)
