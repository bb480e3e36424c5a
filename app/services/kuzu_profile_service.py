"""
Kuzu Profile Service

User-facing profile rules: who may see a profile, what a user may change
about themselves, public profile details and notification preferences.
"""

import logging
from typing import List, Optional, Dict, Any
from urllib.parse import urlparse

from ..domain.models import User, Account, UserProfile, ProfileLink, UserService, CommunicationChannel
from ..domain.exceptions import AuthorizationError
from ..infrastructure.kuzu_repositories import KuzuUserProfileRepository, KuzuUserServiceRepository
from .kuzu_user_service import KuzuUserService
from .kuzu_account_service import KuzuAccountService
from .kuzu_course_service import KuzuCourseService

logger = logging.getLogger(__name__)

TRUTHY_VALUES = {'1', 'true', 'on', 'yes'}
DIRECT_SHARE_FEATURE = 'direct_share'


def normalize_profile_links(urls: List[Any], titles: List[Any]) -> List[ProfileLink]:
    """
    Pair urls with titles by index.

    Blank urls are skipped, scheme-less urls get ``http://`` and urls without
    a host are dropped.
    """
    links = []
    for index, raw_url in enumerate(urls or []):
        url = str(raw_url or '').strip()
        if not url:
            continue
        if '://' not in url:
            url = f"http://{url}"
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            continue
        title = titles[index] if titles and index < len(titles) else ''
        links.append(ProfileLink(url=url, title=str(title or '').strip()))
    return links


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_VALUES


class KuzuProfileService:
    """Profile controller rules."""

    def __init__(self, users: Optional[KuzuUserService] = None,
                 accounts: Optional[KuzuAccountService] = None,
                 courses: Optional[KuzuCourseService] = None):
        self.users = users or KuzuUserService()
        self.accounts = accounts or KuzuAccountService()
        self.courses = courses or KuzuCourseService()
        self.profile_repo = KuzuUserProfileRepository()
        self.service_repo = KuzuUserServiceRepository()

    def account_for(self, user: User) -> Optional[Account]:
        return self.accounts.get_account(user.account_id)

    # ------------------------------------------------------------------
    # Viewing
    # ------------------------------------------------------------------
    def can_view_profile(self, viewer: User, user: User) -> bool:
        if viewer.id == user.id:
            return True
        if self.courses.common_contexts(viewer.id, user.id):
            return True
        if self.accounts.is_account_admin(viewer.id, user.account_id):
            return True
        account = self.account_for(user)
        return bool(account and account.enable_profiles)

    def get_profile(self, user_id: str) -> UserProfile:
        return self.profile_repo.get_for_user(user_id)

    def serialize_profile(self, profile: UserProfile) -> Dict[str, Any]:
        return {
            'bio': profile.bio,
            'title': profile.title,
            'links': [{'url': link.url, 'title': link.title} for link in profile.links],
        }

    def user_data(self, viewer: User, user_id: str) -> Dict[str, Any]:
        """The ``user_data`` payload of another user's profile page."""
        user = self.users.require_user(user_id)
        if not self.can_view_profile(viewer, user):
            raise AuthorizationError()
        profile = self.get_profile(user.id)
        return {
            'id': user.id,
            'name': user.name,
            'short_name': user.short_name,
            'sortable_name': user.sortable_name,
            'pronouns': user.display_pronouns,
            'title': profile.title,
            'bio': profile.bio,
            'links': self.serialize_profile(profile)['links'],
            'user_services': [
                {'service': s.service, 'service_user_name': s.service_user_name}
                for s in self.service_repo.for_user(user.id) if s.visible
            ],
            'common_contexts': self.courses.common_contexts(viewer.id, user.id),
        }

    # ------------------------------------------------------------------
    # Editing
    # ------------------------------------------------------------------
    def _ensure_editable(self, user: User) -> None:
        if user.is_fake_student:
            raise AuthorizationError()

    def update_settings(self, user: User, params: Dict[str, Any]) -> User:
        """
        Apply the settings page payload.

        ``params`` holds ``default_email_id`` and a ``user`` dict with name
        fields, ``time_zone`` and ``pronouns``.
        """
        self._ensure_editable(user)
        account = self.account_for(user)
        user_params = params.get('user') or {}

        # Raises before anything is written
        self.users.apply_time_zone(user, user_params.get('time_zone'))

        if account is None or account.users_can_edit_name:
            for field_name in ('name', 'short_name', 'sortable_name'):
                value = user_params.get(field_name)
                if value is not None and str(value).strip():
                    setattr(user, field_name, str(value).strip())

        if 'pronouns' in user_params:
            self.users.apply_pronouns(user, account, user_params.get('pronouns'))

        default_email_id = params.get('default_email_id')
        if default_email_id:
            if not self.users.set_default_email(user, str(default_email_id)):
                logger.info(f"Ignored default_email_id {default_email_id} for user {user.id}")

        return self.users.save_user(user)

    def update_profile(self, user: User, params: Dict[str, Any]) -> Dict[str, Any]:
        """Apply the public profile payload; returns the serialized user and profile."""
        self._ensure_editable(user)
        account = self.account_for(user)
        can_edit_name = account is None or account.users_can_edit_name
        user_params = params.get('user') or {}
        profile_params = params.get('user_profile') or {}

        short_name = user_params.get('short_name')
        if can_edit_name and short_name is not None and str(short_name).strip():
            user.short_name = str(short_name).strip()

        if 'pronouns' in params:
            self.users.apply_pronouns(user, account, params.get('pronouns'))

        profile = self.get_profile(user.id)
        if 'bio' in profile_params:
            profile.bio = profile_params.get('bio')
        if can_edit_name and 'title' in profile_params:
            profile.title = profile_params.get('title')

        if 'link_urls' in params:
            profile.links = normalize_profile_links(params.get('link_urls') or [],
                                                    params.get('link_titles') or [])

        visibility = params.get('user_services') or {}
        if visibility:
            self.set_service_visibility(user.id, visibility)

        self.users.save_user(user)
        self.profile_repo.upsert(profile)
        return {
            'user': self.users.serialize_user(user),
            'profile': self.serialize_profile(profile),
        }

    def add_user_service(self, user_id: str, service: str, service_user_name: Optional[str] = None,
                         service_user_id: Optional[str] = None, visible: bool = False) -> UserService:
        user_service = UserService(user_id=user_id, service=service, service_user_name=service_user_name,
                                   service_user_id=service_user_id, visible=visible)
        self.service_repo.create(user_service)
        return user_service

    def user_services(self, user_id: str) -> List[UserService]:
        return self.service_repo.for_user(user_id)

    def set_service_visibility(self, user_id: str, visibility: Dict[str, Any]) -> None:
        for user_service in self.service_repo.for_user(user_id):
            if user_service.service not in visibility:
                continue
            visible = is_truthy(visibility[user_service.service])
            if visible != user_service.visible:
                self.service_repo.update(user_service.id, {'visible': visible})
                user_service.visible = visible

    # ------------------------------------------------------------------
    # Communication preferences
    # ------------------------------------------------------------------
    def communication(self, user: User) -> List[Dict[str, Any]]:
        channels: List[CommunicationChannel] = self.users.channels_for_user(user.id)
        policies = self.users.policies_for_channels([c.id for c in channels])
        by_channel: Dict[str, List[Dict[str, Any]]] = {}
        for policy in policies:
            # Throttling policies carry no notification
            if not policy.notification:
                continue
            by_channel.setdefault(policy.communication_channel_id, []).append({
                'notification': policy.notification,
                'frequency': policy.frequency,
            })
        return [
            {
                'id': channel.id,
                'path': channel.path,
                'path_type': channel.path_type,
                'position': channel.position,
                'workflow_state': channel.workflow_state,
                'policies': sorted(by_channel.get(channel.id, []), key=lambda p: p['notification']),
            }
            for channel in channels
        ]

    # ------------------------------------------------------------------
    # Feature gates
    # ------------------------------------------------------------------
    def content_shares_enabled(self, user: User) -> bool:
        account = self.account_for(user)
        if account is None or not account.feature_enabled(DIRECT_SHARE_FEATURE):
            return False
        return (self.courses.has_non_student_enrollment(user.id)
                or self.accounts.has_active_membership(user.id))

    def qr_mobile_login_enabled(self, user: User, plugin_available: bool) -> bool:
        account = self.account_for(user)
        return bool(plugin_available and account and account.mobile_qr_login_is_enabled)

    def pronoun_options(self, user: User) -> List[str]:
        account = self.account_for(user)
        if not self.users.can_set_pronouns(account):
            return []
        return account.approved_pronouns
