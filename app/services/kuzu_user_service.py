"""
Kuzu User Service

Handles users, their communication channels, notification policies and
API access tokens.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime, timezone

import pytz

from ..domain.models import (
    User, Account, CommunicationChannel, NotificationPolicy, AccessToken, now_utc,
)
from ..domain.exceptions import NotFoundError, ValidationError
from ..infrastructure.kuzu_repositories import (
    KuzuUserRepository, KuzuCommunicationChannelRepository,
    KuzuNotificationPolicyRepository, KuzuAccessTokenRepository,
)
from ..utils.simple_cache import cached, cache_delete, user_email_key

logger = logging.getLogger(__name__)

EMAIL_CACHE_TTL = 300


class KuzuUserService:
    """User service using clean Kuzu architecture."""

    def __init__(self):
        self.user_repo = KuzuUserRepository()
        self.channel_repo = KuzuCommunicationChannelRepository()
        self.policy_repo = KuzuNotificationPolicyRepository()
        self.token_repo = KuzuAccessTokenRepository()

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def create_user(self, username: str, name: str, password: Optional[str] = None,
                    account_id: Optional[str] = None, **attrs) -> User:
        if self.user_repo.get_by_username(username) is not None:
            raise ValidationError(f"Username {username} is already taken")
        user = User(username=username, name=name, account_id=account_id, **attrs)
        if password:
            user.set_password(password)
        self.user_repo.create(user)
        logger.info(f"Created user {user.username} (ID: {user.id})")
        return user

    def get_user_by_id(self, user_id: Optional[str]) -> Optional[User]:
        return self.user_repo.get_by_id(user_id)

    def require_user(self, user_id: str) -> User:
        user = self.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError('User', user_id)
        return user

    def get_user_by_username(self, username: str) -> Optional[User]:
        return self.user_repo.get_by_username(username)

    def authenticate(self, username: str, password: str) -> Optional[User]:
        user = self.get_user_by_username(username)
        if user is None or not user.is_active or not user.check_password(password):
            return None
        return user

    def save_user(self, user: User) -> User:
        user.updated_at = now_utc()
        self.user_repo.save(user)
        return user

    @staticmethod
    def valid_time_zone(name: str) -> bool:
        return name in pytz.all_timezones_set

    def apply_time_zone(self, user: User, name: Optional[str]) -> None:
        if name is None:
            return
        if not self.valid_time_zone(name):
            raise ValidationError(f"Invalid time zone: {name}", field='time_zone')
        user.time_zone = name

    @staticmethod
    def can_set_pronouns(account: Optional[Account]) -> bool:
        return bool(account and account.can_add_pronouns and account.can_change_pronouns)

    def apply_pronouns(self, user: User, account: Optional[Account], value: Optional[str]) -> bool:
        """
        Apply a requested pronoun change; returns whether the user changed.

        Blank values clear the pronouns. Other values must be on the account's
        approved list (case-insensitive) and pronouns must be enabled; anything
        else is ignored.
        """
        cleaned = (value or '').strip()
        if not cleaned:
            if user.pronouns is None:
                return False
            user.set_pronouns(None)
            return True
        if not self.can_set_pronouns(account):
            return False
        approved = {p.strip().lower(): p for p in account.approved_pronouns}
        match = approved.get(cleaned.lower())
        if match is None:
            logger.debug(f"Ignoring unapproved pronouns for user {user.id}")
            return False
        user.set_pronouns(match)
        return True

    # ------------------------------------------------------------------
    # Communication channels
    # ------------------------------------------------------------------
    def add_channel(self, user_id: str, path: str, path_type: str = 'email',
                    workflow_state: str = 'active') -> CommunicationChannel:
        existing = self.channel_repo.for_user(user_id)
        position = max((c.position for c in existing), default=0) + 1
        channel = CommunicationChannel(user_id=user_id, path=path, path_type=path_type,
                                       position=position, workflow_state=workflow_state)
        self.channel_repo.create(channel)
        if position == 1:
            cache_delete(user_email_key(user_id))
        return channel

    def channels_for_user(self, user_id: str) -> List[CommunicationChannel]:
        return self.channel_repo.for_user(user_id)

    @cached(ttl_seconds=EMAIL_CACHE_TTL, key_builder=lambda self, user_id: user_email_key(user_id))
    def primary_email(self, user_id: str) -> Optional[str]:
        """Path of the user's first active email channel."""
        for channel in self.channel_repo.for_user(user_id):
            if channel.path_type == 'email' and channel.is_active:
                return channel.path
        return None

    def set_default_email(self, user: User, channel_id: str) -> bool:
        """
        Move an active email channel of ``user`` to position 1.

        The other channels keep their relative order. Returns False when the
        channel is not an active email channel of the user.
        """
        channels = self.channel_repo.for_user(user.id)
        target = next((c for c in channels if c.id == channel_id), None)
        if target is None or target.path_type != 'email' or not target.is_active:
            return False
        ordered = [target] + [c for c in channels if c.id != target.id]
        for position, channel in enumerate(ordered, start=1):
            if channel.position != position:
                self.channel_repo.update(channel.id, {'position': position})
                channel.position = position
        cache_delete(user_email_key(user.id))
        return True

    def add_notification_policy(self, channel_id: str, notification: Optional[str],
                                frequency: str = 'immediately') -> NotificationPolicy:
        policy = NotificationPolicy(communication_channel_id=channel_id,
                                    notification=notification, frequency=frequency)
        self.policy_repo.create(policy)
        return policy

    def policies_for_channels(self, channel_ids: List[str]) -> List[NotificationPolicy]:
        return self.policy_repo.for_channels(channel_ids)

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------
    def create_access_token(self, user_id: str, purpose: str = 'api') -> Tuple[str, AccessToken]:
        """Create a token; the plain value is returned once and only its hash is stored."""
        from ..api_auth import APIToken
        plain, token_hash = APIToken.generate_token()
        token = AccessToken(user_id=user_id, purpose=purpose, token_hash=token_hash)
        self.token_repo.create(token)
        logger.info(f"Created {purpose} access token for user {user_id}")
        return plain, token

    def get_user_by_token(self, plain_token: str) -> Optional[User]:
        from ..api_auth import APIToken
        token = self.token_repo.get_by_hash(APIToken.hash_token(plain_token))
        if token is None or not APIToken.verify_token(plain_token, token.token_hash):
            return None
        user = self.get_user_by_id(token.user_id)
        if user is None or not user.is_active:
            return None
        return user

    def serialize_user(self, user: User) -> Dict[str, Any]:
        return {
            'id': user.id,
            'name': user.name,
            'short_name': user.short_name,
            'sortable_name': user.sortable_name,
            'pronouns': user.display_pronouns,
            'time_zone': user.time_zone,
            'email': self.primary_email(user.id),
            'updated_at': _iso(user.updated_at),
        }


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()
