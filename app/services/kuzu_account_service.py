"""
Kuzu Account Service

Accounts, their settings and feature flags, and account admin memberships.
Admin rights are inherited down the account tree: an admin of a parent
account administers every sub-account.
"""

import logging
from typing import List, Optional, Dict, Any

from ..domain.models import Account, AccountUser, User
from ..domain.exceptions import NotFoundError, AuthorizationError, MissingParameterError
from ..infrastructure.kuzu_repositories import (
    KuzuAccountRepository, KuzuAccountUserRepository, KuzuUserRepository,
)

logger = logging.getLogger(__name__)

ACCOUNT_ADMIN = 'AccountAdmin'
# Guards against a corrupt parent cycle
MAX_ACCOUNT_DEPTH = 50


class KuzuAccountService:
    """Account service using clean Kuzu architecture."""

    def __init__(self):
        self.account_repo = KuzuAccountRepository()
        self.account_user_repo = KuzuAccountUserRepository()
        self.user_repo = KuzuUserRepository()

    def create_account(self, name: str, parent_account_id: Optional[str] = None,
                       settings: Optional[Dict[str, Any]] = None,
                       features: Optional[List[str]] = None) -> Account:
        account = Account(name=name, parent_account_id=parent_account_id,
                          settings=dict(settings or {}), features=set(features or []))
        self.account_repo.create(account)
        logger.info(f"Created account {account.id} ({name})")
        return account

    def get_account(self, account_id: Optional[str]) -> Optional[Account]:
        return self.account_repo.get_by_id(account_id)

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise NotFoundError('Account', account_id)
        return account

    def update_settings(self, account_id: str, **settings) -> Account:
        account = self.require_account(account_id)
        account.settings.update(settings)
        self.account_repo.save(account)
        return account

    def set_feature(self, account_id: str, feature: str, enabled: bool = True) -> Account:
        account = self.require_account(account_id)
        if enabled:
            account.enable_feature(feature)
        else:
            account.disable_feature(feature)
        self.account_repo.save(account)
        return account

    def account_chain(self, account_id: Optional[str]) -> List[Account]:
        """The account followed by its ancestors, nearest first."""
        chain: List[Account] = []
        seen = set()
        current = self.get_account(account_id)
        while current is not None and current.id not in seen and len(chain) < MAX_ACCOUNT_DEPTH:
            chain.append(current)
            seen.add(current.id)
            current = self.get_account(current.parent_account_id)
        return chain

    def is_account_admin(self, user_id: Optional[str], account_id: Optional[str]) -> bool:
        """True when the user is an active AccountAdmin of the account or an ancestor."""
        if not user_id or not account_id:
            return False
        admin_of = {m.account_id for m in self.account_user_repo.active_for_user(user_id)
                    if m.membership_type == ACCOUNT_ADMIN}
        if not admin_of:
            return False
        return any(a.id in admin_of for a in self.account_chain(account_id))

    def has_active_membership(self, user_id: str) -> bool:
        return bool(self.account_user_repo.active_for_user(user_id))

    # ------------------------------------------------------------------
    # Admins API
    # ------------------------------------------------------------------
    def add_admin(self, account_id: str, user_id: Optional[str], acting_user: Optional[User],
                  membership_type: Optional[str] = None) -> AccountUser:
        """Make ``user_id`` an admin of the account, reactivating an old membership."""
        account = self.require_account(account_id)
        if acting_user is None or not self.is_account_admin(acting_user.id, account.id):
            raise AuthorizationError()
        if not user_id:
            raise MissingParameterError('user_id')
        user = self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError('User', user_id)

        membership_type = membership_type or ACCOUNT_ADMIN
        existing = self.account_user_repo.find_one(account_id=account.id, user_id=user.id,
                                                   membership_type=membership_type)
        if existing is not None:
            if not existing.is_active:
                self.account_user_repo.update(existing.id, {'workflow_state': 'active'})
                existing.workflow_state = 'active'
            return existing

        membership = AccountUser(account_id=account.id, user_id=user.id, membership_type=membership_type)
        self.account_user_repo.create(membership)
        logger.info(f"User {acting_user.id} added {membership_type} {user.id} to account {account.id}")
        return membership

    def list_admins(self, account_id: str, acting_user: Optional[User],
                    user_ids: Optional[List[str]] = None) -> List[AccountUser]:
        account = self.require_account(account_id)
        if acting_user is None or not self.is_account_admin(acting_user.id, account.id):
            raise AuthorizationError()
        admins = self.account_user_repo.active_for_account(account.id)
        if user_ids:
            wanted = set(user_ids)
            admins = [a for a in admins if a.user_id in wanted]
        return admins

    def remove_admin(self, account_id: str, user_id: str, acting_user: Optional[User],
                     membership_type: Optional[str] = None) -> AccountUser:
        """Soft-delete the user's admin membership."""
        account = self.require_account(account_id)
        if acting_user is None or not self.is_account_admin(acting_user.id, account.id):
            raise AuthorizationError()
        filters = {'account_id': account.id, 'user_id': user_id, 'workflow_state': 'active'}
        if membership_type:
            filters['membership_type'] = membership_type
        membership = self.account_user_repo.find_one(**filters)
        if membership is None:
            raise NotFoundError('AccountUser', user_id)
        self.account_user_repo.update(membership.id, {'workflow_state': 'deleted'})
        membership.workflow_state = 'deleted'
        return membership

    def serialize_admin(self, membership: AccountUser) -> Dict[str, Any]:
        user = self.user_repo.get_by_id(membership.user_id)
        payload: Dict[str, Any] = {
            'id': membership.id,
            'membership_type': membership.membership_type,
            'user': {
                'id': user.id,
                'name': user.name,
                'short_name': user.short_name,
                'sortable_name': user.sortable_name,
            } if user else None,
        }
        if membership.workflow_state == 'deleted':
            payload['status'] = 'deleted'
        return payload
