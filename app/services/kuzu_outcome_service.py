"""
Kuzu Outcome Service

Outcome group tree management for account and course contexts: browsing
the folder tree, group detail with search and paging, and the edit actions
of the management panel (create, move and remove groups and outcomes).

Every context owns a single root group. Groups hang off their parent through
a PARENT_GROUP edge and outcomes are linked to exactly one group through a
CONTAINS_OUTCOME edge.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple

from ..domain.models import ContextType, OutcomeGroup, LearningOutcome, User, now_utc
from ..domain.exceptions import (
    NotFoundError, AuthorizationError, ValidationError, InvalidMoveError, MissingParameterError,
)
from ..infrastructure.kuzu_repositories import KuzuOutcomeGroupRepository, KuzuLearningOutcomeRepository
from .kuzu_account_service import KuzuAccountService
from .kuzu_course_service import KuzuCourseService

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def _plural(count: int, singular: str) -> str:
    return f"{count} {singular}" if count == 1 else f"{count} {singular}s"


def toggle_selection(selected: List[str], outcome_id: str) -> List[str]:
    """Add the outcome to the selection, or drop it if it was already there."""
    if outcome_id in selected:
        return [s for s in selected if s != outcome_id]
    return selected + [outcome_id]


def _parse_cursor(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        offset = int(cursor)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid cursor: {cursor}", field='cursor')
    if offset < 0:
        raise ValidationError(f"Invalid cursor: {cursor}", field='cursor')
    return offset


class KuzuOutcomeService:
    """Outcome tree operations scoped to a context."""

    def __init__(self, accounts: Optional[KuzuAccountService] = None,
                 courses: Optional[KuzuCourseService] = None):
        self.accounts = accounts or KuzuAccountService()
        self.courses = courses or KuzuCourseService()
        self.group_repo = KuzuOutcomeGroupRepository()
        self.outcome_repo = KuzuLearningOutcomeRepository()

    # ------------------------------------------------------------------
    # Contexts and permissions
    # ------------------------------------------------------------------
    def context_name(self, context_type: ContextType, context_id: str) -> str:
        if context_type is ContextType.ACCOUNT:
            return self.accounts.require_account(context_id).name
        return self.courses.require_course(context_id).name

    def can_read(self, user: Optional[User], context_type: ContextType, context_id: str) -> bool:
        if user is None:
            return False
        if self.can_manage(user, context_type, context_id):
            return True
        if context_type is ContextType.ACCOUNT:
            return user.account_id == context_id
        return self.courses.is_course_member(user.id, context_id)

    def can_manage(self, user: Optional[User], context_type: ContextType, context_id: str) -> bool:
        if user is None:
            return False
        if context_type is ContextType.ACCOUNT:
            return self.accounts.is_account_admin(user.id, context_id)
        course = self.courses.require_course(context_id)
        return (self.courses.can_manage_course(user.id, course.id)
                or self.accounts.is_account_admin(user.id, course.account_id))

    def _authorize(self, user: Optional[User], context_type: ContextType, context_id: str,
                   manage: bool = False) -> None:
        allowed = (self.can_manage(user, context_type, context_id) if manage
                   else self.can_read(user, context_type, context_id))
        if not allowed:
            raise AuthorizationError()

    def _group_context(self, group: OutcomeGroup) -> Tuple[ContextType, str]:
        return ContextType(group.context_type), group.context_id

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------
    def ensure_root(self, context_type: ContextType, context_id: str) -> OutcomeGroup:
        """The context's root group, created on first use."""
        root = self.group_repo.get_root(context_type.value, context_id)
        if root is not None:
            return root
        root = OutcomeGroup(title=self.context_name(context_type, context_id),
                            context_type=context_type.value, context_id=context_id, is_root=True)
        self.group_repo.create(root)
        logger.info(f"Created root outcome group {root.id} for {context_type.value} {context_id}")
        return root

    def require_group(self, group_id: str) -> OutcomeGroup:
        group = self.group_repo.get_by_id(group_id)
        if group is None or not group.is_active:
            raise NotFoundError('OutcomeGroup', group_id)
        return group

    def _outcomes_count(self, group_id: str) -> int:
        return len(self._outcomes_under(group_id))

    def _outcomes_under(self, group_id: str) -> List[LearningOutcome]:
        return self.outcome_repo.in_groups([group_id] + self.group_repo.descendant_ids(group_id))

    def _collection(self, group: OutcomeGroup) -> Dict[str, Any]:
        children = self.group_repo.children(group.id)
        outcomes_count = self._outcomes_count(group.id)
        return {
            'id': group.id,
            'name': group.title,
            'descriptor': f"{_plural(len(children), 'Group')} | {_plural(outcomes_count, 'Outcome')}",
            'collections': [child.id for child in children],
            'outcomesCount': outcomes_count,
            'parentGroupId': group.parent_id,
            'isRootGroup': group.is_root,
        }

    # ------------------------------------------------------------------
    # Tree browser
    # ------------------------------------------------------------------
    def collections(self, user: Optional[User], context_type: ContextType, context_id: str) -> Dict[str, Any]:
        """Root group and its direct children, keyed by id."""
        self._authorize(user, context_type, context_id)
        root = self.ensure_root(context_type, context_id)
        collections = {root.id: self._collection(root)}
        for child in self.group_repo.children(root.id):
            collections[child.id] = self._collection(child)
        return {'rootId': root.id, 'collections': collections}

    def subgroups(self, user: Optional[User], group_id: str) -> Dict[str, Any]:
        """Children of a group, for lazy tree expansion."""
        group = self.require_group(group_id)
        self._authorize(user, *self._group_context(group))
        return {
            'id': group.id,
            'collections': {child.id: self._collection(child) for child in self.group_repo.children(group.id)},
        }

    def group_detail(self, user: Optional[User], group_id: str, search: Optional[str] = None,
                     cursor: Optional[str] = None, per_page: int = DEFAULT_PAGE_SIZE) -> Dict[str, Any]:
        """
        Outcomes of the group and its descendants, ordered by title.

        ``cursor`` is the opaque ``endCursor`` of the previous page.
        """
        group = self.require_group(group_id)
        self._authorize(user, *self._group_context(group))
        per_page = max(1, min(int(per_page or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))
        offset = _parse_cursor(cursor)

        outcomes = self._outcomes_under(group.id)
        total = len(outcomes)
        matching = [o for o in outcomes if o.matches(search)]
        page = matching[offset:offset + per_page]
        end = offset + len(page)
        return {
            'group': {
                'id': group.id,
                'title': group.title,
                'description': group.description,
                'outcomesCount': total,
            },
            'outcomes': [self.serialize_outcome(o) for o in page],
            'pageInfo': {
                'hasNextPage': end < len(matching),
                'endCursor': str(end) if page else cursor,
            },
        }

    @staticmethod
    def serialize_outcome(outcome: LearningOutcome) -> Dict[str, Any]:
        return {
            'id': outcome.id,
            'title': outcome.title,
            'displayName': outcome.display_name,
            'description': outcome.description,
            'groupId': outcome.group_id,
        }

    @staticmethod
    def serialize_group(group: OutcomeGroup) -> Dict[str, Any]:
        return {
            'id': group.id,
            'title': group.title,
            'description': group.description,
            'parentGroupId': group.parent_id,
            'isRootGroup': group.is_root,
            'contextType': group.context_type,
            'contextId': group.context_id,
        }

    # ------------------------------------------------------------------
    # Edits
    # ------------------------------------------------------------------
    def create_group(self, user: Optional[User], context_type: ContextType, context_id: str,
                     title: Optional[str], description: Optional[str] = None,
                     parent_id: Optional[str] = None) -> OutcomeGroup:
        self._authorize(user, context_type, context_id, manage=True)
        if not title or not title.strip():
            raise MissingParameterError('title')
        if parent_id:
            parent = self.require_group(parent_id)
            if self._group_context(parent) != (context_type, context_id):
                raise ValidationError("Parent group belongs to another context", field='parent_id')
        else:
            parent = self.ensure_root(context_type, context_id)
        if self.group_repo.depth(parent.id) + 1 > self.group_repo.max_depth:
            raise ValidationError(f"Outcome groups cannot be nested more than "
                                  f"{self.group_repo.max_depth} levels deep", field='parent_id')

        group = OutcomeGroup(title=title.strip(), description=description,
                             context_type=context_type.value, context_id=context_id)
        self.group_repo.create(group)
        self.group_repo.set_parent(group.id, parent.id)
        group.parent_id = parent.id
        logger.info(f"User {user.id} created outcome group {group.id} under {parent.id}")
        return group

    def create_outcome(self, user: Optional[User], group_id: str, title: Optional[str],
                       description: Optional[str] = None, display_name: Optional[str] = None) -> LearningOutcome:
        group = self.require_group(group_id)
        context_type, context_id = self._group_context(group)
        self._authorize(user, context_type, context_id, manage=True)
        if not title or not title.strip():
            raise MissingParameterError('title')
        outcome = LearningOutcome(title=title.strip(), description=description, display_name=display_name,
                                  context_type=context_type.value, context_id=context_id)
        self.outcome_repo.create(outcome)
        self.outcome_repo.link(group.id, outcome.id)
        outcome.group_id = group.id
        return outcome

    def move_group(self, user: Optional[User], group_id: str, parent_id: Optional[str]) -> OutcomeGroup:
        """Re-parent a group inside its own context."""
        group = self.require_group(group_id)
        self._authorize(user, *self._group_context(group), manage=True)
        if not parent_id:
            raise MissingParameterError('parent_id')
        if group.is_root:
            raise InvalidMoveError("The root outcome group cannot be moved")
        target = self.group_repo.get_by_id(parent_id)
        if target is None or not target.is_active:
            raise InvalidMoveError("Target group does not exist", parent_id=parent_id)
        if self._group_context(target) != self._group_context(group):
            raise InvalidMoveError("Target group belongs to another context", parent_id=parent_id)
        if target.id == group.id or target.id in self.group_repo.descendant_ids(group.id):
            raise InvalidMoveError("A group cannot be moved into itself or one of its subgroups",
                                   parent_id=parent_id)
        if group.parent_id == target.id:
            return group
        deepest = self.group_repo.depth(target.id) + 1 + self.group_repo.subtree_height(group.id)
        if deepest > self.group_repo.max_depth:
            raise InvalidMoveError(f"Outcome groups cannot be nested more than "
                                   f"{self.group_repo.max_depth} levels deep", parent_id=parent_id)
        self.group_repo.set_parent(group.id, target.id)
        group.parent_id = target.id
        group.updated_at = now_utc()
        logger.info(f"User {user.id} moved outcome group {group.id} to {target.id}")
        return group

    def remove_group(self, user: Optional[User], group_id: str) -> List[str]:
        """Delete a group with its subgroups and detach their outcomes; returns deleted ids."""
        group = self.require_group(group_id)
        self._authorize(user, *self._group_context(group), manage=True)
        if group.is_root:
            raise ValidationError("The root outcome group cannot be removed")
        removed = [group.id] + self.group_repo.descendant_ids(group.id)
        self.group_repo.delete_groups(removed)
        logger.info(f"User {user.id} removed outcome groups {removed}")
        return removed

    def remove_outcome(self, user: Optional[User], group_id: str, outcome_id: str) -> None:
        group = self.require_group(group_id)
        self._authorize(user, *self._group_context(group), manage=True)
        if not self.outcome_repo.unlink(group.id, outcome_id):
            raise NotFoundError('LearningOutcome', outcome_id)

    def remove_outcomes(self, user: Optional[User], group_id: str, outcome_ids: List[str]) -> List[str]:
        """Detach several outcomes from a group; ids not linked there are skipped."""
        group = self.require_group(group_id)
        self._authorize(user, *self._group_context(group), manage=True)
        return [oid for oid in outcome_ids if self.outcome_repo.unlink(group.id, oid)]

    def move_outcomes(self, user: Optional[User], outcome_ids: List[str],
                      target_group_id: Optional[str]) -> List[LearningOutcome]:
        """Link each outcome to the target group only."""
        if not target_group_id:
            raise MissingParameterError('target_group_id')
        if not outcome_ids:
            raise MissingParameterError('outcome_ids')
        target = self.require_group(target_group_id)
        context = self._group_context(target)
        self._authorize(user, *context, manage=True)

        outcomes = self.outcome_repo.get_many(outcome_ids)
        found = {o.id for o in outcomes}
        missing = [oid for oid in outcome_ids if oid not in found]
        if missing:
            raise NotFoundError('LearningOutcome', missing[0])
        for outcome in outcomes:
            if (ContextType(outcome.context_type), outcome.context_id) != context:
                raise ValidationError("Outcome belongs to another context", outcome_id=outcome.id)

        for outcome in outcomes:
            self.outcome_repo.link(target.id, outcome.id)
            outcome.group_id = target.id
        logger.info(f"User {user.id} moved outcomes {sorted(found)} to group {target.id}")
        return outcomes

    # ------------------------------------------------------------------
    # Move modal
    # ------------------------------------------------------------------
    def move_targets(self, user: Optional[User], group_id: str, outcome_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Data for the move modal: its title and the context's group tree.

        When moving a group, the group and its subgroups are left out.
        """
        group = self.require_group(group_id)
        context_type, context_id = self._group_context(group)
        self._authorize(user, context_type, context_id, manage=True)

        if outcome_id:
            outcome = self.outcome_repo.get_by_id(outcome_id)
            if outcome is None:
                raise NotFoundError('LearningOutcome', outcome_id)
            if (ContextType(outcome.context_type), outcome.context_id) != (context_type, context_id):
                raise ValidationError("Outcome belongs to another context", outcome_id=outcome.id)
            subtree = {group.id, *self.group_repo.descendant_ids(group.id)}
            if self.outcome_repo.group_id_for(outcome.id) not in subtree:
                raise NotFoundError('LearningOutcome', outcome_id)
            title, move_type, excluded = outcome.title, 'outcome', set()
        else:
            title, move_type = group.title, 'group'
            excluded = {group.id, *self.group_repo.descendant_ids(group.id)}

        root = self.ensure_root(context_type, context_id)
        groups = [g for g in self.group_repo.active_in_context(context_type.value, context_id)
                  if g.id not in excluded]
        children: Dict[Optional[str], List[OutcomeGroup]] = {}
        for g in groups:
            children.setdefault(g.parent_id, []).append(g)

        def _node(g: OutcomeGroup) -> Dict[str, Any]:
            return {
                'id': g.id,
                'name': g.title,
                'collections': [_node(child) for child in children.get(g.id, [])],
            }

        return {
            'title': f"Move {title}",
            'type': move_type,
            'tree': _node(root),
        }
