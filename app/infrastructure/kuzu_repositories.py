"""
Kuzu repositories mapping graph nodes to domain dataclasses.

Every entity is a node keyed by a uuid4 string ``id``; cross-entity references
are string properties. The outcome tree is the only part of the schema that
uses relationships (``PARENT_GROUP`` and ``CONTAINS_OUTCOME``).
"""

import uuid
import logging
from typing import Optional, List, Dict, Any, Iterable, Type
from datetime import datetime, timezone

from ..domain.models import (
    Account, User, CommunicationChannel, NotificationPolicy, UserProfile,
    UserService, AccountUser, Course, Enrollment, StudentGroup, GroupMembership,
    AccessToken, OutcomeGroup, LearningOutcome,
)
from ..utils.safe_kuzu_manager import get_safe_kuzu_manager

logger = logging.getLogger(__name__)

# Deepest nesting allowed below a root group; tree walks stop at this depth
MAX_TREE_DEPTH = 30


class KuzuNodeRepository:
    """Generic CRUD for one node label backed by a dataclass with to_dict/from_dict."""

    label: str = ""
    model: Type = dict

    def __init__(self):
        # Lazy initialization - don't connect during startup
        self._safe_manager = None

    @property
    def safe_manager(self):
        """Lazy SafeKuzuManager connection - only connect when needed."""
        if self._safe_manager is None:
            self._safe_manager = get_safe_kuzu_manager()
        return self._safe_manager

    def _query(self, query: str, params: Optional[Dict[str, Any]] = None, operation: str = "query"):
        return self.safe_manager.execute_query(query, params or {}, operation=f"{self.label}.{operation}")

    def _to_models(self, rows: List[Dict[str, Any]], column: str = 'n') -> List[Any]:
        return [self.model.from_dict(row[column]) for row in rows if row.get(column)]

    def create(self, entity: Any) -> Any:
        """Persist a new node. ``None`` properties are left unset."""
        if not entity.id:
            entity.id = str(uuid.uuid4())
        data = {k: v for k, v in entity.to_dict().items() if v is not None}
        props = ', '.join(f"{k}: ${k}" for k in data)
        self._query(f"CREATE (n:{self.label} {{{props}}})", data, operation="create")
        logger.debug(f"Created {self.label} {entity.id}")
        return entity

    def get_by_id(self, entity_id: Optional[str]) -> Optional[Any]:
        if not entity_id:
            return None
        rows = self._query(f"MATCH (n:{self.label} {{id: $id}}) RETURN n", {'id': entity_id},
                           operation="get_by_id")
        models = self._to_models(rows)
        return models[0] if models else None

    def get_many(self, ids: Iterable[str]) -> List[Any]:
        ids = [i for i in ids if i]
        if not ids:
            return []
        rows = self._query(f"MATCH (n:{self.label}) WHERE n.id IN $ids RETURN n", {'ids': ids},
                           operation="get_many")
        return self._to_models(rows)

    def find_by(self, order_by: Optional[str] = None, **filters) -> List[Any]:
        """Match on property equality; ``order_by`` names a property."""
        where = ' AND '.join(f"n.{k} = ${k}" for k in filters)
        query = f"MATCH (n:{self.label})"
        if where:
            query += f" WHERE {where}"
        query += " RETURN n"
        if order_by:
            query += f" ORDER BY n.{order_by}"
        return self._to_models(self._query(query, filters, operation="find_by"))

    def find_one(self, **filters) -> Optional[Any]:
        found = self.find_by(**filters)
        return found[0] if found else None

    def update(self, entity_id: str, updates: Dict[str, Any]) -> None:
        """Set properties; ``None`` values are written as NULL."""
        if not updates:
            return
        set_clauses = []
        params: Dict[str, Any] = {'id': entity_id}
        for key, value in updates.items():
            if value is None:
                set_clauses.append(f"n.{key} = NULL")
            else:
                set_clauses.append(f"n.{key} = ${key}")
                params[key] = value
        self._query(f"MATCH (n:{self.label} {{id: $id}}) SET {', '.join(set_clauses)}", params,
                    operation="update")

    def save(self, entity: Any) -> Any:
        """Write every property of an existing entity back to its node."""
        data = entity.to_dict()
        data.pop('id', None)
        self.update(entity.id, data)
        return entity


class KuzuAccountRepository(KuzuNodeRepository):
    label = 'Account'
    model = Account


class KuzuUserRepository(KuzuNodeRepository):
    label = 'User'
    model = User

    def get_by_username(self, username: str) -> Optional[User]:
        return self.find_one(username=username)


class KuzuCommunicationChannelRepository(KuzuNodeRepository):
    label = 'CommunicationChannel'
    model = CommunicationChannel

    def for_user(self, user_id: str) -> List[CommunicationChannel]:
        return self.find_by(order_by='position', user_id=user_id)


class KuzuNotificationPolicyRepository(KuzuNodeRepository):
    label = 'NotificationPolicy'
    model = NotificationPolicy

    def for_channels(self, channel_ids: Iterable[str]) -> List[NotificationPolicy]:
        channel_ids = list(channel_ids)
        if not channel_ids:
            return []
        rows = self._query(
            "MATCH (n:NotificationPolicy) WHERE n.communication_channel_id IN $ids RETURN n",
            {'ids': channel_ids}, operation="for_channels")
        return self._to_models(rows)


class KuzuUserProfileRepository(KuzuNodeRepository):
    """Profiles share the id of the user they describe."""
    label = 'UserProfile'
    model = UserProfile

    def get_for_user(self, user_id: str) -> UserProfile:
        return self.get_by_id(user_id) or UserProfile(user_id=user_id)

    def upsert(self, profile: UserProfile) -> UserProfile:
        if self.get_by_id(profile.user_id) is None:
            data = {k: v for k, v in profile.to_dict().items() if v is not None}
            props = ', '.join(f"{k}: ${k}" for k in data)
            self._query(f"CREATE (n:UserProfile {{{props}}})", data, operation="create")
        else:
            data = profile.to_dict()
            data.pop('id')
            self.update(profile.user_id, data)
        return profile


class KuzuUserServiceRepository(KuzuNodeRepository):
    label = 'UserService'
    model = UserService

    def for_user(self, user_id: str) -> List[UserService]:
        return self.find_by(order_by='service', user_id=user_id)


class KuzuAccountUserRepository(KuzuNodeRepository):
    label = 'AccountUser'
    model = AccountUser

    def active_for_user(self, user_id: str) -> List[AccountUser]:
        return self.find_by(user_id=user_id, workflow_state='active')

    def active_for_account(self, account_id: str) -> List[AccountUser]:
        return self.find_by(order_by='created_at', account_id=account_id, workflow_state='active')


class KuzuCourseRepository(KuzuNodeRepository):
    label = 'Course'
    model = Course


class KuzuEnrollmentRepository(KuzuNodeRepository):
    label = 'Enrollment'
    model = Enrollment

    def active_for_user(self, user_id: str) -> List[Enrollment]:
        return self.find_by(user_id=user_id, workflow_state='active')


class KuzuStudentGroupRepository(KuzuNodeRepository):
    label = 'StudentGroup'
    model = StudentGroup


class KuzuGroupMembershipRepository(KuzuNodeRepository):
    label = 'GroupMembership'
    model = GroupMembership

    def accepted_for_user(self, user_id: str) -> List[GroupMembership]:
        return self.find_by(user_id=user_id, workflow_state='accepted')


class KuzuAccessTokenRepository(KuzuNodeRepository):
    label = 'AccessToken'
    model = AccessToken

    def get_by_hash(self, token_hash: str) -> Optional[AccessToken]:
        return self.find_one(token_hash=token_hash)


class KuzuOutcomeGroupRepository(KuzuNodeRepository):
    """Outcome folders; ``parent_id`` mirrors the single outgoing PARENT_GROUP edge."""
    label = 'OutcomeGroup'
    model = OutcomeGroup
    max_depth = MAX_TREE_DEPTH

    def get_root(self, context_type: str, context_id: str) -> Optional[OutcomeGroup]:
        return self.find_one(context_type=context_type, context_id=context_id,
                             is_root=True, workflow_state='active')

    def active_in_context(self, context_type: str, context_id: str) -> List[OutcomeGroup]:
        return self.find_by(order_by='title', context_type=context_type, context_id=context_id,
                            workflow_state='active')

    def children(self, group_id: str) -> List[OutcomeGroup]:
        rows = self._query(
            """
            MATCH (n:OutcomeGroup)-[:PARENT_GROUP]->(p:OutcomeGroup {id: $group_id})
            WHERE n.workflow_state = 'active'
            RETURN n ORDER BY n.title
            """,
            {'group_id': group_id}, operation="children")
        return self._to_models(rows)

    def descendant_ids(self, group_id: str) -> List[str]:
        rows = self._query(
            f"""
            MATCH (n:OutcomeGroup)-[:PARENT_GROUP*1..{self.max_depth}]->(p:OutcomeGroup {{id: $group_id}})
            WHERE n.workflow_state = 'active'
            RETURN DISTINCT n.id AS id
            """,
            {'group_id': group_id}, operation="descendant_ids")
        return [row['id'] for row in rows]

    def depth(self, group_id: str) -> int:
        """Number of ancestors above the group; the root has depth 0."""
        return self.safe_manager.query_value(
            f"""
            MATCH (n:OutcomeGroup {{id: $group_id}})-[:PARENT_GROUP*1..{self.max_depth}]->(p:OutcomeGroup)
            RETURN COUNT(DISTINCT p) AS depth
            """,
            {'group_id': group_id}, operation="OutcomeGroup.depth", default=0) or 0

    def subtree_height(self, group_id: str) -> int:
        """Levels of active subgroups below the group; 0 for a leaf."""
        return self.safe_manager.query_value(
            f"""
            MATCH (n:OutcomeGroup)-[e:PARENT_GROUP*1..{self.max_depth}]->(p:OutcomeGroup {{id: $group_id}})
            WHERE n.workflow_state = 'active'
            RETURN MAX(length(e)) AS height
            """,
            {'group_id': group_id}, operation="OutcomeGroup.subtree_height", default=0) or 0

    def set_parent(self, group_id: str, parent_id: str) -> None:
        """Replace the group's parent edge and its ``parent_id`` property in one transaction."""
        now = datetime.now(timezone.utc)
        self.safe_manager.execute_write_batch([
            ("MATCH (n:OutcomeGroup {id: $group_id})-[r:PARENT_GROUP]->(:OutcomeGroup) DELETE r",
             {'group_id': group_id}),
            ("""
             MATCH (n:OutcomeGroup {id: $group_id}), (p:OutcomeGroup {id: $parent_id})
             CREATE (n)-[:PARENT_GROUP {created_at: $now}]->(p)
             """,
             {'group_id': group_id, 'parent_id': parent_id, 'now': now}),
            ("MATCH (n:OutcomeGroup {id: $group_id}) SET n.parent_id = $parent_id, n.updated_at = $now",
             {'group_id': group_id, 'parent_id': parent_id, 'now': now}),
        ], operation="OutcomeGroup.set_parent")

    def delete_groups(self, group_ids: List[str]) -> None:
        """Mark groups deleted and drop the links to their outcomes together."""
        if not group_ids:
            return
        self.safe_manager.execute_write_batch([
            ("MATCH (g:OutcomeGroup)-[r:CONTAINS_OUTCOME]->(:LearningOutcome) WHERE g.id IN $ids DELETE r",
             {'ids': group_ids}),
            ("MATCH (n:OutcomeGroup) WHERE n.id IN $ids SET n.workflow_state = 'deleted', n.updated_at = $now",
             {'ids': group_ids, 'now': datetime.now(timezone.utc)}),
        ], operation="OutcomeGroup.delete_groups")


class KuzuLearningOutcomeRepository(KuzuNodeRepository):
    """Outcomes and their CONTAINS_OUTCOME links."""
    label = 'LearningOutcome'
    model = LearningOutcome

    def group_id_for(self, outcome_id: str) -> Optional[str]:
        return self.safe_manager.query_value(
            """
            MATCH (g:OutcomeGroup)-[:CONTAINS_OUTCOME]->(n:LearningOutcome {id: $outcome_id})
            WHERE g.workflow_state = 'active'
            RETURN g.id AS group_id
            """,
            {'outcome_id': outcome_id}, operation="LearningOutcome.group_id_for")

    def link(self, group_id: str, outcome_id: str) -> None:
        """Link an outcome to a group, dropping any link it had before, in one transaction."""
        self.safe_manager.execute_write_batch([
            ("MATCH (:OutcomeGroup)-[r:CONTAINS_OUTCOME]->(n:LearningOutcome {id: $outcome_id}) DELETE r",
             {'outcome_id': outcome_id}),
            ("""
             MATCH (g:OutcomeGroup {id: $group_id}), (n:LearningOutcome {id: $outcome_id})
             CREATE (g)-[:CONTAINS_OUTCOME {created_at: $created_at}]->(n)
             """,
             {'group_id': group_id, 'outcome_id': outcome_id, 'created_at': datetime.now(timezone.utc)}),
        ], operation="LearningOutcome.link")

    def unlink(self, group_id: str, outcome_id: str) -> bool:
        """Remove the link between a group and an outcome; False when there was none."""
        params = {'group_id': group_id, 'outcome_id': outcome_id}
        linked = self.safe_manager.query_value(
            """
            MATCH (g:OutcomeGroup {id: $group_id})-[r:CONTAINS_OUTCOME]->(n:LearningOutcome {id: $outcome_id})
            RETURN COUNT(r) AS links
            """,
            params, operation="LearningOutcome.is_linked", default=0)
        if not linked:
            return False
        self._query(
            """
            MATCH (g:OutcomeGroup {id: $group_id})-[r:CONTAINS_OUTCOME]->(n:LearningOutcome {id: $outcome_id})
            DELETE r
            """,
            params, operation="unlink")
        return True

    def in_groups(self, group_ids: List[str]) -> List[LearningOutcome]:
        """Active outcomes linked to any of the groups, ordered by title."""
        if not group_ids:
            return []
        rows = self._query(
            """
            MATCH (g:OutcomeGroup)-[:CONTAINS_OUTCOME]->(n:LearningOutcome)
            WHERE g.id IN $ids AND n.workflow_state = 'active'
            RETURN n, g.id AS group_id
            ORDER BY n.title, n.id
            """,
            {'ids': group_ids}, operation="in_groups")
        outcomes = []
        for row in rows:
            outcome = LearningOutcome.from_dict(row['n'])
            outcome.group_id = row['group_id']
            outcomes.append(outcome)
        return outcomes
