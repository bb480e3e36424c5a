"""
Kuzu Course Service

Courses, enrollments and student groups, plus the "contexts in common"
lookup used by profile pages.
"""

import logging
from typing import List, Optional, Dict, Any

from ..domain.models import (
    Course, Enrollment, EnrollmentType, StudentGroup, GroupMembership, User, ContextType,
)
from ..domain.exceptions import NotFoundError
from ..infrastructure.kuzu_repositories import (
    KuzuCourseRepository, KuzuEnrollmentRepository, KuzuStudentGroupRepository,
    KuzuGroupMembershipRepository, KuzuUserRepository,
)

logger = logging.getLogger(__name__)


class KuzuCourseService:
    """Course, enrollment and group operations."""

    def __init__(self):
        self.course_repo = KuzuCourseRepository()
        self.enrollment_repo = KuzuEnrollmentRepository()
        self.group_repo = KuzuStudentGroupRepository()
        self.membership_repo = KuzuGroupMembershipRepository()
        self.user_repo = KuzuUserRepository()

    def create_course(self, name: str, account_id: str) -> Course:
        course = Course(name=name, account_id=account_id)
        self.course_repo.create(course)
        return course

    def get_course(self, course_id: Optional[str]) -> Optional[Course]:
        return self.course_repo.get_by_id(course_id)

    def require_course(self, course_id: str) -> Course:
        course = self.get_course(course_id)
        if course is None:
            raise NotFoundError('Course', course_id)
        return course

    def enroll(self, user_id: str, course_id: str,
               enrollment_type: EnrollmentType = EnrollmentType.STUDENT,
               workflow_state: str = 'active') -> Enrollment:
        enrollment = Enrollment(user_id=user_id, course_id=course_id,
                                enrollment_type=enrollment_type, workflow_state=workflow_state)
        self.enrollment_repo.create(enrollment)
        return enrollment

    def create_student_view_student(self, course_id: str) -> User:
        """The fake student a teacher masquerades as to preview a course."""
        course = self.require_course(course_id)
        fake = User(name='Test Student', username=f"testuser_{course.id}",
                    account_id=course.account_id, is_fake_student=True)
        self.user_repo.create(fake)
        self.enroll(fake.id, course.id, EnrollmentType.STUDENT_VIEW)
        return fake

    def active_enrollments(self, user_id: str) -> List[Enrollment]:
        return self.enrollment_repo.active_for_user(user_id)

    def has_non_student_enrollment(self, user_id: str) -> bool:
        return any(not e.enrollment_type.is_student for e in self.active_enrollments(user_id))

    def is_course_member(self, user_id: Optional[str], course_id: str) -> bool:
        if not user_id:
            return False
        return any(e.course_id == course_id for e in self.active_enrollments(user_id))

    def can_manage_course(self, user_id: Optional[str], course_id: str) -> bool:
        if not user_id:
            return False
        return any(e.course_id == course_id and e.enrollment_type.can_manage_course
                   for e in self.active_enrollments(user_id))

    def create_group(self, name: str, context_type: str, context_id: str) -> StudentGroup:
        group = StudentGroup(name=name, context_type=context_type, context_id=context_id)
        self.group_repo.create(group)
        return group

    def add_group_member(self, group_id: str, user_id: str, workflow_state: str = 'accepted') -> GroupMembership:
        membership = GroupMembership(group_id=group_id, user_id=user_id, workflow_state=workflow_state)
        self.membership_repo.create(membership)
        return membership

    def common_contexts(self, viewer_id: str, other_id: str) -> List[Dict[str, Any]]:
        """
        Courses, then groups, that both users belong to.

        Roles describe the *other* user: enrollment roles for courses and
        ``Member`` for groups.
        """
        contexts: List[Dict[str, Any]] = []

        viewer_courses = {e.course_id for e in self.active_enrollments(viewer_id)}
        other_roles: Dict[str, List[str]] = {}
        for enrollment in self.active_enrollments(other_id):
            if enrollment.course_id in viewer_courses:
                roles = other_roles.setdefault(enrollment.course_id, [])
                if enrollment.role not in roles:
                    roles.append(enrollment.role)
        for course in sorted(self.course_repo.get_many(other_roles), key=lambda c: c.name):
            contexts.append({
                'id': course.id,
                'name': course.name,
                'type': ContextType.COURSE.value,
                'roles': other_roles[course.id],
            })

        viewer_groups = {m.group_id for m in self.membership_repo.accepted_for_user(viewer_id)}
        shared_groups = [m.group_id for m in self.membership_repo.accepted_for_user(other_id)
                         if m.group_id in viewer_groups]
        for group in sorted(self.group_repo.get_many(shared_groups), key=lambda g: g.name):
            contexts.append({
                'id': group.id,
                'name': group.name,
                'type': 'Group',
                'roles': ['Member'],
            })
        return contexts
