"""
Kuzu Services Package

Service classes holding the application's business rules:
- KuzuUserService: users, communication channels, API tokens
- KuzuAccountService: accounts, settings and account admins
- KuzuCourseService: courses, enrollments and groups
- KuzuProfileService: profile pages and settings
- KuzuOutcomeService: outcome group tree management
"""

from .kuzu_user_service import KuzuUserService
from .kuzu_account_service import KuzuAccountService
from .kuzu_course_service import KuzuCourseService
from .kuzu_profile_service import KuzuProfileService
from .kuzu_outcome_service import KuzuOutcomeService

# Service instances with lazy initialization
_user_service = None
_account_service = None
_course_service = None
_profile_service = None
_outcome_service = None


def _get_user_service():
    """Get user service instance with lazy initialization."""
    global _user_service
    if _user_service is None:
        _user_service = KuzuUserService()
    return _user_service


def _get_account_service():
    """Get account service instance with lazy initialization."""
    global _account_service
    if _account_service is None:
        _account_service = KuzuAccountService()
    return _account_service


def _get_course_service():
    global _course_service
    if _course_service is None:
        _course_service = KuzuCourseService()
    return _course_service


def _get_profile_service():
    global _profile_service
    if _profile_service is None:
        _profile_service = KuzuProfileService(
            users=_get_user_service(),
            accounts=_get_account_service(),
            courses=_get_course_service(),
        )
    return _profile_service


def _get_outcome_service():
    global _outcome_service
    if _outcome_service is None:
        _outcome_service = KuzuOutcomeService(
            accounts=_get_account_service(),
            courses=_get_course_service(),
        )
    return _outcome_service


class _LazyService:
    """Lazy service that initializes on first access."""
    def __init__(self, service_getter):
        self._service_getter = service_getter
        self._service = None

    def __getattr__(self, name):
        if self._service is None:
            self._service = self._service_getter()
        return getattr(self._service, name)


user_service = _LazyService(_get_user_service)
account_service = _LazyService(_get_account_service)
course_service = _LazyService(_get_course_service)
profile_service = _LazyService(_get_profile_service)
outcome_service = _LazyService(_get_outcome_service)


def reset_all_services():
    """Drop service instances so the next access builds fresh ones (tests)."""
    global _user_service, _account_service, _course_service, _profile_service, _outcome_service
    _user_service = None
    _account_service = None
    _course_service = None
    _profile_service = None
    _outcome_service = None
    for lazy in (user_service, account_service, course_service, profile_service, outcome_service):
        lazy._service = None


__all__ = [
    'KuzuUserService',
    'KuzuAccountService',
    'KuzuCourseService',
    'KuzuProfileService',
    'KuzuOutcomeService',
    'user_service',
    'account_service',
    'course_service',
    'profile_service',
    'outcome_service',
    'reset_all_services',
]
