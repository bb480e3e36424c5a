"""Shared fixtures: a fresh Kuzu database and app per test, plus data builders."""
import os
import tempfile

import pytest

os.environ.setdefault('SECRET_KEY', 'test-secret-key')
os.environ.setdefault('CANVAS_LITE_DATA_DIR', tempfile.mkdtemp(prefix='canvas-lite-tests-'))
os.environ['SESSION_TYPE'] = ''

from app import create_app  # noqa: E402
from app.domain.models import EnrollmentType  # noqa: E402
from app.services import (  # noqa: E402
    user_service, account_service, course_service, profile_service, outcome_service,
    reset_all_services,
)
from app.utils import reset_safe_kuzu_manager, cache_clear  # noqa: E402

PASSWORD = 'correct horse battery'


@pytest.fixture
def app(tmp_path):
    reset_safe_kuzu_manager(str(tmp_path / 'kuzu' / 'test.db'))
    reset_all_services()
    cache_clear()
    app = create_app({
        'TESTING': True,
        'WTF_CSRF_ENABLED': False,
        'SESSION_TYPE': None,
        'MOBILE_QR_PLUGIN_AVAILABLE': True,
    })
    yield app
    reset_safe_kuzu_manager()
    reset_all_services()
    cache_clear()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    """The lazily built service singletons, bound to this test's database."""
    class _Services:
        users = user_service
        accounts = account_service
        courses = course_service
        profiles = profile_service
        outcomes = outcome_service
    return _Services


@pytest.fixture
def account(services):
    return services.accounts.create_account('Root Account')


@pytest.fixture
def make_user(services, account):
    counter = {'n': 0}

    def _make_user(name='Jane Doe', email=None, account_id=None, **attrs):
        counter['n'] += 1
        username = attrs.pop('username', f"user{counter['n']}")
        user = services.users.create_user(username, name, password=PASSWORD,
                                          account_id=account_id or account.id, **attrs)
        if email:
            services.users.add_channel(user.id, email, 'email', workflow_state='active')
        return user
    return _make_user


@pytest.fixture
def admin(services, account, make_user):
    user = make_user('Ada Admin', email='ada@example.com')
    services.accounts.add_admin(account.id, user.id, acting_user=_bootstrap_admin(services, account))
    return user


def _bootstrap_admin(services, account):
    """The first admin of an account has to be granted without an acting admin."""
    from app.domain.models import AccountUser, User
    from app.infrastructure.kuzu_repositories import KuzuAccountUserRepository, KuzuUserRepository
    root = User(username='siteadmin', name='Site Admin', account_id=account.id)
    KuzuUserRepository().create(root)
    KuzuAccountUserRepository().create(AccountUser(account_id=account.id, user_id=root.id))
    return root


@pytest.fixture
def course(services, account):
    return services.courses.create_course('Biology 101', account.id)


@pytest.fixture
def teacher(services, course, make_user):
    user = make_user('Tom Teacher', email='tom@example.com')
    services.courses.enroll(user.id, course.id, EnrollmentType.TEACHER)
    return user


@pytest.fixture
def student(services, course, make_user):
    user = make_user('Sam Student', email='sam@example.com')
    services.courses.enroll(user.id, course.id, EnrollmentType.STUDENT)
    return user


@pytest.fixture
def login(client):
    def _login(user, remember=False):
        response = client.post('/login', data={
            'username': user.username,
            'password': PASSWORD,
            'remember_me': 'y' if remember else '',
        })
        assert response.status_code == 302
        return response
    return _login


@pytest.fixture
def auth_headers(services):
    def _headers(user):
        token, _ = services.users.create_access_token(user.id)
        return {'Authorization': f'Bearer {token}'}
    return _headers
