"""Tests for login, logout and acting as another user."""
from app.utils.log_sanitizer import sanitize_for_logging


def test_login_with_bad_password(client, make_user):
    user = make_user()
    response = client.post('/login', data={'username': user.username, 'password': 'wrong'})
    assert response.status_code == 200
    assert b'Invalid username or password' in response.data


def test_login_redirects_to_next(client, make_user):
    user = make_user()
    response = client.post('/login?next=/profile/communication',
                           data={'username': user.username, 'password': 'correct horse battery'})
    assert response.status_code == 302
    assert response.headers['Location'].endswith('/profile/communication')


def test_login_ignores_external_next(client, make_user):
    user = make_user()
    response = client.post('/login?next=https://evil.example.com/',
                           data={'username': user.username, 'password': 'correct horse battery'})
    assert response.headers['Location'].endswith('/profile')


def test_logout(client, make_user, login):
    login(make_user())
    assert client.get('/logout').status_code == 302
    assert client.get('/profile').status_code == 302


def test_admin_masquerades_as_account_user(client, admin, make_user, login):
    target = make_user('Tia Target', email='tia@example.com')
    login(admin)
    assert client.post(f'/users/{target.id}/masquerade').status_code == 302

    body = client.get('/api/v1/users/self').get_json()
    assert body['id'] == target.id

    client.post('/users/masquerade/stop')
    assert client.get('/api/v1/users/self').get_json()['id'] == admin.id


def test_masquerade_requires_permission(client, make_user, login):
    user = make_user()
    other = make_user('Oz Other')
    login(user)
    assert client.post(f'/users/{other.id}/masquerade').status_code == 401
    assert client.post('/users/no-such-user/masquerade').status_code == 404


def test_db_health(client, make_user):
    make_user()
    response = client.get('/api/db/health')
    assert response.status_code == 200
    body = response.get_json()
    assert body['database_status']['is_initialized'] is True
    assert body['counts']['User'] == 1


def test_sanitize_for_logging_masks_secrets():
    message = 'password=hunter2 Authorization: Bearer abc.def'
    sanitized = sanitize_for_logging(message)
    assert 'hunter2' not in sanitized
    assert 'abc.def' not in sanitized
    assert sanitize_for_logging('user=jane', extra_secrets=['jane']) == 'user=<redacted>'
