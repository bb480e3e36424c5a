"""Tests for bearer-token authentication."""
from app.api_auth import APIToken


def test_generate_token_returns_plain_and_hash():
    token, token_hash = APIToken.generate_token()
    assert token != token_hash
    assert APIToken.hash_token(token) == token_hash
    assert APIToken.verify_token(token, token_hash)
    assert not APIToken.verify_token('other', token_hash)
    assert not APIToken.verify_token('', token_hash)


def test_token_is_stored_hashed(services, make_user):
    user = make_user()
    plain, token = services.users.create_access_token(user.id)
    assert token.token_hash != plain
    assert services.users.get_user_by_token(plain).id == user.id
    assert services.users.get_user_by_token('not-a-token') is None


def test_api_requires_authentication(client):
    response = client.get('/api/v1/users/self')
    assert response.status_code == 401
    assert response.get_json()['status'] == 'error'


def test_invalid_bearer_token_is_rejected(client):
    response = client.get('/api/v1/users/self', headers={'Authorization': 'Bearer nope'})
    assert response.status_code == 401
    assert response.get_json()['message'] == 'Invalid API token'


def test_bearer_token_authenticates_api_request(client, make_user, auth_headers):
    user = make_user('Jane Doe', email='jane@example.com')
    response = client.get('/api/v1/users/self', headers=auth_headers(user))
    assert response.status_code == 200
    body = response.get_json()
    assert body['id'] == user.id
    assert body['email'] == 'jane@example.com'
    assert body['sortable_name'] == 'Doe, Jane'


def test_session_login_also_authenticates_api(client, make_user, login):
    user = make_user()
    login(user)
    response = client.get('/api/v1/users/self')
    assert response.status_code == 200
    assert response.get_json()['id'] == user.id


def test_deleted_user_token_is_rejected(client, services, make_user, auth_headers):
    user = make_user()
    headers = auth_headers(user)
    user.workflow_state = 'deleted'
    services.users.save_user(user)
    assert client.get('/api/v1/users/self', headers=headers).status_code == 401
