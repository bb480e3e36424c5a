"""Tests for the outcome management API and panel."""
import pytest

from app.domain.models import ContextType


@pytest.fixture
def headers(teacher, auth_headers):
    return auth_headers(teacher)


def _create_group(client, course, headers, title, parent_id=None):
    payload = {'title': title}
    if parent_id:
        payload['parent_id'] = parent_id
    response = client.post(f'/api/v1/courses/{course.id}/outcome_groups', json=payload, headers=headers)
    assert response.status_code == 201
    return response.get_json()


def _create_outcome(client, group_id, headers, title):
    response = client.post(f'/api/v1/outcome_groups/{group_id}/outcomes', json={'title': title}, headers=headers)
    assert response.status_code == 201
    return response.get_json()


def test_outcome_groups_tree(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    _create_group(client, course, headers, 'Organelles', parent_id=cells['id'])

    data = client.get(f'/api/v1/courses/{course.id}/outcome_groups', headers=headers).get_json()
    root = data['collections'][data['rootId']]
    assert root['collections'] == [cells['id']]
    assert data['collections'][cells['id']]['descriptor'] == '1 Group | 0 Outcomes'

    sub = client.get(f"/api/v1/outcome_groups/{cells['id']}/subgroups", headers=headers).get_json()
    assert [c['name'] for c in sub['collections'].values()] == ['Organelles']


def test_create_group_errors(client, course, headers, student, auth_headers):
    response = client.post(f'/api/v1/courses/{course.id}/outcome_groups', json={}, headers=headers)
    assert response.status_code == 400

    response = client.post(f'/api/v1/courses/{course.id}/outcome_groups', json={'title': 'X'},
                           headers=auth_headers(student))
    assert response.status_code == 401

    response = client.get('/api/v1/courses/missing/outcome_groups', headers=headers)
    assert response.status_code == 404


def test_move_group_into_descendant_returns_422(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    organelles = _create_group(client, course, headers, 'Organelles', parent_id=cells['id'])

    response = client.put(f"/api/v1/outcome_groups/{cells['id']}", json={'parent_id': organelles['id']},
                          headers=headers)
    assert response.status_code == 422
    assert response.get_json()['status'] == 'error'

    response = client.put(f"/api/v1/outcome_groups/{cells['id']}", json={}, headers=headers)
    assert response.status_code == 400


def test_group_detail_pagination(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    for title in ['C', 'A', 'B']:
        _create_outcome(client, cells['id'], headers, title)

    page = client.get(f"/api/v1/outcome_groups/{cells['id']}/outcomes?per_page=2", headers=headers).get_json()
    assert [o['title'] for o in page['outcomes']] == ['A', 'B']
    assert page['pageInfo']['hasNextPage'] is True

    cursor = page['pageInfo']['endCursor']
    page = client.get(f"/api/v1/outcome_groups/{cells['id']}/outcomes?per_page=2&cursor={cursor}",
                      headers=headers).get_json()
    assert [o['title'] for o in page['outcomes']] == ['C']
    assert page['pageInfo']['hasNextPage'] is False

    page = client.get(f"/api/v1/outcome_groups/{cells['id']}/outcomes?search=b", headers=headers).get_json()
    assert [o['title'] for o in page['outcomes']] == ['B']


def test_remove_group_detaches_outcomes(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    outcome = _create_outcome(client, cells['id'], headers, 'Mitosis')

    response = client.delete(f"/api/v1/outcome_groups/{cells['id']}", headers=headers)
    assert response.status_code == 200
    assert response.get_json()['removed'] == [cells['id']]

    data = client.get(f'/api/v1/courses/{course.id}/outcome_groups', headers=headers).get_json()
    assert cells['id'] not in data['collections']
    detail = client.get(f"/api/v1/outcome_groups/{data['rootId']}/outcomes", headers=headers).get_json()
    assert outcome['id'] not in [o['id'] for o in detail['outcomes']]


def test_move_outcomes_between_groups(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    genetics = _create_group(client, course, headers, 'Genetics')
    outcome = _create_outcome(client, cells['id'], headers, 'Chromosomes')

    response = client.put(f"/api/v1/outcome_groups/{cells['id']}/outcomes/move",
                          json={'outcome_ids': [outcome['id']], 'target_group_id': genetics['id']},
                          headers=headers)
    assert response.status_code == 200
    assert response.get_json()['outcomes'][0]['groupId'] == genetics['id']

    detail = client.get(f"/api/v1/outcome_groups/{cells['id']}/outcomes", headers=headers).get_json()
    assert detail['outcomes'] == []


def test_remove_single_outcome(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    outcome = _create_outcome(client, cells['id'], headers, 'Mitosis')
    url = f"/api/v1/outcome_groups/{cells['id']}/outcomes/{outcome['id']}"
    assert client.delete(url, headers=headers).status_code == 200
    assert client.delete(url, headers=headers).status_code == 404


def test_selection_toggle_and_bulk_remove(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    first = _create_outcome(client, cells['id'], headers, 'First')
    second = _create_outcome(client, cells['id'], headers, 'Second')
    base = f'/api/v1/courses/{course.id}/outcome_selection'

    client.post(f"{base}/{first['id']}", headers=headers)
    body = client.post(f"{base}/{second['id']}", headers=headers).get_json()
    assert body == {'selected': [first['id'], second['id']], 'count': 2}

    body = client.post(f"{base}/{second['id']}", headers=headers).get_json()
    assert body == {'selected': [first['id']], 'count': 1}

    response = client.delete(f"/api/v1/outcome_groups/{cells['id']}/outcomes", headers=headers)
    assert response.get_json()['removed'] == [first['id']]
    assert client.get(base, headers=headers).get_json() == {'selected': [], 'count': 0}

    client.post(f"{base}/{second['id']}", headers=headers)
    assert client.delete(base, headers=headers).get_json()['count'] == 0


def test_selection_requires_read_access(client, course, make_user, auth_headers):
    outsider = make_user('Olly Outsider')
    headers = auth_headers(outsider)
    base = f'/api/v1/courses/{course.id}/outcome_selection'
    assert client.post(f'{base}/anything', headers=headers).status_code == 401
    assert client.get(base, headers=headers).status_code == 401
    assert client.delete(base, headers=headers).status_code == 401


def test_move_targets(client, course, headers):
    cells = _create_group(client, course, headers, 'Cells')
    genetics = _create_group(client, course, headers, 'Genetics')
    data = client.get(f"/api/v1/outcome_groups/{cells['id']}/move_targets", headers=headers).get_json()
    assert data['title'] == 'Move Cells'
    assert [c['id'] for c in data['tree']['collections']] == [genetics['id']]


def test_move_targets_rejects_foreign_outcome(client, account, course, admin, headers, auth_headers):
    admin_headers = auth_headers(admin)
    standards = client.post(f'/api/v1/accounts/{account.id}/outcome_groups',
                            json={'title': 'Standards'}, headers=admin_headers).get_json()
    secret = _create_outcome(client, standards['id'], admin_headers, 'Account secret outcome')
    cells = _create_group(client, course, headers, 'Cells')

    response = client.get(f"/api/v1/outcome_groups/{cells['id']}/move_targets?outcome_id={secret['id']}",
                          headers=headers)
    assert response.status_code == 422
    assert 'Account secret outcome' not in response.get_data(as_text=True)


def test_account_context_routes(client, account, admin, auth_headers):
    headers = auth_headers(admin)
    response = client.post(f'/api/v1/accounts/{account.id}/outcome_groups',
                           json={'title': 'Standards'}, headers=headers)
    assert response.status_code == 201
    assert response.get_json()['contextType'] == ContextType.ACCOUNT.value


def test_management_panel_billboard(client, course, teacher, login):
    login(teacher)
    response = client.get(f'/courses/{course.id}/outcomes')
    assert response.status_code == 200
    html = response.get_data(as_text=True)
    assert 'data-testid="outcomeManagementPanel"' in html
    assert 'Outcomes have not been added to this course yet.' in html
    assert 'Get started by finding, importing or creating your course outcomes.' in html


def test_management_panel_lists_groups(client, course, teacher, login, headers):
    _create_group(client, course, headers, 'Cells')
    login(teacher)
    html = client.get(f'/courses/{course.id}/outcomes').get_data(as_text=True)
    assert 'Outcomes have not been added' not in html
    assert 'Cells' in html
    assert '0 Groups | 0 Outcomes' in html


def test_management_panel_account_copy_and_access(client, account, admin, make_user, login):
    login(admin)
    html = client.get(f'/accounts/{account.id}/outcomes').get_data(as_text=True)
    assert 'Outcomes have not been added to this account yet.' in html
    client.get('/logout')

    member = make_user('Mo Member')
    login(member)
    assert client.get(f'/accounts/{account.id}/outcomes').status_code == 200
    assert client.get('/courses/missing/outcomes').status_code == 404
