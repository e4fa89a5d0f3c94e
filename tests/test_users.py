def new_user(**overrides):
    payload = {
        'username': 'carla',
        'email': 'carla@example.com',
        'password': 'pass1234',
        'role': 'user'
    }
    payload.update(overrides)
    return payload


def test_list_users(client, user_headers):
    resp = client.get('/api/users', headers=user_headers)
    assert resp.status_code == 200
    assert {u['username'] for u in resp.get_json()} == {'admin', 'devuser', 'qauser'}


def test_admin_creates_user(client, seed, admin_headers, login):
    resp = client.post('/api/users', json=new_user(departmentId=seed['qa']), headers=admin_headers)

    assert resp.status_code == 201
    data = resp.get_json()
    assert data['username'] == 'carla'
    assert data['departmentId'] == seed['qa']
    assert data['active'] == 1

    # The new account can log in
    assert login('carla', 'pass1234')


def test_non_admin_cannot_create_user(client, user_headers):
    resp = client.post('/api/users', json=new_user(), headers=user_headers)
    assert resp.status_code == 403


def test_duplicate_username(client, admin_headers):
    resp = client.post('/api/users', json=new_user(username='devuser', email=None), headers=admin_headers)
    assert resp.status_code == 409


def test_duplicate_email(client, admin_headers):
    resp = client.post('/api/users', json=new_user(email='qauser@example.com'), headers=admin_headers)
    assert resp.status_code == 409


def test_password_too_short(client, admin_headers):
    resp = client.post('/api/users', json=new_user(password='abc'), headers=admin_headers)
    assert resp.status_code == 400
    assert 'password' in resp.get_json()['details']


def test_unknown_role(client, admin_headers):
    resp = client.post('/api/users', json=new_user(role='owner'), headers=admin_headers)
    assert resp.status_code == 400


def test_unknown_department(client, admin_headers):
    resp = client.post('/api/users', json=new_user(departmentId='missing'), headers=admin_headers)
    assert resp.status_code == 400


def test_update_user(client, seed, admin_headers):
    resp = client.put(f"/api/users/{seed['dev_user']}",
                      json={'role': 'admin', 'departmentId': seed['qa']},
                      headers=admin_headers)

    assert resp.status_code == 200
    data = resp.get_json()
    assert data['role'] == 'admin'
    assert data['departmentId'] == seed['qa']
    assert data['username'] == 'devuser'


def test_update_password(client, seed, admin_headers, login):
    resp = client.put(f"/api/users/{seed['qa_user']}", json={'password': 'changed1'}, headers=admin_headers)
    assert resp.status_code == 200
    assert login('qauser', 'changed1')


def test_update_with_no_fields(client, seed, admin_headers):
    resp = client.put(f"/api/users/{seed['dev_user']}", json={'unknown': 1}, headers=admin_headers)
    assert resp.status_code == 400


def test_update_missing_user(client, admin_headers):
    resp = client.put('/api/users/missing', json={'role': 'user'}, headers=admin_headers)
    assert resp.status_code == 404


def test_delete_user(client, seed, admin_headers):
    resp = client.delete(f"/api/users/{seed['qa_user']}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()['id'] == seed['qa_user']

    usernames = {u['username'] for u in client.get('/api/users', headers=admin_headers).get_json()}
    assert 'qauser' not in usernames


def test_admin_cannot_delete_self(client, seed, admin_headers):
    resp = client.delete(f"/api/users/{seed['admin']}", headers=admin_headers)
    assert resp.status_code == 400


def test_deleted_assignee_leaves_task_unassigned(client, seed, admin_headers, make_task):
    task = make_task('Owned', assignedTo=seed['qa_user'])

    client.delete(f"/api/users/{seed['qa_user']}", headers=admin_headers)

    resp = client.get(f"/api/tasks/{task['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()['assignedTo'] is None
