from conftest import PASSWORD


def test_login_with_username(client, seed):
    resp = client.post('/api/login', json={'username': 'devuser', 'password': PASSWORD})

    assert resp.status_code == 200
    data = resp.get_json()
    assert data['ok'] is True
    assert data['access_token']
    assert data['refresh_token']
    assert data['user']['username'] == 'devuser'
    assert data['user']['departmentId'] == seed['dev']
    assert 'password_hash' not in data['user']


def test_login_with_email(client, seed):
    resp = client.post('/api/login', json={'email': 'qauser@example.com', 'password': PASSWORD})
    assert resp.status_code == 200
    assert resp.get_json()['user']['id'] == seed['qa_user']


def test_login_wrong_password(client, seed):
    resp = client.post('/api/login', json={'username': 'devuser', 'password': 'nope'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Invalid credentials'


def test_login_unknown_user_gets_same_message(client, seed):
    resp = client.post('/api/login', json={'username': 'ghost', 'password': PASSWORD})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'Invalid credentials'


def test_login_requires_password(client, seed):
    resp = client.post('/api/login', json={'username': 'devuser'})
    assert resp.status_code == 400
    assert 'password' in resp.get_json()['details']


def test_login_requires_identifier(client, seed):
    resp = client.post('/api/login', json={'password': PASSWORD})
    assert resp.status_code == 400


def test_disabled_account(client, seed, admin_headers, login):
    headers = login('devuser')
    client.put(f"/api/users/{seed['dev_user']}", json={'active': 0}, headers=admin_headers)

    resp = client.post('/api/login', json={'username': 'devuser', 'password': PASSWORD})
    assert resp.status_code == 403

    # Tokens issued before the account was disabled stop working too
    resp = client.get('/api/me', headers=headers)
    assert resp.status_code == 403


def test_me(client, user_headers):
    resp = client.get('/api/me', headers=user_headers)
    assert resp.status_code == 200
    assert resp.get_json()['username'] == 'devuser'


def test_me_without_token(client):
    resp = client.get('/api/me')
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'authorization_required'


def test_me_with_garbage_token(client):
    resp = client.get('/api/me', headers={'Authorization': 'Bearer not-a-jwt'})
    assert resp.status_code == 401
    assert resp.get_json()['error'] == 'invalid_token'


def test_refresh(client, seed):
    login = client.post('/api/login', json={'username': 'admin', 'password': PASSWORD}).get_json()

    resp = client.post('/api/refresh', headers={'Authorization': f"Bearer {login['refresh_token']}"})
    assert resp.status_code == 200
    token = resp.get_json()['access_token']

    resp = client.get('/api/me', headers={'Authorization': f'Bearer {token}'})
    assert resp.status_code == 200
    assert resp.get_json()['role'] == 'admin'


def test_access_token_cannot_refresh(client, admin_headers):
    resp = client.post('/api/refresh', headers=admin_headers)
    assert resp.status_code in (401, 422)
