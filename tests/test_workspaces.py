def create_workspace(client, headers, **fields):
    payload = {'name': 'Clients'}
    payload.update(fields)
    return client.post('/api/workspaces', json=payload, headers=headers)


def test_create_and_get_workspace(client, admin_headers, user_headers):
    resp = create_workspace(client, admin_headers, icon='briefcase')
    assert resp.status_code == 201
    workspace = resp.get_json()
    assert workspace['color'] == '#6366f1'
    assert workspace['icon'] == 'briefcase'

    resp = client.get(f"/api/workspaces/{workspace['id']}", headers=user_headers)
    assert resp.status_code == 200
    assert resp.get_json()['name'] == 'Clients'


def test_list_workspaces(client, admin_headers):
    create_workspace(client, admin_headers, name='One')
    create_workspace(client, admin_headers, name='Two')

    resp = client.get('/api/workspaces', headers=admin_headers)
    assert {w['name'] for w in resp.get_json()} == {'One', 'Two'}


def test_only_admin_creates_workspaces(client, user_headers):
    resp = create_workspace(client, user_headers)
    assert resp.status_code == 403


def test_workspace_requires_name(client, admin_headers):
    resp = client.post('/api/workspaces', json={'color': '#000000'}, headers=admin_headers)
    assert resp.status_code == 400


def test_update_workspace(client, admin_headers):
    workspace = create_workspace(client, admin_headers).get_json()

    resp = client.put(f"/api/workspaces/{workspace['id']}", json={'description': 'Paid work'},
                      headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()['description'] == 'Paid work'
    assert resp.get_json()['name'] == 'Clients'


def test_workspace_projects(client, admin_headers):
    workspace = create_workspace(client, admin_headers).get_json()
    client.post('/api/projects', json={'name': 'Inside', 'workspaceId': workspace['id']}, headers=admin_headers)
    client.post('/api/projects', json={'name': 'Outside'}, headers=admin_headers)

    resp = client.get(f"/api/workspaces/{workspace['id']}/projects", headers=admin_headers)
    assert resp.status_code == 200
    assert [p['name'] for p in resp.get_json()] == ['Inside']


def test_delete_workspace_detaches_projects(client, admin_headers):
    workspace = create_workspace(client, admin_headers).get_json()
    project = client.post('/api/projects', json={'name': 'Inside', 'workspaceId': workspace['id']},
                          headers=admin_headers).get_json()

    resp = client.delete(f"/api/workspaces/{workspace['id']}", headers=admin_headers)
    assert resp.status_code == 200

    resp = client.get(f"/api/projects/{project['id']}", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.get_json()['workspaceId'] is None

    resp = client.get(f"/api/workspaces/{workspace['id']}", headers=admin_headers)
    assert resp.status_code == 404
