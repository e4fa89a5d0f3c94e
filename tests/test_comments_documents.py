import io


def upload(client, url, headers, name='notes.txt', content=b'hello', **fields):
    data = {'title': 'Notes', 'file': (io.BytesIO(content), name)}
    data.update(fields)
    return client.post(url, data=data, headers=headers, content_type='multipart/form-data')

# ============================================
# Task comments
# ============================================

def test_task_comments_oldest_first(client, admin_headers, user_headers, make_task):
    task = make_task('Discuss')
    client.post(f"/api/tasks/{task['id']}/comments", json={'comment': 'First'}, headers=admin_headers)
    client.post(f"/api/tasks/{task['id']}/comments", json={'comment': 'Second'}, headers=user_headers)

    resp = client.get(f"/api/tasks/{task['id']}/comments", headers=admin_headers)
    assert resp.status_code == 200
    comments = resp.get_json()
    assert [c['comment'] for c in comments] == ['First', 'Second']
    assert [c['userName'] for c in comments] == ['admin', 'devuser']
    assert comments[0]['versionId'] is None
    assert comments[0]['versionName'] is None


def test_comment_author_is_current_user(client, seed, user_headers, make_task):
    task = make_task('Discuss')
    resp = client.post(f"/api/tasks/{task['id']}/comments",
                       json={'comment': 'Mine', 'userId': seed['admin']},
                       headers=user_headers)
    assert resp.status_code == 201
    assert resp.get_json()['userId'] == seed['dev_user']


def test_blank_comment_rejected(client, admin_headers, make_task):
    task = make_task('Discuss')
    resp = client.post(f"/api/tasks/{task['id']}/comments", json={'comment': '   '}, headers=admin_headers)
    assert resp.status_code == 400


def test_comment_on_missing_task(client, admin_headers):
    resp = client.post('/api/tasks/missing/comments', json={'comment': 'hi'}, headers=admin_headers)
    assert resp.status_code == 404

# ============================================
# Documents
# ============================================

def test_upload_project_document(client, admin_headers, project):
    resp = upload(client, f"/api/projects/{project['id']}/documents", admin_headers,
                  name='Plan Final.pdf', content=b'%PDF-1.4', description='Scope')

    assert resp.status_code == 201
    doc = resp.get_json()
    assert doc['title'] == 'Notes'
    assert doc['description'] == 'Scope'
    assert doc['fileName'] == 'Plan Final.pdf'
    assert doc['filePath'].startswith('/uploads/docs/')
    assert doc['filePath'].endswith('Plan_Final.pdf')
    assert doc['size'] == len(b'%PDF-1.4')
    assert doc['createdByName'] == 'admin'
    assert doc['versionId'] is None

    served = client.get(doc['filePath'])
    assert served.status_code == 200
    assert served.data == b'%PDF-1.4'


def test_document_requires_file(client, admin_headers, project):
    resp = client.post(f"/api/projects/{project['id']}/documents", data={'title': 'Empty'},
                       headers=admin_headers, content_type='multipart/form-data')
    assert resp.status_code == 400


def test_document_requires_title(client, admin_headers, project):
    resp = client.post(f"/api/projects/{project['id']}/documents",
                       data={'file': (io.BytesIO(b'x'), 'a.txt')},
                       headers=admin_headers, content_type='multipart/form-data')
    assert resp.status_code == 400


def test_document_extension_whitelist(client, admin_headers, project):
    resp = upload(client, f"/api/projects/{project['id']}/documents", admin_headers, name='run.sh')
    assert resp.status_code == 400


def test_document_version_must_belong_to_project(client, admin_headers, project):
    resp = upload(client, f"/api/projects/{project['id']}/documents", admin_headers, versionId='missing')
    assert resp.status_code == 400


def test_upload_too_large(client, app, admin_headers, project):
    app.config['MAX_CONTENT_LENGTH'] = 64

    resp = upload(client, f"/api/projects/{project['id']}/documents", admin_headers, content=b'x' * 1024)
    assert resp.status_code == 413
    assert resp.get_json()['error'] == 'payload_too_large'


def test_task_documents(client, admin_headers, make_task):
    task = make_task('Attach')
    resp = upload(client, f"/api/tasks/{task['id']}/documents", admin_headers, name='log.txt')

    assert resp.status_code == 201
    doc = resp.get_json()
    assert doc['taskId'] == task['id']
    assert doc['taskTitle'] == 'Attach'
    assert doc['projectId'] == task['projectId']

    resp = client.get(f"/api/tasks/{task['id']}/documents", headers=admin_headers)
    assert [d['id'] for d in resp.get_json()] == [doc['id']]


def test_project_documents_include_task_documents(client, admin_headers, project, make_task):
    task = make_task('Attach')
    upload(client, f"/api/projects/{project['id']}/documents", admin_headers, title='Project doc')
    upload(client, f"/api/tasks/{task['id']}/documents", admin_headers, title='Task doc')

    resp = client.get(f"/api/projects/{project['id']}/documents", headers=admin_headers)
    assert resp.status_code == 200
    docs = resp.get_json()

    # Newest first
    assert [d['title'] for d in docs] == ['Task doc', 'Project doc']
    assert docs[0]['taskTitle'] == 'Attach'
    assert 'taskId' not in docs[1]


def test_delete_task_removes_stored_file(client, admin_headers, make_task):
    task = make_task('Attach')
    doc = upload(client, f"/api/tasks/{task['id']}/documents", admin_headers).get_json()
    assert client.get(doc['filePath']).status_code == 200

    client.delete(f"/api/tasks/{task['id']}", headers=admin_headers)

    assert client.get(doc['filePath']).status_code == 404
