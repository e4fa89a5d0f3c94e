import pytest
from app import create_app
from config import TestingConfig
from models import db, User, Department
from auth import hash_password

PASSWORD = 'secret123'


@pytest.fixture
def app(tmp_path):
    class Settings(TestingConfig):
        UPLOAD_FOLDER = str(tmp_path / 'uploads')

    app = create_app(Settings)
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def add_user(username, role='user', department_id=None, active=1):
    user = User(
        username=username,
        email=f'{username}@example.com',
        password_hash=hash_password(PASSWORD),
        role=role,
        department_id=department_id,
        active=active
    )
    db.session.add(user)
    db.session.commit()
    return user.id


@pytest.fixture
def seed(app):
    """Two departments, an admin and one user in each department"""
    with app.app_context():
        dev = Department(name='Development', color='#3b82f6')
        qa = Department(name='QA', color='#10b981')
        db.session.add_all([dev, qa])
        db.session.commit()

        ids = {'dev': dev.id, 'qa': qa.id}
        ids['admin'] = add_user('admin', role='admin', department_id=dev.id)
        ids['dev_user'] = add_user('devuser', department_id=dev.id)
        ids['qa_user'] = add_user('qauser', department_id=qa.id)
    return ids


@pytest.fixture
def login(client):
    def _login(username, password=PASSWORD):
        resp = client.post('/api/login', json={'username': username, 'password': password})
        assert resp.status_code == 200, resp.get_json()
        return {'Authorization': f"Bearer {resp.get_json()['access_token']}"}
    return _login


@pytest.fixture
def admin_headers(seed, login):
    return login('admin')


@pytest.fixture
def user_headers(seed, login):
    return login('devuser')


@pytest.fixture
def qa_headers(seed, login):
    return login('qauser')


@pytest.fixture
def project(client, admin_headers):
    resp = client.post('/api/projects', json={'name': 'Portal', 'description': 'Customer portal'},
                       headers=admin_headers)
    assert resp.status_code == 201
    return resp.get_json()


@pytest.fixture
def make_task(client, admin_headers, project):
    """Create a task in the project fixture (or another project) as admin"""
    def _make_task(title='Task', project_id=None, **fields):
        payload = {'projectId': project_id or project['id'], 'title': title}
        payload.update(fields)
        resp = client.post('/api/tasks', json=payload, headers=admin_headers)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _make_task
