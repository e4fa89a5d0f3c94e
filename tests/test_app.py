from models import db, User


def test_health(client):
    resp = client.get('/health')
    assert resp.status_code == 200
    assert resp.get_json()['database'] == 'connected'


def test_index(client):
    resp = client.get('/')
    assert resp.status_code == 200
    data = resp.get_json()
    assert data['version'] == '1.0.0'
    assert 'versions' in data['endpoints']


def test_security_headers(client):
    resp = client.get('/health')
    assert resp.headers['X-Content-Type-Options'] == 'nosniff'
    assert resp.headers['X-Frame-Options'] == 'DENY'


def test_unknown_route_is_json(client):
    resp = client.get('/api/does-not-exist')
    assert resp.status_code == 404
    assert resp.get_json()['error'] == 'not_found'


def test_wrong_method_is_json(client):
    resp = client.patch('/api/login')
    assert resp.status_code == 405
    assert resp.get_json()['error'] == 'method_not_allowed'


def test_missing_upload(client):
    assert client.get('/uploads/docs/nothing.pdf').status_code == 404


def test_create_admin_command(app, seed):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['create-admin', '--username', 'root', '--password', 'rootpass',
                                 '--department', 'Operations'])

    assert result.exit_code == 0, result.output
    assert 'root' in result.output

    with app.app_context():
        admin = User.query.filter_by(username='root').first()
        assert admin.role == 'admin'
        assert admin.department.name == 'Operations'
        db.session.remove()


def test_create_admin_refuses_existing_user(app, seed):
    runner = app.test_cli_runner()
    result = runner.invoke(args=['create-admin', '--username', 'admin', '--password', 'whatever'])
    assert result.exit_code != 0
