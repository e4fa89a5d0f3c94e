from flask import Flask, request, jsonify, send_from_directory
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from sqlalchemy import text, event
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from logging.handlers import RotatingFileHandler
from config import get_config
from models import db, User, Department
from extensions import jwt, bcrypt, limiter
import click
import logging
import os

# ============================================
# Logging
# ============================================

def setup_logging(app):
    """
    File logging for non-debug runs

    app.log gets INFO and above, error.log only errors; both rotate at 10MB.
    """
    if app.debug or app.testing:
        return

    log_dir = app.config['LOG_DIR']
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )

    info_handler = RotatingFileHandler(
        os.path.join(log_dir, 'app.log'),
        maxBytes=10240000,
        backupCount=10
    )
    info_handler.setLevel(logging.INFO)
    info_handler.setFormatter(formatter)

    error_handler = RotatingFileHandler(
        os.path.join(log_dir, 'error.log'),
        maxBytes=10240000,
        backupCount=10
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    # Blueprint modules log through their own module loggers, so attach to root too
    level = getattr(logging, app.config['LOG_LEVEL'].upper(), logging.INFO)
    for target in (app.logger, logging.getLogger()):
        target.addHandler(info_handler)
        target.addHandler(error_handler)
        target.setLevel(level)

    app.logger.info('Application startup')

# ============================================
# Database
# ============================================

def enable_sqlite_foreign_keys(engine):
    """SQLite ignores ON DELETE rules unless foreign keys are switched on per connection"""
    if engine.dialect.name != 'sqlite':
        return

    @event.listens_for(engine, 'connect')
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def init_database(app):
    with app.app_context():
        enable_sqlite_foreign_keys(db.engine)
        db.create_all()
        app.logger.info('Database tables created')

# ============================================
# Blueprints
# ============================================

def register_blueprints(app):
    from auth import auth_bp
    from users import users_bp
    from departments import departments_bp
    from workspaces import workspaces_bp
    from projects import projects_bp
    from tasks import tasks_bp
    from comments import comments_bp
    from documents import documents_bp
    from versions import versions_bp

    for blueprint in (auth_bp, users_bp, departments_bp, workspaces_bp, projects_bp,
                      tasks_bp, comments_bp, documents_bp, versions_bp):
        app.register_blueprint(blueprint, url_prefix='/api')

# ============================================
# Error responses
# ============================================

def json_error(code, message, status):
    return jsonify({'error': code, 'message': message, 'status': status}), status


def register_jwt_handlers(app):
    """Token problems all answer 401 with a machine-readable ``error`` code"""
    @jwt.expired_token_loader
    def token_expired(jwt_header, jwt_payload):
        app.logger.warning(f"Expired token from {request.remote_addr} on {request.path}")
        return json_error('token_expired', 'Session expired, refresh the token or log in again', 401)

    @jwt.invalid_token_loader
    def token_invalid(reason):
        app.logger.warning(f"Invalid token from {request.remote_addr}: {reason}")
        return json_error('invalid_token', 'The access token could not be verified', 401)

    @jwt.unauthorized_loader
    def token_missing(reason):
        app.logger.warning(f"Missing token from {request.remote_addr} on {request.path}: {reason}")
        return json_error('authorization_required', 'A bearer access token is required', 401)

    @jwt.revoked_token_loader
    def token_revoked(jwt_header, jwt_payload):
        return json_error('token_revoked', 'The token is no longer valid, log in again', 401)


HTTP_ERRORS = {
    400: ('bad_request', 'The request is malformed or invalid'),
    404: ('not_found', 'No such resource'),
    405: ('method_not_allowed', 'Method not allowed on this endpoint'),
    429: ('rate_limit_exceeded', 'Too many requests, try again later'),
}


def register_error_handlers(app):
    def http_error(error):
        code, message = HTTP_ERRORS[error.code]
        if error.code == 429:
            app.logger.warning(f"Rate limit hit by {request.remote_addr} on {request.path}")
        return json_error(code, message, error.code)

    for status in HTTP_ERRORS:
        app.register_error_handler(status, http_error)

    @app.errorhandler(413)
    def payload_too_large(error):
        limit_mb = app.config['MAX_CONTENT_LENGTH'] // (1024 * 1024)
        app.logger.warning(f"Upload over {limit_mb}MB rejected from {request.remote_addr}")
        return json_error('payload_too_large', f'Uploads are limited to {limit_mb}MB', 413)

    @app.errorhandler(500)
    def internal_server_error(error):
        """Log the full trace, return a generic message"""
        db.session.rollback()
        app.logger.error(f"Internal server error on {request.path}: {error}", exc_info=True)
        return json_error('internal_server_error', 'An internal error occurred', 500)

    @app.errorhandler(Exception)
    def unhandled_exception(error):
        """
        Anything a route let escape

        HTTP errors keep their own status.
        """
        if isinstance(error, HTTPException):
            return error

        db.session.rollback()
        app.logger.error(f"Unhandled {type(error).__name__} on {request.method} {request.path}: {error}",
                         exc_info=True)
        return json_error('unexpected_error', 'An unexpected error occurred', 500)

# ============================================
# Request/Response logging and headers
# ============================================

def register_request_hooks(app):
    @app.before_request
    def log_request():
        if not app.debug:
            app.logger.info(f"Request: {request.method} {request.path} from {request.remote_addr}")

    @app.after_request
    def log_response(response):
        if not app.debug:
            app.logger.info(f"Response: {response.status_code} for {request.method} {request.path}")

        response.headers['X-Content-Type-Options'] = 'nosniff'
        response.headers['X-Frame-Options'] = 'DENY'
        response.headers['X-XSS-Protection'] = '1; mode=block'

        return response

# ============================================
# Plain routes
# ============================================

def register_routes(app):
    @app.route('/health', methods=['GET'])
    @limiter.exempt
    def health_check():
        """Database ping for load balancers and monitoring"""
        checked_at = datetime.utcnow().isoformat()
        try:
            db.session.execute(text('SELECT 1'))
        except SQLAlchemyError as e:
            app.logger.error(f"Health check could not reach the database: {e}")
            return jsonify({'status': 'unhealthy', 'database': 'disconnected',
                            'timestamp': checked_at}), 503
        return jsonify({'status': 'healthy', 'database': 'connected',
                        'timestamp': checked_at}), 200

    @app.route('/')
    def home():
        """API index"""
        return jsonify({
            'message': 'SisProyect API',
            'version': app.config['API_VERSION'],
            'endpoints': {
                'health': {'path': '/health', 'methods': ['GET']},
                'auth': {
                    'login': {'path': '/api/login', 'methods': ['POST']},
                    'refresh': {'path': '/api/refresh', 'methods': ['POST']},
                    'me': {'path': '/api/me', 'methods': ['GET']}
                },
                'users': {'path': '/api/users', 'methods': ['GET', 'POST', 'PUT', 'DELETE']},
                'departments': {
                    'list': {'path': '/api/departments', 'methods': ['GET', 'POST', 'PUT', 'DELETE']},
                    'metrics': {'path': '/api/departments/:id/metrics', 'methods': ['GET']}
                },
                'workspaces': {
                    'list': {'path': '/api/workspaces', 'methods': ['GET', 'POST', 'PUT', 'DELETE']},
                    'projects': {'path': '/api/workspaces/:id/projects', 'methods': ['GET']}
                },
                'projects': {
                    'list': {'path': '/api/projects', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/api/projects/:id', 'methods': ['GET', 'PUT', 'DELETE']},
                    'stats': {'path': '/api/projects/:id/stats', 'methods': ['GET']},
                    'progress': {'path': '/api/projects/:id/progress', 'methods': ['GET']},
                    'comments': {'path': '/api/projects/:id/comments', 'methods': ['GET', 'POST']},
                    'documents': {'path': '/api/projects/:id/documents', 'methods': ['GET', 'POST']},
                    'tasks': {'path': '/api/projects/:id/tasks', 'methods': ['GET']},
                    'task_tree': {'path': '/api/projects/:id/tasks/tree', 'methods': ['GET']}
                },
                'tasks': {
                    'list': {'path': '/api/tasks', 'methods': ['GET', 'POST']},
                    'detail': {'path': '/api/tasks/:id', 'methods': ['GET', 'PUT', 'DELETE']},
                    'subtasks': {'path': '/api/tasks/:id/subtasks', 'methods': ['GET']},
                    'take': {'path': '/api/tasks/:id/take', 'methods': ['POST']},
                    'comments': {'path': '/api/tasks/:id/comments', 'methods': ['GET', 'POST']},
                    'documents': {'path': '/api/tasks/:id/documents', 'methods': ['GET', 'POST']}
                },
                'versions': {
                    'preview': {'path': '/api/projects/:id/version-preview', 'methods': ['GET']},
                    'project': {'path': '/api/projects/:id/versions', 'methods': ['GET', 'POST']},
                    'list': {'path': '/api/versions', 'methods': ['GET']},
                    'detail': {'path': '/api/versions/:id', 'methods': ['GET']}
                },
                'uploads': {'path': '/uploads/:path', 'methods': ['GET']}
            },
            'rate_limits': {
                'default': app.config['RATELIMIT_DEFAULT'],
                'login': app.config['LOGIN_RATE_LIMIT']
            }
        })

    @app.route('/uploads/<path:filename>', methods=['GET'])
    def serve_upload(filename):
        """Stored documents and logos"""
        return send_from_directory(app.config['UPLOAD_FOLDER'], filename)

# ============================================
# CLI
# ============================================

def register_commands(app):
    @app.cli.command('create-admin')
    @click.option('--username', default='admin', show_default=True)
    @click.option('--email', default=None)
    @click.option('--department', 'department_name', default=None,
                  help='Department name, created when missing')
    @click.password_option()
    def create_admin(username, email, department_name, password):
        """Create an administrator account."""
        from auth import hash_password

        if User.query.filter_by(username=username).first():
            raise click.ClickException(f'User {username} already exists')

        department = None
        if department_name:
            department = Department.query.filter_by(name=department_name).first()
            if department is None:
                department = Department(name=department_name,
                                        color=app.config['DEFAULT_DEPARTMENT_COLOR'])
                db.session.add(department)

        admin = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            role='admin',
            department=department,
            active=1
        )
        db.session.add(admin)
        db.session.commit()

        app.logger.info(f"Admin account created from CLI: {username}")
        click.echo(f'Admin {username} created')

# ============================================
# Application factory
# ============================================

def create_app(config_class=None):
    app = Flask(__name__)
    settings = config_class or get_config()
    settings.validate()
    app.config.from_object(settings)

    setup_logging(app)

    CORS(app,
         supports_credentials=True,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PUT', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'])

    db.init_app(app)
    jwt.init_app(app)
    bcrypt.init_app(app)
    limiter.init_app(app)

    os.makedirs(app.config['UPLOAD_FOLDER'], exist_ok=True)

    register_blueprints(app)
    register_jwt_handlers(app)
    register_error_handlers(app)
    register_request_hooks(app)
    register_routes(app)
    register_commands(app)

    init_database(app)

    return app


if __name__ == '__main__':
    # Use gunicorn or similar in production, not the built-in server
    debug_mode = os.getenv('FLASK_DEBUG', 'False').lower() == 'true'
    port = int(os.getenv('PORT', 3000))

    create_app().run(
        debug=debug_mode,
        port=port,
        host='0.0.0.0'
    )
