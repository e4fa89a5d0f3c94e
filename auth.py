from flask import Blueprint, request, jsonify, current_app
from flask_jwt_extended import create_access_token, create_refresh_token, jwt_required, get_jwt_identity
from marshmallow import Schema, fields, validate, ValidationError, EXCLUDE
from functools import wraps
from sqlalchemy import or_
from datetime import datetime
from models import db, User
from extensions import bcrypt, limiter
import logging

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas (marshmallow)
# ============================================

class LoginSchema(Schema):
    """Login payload: the frontend sends a username, email also works"""
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(validate=validate.Length(min=1, max=255))
    email = fields.Str(validate=validate.Length(min=1, max=255))
    password = fields.Str(required=True, error_messages={'required': 'password is required'})

# ============================================
# Helper Functions
# ============================================

def validate_request_data(schema_class, data, partial=False):
    """
    Shared input validation

    Returns:
        tuple: (is_valid, data_or_errors)
    """
    schema = schema_class()
    try:
        validated_data = schema.load(data, partial=partial)
        return True, validated_data
    except ValidationError as err:
        return False, err.messages


def read_payload():
    """
    Request body as a dict, JSON or multipart form alike

    Empty form values come through as None so optional fields can be cleared.
    """
    if request.mimetype == 'multipart/form-data' or request.form:
        return {key: (value if value != '' else None) for key, value in request.form.items()}
    return request.get_json(silent=True)


def hash_password(password):
    return bcrypt.generate_password_hash(password).decode('utf-8')


def check_password(password_hash, password):
    try:
        return bcrypt.check_password_hash(password_hash, password)
    except ValueError:
        # Malformed hash stored for the account
        logger.error("Stored password hash could not be parsed")
        return False


def serialize_user(user):
    return {
        'id': user.id,
        'username': user.username,
        'email': user.email,
        'role': user.role,
        'departmentId': user.department_id,
        'active': user.active,
        'createdAt': user.created_at.isoformat() if user.created_at else None
    }


def get_current_user():
    """
    Current logged-in user, or None
    """
    try:
        user_id = get_jwt_identity()
        if not user_id:
            return None
        return db.session.get(User, user_id)
    except Exception as e:
        logger.error(f"Error getting current user: {str(e)}")
        return None


def login_required(fn):
    """
    jwt_required plus an active-account check

    The resolved user is passed to the view as ``current_user``.
    """
    @wraps(fn)
    @jwt_required()
    def wrapper(*args, **kwargs):
        current_user = get_current_user()
        if not current_user:
            return jsonify({'error': 'Authentication required'}), 401
        if not current_user.active:
            return jsonify({'error': 'Account is disabled'}), 403
        return fn(*args, current_user=current_user, **kwargs)
    return wrapper


def admin_required(fn):
    """Same as login_required, restricted to the admin role"""
    @wraps(fn)
    @login_required
    def wrapper(*args, current_user, **kwargs):
        if not current_user.is_admin:
            logger.warning(f"Non-admin {current_user.username} tried {request.method} {request.path}")
            return jsonify({'error': 'Admin privileges required'}), 403
        return fn(*args, current_user=current_user, **kwargs)
    return wrapper

# ============================================
# Login
# ============================================

@auth_bp.route('/login', methods=['POST'])
@limiter.limit(lambda: current_app.config['LOGIN_RATE_LIMIT'])
def login():
    """
    Log in with username (or email) and password

    The error message does not say whether the account or the password was
    wrong.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(LoginSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    identifier = result.get('username') or result.get('email')
    if not identifier:
        return jsonify({'error': 'Validation failed',
                        'details': {'username': ['username or email is required']}}), 400

    user = User.query.filter(
        or_(User.username == identifier, User.email == identifier)
    ).first()

    if not user or not check_password(user.password_hash, result['password']):
        logger.warning(f"Failed login attempt for: {identifier}")
        return jsonify({'error': 'Invalid credentials'}), 401

    if not user.active:
        logger.warning(f"Inactive user login attempt: {user.username}")
        return jsonify({'error': 'Account is disabled'}), 403

    access_token = create_access_token(identity=user.id, additional_claims={'role': user.role})
    refresh_token = create_refresh_token(identity=user.id)

    try:
        user.last_login = datetime.utcnow()
        db.session.commit()
    except Exception as e:
        # Login still succeeds
        db.session.rollback()
        logger.error(f"Failed to update last_login for {user.username}: {str(e)}")

    logger.info(f"User logged in: {user.username}")

    return jsonify({
        'ok': True,
        'access_token': access_token,
        'refresh_token': refresh_token,
        'user': serialize_user(user)
    }), 200

# ============================================
# Token refresh
# ============================================

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """Trade a refresh token for a new access token"""
    user = get_current_user()

    if not user or not user.active:
        return jsonify({'error': 'Invalid or inactive user'}), 401

    access_token = create_access_token(identity=user.id, additional_claims={'role': user.role})

    return jsonify({
        'access_token': access_token
    }), 200

# ============================================
# Current user
# ============================================

@auth_bp.route('/me', methods=['GET'])
@login_required
def get_me(current_user):
    """Session refresh for the frontend (department may have changed)"""
    return jsonify(serialize_user(current_user)), 200
