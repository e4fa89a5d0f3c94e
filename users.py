from flask import Blueprint, request, jsonify, current_app
from marshmallow import Schema, fields, validate, EXCLUDE
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from models import db, User, Department, USER_ROLES
from auth import login_required, admin_required, validate_request_data, hash_password, serialize_user
import logging

users_bp = Blueprint('users', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

def _password_length(value):
    min_length = current_app.config['PASSWORD_MIN_LENGTH']
    validate.Length(min=min_length, max=128,
                    error=f'Password must be {min_length}-128 characters')(value)


class CreateUserSchema(Schema):
    """Create user"""
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(
        required=True,
        validate=validate.Length(min=2, max=100),
        error_messages={'required': 'username is required'}
    )
    email = fields.Email(allow_none=True)
    password = fields.Str(
        required=True,
        validate=_password_length,
        error_messages={'required': 'password is required'}
    )
    role = fields.Str(
        required=True,
        validate=validate.OneOf(USER_ROLES),
        error_messages={'required': 'role is required'}
    )
    departmentId = fields.Str(allow_none=True)
    active = fields.Int(validate=validate.OneOf([0, 1]), load_default=1)


class UpdateUserSchema(Schema):
    """Update user, every field optional"""
    class Meta:
        unknown = EXCLUDE

    username = fields.Str(validate=validate.Length(min=2, max=100))
    email = fields.Email(allow_none=True)
    password = fields.Str(allow_none=True, validate=_password_length)
    role = fields.Str(validate=validate.OneOf(USER_ROLES))
    departmentId = fields.Str(allow_none=True)
    active = fields.Int(validate=validate.OneOf([0, 1]))

# ============================================
# Helpers
# ============================================

def find_conflict(username=None, email=None, exclude_id=None):
    """Another account already using the username or email"""
    filters = []
    if username:
        filters.append(User.username == username)
    if email:
        filters.append(User.email == email)
    if not filters:
        return None

    query = User.query.filter(or_(*filters))
    if exclude_id:
        query = query.filter(User.id != exclude_id)
    return query.first()


def department_exists(department_id):
    return department_id is None or db.session.get(Department, department_id) is not None

# ============================================
# List users
# ============================================

@users_bp.route('/users', methods=['GET'])
@login_required
def list_users(current_user):
    users = User.query.order_by(User.created_at.desc()).all()
    return jsonify([serialize_user(u) for u in users]), 200

# ============================================
# Create user
# ============================================

@users_bp.route('/users', methods=['POST'])
@admin_required
def create_user(current_user):
    """
    Create a user account (admin only)
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateUserSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if find_conflict(result['username'], result.get('email')):
        return jsonify({'error': 'Username or email already exists'}), 409

    if not department_exists(result.get('departmentId')):
        return jsonify({'error': 'Department not found'}), 400

    user = User(
        username=result['username'],
        email=result.get('email'),
        password_hash=hash_password(result['password']),
        role=result['role'],
        department_id=result.get('departmentId'),
        active=result['active']
    )

    try:
        db.session.add(user)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Username or email already exists'}), 409
    except Exception as e:
        db.session.rollback()
        logger.error(f"User creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'User creation failed due to server error'}), 500

    logger.info(f"User created: {user.username} by {current_user.username}")
    return jsonify(serialize_user(user)), 201

# ============================================
# Update user
# ============================================

@users_bp.route('/users/<user_id>', methods=['PUT'])
@admin_required
def update_user(user_id, current_user):
    """
    Partial update; only the fields present in the body change
    """
    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No fields to update'}), 400

    is_valid, result = validate_request_data(UpdateUserSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not result:
        return jsonify({'error': 'No fields to update'}), 400

    if find_conflict(result.get('username'), result.get('email'), exclude_id=user.id):
        return jsonify({'error': 'Username or email already exists'}), 409

    if 'departmentId' in result and not department_exists(result['departmentId']):
        return jsonify({'error': 'Department not found'}), 400

    for field, column in (('username', 'username'), ('email', 'email'), ('role', 'role'),
                          ('departmentId', 'department_id'), ('active', 'active')):
        if field in result:
            setattr(user, column, result[field])

    if result.get('password'):
        user.password_hash = hash_password(result['password'])

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Username or email already exists'}), 409
    except Exception as e:
        db.session.rollback()
        logger.error(f"User update error for {user_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'User update failed due to server error'}), 500

    logger.info(f"User {user.username} updated by {current_user.username}")
    return jsonify(serialize_user(user)), 200

# ============================================
# Delete user
# ============================================

@users_bp.route('/users/<user_id>', methods=['DELETE'])
@admin_required
def delete_user(user_id, current_user):
    if user_id == current_user.id:
        return jsonify({'error': 'You cannot delete your own account'}), 400

    user = db.session.get(User, user_id)
    if not user:
        return jsonify({'error': 'User not found'}), 404

    try:
        username = user.username
        db.session.delete(user)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"User deletion error for {user_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'User deletion failed due to server error'}), 500

    logger.info(f"User {username} deleted by {current_user.username}")
    return jsonify({'id': user_id}), 200
