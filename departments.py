from flask import Blueprint, request, jsonify, current_app
from marshmallow import Schema, fields, validate, EXCLUDE
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from models import db, Department, User, Task
from auth import login_required, admin_required, validate_request_data
import analytics
import logging

departments_bp = Blueprint('departments', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

HEX_COLOR = validate.Regexp(r'^#(?:[0-9a-fA-F]{3}){1,2}$', error='Color must be a hex value like #1e88e5')


class DepartmentSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100),
        error_messages={'required': 'name is required'}
    )
    color = fields.Str(validate=HEX_COLOR)


def serialize_department(department):
    return {
        'id': department.id,
        'name': department.name,
        'color': department.color
    }

# ============================================
# CRUD
# ============================================

@departments_bp.route('/departments', methods=['GET'])
@login_required
def list_departments(current_user):
    departments = Department.query.order_by(Department.name).all()
    return jsonify([serialize_department(d) for d in departments]), 200


@departments_bp.route('/departments', methods=['POST'])
@admin_required
def create_department(current_user):
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(DepartmentSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if Department.query.filter_by(name=result['name']).first():
        return jsonify({'error': 'Department name already exists'}), 409

    department = Department(
        name=result['name'],
        color=result.get('color') or current_app.config['DEFAULT_DEPARTMENT_COLOR']
    )

    try:
        db.session.add(department)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify({'error': 'Department name already exists'}), 409
    except Exception as e:
        db.session.rollback()
        logger.error(f"Department creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Department creation failed due to server error'}), 500

    logger.info(f"Department created: {department.name} by {current_user.username}")
    return jsonify(serialize_department(department)), 201


@departments_bp.route('/departments/<department_id>', methods=['PUT'])
@admin_required
def update_department(department_id, current_user):
    department = db.session.get(Department, department_id)
    if not department:
        return jsonify({'error': 'Department not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(DepartmentSchema, data, partial=True)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if 'name' in result:
        clash = Department.query.filter(
            Department.name == result['name'], Department.id != department.id
        ).first()
        if clash:
            return jsonify({'error': 'Department name already exists'}), 409
        department.name = result['name']
    if result.get('color'):
        department.color = result['color']

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Department update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Department update failed due to server error'}), 500

    logger.info(f"Department {department.id} updated by {current_user.username}")
    return jsonify(serialize_department(department)), 200


@departments_bp.route('/departments/<department_id>', methods=['DELETE'])
@admin_required
def delete_department(department_id, current_user):
    """
    Delete a department nobody references any more
    """
    department = db.session.get(Department, department_id)
    if not department:
        return jsonify({'error': 'Department not found'}), 404

    user_count = User.query.filter_by(department_id=department_id).count()
    task_count = Task.query.filter_by(department_id=department_id).count()
    if user_count or task_count:
        return jsonify({
            'error': 'Department is still in use',
            'users': user_count,
            'tasks': task_count
        }), 409

    try:
        db.session.delete(department)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Department deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Department deletion failed due to server error'}), 500

    logger.info(f"Department {department_id} deleted by {current_user.username}")
    return jsonify({'id': department_id}), 200

# ============================================
# Dashboard metrics
# ============================================

@departments_bp.route('/departments/<department_id>/metrics', methods=['GET'])
@login_required
def department_metrics(department_id, current_user):
    """
    Dashboard analytics for one department

    Optional ``projectId`` narrows the task set to a single project.
    """
    department = db.session.get(Department, department_id)
    if not department:
        return jsonify({'error': 'Department not found'}), 404

    if not current_user.is_admin and current_user.department_id != department_id:
        return jsonify({'error': 'Permission denied'}), 403

    query = Task.query.filter_by(department_id=department_id)
    project_id = request.args.get('projectId')
    if project_id:
        query = query.filter_by(project_id=project_id)
    tasks = query.all()

    return jsonify({
        'department': serialize_department(department),
        **analytics.dashboard(tasks, datetime.utcnow())
    }), 200
