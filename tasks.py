from flask import Blueprint, request, jsonify
from sqlalchemy.orm import joinedload
from marshmallow import Schema, fields, validate, EXCLUDE
from models import (db, Task, Project, Department, User,
                    TASK_STATUSES, TASK_PRIORITIES, FINISHED_STATUSES)
from auth import login_required, validate_request_data
from storage import remove_upload
from datetime import datetime
import logging

tasks_bp = Blueprint('tasks', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class CreateTaskSchema(Schema):
    """Create task or subtask"""
    class Meta:
        unknown = EXCLUDE

    projectId = fields.Str(required=True, error_messages={'required': 'projectId is required'})
    parentTaskId = fields.Str(allow_none=True)
    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Task title is required'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    assignedTo = fields.Str(allow_none=True)
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES), load_default='pending')
    priority = fields.Str(validate=validate.OneOf(TASK_PRIORITIES), load_default='media')
    due = fields.Date(allow_none=True)
    effort = fields.Int(validate=validate.Range(min=0), load_default=0)
    departmentId = fields.Str(allow_none=True)


class UpdateTaskSchema(Schema):
    """Update task, every field optional"""
    class Meta:
        unknown = EXCLUDE

    parentTaskId = fields.Str(allow_none=True)
    title = fields.Str(validate=validate.Length(min=1, max=255))
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    assignedTo = fields.Str(allow_none=True)
    status = fields.Str(validate=validate.OneOf(TASK_STATUSES))
    priority = fields.Str(validate=validate.OneOf(TASK_PRIORITIES))
    due = fields.Date(allow_none=True)
    effort = fields.Int(validate=validate.Range(min=0))
    departmentId = fields.Str(allow_none=True)

# ============================================
# Helpers
# ============================================

def serialize_task(task, own_department_id=None):
    """
    Task as the frontend expects it

    ``own_department_id`` adds the ``isOwnDepartment`` flag used by
    department-scoped listings.
    """
    data = {
        'id': task.id,
        'projectId': task.project_id,
        'parentTaskId': task.parent_task_id,
        'departmentId': task.department_id,
        'title': task.title,
        'description': task.description,
        'assignedTo': task.assigned_to,
        'status': task.status,
        'priority': task.priority,
        'due': task.due.isoformat() if task.due else None,
        'effort': task.effort,
        'createdAt': task.created_at.isoformat() if task.created_at else None,
        'completedAt': task.completed_at.isoformat() if task.completed_at else None,
        'releasedVersionId': task.released_version_id,
        'releasedVersionName': task.released_version.version_name if task.released_version else None
    }
    if own_department_id is not None:
        data['isOwnDepartment'] = task.department_id == own_department_id
    return data


def apply_status(task, status, now=None):
    """
    Set the status and keep completed_at in step

    Entering a finished status stamps completed_at once; leaving it clears it.
    """
    if status in FINISHED_STATUSES:
        if task.status not in FINISHED_STATUSES or task.completed_at is None:
            task.completed_at = now or datetime.utcnow()
    else:
        task.completed_at = None
    task.status = status


def creates_cycle(task, new_parent):
    """True when ``new_parent`` is the task itself or one of its descendants"""
    node = new_parent
    while node is not None:
        if node.id == task.id:
            return True
        node = node.parent
    return False


def with_ancestors(tasks, department_id):
    """
    Tasks of one department plus every ancestor they need to hang from

    The extra ancestors keep the tree intact for department-scoped views.
    """
    by_id = {t.id: t for t in tasks}
    visible = {}
    for task in tasks:
        if task.department_id != department_id:
            continue
        node = task
        while node is not None and node.id not in visible:
            visible[node.id] = node
            node = by_id.get(node.parent_task_id)
    return [t for t in tasks if t.id in visible]


def build_task_tree(task_dicts):
    """
    Nest serialized tasks under their parents

    Tasks whose parent is not in the list become roots, so filtered lists
    still render.
    """
    nodes = {t['id']: dict(t, subtasks=[]) for t in task_dicts}
    roots = []
    for node in nodes.values():
        parent = nodes.get(node['parentTaskId'])
        if parent is not None:
            parent['subtasks'].append(node)
        else:
            roots.append(node)

    def sort_key(node):
        return node['createdAt'] or ''

    def sort_level(level):
        level.sort(key=sort_key)
        for node in level:
            sort_level(node['subtasks'])

    sort_level(roots)
    return roots


def filter_by_version(query, version):
    """
    ``current`` = not released yet, ``all`` or missing = everything,
    anything else is a version id
    """
    if not version or version == 'all':
        return query
    if version == 'current':
        return query.filter(Task.released_version_id.is_(None))
    return query.filter(Task.released_version_id == version)


def scoped_project_tasks(project_id, current_user):
    """
    Project tasks as seen by the current user

    Non-admin users always see their own department; admins may pass
    ``departmentId``.

    Returns:
        tuple: (tasks, department_id or None)
    """
    query = Task.query.filter_by(project_id=project_id).options(
        joinedload(Task.released_version)
    )
    query = filter_by_version(query, request.args.get('version'))

    status = request.args.get('status')
    if status:
        query = query.filter_by(status=status)

    tasks = query.order_by(Task.created_at.asc()).all()

    if current_user.is_admin:
        department_id = request.args.get('departmentId')
    else:
        department_id = current_user.department_id or ''

    if department_id is not None:
        tasks = with_ancestors(tasks, department_id)
    return tasks, department_id


def validate_references(result, project_id):
    """
    Check that referenced rows exist

    Returns:
        str|None: error message
    """
    if result.get('departmentId') and not db.session.get(Department, result['departmentId']):
        return 'Department not found'
    if result.get('assignedTo') and not db.session.get(User, result['assignedTo']):
        return 'Assigned user not found'
    if result.get('parentTaskId'):
        parent = db.session.get(Task, result['parentTaskId'])
        if not parent:
            return 'Parent task not found'
        if parent.project_id != project_id:
            return 'Parent task belongs to another project'
    return None

# ============================================
# Queries
# ============================================

@tasks_bp.route('/tasks', methods=['GET'])
@login_required
def list_tasks(current_user):
    """
    Every task, optionally filtered by ``departmentId`` or ``projectId``
    """
    query = Task.query.options(joinedload(Task.released_version))

    department_id = request.args.get('departmentId')
    if department_id:
        query = query.filter_by(department_id=department_id)
    project_id = request.args.get('projectId')
    if project_id:
        query = query.filter_by(project_id=project_id)

    tasks = query.order_by(Task.created_at.asc()).all()
    return jsonify([serialize_task(t) for t in tasks]), 200


@tasks_bp.route('/projects/<project_id>/tasks', methods=['GET'])
@login_required
def get_project_tasks(project_id, current_user):
    """
    Project tasks, department-scoped for non-admin users

    Query params: departmentId (admin only), status, version (current | all | <id>)
    """
    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    tasks, department_id = scoped_project_tasks(project_id, current_user)
    return jsonify([serialize_task(t, department_id) for t in tasks]), 200


@tasks_bp.route('/projects/<project_id>/tasks/tree', methods=['GET'])
@login_required
def get_project_task_tree(project_id, current_user):
    """Same task set as the flat listing, nested through ``subtasks``"""
    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    tasks, department_id = scoped_project_tasks(project_id, current_user)
    return jsonify(build_task_tree([serialize_task(t, department_id) for t in tasks])), 200


@tasks_bp.route('/tasks/<task_id>', methods=['GET'])
@login_required
def get_task(task_id, current_user):
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    return jsonify(serialize_task(task)), 200


@tasks_bp.route('/tasks/<task_id>/subtasks', methods=['GET'])
@login_required
def get_subtasks(task_id, current_user):
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404
    return jsonify([serialize_task(t) for t in task.subtasks]), 200

# ============================================
# Create task
# ============================================

@tasks_bp.route('/tasks', methods=['POST'])
@login_required
def create_task(current_user):
    """
    Create a task, or a subtask when ``parentTaskId`` is given

    A subtask without ``departmentId`` inherits its parent's department.
    """
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    project = db.session.get(Project, result['projectId'])
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    reference_error = validate_references(result, project.id)
    if reference_error:
        return jsonify({'error': reference_error}), 400

    department_id = result.get('departmentId')
    parent_id = result.get('parentTaskId')
    if parent_id and not department_id:
        department_id = db.session.get(Task, parent_id).department_id

    task = Task(
        project=project,
        parent_task_id=parent_id,
        department_id=department_id,
        title=result['title'],
        description=result.get('description'),
        assigned_to=result.get('assignedTo'),
        priority=result['priority'],
        due=result.get('due'),
        effort=result['effort'],
        created_at=datetime.utcnow()
    )
    apply_status(task, result['status'], now=task.created_at)

    try:
        db.session.add(task)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task creation failed due to server error'}), 500

    logger.info(f"Task created: {task.title} in project {project.id} by {current_user.username}")
    return jsonify(serialize_task(task)), 201

# ============================================
# Update task
# ============================================

@tasks_bp.route('/tasks/<task_id>', methods=['PUT'])
@login_required
def update_task(task_id, current_user):
    """
    Partial update

    The release tag (releasedVersionId) only changes through a version
    release and is rejected here.
    """
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'No fields to update'}), 400

    # Non-object bodies fail here, before any key lookup on data
    is_valid, result = validate_request_data(UpdateTaskSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if 'releasedVersionId' in data and data['releasedVersionId'] != task.released_version_id:
        return jsonify({'error': 'releasedVersionId is set by version releases only'}), 400

    reference_error = validate_references(result, task.project_id)
    if reference_error:
        return jsonify({'error': reference_error}), 400

    if 'parentTaskId' in result:
        new_parent = db.session.get(Task, result['parentTaskId']) if result['parentTaskId'] else None
        if new_parent is not None and creates_cycle(task, new_parent):
            return jsonify({'error': 'A task cannot be nested under itself or its subtasks'}), 400
        task.parent_task_id = result['parentTaskId']

    for field, column in (('title', 'title'), ('description', 'description'),
                          ('assignedTo', 'assigned_to'), ('priority', 'priority'),
                          ('due', 'due'), ('effort', 'effort'), ('departmentId', 'department_id')):
        if field in result:
            setattr(task, column, result[field])

    previous_status = task.status
    if 'status' in result:
        apply_status(task, result['status'])

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task update error for {task_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task update failed due to server error'}), 500

    if previous_status != task.status:
        logger.info(f"Task {task_id} moved {previous_status} -> {task.status} by {current_user.username}")
    return jsonify(serialize_task(task)), 200


@tasks_bp.route('/tasks/<task_id>/take', methods=['POST'])
@login_required
def take_task(task_id, current_user):
    """
    Claim an unassigned task of the user's own department
    """
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    if task.assigned_to:
        return jsonify({'error': 'Task is already assigned'}), 409

    if not task.department_id or task.department_id != current_user.department_id:
        return jsonify({'error': 'Only members of the task department can take it'}), 403

    task.assigned_to = current_user.id
    apply_status(task, 'in-progress')

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Take task error for {task_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Failed to take task due to server error'}), 500

    logger.info(f"Task {task_id} taken by {current_user.username}")
    return jsonify(serialize_task(task)), 200

# ============================================
# Delete task
# ============================================

@tasks_bp.route('/tasks/<task_id>', methods=['DELETE'])
@login_required
def delete_task(task_id, current_user):
    """
    Delete a task together with its subtasks, comments and documents
    """
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    stored_files = []
    pending = [task]
    while pending:
        node = pending.pop()
        stored_files.extend(d.file_path for d in node.documents)
        pending.extend(node.subtasks)

    try:
        db.session.delete(task)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task deletion error for {task_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Task deletion failed due to server error'}), 500

    for path in stored_files:
        remove_upload(path)

    logger.info(f"Task {task_id} deleted by {current_user.username}")
    return jsonify({'id': task_id}), 200
