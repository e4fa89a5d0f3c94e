from flask import Blueprint, request, jsonify, current_app
from sqlalchemy import func, case
from marshmallow import Schema, fields, validate, validates, validates_schema, ValidationError, EXCLUDE
from models import (db, Project, Task, Department, Workspace, ProjectComment,
                    FINISHED_STATUSES, PROJECT_STATUSES)
from auth import login_required, admin_required, validate_request_data, read_payload
from storage import save_upload, remove_upload, UploadError, LOGOS_DIR
from analytics import percent
import logging

projects_bp = Blueprint('projects', __name__)
logger = logging.getLogger(__name__)

# ============================================
# Input Validation Schemas
# ============================================

class ProjectSchema(Schema):
    """Create/update project, JSON or multipart form"""
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'Project name is required'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    status = fields.Str(validate=validate.OneOf(PROJECT_STATUSES))
    start = fields.Date(allow_none=True)
    end = fields.Date(allow_none=True)
    workspaceId = fields.Str(allow_none=True)

    @validates_schema
    def check_dates(self, data, **kwargs):
        if data.get('start') and data.get('end') and data['end'] < data['start']:
            raise ValidationError('End date must not be before start date', 'end')


class ProjectCommentSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    message = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=5000),
        error_messages={'required': 'message is required'}
    )

    @validates('message')
    def not_blank(self, value, **kwargs):
        if not value.strip():
            raise ValidationError('Message cannot be empty')

# ============================================
# Helpers
# ============================================

def serialize_project(project):
    return {
        'id': project.id,
        'name': project.name,
        'description': project.description,
        'status': project.status,
        'start': project.start.isoformat() if project.start else None,
        'end': project.end.isoformat() if project.end else None,
        'createdBy': project.created_by,
        'logo': project.logo,
        'workspaceId': project.workspace_id,
        'createdAt': project.created_at.isoformat() if project.created_at else None,
        'updatedAt': project.updated_at.isoformat() if project.updated_at else None
    }


def serialize_project_comment(comment):
    return {
        'id': comment.id,
        'projectId': comment.project_id,
        'userId': comment.user_id,
        'author': comment.user.username if comment.user else None,
        'message': comment.message,
        'createdAt': comment.created_at.isoformat() if comment.created_at else None
    }


def get_project_or_404(project_id):
    """
    Returns:
        tuple: (project, error_response) where exactly one is None
    """
    project = db.session.get(Project, project_id)
    if not project:
        return None, (jsonify({'error': 'Project not found'}), 404)
    return project, None


def workspace_exists(workspace_id):
    return workspace_id is None or db.session.get(Workspace, workspace_id) is not None


def store_logo():
    """Save the multipart ``logo`` file if one was sent, returning its path"""
    logo = request.files.get('logo')
    if logo is None or not logo.filename:
        return None
    return save_upload(logo, LOGOS_DIR, current_app.config['LOGO_EXTENSIONS'])['filePath']

# ============================================
# List / detail
# ============================================

@projects_bp.route('/projects', methods=['GET'])
@login_required
def list_projects(current_user):
    """
    All projects, or with ``departmentId`` only those holding tasks of that department
    """
    query = Project.query
    department_id = request.args.get('departmentId')
    if department_id:
        department_projects = db.session.query(Task.project_id).filter(
            Task.department_id == department_id
        )
        query = query.filter(Project.id.in_(department_projects))

    projects = query.order_by(Project.created_at.desc()).all()
    return jsonify([serialize_project(p) for p in projects]), 200


@projects_bp.route('/projects/<project_id>', methods=['GET'])
@login_required
def get_project(project_id, current_user):
    project, error = get_project_or_404(project_id)
    if error:
        return error
    return jsonify(serialize_project(project)), 200

# ============================================
# Create project
# ============================================

@projects_bp.route('/projects', methods=['POST'])
@login_required
def create_project(current_user):
    """
    Create a project

    Accepts JSON or multipart form data; the form variant may carry a ``logo``
    image.
    """
    data = read_payload()
    if not data:
        return jsonify({'error': 'Request body is required'}), 400

    is_valid, result = validate_request_data(ProjectSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if not workspace_exists(result.get('workspaceId')):
        return jsonify({'error': 'Workspace not found'}), 400

    try:
        logo_path = store_logo()
    except UploadError as e:
        return jsonify({'error': str(e)}), 400

    project = Project(
        name=result['name'],
        description=result.get('description'),
        status=result.get('status') or 'development',
        start=result.get('start'),
        end=result.get('end'),
        workspace_id=result.get('workspaceId'),
        created_by=current_user.id,
        logo=logo_path
    )

    try:
        db.session.add(project)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        remove_upload(logo_path)
        logger.error(f"Project creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project creation failed due to server error'}), 500

    logger.info(f"Project created: {project.name} by user {current_user.username}")
    return jsonify(serialize_project(project)), 201

# ============================================
# Update project
# ============================================

@projects_bp.route('/projects/<project_id>', methods=['PUT'])
@login_required
def update_project(project_id, current_user):
    """
    Partial update; a new ``logo`` replaces the stored one
    """
    project, error = get_project_or_404(project_id)
    if error:
        return error

    data = read_payload()
    has_logo = 'logo' in request.files and bool(request.files['logo'].filename)
    if not data and not has_logo:
        return jsonify({'error': 'No fields to update'}), 400

    is_valid, result = validate_request_data(ProjectSchema, data or {}, partial=True)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    if 'workspaceId' in result and not workspace_exists(result['workspaceId']):
        return jsonify({'error': 'Workspace not found'}), 400

    start = result.get('start', project.start)
    end = result.get('end', project.end)
    if start and end and end < start:
        return jsonify({'error': 'Validation failed',
                        'details': {'end': ['End date must not be before start date']}}), 400

    try:
        new_logo = store_logo()
    except UploadError as e:
        return jsonify({'error': str(e)}), 400

    changes = {}
    for field, column in (('name', 'name'), ('description', 'description'), ('status', 'status'),
                          ('start', 'start'), ('end', 'end'), ('workspaceId', 'workspace_id')):
        if field in result and getattr(project, column) != result[field]:
            changes[field] = result[field]
            setattr(project, column, result[field])

    old_logo = project.logo
    if new_logo:
        project.logo = new_logo
        changes['logo'] = new_logo

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        remove_upload(new_logo)
        logger.error(f"Project update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project update failed due to server error'}), 500

    if new_logo and old_logo:
        remove_upload(old_logo)

    logger.info(f"Project {project_id} updated by {current_user.username}: {sorted(changes)}")
    return jsonify(serialize_project(project)), 200

# ============================================
# Delete project
# ============================================

@projects_bp.route('/projects/<project_id>', methods=['DELETE'])
@admin_required
def delete_project(project_id, current_user):
    """
    Delete a project with its tasks, versions, documents and comments
    """
    project, error = get_project_or_404(project_id)
    if error:
        return error

    stored_files = [d.file_path for d in project.documents] + [d.file_path for d in project.task_documents]
    if project.logo:
        stored_files.append(project.logo)

    try:
        project_name = project.name
        db.session.delete(project)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Project deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Project deletion failed due to server error'}), 500

    for path in stored_files:
        remove_upload(path)

    logger.info(f"Project deleted: {project_name} by user {current_user.username}")
    return jsonify({'id': project_id}), 200

# ============================================
# Stats and department progress
# ============================================

def finished_count():
    return func.sum(case((Task.status.in_(FINISHED_STATUSES), 1), else_=0))


@projects_bp.route('/projects/<project_id>/stats', methods=['GET'])
@login_required
def get_project_stats(project_id, current_user):
    project, error = get_project_or_404(project_id)
    if error:
        return error

    total, completed = db.session.query(
        func.count(Task.id),
        finished_count()
    ).filter(Task.project_id == project_id).one()

    return jsonify({'total': total or 0, 'completed': int(completed or 0)}), 200


@projects_bp.route('/projects/<project_id>/progress', methods=['GET'])
@login_required
def get_project_progress(project_id, current_user):
    """
    Per-department progress of a project

    One entry for every department, zero counts included, so the client
    decides which ones to show.
    """
    project, error = get_project_or_404(project_id)
    if error:
        return error

    rows = db.session.query(
        Task.department_id,
        func.count(Task.id).label('total'),
        finished_count().label('completed'),
        func.sum(case((Task.status == 'in-progress', 1), else_=0)).label('in_progress'),
        func.sum(case((Task.status == 'pending', 1), else_=0)).label('pending'),
        func.sum(case((Task.status == 'cancelled', 1), else_=0)).label('cancelled')
    ).filter(Task.project_id == project_id).group_by(Task.department_id).all()
    by_department = {row.department_id: row for row in rows}

    progress = []
    for department in Department.query.order_by(Department.name).all():
        row = by_department.get(department.id)
        total = row.total if row else 0
        completed = int(row.completed or 0) if row else 0
        progress.append({
            'department': {
                'id': department.id,
                'name': department.name,
                'color': department.color
            },
            'total': total,
            'completed': completed,
            'inProgress': int(row.in_progress or 0) if row else 0,
            'pending': int(row.pending or 0) if row else 0,
            'cancelled': int(row.cancelled or 0) if row else 0,
            'progress': percent(completed, total)
        })

    return jsonify(progress), 200

# ============================================
# Project comments
# ============================================

@projects_bp.route('/projects/<project_id>/comments', methods=['GET'])
@login_required
def list_project_comments(project_id, current_user):
    project, error = get_project_or_404(project_id)
    if error:
        return error

    comments = ProjectComment.query.filter_by(project_id=project_id).order_by(
        ProjectComment.created_at.asc()
    ).all()
    return jsonify([serialize_project_comment(c) for c in comments]), 200


@projects_bp.route('/projects/<project_id>/comments', methods=['POST'])
@login_required
def create_project_comment(project_id, current_user):
    project, error = get_project_or_404(project_id)
    if error:
        return error

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(ProjectCommentSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    comment = ProjectComment(
        project=project,
        user=current_user,
        message=result['message'].strip()
    )

    try:
        db.session.add(comment)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Project comment error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Comment creation failed due to server error'}), 500

    return jsonify(serialize_project_comment(comment)), 201
