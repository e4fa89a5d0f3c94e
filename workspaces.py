from flask import Blueprint, request, jsonify, current_app
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Workspace, Project
from auth import login_required, admin_required, validate_request_data
from departments import HEX_COLOR
import logging

workspaces_bp = Blueprint('workspaces', __name__)
logger = logging.getLogger(__name__)


class WorkspaceSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    name = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'name is required'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=2000))
    color = fields.Str(validate=HEX_COLOR)
    icon = fields.Str(allow_none=True, validate=validate.Length(max=100))


def serialize_workspace(workspace):
    return {
        'id': workspace.id,
        'name': workspace.name,
        'description': workspace.description,
        'color': workspace.color,
        'icon': workspace.icon,
        'createdAt': workspace.created_at.isoformat() if workspace.created_at else None
    }


@workspaces_bp.route('/workspaces', methods=['GET'])
@login_required
def list_workspaces(current_user):
    workspaces = Workspace.query.order_by(Workspace.created_at.desc()).all()
    return jsonify([serialize_workspace(w) for w in workspaces]), 200


@workspaces_bp.route('/workspaces/<workspace_id>', methods=['GET'])
@login_required
def get_workspace(workspace_id, current_user):
    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return jsonify({'error': 'Workspace not found'}), 404
    return jsonify(serialize_workspace(workspace)), 200


@workspaces_bp.route('/workspaces/<workspace_id>/projects', methods=['GET'])
@login_required
def get_workspace_projects(workspace_id, current_user):
    from projects import serialize_project

    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return jsonify({'error': 'Workspace not found'}), 404

    projects = Project.query.filter_by(workspace_id=workspace_id).order_by(Project.created_at.desc()).all()
    return jsonify([serialize_project(p) for p in projects]), 200


@workspaces_bp.route('/workspaces', methods=['POST'])
@admin_required
def create_workspace(current_user):
    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(WorkspaceSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    workspace = Workspace(
        name=result['name'],
        description=result.get('description'),
        color=result.get('color') or current_app.config['DEFAULT_WORKSPACE_COLOR'],
        icon=result.get('icon')
    )

    try:
        db.session.add(workspace)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Workspace creation error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Workspace creation failed due to server error'}), 500

    logger.info(f"Workspace created: {workspace.name} by {current_user.username}")
    return jsonify(serialize_workspace(workspace)), 201


@workspaces_bp.route('/workspaces/<workspace_id>', methods=['PUT'])
@admin_required
def update_workspace(workspace_id, current_user):
    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return jsonify({'error': 'Workspace not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(WorkspaceSchema, data, partial=True)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    for field in ('name', 'description', 'color', 'icon'):
        if field in result:
            setattr(workspace, field, result[field])

    try:
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Workspace update error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Workspace update failed due to server error'}), 500

    return jsonify(serialize_workspace(workspace)), 200


@workspaces_bp.route('/workspaces/<workspace_id>', methods=['DELETE'])
@admin_required
def delete_workspace(workspace_id, current_user):
    """
    Delete a workspace; its projects stay, detached
    """
    workspace = db.session.get(Workspace, workspace_id)
    if not workspace:
        return jsonify({'error': 'Workspace not found'}), 404

    try:
        detached = Project.query.filter_by(workspace_id=workspace_id).update(
            {'workspace_id': None}, synchronize_session='fetch'
        )
        db.session.delete(workspace)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Workspace deletion error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Workspace deletion failed due to server error'}), 500

    logger.info(f"Workspace {workspace_id} deleted by {current_user.username}, {detached} projects detached")
    return jsonify({'message': 'Workspace deleted successfully'}), 200
