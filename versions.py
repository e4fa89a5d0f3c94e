"""
Project releases

A release freezes the finished work of a project: every finished task that
was never released, and every document and task comment not yet tied to a
version, get tagged with the new version id in one transaction. The version
row keeps a JSON snapshot of what was tagged.
"""
from flask import Blueprint, request, jsonify
from marshmallow import Schema, fields, validate, validates, ValidationError, EXCLUDE
from sqlalchemy.exc import IntegrityError
from datetime import datetime
from models import (db, new_id, Project, ProjectVersion, Task, TaskComment,
                    ProjectDocument, TaskDocument, FINISHED_STATUSES)
from auth import login_required, validate_request_data
from projects import serialize_project
from tasks import serialize_task
from comments import serialize_task_comment
from documents import serialize_project_document, serialize_task_document
import logging

versions_bp = Blueprint('versions', __name__)
logger = logging.getLogger(__name__)


class CreateVersionSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    versionName = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=100),
        error_messages={'required': 'versionName is required'}
    )

    @validates('versionName')
    def not_blank(self, value, **kwargs):
        if not value.strip():
            raise ValidationError('versionName cannot be empty')

# ============================================
# Serializers
# ============================================

def serialize_version(version):
    return {
        'id': version.id,
        'projectId': version.project_id,
        'versionName': version.version_name,
        'snapshotData': version.snapshot_data,
        'createdBy': version.created_by,
        'createdByName': version.creator.username if version.creator else None,
        'createdAt': version.created_at.isoformat() if version.created_at else None
    }


def serialize_version_summary(version):
    """Version without the snapshot body, for cross-project listings"""
    snapshot = version.snapshot_data or {}
    project = version.project
    return {
        'id': version.id,
        'projectId': version.project_id,
        'versionName': version.version_name,
        'createdBy': version.created_by,
        'createdByName': version.creator.username if version.creator else None,
        'createdAt': version.created_at.isoformat() if version.created_at else None,
        'projectName': project.name if project else None,
        'projectStatus': project.status if project else None,
        'workspaceId': project.workspace_id if project else None,
        'tasksCount': len(snapshot.get('tasks', [])),
        'documentsCount': len(snapshot.get('documents', [])),
        'commentsCount': len(snapshot.get('comments', []))
    }

# ============================================
# Release candidates
# ============================================

def unreleased_tasks(project_id, lock=False):
    query = Task.query.filter(
        Task.project_id == project_id,
        Task.status.in_(FINISHED_STATUSES),
        Task.released_version_id.is_(None)
    ).order_by(Task.created_at.asc())
    if lock:
        query = query.with_for_update()
    return query.all()


def unversioned_project_documents(project_id):
    return ProjectDocument.query.filter(
        ProjectDocument.project_id == project_id,
        ProjectDocument.version_id.is_(None)
    ).order_by(ProjectDocument.created_at.asc()).all()


def unversioned_task_documents(project_id):
    return TaskDocument.query.filter(
        TaskDocument.project_id == project_id,
        TaskDocument.version_id.is_(None)
    ).order_by(TaskDocument.created_at.asc()).all()


def unversioned_task_comments(project_id):
    return TaskComment.query.join(Task, TaskComment.task_id == Task.id).filter(
        Task.project_id == project_id,
        TaskComment.version_id.is_(None)
    ).order_by(TaskComment.created_at.asc()).all()


def collect_release(project_id, lock=False):
    """
    Everything the next release of a project would tag

    Returns:
        tuple: (tasks, project_documents, task_documents, comments)
    """
    return (
        unreleased_tasks(project_id, lock=lock),
        unversioned_project_documents(project_id),
        unversioned_task_documents(project_id),
        unversioned_task_comments(project_id)
    )


def is_duplicate_version_name(error):
    """
    True when an IntegrityError comes from the (project_id, version_name) unique key

    MySQL names the key; SQLite only lists the columns.
    """
    message = str(error.orig)
    return ('unique_project_version_name' in message
            or 'project_versions.version_name' in message)


def build_snapshot(project, tasks, project_docs, task_docs, comments, version_id, version_name, now):
    """JSON body stored on the version; rows appear as they look once tagged"""
    tagged_task = {'releasedVersionId': version_id, 'releasedVersionName': version_name}
    tagged = {'versionId': version_id, 'versionName': version_name}
    return {
        'project': serialize_project(project),
        'tasks': [dict(serialize_task(t), **tagged_task) for t in tasks],
        'documents': [dict(serialize_project_document(d), **tagged) for d in project_docs]
                     + [dict(serialize_task_document(d), **tagged) for d in task_docs],
        'comments': [dict(serialize_task_comment(c), **tagged) for c in comments],
        'timestamp': now.isoformat()
    }

# ============================================
# Routes
# ============================================

@versions_bp.route('/projects/<project_id>/version-preview', methods=['GET'])
@login_required
def preview_version(project_id, current_user):
    """What a release created now would contain; nothing is written"""
    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    tasks, project_docs, task_docs, comments = collect_release(project_id)
    documents = [serialize_project_document(d) for d in project_docs] + \
                [serialize_task_document(d) for d in task_docs]

    return jsonify({
        'tasks': [serialize_task(t) for t in tasks],
        'documents': documents,
        'comments': [serialize_task_comment(c) for c in comments],
        'summary': {
            'tasksCount': len(tasks),
            'documentsCount': len(documents),
            'commentsCount': len(comments)
        }
    }), 200


@versions_bp.route('/projects/<project_id>/versions', methods=['POST'])
@login_required
def create_version(project_id, current_user):
    """
    Release the project's finished work as a new version

    Selection, snapshot and tagging run in one transaction. Each tagging
    UPDATE only touches rows whose version column is still NULL, so a row
    released concurrently keeps its first version.

    Returns 400 when there is nothing to release.
    """
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(CreateVersionSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    version_name = result['versionName'].strip()
    if ProjectVersion.query.filter_by(project_id=project_id, version_name=version_name).first():
        return jsonify({'error': f'Version {version_name} already exists for this project'}), 409

    try:
        tasks, project_docs, task_docs, comments = collect_release(project_id, lock=True)

        if not (tasks or project_docs or task_docs or comments):
            db.session.rollback()
            return jsonify({'error': 'Nothing to release: no finished tasks, documents or comments '
                                     'without a version'}), 400

        now = datetime.utcnow()
        version_id = new_id()
        version = ProjectVersion(
            id=version_id,
            project_id=project_id,
            version_name=version_name,
            snapshot_data=build_snapshot(project, tasks, project_docs, task_docs, comments,
                                         version_id, version_name, now),
            created_by=current_user.id,
            created_at=now
        )
        db.session.add(version)
        db.session.flush()

        tagged_tasks = Task.query.filter(
            Task.id.in_([t.id for t in tasks]),
            Task.released_version_id.is_(None)
        ).update({Task.released_version_id: version_id}, synchronize_session=False)

        tagged_project_docs = ProjectDocument.query.filter(
            ProjectDocument.id.in_([d.id for d in project_docs]),
            ProjectDocument.version_id.is_(None)
        ).update({ProjectDocument.version_id: version_id}, synchronize_session=False)

        tagged_task_docs = TaskDocument.query.filter(
            TaskDocument.id.in_([d.id for d in task_docs]),
            TaskDocument.version_id.is_(None)
        ).update({TaskDocument.version_id: version_id}, synchronize_session=False)

        tagged_comments = TaskComment.query.filter(
            TaskComment.id.in_([c.id for c in comments]),
            TaskComment.version_id.is_(None)
        ).update({TaskComment.version_id: version_id}, synchronize_session=False)

        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        if is_duplicate_version_name(e):
            return jsonify({'error': f'Version {version_name} already exists for this project'}), 409
        logger.error(f"Version creation integrity error for project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Version creation failed due to server error'}), 500
    except Exception as e:
        db.session.rollback()
        logger.error(f"Version creation error for project {project_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Version creation failed due to server error'}), 500

    logger.info(
        f"Version {version_name} of project {project_id} created by {current_user.username}: "
        f"{tagged_tasks} tasks, {tagged_project_docs + tagged_task_docs} documents, "
        f"{tagged_comments} comments"
    )
    return jsonify(serialize_version(version)), 201


@versions_bp.route('/projects/<project_id>/versions', methods=['GET'])
@login_required
def list_project_versions(project_id, current_user):
    """Versions of one project, newest first"""
    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    versions = ProjectVersion.query.filter_by(project_id=project_id).order_by(
        ProjectVersion.created_at.desc()
    ).all()
    return jsonify([serialize_version(v) for v in versions]), 200


@versions_bp.route('/versions', methods=['GET'])
@login_required
def list_versions(current_user):
    """
    Version summaries across projects, newest first

    Optional ``projectId`` / ``workspaceId`` narrow the list.
    """
    query = ProjectVersion.query.join(Project, ProjectVersion.project_id == Project.id)

    project_id = request.args.get('projectId')
    if project_id:
        query = query.filter(ProjectVersion.project_id == project_id)
    workspace_id = request.args.get('workspaceId')
    if workspace_id:
        query = query.filter(Project.workspace_id == workspace_id)

    versions = query.order_by(ProjectVersion.created_at.desc()).all()
    return jsonify([serialize_version_summary(v) for v in versions]), 200


@versions_bp.route('/versions/<version_id>', methods=['GET'])
@login_required
def get_version(version_id, current_user):
    """A version with the rows currently tagged with it"""
    version = db.session.get(ProjectVersion, version_id)
    if not version:
        return jsonify({'error': 'Version not found'}), 404

    tasks = Task.query.filter_by(released_version_id=version_id).order_by(Task.created_at.asc()).all()
    project_docs = ProjectDocument.query.filter_by(version_id=version_id).all()
    task_docs = TaskDocument.query.filter_by(version_id=version_id).all()
    comments = TaskComment.query.filter_by(version_id=version_id).order_by(
        TaskComment.created_at.asc()
    ).all()

    data = serialize_version(version)
    data.update({
        'projectName': version.project.name if version.project else None,
        'tasks': [serialize_task(t) for t in tasks],
        'documents': [serialize_project_document(d) for d in project_docs]
                     + [serialize_task_document(d) for d in task_docs],
        'comments': [serialize_task_comment(c) for c in comments]
    })
    return jsonify(data), 200
