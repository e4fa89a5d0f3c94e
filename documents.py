from flask import Blueprint, request, jsonify
from marshmallow import Schema, fields, validate, EXCLUDE
from models import db, Project, Task, ProjectVersion, ProjectDocument, TaskDocument
from auth import login_required, validate_request_data, read_payload
from storage import save_upload, remove_upload, UploadError, DOCS_DIR
import logging

documents_bp = Blueprint('documents', __name__)
logger = logging.getLogger(__name__)


class DocumentSchema(Schema):
    """Form fields sent next to the uploaded ``file``"""
    class Meta:
        unknown = EXCLUDE

    title = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=255),
        error_messages={'required': 'title is required'}
    )
    description = fields.Str(allow_none=True, validate=validate.Length(max=5000))
    versionId = fields.Str(allow_none=True)

# ============================================
# Serializers
# ============================================

def _document_fields(document):
    return {
        'id': document.id,
        'projectId': document.project_id,
        'versionId': document.version_id,
        'versionName': document.version.version_name if document.version else None,
        'title': document.title,
        'description': document.description,
        'fileName': document.file_name,
        'filePath': document.file_path,
        'mimeType': document.mime_type,
        'size': document.size,
        'createdBy': document.created_by,
        'createdByName': document.creator.username if document.creator else None,
        'createdAt': document.created_at.isoformat() if document.created_at else None
    }


def serialize_project_document(document):
    return _document_fields(document)


def serialize_task_document(document):
    data = _document_fields(document)
    data['taskId'] = document.task_id
    data['taskTitle'] = document.task.title if document.task else None
    return data

# ============================================
# Helpers
# ============================================

def read_document_upload(project_id):
    """
    Validate the form fields and store the file

    Returns:
        tuple: (fields, stored_file, error_response) with error_response None on success
    """
    data = read_payload() or {}
    is_valid, result = validate_request_data(DocumentSchema, data)
    if not is_valid:
        return None, None, (jsonify({'error': 'Validation failed', 'details': result}), 400)

    version_id = result.get('versionId')
    if version_id:
        version = db.session.get(ProjectVersion, version_id)
        if not version or version.project_id != project_id:
            return None, None, (jsonify({'error': 'Version not found for this project'}), 400)

    try:
        stored = save_upload(request.files.get('file'), DOCS_DIR)
    except UploadError as e:
        return None, None, (jsonify({'error': str(e)}), 400)

    return result, stored, None


def commit_document(document, stored, label):
    try:
        db.session.add(document)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        remove_upload(stored['filePath'])
        logger.error(f"{label} upload error: {str(e)}", exc_info=True)
        return jsonify({'error': 'Document upload failed due to server error'}), 500
    return None

# ============================================
# Project documents
# ============================================

@documents_bp.route('/projects/<project_id>/documents', methods=['GET'])
@login_required
def list_project_documents(project_id, current_user):
    """
    Project documents together with the documents of its tasks, newest first
    """
    if not db.session.get(Project, project_id):
        return jsonify({'error': 'Project not found'}), 404

    project_docs = ProjectDocument.query.filter_by(project_id=project_id).all()
    task_docs = TaskDocument.query.filter_by(project_id=project_id).all()

    documents = [serialize_project_document(d) for d in project_docs]
    documents.extend(serialize_task_document(d) for d in task_docs)
    documents.sort(key=lambda d: d['createdAt'] or '', reverse=True)

    return jsonify(documents), 200


@documents_bp.route('/projects/<project_id>/documents', methods=['POST'])
@login_required
def upload_project_document(project_id, current_user):
    """
    Multipart upload: ``file``, ``title``, optional ``description`` and ``versionId``
    """
    project = db.session.get(Project, project_id)
    if not project:
        return jsonify({'error': 'Project not found'}), 404

    result, stored, error = read_document_upload(project_id)
    if error:
        return error

    document = ProjectDocument(
        project=project,
        version_id=result.get('versionId'),
        title=result['title'],
        description=result.get('description'),
        file_name=stored['fileName'],
        file_path=stored['filePath'],
        mime_type=stored['mimeType'],
        size=stored['size'],
        created_by=current_user.id
    )

    error = commit_document(document, stored, 'Project document')
    if error:
        return error

    logger.info(f"Document {document.file_name} uploaded to project {project_id} by {current_user.username}")
    return jsonify(serialize_project_document(document)), 201

# ============================================
# Task documents
# ============================================

@documents_bp.route('/tasks/<task_id>/documents', methods=['GET'])
@login_required
def list_task_documents(task_id, current_user):
    if not db.session.get(Task, task_id):
        return jsonify({'error': 'Task not found'}), 404

    documents = TaskDocument.query.filter_by(task_id=task_id).order_by(
        TaskDocument.created_at.desc()
    ).all()
    return jsonify([serialize_task_document(d) for d in documents]), 200


@documents_bp.route('/tasks/<task_id>/documents', methods=['POST'])
@login_required
def upload_task_document(task_id, current_user):
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    result, stored, error = read_document_upload(task.project_id)
    if error:
        return error

    document = TaskDocument(
        task=task,
        project_id=task.project_id,
        version_id=result.get('versionId'),
        title=result['title'],
        description=result.get('description'),
        file_name=stored['fileName'],
        file_path=stored['filePath'],
        mime_type=stored['mimeType'],
        size=stored['size'],
        created_by=current_user.id
    )

    error = commit_document(document, stored, 'Task document')
    if error:
        return error

    logger.info(f"Document {document.file_name} uploaded to task {task_id} by {current_user.username}")
    return jsonify(serialize_task_document(document)), 201
