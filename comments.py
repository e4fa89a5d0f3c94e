from flask import Blueprint, request, jsonify
from marshmallow import Schema, fields, validate, validates, ValidationError, EXCLUDE
from models import db, Task, TaskComment
from auth import login_required, validate_request_data
import logging

comments_bp = Blueprint('comments', __name__)
logger = logging.getLogger(__name__)


class TaskCommentSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    comment = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=5000),
        error_messages={'required': 'comment is required'}
    )

    @validates('comment')
    def not_blank(self, value, **kwargs):
        if not value.strip():
            raise ValidationError('Comment cannot be empty')


def serialize_task_comment(comment):
    return {
        'id': comment.id,
        'taskId': comment.task_id,
        'userId': comment.user_id,
        'userName': comment.user.username if comment.user else None,
        'comment': comment.comment,
        'versionId': comment.version_id,
        'versionName': comment.version.version_name if comment.version else None,
        'createdAt': comment.created_at.isoformat() if comment.created_at else None
    }


@comments_bp.route('/tasks/<task_id>/comments', methods=['GET'])
@login_required
def list_task_comments(task_id, current_user):
    """Task comments, oldest first"""
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    comments = TaskComment.query.filter_by(task_id=task_id).order_by(
        TaskComment.created_at.asc()
    ).all()
    return jsonify([serialize_task_comment(c) for c in comments]), 200


@comments_bp.route('/tasks/<task_id>/comments', methods=['POST'])
@login_required
def create_task_comment(task_id, current_user):
    """
    Add a comment as the current user

    New comments are unversioned; the next release of the project picks them up.
    """
    task = db.session.get(Task, task_id)
    if not task:
        return jsonify({'error': 'Task not found'}), 404

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'Request body must be JSON'}), 400

    is_valid, result = validate_request_data(TaskCommentSchema, data)
    if not is_valid:
        return jsonify({'error': 'Validation failed', 'details': result}), 400

    comment = TaskComment(
        task=task,
        user=current_user,
        comment=result['comment'].strip()
    )

    try:
        db.session.add(comment)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Task comment error on {task_id}: {str(e)}", exc_info=True)
        return jsonify({'error': 'Comment creation failed due to server error'}), 500

    logger.info(f"Comment added to task {task_id} by {current_user.username}")
    return jsonify(serialize_task_comment(comment)), 201
