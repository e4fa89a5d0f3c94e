from flask import current_app
from werkzeug.utils import secure_filename
import mimetypes
import logging
import os
import uuid

logger = logging.getLogger(__name__)

# Sub-folders of UPLOAD_FOLDER, also the URL prefix under /uploads
DOCS_DIR = 'docs'
LOGOS_DIR = 'logos'


class UploadError(ValueError):
    """Rejected upload (missing file, bad extension)"""


def file_extension(filename):
    if '.' not in filename:
        return ''
    return filename.rsplit('.', 1)[1].lower()


def allowed_file(filename, allowed_extensions):
    return file_extension(filename) in allowed_extensions


def save_upload(file_storage, subdir, allowed_extensions=None):
    """
    Store an uploaded file under UPLOAD_FOLDER/<subdir>

    The stored name is a uuid prefix plus the sanitized original name.

    Returns:
        dict: fileName (original), filePath (public URL path), mimeType, size
    """
    if file_storage is None or not file_storage.filename:
        raise UploadError('A file is required')

    if allowed_extensions is None:
        allowed_extensions = current_app.config['ALLOWED_EXTENSIONS']

    original_name = file_storage.filename
    if not allowed_file(original_name, allowed_extensions):
        raise UploadError(
            f"File type not allowed. Allowed: {', '.join(sorted(allowed_extensions))}"
        )

    safe_name = secure_filename(original_name) or f'file.{file_extension(original_name)}'
    stored_name = f'{uuid.uuid4().hex}-{safe_name}'

    target_dir = os.path.join(current_app.config['UPLOAD_FOLDER'], subdir)
    os.makedirs(target_dir, exist_ok=True)
    target_path = os.path.join(target_dir, stored_name)

    file_storage.save(target_path)
    size = os.path.getsize(target_path)

    mime_type = file_storage.mimetype
    if not mime_type or mime_type == 'application/octet-stream':
        mime_type = mimetypes.guess_type(original_name)[0] or 'application/octet-stream'

    logger.info(f"Stored upload {original_name} as {subdir}/{stored_name} ({size} bytes)")

    return {
        'fileName': original_name,
        'filePath': f'/uploads/{subdir}/{stored_name}',
        'mimeType': mime_type,
        'size': size
    }


def remove_upload(file_path):
    """
    Delete a stored file given its public path; missing files are ignored
    """
    if not file_path or not file_path.startswith('/uploads/'):
        return False

    relative = file_path[len('/uploads/'):]
    full_path = os.path.join(current_app.config['UPLOAD_FOLDER'], *relative.split('/'))
    try:
        os.remove(full_path)
        logger.info(f"Removed upload {file_path}")
        return True
    except FileNotFoundError:
        logger.warning(f"Upload already gone: {file_path}")
        return False
    except OSError as e:
        logger.error(f"Could not remove upload {file_path}: {str(e)}")
        return False
