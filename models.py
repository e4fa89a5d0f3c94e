from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
import uuid

db = SQLAlchemy()


def new_id():
    return str(uuid.uuid4())


# Task statuses that count as finished work
FINISHED_STATUSES = ('completed', 'done')
TASK_STATUSES = ('pending', 'in-progress', 'done', 'completed', 'cancelled')
TASK_PRIORITIES = ('alta', 'media', 'baja')
PROJECT_STATUSES = ('development', 'production')
USER_ROLES = ('admin', 'user')

# ============================================
# 1. Department
# ============================================
class Department(db.Model):
    __tablename__ = 'departments'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(100), unique=True, nullable=False)
    color = db.Column(db.String(20), nullable=False, default='#3b82f6')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    users = db.relationship('User', backref='department', lazy=True)
    tasks = db.relationship('Task', backref='department', lazy=True)

# ============================================
# 2. User
# ============================================
class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    username = db.Column(db.String(100), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=True)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(50), nullable=False, default='user')
    department_id = db.Column(db.String(36), db.ForeignKey('departments.id', ondelete='SET NULL'), nullable=True)
    active = db.Column(db.Integer, nullable=False, default=1)
    last_login = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_admin(self):
        return self.role == 'admin'

# ============================================
# 3. Workspace
# ============================================
class Workspace(db.Model):
    __tablename__ = 'workspaces'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    color = db.Column(db.String(20), nullable=False, default='#6366f1')
    icon = db.Column(db.String(100))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # No cascade: deleting a workspace only detaches its projects
    projects = db.relationship('Project', backref='workspace', lazy=True)

# ============================================
# 4. Project
# ============================================
class Project(db.Model):
    __tablename__ = 'projects'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='development')
    start = db.Column(db.Date)
    end = db.Column(db.Date)
    created_by = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    logo = db.Column(db.String(500))
    workspace_id = db.Column(db.String(36), db.ForeignKey('workspaces.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    creator = db.relationship('User', foreign_keys=[created_by])
    tasks = db.relationship('Task', backref='project', lazy=True, cascade='all,delete-orphan')
    versions = db.relationship('ProjectVersion', backref='project', lazy=True,
                               cascade='all,delete-orphan',
                               order_by='ProjectVersion.created_at.desc()')
    documents = db.relationship('ProjectDocument', backref='project', lazy=True, cascade='all,delete-orphan')
    task_documents = db.relationship('TaskDocument', backref='project', lazy=True, cascade='all,delete-orphan')
    comments = db.relationship('ProjectComment', backref='project', lazy=True, cascade='all,delete-orphan')

    __table_args__ = (
        db.Index('idx_project_workspace', 'workspace_id'),
    )

# ============================================
# 5. ProjectVersion (immutable release snapshot)
# ============================================
class ProjectVersion(db.Model):
    __tablename__ = 'project_versions'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(db.String(36), db.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    version_name = db.Column(db.String(100), nullable=False)
    snapshot_data = db.Column(db.JSON, nullable=False)
    created_by = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    creator = db.relationship('User', foreign_keys=[created_by])

    __table_args__ = (
        db.UniqueConstraint('project_id', 'version_name', name='unique_project_version_name'),
    )

# ============================================
# 6. Task (self-referencing tree)
# ============================================
class Task(db.Model):
    __tablename__ = 'tasks'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(db.String(36), db.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    parent_task_id = db.Column(db.String(36), db.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=True)
    department_id = db.Column(db.String(36), db.ForeignKey('departments.id', ondelete='SET NULL'), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    status = db.Column(db.String(20), nullable=False, default='pending')
    priority = db.Column(db.String(20), nullable=False, default='media')
    due = db.Column(db.Date)
    effort = db.Column(db.Integer, nullable=False, default=0)
    assigned_to = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    completed_at = db.Column(db.DateTime, nullable=True)
    # Set once by the release transaction, never rewritten
    released_version_id = db.Column(db.String(36), db.ForeignKey('project_versions.id', ondelete='SET NULL'), nullable=True)

    subtasks = db.relationship('Task', backref=db.backref('parent', remote_side=[id]),
                               cascade='all,delete-orphan', order_by='Task.created_at')
    assignee = db.relationship('User', foreign_keys=[assigned_to])
    released_version = db.relationship('ProjectVersion', foreign_keys=[released_version_id])
    comments = db.relationship('TaskComment', backref='task', lazy=True,
                               cascade='all,delete-orphan', order_by='TaskComment.created_at')
    documents = db.relationship('TaskDocument', backref='task', lazy=True, cascade='all,delete-orphan')

    __table_args__ = (
        db.Index('idx_task_project_status', 'project_id', 'status'),
        db.Index('idx_task_department', 'department_id'),
        db.Index('idx_task_parent', 'parent_task_id'),
        db.Index('idx_task_released_version', 'released_version_id'),
    )

    @property
    def is_finished(self):
        return self.status in FINISHED_STATUSES

# ============================================
# 7. TaskComment
# ============================================
class TaskComment(db.Model):
    __tablename__ = 'task_comments'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    task_id = db.Column(db.String(36), db.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    comment = db.Column(db.Text, nullable=False)
    version_id = db.Column(db.String(36), db.ForeignKey('project_versions.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', foreign_keys=[user_id])
    version = db.relationship('ProjectVersion', foreign_keys=[version_id])

# ============================================
# 8. ProjectComment
# ============================================
class ProjectComment(db.Model):
    __tablename__ = 'project_comments'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(db.String(36), db.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    message = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    user = db.relationship('User', foreign_keys=[user_id])

# ============================================
# 9. ProjectDocument
# ============================================
class ProjectDocument(db.Model):
    __tablename__ = 'project_documents'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    project_id = db.Column(db.String(36), db.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    version_id = db.Column(db.String(36), db.ForeignKey('project_versions.id', ondelete='SET NULL'), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    file_name = db.Column(db.String(255))
    file_path = db.Column(db.String(500), nullable=False)
    mime_type = db.Column(db.String(100))
    size = db.Column(db.Integer)
    created_by = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    creator = db.relationship('User', foreign_keys=[created_by])
    version = db.relationship('ProjectVersion', foreign_keys=[version_id])

# ============================================
# 10. TaskDocument
# ============================================
class TaskDocument(db.Model):
    __tablename__ = 'task_documents'

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    task_id = db.Column(db.String(36), db.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False)
    project_id = db.Column(db.String(36), db.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False)
    version_id = db.Column(db.String(36), db.ForeignKey('project_versions.id', ondelete='SET NULL'), nullable=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    file_name = db.Column(db.String(255))
    file_path = db.Column(db.String(500), nullable=False)
    mime_type = db.Column(db.String(100))
    size = db.Column(db.Integer)
    created_by = db.Column(db.String(36), db.ForeignKey('users.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    creator = db.relationship('User', foreign_keys=[created_by])
    version = db.relationship('ProjectVersion', foreign_keys=[version_id])
