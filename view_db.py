from app import create_app
from models import db, Department, User, Workspace, Project, ProjectVersion, Task

app = create_app()

with app.app_context():
    print("\n" + "=" * 60)
    print("Database contents")
    print("=" * 60)

    # Departments
    departments = Department.query.order_by(Department.name).all()
    print(f"\n[Departments] {len(departments)} rows:")
    for d in departments:
        print(f"  ID: {d.id}, Name: {d.name}, Users: {len(d.users)}, Tasks: {len(d.tasks)}")

    # Users
    users = User.query.all()
    print(f"\n[Users] {len(users)} rows:")
    for u in users:
        department = u.department.name if u.department else '-'
        print(f"  ID: {u.id}, Username: {u.username}, Role: {u.role}, Department: {department}, Active: {u.active}")

    # Workspaces
    workspaces = Workspace.query.all()
    print(f"\n[Workspaces] {len(workspaces)} rows:")
    for w in workspaces:
        print(f"  ID: {w.id}, Name: {w.name}, Projects: {len(w.projects)}")

    # Projects
    projects = Project.query.all()
    print(f"\n[Projects] {len(projects)} rows:")
    for p in projects:
        print(f"  ID: {p.id}, Name: {p.name}, Status: {p.status}, Tasks: {len(p.tasks)}")

    # Versions
    versions = ProjectVersion.query.order_by(ProjectVersion.created_at).all()
    print(f"\n[Versions] {len(versions)} rows:")
    for v in versions:
        tagged = Task.query.filter_by(released_version_id=v.id).count()
        print(f"  ID: {v.id}, Project: {v.project.name}, Name: {v.version_name}, Tasks: {tagged}")

    # Tasks
    tasks = Task.query.all()
    unreleased = sum(1 for t in tasks if t.released_version_id is None)
    print(f"\n[Tasks] {len(tasks)} rows, {unreleased} not released:")
    for t in tasks:
        parent = f", Parent: {t.parent_task_id}" if t.parent_task_id else ''
        print(f"  ID: {t.id}, Title: {t.title}, Status: {t.status}{parent}")

    print("\n" + "=" * 60)

    db.session.remove()
