from datetime import datetime, date, timedelta
from types import SimpleNamespace
import analytics

NOW = datetime(2024, 5, 15, 12, 0, 0)
TODAY = NOW.date()


def task(status='pending', due=None, created_at=None, completed_at=None):
    return SimpleNamespace(status=status, due=due, created_at=created_at, completed_at=completed_at)


def finished(days_ago, status='done', took_days=2):
    completed_at = NOW - timedelta(days=days_ago)
    return task(status=status, created_at=completed_at - timedelta(days=took_days), completed_at=completed_at)


def test_round_half_up():
    assert analytics.round_half_up(2.5) == 3
    assert analytics.round_half_up(3.5) == 4
    assert analytics.round_half_up(0.25, 1) == 0.3
    assert analytics.round_half_up(1.04, 1) == 1.0


def test_percent():
    assert analytics.percent(1, 3) == 33
    assert analytics.percent(2, 3) == 67
    assert analytics.percent(1, 2) == 50
    assert analytics.percent(0, 0) == 0


def test_department_metrics():
    tasks = [
        task('done'),
        task('completed'),
        task('pending', due=TODAY - timedelta(days=1)),
        task('in-progress', due=TODAY),
        task('pending', due=TODAY + timedelta(days=7)),
        task('pending', due=TODAY + timedelta(days=8)),
        task('cancelled'),
        # Finished work is never overdue
        task('done', due=TODAY - timedelta(days=30)),
    ]

    metrics = analytics.department_metrics(tasks, TODAY)

    assert metrics == {
        'total': 8,
        'done': 3,
        'pending': 3,
        'inProgress': 1,
        'overdue': 1,
        'nearDue': 2,
        'progress': 38
    }


def test_department_metrics_empty():
    metrics = analytics.department_metrics([], TODAY)
    assert metrics['total'] == 0
    assert metrics['progress'] == 0


def test_completed_since_windows():
    tasks = [finished(1), finished(6), finished(10), finished(29), finished(40), task('pending')]

    assert len(analytics.completed_since(tasks, NOW, 7)) == 2
    assert len(analytics.completed_since(tasks, NOW, 30)) == 4


def test_velocity():
    tasks = [finished(1), finished(3, status='completed'), finished(13), finished(20)]
    assert analytics.velocity(tasks, NOW) == 1.5


def test_velocity_without_completions():
    assert analytics.velocity([task()], NOW) == 0


def test_burndown():
    tasks = [finished(0), finished(0), finished(2), finished(8)]

    days = analytics.burndown(tasks, TODAY)

    assert len(days) == 7
    assert days[0]['date'] == (TODAY - timedelta(days=6)).isoformat()
    assert days[-1]['date'] == TODAY.isoformat()
    assert days[-1]['weekday'] == TODAY.strftime('%a')
    assert days[-1]['completed'] == 2
    assert days[-3]['completed'] == 1
    assert sum(d['completed'] for d in days) == 3


def test_average_completion_time():
    tasks = [finished(1, took_days=2), finished(2, took_days=3), task('pending', created_at=NOW)]
    assert analytics.average_completion_time(tasks) == 2.5


def test_average_completion_time_without_finished_tasks():
    assert analytics.average_completion_time([task()]) == 0


def test_dashboard_shape():
    data = analytics.dashboard([finished(1)], NOW)

    assert set(data) == {'metrics', 'completedLastWeek', 'completedLastMonth',
                         'velocity', 'burndown', 'averageCompletionTime'}
    assert data['completedLastWeek'] == 1
    assert data['velocity'] == 0.5
    assert isinstance(data['metrics']['total'], int)
    assert date.fromisoformat(data['burndown'][-1]['date']) == TODAY
