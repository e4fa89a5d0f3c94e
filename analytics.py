"""
Dashboard aggregation over task lists

Everything here is a pure function of the tasks and a reference time so the
numbers can be checked without a database. Tasks only need ``status``,
``due`` (date), ``created_at`` and ``completed_at`` (naive UTC datetimes).
"""
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from models import FINISHED_STATUSES

NEAR_DUE_DAYS = 7
BURNDOWN_DAYS = 7
VELOCITY_WEEKS = 2


def round_half_up(value, digits=0):
    """round() that sends .5 up, as dashboards usually do"""
    quantum = Decimal(1).scaleb(-digits)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    return int(rounded) if digits == 0 else float(rounded)


def percent(part, total):
    if not total:
        return 0
    return round_half_up(part / total * 100)


def is_finished(task):
    return task.status in FINISHED_STATUSES


def department_metrics(tasks, today):
    """Status breakdown plus overdue and near-due counts"""
    total = len(tasks)
    done = sum(1 for t in tasks if is_finished(t))
    pending = sum(1 for t in tasks if t.status == 'pending')
    in_progress = sum(1 for t in tasks if t.status == 'in-progress')

    open_with_due = [t for t in tasks if not is_finished(t) and t.due]
    overdue = sum(1 for t in open_with_due if t.due < today)
    near_due = sum(1 for t in open_with_due if 0 <= (t.due - today).days <= NEAR_DUE_DAYS)

    return {
        'total': total,
        'done': done,
        'pending': pending,
        'inProgress': in_progress,
        'overdue': overdue,
        'nearDue': near_due,
        'progress': percent(done, total)
    }


def completed_since(tasks, now, days):
    """Finished tasks whose completion falls within the last ``days`` days"""
    cutoff = now - timedelta(days=days)
    return [t for t in tasks if is_finished(t) and t.completed_at and t.completed_at >= cutoff]


def velocity(tasks, now):
    """Average completions per week over the last two weeks"""
    recent = completed_since(tasks, now, VELOCITY_WEEKS * 7)
    return round_half_up(len(recent) / VELOCITY_WEEKS, 1)


def burndown(tasks, today):
    """Completions per calendar day for the last week, oldest day first"""
    per_day = {}
    for t in tasks:
        if is_finished(t) and t.completed_at:
            day = t.completed_at.date()
            per_day[day] = per_day.get(day, 0) + 1

    days = []
    for offset in range(BURNDOWN_DAYS - 1, -1, -1):
        day = today - timedelta(days=offset)
        days.append({
            'date': day.isoformat(),
            'weekday': day.strftime('%a'),
            'completed': per_day.get(day, 0)
        })
    return days


def average_completion_time(tasks):
    """Mean days from creation to completion, one decimal"""
    spans = [
        (t.completed_at - t.created_at).total_seconds() / 86400
        for t in tasks
        if is_finished(t) and t.created_at and t.completed_at
    ]
    if not spans:
        return 0
    return round_half_up(sum(spans) / len(spans), 1)


def dashboard(tasks, now):
    today = now.date()
    return {
        'metrics': department_metrics(tasks, today),
        'completedLastWeek': len(completed_since(tasks, now, 7)),
        'completedLastMonth': len(completed_since(tasks, now, 30)),
        'velocity': velocity(tasks, now),
        'burndown': burndown(tasks, today),
        'averageCompletionTime': average_completion_time(tasks)
    }
