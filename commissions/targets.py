"""
Target progress calculator.

Progress is always recomputed from source data:

  new_patients        visits classified new_patient and credited to the assignee
  follow_up_patients  FOLLOW_UP commissions
  specialties         VISIT_SPECIALITY_ADDITION commissions
  nominations         NOMINATION_CONVERSION commissions
  custom              the stored current_value

``current_value`` is only a snapshot for non-custom categories; it is
rewritten by ``refresh_target`` and never read back for progress.
"""

import logging
import uuid
from dataclasses import dataclass

from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from .classification import ClassificationContext, classify_and_attribute
from .dates import DateWindow, parse_date, today
from .exceptions import NotFoundError, ValidationError
from .models import Commission, Employee, Target, Team, Visit

logger = logging.getLogger(__name__)

CATEGORY_COMMISSION_TYPES = {
    'follow_up_patients': Commission.TYPE_FOLLOW_UP,
    'specialties': Commission.TYPE_VISIT_SPECIALITY_ADDITION,
    'nominations': Commission.TYPE_NOMINATION_CONVERSION,
}

TARGET_TYPES = [
    {'value': 'daily', 'label': 'Daily', 'description': 'Resets every day'},
    {'value': 'weekly', 'label': 'Weekly', 'description': 'Resets every week (Monday)'},
    {'value': 'monthly', 'label': 'Monthly', 'description': 'Resets every month (1st day)'},
]

TARGET_CATEGORIES = [
    {'value': 'new_patients', 'label': 'New Patients', 'description': 'First visits credited to the employee'},
    {'value': 'follow_up_patients', 'label': 'Follow-up Patients', 'description': 'Visits booked from follow-up tasks'},
    {'value': 'specialties', 'label': 'Specialties', 'description': 'Specialities added to existing-patient visits'},
    {'value': 'nominations', 'label': 'Nominations', 'description': 'Nominations converted into patients'},
    {'value': 'custom', 'label': 'Custom', 'description': 'Manually tracked value'},
]


@dataclass(frozen=True)
class Progress:
    goal: int
    current: int
    percentage: float
    status: str

    def to_dict(self):
        return {
            'goal': self.goal,
            'current': self.current,
            'percentage': self.percentage,
            'status': self.status,
        }


def progress_status(percentage: float, current: int) -> str:
    if percentage >= 100:
        return 'completed'
    if current > 0:
        return 'in_progress'
    return 'not_started'


def compute_progress(goal: int, current: int) -> Progress:
    percentage = round(min(current / goal * 100, 100), 2) if goal > 0 else 0.0
    return Progress(goal, current, percentage, progress_status(percentage, current))


def target_window(target) -> DateWindow:
    return DateWindow(target.start_date, target.end_date)


# ── Source counts ────────────────────────────────────────────────────────────

def credited_new_patient_visits(employee_id, window: DateWindow) -> list:
    """
    Visits in ``window`` classified new_patient and credited to the employee.

    Only visits with at least one speciality are credited, same as the
    PATIENT_CREATION trigger. The candidate filter mirrors the attribution
    rule (visit.sales, else the patient's current sales person), so patient
    reassignment is reflected immediately.
    """
    employee_id = uuid.UUID(str(employee_id))
    candidates = list(
        Visit.objects
        .filter(**window.visit_filter())
        .filter(Q(sales_id=employee_id) | Q(sales__isnull=True, patient__sales_person_id=employee_id))
        .filter(specialities__isnull=False)
        .distinct()
        .select_related('patient', 'hospital')
        .order_by('visit_date', 'created_at')
    )
    if not candidates:
        return []

    context = ClassificationContext.for_visits(candidates)
    credited = []
    for visit in candidates:
        classification = classify_and_attribute(visit, context)
        if classification.is_new_patient and classification.employee_id == employee_id:
            credited.append(visit)
    return credited


def commission_count(employee_id, type_, window: DateWindow) -> int:
    return Commission.objects.filter(employee_id=employee_id, type=type_, **window.period_filter()).count()


def category_value(category, employee_id, window: DateWindow, stored_value=0) -> int:
    if category == 'custom':
        return stored_value
    if category == 'new_patients':
        return len(credited_new_patient_visits(employee_id, window))
    return commission_count(employee_id, CATEGORY_COMMISSION_TYPES[category], window)


def current_value(target) -> int:
    return category_value(target.category, target.assigned_to_id, target_window(target), target.current_value)


def progress(target) -> Progress:
    return compute_progress(target.target_value, current_value(target))


# ── Snapshots and resets ─────────────────────────────────────────────────────

def refresh_target(target, computed: Progress | None = None) -> Progress:
    """Write the live value into current_value and stamp completed_at once."""
    computed = computed or progress(target)
    fields = []
    if target.category != 'custom' and target.current_value != computed.current:
        target.current_value = computed.current
        fields.append('current_value')
    if computed.status == 'completed' and target.completed_at is None:
        target.completed_at = timezone.now()
        fields.append('completed_at')
    if fields:
        fields.append('updated_at')
        target.save(update_fields=fields)
    return computed


def refresh_active_targets(employee_id, on) -> int:
    day = parse_date(on, 'period')
    active = Target.objects.filter(
        assigned_to_id=employee_id,
        is_active=True,
        start_date__lte=day,
        end_date__gte=day,
    ).exclude(category='custom')
    count = 0
    for target in active:
        refresh_target(target)
        count += 1
    return count


def auto_reset_targets(on=None) -> int:
    """Deactivate active targets whose end date has passed, snapshotting them first."""
    on = on or today()
    expired = list(Target.objects.filter(is_active=True, end_date__lt=on))
    for target in expired:
        with transaction.atomic():
            refresh_target(target)
            target.is_active = False
            target.save(update_fields=['is_active', 'updated_at'])
    if expired:
        logger.info("[targets] deactivated %d expired targets (before %s)", len(expired), on)
    return len(expired)


# ── CRUD ─────────────────────────────────────────────────────────────────────

def _employee_or_404(employee_id, field='assigned_to_id'):
    employee = Employee.objects.filter(pk=employee_id).first()
    if employee is None:
        raise NotFoundError.for_entity('Employee', 'EMPLOYEE_NOT_FOUND', field, employee_id)
    return employee


def get_target(target_id) -> Target:
    target = Target.objects.select_related('assigned_to', 'team').filter(pk=target_id).first()
    if target is None:
        raise NotFoundError(message='Target not found', code='TARGET_NOT_FOUND', detail={'target_id': str(target_id)})
    return target


def create_target(intake, actor=None) -> Target:
    assignee = _employee_or_404(intake.assigned_to_id)
    team = None
    if intake.team_id:
        team = Team.objects.filter(pk=intake.team_id).first()
        if team is None:
            raise NotFoundError(message='Team not found', code='TEAM_NOT_FOUND', detail={'team_id': str(intake.team_id)})

    target = Target.objects.create(
        assigned_to=assignee,
        assigned_by=actor,
        team=team,
        type=intake.type,
        category=intake.category,
        description=intake.description,
        target_value=intake.target_value,
        current_value=intake.current_value,
        start_date=intake.start_date,
        end_date=intake.end_date,
    )
    logger.info("[targets] created %s %s target %s for %s", target.type, target.category, target.id, assignee.id)
    return target


def update_target(target_id, intake) -> Target:
    target = get_target(target_id)
    changes = intake.changes()

    start = changes.get('start_date', target.start_date)
    end = changes.get('end_date', target.end_date)
    if start > end:
        raise ValidationError(
            message='start_date must not be after end_date.',
            code='INVALID_DATE_RANGE',
            detail={'start_date': start.isoformat(), 'end_date': end.isoformat()},
        )

    for name, value in changes.items():
        setattr(target, name, value)
    if changes:
        target.save()
    refresh_target(target)
    return target


def delete_target(target_id) -> None:
    get_target(target_id).delete()


def list_targets(assigned_to_id=None, is_active=None, type_=None, category=None, team_id=None):
    qs = Target.objects.select_related('assigned_to', 'team').order_by('-created_at')
    if assigned_to_id:
        qs = qs.filter(assigned_to_id=assigned_to_id)
    if is_active is not None:
        qs = qs.filter(is_active=is_active)
    if type_:
        qs = qs.filter(type=type_)
    if category:
        qs = qs.filter(category=category)
    if team_id:
        qs = qs.filter(team_id=team_id)
    return [(target, progress(target)) for target in qs]


def target_stats(assigned_to_id=None) -> dict:
    rows = list_targets(assigned_to_id=assigned_to_id)
    now = today()
    active = [(t, p) for t, p in rows if t.is_active]
    completed = [t for t, p in rows if p.status == 'completed']
    overdue = [t for t, p in active if t.end_date < now and p.status != 'completed']
    average = round(sum(p.percentage for _, p in rows) / len(rows), 2) if rows else 0.0
    return {
        'total': len(rows),
        'active': len(active),
        'completed': len(completed),
        'overdue': len(overdue),
        'average_progress': average,
    }


# ── Analysis ─────────────────────────────────────────────────────────────────

def overlapping(qs, window: DateWindow):
    if window.end:
        qs = qs.filter(start_date__lte=window.end)
    if window.start:
        qs = qs.filter(end_date__gte=window.start)
    return qs


def target_analysis(window: DateWindow, employee_id=None) -> dict:
    """
    Per employee: daily / weekly / monthly aggregate progress plus an
    overall completion rate (mean of the three percentages).
    """
    employees = Employee.objects.filter(is_active=True).prefetch_related('roles').order_by('name')
    if employee_id:
        employees = employees.filter(pk=employee_id)
        if not employees.exists():
            _employee_or_404(employee_id, 'employee_id')
    else:
        employees = employees.filter(roles__role__in=('sales', 'coordinator'), roles__is_active=True).distinct()

    results = []
    for employee in employees:
        targets = overlapping(Target.objects.filter(assigned_to=employee, is_active=True), window)
        by_type = {}
        for type_ in ('daily', 'weekly', 'monthly'):
            rows = [progress(t) for t in targets if t.type == type_]
            goal = sum(p.goal for p in rows)
            current = sum(p.current for p in rows)
            summary = compute_progress(goal, current).to_dict()
            summary['targets'] = len(rows)
            by_type[type_] = summary

        results.append({
            'employee_id': str(employee.id),
            'employee_name': employee.name,
            'roles': employee.role_names,
            'targets': by_type,
            'overall': {
                'total_commissions': Commission.objects.filter(
                    employee=employee, **window.period_filter()
                ).count(),
                'total_targets': sum(v['targets'] for v in by_type.values()),
                'completion_rate': round(sum(v['percentage'] for v in by_type.values()) / 3, 2),
            },
        })

    return {
        'period': {'start_date': window.start_period, 'end_date': window.end_period},
        'employees': results,
    }
