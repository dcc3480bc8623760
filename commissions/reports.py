"""
Reporting aggregators.

Every aggregator classifies visits through ``classify_and_attribute`` with
one shared ``ClassificationContext`` per call, so a visit is never counted
differently by two reports.
"""

import logging
from collections import Counter, defaultdict

from django.db.models import Count

from . import targets as target_service
from .cache import breakdown_cache, breakdown_key
from .classification import (
    ADULT,
    CHILD,
    VISIT_CATEGORIES,
    ClassificationContext,
    classify_and_attribute,
    classify_appointment,
    patient_age_category,
)
from .dates import DateWindow, current_month_window, month_window, previous_month_window
from .db import db_retry
from .exceptions import NotFoundError
from .models import Appointment, Commission, Employee, Target, Team, Visit, VisitSpeciality

logger = logging.getLogger(__name__)

TYPE_KEYS = {
    Commission.TYPE_PATIENT_CREATION: 'new_patients',
    Commission.TYPE_VISIT_SPECIALITY_ADDITION: 'added_specialties',
    Commission.TYPE_NOMINATION_CONVERSION: 'nominations',
    Commission.TYPE_FOLLOW_UP: 'follow_ups',
    Commission.TYPE_MANUAL_ADJUSTMENT: 'manual_adjustments',
}


def calculate_change(current, previous) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 2)


def _empty_counts():
    return {key: 0 for key in TYPE_KEYS.values()}


def _age_split():
    return {'total': 0, ADULT: 0, CHILD: 0}


def _employee_or_404(employee_id):
    employee = Employee.objects.prefetch_related('roles').filter(pk=employee_id).first()
    if employee is None:
        raise NotFoundError.for_entity('Employee', 'EMPLOYEE_NOT_FOUND', 'employee_id', employee_id)
    return employee


class ClassifiedVisits:
    """Visits of a window, classified once, with the lookups the reports need."""

    def __init__(self, window: DateWindow):
        self.window = window
        self.visits = list(
            Visit.objects
            .filter(**window.visit_filter())
            .select_related('patient', 'hospital')
            .prefetch_related('specialities')
            .order_by('visit_date', 'created_at')
        )
        self.context = ClassificationContext.for_visits(self.visits)
        self.classified = [(visit, classify_and_attribute(visit, self.context)) for visit in self.visits]

    def credited_to(self, employee_id):
        return [(v, c) for v, c in self.classified if c.employee_id == employee_id]

    @staticmethod
    def is_billable(visit) -> bool:
        return bool(visit.specialities.all())

    def category_split(self, rows) -> dict:
        split = {category: _age_split() for category in VISIT_CATEGORIES}
        for visit, classification in rows:
            bucket = split[classification.category]
            bucket['total'] += 1
            age = patient_age_category(visit.patient)
            if age is not None:
                bucket[age] += 1
        return split


# ── Commission breakdown ─────────────────────────────────────────────────────

def _ledger_counts(window: DateWindow, employee_ids=None) -> dict:
    qs = Commission.objects.filter(**window.period_filter())
    if employee_ids is not None:
        qs = qs.filter(employee_id__in=employee_ids)
    counts = defaultdict(_empty_counts)
    for row in qs.values('employee_id', 'type').annotate(n=Count('id')):
        counts[row['employee_id']][TYPE_KEYS[row['type']]] = row['n']
    return counts


def _employee_breakdown(employee, classified: ClassifiedVisits, ledger: dict, previous: dict) -> dict:
    roles = employee.role_names
    counts = dict(ledger.get(employee.id) or _empty_counts())
    rows = classified.credited_to(employee.id)

    if 'sales' in roles:
        # 销售的新患者数以实时分类为准（患者改派后立即生效）
        counts['new_patients'] = sum(
            1 for v, c in rows if c.is_new_patient and classified.is_billable(v)
        )
    if 'coordinator' in roles and counts['added_specialties'] == 0:
        counts['added_specialties'] = sum(
            len(v.specialities.all()) for v, c in rows if c.is_existing_patient
        )

    total = sum(counts.values())
    previous_total = sum((previous.get(employee.id) or _empty_counts()).values())
    return {
        'employee_id': str(employee.id),
        'employee_code': employee.employee_code,
        'employee_name': employee.name,
        'roles': roles,
        'commissions': counts,
        'total_commissions': total,
        'visits': classified.category_split(rows),
        'previous_period_total': previous_total,
        'change': calculate_change(total, previous_total),
    }


def _build_breakdown(employee_id, window: DateWindow) -> dict:
    if employee_id:
        employees = [_employee_or_404(employee_id)]
    else:
        employees = list(
            Employee.objects
            .filter(is_active=True, roles__role__in=('sales', 'coordinator'), roles__is_active=True)
            .distinct()
            .prefetch_related('roles')
            .order_by('name')
        )
    ids = [e.id for e in employees]

    classified = ClassifiedVisits(window)
    ledger = _ledger_counts(window, ids)
    previous = _ledger_counts(previous_month_window(window.start), ids) if window.start else {}

    rows = [_employee_breakdown(e, classified, ledger, previous) for e in employees]

    totals = _empty_counts()
    for row in rows:
        for key, value in row['commissions'].items():
            totals[key] += value
    totals['total_commissions'] = sum(row['total_commissions'] for row in rows)

    return {
        'period': {'start_date': window.start_period, 'end_date': window.end_period},
        'employees': rows,
        'totals': totals,
        'visits': classified.category_split(classified.classified),
    }


@db_retry
def commission_breakdown(employee_id=None, window: DateWindow | None = None, use_cache=True) -> dict:
    window = window or current_month_window()
    key = breakdown_key(employee_id, window)

    if use_cache:
        cached = breakdown_cache.get(key)
        if cached is not None:
            logger.debug("[reports] breakdown cache hit %s", key)
            return cached

    result = _build_breakdown(employee_id, window)
    breakdown_cache.set(key, result)
    return result


# ── Employee performance ─────────────────────────────────────────────────────

@db_retry
def employee_performance(employee_id, window: DateWindow | None = None) -> dict:
    window = window or current_month_window()
    employee = _employee_or_404(employee_id)
    classified = ClassifiedVisits(window)
    ids = [employee.id]
    previous = _ledger_counts(previous_month_window(window.start), ids) if window.start else {}
    summary = _employee_breakdown(employee, classified, _ledger_counts(window, ids), previous)

    targets = target_service.overlapping(Target.objects.filter(assigned_to=employee, is_active=True), window)

    summary['visit_list'] = [
        {
            'visit_id': str(v.id),
            'visit_date': v.visit_date.isoformat(),
            'patient_name': v.patient.name_english,
            'hospital_name': v.hospital.name,
            'category': c.category,
            'fallback_used': c.fallback_used,
        }
        for v, c in classified.credited_to(employee.id)
    ]
    summary['targets'] = [
        {
            'target_id': str(t.id),
            'type': t.type,
            'category': t.category,
            **target_service.progress(t).to_dict(),
        }
        for t in targets
    ]
    summary['recent_commissions'] = [
        {
            'id': str(c.id),
            'type': c.type,
            'amount': c.amount,
            'period': c.period,
            'description': c.description,
        }
        for c in Commission.objects.filter(employee=employee).order_by('-created_at')[:10]
    ]
    return summary


# ── Reports summary ──────────────────────────────────────────────────────────

@db_retry
def reports_summary(window: DateWindow | None = None) -> dict:
    window = window or current_month_window()
    classified = ClassifiedVisits(window)

    categories = {}
    for category in VISIT_CATEGORIES:
        rows = [v for v, c in classified.classified if c.category == category]
        categories[category] = {
            'total': len(rows),
            'unique_patients': len({v.patient_id for v in rows}),
        }

    appointments = list(Appointment.objects.filter(**window.visit_filter('scheduled_date')))
    appointment_context = ClassificationContext({a.patient_id for a in appointments})
    by_status = Counter(a.status for a in appointments)
    by_type = Counter(classify_appointment(a, appointment_context) for a in appointments)

    visit_specialities = VisitSpeciality.objects.filter(**window.visit_filter('visit__visit_date'))

    return {
        'period': {'start_date': window.start_period, 'end_date': window.end_period},
        'visits': {
            **categories,
            'total': len(classified.visits),
            'unique_patients': len({v.patient_id for v in classified.visits}),
        },
        'appointments': {
            'total': len(appointments),
            'by_status': dict(by_status),
            'by_type': {category: by_type.get(category, 0) for category in VISIT_CATEGORIES},
        },
        'unique_specialities': visit_specialities.values('speciality_id').distinct().count(),
        'unique_doctors': visit_specialities.exclude(doctor__isnull=True).values('doctor_id').distinct().count(),
    }


# ── Team analysis ────────────────────────────────────────────────────────────

def _team_members(team):
    members = {team.leader_id: team.leader}
    for membership in team.members.all():
        members.setdefault(membership.employee_id, membership.employee)
    return list(members.values())


@db_retry
def team_analysis(month: int, year: int) -> dict:
    window = month_window(year, month)
    teams = (
        Team.objects
        .filter(is_active=True)
        .select_related('leader')
        .prefetch_related('members__employee__roles', 'leader__roles')
        .order_by('name')
    )

    rows = []
    for team in teams:
        members = _team_members(team)
        sales_count = sum(1 for m in members if m.has_role('sales'))
        coordinator_count = sum(1 for m in members if m.has_role('coordinator'))
        team_targets = Target.objects.filter(
            team=team, is_active=True, start_date__lte=window.end, end_date__gte=window.start,
        )

        base = {
            'team_id': str(team.id),
            'team_name': team.name,
            'leader_name': team.leader.name,
            'total_members': len(members),
            'sales_count': sales_count,
            'coordinator_count': coordinator_count,
        }

        if not team_targets:
            rows.append({
                **base,
                'target_id': None,
                'target_category': None,
                'target_value': 0,
                'current_value': 0,
                'completion_rate': 0.0,
                'average_progress': 0.0,
                'status': 'no_target',
                'members': [],
            })
            continue

        for target in team_targets:
            member_rows = []
            share = target.target_value / len(members) if members else 0
            for member in members if target.category != 'custom' else ():
                value = target_service.category_value(target.category, member.id, window)
                member_rows.append({
                    'employee_id': str(member.id),
                    'employee_name': member.name,
                    'current_value': value,
                    'percentage': round(min(value / share * 100, 100), 2) if share else 0.0,
                })

            if target.category == 'custom':
                current = target.current_value
            else:
                current = sum(m['current_value'] for m in member_rows)
            overall = target_service.compute_progress(target.target_value, current)
            rows.append({
                **base,
                'target_id': str(target.id),
                'target_category': target.category,
                'target_value': target.target_value,
                'current_value': current,
                'completion_rate': overall.percentage,
                'average_progress': round(
                    sum(m['percentage'] for m in member_rows) / len(member_rows), 2,
                ) if member_rows else 0.0,
                'status': overall.status,
                'members': member_rows,
            })

    rows.sort(key=lambda r: r['completion_rate'], reverse=True)
    with_targets = [r for r in rows if r['target_id']]
    return {
        'period': {'month': month, 'year': year},
        'teams': rows,
        'summary': {
            'total_teams': len({r['team_id'] for r in rows}),
            'total_targets': len(with_targets),
            'completed': sum(1 for r in with_targets if r['status'] == 'completed'),
            'in_progress': sum(1 for r in with_targets if r['status'] == 'in_progress'),
            'not_started': sum(1 for r in with_targets if r['status'] == 'not_started'),
            'average_completion': round(
                sum(r['completion_rate'] for r in with_targets) / len(with_targets), 2,
            ) if with_targets else 0.0,
        },
    }


# ── Ledger reconciliation ────────────────────────────────────────────────────

RECONCILED_TYPES = (
    Commission.TYPE_PATIENT_CREATION,
    Commission.TYPE_FOLLOW_UP,
    Commission.TYPE_VISIT_SPECIALITY_ADDITION,
)


@db_retry
def ledger_reconciliation(window: DateWindow | None = None) -> dict:
    """
    Compare ledger rows with what the classifier says should have been
    credited. Mismatches are reported, not repaired.
    """
    window = window or current_month_window()
    classified = ClassifiedVisits(window)

    expected = Counter()
    credited_tasks = set()
    for visit, classification in classified.classified:
        if classification.employee_id is None:
            continue
        if classification.is_new_patient and classified.is_billable(visit):
            expected[(classification.employee_id, Commission.TYPE_PATIENT_CREATION)] += 1
        elif classification.is_follow_up:
            if classification.follow_up_task_id in credited_tasks:
                continue
            credited_tasks.add(classification.follow_up_task_id)
            expected[(classification.employee_id, Commission.TYPE_FOLLOW_UP)] += 1
        elif classification.is_existing_patient:
            expected[(classification.employee_id, Commission.TYPE_VISIT_SPECIALITY_ADDITION)] += \
                len(visit.specialities.all())

    actual = Counter()
    rows = (
        Commission.objects
        .filter(type__in=RECONCILED_TYPES, **window.period_filter())
        .values('employee_id', 'type')
        .annotate(n=Count('id'))
    )
    for row in rows:
        actual[(row['employee_id'], row['type'])] = row['n']

    names = dict(Employee.objects.filter(
        pk__in={key[0] for key in list(expected) + list(actual)}
    ).values_list('id', 'name'))

    mismatches = []
    for key in sorted(set(expected) | set(actual), key=lambda k: (str(k[0]), k[1])):
        if expected[key] != actual[key]:
            employee_id, type_ = key
            mismatches.append({
                'employee_id': str(employee_id),
                'employee_name': names.get(employee_id, ''),
                'type': type_,
                'ledger': actual[key],
                'classified': expected[key],
            })

    if mismatches:
        logger.warning("[reports] ledger reconciliation found %d mismatches", len(mismatches))
    return {
        'period': {'start_date': window.start_period, 'end_date': window.end_period},
        'consistent': not mismatches,
        'mismatches': mismatches,
    }
