"""
Commission ledger.

Every commission is one append-only ``Commission`` row plus a +amount bump
of ``Employee.commissions``; both happen in the same transaction.

Triggers:
  PATIENT_CREATION           new-patient visit with ≥1 speciality → sales owner
  FOLLOW_UP                  first visit of a follow-up task → task owner (once per task)
  VISIT_SPECIALITY_ADDITION  each speciality on an existing-patient visit → coordinator
  NOMINATION_CONVERSION      converted nomination's first visit → nomination coordinator
  MANUAL_ADJUSTMENT          admin action

Idempotency is check-then-create (``record_once``). Two concurrent retries
of the same trigger can still both insert; there is no unique constraint.
"""

import logging

from django.db import transaction
from django.db.models import F

from . import targets
from .cache import clear_all, invalidate_commission_caches
from .classification import ClassificationContext, classify_and_attribute, is_first_visit
from .dates import period_string, today
from .db import db_retry
from .exceptions import NotFoundError, WarningError
from .models import Commission, Employee, Visit, VisitSpeciality

logger = logging.getLogger(__name__)


def record(employee_id, type_, period, *, amount=1, description='', patient=None, visit=None,
           visit_speciality=None, follow_up_task_id=None) -> Commission:
    with transaction.atomic():
        commission = Commission.objects.create(
            employee_id=employee_id,
            type=type_,
            amount=amount,
            period=period,
            description=description,
            patient=patient,
            visit=visit,
            visit_speciality=visit_speciality,
            follow_up_task_id=follow_up_task_id,
        )
        updated = Employee.objects.filter(pk=employee_id).update(commissions=F('commissions') + amount)
        if not updated:
            raise NotFoundError.for_entity('Employee', 'EMPLOYEE_NOT_FOUND', 'employee_id', employee_id)

    logger.info("[ledger] %s +%d → employee %s (period %s)", type_, amount, employee_id, period)

    # 立即失效一次；外层事务提交后再失效一次，防止提交前被其他请求回填旧值
    invalidate_commission_caches()
    transaction.on_commit(invalidate_commission_caches)
    _refresh_targets(employee_id, period)
    return commission


def record_once(employee_id, type_, period, *, match, **kwargs) -> Commission | None:
    """Record unless a commission of this type already matches ``match``."""
    if Commission.objects.filter(type=type_, **match).exists():
        logger.debug("[ledger] %s already recorded for %s, skipping", type_, match)
        return None
    return record(employee_id, type_, period, **kwargs)


def _refresh_targets(employee_id, period):
    """Target bookkeeping is best effort; the commission itself already stands."""
    try:
        with transaction.atomic():
            targets.refresh_active_targets(employee_id, period)
    except Exception as exc:
        logger.warning("[ledger] target refresh failed for employee %s: %s", employee_id, exc)


# ── Triggers ─────────────────────────────────────────────────────────────────

def _has_specialities(visit) -> bool:
    return visit.specialities.exists()


def _describe(visit) -> str:
    return f"{visit.patient.name_english} at {visit.hospital.name}"


def apply_visit_triggers(visit, classification=None) -> list[Commission]:
    """
    Run every trigger a freshly created visit can fire.

    Returns the commissions actually created (already-recorded ones are skipped).
    """
    classification = classification or classify_and_attribute(visit)
    period = period_string(visit.visit_date)
    created = []

    if classification.employee_id is None:
        logger.error("[ledger] visit %s (%s) has nobody to credit", visit.id, classification.category)
    elif classification.is_new_patient:
        if _has_specialities(visit):
            created.append(record_once(
                classification.employee_id, Commission.TYPE_PATIENT_CREATION, period,
                match={'visit_id': visit.id},
                description=f"New patient visit: {_describe(visit)}",
                patient=visit.patient, visit=visit,
            ))
        else:
            logger.info("[ledger] new-patient visit %s has no specialities, no commission yet", visit.id)
    elif classification.is_follow_up:
        created.append(record_once(
            classification.employee_id, Commission.TYPE_FOLLOW_UP, period,
            match={'follow_up_task_id': classification.follow_up_task_id},
            description=f"Follow-up visit: {_describe(visit)}",
            patient=visit.patient, visit=visit, follow_up_task_id=classification.follow_up_task_id,
        ))
    else:
        for visit_speciality in visit.specialities.select_related('speciality'):
            created.append(_speciality_commission(visit, visit_speciality, classification, period))

    created.append(_nomination_commission(visit, period))
    return [c for c in created if c is not None]


def apply_speciality_trigger(visit_speciality, classification=None) -> list[Commission]:
    """A speciality added to an already existing visit."""
    visit = visit_speciality.visit
    classification = classification or classify_and_attribute(visit)
    period = period_string(visit.visit_date)

    if classification.employee_id is None:
        logger.error("[ledger] visit %s (%s) has nobody to credit", visit.id, classification.category)
        return []

    if classification.is_existing_patient:
        commission = _speciality_commission(visit, visit_speciality, classification, period)
    elif classification.is_new_patient:
        # 第一个专科补录进来时，新患者佣金才成立
        commission = record_once(
            classification.employee_id, Commission.TYPE_PATIENT_CREATION, period,
            match={'visit_id': visit.id},
            description=f"New patient visit: {_describe(visit)}",
            patient=visit.patient, visit=visit,
        )
    else:
        commission = None
    return [commission] if commission is not None else []


def _speciality_commission(visit, visit_speciality, classification, period):
    return record_once(
        classification.employee_id, Commission.TYPE_VISIT_SPECIALITY_ADDITION, period,
        match={'visit_speciality_id': visit_speciality.id},
        description=f"Speciality {visit_speciality.speciality.name} added: {_describe(visit)}",
        patient=visit.patient, visit=visit, visit_speciality=visit_speciality,
    )


def _nomination_commission(visit, period):
    nomination = getattr(visit.patient, 'source_nomination', None)
    if nomination is None:
        return None
    if nomination.coordinator_id is None:
        logger.warning("[ledger] nomination %s has no coordinator, conversion not credited", nomination.id)
        return None
    if not is_first_visit(visit):
        return None
    return record_once(
        nomination.coordinator_id, Commission.TYPE_NOMINATION_CONVERSION, period,
        match={'patient_id': visit.patient_id},
        description=f"Nomination converted: {visit.patient.name_english}",
        patient=visit.patient, visit=visit,
    )


# ── Admin operations ─────────────────────────────────────────────────────────

@db_retry
def create_manual_adjustment(intake, actor=None) -> Commission:
    if not Employee.objects.filter(pk=intake.employee_id).exists():
        raise NotFoundError.for_entity('Employee', 'EMPLOYEE_NOT_FOUND', 'employee_id', intake.employee_id)
    description = intake.description
    if actor is not None:
        description = f"{description} (by {actor.name})"
    return record(
        intake.employee_id, Commission.TYPE_MANUAL_ADJUSTMENT, period_string(today()),
        amount=intake.amount, description=description,
    )


@db_retry
def delete_all_commissions(confirm=False) -> dict:
    total = Commission.objects.count()
    if not confirm:
        raise WarningError(
            message=f"This permanently deletes {total} commissions and resets every employee counter.",
            detail={'commission_count': total},
        )

    with transaction.atomic():
        deleted, _ = Commission.objects.all().delete()
        reset = Employee.objects.update(commissions=0)

    clear_all()
    logger.warning("[ledger] deleted %d commissions, reset %d employee counters", deleted, reset)
    return {'deleted_commissions': deleted, 'reset_employees': reset}


# ── Background backfill ──────────────────────────────────────────────────────

def backfill_missing_commissions(window=None) -> dict:
    """
    Create PATIENT_CREATION / FOLLOW_UP rows that the request path missed
    (crashes between visit insert and trigger, legacy imports).
    """
    queryset = Visit.objects.filter(**(window.visit_filter() if window else {}))
    visits = list(
        queryset.select_related('patient', 'hospital').order_by('visit_date', 'created_at')
    )
    context = ClassificationContext.for_visits(visits)
    with_specialities = set(
        VisitSpeciality.objects.filter(visit__in=queryset).values_list('visit_id', flat=True)
    )

    summary = {'scanned': len(visits), 'patient_creation': 0, 'follow_up': 0, 'skipped': 0}
    for visit in visits:
        classification = classify_and_attribute(visit, context)
        if classification.employee_id is None:
            summary['skipped'] += 1
            continue

        period = period_string(visit.visit_date)
        if classification.is_new_patient:
            if visit.pk not in with_specialities:
                continue
            if record_once(
                classification.employee_id, Commission.TYPE_PATIENT_CREATION, period,
                match={'visit_id': visit.id},
                description=f"New patient visit: {_describe(visit)} (auto)",
                patient=visit.patient, visit=visit,
            ):
                summary['patient_creation'] += 1
        elif classification.is_follow_up:
            if record_once(
                classification.employee_id, Commission.TYPE_FOLLOW_UP, period,
                match={'follow_up_task_id': classification.follow_up_task_id},
                description=f"Follow-up visit: {_describe(visit)} (auto)",
                patient=visit.patient, visit=visit,
                follow_up_task_id=classification.follow_up_task_id,
            ):
                summary['follow_up'] += 1

    logger.info("[ledger] backfill finished: %s", summary)
    return summary
