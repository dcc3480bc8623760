import logging
from datetime import timedelta

from django.db import transaction
from django.utils import timezone

from . import ledger
from .cache import HOSPITALS_KEY, invalidate_commission_caches, reference_cache
from .classification import classify_and_attribute
from .dates import start_of_day
from .db import db_retry
from .exceptions import BlockError, FollowUpTaskClosedError, InvalidTransitionError, NotFoundError, ValidationError
from .models import (
    Appointment,
    AppointmentSpeciality,
    Doctor,
    Employee,
    FollowUpTask,
    Hospital,
    Nomination,
    Patient,
    Speciality,
    Visit,
    VisitSpeciality,
)

logger = logging.getLogger(__name__)


def _get_or_404(model, pk, code, label, field):
    obj = model.objects.filter(pk=pk).first()
    if obj is None:
        raise NotFoundError.for_entity(label, code, field, pk)
    return obj


def _optional(model, pk, code, label, field):
    if pk is None:
        return None
    return _get_or_404(model, pk, code, label, field)


# ── Visits ───────────────────────────────────────────────────────────────────

def _create_visit_speciality(visit, intake):
    return VisitSpeciality.objects.create(
        visit=visit,
        speciality=_get_or_404(Speciality, intake.speciality_id, 'SPECIALITY_NOT_FOUND', 'Speciality', 'speciality_id'),
        doctor=_optional(Doctor, intake.doctor_id, 'DOCTOR_NOT_FOUND', 'Doctor', 'doctor_id'),
        scheduled_time=intake.scheduled_time,
        details=intake.details,
    )


@db_retry
def create_visit(intake, actor=None):
    """
    Create a visit (and its specialities), close the appointment it came
    from, then run the commission triggers. All in one transaction.

    Returns (visit, classification, commissions).
    """
    patient = _get_or_404(Patient, intake.patient_id, 'PATIENT_NOT_FOUND', 'Patient', 'patient_id')
    hospital = _get_or_404(Hospital, intake.hospital_id, 'HOSPITAL_NOT_FOUND', 'Hospital', 'hospital_id')
    coordinator = _optional(Employee, intake.coordinator_id, 'EMPLOYEE_NOT_FOUND', 'Coordinator', 'coordinator_id')
    sales = _optional(Employee, intake.sales_id, 'EMPLOYEE_NOT_FOUND', 'Sales person', 'sales_id')
    appointment = _optional(Appointment, intake.appointment_id, 'APPOINTMENT_NOT_FOUND', 'Appointment', 'appointment_id')

    if appointment is not None and appointment.patient_id != patient.id:
        raise ValidationError(
            message='Appointment belongs to a different patient.',
            code='APPOINTMENT_PATIENT_MISMATCH',
            detail={'appointment_id': str(appointment.id), 'patient_id': str(patient.id)},
        )

    with transaction.atomic():
        visit = Visit.objects.create(
            patient=patient,
            hospital=hospital,
            visit_date=intake.visit_date,
            coordinator=coordinator,
            sales=sales,
            is_emergency=intake.is_emergency,
        )
        for speciality in intake.specialities:
            _create_visit_speciality(visit, speciality)

        if appointment is not None:
            appointment.status = 'completed'
            appointment.visit = visit
            appointment.save(update_fields=['status', 'visit', 'updated_at'])

        classification = classify_and_attribute(visit)
        commissions = ledger.apply_visit_triggers(visit, classification)
        # 没产生佣金的就诊也会改变报表里的 visits 分类统计
        transaction.on_commit(invalidate_commission_caches)

    logger.info(
        "[visits] created %s for patient %s: %s → %s (%d commissions)",
        visit.id, patient.id, classification.category, classification.employee_id, len(commissions),
    )
    return visit, classification, commissions


def get_visit(visit_id):
    visit = Visit.objects.select_related('patient', 'hospital').filter(pk=visit_id).first()
    if visit is None:
        raise NotFoundError.for_entity('Visit', 'VISIT_NOT_FOUND', 'visit_id', visit_id)
    return visit


def classify_visit(visit_id):
    visit = get_visit(visit_id)
    return visit, classify_and_attribute(visit)


@db_retry
def add_visit_speciality(visit_id, intake, actor=None):
    visit = get_visit(visit_id)
    with transaction.atomic():
        visit_speciality = _create_visit_speciality(visit, intake)
        commissions = ledger.apply_speciality_trigger(visit_speciality)
        transaction.on_commit(invalidate_commission_caches)
    return visit_speciality, commissions


# ── Follow-up tasks ──────────────────────────────────────────────────────────

@db_retry
def create_follow_up_tasks(intake, actor=None):
    """
    One task per patient. Patients that already hold a pending or
    postponed task are skipped and reported back.
    """
    assignee = _get_or_404(Employee, intake.assigned_to_id, 'EMPLOYEE_NOT_FOUND', 'Employee', 'assigned_to_id')

    found = set(Patient.objects.filter(pk__in=intake.patient_ids).values_list('pk', flat=True))
    missing = [str(pid) for pid in intake.patient_ids if pid not in found]
    if missing:
        raise NotFoundError(
            message='Some patients were not found',
            code='PATIENT_NOT_FOUND',
            detail={'patient_ids': missing},
        )

    busy = set(
        FollowUpTask.objects
        .filter(patient_id__in=intake.patient_ids, status__in=FollowUpTask.OPEN_STATUSES)
        .values_list('patient_id', flat=True)
    )

    created, skipped = [], []
    with transaction.atomic():
        for patient_id in dict.fromkeys(intake.patient_ids):
            if patient_id in busy:
                skipped.append(str(patient_id))
                continue
            created.append(FollowUpTask.objects.create(
                patient_id=patient_id,
                assigned_to=assignee,
                assigned_by=actor,
                notes=intake.notes,
                due_date=intake.due_date,
            ))

    if skipped:
        logger.info("[follow-up] skipped %d patients with open tasks", len(skipped))
    return created, skipped


def list_follow_up_tasks(assigned_to_id=None, status=None, patient_id=None):
    qs = FollowUpTask.objects.select_related('patient', 'assigned_to').order_by('due_date', 'created_at')
    if assigned_to_id:
        qs = qs.filter(assigned_to_id=assigned_to_id)
    if status:
        qs = qs.filter(status=status)
    if patient_id:
        qs = qs.filter(patient_id=patient_id)
    return list(qs)


def _book_follow_up_appointment(task, intake, actor):
    hospital = _get_or_404(
        Hospital, intake.hospital_id, 'HOSPITAL_NOT_FOUND', 'Hospital', 'appointment.hospital_id',
    )
    appointment = Appointment.objects.create(
        patient=task.patient,
        hospital=hospital,
        sales_person=task.patient.sales_person,
        created_by=actor,
        scheduled_date=intake.scheduled_date,
        is_new_patient_at_creation=False,
        created_from_follow_up_task=task,
        notes=intake.notes,
    )
    for speciality in intake.specialities:
        AppointmentSpeciality.objects.create(
            appointment=appointment,
            speciality=_get_or_404(
                Speciality, speciality.speciality_id, 'SPECIALITY_NOT_FOUND', 'Speciality', 'speciality_id',
            ),
            doctor=_optional(Doctor, speciality.doctor_id, 'DOCTOR_NOT_FOUND', 'Doctor', 'doctor_id'),
            scheduled_time=speciality.scheduled_time,
        )
    return appointment


@db_retry
def complete_follow_up_task(task_id, intake, actor=None):
    """
    approved   → closed; optionally books an appointment linked to the task
    rejected   → closed with the rejection notes
    postponed  → stays open, due the day after the postponed date
    """
    task = FollowUpTask.objects.select_related('patient__sales_person').filter(pk=task_id).first()
    if task is None:
        raise NotFoundError.for_entity('Follow-up task', 'FOLLOW_UP_TASK_NOT_FOUND', 'task_id', task_id)
    if task.status not in FollowUpTask.OPEN_STATUSES:
        raise FollowUpTaskClosedError(task)

    appointment = None
    with transaction.atomic():
        task.status = intake.approval_status
        if intake.notes:
            task.notes = f"{task.notes}\n{intake.notes}".strip()

        if intake.approval_status == 'postponed':
            task.due_date = start_of_day(intake.postponed_date + timedelta(days=1))
        else:
            task.completed_at = timezone.now()

        task.save()

        if intake.approval_status == 'approved' and intake.appointment is not None:
            appointment = _book_follow_up_appointment(task, intake.appointment, actor)

    logger.info("[follow-up] task %s → %s", task.id, task.status)
    return task, appointment


# ── Nominations ──────────────────────────────────────────────────────────────

def get_nomination(nomination_id):
    return _get_or_404(Nomination, nomination_id, 'NOMINATION_NOT_FOUND', 'Nomination', 'nomination_id')


def create_nomination(intake, actor=None):
    return Nomination.objects.create(
        nominated_patient_name=intake.nominated_patient_name,
        phone_number=intake.phone_number,
        referrer=_optional(Patient, intake.referrer_id, 'PATIENT_NOT_FOUND', 'Referrer', 'referrer_id'),
        sales_person=_optional(Employee, intake.sales_person_id, 'EMPLOYEE_NOT_FOUND', 'Sales person', 'sales_person_id'),
        coordinator=_optional(Employee, intake.coordinator_id, 'EMPLOYEE_NOT_FOUND', 'Coordinator', 'coordinator_id'),
    )


def update_nomination_status(nomination_id, intake):
    nomination = get_nomination(nomination_id)
    if intake.status == nomination.status:
        return nomination
    if intake.status not in Nomination.TRANSITIONS[nomination.status]:
        raise InvalidTransitionError(nomination.status, intake.status)
    nomination.status = intake.status
    nomination.save(update_fields=['status', 'updated_at'])
    return nomination


@db_retry
def convert_nomination(nomination_id, intake, actor=None):
    """
    Turn a nomination into a patient. The NOMINATION_CONVERSION commission
    is credited later, on that patient's first visit.
    """
    nomination = get_nomination(nomination_id)
    if nomination.converted_to_patient_id:
        raise BlockError(
            message='Nomination has already been converted',
            code='NOMINATION_ALREADY_CONVERTED',
            detail={'patient_id': str(nomination.converted_to_patient_id)},
        )
    if nomination.status == 'contacted_rejected':
        raise BlockError(
            message='Rejected nominations cannot be converted',
            code='NOMINATION_REJECTED',
            detail={'nomination_id': str(nomination.id)},
        )

    with transaction.atomic():
        patient = Patient.objects.create(
            name_english=intake.name_english or nomination.nominated_patient_name,
            national_id=intake.national_id,
            phone_number=intake.phone_number or nomination.phone_number,
            dob=intake.dob,
            sales_person=nomination.sales_person,
        )
        nomination.converted_to_patient = patient
        nomination.status = 'contacted_approved'
        nomination.save(update_fields=['converted_to_patient', 'status', 'updated_at'])

    logger.info("[nominations] %s converted to patient %s", nomination.id, patient.id)
    return nomination, patient


# ── Reference data ───────────────────────────────────────────────────────────

def list_hospitals():
    cached = reference_cache.get(HOSPITALS_KEY)
    if cached is not None:
        return cached
    hospitals = [
        {'id': str(h.id), 'name': h.name}
        for h in Hospital.objects.filter(is_active=True).order_by('name')
    ]
    reference_cache.set(HOSPITALS_KEY, hospitals)
    return hospitals
