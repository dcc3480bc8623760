"""
Visit classifier.

Rules, in order:

1. An appointment for the same patient and hospital, on the same business
   day as the visit, that was booked from a follow-up task  → follow_up_task
2. No other visit of the patient with an earlier (visit_date, created_at)
   → first visit ever
3. No other visit of the patient at this hospital with an earlier
   (visit_date, created_at)  → first visit to this hospital
4. first ever or first to hospital  → new_patient
5. otherwise  → existing_patient

Visits without specialities still count as "earlier visits". Legacy visits
with no appointment simply skip rule 1.

Two lookup strategies implement the same questions: ``_DatabaseLookup``
asks the database per visit, ``ClassificationContext`` answers from a bulk
prefetch so reports can classify thousands of visits in a few queries.
"""

import logging
from collections import defaultdict

from django.db.models import Q

from ..dates import business_date, day_bounds, start_of_day
from ..models import Appointment, Visit
from .types import (
    EXISTING_PATIENT,
    FOLLOW_UP_TASK,
    NEW_PATIENT,
    Classification,
    FollowUpLink,
    VisitStamp,
)

logger = logging.getLogger(__name__)

# sqlite 单条语句最多 999 个参数
_IN_CHUNK = 500


def _chunks(items, size=_IN_CHUNK):
    items = list(items)
    for i in range(0, len(items), size):
        yield items[i:i + size]


def _stamp(visit) -> VisitStamp:
    return VisitStamp(visit.id, visit.patient_id, visit.hospital_id, visit.visit_date, visit.created_at)


class _DatabaseLookup:

    def follow_up_link(self, visit) -> FollowUpLink | None:
        start, end = day_bounds(visit.visit_date)
        appointment = (
            Appointment.objects
            .filter(
                patient_id=visit.patient_id,
                hospital_id=visit.hospital_id,
                scheduled_date__gte=start,
                scheduled_date__lte=end,
                created_from_follow_up_task__isnull=False,
            )
            .select_related('created_from_follow_up_task')
            .order_by('scheduled_date', 'created_at')
            .first()
        )
        if appointment is None:
            return None
        task = appointment.created_from_follow_up_task
        return FollowUpLink(task.id, task.assigned_to_id)

    def has_earlier_visit(self, visit, same_hospital: bool) -> bool:
        qs = (
            Visit.objects
            .filter(patient_id=visit.patient_id)
            .exclude(pk=visit.pk)
            .filter(
                Q(visit_date__lt=visit.visit_date)
                | Q(visit_date=visit.visit_date, created_at__lt=visit.created_at)
            )
        )
        if same_hospital:
            qs = qs.filter(hospital_id=visit.hospital_id)
        return qs.exists()

    def has_visit_before(self, patient_id, hospital_id, before) -> bool:
        qs = Visit.objects.filter(patient_id=patient_id, visit_date__lt=before)
        if hospital_id is not None:
            qs = qs.filter(hospital_id=hospital_id)
        return qs.exists()


class ClassificationContext:
    """
    Bulk prefetch for classifying many visits.

    Loads every visit of the involved patients, plus every follow-up-linked
    appointment, once. Answers are identical to the per-visit database path.
    """

    def __init__(self, patient_ids):
        self._visits = defaultdict(list)
        self._follow_ups = defaultdict(list)
        self._load(set(patient_ids))

    @classmethod
    def for_visits(cls, visits):
        return cls({v.patient_id for v in visits})

    def _load(self, patient_ids):
        for chunk in _chunks(patient_ids):
            rows = Visit.objects.filter(patient_id__in=chunk).values_list(
                'id', 'patient_id', 'hospital_id', 'visit_date', 'created_at',
            )
            for row in rows:
                stamp = VisitStamp(*row)
                self._visits[stamp.patient_id].append(stamp)

            appointments = (
                Appointment.objects
                .filter(patient_id__in=chunk, created_from_follow_up_task__isnull=False)
                .order_by('scheduled_date', 'created_at')
                .values_list(
                    'patient_id', 'hospital_id', 'scheduled_date',
                    'created_from_follow_up_task_id', 'created_from_follow_up_task__assigned_to_id',
                )
            )
            for patient_id, hospital_id, scheduled, task_id, owner_id in appointments:
                self._follow_ups[(patient_id, hospital_id)].append(
                    (business_date(scheduled), FollowUpLink(task_id, owner_id))
                )
        logger.debug(
            "[classification] context loaded: %d patients, %d follow-up appointments",
            len(self._visits), sum(len(v) for v in self._follow_ups.values()),
        )

    def follow_up_link(self, visit) -> FollowUpLink | None:
        day = business_date(visit.visit_date)
        for scheduled_day, link in self._follow_ups.get((visit.patient_id, visit.hospital_id), ()):
            if scheduled_day == day:
                return link
        return None

    def has_earlier_visit(self, visit, same_hospital: bool) -> bool:
        current = _stamp(visit)
        for other in self._visits.get(visit.patient_id, ()):
            if other.id == current.id:
                continue
            if same_hospital and other.hospital_id != current.hospital_id:
                continue
            if other.order_key < current.order_key:
                return True
        return False

    def has_visit_before(self, patient_id, hospital_id, before) -> bool:
        return any(
            other.visit_date < before
            for other in self._visits.get(patient_id, ())
            if hospital_id is None or other.hospital_id == hospital_id
        )


_database = _DatabaseLookup()


def classify(visit, context: ClassificationContext | None = None) -> str:
    return classify_and_attribute(visit, context).category


def _sales_owner(visit):
    return visit.sales_id or visit.patient.sales_person_id


def classify_and_attribute(visit, context: ClassificationContext | None = None) -> Classification:
    """
    Classify one visit and decide which employee is credited for it.

    new_patient       → visit.sales, else patient.sales_person
    existing_patient  → visit.coordinator, else the sales owner (logged)
    follow_up_task    → the follow-up task's owner, else visit.coordinator (logged)
    """
    lookup = context or _database

    link = lookup.follow_up_link(visit)
    if link is not None:
        if link.owner_id:
            return Classification(FOLLOW_UP_TASK, link.owner_id, False, link.task_id)
        fallback = visit.coordinator_id or _sales_owner(visit)
        logger.error(
            "[classification] follow-up task %s has no owner; crediting %s for visit %s",
            link.task_id, fallback, visit.id,
        )
        return Classification(FOLLOW_UP_TASK, fallback, True, link.task_id)

    first_ever = not lookup.has_earlier_visit(visit, same_hospital=False)
    first_to_hospital = first_ever or not lookup.has_earlier_visit(visit, same_hospital=True)

    if first_ever or first_to_hospital:
        owner = _sales_owner(visit)
        if owner is None:
            logger.warning("[classification] new-patient visit %s has no sales person", visit.id)
        return Classification(NEW_PATIENT, owner)

    if visit.coordinator_id:
        return Classification(EXISTING_PATIENT, visit.coordinator_id)

    fallback = _sales_owner(visit)
    logger.error(
        "[classification] existing-patient visit %s has no coordinator; falling back to sales %s",
        visit.id, fallback,
    )
    return Classification(EXISTING_PATIENT, fallback, True)


def classify_appointment(appointment, context: ClassificationContext | None = None) -> str:
    """
    Appointment type for booking reports.

    Follow-up link wins, then the frozen new-patient snapshot, then the
    patient's visit history before the appointment day.
    """
    if appointment.created_from_follow_up_task_id:
        return FOLLOW_UP_TASK
    if appointment.is_new_patient_at_creation:
        return NEW_PATIENT

    lookup = context or _database
    before = start_of_day(business_date(appointment.scheduled_date))
    if not lookup.has_visit_before(appointment.patient_id, None, before):
        return NEW_PATIENT
    if not lookup.has_visit_before(appointment.patient_id, appointment.hospital_id, before):
        return NEW_PATIENT
    return EXISTING_PATIENT


def is_first_visit(visit, context: ClassificationContext | None = None) -> bool:
    """True when no other visit of the patient precedes this one, at any hospital."""
    lookup = context or _database
    return not lookup.has_earlier_visit(visit, same_hospital=False)
