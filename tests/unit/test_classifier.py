"""
Visit classifier.

Each scenario is checked twice: through the per-visit database lookups and
through a bulk ClassificationContext. Both must agree.
"""
from datetime import timedelta

import pytest

from commissions.classification import (
    EXISTING_PATIENT,
    FOLLOW_UP_TASK,
    NEW_PATIENT,
    ClassificationContext,
    classify,
    classify_and_attribute,
    classify_appointment,
    is_first_visit,
)
from commissions.models import Visit
from tests.conftest import (
    AppointmentFactory,
    EmployeeFactory,
    FollowUpTaskFactory,
    HospitalFactory,
    PatientFactory,
    VisitFactory,
    dubai,
)


def both_paths(visit):
    """(database result, bulk-context result) for one visit."""
    fresh = Visit.objects.select_related('patient').get(pk=visit.pk)
    context = ClassificationContext.for_visits([fresh])
    return classify_and_attribute(fresh), classify_and_attribute(fresh, context)


@pytest.mark.django_db
class TestNewVersusExisting:

    def test_first_visit_ever_is_new_patient(self, sales):
        patient = PatientFactory(sales_person=sales)
        visit = VisitFactory(patient=patient, visit_date=dubai(2024, 1, 5))

        for result in both_paths(visit):
            assert result.category == NEW_PATIENT
            assert result.employee_id == sales.id
            assert result.fallback_used is False

    def test_second_visit_same_hospital_is_existing(self, sales, coordinator):
        patient = PatientFactory(sales_person=sales)
        h1 = HospitalFactory()
        VisitFactory(patient=patient, hospital=h1, visit_date=dubai(2024, 1, 5))
        second = VisitFactory(patient=patient, hospital=h1, visit_date=dubai(2024, 2, 10), coordinator=coordinator)

        for result in both_paths(second):
            assert result.category == EXISTING_PATIENT
            assert result.employee_id == coordinator.id

    def test_first_visit_to_another_hospital_is_new(self, sales):
        patient = PatientFactory(sales_person=sales)
        h1, h2 = HospitalFactory(), HospitalFactory()
        VisitFactory(patient=patient, hospital=h1, visit_date=dubai(2024, 1, 5))
        VisitFactory(patient=patient, hospital=h1, visit_date=dubai(2024, 2, 10))
        third = VisitFactory(patient=patient, hospital=h2, visit_date=dubai(2024, 3, 1))

        for result in both_paths(third):
            assert result.category == NEW_PATIENT
            assert result.employee_id == sales.id

    def test_visit_sales_overrides_patient_sales_person(self, sales):
        other = EmployeeFactory(roles=['sales'])
        patient = PatientFactory(sales_person=sales)
        visit = VisitFactory(patient=patient, sales=other)

        for result in both_paths(visit):
            assert result.employee_id == other.id

    def test_later_visit_does_not_make_earlier_one_existing(self):
        patient = PatientFactory()
        hospital = HospitalFactory()
        first = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 1, 5))
        # 后录入、但日期更晚的 visit 不影响第一次的分类
        VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 2, 5))

        for result in both_paths(first):
            assert result.category == NEW_PATIENT

    def test_backdated_visit_entered_later_is_new(self):
        patient = PatientFactory()
        hospital = HospitalFactory()
        later = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 3, 5))
        backdated = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 1, 5))

        assert classify(backdated) == NEW_PATIENT
        assert classify(Visit.objects.get(pk=later.pk)) == EXISTING_PATIENT


@pytest.mark.django_db
class TestSameDayOrdering:

    def test_created_at_breaks_ties(self, coordinator):
        patient = PatientFactory()
        hospital = HospitalFactory()
        same_moment = dubai(2024, 3, 10, 9)
        first = VisitFactory(patient=patient, hospital=hospital, visit_date=same_moment)
        second = VisitFactory(patient=patient, hospital=hospital, visit_date=same_moment, coordinator=coordinator)
        Visit.objects.filter(pk=first.pk).update(created_at=dubai(2024, 3, 10, 9, 1))
        Visit.objects.filter(pk=second.pk).update(created_at=dubai(2024, 3, 10, 9, 2))

        assert all(r.category == NEW_PATIENT for r in both_paths(first))
        assert all(r.category == EXISTING_PATIENT for r in both_paths(second))


@pytest.mark.django_db
class TestLegacyVisits:

    def test_visit_without_specialities_counts_as_previous(self, coordinator):
        patient = PatientFactory()
        hospital = HospitalFactory()
        VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 1, 5), specialities=0)
        march = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 3, 5), coordinator=coordinator)

        for result in both_paths(march):
            assert result.category == EXISTING_PATIENT

    def test_visit_without_specialities_is_still_classified(self):
        visit = VisitFactory(specialities=0)
        assert all(r.category == NEW_PATIENT for r in both_paths(visit))

    def test_no_appointment_uses_history_only(self, coordinator):
        patient = PatientFactory()
        hospital = HospitalFactory()
        VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2023, 11, 1))
        visit = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 1, 1), coordinator=coordinator)

        assert classify(visit) == EXISTING_PATIENT


@pytest.mark.django_db
class TestFollowUp:

    def test_same_day_follow_up_appointment_wins(self, coordinator):
        patient = PatientFactory()
        hospital = HospitalFactory()
        owner = EmployeeFactory(roles=['coordinator'])
        task = FollowUpTaskFactory(patient=patient, assigned_to=owner, status='approved')
        AppointmentFactory(
            patient=patient, hospital=hospital, scheduled_date=dubai(2024, 3, 10, 8),
            created_from_follow_up_task=task,
        )
        # 即使是第一次来，复诊预约也优先
        visit = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 3, 10, 15),
                             coordinator=coordinator)

        for result in both_paths(visit):
            assert result.category == FOLLOW_UP_TASK
            assert result.employee_id == owner.id
            assert result.follow_up_task_id == task.id

    def test_follow_up_appointment_other_day_is_ignored(self, sales):
        patient = PatientFactory(sales_person=sales)
        hospital = HospitalFactory()
        task = FollowUpTaskFactory(patient=patient)
        AppointmentFactory(
            patient=patient, hospital=hospital, scheduled_date=dubai(2024, 3, 9, 10),
            created_from_follow_up_task=task,
        )
        visit = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 3, 10, 10))

        for result in both_paths(visit):
            assert result.category == NEW_PATIENT

    def test_follow_up_appointment_other_hospital_is_ignored(self):
        patient = PatientFactory()
        task = FollowUpTaskFactory(patient=patient)
        AppointmentFactory(patient=patient, hospital=HospitalFactory(), created_from_follow_up_task=task)
        visit = VisitFactory(patient=patient, hospital=HospitalFactory())

        assert classify(visit) == NEW_PATIENT

    def test_day_boundary_uses_business_timezone(self):
        patient = PatientFactory()
        hospital = HospitalFactory()
        task = FollowUpTaskFactory(patient=patient)
        # 23:30 迪拜时间 = 19:30 UTC，与 00:30 的 visit 不是同一天
        AppointmentFactory(
            patient=patient, hospital=hospital, scheduled_date=dubai(2024, 3, 9, 23, 30),
            created_from_follow_up_task=task,
        )
        visit = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 3, 10, 0, 30))

        assert all(r.category == NEW_PATIENT for r in both_paths(visit))

    def test_plain_appointment_same_day_is_not_follow_up(self):
        patient = PatientFactory()
        hospital = HospitalFactory()
        AppointmentFactory(patient=patient, hospital=hospital)
        visit = VisitFactory(patient=patient, hospital=hospital)

        assert classify(visit) == NEW_PATIENT


@pytest.mark.django_db
class TestFallbacks:

    def test_existing_without_coordinator_falls_back_to_sales(self, sales, caplog):
        patient = PatientFactory(sales_person=sales)
        hospital = HospitalFactory()
        VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 1, 5))
        visit = VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 2, 5))

        with caplog.at_level('ERROR', logger='commissions.classification.classifier'):
            database, bulk = both_paths(visit)

        for result in (database, bulk):
            assert result.category == EXISTING_PATIENT
            assert result.employee_id == sales.id
            assert result.fallback_used is True
        assert 'falling back to sales' in caplog.text

    def test_new_patient_without_any_sales_has_no_employee(self):
        visit = VisitFactory(patient=PatientFactory(sales_person=None))
        result = classify_and_attribute(visit)
        assert result.category == NEW_PATIENT
        assert result.employee_id is None


@pytest.mark.django_db
class TestContextAgreesInBulk:

    def test_many_visits_same_answers(self, sales, coordinator):
        hospitals = [HospitalFactory() for _ in range(2)]
        visits = []
        for i in range(4):
            patient = PatientFactory(sales_person=sales)
            for j in range(3):
                visits.append(VisitFactory(
                    patient=patient,
                    hospital=hospitals[(i + j) % 2],
                    visit_date=dubai(2024, 1, 1) + timedelta(days=10 * j + i),
                    coordinator=coordinator,
                ))
        fresh = list(Visit.objects.select_related('patient').all())
        context = ClassificationContext.for_visits(fresh)

        for visit in fresh:
            assert classify_and_attribute(visit) == classify_and_attribute(visit, context)


@pytest.mark.django_db
class TestFirstVisit:

    def test_first_visit_ignores_hospital(self):
        patient = PatientFactory()
        VisitFactory(patient=patient, hospital=HospitalFactory(), visit_date=dubai(2024, 1, 1))
        second = VisitFactory(patient=patient, hospital=HospitalFactory(), visit_date=dubai(2024, 2, 1))

        assert classify(second) == NEW_PATIENT
        assert is_first_visit(second) is False


@pytest.mark.django_db
class TestClassifyAppointment:

    def test_follow_up_link_wins(self):
        task = FollowUpTaskFactory()
        appointment = AppointmentFactory(patient=task.patient, created_from_follow_up_task=task)
        assert classify_appointment(appointment) == FOLLOW_UP_TASK

    def test_frozen_new_patient_flag(self):
        patient = PatientFactory()
        hospital = HospitalFactory()
        VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 1, 1))
        appointment = AppointmentFactory(patient=patient, hospital=hospital, is_new_patient_at_creation=True)
        assert classify_appointment(appointment) == NEW_PATIENT

    def test_history_before_appointment_day(self):
        patient = PatientFactory()
        hospital = HospitalFactory()
        VisitFactory(patient=patient, hospital=hospital, visit_date=dubai(2024, 1, 1))
        existing = AppointmentFactory(patient=patient, hospital=hospital, scheduled_date=dubai(2024, 3, 1))
        other_hospital = AppointmentFactory(patient=patient, hospital=HospitalFactory(), scheduled_date=dubai(2024, 3, 1))

        assert classify_appointment(existing) == EXISTING_PATIENT
        assert classify_appointment(other_hospital) == NEW_PATIENT

        context = ClassificationContext({patient.id})
        assert classify_appointment(existing, context) == EXISTING_PATIENT
        assert classify_appointment(other_hospital, context) == NEW_PATIENT
